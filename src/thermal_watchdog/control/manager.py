"""
Fan Control Manager Module

This module runs the control loop on a fixed cycle and applies its result
to the fans. It owns the fault policy:

- a failed step releases manual control back to the platform
- a failed fan command is terminal: automatic control is restored once
  and the error is raised to the caller
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

import sdnotify

from .loop import ControlLoop
from ..errors import (
    AcquisitionError,
    ActuatorError,
    FailsafeTrippedError,
    PointError,
    ThermalWatchdogError
)
from ..ipmi import IPMICommander
from ..metrics.system import get_proc_usage
from ..metrics.telemetry import TelemetryChannel

logger = logging.getLogger(__name__)


class ControlManager:
    """Manages the control cycle and safety reactions"""

    def __init__(self, loop: ControlLoop, commander: IPMICommander,
                 telemetry: TelemetryChannel, live: bool = False,
                 min_speed: float = 0.0, interval: float = 1.0,
                 exit_on_fault: bool = False,
                 clock: Callable[[], float] = time.monotonic,
                 notifier: Optional[sdnotify.SystemdNotifier] = None):
        """Initialize control manager

        Args:
            loop: Control loop with all monitored points registered
            commander: Actuator used for fan mode and speed commands
            telemetry: Channel for fan speed, mode and CPU usage samples
            live: If False (shadow mode), actuator commands are only logged
            min_speed: Lowest fan speed fraction ever commanded
            interval: Seconds to wait between cycles
            exit_on_fault: If True, a failed step stops the manager
            clock: Monotonic time source in seconds
            notifier: systemd notification socket, no-op outside systemd
        """
        self.loop = loop
        self.commander = commander
        self.telemetry = telemetry
        self.live = live
        self.min_speed = min_speed
        self.interval = interval
        self.exit_on_fault = exit_on_fault
        self.clock = clock
        self.notifier = notifier if notifier is not None else sdnotify.SystemdNotifier()

        self.manual = False
        self.last_speed: Optional[float] = None
        self.last_error: Optional[ThermalWatchdogError] = None
        self._stop_event = threading.Event()

        if not live:
            logger.info("Running in shadow mode, no IPMI commands will be issued")

    def _set_fan_manual(self, manual: bool) -> None:
        self.telemetry.report([("manual control", 1.0 if manual else 0.0)])
        if self.live:
            self.commander.set_manual_mode(manual)
        else:
            logger.debug(f"Shadow: Setting manual fan control to {manual}")
        self.manual = manual

    def _set_fan_speed(self, speed: float) -> None:
        self.telemetry.report([("fan speed", speed)])
        if self.live:
            self.commander.set_fan_speed(speed)
        else:
            logger.debug(f"Shadow: Setting fan speed to {speed}")
        self.last_speed = speed

    def _log_fault(self, error: ThermalWatchdogError) -> None:
        if isinstance(error, FailsafeTrippedError):
            logger.critical(
                f"Failsafe tripped for {error.point} (#{error.index}): "
                f"{error.measured}°C >= {error.threshold}°C"
            )
        elif isinstance(error, PointError):
            logger.error(f"Unable to run control for {error.point} (#{error.index}): {error}")
        else:
            logger.error(f"Unable to read sensors: {error}")

    def _restore_automatic(self) -> None:
        """Best-effort return of fan control to the platform"""
        try:
            self._set_fan_manual(False)
            logger.info("Restored automatic fan control")
        except ActuatorError as e:
            logger.error(f"Failed to restore automatic fan control: {e}")

    def _abort(self, error: ActuatorError) -> None:
        logger.error(f"IPMI control failed, trying to restore automatic fan control and exiting: {error}")
        self._restore_automatic()
        self.notifier.notify("STOPPING=1")
        self.stop()
        self.telemetry.close()

    def run_once(self, elapsed: float) -> Optional[float]:
        """Run one control cycle and apply the result.

        Args:
            elapsed: Milliseconds since the previous cycle

        Returns:
            Commanded fan speed fraction, or None if the step failed and
            control was released

        Raises:
            ActuatorError: If a fan command failed (after restoring automatic control)
            AcquisitionError, PointError: If the step failed and exit_on_fault is set
        """
        try:
            try:
                demand = self.loop.step(elapsed)
            except (AcquisitionError, PointError) as e:
                self.last_error = e
                self._log_fault(e)
                logger.warning("Resetting to automatic fan control")
                self._set_fan_manual(False)
                if self.exit_on_fault:
                    self.stop()
                    raise
                return None

            self.last_error = None
            if not self.manual:
                logger.info("Enabling manual fan control")
                self._set_fan_manual(True)

            speed = max(demand, self.min_speed)
            self._set_fan_speed(speed)
        except ActuatorError as e:
            self.last_error = e
            self._abort(e)
            raise

        self.telemetry.report([("cpu_usage", get_proc_usage())])
        return speed

    def run(self) -> None:
        """Run control cycles until stop() is called.

        systemd is told the service is ready before the first cycle and the
        watchdog is fed after every cycle that did not raise.

        Raises:
            ActuatorError: If a fan command failed
        """
        logger.info("Control loop started")
        self.notifier.notify("READY=1")
        last_update = self.clock()
        while not self._stop_event.is_set():
            now = self.clock()
            elapsed = (now - last_update) * 1000.0
            last_update = now

            self.run_once(elapsed)
            self.notifier.notify("WATCHDOG=1")
            self._stop_event.wait(self.interval)
        logger.info("Control loop stopped")

    def stop(self) -> None:
        """Ask run() to return after the current cycle"""
        self._stop_event.set()

    def shutdown(self) -> None:
        """Restore automatic fan control and flush telemetry"""
        self.stop()
        self.notifier.notify("STOPPING=1")
        self._restore_automatic()
        self.telemetry.close()

    def get_status(self) -> Dict[str, Any]:
        """Get current control status

        Returns:
            Dictionary with mode, last command, last error and readings
        """
        return {
            "live": self.live,
            "manual": self.manual,
            "fan_speed": self.last_speed,
            "error": str(self.last_error) if self.last_error else None,
            "readings": [
                {"name": r.name, "status": r.value.status.value, "value": r.value.value}
                for r in self.loop.readings
            ]
        }

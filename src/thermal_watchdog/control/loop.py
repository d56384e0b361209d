"""
Control Loop Module

One control cycle: poll every monitored sensor, validate the readings,
enforce failsafe thresholds, run each point's controller and aggregate
the outputs into a single fan command.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .pid import PIDController, PIDTuning
from ..errors import (
    FailsafeTrippedError,
    SensorInvalidError,
    SensorKindMismatchError,
    SensorUnsetError
)
from ..ipmi.sensors import SensorReader, SensorReading, SensorStatus
from ..metrics.telemetry import TelemetryChannel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitoredPoint:
    """A temperature sensor under control.

    Attributes:
        name: Sensor name as printed by ipmitool
        setpoint: Target temperature in °C
        failsafe: Temperature at or above which control is abandoned
        tuning: Controller gains for this point
    """
    name: str
    setpoint: float
    failsafe: float
    tuning: PIDTuning


class ControlLoop:
    """Owns the monitored points, their controllers and reading slots"""

    def __init__(self, reader: SensorReader, telemetry: Optional[TelemetryChannel] = None):
        """Initialize control loop

        Args:
            reader: SensorReader used to poll all points each step
            telemetry: Channel for temperature and controller samples
        """
        self.reader = reader
        self.telemetry = telemetry
        self.points: List[Tuple[MonitoredPoint, PIDController]] = []
        self.readings: List[SensorReading] = []

    def add_control(self, point: MonitoredPoint) -> PIDController:
        """Register a point. Points are evaluated in registration order."""
        index = len(self.points)
        controller = PIDController(
            point.setpoint,
            point.tuning,
            telemetry=self.telemetry,
            tags=[("sensor", point.name), ("index", str(index))]
        )
        self.points.append((point, controller))
        self.readings.append(SensorReading(point.name))
        logger.info(
            f"Monitoring {point.name} (#{index}): setpoint {point.setpoint}, "
            f"failsafe {point.failsafe}"
        )
        return controller

    def step(self, elapsed: float) -> float:
        """Run one control cycle.

        Args:
            elapsed: Time since the previous step, milliseconds

        Returns:
            Fan speed demand, the maximum of all controller outputs and 0.0

        Raises:
            AcquisitionError: If the sensor poll fails
            SensorUnsetError: If a point's sensor did not report
            SensorInvalidError: If a point's sensor value did not parse
            SensorKindMismatchError: If a point's sensor reports RPM
            FailsafeTrippedError: If a point reached its failsafe threshold
        """
        logger.debug(f"Step {elapsed}")

        self.reader.poll(self.readings)

        demand = 0.0
        for index, ((point, controller), reading) in enumerate(zip(self.points, self.readings)):
            value = reading.value
            if value.status is SensorStatus.UNSET:
                raise SensorUnsetError(point.name, index)
            if value.status is SensorStatus.INVALID:
                raise SensorInvalidError(point.name, index)
            if value.status is SensorStatus.ROTATION_SPEED:
                raise SensorKindMismatchError(point.name, index, value.value)

            temp = float(value.value)
            if self.telemetry is not None:
                self.telemetry.report(
                    [("temperature", temp)],
                    [("sensor", point.name), ("index", str(index))]
                )

            if temp >= point.failsafe:
                raise FailsafeTrippedError(point.name, index, temp, point.failsafe)

            output = controller.update(temp, elapsed)
            logger.debug(f"Output for {point.name} is {output}")
            demand = max(demand, output)

        logger.debug(f"Max is {demand}")
        return demand

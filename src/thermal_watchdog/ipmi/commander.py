"""
IPMI Command Execution Module

This module provides a wrapper around ipmitool for listing sensors and
driving the fan actuator (manual mode toggle and fan speed).
"""

import math
import subprocess
import logging
from typing import List, Optional, Tuple

from ..errors import ActuatorError, IPMIError, SensorToolError

logger = logging.getLogger(__name__)


class IPMICommander:
    """Handles ipmitool invocation for sensor listing and fan control"""

    # Known dangerous commands that should never be executed
    BLACKLISTED_COMMANDS = {
        (0x06, 0x01),  # Get supported commands - causes fans to drop speed
        (0x06, 0x02),  # Get OEM commands - may affect sensor readings
    }

    COMMANDS = {
        "LIST_SENSORS": "sdr list full",
        "SET_MANUAL_MODE": "raw 0x30 0x30 0x01 0x00",
        "SET_AUTO_MODE": "raw 0x30 0x30 0x01 0x01",
        "SET_FAN_SPEED": "raw 0x30 0x30 0x02 0xff",  # Append hex percentage
    }

    def __init__(self, host: str = "localhost", username: str = "ADMIN",
                 password: str = "ADMIN", interface: str = "lanplus",
                 binary: str = "ipmitool"):
        """Initialize IPMI commander with connection details

        Args:
            host: IPMI host address, "localhost" for the local BMC
            username: IPMI username (remote only)
            password: IPMI password (remote only)
            interface: IPMI interface type (remote only)
            binary: ipmitool executable
        """
        self.host = host
        self.username = username
        self.password = password
        self.interface = interface
        self.binary = binary

    def _base_command(self) -> List[str]:
        if self.host == "localhost":
            return [self.binary]
        return [
            self.binary, "-I", self.interface,
            "-H", self.host,
            "-U", self.username,
            "-P", self.password
        ]

    def _validate_raw_command(self, command: str) -> None:
        """Validate a raw IPMI command for safety and format.

        Args:
            command: Raw IPMI command string (e.g., "raw 0x30 0x30 0x01 0x00")

        Raises:
            IPMIError: If the command is blacklisted or malformed
        """
        parts = command.split()
        if len(parts) < 3 or parts[0] != "raw":
            return  # Not a raw command, skip validation

        try:
            values = [int(p, 16) for p in parts[1:]]
        except ValueError:
            raise IPMIError(f"Invalid command format: malformed hex value in '{command}'")

        netfn, cmd = values[0], values[1]
        if (netfn, cmd) in self.BLACKLISTED_COMMANDS:
            raise IPMIError(f"Command {hex(netfn)} {hex(cmd)} is blacklisted for safety")

        if (netfn, cmd) == (0x30, 0x30) and len(values) >= 4:
            if values[2] == 0x01 and values[3] not in (0x00, 0x01):
                raise IPMIError(f"Invalid fan mode: {hex(values[3])}")
            if values[2] == 0x02 and len(values) >= 5 and values[4] > 100:
                raise IPMIError(f"Invalid fan speed: {hex(values[4])}")

    def _run(self, command: str) -> subprocess.CompletedProcess:
        """Run an ipmitool command without raising on exit status

        Raises:
            IPMIError: If the command is rejected by validation
            OSError: If ipmitool cannot be started
        """
        self._validate_raw_command(command)
        full_cmd = self._base_command() + command.split()
        logger.debug(f"Running {' '.join(full_cmd)}")
        return subprocess.run(full_cmd, capture_output=True)

    def list_sensors(self) -> Tuple[bytes, int]:
        """List all sensor data records.

        The exit status is returned instead of checked so the caller can
        still use whatever was printed before a failure.

        Returns:
            Tuple of (raw stdout bytes, exit status)

        Raises:
            SensorToolError: If ipmitool cannot be started
        """
        command = self.COMMANDS["LIST_SENSORS"]
        try:
            result = self._run(command)
        except OSError as e:
            raise SensorToolError(f"{self.binary} {command}", str(e))
        return result.stdout, result.returncode

    def _actuate(self, operation: str, command: str) -> None:
        try:
            result = self._run(command)
        except OSError as e:
            raise ActuatorError(operation, None, str(e))

        if result.returncode != 0:
            output = result.stdout.decode("utf-8", errors="replace").strip()
            raise ActuatorError(operation, result.returncode, output)

    def set_manual_mode(self, manual: bool) -> None:
        """Enable or disable manual fan control.

        Args:
            manual: True to take over fan control, False to hand it back
                to the platform's automatic control

        Raises:
            ActuatorError: If ipmitool fails or exits non-zero
        """
        logger.info(f"Setting fan manual control: {manual}")
        command = self.COMMANDS["SET_MANUAL_MODE" if manual else "SET_AUTO_MODE"]
        self._actuate("manual_mode", command)

    @staticmethod
    def speed_to_percent(speed: float) -> int:
        """Convert a fan speed fraction to a whole percentage.

        Rounds up and clamps to [0, 100]; NaN is treated as full speed.
        """
        if math.isnan(speed):
            return 100
        scaled = max(0.0, min(100.0, speed * 100.0))
        return int(math.ceil(scaled))

    def set_fan_speed(self, speed: float) -> None:
        """Set fan speed for all fans.

        Args:
            speed: Fan speed as a fraction, 0.0 to 1.0

        Raises:
            ActuatorError: If ipmitool fails or exits non-zero
        """
        percent = self.speed_to_percent(speed)
        hex_speed = f"0x{percent:02x}"
        logger.info(f"Setting fan speed to {speed} ({hex_speed}, {percent}%)")
        self._actuate("fan_speed", f"{self.COMMANDS['SET_FAN_SPEED']} {hex_speed}")

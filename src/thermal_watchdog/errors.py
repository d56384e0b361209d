"""
Error Types for Thermal Watchdog

Every failure the control path can produce is a subclass of
ThermalWatchdogError carrying a kind and structured fields, so callers
branch on the type (or ``kind``) instead of parsing messages.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Closed set of control failure kinds"""
    SENSOR_UNSET = "sensor_unset"
    SENSOR_INVALID = "sensor_invalid"
    SENSOR_KIND_MISMATCH = "sensor_kind_mismatch"
    FAILSAFE_TRIPPED = "failsafe_tripped"
    ACQUISITION_FAILED = "acquisition_failed"
    ACTUATOR_FAILED = "actuator_failed"
    COMMAND_REJECTED = "command_rejected"


class ThermalWatchdogError(Exception):
    """Base exception for all control errors"""
    kind: ErrorKind


class IPMIError(ThermalWatchdogError):
    """Raised when an IPMI command is refused before execution"""
    kind = ErrorKind.COMMAND_REJECTED


class AcquisitionError(ThermalWatchdogError):
    """Raised when the sensor listing could not be obtained"""
    kind = ErrorKind.ACQUISITION_FAILED


class SensorToolError(AcquisitionError):
    """Raised when the sensor listing command cannot be started"""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Unable to run {command}: {reason}")


class SensorDecodeError(AcquisitionError):
    """Raised when the sensor listing output is not valid UTF-8"""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Unable to parse command output, invalid utf-8: {reason}")


class SensorExitError(AcquisitionError):
    """Raised when the sensor listing command exits with a non-zero status"""

    def __init__(self, returncode: int):
        self.returncode = returncode
        super().__init__(f"Sensor listing returned non-zero exit code {returncode}")


class PointError(ThermalWatchdogError):
    """Base for errors attributed to one monitored point

    Attributes:
        point: Name of the monitored point
        index: Registration ordinal of the point (disambiguates duplicate names)
    """

    def __init__(self, point: str, index: int, message: str):
        self.point = point
        self.index = index
        super().__init__(message)


class SensorUnsetError(PointError):
    """The sensor never reported a value this cycle"""
    kind = ErrorKind.SENSOR_UNSET

    def __init__(self, point: str, index: int):
        super().__init__(point, index, f"{point} (#{index}) is not set")


class SensorInvalidError(PointError):
    """The sensor reported a value that could not be parsed"""
    kind = ErrorKind.SENSOR_INVALID

    def __init__(self, point: str, index: int):
        super().__init__(point, index, f"{point} (#{index}) is invalid")


class SensorKindMismatchError(PointError):
    """The sensor reported fan speed where a temperature was expected"""
    kind = ErrorKind.SENSOR_KIND_MISMATCH

    def __init__(self, point: str, index: int, observed: int):
        self.observed = observed
        super().__init__(
            point, index,
            f"cannot watch RPM value for {point} (#{index}): {observed} RPM"
        )


class FailsafeTrippedError(PointError):
    """The measured temperature reached the failsafe threshold

    This signals the plant is in danger, not the sensing.
    """
    kind = ErrorKind.FAILSAFE_TRIPPED

    def __init__(self, point: str, index: int, measured: float, threshold: float):
        self.measured = measured
        self.threshold = threshold
        super().__init__(
            point, index,
            f"failsafe of {threshold} exceeded for {point} (#{index}): {measured}"
        )


class ActuatorError(ThermalWatchdogError):
    """Raised when a fan mode or speed command fails

    Attributes:
        operation: Actuator operation that failed ("manual_mode" or "fan_speed")
        returncode: Exit status of ipmitool, None when it could not be started
        output: Captured command output
    """
    kind = ErrorKind.ACTUATOR_FAILED

    def __init__(self, operation: str, returncode: Optional[int], output: str):
        self.operation = operation
        self.returncode = returncode
        self.output = output
        code = returncode if returncode is not None else -1
        super().__init__(f"{operation} command failed, returned {code}, {output}")

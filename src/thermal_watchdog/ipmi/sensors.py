"""
Sensor Reading Module

This module polls IPMI sensor data records and turns the pipe-delimited
ipmitool output into typed readings for the monitored points. Unrelated
or malformed lines never abort a poll.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from .commander import IPMICommander
from ..errors import SensorDecodeError, SensorExitError

logger = logging.getLogger(__name__)

FIELD_DELIMITER = "|"

RPM_LABEL = "RPM"
TEMPERATURE_LABEL = "degrees C"

# ipmitool prints plain decimal integers for these sensors
_SIGNED_INT = re.compile(r"[+-]?[0-9]+")
_UNSIGNED_INT = re.compile(r"\+?[0-9]+")


class SensorStatus(Enum):
    """State of a sensor value for the current poll"""
    UNSET = "unset"
    INVALID = "invalid"
    TEMPERATURE = "temperature"
    ROTATION_SPEED = "rotation_speed"


@dataclass(frozen=True)
class SensorValue:
    """A parsed sensor value.

    Attributes:
        status: What kind of value the sensor reported
        value: Temperature in °C or fan speed in RPM, None when unset or invalid

    Examples:
        >>> SensorValue.temperature(45)
        SensorValue(status=<SensorStatus.TEMPERATURE: 'temperature'>, value=45)
        >>> SensorValue.unset().is_set
        False
    """
    status: SensorStatus
    value: Optional[int] = None

    @classmethod
    def unset(cls) -> "SensorValue":
        return cls(SensorStatus.UNSET)

    @classmethod
    def invalid(cls) -> "SensorValue":
        return cls(SensorStatus.INVALID)

    @classmethod
    def temperature(cls, degrees: int) -> "SensorValue":
        return cls(SensorStatus.TEMPERATURE, degrees)

    @classmethod
    def rotation_speed(cls, rpm: int) -> "SensorValue":
        return cls(SensorStatus.ROTATION_SPEED, rpm)

    @property
    def is_set(self) -> bool:
        return self.status is not SensorStatus.UNSET


@dataclass
class SensorReading:
    """Reading slot for one monitored point, refreshed on every poll.

    Attributes:
        name: Sensor name, matched exactly against the ipmitool name column
        value: Latest parsed value
    """
    name: str
    value: SensorValue = field(default_factory=SensorValue.unset)

    def reset(self) -> None:
        self.value = SensorValue.unset()


def parse_sensor_value(name: str, text: str) -> SensorValue:
    """Parse the value column of a sensor line.

    The text is split at its first space into a number and a unit label.
    Only "RPM" and "degrees C" are recognized; anything else is some other
    kind of sensor and yields Unset. A number that does not parse under a
    recognized label yields Invalid and is logged.

    Args:
        name: Sensor name, used for logging
        text: Trimmed value column, e.g. "45 degrees C"

    Returns:
        SensorValue for the text

    Examples:
        >>> parse_sensor_value("FAN1", "4500 RPM")
        SensorValue(status=<SensorStatus.ROTATION_SPEED: 'rotation_speed'>, value=4500)
        >>> parse_sensor_value("PS1 Status", "0x01").status
        <SensorStatus.UNSET: 'unset'>
    """
    data, sep, label = text.partition(" ")
    if not sep:
        return SensorValue.unset()

    if label == RPM_LABEL:
        pattern, build = _UNSIGNED_INT, SensorValue.rotation_speed
    elif label == TEMPERATURE_LABEL:
        pattern, build = _SIGNED_INT, SensorValue.temperature
    else:
        return SensorValue.unset()

    if not pattern.fullmatch(data):
        logger.warning(f"Unable to parse ipmi entry: unable to parse {data!r} for {name}")
        return SensorValue.invalid()
    return build(int(data))


def parse_sensor_line(line: str) -> Optional[Tuple[str, SensorValue]]:
    """Split one ipmitool line into a sensor name and parsed value.

    Returns:
        (name, value) tuple, or None for lines without a value column
    """
    columns = line.split(FIELD_DELIMITER)
    if len(columns) < 2:
        return None
    name = columns[0].strip()
    return name, parse_sensor_value(name, columns[1].strip())


def assign_reading(readings: Iterable[SensorReading], name: str, value: SensorValue) -> bool:
    """Attach a value to the first unset reading with a matching name.

    Returns:
        True if a reading took the value
    """
    for reading in readings:
        if reading.name == name and not reading.value.is_set:
            logger.debug(f"Read {value} for {name}")
            reading.value = value
            return True
    return False


class SensorReader:
    """Polls ipmitool and fills in sensor readings"""

    def __init__(self, commander: IPMICommander):
        """Initialize sensor reader

        Args:
            commander: IPMICommander instance for IPMI communication
        """
        self.commander = commander

    def poll(self, readings: List[SensorReading]) -> None:
        """Refresh readings in place from a single sensor listing.

        Every reading is reset to Unset first so nothing from a previous
        cycle survives. Lines are matched in output order, first unset
        reading with the same name wins. The exit status is checked only
        after all lines were processed, so readings parsed before a failure
        stay assigned.

        Args:
            readings: Reading slots in registration order

        Raises:
            SensorToolError: If ipmitool cannot be started
            SensorDecodeError: If the output is not valid UTF-8
            SensorExitError: If ipmitool exits non-zero
        """
        for reading in readings:
            reading.reset()

        stdout, returncode = self.commander.list_sensors()

        try:
            output = stdout.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SensorDecodeError(str(e))

        for line in output.splitlines():
            parsed = parse_sensor_line(line)
            if parsed is None:
                continue
            assign_reading(readings, *parsed)

        if returncode != 0:
            raise SensorExitError(returncode)

"""
IPMI Communication Package for Thermal Watchdog

Key Components:
- IPMICommander: ipmitool invocation for sensor listing and fan control
- SensorReader: polls sensor data records into typed readings

Example Usage:
    >>> from thermal_watchdog.ipmi import IPMICommander, SensorReader, SensorReading
    >>>
    >>> commander = IPMICommander()
    >>> readings = [SensorReading("Exhaust Temp")]
    >>> SensorReader(commander).poll(readings)
    >>>
    >>> commander.set_manual_mode(True)
    >>> commander.set_fan_speed(0.3)
    >>> commander.set_manual_mode(False)  # Return to automatic control

Note:
    This package requires ipmitool and access to the BMC.
"""

from .commander import IPMICommander
from .sensors import (
    SensorReader,
    SensorReading,
    SensorStatus,
    SensorValue,
    parse_sensor_line,
    parse_sensor_value
)

__all__ = [
    'IPMICommander',
    'SensorReader',
    'SensorReading',
    'SensorStatus',
    'SensorValue',
    'parse_sensor_line',
    'parse_sensor_value'
]

"""
Metrics package for Thermal Watchdog

Line protocol formatting, the background telemetry channel and the
InfluxDB sink it ships batches to.
"""

from .telemetry import TelemetryChannel, TelemetrySample, LogSink, format_line
from .influx import InfluxSink

__all__ = [
    'TelemetryChannel',
    'TelemetrySample',
    'LogSink',
    'InfluxSink',
    'format_line'
]

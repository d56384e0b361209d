"""
Control package for Thermal Watchdog

This package provides the PID controllers, the per-cycle control loop
and the manager that drives the fans from it.
"""

from .pid import PIDController, PIDTuning, ControllerState
from .loop import ControlLoop, MonitoredPoint
from .manager import ControlManager

__all__ = [
    'PIDController',
    'PIDTuning',
    'ControllerState',
    'ControlLoop',
    'MonitoredPoint',
    'ControlManager'
]

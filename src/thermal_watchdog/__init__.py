"""
Thermal Watchdog

PID based fan control for IPMI platforms. Temperatures are polled through
ipmitool, each monitored sensor drives its own controller and the hottest
one dictates the fan speed.
"""

__version__ = "0.2.0"

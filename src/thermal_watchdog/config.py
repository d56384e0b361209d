"""
Configuration Module

Loads the YAML configuration file into typed settings. A missing file is
not an error: the controller then runs with the built-in defaults.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .control.loop import MonitoredPoint
from .control.pid import PIDTuning

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/thermal_watchdog.yaml"

# Written by the install command
DEFAULT_CONFIG_YAML = """\
#metrics:
#  influx_user: admin
#  influx_pw: influx
#  influx_addr: http://localhost:8086
#  influx_db: twd

pid:
  k_factor: 0.025
  i_factor: 0.000001
  d_factor: 0.0
  filter_points: 5
  integral_floor: 0.0
  min: 5

control:
  interval: 1.0

safety:
  exit_on_fault: false

controls:
  - name: Exhaust Temp
    setpoint: 40.0
    failsafe: 60.0
  - name: Temp
    setpoint: 55.0
    failsafe: 65.0
  - name: Temp
    setpoint: 55.0
    failsafe: 65.0
"""


@dataclass
class MetricsConfig:
    influx_addr: str
    influx_db: str
    influx_user: Optional[str] = None
    influx_pw: Optional[str] = None


@dataclass
class PIDConfig:
    """Controller tuning shared by all points"""
    k_factor: float = 0.05
    i_factor: float = 0.000001
    d_factor: float = 0.0
    filter_points: int = 5
    integral_floor: float = 0.0
    min: int = 0  # minimum fan speed, percent

    @property
    def min_speed(self) -> float:
        return self.min / 100.0

    def tuning(self) -> PIDTuning:
        return PIDTuning(
            k_factor=self.k_factor,
            i_factor=self.i_factor,
            d_factor=self.d_factor,
            filter_points=self.filter_points,
            integral_floor=self.integral_floor
        )


@dataclass
class IPMIConfig:
    host: str = "localhost"
    username: str = "ADMIN"
    password: str = "ADMIN"
    interface: str = "lanplus"


@dataclass
class ControlConfig:
    name: str
    setpoint: float
    failsafe: float


def default_controls() -> List[ControlConfig]:
    return [
        ControlConfig("Exhaust Temp", 40.0, 60.0),
        ControlConfig("Temp", 55.0, 65.0),
        ControlConfig("Temp", 55.0, 65.0),
    ]


@dataclass
class AppConfig:
    metrics: Optional[MetricsConfig] = None
    pid: PIDConfig = field(default_factory=PIDConfig)
    ipmi: IPMIConfig = field(default_factory=IPMIConfig)
    controls: List[ControlConfig] = field(default_factory=default_controls)
    interval: float = 1.0
    exit_on_fault: bool = False

    def monitored_points(self) -> List[MonitoredPoint]:
        tuning = self.pid.tuning()
        return [
            MonitoredPoint(c.name, c.setpoint, c.failsafe, tuning)
            for c in self.controls
        ]

    def apply_metrics_overrides(self, addr: Optional[str], db: Optional[str],
                                user: Optional[str] = None,
                                password: Optional[str] = None) -> None:
        """Enable metrics from command-line options.

        Both address and database are needed; user and password fall back
        to the values from the file.
        """
        if not addr or not db:
            return
        previous = self.metrics
        self.metrics = MetricsConfig(
            influx_addr=addr,
            influx_db=db,
            influx_user=user if user is not None else (previous.influx_user if previous else None),
            influx_pw=password if password is not None else (previous.influx_pw if previous else None)
        )


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    return section


def parse_config(data: Optional[Dict[str, Any]]) -> AppConfig:
    """Build an AppConfig from a decoded YAML document.

    Raises:
        ValueError: If a section or entry is malformed
    """
    if data is None:
        return AppConfig()
    if not isinstance(data, dict):
        raise ValueError("Config must be a mapping")

    config = AppConfig()
    try:
        metrics = data.get("metrics")
        if metrics:
            config.metrics = MetricsConfig(**_section(data, "metrics"))

        pid = _section(data, "pid")
        if pid:
            config.pid = PIDConfig(
                k_factor=float(pid.get("k_factor", config.pid.k_factor)),
                i_factor=float(pid.get("i_factor", config.pid.i_factor)),
                d_factor=float(pid.get("d_factor", config.pid.d_factor)),
                filter_points=int(pid.get("filter_points", config.pid.filter_points)),
                integral_floor=float(pid.get("integral_floor", config.pid.integral_floor)),
                min=int(pid.get("min", config.pid.min))
            )
            if not 0 <= config.pid.min <= 100:
                raise ValueError(f"Invalid min {config.pid.min}%, must be 0-100")
            if config.pid.filter_points < 1:
                raise ValueError(f"Invalid filter_points {config.pid.filter_points}, must be >= 1")

        ipmi = _section(data, "ipmi")
        if ipmi:
            config.ipmi = IPMIConfig(**ipmi)

        control = _section(data, "control")
        config.interval = float(control.get("interval", config.interval))
        if config.interval < 0:
            raise ValueError(f"Invalid interval {config.interval}, must be >= 0")

        safety = _section(data, "safety")
        config.exit_on_fault = bool(safety.get("exit_on_fault", config.exit_on_fault))

        controls = data.get("controls")
        if controls is not None:
            if not isinstance(controls, list):
                raise ValueError("'controls' must be a list")
            config.controls = [
                ControlConfig(
                    name=str(c["name"]),
                    setpoint=float(c["setpoint"]),
                    failsafe=float(c["failsafe"])
                )
                for c in controls
            ]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Invalid config entry: {e}")

    return config


def load_config(path: str = DEFAULT_CONFIG_PATH) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the configuration file

    Returns:
        Parsed configuration, defaults if the file does not exist

    Raises:
        ValueError: If the file is not valid YAML or has malformed entries
    """
    logger.info(f"Loading config file at {path}")

    if not os.path.exists(path):
        logger.info(f"Config file {path} not found, using defaults")
        return AppConfig()

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Unable to parse config file {path}: {e}")

    return parse_config(data)

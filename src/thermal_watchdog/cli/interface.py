"""
Command Line Interface Module

This module provides the command-line interface for running the
controller and installing it as a systemd service.
"""

import argparse
import logging
import os
import signal
import sys
from typing import List, Optional

from ..config import DEFAULT_CONFIG_PATH, DEFAULT_CONFIG_YAML, AppConfig, load_config
from ..control import ControlLoop, ControlManager
from ..errors import ActuatorError, ThermalWatchdogError
from ..ipmi import IPMICommander, SensorReader
from ..metrics import InfluxSink, TelemetryChannel
from ..metrics.system import host_tags

logger = logging.getLogger(__name__)

IPMITOOL_PATH = "/usr/bin/ipmitool"
SERVICE_PATH = "/etc/systemd/system/thermal_watchdog.service"
WATCHDOG_SEC = 10

SERVICE_TEMPLATE = """\
[Unit]
Description=Thermal Watchdog

[Service]
Type=notify
ExecStart={exec_start}
ExecStopPost={ipmitool} raw 0x30 0x30 0x01 0x01
Restart=on-failure
WatchdogSec={watchdog_sec}

[Install]
WantedBy=multi-user.target
"""


def setup_logging(debug: bool = False) -> None:
    """Configure process-wide logging"""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logging.getLogger("thermal_watchdog").setLevel(logging.DEBUG if debug else logging.INFO)
    # Keep HTTP client chatter out of debug output
    logging.getLogger("urllib3").setLevel(logging.INFO)


class CLI:
    """Command-line interface handler"""

    def __init__(self):
        """Initialize CLI handler"""
        self.parser = self._create_parser()
        self.manager: Optional[ControlManager] = None

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create command-line argument parser

        Returns:
            Configured argument parser
        """
        parser = argparse.ArgumentParser(
            prog="thermal-watchdog",
            description="Fan monitoring for IPMI based platforms. USE AT YOUR OWN RISK, "
                        "NO WARRANTY IS EXPRESSED OR IMPLIED!"
        )

        parser.add_argument(
            "-l", "--live",
            action="store_true",
            help="Enable IPMI control, by default the controller runs in shadow mode, "
                 "logging its output but taking no action"
        )

        parser.add_argument(
            "-c", "--config",
            help="Path to configuration file",
            default=DEFAULT_CONFIG_PATH
        )

        parser.add_argument("-a", "--influx-addr", help="InfluxDB server address")
        parser.add_argument("-u", "--influx-user", help="InfluxDB user")
        parser.add_argument("-p", "--influx-pw", help="InfluxDB password")
        parser.add_argument("-d", "--influx-db", help="InfluxDB database")

        parser.add_argument(
            "--debug",
            action="store_true",
            help="Enable debug logging"
        )

        subparsers = parser.add_subparsers(dest="command")
        subparsers.add_parser("install", help="Install Thermal Watchdog as systemd service")

        return parser

    def install(self, config_path: str = DEFAULT_CONFIG_PATH,
                service_path: str = SERVICE_PATH) -> bool:
        """Install the systemd unit and a default configuration.

        Existing files are left untouched.

        Returns:
            False if ipmitool is missing
        """
        if not os.path.exists(IPMITOOL_PATH):
            logger.error(f"Unable to find {IPMITOOL_PATH}, please install with \"apt install ipmitool\"")
            return False

        exec_start = f"{sys.executable} -m thermal_watchdog.cli.interface --live --config {config_path}"
        files = [
            (service_path, SERVICE_TEMPLATE.format(
                exec_start=exec_start, ipmitool=IPMITOOL_PATH, watchdog_sec=WATCHDOG_SEC
            )),
            (config_path, DEFAULT_CONFIG_YAML),
        ]
        for path, content in files:
            if os.path.exists(path):
                logger.info(f"Skipped installing {path} since it already exists")
                continue
            with open(path, "w") as f:
                f.write(content)
            logger.info(f"Installed {path}")
        return True

    def build_manager(self, config: AppConfig, live: bool) -> ControlManager:
        """Wire commander, telemetry, control loop and manager from config"""
        commander = IPMICommander(
            host=config.ipmi.host,
            username=config.ipmi.username,
            password=config.ipmi.password,
            interface=config.ipmi.interface
        )

        sink = None
        if config.metrics is not None:
            logger.info(f"Enabling metrics to {config.metrics.influx_addr}")
            sink = InfluxSink(
                config.metrics.influx_addr,
                config.metrics.influx_db,
                config.metrics.influx_user,
                config.metrics.influx_pw
            )
        telemetry = TelemetryChannel(sink, base_tags=host_tags())

        loop = ControlLoop(SensorReader(commander), telemetry)
        for point in config.monitored_points():
            loop.add_control(point)

        return ControlManager(
            loop,
            commander,
            telemetry,
            live=live,
            min_speed=config.pid.min_speed,
            interval=config.interval,
            exit_on_fault=config.exit_on_fault
        )

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Run the CLI interface

        Returns:
            Process exit status
        """
        args = self.parser.parse_args(argv)
        setup_logging(args.debug)

        if args.command == "install":
            return 0 if self.install() else 1

        try:
            config = load_config(args.config)
        except ValueError as e:
            logger.error(f"Error: {e}")
            return 1
        config.apply_metrics_overrides(
            args.influx_addr, args.influx_db, args.influx_user, args.influx_pw
        )
        if config.interval >= WATCHDOG_SEC:
            logger.warning(
                f"Control interval {config.interval}s reaches the {WATCHDOG_SEC}s service watchdog, "
                f"systemd will restart the service"
            )

        self.manager = self.build_manager(config, live=args.live)

        def signal_handler(signum, frame):
            logger.info("Signal received, stopping and resetting IPMI control")
            self.manager.stop()
        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        try:
            self.manager.run()
        except ActuatorError:
            # Manager already attempted to restore automatic control
            return 1
        except ThermalWatchdogError as e:
            logger.error(f"Stopping after control fault: {e}")
            self.manager.shutdown()
            return 1

        self.manager.shutdown()
        return 0


def main() -> None:
    """Main entry point"""
    cli = CLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()

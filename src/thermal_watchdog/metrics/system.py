"""Host level telemetry helpers."""

import logging
import socket
from typing import List, Tuple

import psutil

logger = logging.getLogger(__name__)

_process = psutil.Process()


def host_tags() -> List[Tuple[str, str]]:
    """Tags identifying this host, empty if the hostname is unavailable"""
    try:
        return [("hostname", socket.gethostname())]
    except OSError as e:
        logger.error(f"Unable to include hostname: {e}")
        return []


def get_proc_usage() -> float:
    """CPU usage of this process since the previous call, in percent"""
    return _process.cpu_percent(interval=None)

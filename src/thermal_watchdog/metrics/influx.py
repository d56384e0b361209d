"""InfluxDB HTTP sink for telemetry batches."""

import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)


class InfluxSink:
    """Posts line protocol payloads to an InfluxDB /write endpoint"""

    TIMEOUT = 5

    def __init__(self, addr: str, db: str, user: Optional[str] = None,
                 password: Optional[str] = None, timeout: float = TIMEOUT):
        """Initialize sink

        Args:
            addr: Server base URL, e.g. "http://localhost:8086"
            db: Database name
            user: Optional user name
            password: Optional password
            timeout: Request timeout in seconds
        """
        self.url = f"{addr.rstrip('/')}/write"
        self.params = {"db": db}
        if user is not None:
            self.params["u"] = user
        if password is not None:
            self.params["p"] = password
        self.timeout = timeout

    def submit(self, payload: str) -> None:
        """Send one batch. Failures are logged, never raised."""
        try:
            resp = requests.post(
                self.url,
                params=self.params,
                data=payload.encode("utf-8"),
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Unable to submit metrics: {e}")
            return

        if 200 <= resp.status_code < 300:
            logger.debug("Successful metrics submission")
        else:
            logger.error(f"Failed to submit metrics, server returned {resp.status_code} code: {resp.text}")

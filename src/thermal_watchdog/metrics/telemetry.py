"""
Telemetry Channel Module

This module formats telemetry samples as InfluxDB line protocol and ships
them from a background worker so the control loop never waits on the
network.

The worker blocks until a sample arrives, then drains every sample that is
already queued and submits them as one newline-joined batch. A shutdown
event stops the worker without draining anything queued after it.
"""

import logging
import math
import queue
import threading
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

MEASUREMENT = "thermal_watchdog"


@dataclass(frozen=True)
class TelemetrySample:
    """Immutable set of numeric fields with identifying tags.

    Attributes:
        fields: (field name, value) pairs
        tags: (tag name, tag value) pairs
    """
    fields: Tuple[Tuple[str, float], ...]
    tags: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def create(cls, fields: Iterable[Tuple[str, float]],
               tags: Iterable[Tuple[str, str]] = ()) -> "TelemetrySample":
        return cls(
            tuple((name, float(value)) for name, value in fields),
            tuple((name, str(value)) for name, value in tags)
        )


class _Shutdown:
    """Queue marker telling the worker to exit"""


_SHUTDOWN = _Shutdown()


def escape(text: str) -> str:
    """Escape line protocol separators in a name, tag key or tag value"""
    return text.replace("\\", "\\\\").replace(",", "\\,").replace("=", "\\=").replace(" ", "\\ ")


def format_line(sample: TelemetrySample, measurement: str = MEASUREMENT,
                base_tags: Sequence[Tuple[str, str]] = ()) -> Optional[str]:
    """Serialize a sample as one line protocol record.

    NaN and infinite values are rejected by InfluxDB, such fields are
    skipped. Returns None when no field is left.

    Examples:
        >>> format_line(TelemetrySample.create([("fan speed", 0.5)], [("sensor", "CPU Temp")]))
        'thermal_watchdog,sensor=CPU\\\\ Temp fan\\\\ speed=0.5'
    """
    tags = "".join(
        f",{escape(name)}={escape(value)}"
        for name, value in list(base_tags) + list(sample.tags)
    )
    finite = [(name, value) for name, value in sample.fields if math.isfinite(value)]
    if len(finite) < len(sample.fields):
        logger.warning(f"Skipping non-finite metric fields in {sample.fields}")
    if not finite:
        return None
    fields = ",".join(f"{escape(name)}={value!r}" for name, value in finite)
    return f"{escape(measurement)}{tags} {fields}"


class LogSink:
    """Sink used when no telemetry endpoint is configured"""

    def submit(self, payload: str) -> None:
        for line in payload.splitlines():
            logger.debug(f"Metric: {line}")


class TelemetryChannel:
    """Non-blocking handle for submitting telemetry samples"""

    def __init__(self, sink=None, base_tags: Sequence[Tuple[str, str]] = (),
                 measurement: str = MEASUREMENT):
        """Initialize channel and start the background worker

        Args:
            sink: Object with a ``submit(payload: str)`` method, None to log samples
            base_tags: Tags added to every sample (e.g. hostname)
            measurement: Line protocol measurement name
        """
        self.sink = sink if sink is not None else LogSink()
        self.base_tags = tuple(base_tags)
        self.measurement = measurement
        self._queue: "queue.Queue" = queue.Queue()
        self._closed = threading.Event()
        # Orders samples against the shutdown marker
        self._lock = threading.Lock()
        self._worker = threading.Thread(
            target=self._run,
            name="telemetry-worker",
            daemon=True
        )
        self._worker.start()

    @property
    def running(self) -> bool:
        return self._worker.is_alive() and not self._closed.is_set()

    def send(self, sample: TelemetrySample) -> bool:
        """Queue a sample for delivery without blocking.

        Returns:
            False if the channel is shut down and the sample was dropped
        """
        with self._lock:
            if self.running:
                self._queue.put_nowait(sample)
                return True
        logger.warning(f"Telemetry channel closed, dropping sample {sample.fields}")
        return False

    def report(self, fields: Iterable[Tuple[str, float]],
               tags: Iterable[Tuple[str, str]] = ()) -> bool:
        """Build a sample from fields and tags and queue it"""
        return self.send(TelemetrySample.create(fields, tags))

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Signal the worker to stop and wait for it"""
        with self._lock:
            if self._closed.is_set():
                return
            self._closed.set()
            self._queue.put(_SHUTDOWN)
        self._worker.join(timeout)
        if self._worker.is_alive():
            logger.warning("Telemetry worker did not stop in time")

    def _drain(self, first) -> Tuple[List[TelemetrySample], bool]:
        """Collect the first event and everything already queued behind it"""
        batch: List[TelemetrySample] = []
        event = first
        while True:
            if event is _SHUTDOWN:
                return batch, True
            batch.append(event)
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return batch, False

    def _run(self) -> None:
        logger.debug("Telemetry worker started")
        while True:
            batch, shutdown = self._drain(self._queue.get())
            if batch:
                self._deliver(batch)
            if shutdown:
                break
        logger.debug("Telemetry worker stopped")

    def _deliver(self, batch: List[TelemetrySample]) -> None:
        lines = [format_line(sample, self.measurement, self.base_tags) for sample in batch]
        lines = [line for line in lines if line is not None]
        if not lines:
            return
        payload = "\n".join(lines)
        logger.debug(f"Submitting {len(lines)} metrics")
        try:
            self.sink.submit(payload)
        except Exception as e:
            logger.error(f"Unable to submit metrics: {e}")

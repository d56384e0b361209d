"""PID controller with anti-windup and a smoothed derivative."""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional, Sequence, Tuple

from ..metrics.telemetry import TelemetryChannel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PIDTuning:
    """Controller gains and filter settings.

    Attributes:
        k_factor: Proportional gain
        i_factor: Integral gain
        d_factor: Derivative gain
        filter_points: Number of slopes summed for the derivative
        integral_floor: Lowest value the integral accumulator may reach
    """
    k_factor: float
    i_factor: float
    d_factor: float
    filter_points: int = 5
    integral_floor: float = 0.0

    def __post_init__(self):
        if self.filter_points < 1:
            raise ValueError(f"filter_points must be >= 1, got {self.filter_points}")


class ControllerState:
    """Integral accumulator and derivative window of one controller"""

    def __init__(self, filter_points: int, integral_floor: float = 0.0):
        self.integral_floor = integral_floor
        self.i_acc = max(0.0, integral_floor)
        # (elapsed, error) samples, oldest dropped automatically
        self.samples: Deque[Tuple[float, float]] = deque(maxlen=filter_points + 1)

    def accumulate(self, error: float, elapsed: float) -> float:
        self.i_acc = max(self.i_acc + error * elapsed, self.integral_floor)
        return self.i_acc

    def derivative(self, error: float, elapsed: float) -> float:
        """Record a sample and return the summed slope over the window"""
        self.samples.append((elapsed, error))
        if elapsed <= 0 or len(self.samples) < 2:
            return 0.0

        d_acc = 0.0
        prev_error = None
        for sample_elapsed, sample_error in self.samples:
            if prev_error is not None and sample_elapsed > 0:
                d_acc += (sample_error - prev_error) / sample_elapsed
            prev_error = sample_error
        return d_acc

    def snapshot(self) -> Tuple[float, Tuple[Tuple[float, float], ...]]:
        return self.i_acc, tuple(self.samples)


class PIDController:
    """Converts a process measurement into a fan demand.

    Positive error means the measurement is above the setpoint, so a
    hotter sensor produces a larger output.
    """

    def __init__(self, setpoint: float, tuning: PIDTuning,
                 telemetry: Optional[TelemetryChannel] = None,
                 tags: Sequence[Tuple[str, str]] = ()):
        """Initialize controller

        Args:
            setpoint: Target process value
            tuning: Gains and filter settings
            telemetry: Channel receiving the P, I and D terms of every update
            tags: Identity tags attached to every telemetry sample
        """
        self.setpoint = setpoint
        self.tuning = tuning
        self.telemetry = telemetry
        self.tags = tuple(tags)
        self.state = ControllerState(tuning.filter_points, tuning.integral_floor)

    def update(self, measurement: float, elapsed: float) -> float:
        """Advance the controller by one sample.

        Args:
            measurement: Latest process value
            elapsed: Time since the previous update, milliseconds

        Returns:
            Controller output
        """
        error = measurement - self.setpoint
        i_acc = self.state.accumulate(error, elapsed)
        d_acc = self.state.derivative(error, elapsed)

        p = error * self.tuning.k_factor
        i = i_acc * self.tuning.i_factor
        d = d_acc * self.tuning.d_factor
        output = p + i + d

        logger.debug(
            f"PID update ({error},{i_acc},{d_acc}) "
            f"({self.tuning.k_factor},{self.tuning.i_factor},{self.tuning.d_factor}) "
            f"= ({p},{i},{d})"
        )

        if self.telemetry is not None:
            self.telemetry.report(
                [("p", p), ("i", i), ("d", d), ("output", output)],
                self.tags
            )

        return output

"""
Latency compensation.

Telemetry describes where the vehicle was when the frame was produced.
By the time the new command takes effect the vehicle has kept moving
under the previous command for the combined transport, solve and
actuator delay. The compensator measures that delay as the wall-clock
time between consecutive cycles and advances the measured state with
the kinematic model before it becomes the NLP's initial condition.
"""

import logging
import time
from typing import Callable

from .dynamics import KinematicModel, VehicleState

logger = logging.getLogger(__name__)


class LatencyCompensator:
    """
    Args:
        model: Kinematic model used for the forward prediction
        clock: Monotonic time source in seconds
        max_latency: Upper bound on the applied latency (seconds). Keeps
            the first cycle after a long idle period from extrapolating
            far beyond the model's validity.
    """

    def __init__(self, model: KinematicModel,
                 clock: Callable[[], float] = time.monotonic,
                 max_latency: float = 1.0):
        if max_latency < 0:
            raise ValueError(f"max_latency must be >= 0, got {max_latency}")
        self.model = model
        self.max_latency = max_latency
        self._clock = clock
        self._last_time = clock()
        self.latency = 0.0

    def reset(self):
        """Restart the latency measurement from now."""
        self._last_time = self._clock()
        self.latency = 0.0

    def compensate(self, state: VehicleState, delta: float,
                   a: float) -> VehicleState:
        """
        Advance state by the time elapsed since the previous cycle.

        Args:
            state: Measured state
            delta: Previously issued steering in the model convention
            a: Previously issued throttle/brake

        Returns:
            Predicted state at the time the new command applies
        """
        now = self._clock()
        elapsed = max(0.0, now - self._last_time)
        self._last_time = now

        if elapsed > self.max_latency:
            logger.debug("Latency %.3f s capped at %.3f s", elapsed, self.max_latency)
            elapsed = self.max_latency
        self.latency = elapsed

        return self.model.step(state, delta, a, elapsed)

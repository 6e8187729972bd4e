"""
Error taxonomy for the MPC control cycle.

Every error here is recoverable at control-cycle granularity: the caller
drops the cycle and the next telemetry frame starts fresh.
"""

from typing import Optional


class MPCError(Exception):
    """Base class for all control-cycle failures."""


class InsufficientWaypoints(MPCError, ValueError):
    """Fewer waypoints than the polynomial fit needs (degree + 1)."""

    def __init__(self, received: int, required: int):
        self.received = received
        self.required = required
        super().__init__(
            f"Need at least {required} waypoints, got {received}")


class SolverNonConvergence(MPCError):
    """The NLP solver terminated without reaching its success status."""

    def __init__(self, message: str, status: Optional[str] = None):
        self.status = status
        if status:
            message = f"{message} (status: {status})"
        super().__init__(message)


class NumericDegeneracy(SolverNonConvergence):
    """Non-finite values from the polynomial fit, kinematics or optimizer."""

    def __init__(self, message: str):
        super().__init__(message, status='Numeric_Degeneracy')

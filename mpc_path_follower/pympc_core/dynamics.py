"""
Kinematic bicycle model.

State: [x, y, psi, v, cte, epsi]
  x, y  - position
  psi   - heading
  v     - speed
  cte   - cross-track error
  epsi  - heading error

Actuation: [delta, a]
  delta - steering angle (positive = counter-clockwise)
  a     - normalised throttle/brake, used directly as acceleration

Discrete update over dt:
    x'   = x + v * cos(psi) * dt
    y'   = y + v * sin(psi) * dt
    psi' = psi + v / Lf * delta * dt
    v'   = v + a * dt

The same propagate() is used numerically for latency compensation and
symbolically (CasADi SX) inside the horizon constraints.
"""

from dataclasses import dataclass, replace

import numpy as np
import casadi as ca

from .errors import NumericDegeneracy

# Distance from the front axle to the centre of gravity
LF = 2.67


@dataclass(frozen=True)
class VehicleState:
    """Vehicle state as seen by the NLP (cte/epsi filled after fitting)."""
    x: float = 0.0
    y: float = 0.0
    psi: float = 0.0
    v: float = 0.0
    cte: float = 0.0
    epsi: float = 0.0

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.psi, self.v, self.cte, self.epsi])

    @classmethod
    def from_array(cls, values) -> 'VehicleState':
        values = np.asarray(values, dtype=np.float64)
        if values.shape != (6,):
            raise ValueError(f"Expected 6 state values, got shape {values.shape}")
        return cls(*(float(v) for v in values))

    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self.as_array())))


def is_symbolic(*values) -> bool:
    return any(isinstance(v, (ca.SX, ca.MX)) for v in values)


class KinematicModel:
    """
    Kinematic bicycle approximation (no tyre or force dynamics).

    Args:
        lf: distance from the front axle to the centre of gravity
    """

    def __init__(self, lf: float = LF):
        if lf <= 0:
            raise ValueError(f"lf must be positive, got {lf}")
        self.lf = lf

    def propagate(self, x, y, psi, v, delta, a, dt):
        """Advance (x, y, psi, v) one step. Works on floats and CasADi symbols."""
        if is_symbolic(x, y, psi, v, delta, a):
            cos, sin = ca.cos, ca.sin
        else:
            cos, sin = np.cos, np.sin
        return (
            x + v * cos(psi) * dt,
            y + v * sin(psi) * dt,
            psi + v / self.lf * delta * dt,
            v + a * dt,
        )

    def step(self, state: VehicleState, delta: float, a: float,
             dt: float) -> VehicleState:
        """Numeric step of a VehicleState; cte and epsi are carried unchanged."""
        x, y, psi, v = self.propagate(
            state.x, state.y, state.psi, state.v, delta, a, dt)
        next_state = replace(
            state, x=float(x), y=float(y), psi=float(psi), v=float(v))
        if not next_state.is_finite():
            raise NumericDegeneracy(
                f"Kinematic step produced non-finite state {next_state}")
        return next_state

    def rollout(self, state: VehicleState, controls, dt: float) -> np.ndarray:
        """
        Simulate a control sequence.

        Args:
            state: Initial state
            controls: Sequence of (delta, a) pairs [M, 2]
            dt: Step length

        Returns:
            States trajectory [M+1, 6]
        """
        controls = np.asarray(controls, dtype=np.float64).reshape(-1, 2)
        states = np.zeros((len(controls) + 1, 6))
        states[0] = state.as_array()
        for k, (delta, a) in enumerate(controls):
            state = self.step(state, delta, a, dt)
            states[k + 1] = state.as_array()
        return states

"""
Horizon problem builder: decision-vector layout, cost and constraints.

The decision vector z over a horizon of N steps holds contiguous blocks

    [x(N), y(N), psi(N), v(N), cte(N), epsi(N), delta(N-1), a(N-1)]

HorizonLayout is the only place that knows these offsets. Everything
else reads and writes z through HorizonTrajectory, a struct-of-arrays
view keyed by step index, so the bounds arrays, the initial guess and
the symbolic vector handed to the solver share one layout.

The constraint vector has length 6N:
    g[0:6]               initial state block (pinned through equal bounds)
    g[6 + 6(t-1) + c]    residual of state channel c at step t = 1..N-1,
                         decision value minus model prediction (must be 0)

horizon_cost() and horizon_constraints() are generic over numpy and
CasADi SX. HorizonModel builds the symbolic NLP once per configuration
with the polynomial coefficients and cost weights as NLP parameters;
CasADi differentiates it exactly for the gradient-based solver.
"""

from dataclasses import dataclass, field, fields
from typing import Any, List, Sequence, Tuple

import numpy as np
import casadi as ca

from .dynamics import KinematicModel, VehicleState, is_symbolic
from .reference_polynomial import ReferencePolynomial, polyeval, polyderiv

STATE_KINDS = ('x', 'y', 'psi', 'v', 'cte', 'epsi')
ACTUATION_KINDS = ('delta', 'a')
N_STATES = len(STATE_KINDS)
N_WEIGHTS = 7


@dataclass(frozen=True)
class CostWeights:
    """Weights of the 7 cost terms. Set once at startup, read by every solve."""
    cte: float = 2.0
    epsi: float = 10.0
    speed: float = 5.0
    steering: float = 3000.0
    throttle: float = 100.0
    steering_rate: float = 500.0
    throttle_rate: float = 100.0

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not np.isfinite(value) or value < 0:
                raise ValueError(
                    f"Cost weight '{f.name}' must be finite and >= 0, got {value}")

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> 'CostWeights':
        """Ordered values; missing trailing values keep their defaults."""
        values = list(values)
        names = [f.name for f in fields(cls)]
        if len(values) > len(names):
            raise ValueError(
                f"At most {len(names)} cost weights allowed, got {len(values)}")
        return cls(**{name: float(v) for name, v in zip(names, values)})

    def as_tuple(self) -> Tuple[float, ...]:
        return tuple(float(getattr(self, f.name)) for f in fields(self))


@dataclass
class HorizonTrajectory:
    """Per-kind arrays over the horizon (numpy arrays or CasADi SX columns)."""
    x: Any
    y: Any
    psi: Any
    v: Any
    cte: Any
    epsi: Any
    delta: Any
    a: Any

    def state_at(self, t: int) -> Tuple:
        return tuple(getattr(self, kind)[t] for kind in STATE_KINDS)


@dataclass(frozen=True)
class HorizonLayout:
    """Index layout of the decision vector for a horizon of n_steps states."""
    n_steps: int
    _blocks: dict = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.n_steps < 2:
            raise ValueError(f"Horizon needs at least 2 steps, got {self.n_steps}")
        blocks = {}
        start = 0
        for kind in STATE_KINDS + ACTUATION_KINDS:
            length = self.n_steps if kind in STATE_KINDS else self.n_steps - 1
            blocks[kind] = slice(start, start + length)
            start += length
        object.__setattr__(self, '_blocks', blocks)

    @property
    def n_vars(self) -> int:
        return N_STATES * self.n_steps + len(ACTUATION_KINDS) * (self.n_steps - 1)

    @property
    def n_constraints(self) -> int:
        return N_STATES * self.n_steps

    def block(self, kind: str) -> slice:
        return self._blocks[kind]

    def index(self, kind: str, t: int) -> int:
        block = self._blocks[kind]
        length = block.stop - block.start
        if not 0 <= t < length:
            raise IndexError(f"Step {t} out of range for '{kind}' (length {length})")
        return block.start + t

    def initial_state_indices(self) -> List[int]:
        return [self.index(kind, 0) for kind in STATE_KINDS]

    def split(self, z) -> HorizonTrajectory:
        if z.shape[0] != self.n_vars:
            raise ValueError(
                f"Decision vector has {z.shape[0]} entries, layout needs {self.n_vars}")
        return HorizonTrajectory(**{kind: z[self._blocks[kind]]
                                    for kind in STATE_KINDS + ACTUATION_KINDS})

    def pack(self, trajectory: HorizonTrajectory) -> np.ndarray:
        z = np.zeros(self.n_vars)
        for kind, block in self._blocks.items():
            z[block] = np.asarray(getattr(trajectory, kind), dtype=np.float64)
        return z


def horizon_cost(traj: HorizonTrajectory, weights: Sequence,
                 reference_velocity: float):
    """Weighted sum of tracking, actuation and actuation-rate terms."""
    w = weights
    n_steps = traj.x.shape[0]
    cost = 0.0

    # Tracking error and speed deviation
    for t in range(n_steps):
        cost += w[0] * traj.cte[t] ** 2
        cost += w[1] * traj.epsi[t] ** 2
        cost += w[2] * (traj.v[t] - reference_velocity) ** 2

    # Actuation magnitude
    for t in range(n_steps - 1):
        cost += w[3] * traj.delta[t] ** 2
        cost += w[4] * traj.a[t] ** 2

    # Actuation rate
    for t in range(n_steps - 2):
        cost += w[5] * (traj.delta[t + 1] - traj.delta[t]) ** 2
        cost += w[6] * (traj.a[t + 1] - traj.a[t]) ** 2

    return cost


def horizon_constraints(traj: HorizonTrajectory, coeffs: Sequence,
                        model: KinematicModel, dt: float):
    """Initial state block followed by the dynamics residuals of steps 1..N-1."""
    symbolic = is_symbolic(traj.x)
    sin = ca.sin if symbolic else np.sin
    atan = ca.atan if symbolic else np.arctan

    g = list(traj.state_at(0))
    for t in range(1, traj.x.shape[0]):
        x0, y0, psi0, v0, cte0, epsi0 = traj.state_at(t - 1)
        x1, y1, psi1, v1, cte1, epsi1 = traj.state_at(t)
        delta0 = traj.delta[t - 1]
        a0 = traj.a[t - 1]

        f0 = polyeval(coeffs, x0)
        psides0 = atan(polyderiv(coeffs, x0))
        x_pred, y_pred, psi_pred, v_pred = model.propagate(
            x0, y0, psi0, v0, delta0, a0, dt)

        g.append(x1 - x_pred)
        g.append(y1 - y_pred)
        g.append(psi1 - psi_pred)
        g.append(v1 - v_pred)
        g.append(cte1 - ((f0 - y0) + v0 * sin(epsi0) * dt))
        g.append(epsi1 - ((psi0 - psides0) + v0 / model.lf * delta0 * dt))

    if symbolic:
        return ca.vertcat(*g)
    return np.array([float(v) for v in g])


class HorizonModel:
    """
    Symbolic NLP over one horizon, built once per configuration.

    Parameters p = [coeffs (order+1), weights (7)] are supplied per solve,
    so the expression graph and its derivatives are reused across cycles.
    """

    def __init__(self, n_steps: int = 8, dt: float = 0.1,
                 lf: float = 2.67, reference_velocity: float = 50.0,
                 order: int = 3):
        self.layout = HorizonLayout(n_steps)
        self.dt = dt
        self.reference_velocity = reference_velocity
        self.order = order
        self.kinematics = KinematicModel(lf)
        self.n_params = order + 1 + N_WEIGHTS

        z = ca.SX.sym('z', self.layout.n_vars)
        p = ca.SX.sym('p', self.n_params)
        coeffs = [p[i] for i in range(order + 1)]
        weights = [p[order + 1 + i] for i in range(N_WEIGHTS)]

        traj = self.layout.split(z)
        f = horizon_cost(traj, weights, reference_velocity)
        g = horizon_constraints(traj, coeffs, self.kinematics, dt)

        self.nlp = {'x': z, 'p': p, 'f': f, 'g': g}
        self.cost_fn = ca.Function('horizon_cost', [z, p], [f])
        self.constraints_fn = ca.Function('horizon_constraints', [z, p], [g])
        self.gradient_fn = ca.Function(
            'horizon_cost_gradient', [z, p], [ca.gradient(f, z)])
        self.jacobian_fn = ca.Function(
            'horizon_constraints_jacobian', [z, p], [ca.jacobian(g, z)])


@dataclass(frozen=True)
class HorizonProblem:
    """Everything one solve needs; built fresh each cycle, never mutated."""
    model: HorizonModel
    initial_state: VehicleState
    polynomial: ReferencePolynomial
    weights: CostWeights

    def __post_init__(self):
        if self.polynomial.order != self.model.order:
            raise ValueError(
                f"Polynomial order {self.polynomial.order} does not match "
                f"model order {self.model.order}")

    @property
    def layout(self) -> HorizonLayout:
        return self.model.layout

    def parameters(self) -> np.ndarray:
        return np.concatenate([self.polynomial.as_array(),
                               np.array(self.weights.as_tuple())])

    def initial_guess(self) -> np.ndarray:
        """Zeros everywhere except the initial state block."""
        z = np.zeros(self.layout.n_vars)
        z[self.layout.initial_state_indices()] = self.initial_state.as_array()
        return z

    def objective(self, z) -> float:
        return float(self.model.cost_fn(z, self.parameters()))

    def constraints(self, z) -> np.ndarray:
        return self.model.constraints_fn(z, self.parameters()).full().ravel()

    def gradient(self, z) -> np.ndarray:
        return self.model.gradient_fn(z, self.parameters()).full().ravel()

    def jacobian(self, z) -> np.ndarray:
        return self.model.jacobian_fn(z, self.parameters()).full()

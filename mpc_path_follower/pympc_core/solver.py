"""
MPC Solver - receding-horizon NLP solved by IPOPT through CasADi.

The symbolic problem (HorizonModel) is built once per solver; each
solve() supplies a fresh, immutable HorizonProblem carrying the current
state, the fitted reference polynomial and the cost weights.

Key features:
- Initial state pinned through equal constraint bounds, not eliminated
- Exact symbolic gradient and Jacobian (CasADi SX)
- Hard time budget: IPOPT max_cpu_time and max_wall_time
- Non-convergence raised as SolverNonConvergence, never replaced by
  zero or stale actuation
"""

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np
import casadi as ca

from .dynamics import VehicleState
from .errors import NumericDegeneracy, SolverNonConvergence
from .horizon import (
    ACTUATION_KINDS, CostWeights, HorizonLayout, HorizonModel, HorizonProblem,
    STATE_KINDS,
)
from .reference_polynomial import ReferencePolynomial

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MPCConfig:
    """MPC solver configuration."""
    # Horizon
    horizon: int = 8
    dt: float = 0.1

    # Vehicle
    lf: float = 2.67
    reference_velocity: float = 50.0
    max_steering: float = math.radians(25.0)
    max_acceleration: float = 1.0
    state_bound: float = 1.0e19

    # Reference polynomial degree
    polynomial_order: int = 3

    # Cost weights
    weights: CostWeights = field(default_factory=CostWeights)

    # Solver
    max_cpu_time: float = 0.05
    max_iter: int = 200
    tolerance: float = 1e-6


@dataclass
class MPCResult:
    """First-step actuation and predicted trajectory of a successful solve."""
    steering: float = 0.0
    acceleration: float = 0.0
    predicted_x: np.ndarray = field(default_factory=lambda: np.zeros(0))
    predicted_y: np.ndarray = field(default_factory=lambda: np.zeros(0))
    cost: float = float('inf')
    status: str = ''
    solve_time: float = 0.0


@dataclass
class NLPSolution:
    """Raw solver outcome: status plus the optimized decision vector."""
    success: bool
    status: str
    z: np.ndarray
    cost: float = float('inf')
    iterations: int = 0
    solve_time: float = 0.0


def extract_actuation(layout: HorizonLayout, z: np.ndarray) -> MPCResult:
    """Read step-0 actuation and the predicted x/y of steps 1..N-1."""
    traj = layout.split(np.asarray(z, dtype=np.float64))
    return MPCResult(
        steering=float(traj.delta[0]),
        acceleration=float(traj.a[0]),
        predicted_x=np.array(traj.x[1:]),
        predicted_y=np.array(traj.y[1:]),
    )


class MPCSolver:
    """
    Receding-horizon MPC over a local polynomial reference.

    One instance per vehicle session. The IPOPT instance is created once
    in __init__; nothing from one solve carries into the next.
    """

    def __init__(self, config: Optional[MPCConfig] = None):
        self.config = config if config is not None else MPCConfig()
        cfg = self.config
        self.model = HorizonModel(
            n_steps=cfg.horizon, dt=cfg.dt, lf=cfg.lf,
            reference_velocity=cfg.reference_velocity,
            order=cfg.polynomial_order)
        self.layout = self.model.layout
        self._lbx, self._ubx = self.variable_bounds()
        self._nlpsol = self._build_solver()

    def _build_solver(self):
        cfg = self.config
        opts = {
            'ipopt.print_level': 0,
            'print_time': 0,
            'ipopt.sb': 'yes',
            'ipopt.max_iter': cfg.max_iter,
            'ipopt.tol': cfg.tolerance,
            'ipopt.max_cpu_time': cfg.max_cpu_time,
            'ipopt.max_wall_time': cfg.max_cpu_time,
            'ipopt.honor_original_bounds': 'yes',
            'error_on_fail': False,
        }
        return ca.nlpsol('mpc_horizon', 'ipopt', self.model.nlp, opts)

    def variable_bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """States unbounded, steering to the lock angle, throttle to [-1, 1]."""
        cfg = self.config
        lbx = np.full(self.layout.n_vars, -cfg.state_bound)
        ubx = np.full(self.layout.n_vars, cfg.state_bound)
        limits = {
            'delta': cfg.max_steering,
            'a': cfg.max_acceleration,
        }
        for kind in ACTUATION_KINDS:
            block = self.layout.block(kind)
            lbx[block] = -limits[kind]
            ubx[block] = limits[kind]
        return lbx, ubx

    def constraint_bounds(self, state: VehicleState) -> Tuple[np.ndarray, np.ndarray]:
        """Zero for all dynamics residuals, equal to the state for the initial block."""
        lbg = np.zeros(self.layout.n_constraints)
        ubg = np.zeros(self.layout.n_constraints)
        lbg[:len(STATE_KINDS)] = state.as_array()
        ubg[:len(STATE_KINDS)] = state.as_array()
        return lbg, ubg

    def build_problem(self, state: VehicleState,
                      polynomial: ReferencePolynomial) -> HorizonProblem:
        return HorizonProblem(
            model=self.model, initial_state=state,
            polynomial=polynomial, weights=self.config.weights)

    def optimize(self, problem: HorizonProblem) -> NLPSolution:
        """Run IPOPT on one horizon problem. Never raises on solver failure."""
        lbg, ubg = self.constraint_bounds(problem.initial_state)
        x0 = problem.initial_guess()

        t_start = time.perf_counter()
        try:
            sol = self._nlpsol(
                x0=x0, p=problem.parameters(),
                lbx=self._lbx, ubx=self._ubx, lbg=lbg, ubg=ubg)
        except RuntimeError as e:
            elapsed = time.perf_counter() - t_start
            logger.warning("IPOPT raised during solve: %s", e)
            return NLPSolution(success=False, status='Solver_Exception',
                               z=x0, solve_time=elapsed)
        elapsed = time.perf_counter() - t_start

        stats = self._nlpsol.stats()
        return NLPSolution(
            success=bool(stats.get('success', False)),
            status=str(stats.get('return_status', 'Unknown')),
            z=sol['x'].full().ravel(),
            cost=float(sol['f']),
            iterations=int(stats.get('iter_count', 0)),
            solve_time=elapsed,
        )

    def solve(self, state: VehicleState,
              polynomial: ReferencePolynomial) -> MPCResult:
        """
        Solve the horizon problem starting from state.

        Args:
            state: Vehicle-frame state [x, y, psi, v, cte, epsi]
            polynomial: Local reference curve

        Returns:
            MPCResult with first-step steering/acceleration and the
            predicted trajectory

        Raises:
            NumericDegeneracy: non-finite state, coefficients or solution
            SolverNonConvergence: IPOPT did not reach success (infeasible,
                iteration limit or time budget exceeded)
        """
        if not state.is_finite():
            raise NumericDegeneracy(f"Initial state is not finite: {state}")
        if not np.all(np.isfinite(polynomial.as_array())):
            raise NumericDegeneracy("Reference polynomial is not finite")

        problem = self.build_problem(state, polynomial)
        solution = self.optimize(problem)
        logger.debug("IPOPT %s after %d iterations in %.1f ms",
                     solution.status, solution.iterations,
                     solution.solve_time * 1000.0)

        if not solution.success:
            logger.warning("MPC solve failed: %s (%.1f ms)",
                           solution.status, solution.solve_time * 1000.0)
            raise SolverNonConvergence("MPC solve did not converge",
                                       status=solution.status)
        if not np.all(np.isfinite(solution.z)):
            raise NumericDegeneracy("Solver returned a non-finite decision vector")

        result = extract_actuation(self.layout, solution.z)
        # IPOPT relaxes bounds internally; report actuation inside the limits
        result.steering = float(np.clip(
            result.steering, -self.config.max_steering, self.config.max_steering))
        result.acceleration = float(np.clip(
            result.acceleration, -self.config.max_acceleration,
            self.config.max_acceleration))
        result.cost = solution.cost
        result.status = solution.status
        result.solve_time = solution.solve_time
        return result

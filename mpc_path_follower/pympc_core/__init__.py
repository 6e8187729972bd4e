"""
PyMPC Core - receding-horizon MPC for polynomial path following.

Key components:
- KinematicModel: bicycle kinematics, numeric and CasADi-symbolic
- world_to_vehicle / vehicle_to_world: waypoint frame transform
- ReferencePolynomial: QR least-squares polynomial reference curve
- HorizonLayout / HorizonModel / HorizonProblem: NLP layout, cost, constraints
- MPCSolver: IPOPT (CasADi nlpsol) with a hard time budget
- LatencyCompensator: forward prediction over the measured cycle delay
"""

from .dynamics import KinematicModel, VehicleState
from .errors import (
    InsufficientWaypoints, MPCError, NumericDegeneracy, SolverNonConvergence,
)
from .frame_transform import vehicle_to_world, world_to_vehicle
from .horizon import CostWeights, HorizonLayout, HorizonModel, HorizonProblem
from .latency import LatencyCompensator
from .reference_polynomial import ReferencePolynomial, polyeval, polyfit
from .solver import MPCConfig, MPCResult, MPCSolver, NLPSolution, extract_actuation

__all__ = [
    'KinematicModel',
    'VehicleState',
    'MPCError',
    'InsufficientWaypoints',
    'SolverNonConvergence',
    'NumericDegeneracy',
    'world_to_vehicle',
    'vehicle_to_world',
    'CostWeights',
    'HorizonLayout',
    'HorizonModel',
    'HorizonProblem',
    'LatencyCompensator',
    'ReferencePolynomial',
    'polyfit',
    'polyeval',
    'MPCConfig',
    'MPCResult',
    'MPCSolver',
    'NLPSolution',
    'extract_actuation',
]

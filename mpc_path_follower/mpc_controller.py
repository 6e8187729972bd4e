#!/usr/bin/env python3
"""
MPC Controller - receding-horizon steering/throttle for path following

One control cycle, strictly sequential:
  telemetry -> latency compensation -> waypoints into the vehicle frame
  -> cubic fit (cte, epsi) -> NLP solve -> first-step actuation

Failures (InsufficientWaypoints, SolverNonConvergence, NumericDegeneracy)
propagate out of MPCController.step(); the transport side decides the
safe fallback. Each vehicle session owns its own MPCController.

Usage:
    mpc_controller [WEIGHT ...] [--config controller.yaml] [--log-level DEBUG]

    WEIGHT overrides the cost weights in order:
    cte epsi speed steering throttle steering_rate throttle_rate

Protocol:
    Reads simulator text frames ('42["telemetry",{...}]') line by line on
    stdin and writes one reply frame per telemetry frame to stdout.
    The simulator itself talks over a websocket (port 4567), so run this
    behind a websocket-to-stdio relay that forwards each text frame as
    one line, e.g. `websocat --text ws-l:127.0.0.1:4567 cmd:mpc_controller`.
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from mpc_path_follower.module_config import build_mpc_config, load_module_config
from mpc_path_follower.pympc_core import (
    KinematicModel, LatencyCompensator, MPCConfig, MPCSolver,
    ReferencePolynomial, VehicleState, world_to_vehicle,
)

logger = logging.getLogger(__name__)


@dataclass
class TelemetryFrame:
    """One telemetry record from the simulator (world frame)."""
    ptsx: List[float]
    ptsy: List[float]
    x: float
    y: float
    psi: float
    speed: float
    steering_angle: float = 0.0   # simulator convention, radians
    throttle: float = 0.0


@dataclass
class SteeringCommand:
    """Reply to the simulator: normalised actuation plus display lines."""
    steering_angle: float = 0.0
    throttle: float = 0.0
    mpc_x: List[float] = field(default_factory=list)
    mpc_y: List[float] = field(default_factory=list)
    next_x: List[float] = field(default_factory=list)
    next_y: List[float] = field(default_factory=list)


@dataclass(frozen=True)
class SteeringConvention:
    """
    Sign relationships between the simulator and the model, kept together.

    The model's heading update treats positive delta as a counter-clockwise
    (left) rotation; the simulator treats a positive steering value as a
    right turn. So both the measured steering fed into the latency
    prediction and the outgoing command flip sign, and the command is
    normalised by the steering lock to [-1, 1].
    """
    max_steering: float

    def model_from_telemetry(self, steering_angle: float) -> float:
        return -steering_angle

    def command_from_model(self, delta: float) -> float:
        return float(np.clip(-delta / self.max_steering, -1.0, 1.0))

    def model_from_command(self, command: float) -> float:
        return -command * self.max_steering


class MPCController:
    """Per-session control pipeline around MPCSolver."""

    def __init__(self, config: Optional[MPCConfig] = None,
                 clock=None, max_latency: float = 1.0,
                 reference_points: int = 25, reference_spacing: float = 2.5):
        self.config = config if config is not None else MPCConfig()
        self.solver = MPCSolver(self.config)
        self.kinematics = KinematicModel(self.config.lf)
        self.convention = SteeringConvention(self.config.max_steering)
        if clock is None:
            self.latency = LatencyCompensator(
                self.kinematics, max_latency=max_latency)
        else:
            self.latency = LatencyCompensator(
                self.kinematics, clock=clock, max_latency=max_latency)
        self.reference_points = reference_points
        self.reference_spacing = reference_spacing
        self.last_command: Optional[SteeringCommand] = None

    def local_reference(self, frame: TelemetryFrame):
        """
        Latency-compensated vehicle-frame state and reference polynomial.

        Returns:
            (VehicleState at the local origin with cte/epsi, ReferencePolynomial)
        """
        measured = VehicleState(x=frame.x, y=frame.y, psi=frame.psi, v=frame.speed)
        state = self.latency.compensate(
            measured,
            self.convention.model_from_telemetry(frame.steering_angle),
            frame.throttle)

        local_x, local_y = world_to_vehicle(
            state.x, state.y, state.psi, frame.ptsx, frame.ptsy)
        polynomial = ReferencePolynomial.fit(
            local_x, local_y, self.config.polynomial_order)

        # Vehicle at the origin of its own frame, heading along +x
        local_state = VehicleState(
            x=0.0, y=0.0, psi=0.0, v=state.v,
            cte=polynomial.cross_track_error(),
            epsi=polynomial.heading_error())
        return local_state, polynomial

    def step(self, frame: TelemetryFrame) -> SteeringCommand:
        """Run one control cycle. Raises MPCError subclasses on failure."""
        local_state, polynomial = self.local_reference(frame)
        result = self.solver.solve(local_state, polynomial)

        next_x, next_y = polynomial.sample(
            self.reference_points, self.reference_spacing)
        command = SteeringCommand(
            steering_angle=self.convention.command_from_model(result.steering),
            throttle=float(result.acceleration),
            mpc_x=[float(v) for v in result.predicted_x],
            mpc_y=[float(v) for v in result.predicted_y],
            next_x=[float(v) for v in next_x],
            next_y=[float(v) for v in next_y],
        )
        logger.debug(
            "latency=%.3fs cte=%.3f epsi=%.3f steer=%.3f throttle=%.3f (%.1f ms)",
            self.latency.latency, local_state.cte, local_state.epsi,
            command.steering_angle, command.throttle, result.solve_time * 1000.0)

        self.last_command = command
        return command


def parse_args(argv: Optional[Sequence[str]] = None):
    parser = argparse.ArgumentParser(
        prog='mpc_controller',
        description='Receding-horizon MPC steering/throttle controller')
    parser.add_argument(
        'weights', nargs='*', type=float,
        help='cost weight overrides in order: cte epsi speed steering '
             'throttle steering_rate throttle_rate')
    parser.add_argument('--config', default=None,
                        help='path to controller.yaml')
    parser.add_argument('--actuation-delay', type=float, default=None,
                        help='simulated actuator delay in seconds before replying')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    args = parser.parse_args(argv)
    if len(args.weights) > 7:
        parser.error(f"at most 7 weights allowed, got {len(args.weights)}")
    return args


def main(argv: Optional[Sequence[str]] = None):
    from mpc_path_follower.telemetry_bridge import TelemetrySession

    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
        stream=sys.stderr)

    config = load_module_config(args.config)
    mpc_config = build_mpc_config(config, weight_overrides=args.weights)
    logger.info("Weights are: %s",
                " ".join(f"{w:g}" for w in mpc_config.weights.as_tuple()))
    logger.info("Horizon: %d steps x %.3f s, reference velocity %.1f",
                mpc_config.horizon, mpc_config.dt, mpc_config.reference_velocity)

    session_cfg = config['session']
    controller = MPCController(
        mpc_config,
        max_latency=float(config['latency']['max_latency']),
        reference_points=int(session_cfg['reference_points']),
        reference_spacing=float(session_cfg['reference_spacing']))
    delay = args.actuation_delay
    if delay is None:
        delay = float(session_cfg['actuation_delay'])
    session = TelemetrySession(controller, actuation_delay=delay)

    def write(reply: str):
        sys.stdout.write(reply + '\n')
        sys.stdout.flush()

    try:
        session.serve(sys.stdin, write)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == '__main__':
    sys.exit(main())

"""
Tests for the simulator telemetry bridge.

Uses a stub controller so the frame handling and fallback policy are
tested without running IPOPT.

Run with:
    python3 -m pytest test/test_telemetry_bridge.py -v
"""

import sys
import os
import json
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from mpc_path_follower.mpc_controller import SteeringCommand, TelemetryFrame
from mpc_path_follower.pympc_core import InsufficientWaypoints, SolverNonConvergence
from mpc_path_follower.telemetry_bridge import (
    MANUAL_MESSAGE, TelemetrySession, decode_telemetry, encode_steer,
    extract_payload,
)


TELEMETRY = {
    'ptsx': [0.0, 10.0, 20.0, 30.0],
    'ptsy': [0.0, 0.5, 1.0, 1.5],
    'x': 1.0, 'y': 2.0, 'psi': 0.1, 'speed': 12.0,
    'steering_angle': -0.05, 'throttle': 0.3,
}


def telemetry_message(data=None):
    return '42' + json.dumps(['telemetry', data if data is not None else TELEMETRY])


class StubController:
    """Returns queued commands or raises queued errors, recording frames."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.frames = []

    def step(self, frame):
        self.frames.append(frame)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


# ============================================================================
# Frame codec
# ============================================================================

class TestFrameCodec:

    def test_extract_payload(self):
        assert extract_payload('42["telemetry",{"x":1}]') == '["telemetry",{"x":1}]'

    def test_extract_payload_null(self):
        assert extract_payload('42["telemetry",null]') == ''

    def test_extract_payload_without_object(self):
        assert extract_payload('42["ping"]') == ''

    def test_decode_telemetry(self):
        frame = decode_telemetry(TELEMETRY)
        assert frame.ptsy == [0.0, 0.5, 1.0, 1.5]
        assert frame.speed == 12.0
        assert frame.steering_angle == -0.05

    def test_decode_defaults_actuation(self):
        data = {k: v for k, v in TELEMETRY.items()
                if k not in ('steering_angle', 'throttle')}
        frame = decode_telemetry(data)
        assert frame.steering_angle == 0.0
        assert frame.throttle == 0.0

    def test_decode_missing_field(self):
        data = dict(TELEMETRY)
        del data['psi']
        with pytest.raises(ValueError, match='psi'):
            decode_telemetry(data)

    def test_decode_length_mismatch(self):
        data = dict(TELEMETRY, ptsy=[0.0, 1.0])
        with pytest.raises(ValueError):
            decode_telemetry(data)

    def test_encode_steer(self):
        command = SteeringCommand(steering_angle=-0.25, throttle=0.5,
                                  mpc_x=[1.0], mpc_y=[0.0],
                                  next_x=[0.0, 2.5], next_y=[0.0, 0.1])
        message = encode_steer(command)
        assert message.startswith('42["steer",')
        event, data = json.loads(message[2:])
        assert event == 'steer'
        assert data == {
            'steering_angle': -0.25, 'throttle': 0.5,
            'mpc_x': [1.0], 'mpc_y': [0.0],
            'next_x': [0.0, 2.5], 'next_y': [0.0, 0.1],
        }


# ============================================================================
# TelemetrySession
# ============================================================================

class TestTelemetrySession:

    def test_telemetry_reply(self):
        command = SteeringCommand(steering_angle=0.1, throttle=0.4)
        controller = StubController(command)
        sleeps = []
        session = TelemetrySession(controller, actuation_delay=0.1,
                                   sleep=sleeps.append)

        reply = session.handle(telemetry_message())

        assert reply == encode_steer(command)
        assert sleeps == [0.1]
        assert isinstance(controller.frames[0], TelemetryFrame)
        assert controller.frames[0].x == 1.0

    def test_manual_mode(self):
        controller = StubController()
        session = TelemetrySession(controller, actuation_delay=0.0)
        assert session.handle('42["telemetry",null]') == MANUAL_MESSAGE
        assert controller.frames == []

    @pytest.mark.parametrize("message", ['', '42', '2', '0{"sid":"abc"}', '3probe'])
    def test_non_event_frames_ignored(self, message):
        session = TelemetrySession(StubController(), actuation_delay=0.0)
        assert session.handle(message) is None

    def test_other_events_ignored(self):
        session = TelemetrySession(StubController(), actuation_delay=0.0)
        assert session.handle('42["status",{"ok":true}]') is None

    def test_malformed_frame_dropped(self, caplog):
        controller = StubController()
        session = TelemetrySession(controller, actuation_delay=0.0)
        assert session.handle('42["telemetry",{"x":1,}]') is None
        assert session.handle(telemetry_message({'x': 1.0})) is None
        assert controller.frames == []
        assert 'malformed' in caplog.text

    def test_first_failure_sends_zero(self, caplog):
        controller = StubController(InsufficientWaypoints(2, 4))
        session = TelemetrySession(controller, actuation_delay=0.0)

        reply = session.handle(telemetry_message())

        event, data = json.loads(reply[2:])
        assert event == 'steer'
        assert data['steering_angle'] == 0.0
        assert data['throttle'] == 0.0
        assert data['mpc_x'] == []
        assert session.failed_cycles == 1
        assert 'InsufficientWaypoints' in caplog.text

    def test_failure_holds_previous_actuation(self):
        first = SteeringCommand(steering_angle=-0.3, throttle=0.6,
                                mpc_x=[1.0], mpc_y=[0.0])
        controller = StubController(
            first, SolverNonConvergence('timeout', status='Maximum_CpuTime_Exceeded'))
        session = TelemetrySession(controller, actuation_delay=0.0)

        session.handle(telemetry_message())
        reply = session.handle(telemetry_message())

        _, data = json.loads(reply[2:])
        assert data['steering_angle'] == -0.3
        assert data['throttle'] == 0.6
        # Stale predictions are not redrawn
        assert data['mpc_x'] == []
        assert session.failed_cycles == 1

    def test_recovers_after_failure(self):
        good = SteeringCommand(steering_angle=0.2, throttle=0.1)
        controller = StubController(InsufficientWaypoints(0, 4), good)
        session = TelemetrySession(controller, actuation_delay=0.0)

        session.handle(telemetry_message())
        reply = session.handle(telemetry_message())

        assert reply == encode_steer(good)
        assert session.failed_cycles == 1

    def test_non_mpc_errors_propagate(self):
        controller = StubController(RuntimeError('bug'))
        session = TelemetrySession(controller, actuation_delay=0.0)
        with pytest.raises(RuntimeError):
            session.handle(telemetry_message())

    def test_no_sleep_when_delay_disabled(self):
        sleeps = []
        session = TelemetrySession(StubController(SteeringCommand()),
                                   actuation_delay=0.0, sleep=sleeps.append)
        session.handle(telemetry_message())
        assert sleeps == []

    def test_serve(self):
        commands = [SteeringCommand(steering_angle=0.1), SteeringCommand(steering_angle=0.2)]
        session = TelemetrySession(StubController(*commands), actuation_delay=0.0)
        written = []

        session.serve(['42["telemetry",null]\n', telemetry_message() + '\n', '2\n',
                       telemetry_message() + '\n'], written.append)

        assert written == [MANUAL_MESSAGE, encode_steer(commands[0]),
                           encode_steer(commands[1])]

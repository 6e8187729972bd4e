"""
Telemetry bridge between the driving simulator and MPCController.

The simulator speaks socket.io-style text frames. A frame starting with
"42" is a message event ("4" websocket message, "2" event) followed by
a JSON array [event_name, data]:

    42["telemetry",{"ptsx":[...],"ptsy":[...],"x":..,"y":..,"psi":..,
                    "speed":..,"steering_angle":..,"throttle":..}]

Replies are '42["steer",{...}]' for telemetry and '42["manual",{}]'
when the frame carries no data (manual driving mode).

TelemetrySession owns the fallback policy when a cycle fails: it holds
the previously sent actuation (or commands zero steering and throttle
if nothing has been sent yet) and lets the next frame start fresh.
"""

import json
import logging
import time
from typing import Callable, Iterable, Optional

from mpc_path_follower.mpc_controller import (
    MPCController, SteeringCommand, TelemetryFrame,
)
from mpc_path_follower.pympc_core import MPCError

logger = logging.getLogger(__name__)

MANUAL_MESSAGE = '42["manual",{}]'


def extract_payload(message: str) -> str:
    """Return the JSON array text of an event frame, or '' if it has no data."""
    if 'null' in message:
        return ''
    b1 = message.find('[')
    b2 = message.rfind('}]')
    if b1 != -1 and b2 != -1:
        return message[b1:b2 + 2]
    return ''


def decode_telemetry(data: dict) -> TelemetryFrame:
    """Build a TelemetryFrame from the data object of a telemetry event."""
    try:
        frame = TelemetryFrame(
            ptsx=[float(v) for v in data['ptsx']],
            ptsy=[float(v) for v in data['ptsy']],
            x=float(data['x']),
            y=float(data['y']),
            psi=float(data['psi']),
            speed=float(data['speed']),
            steering_angle=float(data.get('steering_angle', 0.0)),
            throttle=float(data.get('throttle', 0.0)),
        )
    except KeyError as e:
        raise ValueError(f"Telemetry is missing field {e}") from e
    except TypeError as e:
        raise ValueError(f"Malformed telemetry field: {e}") from e
    if len(frame.ptsx) != len(frame.ptsy):
        raise ValueError(
            f"ptsx/ptsy lengths differ: {len(frame.ptsx)} vs {len(frame.ptsy)}")
    return frame


def encode_steer(command: SteeringCommand) -> str:
    msg = {
        'steering_angle': command.steering_angle,
        'throttle': command.throttle,
        'mpc_x': command.mpc_x,
        'mpc_y': command.mpc_y,
        'next_x': command.next_x,
        'next_y': command.next_y,
    }
    return '42["steer",' + json.dumps(msg) + ']'


class TelemetrySession:
    """
    One simulator connection driving one MPCController.

    Args:
        controller: Controller owned by this session
        actuation_delay: Seconds to wait before replying, mimicking the
            actuator delay of a real vehicle (0 disables)
        sleep: Sleep function (injectable for tests)
    """

    def __init__(self, controller: MPCController, actuation_delay: float = 0.1,
                 sleep: Callable[[float], None] = time.sleep):
        self.controller = controller
        self.actuation_delay = actuation_delay
        self._sleep = sleep
        self._last_sent: Optional[SteeringCommand] = None
        self.failed_cycles = 0

    def fallback_command(self) -> SteeringCommand:
        """Hold the previous actuation; zero if nothing was sent yet."""
        if self._last_sent is None:
            return SteeringCommand()
        return SteeringCommand(
            steering_angle=self._last_sent.steering_angle,
            throttle=self._last_sent.throttle)

    def handle(self, message: str) -> Optional[str]:
        """Process one incoming frame and return the reply frame, if any."""
        message = message.strip()
        if len(message) <= 2 or not message.startswith('42'):
            return None

        payload = extract_payload(message)
        if not payload:
            return MANUAL_MESSAGE

        try:
            event = json.loads(payload)
            if event[0] != 'telemetry':
                return None
            frame = decode_telemetry(event[1])
        except (ValueError, IndexError, TypeError) as e:
            logger.warning("Dropping malformed frame: %s", e)
            return None

        try:
            command = self.controller.step(frame)
        except MPCError as e:
            self.failed_cycles += 1
            command = self.fallback_command()
            logger.warning("Control cycle failed (%s: %s), holding steer=%.3f throttle=%.3f",
                           type(e).__name__, e, command.steering_angle, command.throttle)

        if self.actuation_delay > 0:
            self._sleep(self.actuation_delay)
        self._last_sent = command
        return encode_steer(command)

    def serve(self, lines: Iterable[str], write: Callable[[str], None]):
        """Handle frames until the input is exhausted."""
        for line in lines:
            reply = self.handle(line)
            if reply is not None:
                write(reply)

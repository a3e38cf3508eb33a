"""
telemetry.py — Fleet Telemetry Stream Client

Maintains a live, self-healing subscription to the telemetry event stream.

Connection state machine:
    IDLE → CONNECTING → OPEN → (telemetry frames)*
    Any drop (transport error, error status, server closing the stream) moves
    to CLOSED, and exactly one reconnect follows after a fixed delay, forever,
    until disconnect() is called.

Frames:
    Each `telemetry` event carries the complete fleet as a JSON array of
    robots. A frame replaces the snapshot wholesale; robots are never patched
    individually. A frame that fails to parse sets a transient notice and
    leaves both the connection and the previous snapshot in place.
"""

import asyncio
import logging
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import TypeAdapter

from .clients import TelemetryClient
from .config import RECONNECT_DELAY_SECONDS
from .errors import CampusBotError
from .events import Observable
from .models import RobotSnapshot
from .sse import aiter_sse

log = logging.getLogger(__name__)

TELEMETRY_EVENT = "telemetry"
MALFORMED_FRAME_NOTICE = "Failed to parse telemetry data"
RECONNECTING_NOTICE = "Connection closed. Retrying..."

_FLEET_ADAPTER = TypeAdapter(List[RobotSnapshot])


class ConnectionState(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class FleetTelemetryStream(Observable):
    """
    Live fleet view fed by the telemetry stream.

    Args:
        telemetry (TelemetryClient): Telemetry service client.
        reconnect_delay (float): Seconds to wait after a drop before reconnecting (2 by default).
    """

    def __init__(self, telemetry: TelemetryClient, reconnect_delay: float = RECONNECT_DELAY_SECONDS):
        super().__init__()
        self._telemetry = telemetry
        self.reconnect_delay = reconnect_delay
        self._robots: Tuple[RobotSnapshot, ...] = ()
        self._state = ConnectionState.IDLE
        self._last_error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self.connection_attempts = 0
        self.frames_received = 0

    @property
    def robots(self) -> Tuple[RobotSnapshot, ...]:
        """The complete fleet as of the most recent valid frame."""
        return self._robots

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def last_error(self) -> Optional[str]:
        """Transient notice (reconnecting, malformed frame); cleared by the next good frame."""
        return self._last_error

    def connect(self):
        """
        Starts the background subscription. Must be called from a running event
        loop. Calling it while already subscribed has no effect.
        """
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="fleet-telemetry")

    async def disconnect(self):
        """
        Tears down the subscription in any state: the open response is closed
        and a pending reconnect wait is cancelled. Idempotent.
        """
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])
            log.info("Telemetry stream disconnected.")
        self._set_state(ConnectionState.IDLE)

    async def stop_robot(self, robot_id: str) -> None:
        """
        Sends a stop command. The local snapshot is not changed; the next frame
        reports the robot's new state.

        Raises:
            ServiceUnavailableError / RequestRejectedError: If the command failed.
        """
        await self._telemetry.stop_robot(robot_id)

    async def fetch_snapshot(self) -> List[RobotSnapshot]:
        """One-shot fleet read that leaves the stream state untouched."""
        return await self._telemetry.snapshot()

    async def _run(self):
        while True:
            try:
                await self._listen()
                log.warning("Telemetry stream closed by the server.")
            except CampusBotError as e:
                log.warning(f"Telemetry stream lost: {e}")
            except Exception as e:
                log.error(f"Telemetry stream: unexpected error {e!r}.", exc_info=True)

            self._last_error = RECONNECTING_NOTICE
            self._set_state(ConnectionState.CLOSED, force_notify=True)
            log.info(f"Reconnecting to telemetry stream in {self.reconnect_delay}s...")
            await asyncio.sleep(self.reconnect_delay)

    async def _listen(self):
        self.connection_attempts += 1
        self._set_state(ConnectionState.CONNECTING)
        async with self._telemetry.open_stream() as response:
            self._last_error = None
            self._set_state(ConnectionState.OPEN, force_notify=True)
            log.info("Telemetry stream connected.")
            async for sse in aiter_sse(response):
                if sse.event == TELEMETRY_EVENT:
                    self._handle_frame(sse.data)

    def _handle_frame(self, data: str):
        try:
            robots = _FLEET_ADAPTER.validate_json(data)
        except ValueError as e:
            log.warning(f"Ignoring malformed telemetry frame: {e}")
            self._last_error = MALFORMED_FRAME_NOTICE
            self._notify()
            return
        self._robots = tuple(robots)
        self._last_error = None
        self.frames_received += 1
        self._notify()

    def _set_state(self, state: ConnectionState, force_notify: bool = False):
        if state is self._state and not force_notify:
            return
        self._state = state
        self._notify()

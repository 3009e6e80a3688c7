"""
Connection manager for the chat WebSocket.

Owns at most one live connection to the task backend. When the connection
drops it reconnects with exponential backoff, and after a bounded number of
attempts it gives up and stays disconnected until reconnect() is called.

Every connection attempt gets a generation number. Frames and close
notifications are only acted on while their generation is still current, so a
superseded connection can never touch client state.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from config import app_config

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
BASE_DELAY_MS = 3000
MAX_DELAY_MS = 30000


class NotConnected(RuntimeError):
    """A frame was sent while the connection is not open."""
    pass


class MaxRetriesExhausted(NotConnected):
    """Automatic reconnection has given up; reconnect() is required."""
    pass


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


def backoff_delay_ms(
    attempt: int,
    base_delay_ms: int = BASE_DELAY_MS,
    max_delay_ms: int = MAX_DELAY_MS,
) -> int:
    """Delay before retry number ``attempt`` (0-indexed): base * 2^attempt, capped."""
    return min(base_delay_ms * (2 ** attempt), max_delay_ms)


class ConnectionManager:
    """
    Keeps one WebSocket to the backend alive.

    ``on_frame(raw)`` receives every text frame of the current connection.
    ``on_status(connected)`` is called whenever connectivity flips.
    ``connect(url)`` is the transport factory; it defaults to
    ``websockets.connect`` and must return an object with async ``send``,
    async ``close`` and async iteration over incoming frames.
    """

    def __init__(
        self,
        url: str,
        on_frame: Callable[[str], Any],
        on_status: Optional[Callable[[bool], Any]] = None,
        connect: Optional[Callable[[str], Awaitable[Any]]] = None,
        max_attempts: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None,
    ):
        self.url = url
        self.on_frame = on_frame
        self.on_status = on_status
        self._connect = connect or websockets.connect
        self.max_attempts = app_config.reconnect_max_attempts if max_attempts is None else max_attempts
        self.base_delay_ms = app_config.reconnect_base_delay_ms if base_delay_ms is None else base_delay_ms
        self.max_delay_ms = app_config.reconnect_max_delay_ms if max_delay_ms is None else max_delay_ms

        self.state = ConnectionState.IDLE
        self.attempts = 0
        self.exhausted = False
        self.connected = False

        self._generation = 0
        self._ws: Optional[Any] = None
        self._task: Optional[asyncio.Task] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._stopped = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    def backoff_delay_ms(self, attempt: int) -> int:
        return backoff_delay_ms(attempt, self.base_delay_ms, self.max_delay_ms)

    def start(self) -> None:
        """Begin connecting unless already connecting or open.

        Must be called from a running event loop. Once the attempt budget is
        spent this only reports unavailability; see reconnect().
        """
        if self.state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            return
        if self.attempts >= self.max_attempts:
            logger.warning(
                f"Max reconnection attempts reached ({self.max_attempts}). "
                f"Backend may be unavailable."
            )
            self.exhausted = True
            self.state = ConnectionState.CLOSED
            self._set_connected(False)
            return

        self._cancel_retry()
        self._stopped = False
        self._generation += 1
        self.state = ConnectionState.CONNECTING
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(self._generation))

    def reconnect(self) -> None:
        """Manual reconnect: restore the attempt budget, then start()."""
        if self.state is ConnectionState.OPEN:
            return
        self.attempts = 0
        self.exhausted = False
        self.start()

    async def send(self, frame: Union[str, bytes]) -> None:
        """Write one frame. Does not wait for any reply from the backend."""
        ws = self._ws
        if self.state is not ConnectionState.OPEN or ws is None:
            if self.exhausted:
                raise MaxRetriesExhausted("Backend unavailable: reconnection attempts exhausted")
            raise NotConnected("WebSocket is not open")
        try:
            await ws.send(frame)
        except (ConnectionClosed, OSError) as e:
            raise NotConnected(f"WebSocket send failed: {e}") from e

    async def stop(self) -> None:
        """Tear down: cancel any pending retry and release the connection."""
        self._stopped = True
        self._cancel_retry()
        self._generation += 1
        ws, self._ws = self._ws, None
        task, self._task = self._task, None
        self.state = ConnectionState.CLOSED
        self._set_connected(False)

        if ws is not None:
            await self._close_quietly(ws)
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Connection manager stopped")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _run(self, generation: int) -> None:
        try:
            ws = await self._connect(self.url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            logger.info(f"Backend connection failed: {e}")
            self._on_closed(generation)
            return

        if generation != self._generation:
            # Superseded while the handshake was in flight
            await self._close_quietly(ws)
            return

        self._ws = ws
        self.state = ConnectionState.OPEN
        self.attempts = 0
        self.exhausted = False
        self._set_connected(True)
        logger.info(f"WebSocket connected: {self.url}")

        try:
            async for raw in ws:
                if generation != self._generation:
                    break
                self._deliver(raw)
        except ConnectionClosed as e:
            logger.info(f"WebSocket closed unexpectedly: {e}")
        except OSError as e:
            logger.info(f"WebSocket transport error: {e}")

        self._on_closed(generation)

    def _deliver(self, raw: Union[str, bytes]) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            self.on_frame(raw)
        except Exception:
            logger.exception("Frame handler failed")

    def _on_closed(self, generation: int) -> None:
        if generation != self._generation or self._stopped:
            return
        self._ws = None
        self.state = ConnectionState.CLOSED
        self._set_connected(False)

        if self.attempts >= self.max_attempts:
            self.exhausted = True
            logger.warning(
                f"Max reconnection attempts reached ({self.max_attempts}). "
                f"Backend may be unavailable."
            )
            return

        delay = self.backoff_delay_ms(self.attempts)
        self._cancel_retry()
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(delay / 1000.0, self._retry)
        self.attempts += 1
        logger.info(f"Reconnection attempt {self.attempts}/{self.max_attempts} in {delay} ms")

    def _retry(self) -> None:
        self._retry_handle = None
        if self._stopped:
            return
        self.start()

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _set_connected(self, value: bool) -> None:
        if self.connected == value:
            return
        self.connected = value
        if self.on_status:
            try:
                self.on_status(value)
            except Exception:
                logger.exception("Status handler failed")

    async def _close_quietly(self, ws: Any) -> None:
        try:
            await ws.close()
        except (ConnectionClosed, OSError) as e:
            logger.debug(f"Ignoring error while closing WebSocket: {e}")

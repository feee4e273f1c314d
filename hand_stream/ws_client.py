"""
WebSocket Client for server communication.

Handles:
- Async WebSocket connection with optional Bearer token auth
- Fixed-delay reconnection (optionally backing off, optionally capped)
- Single in-flight send, rejected rather than queued when overlapping
- Background receive loop feeding the inbound dispatcher
- Idempotent close with graceful close handshake
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional, Set, Union

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import (
    ConnectionClosed,
    InvalidStatus,
    WebSocketException,
)

from .dispatcher import InboundDispatcher, InboundMessage
from .errors import ConnectError, PeerClosed, ReceiveError, SendError, StreamError

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 5.0

Callback = Callable[[], Union[None, Awaitable[None]]]


class ConnectionState(str, Enum):
    """Lifecycle of the single outbound link."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


@dataclass
class ConnectionStats:
    """Statistics about WebSocket connection."""
    connected: bool = False
    connect_time: Optional[float] = None
    disconnect_time: Optional[float] = None
    reconnect_attempts: int = 0
    messages_sent: int = 0
    messages_failed: int = 0
    messages_received: int = 0
    last_send_time: Optional[float] = None
    last_error: Optional[str] = None


class WebSocketClient:
    """
    Async WebSocket client with automatic reconnection.

    Features:
    - One live socket at a time; connect() while connected is a no-op
    - Exactly one pending reconnect after a failed connect or a dropped link
    - close() cancels the pending reconnect and the receive task
    - Inbound text messages are drained into an InboundDispatcher

    All state is owned by the event loop the client runs on. Call it from
    other threads only through SyncStreamer.
    """

    def __init__(
        self,
        server_url: Optional[str] = None,
        token: Optional[str] = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        backoff_multiplier: float = 1.0,
        max_reconnect_delay: float = 30.0,
        max_reconnect_attempts: Optional[int] = None,
        open_timeout: Optional[float] = 10.0,
        dispatcher: Optional[InboundDispatcher] = None,
        on_connected: Optional[Callback] = None,
        on_disconnected: Optional[Callback] = None,
        connector: Optional[Callable[..., Awaitable[ClientConnection]]] = None,
    ):
        """
        Initialize WebSocket client.

        Args:
            server_url: WebSocket server URL (e.g., ws://127.0.0.1:8080/hand)
            token: Optional Bearer token sent in the Authorization header
            reconnect_delay: Wait before each reconnect attempt (seconds)
            backoff_multiplier: Delay growth per failed attempt (1.0 = fixed)
            max_reconnect_delay: Upper bound for a grown delay
            max_reconnect_attempts: Give up after this many consecutive failed
                reconnects (None = retry forever)
            open_timeout: Timeout for the opening handshake
            dispatcher: Receives every inbound text message
            on_connected: Callback when connection is established
            on_disconnected: Callback when connection is lost or closed
            connector: Socket factory, defaults to websockets' connect()
        """
        self.server_url = server_url
        self.token = token
        self.reconnect_delay = reconnect_delay
        self.backoff_multiplier = backoff_multiplier
        self.max_reconnect_delay = max_reconnect_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self.open_timeout = open_timeout
        self.dispatcher = dispatcher
        self.on_connected = on_connected
        self.on_disconnected = on_disconnected
        self._connector = connector or connect

        # Connection state
        self._ws: Optional[ClientConnection] = None
        self._state = ConnectionState.DISCONNECTED
        self._shutdown_requested = False
        self._send_in_flight = False
        self._receiving = False
        self._closed: Optional[asyncio.Event] = None

        # Statistics
        self.stats = ConnectionStats()

        # Backoff state
        self._current_delay = reconnect_delay
        self._failed_attempts = 0

        # Tasks
        self._receive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        """Check if currently connected."""
        return self._state is ConnectionState.CONNECTED and self._ws is not None

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def start(self) -> bool:
        """
        Connect without raising.

        A failed first attempt leaves a reconnect scheduled.

        Returns:
            True if connected
        """
        try:
            await self.connect()
        except ConnectError:
            return False
        return self.connected

    async def stop(self) -> None:
        """Stop the client."""
        await self.close()

    async def connect(self, url: Optional[str] = None) -> None:
        """
        Open the connection.

        Args:
            url: Server URL, replacing the configured one when given

        Raises:
            ConnectError: DNS failure, refused, timeout or rejected handshake.
                The client is DISCONNECTED and one reconnect is scheduled.
        """
        if url:
            self.server_url = url
        if not self.server_url:
            raise ConnectError("No server URL configured")

        if self._state is ConnectionState.CLOSING and self._closed is not None:
            logger.debug("connect() waiting for close to finish")
            await self._closed.wait()

        if self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            logger.debug(f"connect() ignored, client is {self._state.value}")
            return

        self._shutdown_requested = False
        self._cancel_reconnect()
        await self._open()

    async def _open(self) -> None:
        """Establish WebSocket connection."""
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else None
        self._state = ConnectionState.CONNECTING

        try:
            logger.info(f"Connecting to {self.server_url}...")
            ws = await self._connector(
                self.server_url,
                additional_headers=headers,
                open_timeout=self.open_timeout,
                ping_interval=20,
                ping_timeout=10,
                close_timeout=5,
            )
        except asyncio.CancelledError:
            self._state = ConnectionState.DISCONNECTED
            raise
        except InvalidStatus as e:
            raise self._connect_failed(
                ConnectError(f"Handshake rejected: HTTP {e.response.status_code}")
            ) from e
        except ConnectionRefusedError as e:
            raise self._connect_failed(
                ConnectError("Connection refused - is the server running?")
            ) from e
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise self._connect_failed(ConnectError(f"Connection failed: {e}")) from e

        if self._shutdown_requested:
            # close() ran while the handshake was in progress
            self._state = ConnectionState.DISCONNECTED
            self._spawn(self._discard(ws))
            raise ConnectError("Client closed while connecting")

        self._ws = ws
        self._state = ConnectionState.CONNECTED
        self._current_delay = self.reconnect_delay
        self._failed_attempts = 0
        self.stats.connected = True
        self.stats.connect_time = time.time()
        self.stats.last_error = None

        logger.info("WebSocket connected successfully")

        self._receive_task = asyncio.create_task(self._run_receiver())
        self._fire(self.on_connected)

    def _connect_failed(self, error: ConnectError) -> ConnectError:
        self._state = ConnectionState.DISCONNECTED
        self.stats.last_error = str(error)
        logger.error(f"WebSocket connection error: {error}")
        self._schedule_reconnect()
        return error

    async def send(self, text: Union[str, bytes]) -> None:
        """
        Send one text message.

        Only one send may be in flight; an overlapping call is rejected.

        Raises:
            SendError: Not connected, send already in flight, or write failure
        """
        ws = self._ws
        if not self.connected or ws is None:
            self.stats.messages_failed += 1
            raise SendError("not connected")
        if self._send_in_flight:
            self.stats.messages_failed += 1
            raise SendError("send already in flight")

        if isinstance(text, bytes):
            text = text.decode("utf-8")

        self._send_in_flight = True
        try:
            await ws.send(text)
        except (ConnectionClosed, WebSocketException, OSError) as e:
            self.stats.messages_failed += 1
            logger.error(f"Send message error: {e}")
            self._connection_lost(ws, SendError(str(e)))
            raise SendError(f"Send failed: {e}") from e
        finally:
            self._send_in_flight = False

        self.stats.messages_sent += 1
        self.stats.last_send_time = time.time()

    async def receive_loop(self) -> AsyncIterator[InboundMessage]:
        """
        Yield inbound text messages until the connection ends.

        Ends on a close frame from the server (PeerClosed) or a transport
        error (ReceiveError); the reason is kept in stats.last_error and the
        client becomes DISCONNECTED.

        Raises:
            ReceiveError: A receive loop is already active on this connection
        """
        ws = self._ws
        if ws is None or self._state is not ConnectionState.CONNECTED:
            return
        if self._receiving:
            raise ReceiveError("Receive loop already active for this connection")

        self._receiving = True
        error: Optional[StreamError] = None
        try:
            while True:
                try:
                    raw = await ws.recv()
                except ConnectionClosed as e:
                    if e.rcvd is not None:
                        error = PeerClosed(code=e.rcvd.code, reason=e.rcvd.reason)
                        logger.info(f"WebSocket connection closed by server: {error}")
                    else:
                        error = ReceiveError(str(e))
                        logger.error(f"Error in WebSocket receive loop: {e}")
                    break
                except (WebSocketException, OSError) as e:
                    error = ReceiveError(str(e))
                    logger.error(f"Error in WebSocket receive loop: {e}")
                    break

                if isinstance(raw, bytes):
                    logger.debug(f"Ignoring binary message ({len(raw)} bytes)")
                    continue

                self.stats.messages_received += 1
                logger.debug(f"Received message: {raw}")
                yield InboundMessage(text=raw)
        finally:
            self._receiving = False
            if error is not None:
                self.stats.last_error = str(error)
            self._connection_lost(ws, error)

    async def _run_receiver(self) -> None:
        """Background task draining the receive loop for one connection."""
        try:
            if self.dispatcher is not None:
                await self.dispatcher.drain(self.receive_loop())
            else:
                async for _ in self.receive_loop():
                    pass
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"ReceiveLoop failed: {e}")

    def _connection_lost(self, ws: ClientConnection, error: Optional[StreamError]) -> None:
        """Drop a connection that ended without close() being called."""
        if ws is not self._ws:
            # Already replaced or closed
            return

        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        self.stats.connected = False
        self.stats.disconnect_time = time.time()
        logger.warning(f"Disconnected from server: {error or 'connection ended'}")

        receive_task, self._receive_task = self._receive_task, None
        if receive_task is not None and receive_task is not asyncio.current_task():
            receive_task.cancel()

        self._spawn(self._discard(ws))
        self._fire(self.on_disconnected)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        """Schedule exactly one reconnect attempt."""
        if self._shutdown_requested:
            return
        pending = self._reconnect_task
        if pending is not None and not pending.done() and pending is not asyncio.current_task():
            logger.debug("Reconnect already pending")
            return
        if (
            self.max_reconnect_attempts is not None
            and self._failed_attempts >= self.max_reconnect_attempts
        ):
            logger.error(
                f"Giving up after {self._failed_attempts} failed reconnect attempts"
            )
            return

        delay = self._current_delay
        logger.info(f"Reconnecting in {delay:.1f}s...")
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

        self._current_delay = min(
            self._current_delay * self.backoff_multiplier,
            max(self.max_reconnect_delay, self.reconnect_delay),
        )

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._shutdown_requested or self._state is not ConnectionState.DISCONNECTED:
            return

        self._failed_attempts += 1
        self.stats.reconnect_attempts += 1
        logger.info("Attempting to reconnect...")
        try:
            await self._open()
        except ConnectError:
            # Logged and rescheduled by _open()
            pass

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            logger.debug("Pending reconnect cancelled")

    async def close(self) -> None:
        """
        Close the connection.

        Cancels any pending reconnect and the receive task, performs the
        close handshake if connected and releases the socket. Idempotent;
        a second call made while the first is closing waits for it.
        """
        if self._state is ConnectionState.CLOSING and self._closed is not None:
            await self._closed.wait()
            return

        self._shutdown_requested = True
        self._cancel_reconnect()

        ws, self._ws = self._ws, None
        receive_task, self._receive_task = self._receive_task, None
        was_connected = self._state is ConnectionState.CONNECTED

        if ws is None and receive_task is None:
            self._state = ConnectionState.DISCONNECTED
            await self._drain_background()
            return

        logger.info("WebSocket client closing...")
        self._state = ConnectionState.CLOSING
        closed = self._closed = asyncio.Event()

        try:
            if receive_task is not None and receive_task is not asyncio.current_task():
                receive_task.cancel()
                try:
                    await receive_task
                except asyncio.CancelledError:
                    pass

            if ws is not None:
                try:
                    await ws.close(code=1000, reason="Application closing")
                except (WebSocketException, OSError) as e:
                    logger.warning(f"Close handshake failed: {e}")
        finally:
            # connect() waits on CLOSING, so nothing reopened the link meanwhile
            if self._ws is None:
                self._state = ConnectionState.DISCONNECTED
                self.stats.connected = False
                self.stats.disconnect_time = time.time()
            self._closed = None
            closed.set()

        if was_connected:
            self._fire(self.on_disconnected)
        await self._drain_background()
        logger.info("WebSocket client closed")

    async def _drain_background(self) -> None:
        """Wait for released sockets and callback tasks to finish."""
        current = asyncio.current_task()
        pending = [t for t in self._background if t is not current and not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _discard(self, ws: ClientConnection) -> None:
        """Release a socket that is no longer the live one."""
        try:
            await ws.close()
        except (WebSocketException, OSError) as e:
            logger.debug(f"Ignoring error while releasing socket: {e}")

    def _fire(self, callback: Optional[Callback]) -> None:
        """Invoke a lifecycle callback without letting it break the client."""
        if callback is None:
            return
        try:
            result = callback()
        except Exception as e:
            logger.error(f"Connection callback failed: {e}")
            return
        if inspect.isawaitable(result):
            self._spawn(result)

    def _spawn(self, awaitable) -> None:
        task = asyncio.ensure_future(awaitable)
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(f"Background task failed: {t.exception()}")

        task.add_done_callback(_done)

    def get_stats(self) -> dict:
        """Get connection statistics."""
        return {
            "state": self._state.value,
            "connected": self.connected,
            "connect_time": self.stats.connect_time,
            "disconnect_time": self.stats.disconnect_time,
            "reconnect_attempts": self.stats.reconnect_attempts,
            "reconnect_pending": self.reconnect_pending,
            "messages_sent": self.stats.messages_sent,
            "messages_failed": self.stats.messages_failed,
            "messages_received": self.stats.messages_received,
            "last_send_time": self.stats.last_send_time,
            "last_error": self.stats.last_error,
        }

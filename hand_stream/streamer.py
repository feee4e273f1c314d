"""
Streaming Loop - Samples, encodes and sends one frame per tick.

Policy:
- Never blocks the tick: sends run in a background sender task
- Frames produced while disconnected are dropped, not buffered
- At most one send in flight; while it runs, a newer frame replaces the
  one waiting (queue of one, latest value wins)
"""

import asyncio
import concurrent.futures
import logging
import threading
import time
from typing import AsyncIterable, Hashable, Optional, Sequence

from .dispatcher import InboundDispatcher, Subscriber
from .errors import SendError
from .message import RIGHT_HAND_TAG, Frame, FrameValidator
from .snapshot import SnapshotSource
from .ws_client import DEFAULT_RECONNECT_DELAY, WebSocketClient

logger = logging.getLogger(__name__)

DEFAULT_RATE_HZ = 72.0


class FixedRateTicker:
    """
    Periodic tick driver.

    Async iterator that yields once per period, sleeping only for whatever
    is left of the period after the consumer's work.
    """

    def __init__(self, rate_hz: float = DEFAULT_RATE_HZ):
        if rate_hz <= 0:
            raise ValueError(f"rate_hz must be positive, got {rate_hz}")
        self.rate_hz = rate_hz
        self.period = 1.0 / rate_hz
        self._last_tick: Optional[float] = None

    def __aiter__(self) -> 'FixedRateTicker':
        return self

    async def __anext__(self) -> float:
        if self._last_tick is not None:
            elapsed = time.monotonic() - self._last_tick
            if elapsed < self.period:
                await asyncio.sleep(self.period - elapsed)
        self._last_tick = time.monotonic()
        return self._last_tick


class StreamingLoop:
    """
    Pulls from a snapshot source each tick and hands frames to the client.

    tick() and push() must be called on the client's event loop.
    """

    def __init__(
        self,
        client: WebSocketClient,
        source: Optional[SnapshotSource] = None,
        tag: str = RIGHT_HAND_TAG,
        validator: Optional[FrameValidator] = None,
    ):
        """
        Initialize the streaming loop.

        Args:
            client: Connection used for sending
            source: Snapshot source sampled on every tick()
            tag: Value of the frame's ``type`` field
            validator: Optional check applied before encoding
        """
        self.client = client
        self.source = source
        self.tag = tag
        self.validator = validator

        self._pending: Optional[str] = None
        self._sender_task: Optional[asyncio.Task] = None
        self._running = False

        # Statistics
        self._ticks = 0
        self._frames_sent = 0
        self._frames_dropped = 0
        self._frames_replaced = 0
        self._send_errors = 0
        self._source_errors = 0

    @property
    def running(self) -> bool:
        return self._running

    def tick(self) -> bool:
        """
        Sample the source once and submit the frame.

        Returns:
            True if the frame was handed to the sender
        """
        if self.source is None:
            raise RuntimeError("StreamingLoop has no snapshot source")

        try:
            vector = self.source()
        except Exception as e:
            self._ticks += 1
            self._source_errors += 1
            self._frames_dropped += 1
            logger.warning(f"Snapshot source failed: {e}")
            return False

        return self.push(vector)

    def push(self, vector: Sequence[float]) -> bool:
        """
        Encode a feature vector and submit it without waiting for the send.

        Returns:
            True if the frame was handed to the sender
        """
        self._ticks += 1

        try:
            frame = Frame(tag=self.tag, vector=vector)
        except (TypeError, ValueError) as e:
            self._frames_dropped += 1
            logger.warning(f"Invalid feature vector: {e}")
            return False

        if self.validator is not None:
            frame, valid, reason = self.validator.sanitize_and_validate(frame)
            if not valid:
                self._frames_dropped += 1
                logger.debug(f"Frame dropped: {reason}")
                return False

        try:
            payload = frame.to_json()
        except ValueError as e:
            self._frames_dropped += 1
            logger.warning(f"Frame not encodable: {e}")
            return False

        # Best effort: nothing is kept for later while disconnected
        if not self.client.connected:
            self._frames_dropped += 1
            return False

        if self._pending is not None:
            self._frames_replaced += 1
        self._pending = payload

        if self._sender_task is None or self._sender_task.done():
            self._sender_task = asyncio.get_running_loop().create_task(self._send_pending())
        return True

    async def _send_pending(self) -> None:
        """Send the waiting frame until none is left."""
        while self._pending is not None:
            payload, self._pending = self._pending, None
            try:
                await self.client.send(payload)
                self._frames_sent += 1
            except SendError as e:
                self._send_errors += 1
                logger.warning(f"Frame not sent: {e}")

    async def run(self, ticker: Optional[AsyncIterable] = None) -> None:
        """Call tick() once per tick of the ticker until stop()."""
        ticker = ticker if ticker is not None else FixedRateTicker()
        self._running = True
        logger.info("Streaming loop started")

        try:
            async for _ in ticker:
                if not self._running:
                    break
                try:
                    self.tick()
                except Exception as e:
                    logger.error(f"Error in streaming loop: {e}")
        finally:
            self._running = False
            logger.info("Streaming loop stopped")

    def stop(self) -> None:
        """Ask run() to return after the current tick."""
        self._running = False

    async def flush(self) -> None:
        """Wait until the sender is idle."""
        while self._sender_task is not None and not self._sender_task.done():
            await self._sender_task

    async def shutdown(self) -> None:
        """Stop ticking and abandon any frame still waiting."""
        self.stop()
        self._pending = None
        task, self._sender_task = self._sender_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def get_stats(self) -> dict:
        """Get streaming statistics."""
        return {
            "ticks": self._ticks,
            "frames_sent": self._frames_sent,
            "frames_dropped": self._frames_dropped,
            "frames_replaced": self._frames_replaced,
            "send_errors": self._send_errors,
            "source_errors": self._source_errors,
        }


class SyncStreamer:
    """
    Synchronous wrapper for hosts that own their own frame loop.

    Runs the client, dispatcher and streaming loop on a background event
    loop thread. tick() samples the source on the calling thread and
    returns immediately. Subscribers are invoked on the background thread.
    """

    def __init__(
        self,
        server_url: str,
        source: SnapshotSource,
        tag: str = RIGHT_HAND_TAG,
        token: Optional[str] = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        validator: Optional[FrameValidator] = None,
    ):
        """
        Initialize sync streamer.

        Args:
            server_url: WebSocket server URL
            source: Snapshot source, sampled on the thread calling tick()
            tag: Value of the frame's ``type`` field
            token: Optional Bearer token
            reconnect_delay: Wait before each reconnect attempt (seconds)
            validator: Optional check applied before encoding
        """
        self.server_url = server_url
        self.source = source

        self.dispatcher = InboundDispatcher()
        self.client = WebSocketClient(
            server_url=server_url,
            token=token,
            reconnect_delay=reconnect_delay,
            dispatcher=self.dispatcher,
        )
        self.streaming = StreamingLoop(self.client, tag=tag, validator=validator)

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._start_task: Optional[asyncio.Task] = None
        self._started = False

    def start(self, timeout: float = 5.0) -> None:
        """Start the background loop and begin connecting."""
        if self._started:
            return

        self._loop = asyncio.new_event_loop()
        self._ready.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="hand-stream",
            daemon=True,
        )
        self._thread.start()
        if not self._ready.wait(timeout):
            raise RuntimeError("Streaming thread did not start")
        self._started = True

    def _run_loop(self) -> None:
        """Run the async event loop."""
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(self._ready.set)
        self._start_task = self._loop.create_task(self.client.start())
        self._loop.run_forever()

    def tick(self) -> bool:
        """
        Sample the source and submit the frame.

        Returns:
            False if the streamer is not running or the source failed
        """
        if not self._started or self._loop is None:
            return False
        try:
            vector = tuple(self.source())
        except Exception as e:
            logger.warning(f"Snapshot source failed: {e}")
            return False
        self._loop.call_soon_threadsafe(self.streaming.push, vector)
        return True

    def subscribe(self, callback: Subscriber, key: Optional[Hashable] = None) -> Hashable:
        """Register an inbound message subscriber."""
        if key is None:
            key = f"sync_{id(callback)}"
        if self._loop is not None and self._started:
            self._loop.call_soon_threadsafe(self.dispatcher.subscribe, callback, key)
        else:
            self.dispatcher.subscribe(callback, key)
        return key

    def unsubscribe(self, key: Hashable) -> None:
        if self._loop is not None and self._started:
            self._loop.call_soon_threadsafe(self.dispatcher.unsubscribe, key)
        else:
            self.dispatcher.unsubscribe(key)

    def stop(self, timeout: float = 5.0) -> None:
        """Close the connection and stop the background loop."""
        if not self._started:
            return

        future = asyncio.run_coroutine_threadsafe(self._shutdown(), self._loop)
        try:
            future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            logger.warning("Streamer shutdown timed out, stopping loop anyway")
            future.cancel()
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Streaming thread did not exit, leaving its loop open")
            else:
                self._loop.close()
            self._started = False

    async def _shutdown(self) -> None:
        if self._start_task is not None and not self._start_task.done():
            self._start_task.cancel()
            try:
                await self._start_task
            except asyncio.CancelledError:
                pass
        await self.streaming.shutdown()
        await self.client.close()

    @property
    def connected(self) -> bool:
        """Check if connected."""
        return self.client.connected

    def get_stats(self) -> dict:
        """Get connection and streaming statistics."""
        return {
            "connection": self.client.get_stats(),
            "streaming": self.streaming.get_stats(),
            "dispatch": self.dispatcher.get_stats(),
        }

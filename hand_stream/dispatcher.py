"""
Inbound Dispatcher - Fans server messages out to subscribers.

Drains the client's receive loop and republishes every text message to the
registered subscribers (diagnostics panels, loggers, robot status views).
"""

import asyncio
import inspect
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, Hashable, Optional, Set

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InboundMessage:
    """Text message received from the server."""
    text: str
    received_at: float = field(default_factory=time.time)


Subscriber = Callable[[InboundMessage], object]


class InboundDispatcher:
    """
    Observer list for inbound messages.

    Subscribers are keyed by identity and notified in registration order.
    A subscriber that raises is logged and skipped; delivery continues with
    the next one. Coroutine subscribers are scheduled as tasks so they never
    hold up the receive path.
    """

    def __init__(self, slow_subscriber_s: float = 0.005):
        """
        Initialize dispatcher.

        Args:
            slow_subscriber_s: Synchronous subscribers running longer than this
                are reported with a warning
        """
        self.slow_subscriber_s = slow_subscriber_s

        self._subscribers: Dict[Hashable, Subscriber] = {}
        self._key_counter = itertools.count(1)
        self._pending: Set[asyncio.Task] = set()

        # Statistics
        self._messages_dispatched = 0
        self._subscriber_errors = 0

    def subscribe(self, callback: Subscriber, key: Optional[Hashable] = None) -> Hashable:
        """
        Register a subscriber.

        Args:
            callback: Called with each InboundMessage. May be a coroutine function.
            key: Identity of the subscriber. Generated when omitted. Re-using a
                key replaces the callback and keeps its position.

        Returns:
            The key to pass to unsubscribe()
        """
        if not callable(callback):
            raise TypeError("subscriber must be callable")
        if key is None:
            key = f"subscriber_{next(self._key_counter)}"
        self._subscribers[key] = callback
        logger.debug(f"Subscriber registered: {key}")
        return key

    def unsubscribe(self, key: Hashable) -> bool:
        """Remove a subscriber. Returns False if the key was unknown."""
        removed = self._subscribers.pop(key, None) is not None
        if removed:
            logger.debug(f"Subscriber removed: {key}")
        return removed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, message: InboundMessage) -> None:
        """Notify every current subscriber, in registration order."""
        self._messages_dispatched += 1

        # Snapshot so callbacks may (un)subscribe during fan-out
        for key, callback in list(self._subscribers.items()):
            started = time.monotonic()
            try:
                result = callback(message)
                if inspect.isawaitable(result):
                    self._hand_off(key, result)
            except Exception as e:
                self._subscriber_errors += 1
                logger.error(f"Subscriber {key} failed: {e}", exc_info=True)
                continue

            elapsed = time.monotonic() - started
            if elapsed > self.slow_subscriber_s:
                logger.warning(
                    f"Subscriber {key} took {elapsed * 1000:.1f}ms, "
                    "receive path was blocked"
                )

    async def drain(self, messages: AsyncIterator[InboundMessage]) -> None:
        """Publish every message of a receive loop until it ends."""
        async for message in messages:
            self.publish(message)

    def _hand_off(self, key: Hashable, awaitable) -> None:
        """Run an async subscriber in the background."""
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                self._subscriber_errors += 1
                logger.error(f"Async subscriber {key} failed: {exc}")

        task.add_done_callback(_done)

    async def wait_idle(self) -> None:
        """Wait until all handed-off async subscribers have finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def get_stats(self) -> dict:
        """Get dispatch statistics."""
        return {
            "subscribers": len(self._subscribers),
            "messages_dispatched": self._messages_dispatched,
            "subscriber_errors": self._subscriber_errors,
            "pending_async": len(self._pending),
        }

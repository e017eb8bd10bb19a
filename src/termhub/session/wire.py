"""Wire protocol — fans terminal output out to every consumer.

Sessions publish ``data``/``exit`` events onto the broadcaster; every
subscribed consumer (typically one per window) receives every event and
filters by session id itself. A consumer whose transport has gone away is
logged and skipped, never allowed to break delivery to the others.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

logger = logging.getLogger(__name__)


class EventType(enum.Enum):
    DATA = "data"
    EXIT = "exit"


@dataclass(frozen=True)
class TerminalEvent:
    """One notification about one session."""

    type: EventType
    session_id: int
    data: bytes = b""
    exit_code: int | None = None
    reason: str | None = None

    @classmethod
    def output(cls, session_id: int, data: bytes) -> TerminalEvent:
        return cls(type=EventType.DATA, session_id=session_id, data=data)

    @classmethod
    def exited(
        cls, session_id: int, exit_code: int | None = None, reason: str | None = None
    ) -> TerminalEvent:
        return cls(
            type=EventType.EXIT, session_id=session_id, exit_code=exit_code, reason=reason
        )

    def to_message(self) -> dict[str, Any]:
        """Shape sent over the broadcast channel."""
        if self.type == EventType.DATA:
            return {"type": "data", "sessionId": self.session_id, "data": self.data}
        message: dict[str, Any] = {"type": "exit", "sessionId": self.session_id}
        if self.exit_code is not None:
            message["exitCode"] = self.exit_code
        if self.reason:
            message["reason"] = self.reason
        return message


class ConsumerGone(Exception):
    """The consumer's transport no longer exists."""


class Consumer(ABC):
    """Something that receives broadcast events, e.g. one window."""

    @abstractmethod
    def deliver(self, event: TerminalEvent) -> None:
        """Hand over one event. Raises ConsumerGone if the transport is gone."""

    def on_close(self) -> None:
        """Called when the broadcaster shuts down."""


class QueueConsumer(Consumer):
    """Buffers events in an asyncio.Queue for an async reader.

    ``None`` in the queue means the broadcaster closed. Iterating the
    consumer yields events until then.
    """

    def __init__(self) -> None:
        self.queue: asyncio.Queue[TerminalEvent | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: TerminalEvent) -> None:
        if self._closed:
            raise ConsumerGone("queue consumer closed")
        self.queue.put_nowait(event)

    def on_close(self) -> None:
        if not self._closed:
            self.queue.put_nowait(None)

    def close(self) -> None:
        """Mark the transport as gone; later deliveries fail."""
        self._closed = True

    async def get(self) -> TerminalEvent | None:
        return await self.queue.get()

    def get_nowait(self) -> TerminalEvent | None:
        return self.queue.get_nowait()

    async def __aiter__(self) -> AsyncIterator[TerminalEvent]:
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event


class CallbackConsumer(Consumer):
    """Adapts a transport send function, e.g. ``window.send``.

    ``is_alive`` lets the owner report a destroyed transport without the
    send function having to raise.
    """

    def __init__(
        self,
        send: Callable[[dict[str, Any]], None],
        is_alive: Callable[[], bool] | None = None,
        name: str = "",
    ) -> None:
        self._send = send
        self._is_alive = is_alive
        self.name = name

    def deliver(self, event: TerminalEvent) -> None:
        if self._is_alive is not None and not self._is_alive():
            raise ConsumerGone(f"transport {self.name or id(self)} destroyed")
        self._send(event.to_message())

    def __repr__(self) -> str:
        return f"CallbackConsumer({self.name!r})"


class Subscription:
    """Disposal handle returned by ``EventBroadcaster.subscribe``."""

    def __init__(self, broadcaster: EventBroadcaster, consumer: Consumer) -> None:
        self._broadcaster = broadcaster
        self.consumer = consumer

    def dispose(self) -> None:
        self._broadcaster.unsubscribe(self.consumer)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()


class EventBroadcaster:
    """Async message bus: sessions -> every subscribed consumer.

    Multi-producer, multi-consumer broadcast. Publishing is synchronous on
    the event loop, so each session's events reach every consumer in the
    order they were published. No ordering holds across sessions.
    """

    def __init__(self) -> None:
        self._consumers: list[Consumer] = []
        self._closed: bool = False

    def subscribe(self, consumer: Consumer) -> Subscription:
        """Start delivering every event to ``consumer``."""
        if consumer not in self._consumers:
            self._consumers.append(consumer)
        return Subscription(self, consumer)

    def unsubscribe(self, consumer: Consumer) -> None:
        """Stop delivering to ``consumer``. Unknown consumers are ignored."""
        if consumer in self._consumers:
            self._consumers.remove(consumer)

    @property
    def consumer_count(self) -> int:
        return len(self._consumers)

    def publish(self, event: TerminalEvent) -> None:
        """Send an event to all consumers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for consumer in list(self._consumers):
            try:
                consumer.deliver(event)
            except ConsumerGone as e:
                logger.debug("Skipping gone consumer %r: %s", consumer, e)
            except Exception:
                logger.exception(
                    "Consumer %r failed on %s event for session %d",
                    consumer,
                    event.type.value,
                    event.session_id,
                )

    def close(self) -> None:
        """Signal all consumers that the broadcaster is closing."""
        if self._closed:
            return
        self._closed = True
        for consumer in self._consumers:
            try:
                consumer.on_close()
            except Exception:
                logger.exception("Consumer %r failed to close", consumer)

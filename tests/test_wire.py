"""Tests for termhub.session.wire (EventBroadcaster, consumers, TerminalEvent)."""

from __future__ import annotations

from typing import Any

import pytest

from termhub.session.wire import (
    CallbackConsumer,
    Consumer,
    ConsumerGone,
    EventBroadcaster,
    EventType,
    QueueConsumer,
    TerminalEvent,
)


# ---------------------------------------------------------------------------
# TerminalEvent
# ---------------------------------------------------------------------------


class TestTerminalEvent:
    def test_values_are_lowercase(self) -> None:
        for e in EventType:
            assert e.value == e.name.lower()

    def test_data_message(self) -> None:
        event = TerminalEvent.output(3, b"\x1b[31mred\x00")
        assert event.to_message() == {
            "type": "data",
            "sessionId": 3,
            "data": b"\x1b[31mred\x00",
        }

    def test_exit_message_minimal(self) -> None:
        assert TerminalEvent.exited(4).to_message() == {"type": "exit", "sessionId": 4}

    def test_exit_message_with_code_and_reason(self) -> None:
        message = TerminalEvent.exited(5, exit_code=0, reason="closed").to_message()
        assert message["exitCode"] == 0
        assert message["reason"] == "closed"

    def test_frozen(self) -> None:
        event = TerminalEvent.output(1, b"x")
        with pytest.raises(AttributeError):
            event.session_id = 2  # type: ignore[misc]


# ---------------------------------------------------------------------------
# EventBroadcaster: subscribe / publish
# ---------------------------------------------------------------------------


class TestBroadcaster:
    def test_publish_to_subscriber(self) -> None:
        bus = EventBroadcaster()
        consumer = QueueConsumer()
        bus.subscribe(consumer)
        bus.publish(TerminalEvent.output(1, b"hi"))
        event = consumer.get_nowait()
        assert event is not None
        assert event.type == EventType.DATA
        assert event.data == b"hi"

    def test_every_consumer_gets_every_session(self) -> None:
        bus = EventBroadcaster()
        c1, c2 = QueueConsumer(), QueueConsumer()
        bus.subscribe(c1)
        bus.subscribe(c2)
        bus.publish(TerminalEvent.output(1, b"a"))
        bus.publish(TerminalEvent.output(2, b"b"))
        for c in (c1, c2):
            first, second = c.get_nowait(), c.get_nowait()
            assert first is not None and second is not None
            assert (first.session_id, second.session_id) == (1, 2)

    def test_subscribe_twice_delivers_once(self) -> None:
        bus = EventBroadcaster()
        consumer = QueueConsumer()
        bus.subscribe(consumer)
        bus.subscribe(consumer)
        bus.publish(TerminalEvent.output(1, b"x"))
        assert consumer.queue.qsize() == 1
        assert bus.consumer_count == 1

    def test_unsubscribe(self) -> None:
        bus = EventBroadcaster()
        consumer = QueueConsumer()
        bus.subscribe(consumer)
        bus.unsubscribe(consumer)
        bus.publish(TerminalEvent.output(1, b"x"))
        assert consumer.queue.empty()

    def test_unsubscribe_nonexistent_is_safe(self) -> None:
        bus = EventBroadcaster()
        bus.unsubscribe(QueueConsumer())  # Should not raise

    def test_subscription_dispose(self) -> None:
        bus = EventBroadcaster()
        consumer = QueueConsumer()
        subscription = bus.subscribe(consumer)
        subscription.dispose()
        assert bus.consumer_count == 0

    def test_subscription_context_manager(self) -> None:
        bus = EventBroadcaster()
        with bus.subscribe(QueueConsumer()):
            assert bus.consumer_count == 1
        assert bus.consumer_count == 0

    def test_per_session_order_preserved(self) -> None:
        bus = EventBroadcaster()
        consumer = QueueConsumer()
        bus.subscribe(consumer)
        for i in range(20):
            bus.publish(TerminalEvent.output(7, str(i).encode()))
        received = [consumer.get_nowait() for _ in range(20)]
        assert [e.data for e in received if e is not None] == [
            str(i).encode() for i in range(20)
        ]


# ---------------------------------------------------------------------------
# Gone consumers
# ---------------------------------------------------------------------------


class _Exploding(Consumer):
    def deliver(self, event: TerminalEvent) -> None:
        raise RuntimeError("boom")


class TestGoneConsumers:
    def test_closed_queue_consumer_raises_gone(self) -> None:
        consumer = QueueConsumer()
        consumer.close()
        with pytest.raises(ConsumerGone):
            consumer.deliver(TerminalEvent.output(1, b"x"))

    def test_gone_consumer_does_not_block_others(self) -> None:
        bus = EventBroadcaster()
        gone = QueueConsumer()
        alive = QueueConsumer()
        bus.subscribe(gone)
        bus.subscribe(alive)
        gone.close()
        bus.publish(TerminalEvent.output(1, b"still here"))
        event = alive.get_nowait()
        assert event is not None and event.data == b"still here"

    def test_failing_consumer_does_not_block_others(self) -> None:
        bus = EventBroadcaster()
        alive = QueueConsumer()
        bus.subscribe(_Exploding())
        bus.subscribe(alive)
        bus.publish(TerminalEvent.exited(1))  # Should not raise
        assert alive.queue.qsize() == 1

    def test_callback_consumer_sends_message(self) -> None:
        sent: list[dict[str, Any]] = []
        bus = EventBroadcaster()
        bus.subscribe(CallbackConsumer(sent.append, name="window-1"))
        bus.publish(TerminalEvent.output(2, b"ok"))
        assert sent == [{"type": "data", "sessionId": 2, "data": b"ok"}]

    def test_callback_consumer_destroyed_transport(self) -> None:
        sent: list[dict[str, Any]] = []
        destroyed = {"value": False}
        consumer = CallbackConsumer(sent.append, is_alive=lambda: not destroyed["value"])
        bus = EventBroadcaster()
        bus.subscribe(consumer)
        destroyed["value"] = True
        bus.publish(TerminalEvent.output(1, b"lost"))
        assert sent == []
        with pytest.raises(ConsumerGone):
            consumer.deliver(TerminalEvent.output(1, b"lost"))


# ---------------------------------------------------------------------------
# Closed-state guard
# ---------------------------------------------------------------------------


class TestBroadcasterClosed:
    def test_close_sends_none_sentinel(self) -> None:
        bus = EventBroadcaster()
        consumer = QueueConsumer()
        bus.subscribe(consumer)
        bus.close()
        assert consumer.get_nowait() is None

    def test_publish_after_close_is_dropped(self) -> None:
        bus = EventBroadcaster()
        consumer = QueueConsumer()
        bus.subscribe(consumer)
        bus.close()
        consumer.get_nowait()  # drain sentinel
        bus.publish(TerminalEvent.output(1, b"too late"))
        assert consumer.queue.empty()

    def test_close_idempotent(self) -> None:
        bus = EventBroadcaster()
        consumer = QueueConsumer()
        bus.subscribe(consumer)
        bus.close()
        bus.close()
        assert consumer.queue.qsize() == 1

    async def test_async_iteration_stops_at_close(self) -> None:
        bus = EventBroadcaster()
        consumer = QueueConsumer()
        bus.subscribe(consumer)
        bus.publish(TerminalEvent.output(1, b"a"))
        bus.publish(TerminalEvent.exited(1, exit_code=0))
        bus.close()
        received = [event async for event in consumer]
        assert [e.type for e in received] == [EventType.DATA, EventType.EXIT]

"""
Tests for the observation event bus.
Covers pub/sub, once handlers, wait_for, filters, metrics, history and
the dead letter queue.
"""

import asyncio

import pytest

from narrator.core.event_bus import Event, EventBus, EventType


@pytest.fixture
async def event_bus():
    """A fresh, running bus for each test."""
    bus = EventBus()
    await bus.start()
    yield bus
    await bus.stop()


class TestBasicPubSub:
    """Test basic publish/subscribe functionality."""

    @pytest.mark.asyncio
    async def test_basic_subscription(self, event_bus):
        """Test basic event subscription and emission."""
        received_events = []

        async def handler(event: Event):
            received_events.append(event)

        event_bus.subscribe(EventType.EMOTION_CHANGED, handler)
        await event_bus.emit(EventType.EMOTION_CHANGED, {"emotion": "curious"})
        await asyncio.sleep(0.05)

        assert len(received_events) == 1
        assert received_events[0].type == EventType.EMOTION_CHANGED
        assert received_events[0].data["emotion"] == "curious"

    @pytest.mark.asyncio
    async def test_sync_publish_and_sync_handler(self, event_bus):
        """Test that plain callbacks can publish and plain functions can handle."""
        received = []

        event_bus.subscribe(EventType.TEXT_SHOWN, lambda event: received.append(event.data["token"]))
        event_bus.publish(EventType.TEXT_SHOWN, {"token": 7}, source="test")
        await asyncio.sleep(0.05)

        assert received == [7]

    @pytest.mark.asyncio
    async def test_multiple_subscribers(self, event_bus):
        """Test multiple handlers for the same event."""
        calls = []

        async def first(event: Event):
            calls.append("first")

        async def second(event: Event):
            calls.append("second")

        event_bus.subscribe(EventType.TEXT_COMPLETED, first)
        event_bus.subscribe(EventType.TEXT_COMPLETED, second)
        await event_bus.emit(EventType.TEXT_COMPLETED, {})
        await asyncio.sleep(0.05)

        assert sorted(calls) == ["first", "second"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, event_bus):
        """Test that unsubscribed handlers stop receiving events."""
        received = []

        async def handler(event: Event):
            received.append(event)

        event_bus.subscribe(EventType.RESPONSE_BLOCKED, handler)
        await event_bus.emit(EventType.RESPONSE_BLOCKED, {"reason": "global_lock"})
        await asyncio.sleep(0.05)

        event_bus.unsubscribe(handler)
        await event_bus.emit(EventType.RESPONSE_BLOCKED, {"reason": "global_lock"})
        await asyncio.sleep(0.05)

        assert len(received) == 1


class TestOnceAndWaitFor:
    """Test one-time subscriptions and wait_for."""

    @pytest.mark.asyncio
    async def test_once_handler(self, event_bus):
        """Test that a once handler runs a single time."""
        received = []

        async def handler(event: Event):
            received.append(event)

        event_bus.once(EventType.SEQUENCE_LOCKED, handler)
        await event_bus.emit(EventType.SEQUENCE_LOCKED, {"sequence_id": 1})
        await event_bus.emit(EventType.SEQUENCE_LOCKED, {"sequence_id": 2})
        await asyncio.sleep(0.05)

        assert len(received) == 1
        assert received[0].data["sequence_id"] == 1

    @pytest.mark.asyncio
    async def test_wait_for_success(self, event_bus):
        """Test waiting for an event that arrives."""
        async def emit_later():
            await asyncio.sleep(0.05)
            event_bus.publish(EventType.AMBIENT_SCHEDULED, {"delay": 4.0})

        asyncio.create_task(emit_later())
        result = await event_bus.wait_for(EventType.AMBIENT_SCHEDULED, timeout=1.0)

        assert result is not None
        assert result.data["delay"] == 4.0

    @pytest.mark.asyncio
    async def test_wait_for_timeout(self, event_bus):
        """Test wait_for timeout."""
        result = await event_bus.wait_for(EventType.SYSTEM_STOPPED, timeout=0.05)
        assert result is None

    @pytest.mark.asyncio
    async def test_wait_for_with_filter(self, event_bus):
        """Test wait_for with a filter function."""
        async def emit_events():
            await asyncio.sleep(0.02)
            event_bus.publish(EventType.TEXT_SHOWN, {"token": 1})
            await asyncio.sleep(0.02)
            event_bus.publish(EventType.TEXT_SHOWN, {"token": 2})

        asyncio.create_task(emit_events())
        result = await event_bus.wait_for(
            EventType.TEXT_SHOWN,
            timeout=1.0,
            filter_func=lambda e: e.data.get("token") == 2,
        )

        assert result is not None
        assert result.data["token"] == 2


class TestMetricsAndHistory:
    """Test metrics and event history."""

    @pytest.mark.asyncio
    async def test_event_counting(self, event_bus):
        """Test per-type event counts."""
        event_bus.publish(EventType.EMOTION_CHANGED, {})
        event_bus.publish(EventType.EMOTION_CHANGED, {})
        event_bus.publish(EventType.TEXT_SHOWN, {})

        stats = event_bus.get_stats()
        assert stats["metrics"]["total_events"] == 3
        assert stats["metrics"]["events_by_type"]["emotion_changed"] == 2
        assert stats["metrics"]["events_by_type"]["text_shown"] == 1

    @pytest.mark.asyncio
    async def test_event_history_filter(self, event_bus):
        """Test history filtered by type."""
        event_bus.publish(EventType.TEXT_SHOWN, {"token": 1})
        event_bus.publish(EventType.TEXT_COMPLETED, {"token": 1})
        event_bus.publish(EventType.TEXT_SHOWN, {"token": 2})

        shown = event_bus.get_event_history(EventType.TEXT_SHOWN)
        assert [e.data["token"] for e in shown] == [1, 2]
        assert len(event_bus.get_event_history(limit=2)) == 2

    def test_history_is_bounded(self):
        """Test that history keeps only the most recent events."""
        bus = EventBus(history_size=3)
        for token in range(5):
            bus.publish(EventType.TEXT_SHOWN, {"token": token})

        assert [e.data["token"] for e in bus.get_event_history(limit=10)] == [2, 3, 4]

    def test_queue_overflow_is_counted(self):
        """Test that a full queue drops events instead of raising."""
        bus = EventBus(max_queue_size=1)
        bus.publish(EventType.TEXT_SHOWN, {})
        bus.publish(EventType.TEXT_SHOWN, {})

        assert bus.get_stats()["metrics"]["queue_overflows"] == 1


class TestErrorHandling:
    """Test handler failure isolation."""

    @pytest.mark.asyncio
    async def test_handler_error_doesnt_stop_bus(self, event_bus):
        """Test that one failing handler doesn't affect others."""
        received = []

        async def failing(event: Event):
            raise ValueError("boom")

        async def working(event: Event):
            received.append(event)

        event_bus.subscribe(EventType.EMOTION_CHANGED, failing)
        event_bus.subscribe(EventType.EMOTION_CHANGED, working)
        await event_bus.emit(EventType.EMOTION_CHANGED, {})
        await asyncio.sleep(0.05)

        assert len(received) == 1
        assert len(event_bus.dead_letter_queue) == 1
        assert event_bus.dead_letter_queue[0]["error"] == "boom"

    @pytest.mark.asyncio
    async def test_error_event_emission(self, event_bus):
        """Test that handler errors are reported as ERROR_OCCURRED."""
        errors = []

        async def failing(event: Event):
            raise RuntimeError("handler broke")

        async def on_error(event: Event):
            errors.append(event)

        event_bus.subscribe(EventType.TEXT_SHOWN, failing)
        event_bus.subscribe(EventType.ERROR_OCCURRED, on_error)
        await event_bus.emit(EventType.TEXT_SHOWN, {})
        await asyncio.sleep(0.05)

        assert len(errors) == 1
        assert errors[0].data["error_type"] == "RuntimeError"
        assert errors[0].data["event_type"] == "text_shown"

    def test_event_round_trip(self):
        """Test Event serialization."""
        event = Event(type=EventType.SEQUENCE_UNLOCKED, data={"sequence_id": 3},
                      timestamp=12.5, source="sequence_coordinator")
        restored = Event.from_dict(event.to_dict())

        assert restored.type == EventType.SEQUENCE_UNLOCKED
        assert restored.data == {"sequence_id": 3}
        assert restored.source == "sequence_coordinator"

"""Unit tests for the event manager."""

import asyncio

import pytest

from savegame.events.manager import EventManager, EventType


@pytest.mark.unit()
class TestEventManager:
    """Test subscription and delivery."""

    def setup_method(self):
        self.event_manager = EventManager()

    def test_delivery_follows_subscription_order(self):
        calls = []
        for name in ("first", "second", "third"):
            self.event_manager.subscribe_to_events(
                EventType.SAVE_COMPLETED,
                lambda event_type, data, name=name: calls.append(name),
            )

        self.event_manager.emit_event(EventType.SAVE_COMPLETED, {"slot_name": "a"})

        assert calls == ["first", "second", "third"]

    def test_failing_subscriber_does_not_block_others(self):
        received = []

        def broken(event_type, data):
            raise RuntimeError("subscriber failure")

        self.event_manager.subscribe_to_events(EventType.SAVE_ERROR, broken)
        self.event_manager.subscribe_to_events(
            EventType.SAVE_ERROR, lambda event_type, data: received.append(data)
        )

        self.event_manager.emit_event(EventType.SAVE_ERROR, {"error": "disk full"})

        assert received == [{"error": "disk full"}]
        assert self.event_manager.stats["errors"] == 1

    def test_callback_receives_string_event_type(self):
        received = []
        self.event_manager.subscribe_to_events(
            "load_completed", lambda event_type, data: received.append(event_type)
        )

        self.event_manager.emit_event(EventType.LOAD_COMPLETED)

        assert received == ["load_completed"]

    def test_unsubscribe(self):
        received = []
        subscription_id = self.event_manager.subscribe_to_events(
            EventType.LOAD_FAILED, lambda event_type, data: received.append(data)
        )

        assert self.event_manager.unsubscribe(subscription_id)
        assert not self.event_manager.unsubscribe(subscription_id)

        self.event_manager.emit_event(EventType.LOAD_FAILED, {})
        assert received == []

    def test_subscriber_count_and_clear(self):
        noop = lambda event_type, data: None  # noqa: E731
        self.event_manager.subscribe_to_events(EventType.SAVE_STARTED, noop)
        self.event_manager.subscribe_to_events(EventType.SAVE_STARTED, noop)
        self.event_manager.subscribe_to_events(EventType.LOAD_STARTED, noop)

        assert self.event_manager.get_subscriber_count(EventType.SAVE_STARTED) == 2
        assert self.event_manager.get_subscriber_count() == 3

        self.event_manager.clear_subscribers(EventType.SAVE_STARTED)
        assert self.event_manager.get_subscriber_count() == 1

    def test_history_is_bounded(self):
        event_manager = EventManager(max_history_size=3)
        for i in range(5):
            event_manager.emit_event(EventType.SAVE_PROGRESS, {"progress": i})

        recent = event_manager.get_recent_events(EventType.SAVE_PROGRESS)
        assert [event.data["progress"] for event in recent] == [2, 3, 4]

    @pytest.mark.asyncio()
    async def test_coroutine_subscriber_is_scheduled(self):
        received = asyncio.Event()

        async def on_event(event_type, data):
            received.set()

        self.event_manager.subscribe_to_events(EventType.SAVE_COMPLETED, on_event)
        self.event_manager.emit_event(EventType.SAVE_COMPLETED, {})

        await asyncio.wait_for(received.wait(), timeout=1.0)

    @pytest.mark.asyncio()
    async def test_failing_coroutine_subscriber_is_collected(self):
        async def on_event(event_type, data):
            raise RuntimeError("boom")

        self.event_manager.subscribe_to_events(EventType.SAVE_COMPLETED, on_event)
        self.event_manager.emit_event(EventType.SAVE_COMPLETED, {})
        assert len(self.event_manager._pending_tasks) == 1

        for _ in range(10):
            if not self.event_manager._pending_tasks:
                break
            await asyncio.sleep(0)

        assert not self.event_manager._pending_tasks
        assert self.event_manager.stats["errors"] == 1

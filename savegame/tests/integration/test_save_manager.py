"""Integration tests for saving and single-slot loading."""

import asyncio
import json

import pytest

from savegame.events.manager import EventType
from savegame.tests.helpers import EventRecorder, make_save_data


@pytest.mark.integration()
class TestSaveGame:
    """Test the save path end to end on disk."""

    @pytest.fixture(autouse=True)
    def _system(self, save_system):
        self.system = save_system
        self.save_manager = save_system.save_manager
        self.storage = save_system.storage

    @pytest.mark.asyncio()
    async def test_save_and_load_round_trip(self):
        save_data = make_save_data(with_instances=True)

        assert await self.save_manager.save_game_async("slot1", save_data)

        loaded = await self.save_manager.load_game_async("slot1")
        assert loaded is not None
        assert loaded.to_payload() == save_data.to_payload()
        assert self.save_manager.current_slot_name == "slot1"
        assert self.save_manager.current_save_data is loaded

    @pytest.mark.asyncio()
    async def test_unchanged_resave_keeps_checksum(self):
        save_data = make_save_data()
        await self.save_manager.save_game_async("slot1", save_data)
        first = json.loads(self.storage.load_file("slot1"))["checksum"]

        await self.save_manager.save_game_async("slot1", save_data)
        second = json.loads(self.storage.load_file("slot1"))["checksum"]

        assert first == second

    @pytest.mark.asyncio()
    async def test_save_events_and_progress(self, event_manager):
        recorder = EventRecorder(
            event_manager,
            EventType.SAVE_STARTED,
            EventType.SAVE_PROGRESS,
            EventType.SAVE_COMPLETED,
        )

        await self.save_manager.save_game_async(
            "slot1", make_save_data(), reason="Manual"
        )

        progress = [
            data["progress"] for data in recorder.of_type(EventType.SAVE_PROGRESS)
        ]
        assert progress == [0.2, 0.4, 0.6, 0.9, 1.0]
        assert recorder.names[0] == "save_started"
        assert recorder.names[-1] == "save_completed"
        assert recorder.of_type(EventType.SAVE_COMPLETED)[0]["reason"] == "Manual"

    @pytest.mark.asyncio()
    async def test_backups_bounded_to_newest(self):
        contents = []
        for credits in range(5):
            await self.save_manager.save_game_async(
                "slot1", make_save_data(credits=float(credits))
            )
            contents.append(self.storage.load_file("slot1"))

        backups = self.storage.backups.list_backups("slot1")
        assert len(backups) == self.system.config.max_backups
        # Each backup holds a payload that a later save replaced
        assert (
            [entry.path.read_text(encoding="utf-8") for entry in backups]
            == contents[1:4]
        )

    @pytest.mark.asyncio()
    async def test_first_save_creates_no_backup(self):
        await self.save_manager.save_game_async("slot1", make_save_data())
        assert self.storage.get_available_backups("slot1") == []

    @pytest.mark.asyncio()
    async def test_concurrent_save_is_rejected(self):
        results = await asyncio.gather(
            self.save_manager.save_game_async("slot1", make_save_data()),
            self.save_manager.save_game_async("slot2", make_save_data()),
        )

        assert results == [True, False]
        assert self.storage.get_available_save_slots() == ["slot1"]
        assert not self.save_manager.is_saving

    @pytest.mark.asyncio()
    async def test_save_without_data_fails(self, event_manager):
        recorder = EventRecorder(event_manager, EventType.SAVE_ERROR)

        assert not await self.save_manager.save_game_async("slot1")
        assert len(recorder.of_type(EventType.SAVE_ERROR)) == 1

    @pytest.mark.asyncio()
    async def test_save_uses_state_provider(self):
        self.save_manager.state_provider = lambda: make_save_data(credits=42.0)

        assert await self.save_manager.save_game_async("slot1")
        assert self.storage.load_metadata("slot1").current_credits == 42.0

    @pytest.mark.asyncio()
    async def test_invalid_slot_name_fails(self):
        assert not await self.save_manager.save_game_async("Backups", make_save_data())
        assert not await self.save_manager.save_game_async(
            "../escape", make_save_data()
        )

    @pytest.mark.asyncio()
    async def test_slot_limit(self):
        self.system.config.max_save_slots = 2
        assert await self.save_manager.save_game_async("a", make_save_data())
        assert await self.save_manager.save_game_async("b", make_save_data())
        assert not await self.save_manager.save_game_async("c", make_save_data())
        # Overwriting an existing slot is still allowed
        assert await self.save_manager.save_game_async("a", make_save_data())

    @pytest.mark.asyncio()
    async def test_lazy_record_cannot_be_saved(self):
        save_data = make_save_data(with_instances=True)
        save_data.defer_sections()
        assert not await self.save_manager.save_game_async("slot1", save_data)
        assert not self.storage.slot_exists("slot1")


@pytest.mark.integration()
class TestQuickSaveAndSlots:
    """Test quick save, quick load and slot queries."""

    @pytest.fixture(autouse=True)
    def _system(self, save_system):
        self.system = save_system
        self.save_manager = save_system.save_manager

    @pytest.mark.asyncio()
    async def test_quicksave_slot_info(self):
        save_data = make_save_data(credits=5000, play_time=2.5, contracts=3)
        assert await self.save_manager.save_game_async("quicksave", save_data)

        info = self.save_manager.get_save_slot_info("quicksave")

        assert info.current_credits == 5000
        assert info.play_time_hours == 2.5
        assert info.total_contracts == 3
        assert info.is_valid

    @pytest.mark.asyncio()
    async def test_tampered_slot_info_is_invalid(self):
        await self.save_manager.save_game_async("slot1", make_save_data())
        payload_path = self.system.storage.get_payload_path("slot1")
        payload = json.loads(payload_path.read_text())
        payload["game_state"]["current_credits"] = 1e6
        payload_path.write_text(json.dumps(payload))

        assert not self.save_manager.get_save_slot_info("slot1").is_valid

    def test_missing_slot_info(self):
        assert self.save_manager.get_save_slot_info("missing") is None

    @pytest.mark.asyncio()
    async def test_quick_save_and_load_use_current_slot(self):
        assert not await self.save_manager.quick_save_async()
        assert await self.save_manager.quick_load_async() is None

        await self.save_manager.save_game_async("slot1", make_save_data(credits=10.0))
        self.save_manager.current_save_data.game_state.current_credits = 20.0

        assert await self.save_manager.quick_save_async()
        loaded = await self.save_manager.quick_load_async()
        assert loaded.current_credits == 20.0

    @pytest.mark.asyncio()
    async def test_slots_listed_newest_first(self):
        for slot_name in ("first", "second", "third"):
            await self.save_manager.save_game_async(slot_name, make_save_data())

        slots = self.save_manager.get_save_slots()
        assert (
            [metadata.slot_name for metadata in slots]
            == ["third", "second", "first"]
        )

    @pytest.mark.asyncio()
    async def test_delete_slot(self):
        await self.save_manager.save_game_async("slot1", make_save_data())
        await self.save_manager.save_game_async("slot1", make_save_data())

        assert self.save_manager.delete_save_slot("slot1")
        assert self.save_manager.current_slot_name is None
        assert self.save_manager.get_save_slots() == []
        assert self.system.storage.get_available_backups("slot1") == []
        assert not self.save_manager.delete_save_slot("slot1")


@pytest.mark.integration()
class TestSingleSlotLoad:
    """Test loading through the save manager."""

    @pytest.fixture(autouse=True)
    def _system(self, save_system):
        self.system = save_system
        self.save_manager = save_system.save_manager

    @pytest.mark.asyncio()
    async def test_load_missing_slot(self, event_manager):
        recorder = EventRecorder(event_manager, EventType.SLOT_LOAD_ERROR)

        assert await self.save_manager.load_game_async("missing") is None
        assert "not found" in self.save_manager.last_load_error
        assert recorder.of_type(EventType.SLOT_LOAD_ERROR)[0]["error_type"] == (
            "SaveNotFoundError"
        )

    @pytest.mark.asyncio()
    async def test_load_without_apply_keeps_current(self):
        await self.save_manager.save_game_async("slot1", make_save_data(credits=1.0))
        await self.save_manager.save_game_async("slot2", make_save_data(credits=2.0))

        loaded = await self.save_manager.load_game_async("slot1", apply=False)

        assert loaded.current_credits == 1.0
        assert self.save_manager.current_slot_name == "slot2"

    @pytest.mark.asyncio()
    async def test_load_migrates_older_record_in_memory(self):
        await self.save_manager.save_game_async(
            "old", make_save_data(save_version="1.2.0")
        )

        loaded = await self.save_manager.load_game_async("old")

        assert loaded.save_version == "1.4.0"
        assert loaded.game_state.company_reputation == 100.0
        # The slot on disk is left as written
        assert self.system.storage.load_metadata("old").save_version == "1.2.0"

    @pytest.mark.asyncio()
    async def test_load_rejects_newer_record(self):
        await self.save_manager.save_game_async(
            "new", make_save_data(save_version="9.0.0")
        )

        assert await self.save_manager.load_game_async("new") is None
        assert "Cannot migrate" in self.save_manager.last_load_error

    @pytest.mark.asyncio()
    async def test_concurrent_load_is_rejected(self):
        await self.save_manager.save_game_async("slot1", make_save_data())

        results = await asyncio.gather(
            self.save_manager.load_game_async("slot1"),
            self.save_manager.load_game_async("slot1"),
        )

        assert results[0] is not None
        assert results[1] is None


@pytest.mark.integration()
class TestAutoSave:
    """Test autosave triggers and the shutdown save."""

    @pytest.fixture(autouse=True)
    def _system(self, save_system):
        self.system = save_system
        self.save_manager = save_system.save_manager

    def test_trigger_without_loop_or_save(self):
        assert self.save_manager.trigger_auto_save() is None

    @pytest.mark.asyncio()
    async def test_trigger_requires_enabled_and_current_save(self):
        assert self.save_manager.trigger_auto_save() is None

        self.save_manager.set_auto_save_enabled(True)
        assert self.save_manager.trigger_auto_save() is None

    @pytest.mark.asyncio()
    async def test_pause_and_focus_trigger_save(self, event_manager):
        recorder = EventRecorder(event_manager, EventType.SAVE_COMPLETED)
        await self.save_manager.save_game_async("slot1", make_save_data())
        self.save_manager.set_auto_save_enabled(True)

        self.save_manager.on_application_pause(True)
        await asyncio.gather(*self.save_manager._background_tasks)
        self.save_manager.on_application_focus(False)
        await asyncio.gather(*self.save_manager._background_tasks)

        reasons = [
            data["reason"] for data in recorder.of_type(EventType.SAVE_COMPLETED)
        ]
        assert reasons == [None, "Application Pause", "Application Focus Lost"]

    @pytest.mark.asyncio()
    async def test_periodic_auto_save(self, event_manager):
        recorder = EventRecorder(event_manager, EventType.SAVE_COMPLETED)
        await self.save_manager.save_game_async("slot1", make_save_data())
        self.system.config.auto_save_interval = 0.01
        self.save_manager.set_auto_save_enabled(True)

        assert self.save_manager.start_auto_save()
        assert self.save_manager.is_auto_save_running
        for _ in range(100):
            if len(recorder.events) > 1:
                break
            await asyncio.sleep(0.01)
        self.save_manager.stop_auto_save()

        assert (
            recorder.of_type(EventType.SAVE_COMPLETED)[1]["reason"]
            == "Periodic Auto Save"
        )

    @pytest.mark.asyncio()
    async def test_shutdown_saves_current_record(self, event_manager):
        recorder = EventRecorder(event_manager, EventType.SAVE_COMPLETED)
        await self.save_manager.save_game_async("slot1", make_save_data())
        self.save_manager.set_auto_save_enabled(True)

        assert await self.system.shutdown()
        assert (
            recorder.of_type(EventType.SAVE_COMPLETED)[-1]["reason"]
            == "Application Quit"
        )

    @pytest.mark.asyncio()
    async def test_shutdown_without_autosave_does_not_save(self):
        await self.save_manager.save_game_async("slot1", make_save_data())
        assert not await self.save_manager.shutdown()

    @pytest.mark.asyncio()
    async def test_shutdown_save_is_bounded(self, monkeypatch):
        await self.save_manager.save_game_async("slot1", make_save_data())
        self.save_manager.set_auto_save_enabled(True)
        self.system.config.shutdown_save_timeout = 0.05

        async def slow_save(reason=None):
            await asyncio.sleep(10)
            return True

        monkeypatch.setattr(self.save_manager, "quick_save_async", slow_save)

        assert not await self.save_manager.shutdown()

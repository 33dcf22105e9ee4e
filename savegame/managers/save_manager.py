"""Save manager.

The single writer of slot payloads. Saves back up the previous payload
before overwriting it, write payload and metadata as one unit and report
progress at fixed checkpoints. Loads verify the checksum, reject records
the validator grades critical and migrate older records forward in memory.

Only one save and one load may run at a time; a second request of the
same kind is rejected rather than queued.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from ..config.settings import SaveSystemConfig
from ..errors import (
    BackupError,
    SaveIntegrityError,
    SaveIOError,
    SaveSystemError,
    VersionMismatchError,
)
from ..events.manager import EventManager, EventType
from ..migrations.pipeline import versions_match
from ..models.operations import OperationSession, SaveSession
from ..models.save_data import SaveData
from ..models.slots import SaveMetadata, SaveSlotInfo
from ..storage.persistence import SaveFileStorage
from ..validation.validator import SaveValidator

logger = logging.getLogger(__name__)

QUICK_SAVE_REASON = "Quick Save"
AUTO_SAVE_REASON = "Auto Save"


class SaveManager:
    """Writes and reads save slots."""

    def __init__(
        self,
        config: SaveSystemConfig,
        storage: SaveFileStorage,
        validator: SaveValidator,
        event_manager: EventManager,
        state_provider: Optional[Callable[[], Optional[SaveData]]] = None,
    ):
        """Initialize the save manager.

        Args:
            config: Save system settings
            storage: Slot storage
            validator: Record validator and migrator
            event_manager: Channel for save and slot load events
            state_provider: Optional callable returning a snapshot of the
                current game state, used when a save is requested without a
                record
        """
        self.config = config
        self.storage = storage
        self.validator = validator
        self.event_manager = event_manager
        self.state_provider = state_provider

        self.current_save_data: Optional[SaveData] = None
        self.current_slot_name: Optional[str] = None
        self.last_load_error: Optional[str] = None

        self._save_session: Optional[SaveSession] = None
        self._load_session: Optional[OperationSession] = None
        self._auto_save_task: Optional[asyncio.Task] = None
        self._background_tasks: set[asyncio.Task] = set()

    # State

    @property
    def is_saving(self) -> bool:
        return self._save_session is not None

    @property
    def is_loading(self) -> bool:
        return self._load_session is not None

    @property
    def save_progress(self) -> float:
        return self._save_session.progress if self._save_session else 0.0

    @property
    def load_progress(self) -> float:
        return self._load_session.progress if self._load_session else 0.0

    @property
    def has_current_save(self) -> bool:
        return self.current_save_data is not None and bool(self.current_slot_name)

    @property
    def is_auto_save_running(self) -> bool:
        return self._auto_save_task is not None and not self._auto_save_task.done()

    def apply_loaded_data(self, save_data: SaveData, slot_name: str) -> None:
        """Make a loaded record the current record."""
        self.current_save_data = save_data
        self.current_slot_name = slot_name

    # Saving

    async def save_game_async(
        self,
        slot_name: str,
        save_data: Optional[SaveData] = None,
        reason: Optional[str] = None,
    ) -> bool:
        """Save a record to a slot.

        Args:
            slot_name: Target slot
            save_data: Record to save (defaults to the state provider's
                snapshot, then the current record)
            reason: Why the save was requested, passed through to events

        Returns:
            True if payload and metadata were written
        """
        if self.is_saving:
            logger.warning(
                f"Save to {slot_name} rejected: save to "
                f"{self._save_session.slot_name} already in progress"
            )
            return False

        session = SaveSession(slot_name=slot_name, reason=reason)
        self._save_session = session

        try:
            self.event_manager.emit_event(
                EventType.SAVE_STARTED, {"slot_name": slot_name, "reason": reason}
            )
            self.storage.validate_slot_name(slot_name)

            record = save_data or self._capture_state()
            if record is None:
                raise SaveSystemError("No save data available to save", slot_name)
            if record.is_lazy:
                raise SaveIntegrityError(
                    "Cannot save a lazily loaded record until its deferred "
                    "sections are loaded",
                    slot_name,
                )

            is_new_slot = not self.storage.slot_exists(slot_name)
            if is_new_slot:
                slot_count = len(self.storage.get_available_save_slots())
                if slot_count >= self.config.max_save_slots:
                    raise SaveIOError(
                        f"Maximum number of save slots reached "
                        f"({self.config.max_save_slots})",
                        slot_name,
                    )

            record.prepare_for_save(slot_name)
            content = record.to_json()
            self._report_save_progress(session, 0.2)

            self.storage.ensure_slot_directory(slot_name)
            self._report_save_progress(session, 0.4)

            if self.config.create_backups and not is_new_slot:
                await self._create_backup_async(slot_name)
            self._report_save_progress(session, 0.6)

            file_size = len(content.encode("utf-8"))
            metadata = SaveMetadata.from_save_data(
                record, slot_name=slot_name, file_size=file_size
            )
            await self.storage.save_slot_async(slot_name, content, metadata)
            self._report_save_progress(session, 0.9)

            record.save_file_path = str(self.storage.get_payload_path(slot_name))
            record.save_file_size = file_size
            self.current_save_data = record
            self.current_slot_name = slot_name

            self._report_save_progress(session, 1.0)
            self.event_manager.emit_event(
                EventType.SAVE_COMPLETED,
                {
                    "slot_name": slot_name,
                    "save_name": record.save_name,
                    "checksum": record.checksum,
                    "reason": reason,
                },
            )
            logger.info(f"Saved game to slot {slot_name} ({file_size} bytes)")
            return True

        except Exception as e:
            logger.error(f"Failed to save game to slot {slot_name}: {e}")
            self.event_manager.emit_event(
                EventType.SAVE_ERROR,
                {"slot_name": slot_name, "error": str(e), "reason": reason},
            )
            return False

        finally:
            self._save_session = None

    def _capture_state(self) -> Optional[SaveData]:
        if self.state_provider is not None:
            snapshot = self.state_provider()
            if snapshot is not None:
                return snapshot
        return self.current_save_data

    async def _create_backup_async(self, slot_name: str) -> None:
        """Back up and rotate; failures are logged and the save continues."""
        try:
            entry = await self.storage.create_backup_async(slot_name)
            if entry is not None:
                await self.storage.cleanup_old_backups_async(
                    slot_name, self.config.max_backups
                )
        except (BackupError, SaveIOError, OSError) as e:
            logger.warning(f"Backup of {slot_name} failed, saving without backup: {e}")

    def _report_save_progress(self, session: SaveSession, progress: float) -> None:
        session.update_progress(progress)
        self.event_manager.emit_event(
            EventType.SAVE_PROGRESS,
            {"slot_name": session.slot_name, "progress": session.progress},
        )

    async def quick_save_async(self, reason: str = QUICK_SAVE_REASON) -> bool:
        if not self.current_slot_name:
            logger.warning(f"{reason} skipped: no current save slot")
            return False
        return await self.save_game_async(self.current_slot_name, reason=reason)

    # Loading

    async def load_game_async(
        self, slot_name: str, apply: bool = True
    ) -> Optional[SaveData]:
        """Load a record from a slot.

        Args:
            slot_name: Slot to load
            apply: Make the loaded record the current record

        Returns:
            The verified, current-version record, or None on any failure
        """
        if self.is_loading:
            logger.warning(
                f"Load of {slot_name} rejected: load of "
                f"{self._load_session.slot_name} already in progress"
            )
            return None

        session = OperationSession(slot_name=slot_name)
        self._load_session = session
        self.last_load_error = None

        try:
            self.event_manager.emit_event(
                EventType.SLOT_LOAD_STARTED, {"slot_name": slot_name}
            )
            save_data = await self._read_slot_async(session)

            if apply:
                self.apply_loaded_data(save_data, slot_name)

            self._report_load_progress(session, 1.0)
            self.event_manager.emit_event(
                EventType.SLOT_LOAD_COMPLETED,
                {
                    "slot_name": slot_name,
                    "save_name": save_data.save_name,
                    "save_version": save_data.save_version,
                },
            )
            logger.info(f"Loaded game from slot {slot_name}")
            return save_data

        except Exception as e:
            self.last_load_error = str(e)
            logger.error(f"Failed to load game from slot {slot_name}: {e}")
            self.event_manager.emit_event(
                EventType.SLOT_LOAD_ERROR,
                {
                    "slot_name": slot_name,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return None

        finally:
            self._load_session = None

    async def _read_slot_async(self, session: OperationSession) -> SaveData:
        slot_name = session.slot_name
        content = await self.storage.load_file_async(slot_name)
        self._report_load_progress(session, 0.3)

        save_data = SaveData.from_json(content)
        save_data.save_file_path = str(self.storage.get_payload_path(slot_name))
        save_data.save_file_size = len(content.encode("utf-8"))
        self._report_load_progress(session, 0.5)

        result = self.validator.validate_save_data(save_data)
        if result.is_critical:
            raise SaveIntegrityError(
                f"Save data failed validation: {result.get_summary()}", slot_name
            )
        self._report_load_progress(session, 0.7)

        if not versions_match(save_data.save_version, self.config.app_version):
            migrated = self.validator.migrate_save_data(
                save_data, self.config.app_version
            )
            if migrated is None:
                raise VersionMismatchError(
                    f"Cannot migrate save from version {save_data.save_version} "
                    f"to {self.config.app_version}",
                    slot_name,
                )
            migrated.save_file_path = save_data.save_file_path
            migrated.save_file_size = save_data.save_file_size
            save_data = migrated
        self._report_load_progress(session, 0.9)

        return save_data

    def _report_load_progress(self, session: OperationSession, progress: float) -> None:
        session.update_progress(progress)
        self.event_manager.emit_event(
            EventType.SLOT_LOAD_PROGRESS,
            {"slot_name": session.slot_name, "progress": session.progress},
        )

    async def quick_load_async(self) -> Optional[SaveData]:
        if not self.current_slot_name:
            logger.warning("Quick load skipped: no current save slot")
            return None
        return await self.load_game_async(self.current_slot_name)

    # Slots

    def get_save_slots(self) -> list[SaveMetadata]:
        """List slot descriptors, most recently modified first."""
        slots = []
        for slot_name in self.storage.get_available_save_slots():
            metadata = self.storage.load_metadata(slot_name)
            if metadata is None:
                logger.debug(f"Skipping slot without metadata: {slot_name}")
                continue
            slots.append(metadata)

        slots.sort(key=lambda m: m.sort_key, reverse=True)
        return slots

    def get_save_slot_info(self, slot_name: str) -> Optional[SaveSlotInfo]:
        try:
            metadata = self.storage.load_metadata(slot_name)
        except SaveIOError as e:
            logger.warning(f"Cannot read slot info for {slot_name}: {e}")
            return None
        if metadata is None:
            return None

        info = SaveSlotInfo.from_metadata(metadata)
        info.is_valid = info.is_valid and self.storage.validate_file_integrity(
            slot_name
        )
        return info

    def delete_save_slot(self, slot_name: str) -> bool:
        """Delete a slot with its metadata and backups.

        Returns:
            True if the slot was deleted
        """
        if self._save_session is not None and self._save_session.slot_name == slot_name:
            logger.warning(f"Cannot delete slot {slot_name} while it is being saved")
            return False

        try:
            deleted = self.storage.delete_save_slot(slot_name)
        except SaveSystemError as e:
            logger.error(f"Failed to delete save slot {slot_name}: {e}")
            return False

        if deleted and self.current_slot_name == slot_name:
            self.current_slot_name = None
        return deleted

    # Autosave

    def trigger_auto_save(
        self, reason: str = AUTO_SAVE_REASON
    ) -> Optional[asyncio.Task]:
        """Start a background quick save if autosave is allowed right now.

        Returns:
            The background task, or None if no save was started
        """
        if not self.config.auto_save_enabled:
            return None
        if self.is_saving or self.is_loading:
            logger.debug(f"{reason} skipped: operation in progress")
            return None
        if not self.has_current_save:
            logger.debug(f"{reason} skipped: no current save")
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"{reason} skipped: no running event loop")
            return None

        task = loop.create_task(self.quick_save_async(reason))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        logger.debug(f"Triggered {reason}")
        return task

    def start_auto_save(self) -> bool:
        if not self.config.auto_save_enabled:
            logger.info("Autosave disabled")
            return False
        if self.is_auto_save_running:
            return True

        self._auto_save_task = asyncio.get_running_loop().create_task(
            self._auto_save_loop()
        )
        logger.info(f"Autosave started every {self.config.auto_save_interval:.0f}s")
        return True

    def stop_auto_save(self) -> None:
        if self._auto_save_task is not None:
            self._auto_save_task.cancel()
            self._auto_save_task = None
            logger.debug("Autosave stopped")

    def reset_auto_save_timer(self) -> None:
        if self.is_auto_save_running:
            self.stop_auto_save()
            self.start_auto_save()

    def set_auto_save_enabled(self, enabled: bool) -> None:
        self.config.auto_save_enabled = enabled
        if not enabled:
            self.stop_auto_save()

    async def _auto_save_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.auto_save_interval)
            task = self.trigger_auto_save("Periodic Auto Save")
            if task is not None:
                await asyncio.wait({task})

    def on_application_pause(self, paused: bool) -> None:
        if paused:
            self.trigger_auto_save("Application Pause")

    def on_application_focus(self, focused: bool) -> None:
        if not focused:
            self.trigger_auto_save("Application Focus Lost")

    # Shutdown

    async def shutdown(self) -> bool:
        """Stop autosave and make one bounded attempt to save.

        Returns:
            True if the shutdown save completed in time
        """
        self.stop_auto_save()
        timeout = self.config.shutdown_save_timeout

        if self._background_tasks:
            await asyncio.wait(set(self._background_tasks), timeout=timeout)

        if not (self.config.auto_save_enabled and self.has_current_save):
            return False

        try:
            saved = await asyncio.wait_for(
                self.quick_save_async("Application Quit"), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Shutdown save did not finish within {timeout:.1f}s")
            return False

        if saved:
            logger.info("Shutdown save completed")
        return saved

    def get_status(self) -> dict[str, Any]:
        return {
            "current_slot": self.current_slot_name,
            "is_saving": self.is_saving,
            "is_loading": self.is_loading,
            "save_progress": self.save_progress,
            "load_progress": self.load_progress,
            "auto_save_enabled": self.config.auto_save_enabled,
            "auto_save_running": self.is_auto_save_running,
        }

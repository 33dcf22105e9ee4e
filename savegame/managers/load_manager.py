"""Load manager.

Runs loads through a phased pipeline (validate, check compatibility,
migrate, load, validate, sanitize, apply) under a bounded retry policy.
After the first failed attempt the slot payload is restored from its most
recent backup before retrying. Also keeps a TTL cache of slot descriptors
for discovery.

Cancellation is cooperative: ``cancel_load`` marks the running session
cancelled and frees the manager for a new load. The pipeline checks the
flag between phases and drops its result; a file read that is already
running is not interrupted. A load cancelled during the apply phase puts
the previously current record back. Save manager events raised by a
delegated read are never forwarded, even after a cancel.
"""

import asyncio
import inspect
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from ..config.settings import SaveSystemConfig
from ..errors import (
    BackupError,
    LoadCancelledError,
    LoadInProgressError,
    SaveIntegrityError,
    SaveIOError,
    SaveNotFoundError,
    SaveSystemError,
    VersionMismatchError,
)
from ..events.manager import EventManager, EventType
from ..migrations.pipeline import parse_version, versions_match
from ..models.operations import LoadOperation, LoadSession, LoadStrategy
from ..models.save_data import SaveData
from ..models.slots import SaveMetadata
from ..storage.persistence import SaveFileStorage
from ..system.recovery import RetryAttempt, RetryPolicy, retry_async
from ..validation.validator import SaveValidator
from .save_manager import SaveManager

logger = logging.getLogger(__name__)

# Share of overall progress covered by a delegated full load
DELEGATED_PROGRESS_START = 0.4
DELEGATED_PROGRESS_SPAN = 0.3

_FORWARDED_EVENTS = {
    EventType.SLOT_LOAD_STARTED.value: EventType.LOAD_STARTED,
    EventType.SLOT_LOAD_COMPLETED.value: EventType.LOAD_COMPLETED,
    EventType.SLOT_LOAD_ERROR.value: EventType.LOAD_FAILED,
    EventType.SLOT_LOAD_PROGRESS.value: EventType.LOAD_PROGRESS,
}


@dataclass
class SlotCacheEntry:
    """Cached slot descriptor."""

    metadata: SaveMetadata
    cached_at: float


class LoadManager:
    """Retrying load pipeline and slot discovery index."""

    def __init__(
        self,
        config: SaveSystemConfig,
        save_manager: SaveManager,
        storage: SaveFileStorage,
        validator: SaveValidator,
        event_manager: EventManager,
        on_apply: Optional[Callable[[SaveData], Any]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the load manager.

        Args:
            config: Save system settings
            save_manager: Save manager used for full loads and to hold the
                applied record
            storage: Slot storage
            validator: Record validator, sanitizer and migrator
            event_manager: Channel for load and discovery events
            on_apply: Optional callback (sync or async) that pushes a loaded
                record into the running game
            clock: Monotonic clock used for cache expiry
            sleep: Awaitable used for backoff and settle delays
        """
        self.config = config
        self.save_manager = save_manager
        self.storage = storage
        self.validator = validator
        self.event_manager = event_manager
        self.on_apply = on_apply
        self._clock = clock
        self._sleep = sleep

        self.loaded_save_data: Optional[SaveData] = None
        self.retry_history: list[RetryAttempt] = []
        self._session: Optional[LoadSession] = None
        # Slots whose save manager load was started by this pipeline
        self._delegated_loads: set[str] = set()

        self._cache_lock = threading.RLock()
        self._slot_cache: dict[str, SlotCacheEntry] = {}
        self._dirty_slots: set[str] = set()
        self._last_discovery: Optional[float] = None

        self._subscriptions = [
            event_manager.subscribe_to_events(event_type, self._on_storage_event)
            for event_type in (
                EventType.SAVE_FILE_CREATED,
                EventType.SAVE_FILE_DELETED,
                EventType.SAVE_FILE_ERROR,
            )
        ]
        self._subscriptions.extend(
            event_manager.subscribe_to_events(
                event_type, self._on_save_manager_load_event
            )
            for event_type in _FORWARDED_EVENTS
        )

    # State

    @property
    def is_loading(self) -> bool:
        return self._session is not None

    @property
    def current_operation(self) -> LoadOperation:
        return self._session.operation if self._session else LoadOperation.NONE

    @property
    def load_progress(self) -> float:
        return self._session.progress if self._session else 0.0

    @property
    def current_slot_name(self) -> Optional[str]:
        return self._session.slot_name if self._session else None

    def get_status(self) -> dict[str, Any]:
        return {
            "is_loading": self.is_loading,
            "slot_name": self.current_slot_name,
            "operation": self.current_operation.value,
            "progress": self.load_progress,
            "cached_slots": len(self._slot_cache),
        }

    # Loading

    async def load_game_async(
        self, slot_name: str, strategy: LoadStrategy = LoadStrategy.FULL
    ) -> Optional[SaveData]:
        """Load a slot through the retrying pipeline.

        Args:
            slot_name: Slot to load
            strategy: How the payload is brought into memory

        Returns:
            The loaded record, or None if the load failed, was rejected or
            was cancelled
        """
        if self.is_loading:
            logger.warning(
                f"Load of {slot_name} rejected: load of "
                f"{self._session.slot_name} already in progress"
            )
            return None
        if self.save_manager.is_loading:
            logger.warning(
                f"Load of {slot_name} rejected: save manager is already loading"
            )
            return None

        session = LoadSession(slot_name=slot_name, strategy=strategy)
        self._session = session
        self.retry_history = []
        self.event_manager.emit_event(
            EventType.LOAD_STARTED,
            {"slot_name": slot_name, "strategy": strategy.value},
        )

        policy = RetryPolicy(
            name=f"Load {slot_name}",
            max_attempts=self.config.max_load_retries,
            backoff_seconds=self.config.retry_backoff_seconds,
            give_up_on=(LoadCancelledError, LoadInProgressError),
        )

        async def before_retry(attempt: int, error: Exception) -> None:
            session.retry_count = attempt
            self._check_cancelled(session)
            if attempt == 1 and self.config.enable_error_recovery:
                await self._attempt_backup_recovery(session)

        try:
            save_data = await retry_async(
                lambda attempt: self._run_pipeline(session, attempt),
                policy,
                before_retry=before_retry,
                history=self.retry_history,
                sleep=self._sleep,
            )
            self._check_cancelled(session)

            self._set_operation(session, LoadOperation.COMPLETED)
            self.event_manager.emit_event(
                EventType.LOAD_COMPLETED,
                {
                    "slot_name": slot_name,
                    "save_name": save_data.save_name,
                    "strategy": strategy.value,
                    "retry_count": session.retry_count,
                },
            )
            logger.info(
                f"Loaded {slot_name} ({strategy.value}) after "
                f"{session.retry_count + 1} attempt(s)"
            )
            return save_data

        except LoadCancelledError:
            logger.info(f"Load of {slot_name} cancelled")
            return None

        except Exception as e:
            if session.cancelled:
                logger.info(f"Load of {slot_name} cancelled: {e}")
                return None

            session.last_error = str(e)
            logger.error(
                f"Failed to load {slot_name} after {session.retry_count + 1} "
                f"attempt(s): {e}"
            )
            self._set_operation(session, LoadOperation.NONE)
            self.event_manager.emit_event(
                EventType.LOAD_FAILED,
                {
                    "slot_name": slot_name,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "retry_count": session.retry_count,
                },
            )
            return None

        finally:
            if self._session is session:
                self._session = None

    async def _run_pipeline(self, session: LoadSession, attempt: int) -> SaveData:
        slot_name = session.slot_name
        logger.debug(f"Load attempt {attempt} for {slot_name}")

        self._set_operation(session, LoadOperation.INITIALIZING)
        self._report_progress(session, 0.05)

        validated = None
        if self.config.auto_validate_before_load:
            self._set_operation(session, LoadOperation.VALIDATING)
            validated = await self._validate_save_file(session)
        elif not self.storage.slot_exists(slot_name):
            raise SaveNotFoundError(f"Save slot not found: {slot_name}", slot_name)
        self._report_progress(session, 0.2)
        self._check_cancelled(session)

        self._set_operation(session, LoadOperation.CHECKING_COMPATIBILITY)
        if validated is None:
            payload = await self.storage.load_file_async(slot_name)
            validated = SaveData.from_json(payload)
        if not versions_match(validated.save_version, self.config.app_version):
            self._check_can_migrate(session, validated.save_version)
            self._set_operation(session, LoadOperation.MIGRATING_VERSION)
            await self._migrate_save_file(session, validated)
        self._report_progress(session, 0.35)
        self._check_cancelled(session)

        self._set_operation(session, LoadOperation.LOADING_DATA)
        save_data = await self._load_with_strategy(session)
        self._report_progress(session, 0.7)
        self._check_cancelled(session)

        self._set_operation(session, LoadOperation.VALIDATING_DATA)
        result = self.validator.validate_save_data(save_data)
        if result.is_critical:
            raise SaveIntegrityError(
                f"Loaded data failed validation: {result.get_summary()}", slot_name
            )
        if result.has_errors or result.has_warnings:
            self._set_operation(session, LoadOperation.SANITIZING_DATA)
            save_data = self.validator.sanitize_save_data(save_data)
        self._report_progress(session, 0.8)

        self._set_operation(session, LoadOperation.FINAL_VALIDATION)
        final = self.validator.validate_save_data(save_data)
        if not final.is_valid:
            logger.warning(
                f"Final validation of {slot_name} still reports issues: "
                f"{final.get_summary()}"
            )
        self._report_progress(session, 0.85)
        self._check_cancelled(session)

        self._set_operation(session, LoadOperation.APPLYING_DATA)
        await self._apply_loaded_data(session, save_data)
        self._report_progress(session, 1.0)
        return save_data

    async def _validate_save_file(self, session: LoadSession) -> SaveData:
        slot_name = session.slot_name
        if not self.storage.slot_exists(slot_name):
            raise SaveNotFoundError(f"Save slot not found: {slot_name}", slot_name)

        loop = asyncio.get_running_loop()
        intact = await loop.run_in_executor(
            None, self.storage.validate_file_integrity, slot_name
        )
        if not intact:
            self._emit_validated(slot_name, False, "Save file failed integrity check")
            raise SaveIntegrityError("Save file failed integrity check", slot_name)

        save_data = SaveData.from_json(await self.storage.load_file_async(slot_name))
        result = self.validator.validate_save_data(save_data)
        self._emit_validated(
            slot_name, result.is_loadable, result.get_summary(), result.severity.name
        )
        if result.is_critical:
            raise SaveIntegrityError(
                f"Save file failed validation: {result.get_summary()}", slot_name
            )
        return save_data

    def _emit_validated(
        self, slot_name: str, is_valid: bool, summary: str, severity: str = "CRITICAL"
    ) -> None:
        self.event_manager.emit_event(
            EventType.SAVE_FILE_VALIDATED,
            {
                "slot_name": slot_name,
                "is_valid": is_valid,
                "severity": severity,
                "summary": summary,
            },
        )

    def _check_can_migrate(self, session: LoadSession, save_version: str) -> None:
        try:
            newer = parse_version(save_version) > parse_version(self.config.app_version)
        except ValueError:
            raise VersionMismatchError(
                f"Unrecognized save version: {save_version}", session.slot_name
            )
        if newer:
            raise VersionMismatchError(
                f"Save version {save_version} is newer than {self.config.app_version}",
                session.slot_name,
            )

    async def _migrate_save_file(
        self, session: LoadSession, save_data: SaveData
    ) -> None:
        """Migrate a slot forward and rewrite it in place."""
        slot_name = session.slot_name
        source_version = save_data.save_version
        migrated = self.validator.migrate_save_data(save_data, self.config.app_version)
        if migrated is None:
            raise VersionMismatchError(
                f"Cannot migrate save from version {source_version} "
                f"to {self.config.app_version}",
                slot_name,
            )
        self._check_cancelled(session)

        if self.config.create_backups:
            try:
                await self.storage.create_backup_async(slot_name)
                await self.storage.cleanup_old_backups_async(
                    slot_name, self.config.max_backups
                )
            except (BackupError, SaveIOError) as e:
                logger.warning(f"Pre-migration backup of {slot_name} failed: {e}")

        content = migrated.to_json()
        metadata = SaveMetadata.from_save_data(
            migrated, slot_name=slot_name, file_size=len(content.encode("utf-8"))
        )
        await self.storage.save_slot_async(slot_name, content, metadata)
        self.invalidate_slot(slot_name)
        logger.info(
            f"Migrated {slot_name} from {source_version} to {self.config.app_version}"
        )

    async def _load_with_strategy(self, session: LoadSession) -> SaveData:
        if session.strategy == LoadStrategy.LAZY:
            return await self._load_lazy(session)
        if session.strategy == LoadStrategy.STREAMING:
            return await self._load_streaming(session)
        return await self._load_full(session)

    async def _load_full(self, session: LoadSession) -> SaveData:
        # A busy save manager ends the load without retry or backup recovery
        if self.save_manager.is_loading:
            raise LoadInProgressError(
                "Save manager is already loading another request", session.slot_name
            )

        self._delegated_loads.add(session.slot_name)
        try:
            save_data = await self.save_manager.load_game_async(
                session.slot_name, apply=False
            )
        finally:
            self._delegated_loads.discard(session.slot_name)
        if save_data is None:
            raise SaveSystemError(
                self.save_manager.last_load_error or "Failed to load save data",
                session.slot_name,
            )
        return save_data

    async def _load_lazy(self, session: LoadSession) -> SaveData:
        save_data = await self._read_current_version(session.slot_name)
        save_data.defer_sections()
        logger.debug(f"Deferred instance data for {session.slot_name}")
        return save_data

    async def _load_streaming(self, session: LoadSession) -> SaveData:
        # Core data first, then the full payload
        self._set_operation(session, LoadOperation.LOADING_CORE_DATA)
        await self._sleep(self.config.streaming_chunk_delay)
        self._check_cancelled(session)
        self._report_progress(session, DELEGATED_PROGRESS_START)
        self._set_operation(session, LoadOperation.LOADING_DATA)
        return await self._load_full(session)

    async def _read_current_version(self, slot_name: str) -> SaveData:
        save_data = SaveData.from_json(await self.storage.load_file_async(slot_name))
        if not versions_match(save_data.save_version, self.config.app_version):
            migrated = self.validator.migrate_save_data(
                save_data, self.config.app_version
            )
            if migrated is None:
                raise VersionMismatchError(
                    f"Cannot migrate save from version {save_data.save_version}",
                    slot_name,
                )
            save_data = migrated
        save_data.save_file_path = str(self.storage.get_payload_path(slot_name))
        return save_data

    async def hydrate_deferred_sections_async(
        self, save_data: Optional[SaveData] = None
    ) -> bool:
        """Populate the instance collections a lazy load deferred.

        Args:
            save_data: Lazily loaded record (defaults to the current record)

        Returns:
            True if the record has no deferred sections left
        """
        save_data = save_data or self.save_manager.current_save_data
        if save_data is None or not save_data.is_lazy:
            return save_data is not None

        slot_name = save_data.slot_name
        try:
            full = await self._read_current_version(slot_name)
        except SaveSystemError as e:
            logger.error(f"Failed to load deferred data for {slot_name}: {e}")
            return False

        for section in save_data.deferred_sections:
            save_data.restore_section(section, getattr(full, section))
        save_data.checksum = save_data.compute_checksum()
        logger.info(f"Loaded deferred data for {slot_name}")
        return True

    async def _apply_loaded_data(
        self, session: LoadSession, save_data: SaveData
    ) -> None:
        self._check_cancelled(session)
        previous_data = self.save_manager.current_save_data
        previous_slot = self.save_manager.current_slot_name
        previous_loaded = self.loaded_save_data

        self.save_manager.apply_loaded_data(save_data, session.slot_name)
        self.loaded_save_data = save_data
        try:
            if self.on_apply is not None:
                result = self.on_apply(save_data)
                if inspect.isawaitable(result):
                    await result

            if self.config.apply_settle_delay > 0:
                await self._sleep(self.config.apply_settle_delay)
            self._check_cancelled(session)
        except Exception:
            # A failed or cancelled apply leaves the previous record current
            self.save_manager.current_save_data = previous_data
            self.save_manager.current_slot_name = previous_slot
            self.loaded_save_data = previous_loaded
            logger.info(f"Reverted applied data for {session.slot_name}")
            raise

    async def _attempt_backup_recovery(self, session: LoadSession) -> bool:
        slot_name = session.slot_name
        backups = self.storage.get_available_backups(slot_name)
        if not backups:
            logger.warning(f"No backups available to recover {slot_name}")
            return False

        logger.info(f"Attempting recovery of {slot_name} from {backups[-1]}")
        try:
            restored = await self.storage.restore_from_backup_async(
                slot_name, backups[-1]
            )
        except SaveSystemError as e:
            logger.error(f"Backup recovery of {slot_name} failed: {e}")
            return False

        if restored:
            self.invalidate_slot(slot_name)
            logger.info(f"Recovered {slot_name} from backup")
        return restored

    # Progress and phase reporting

    def _check_cancelled(self, session: LoadSession) -> None:
        if session.cancelled:
            raise LoadCancelledError(
                f"Load of {session.slot_name} was cancelled", session.slot_name
            )

    def _set_operation(self, session: LoadSession, operation: LoadOperation) -> None:
        if session.cancelled or session.operation == operation:
            return
        previous = session.operation
        session.operation = operation
        session.phase = operation.value
        self.event_manager.emit_event(
            EventType.LOAD_OPERATION_CHANGED,
            {
                "slot_name": session.slot_name,
                "operation": operation.value,
                "previous": previous.value,
            },
        )

    def _report_progress(self, session: LoadSession, progress: float) -> None:
        if session.cancelled:
            return
        session.update_progress(progress)
        if self.config.enable_progress_reporting:
            self.event_manager.emit_event(
                EventType.LOAD_PROGRESS,
                {
                    "slot_name": session.slot_name,
                    "progress": session.progress,
                    "operation": session.operation.value,
                },
            )

    def _on_save_manager_load_event(
        self, event_type: str, data: dict[str, Any]
    ) -> None:
        slot_name = data.get("slot_name")
        if slot_name in self._delegated_loads:
            # Part of a pipeline load, possibly one that was cancelled since
            session = self._session
            if (
                session is not None
                and session.slot_name == slot_name
                and event_type == EventType.SLOT_LOAD_PROGRESS.value
            ):
                self._report_progress(
                    session,
                    DELEGATED_PROGRESS_START
                    + data.get("progress", 0.0) * DELEGATED_PROGRESS_SPAN,
                )
            return

        forwarded = dict(data)
        forwarded["source"] = "save_manager"
        self.event_manager.emit_event(_FORWARDED_EVENTS[event_type], forwarded)

    def cancel_load(self) -> bool:
        """Cancel the running load.

        Returns:
            True if a load was running
        """
        session = self._session
        if session is None:
            return False

        slot_name = session.slot_name
        self._set_operation(session, LoadOperation.CANCELLED)
        session.cancelled = True
        self._session = None

        self.event_manager.emit_event(
            EventType.LOAD_FAILED,
            {
                "slot_name": slot_name,
                "error": "Load cancelled by user",
                "error_type": LoadCancelledError.__name__,
                "cancelled": True,
            },
        )
        logger.info(f"Cancelled load of {slot_name}")
        return True

    # Discovery

    async def discover_save_files_async(
        self, force_refresh: bool = False
    ) -> list[SaveMetadata]:
        """List slot descriptors, most recently modified first.

        Served from the cache while it is fresh; slots invalidated since the
        last scan are refreshed individually.

        Args:
            force_refresh: Rescan the save directory even if the cache is fresh

        Returns:
            Slot descriptors
        """
        try:
            if not force_refresh and self._is_cache_valid():
                await self._refresh_dirty_slots()
                return self._cached_descriptors()

            loop = asyncio.get_running_loop()
            slot_names = await loop.run_in_executor(
                None, self.storage.get_available_save_slots
            )

            descriptors = []
            for slot_name in slot_names:
                metadata = await self._build_descriptor(slot_name)
                if metadata is not None:
                    descriptors.append(metadata)
            descriptors.sort(key=lambda m: m.sort_key, reverse=True)

            now = self._clock()
            with self._cache_lock:
                self._slot_cache = {
                    m.slot_name: SlotCacheEntry(metadata=m, cached_at=now)
                    for m in descriptors
                }
                self._dirty_slots.clear()
                self._last_discovery = now

        except Exception as e:
            logger.error(f"Save file discovery failed: {e}")
            return self._cached_descriptors()

        self.event_manager.emit_event(
            EventType.SAVE_SLOT_DISCOVERY_COMPLETED,
            {
                "slot_count": len(descriptors),
                "slots": [m.slot_name for m in descriptors],
            },
        )
        logger.info(f"Discovered {len(descriptors)} save slots")
        return descriptors

    async def _build_descriptor(self, slot_name: str) -> Optional[SaveMetadata]:
        loop = asyncio.get_running_loop()
        file_info = await loop.run_in_executor(
            None, self.storage.get_save_file_info, slot_name
        )
        if file_info is None or not file_info.is_valid:
            logger.warning(f"Skipping invalid save slot during discovery: {slot_name}")
            return None

        metadata = await self.storage.load_metadata_async(slot_name)
        if metadata is None:
            metadata = SaveMetadata.minimal(
                slot_name,
                creation_date=file_info.creation_time,
                last_modified=file_info.last_write_time,
            )
        return metadata

    async def _refresh_dirty_slots(self) -> None:
        with self._cache_lock:
            dirty = list(self._dirty_slots)
            self._dirty_slots.clear()
        for slot_name in dirty:
            await self.refresh_slot_info_async(slot_name)

    async def refresh_slot_info_async(self, slot_name: str) -> Optional[SaveMetadata]:
        """Rebuild one slot's cached descriptor."""
        metadata = await self._build_descriptor(slot_name)
        with self._cache_lock:
            if metadata is None:
                self._slot_cache.pop(slot_name, None)
            else:
                self._slot_cache[slot_name] = SlotCacheEntry(
                    metadata=metadata, cached_at=self._clock()
                )
        return metadata

    def _is_cache_valid(self) -> bool:
        with self._cache_lock:
            return (
                self._last_discovery is not None
                and self._clock() - self._last_discovery
                < self.config.discovery_cache_ttl
            )

    def _cached_descriptors(self) -> list[SaveMetadata]:
        with self._cache_lock:
            descriptors = [entry.metadata for entry in self._slot_cache.values()]
        descriptors.sort(key=lambda m: m.sort_key, reverse=True)
        return descriptors

    def get_cached_slot_info(self, slot_name: str) -> Optional[SaveMetadata]:
        with self._cache_lock:
            entry = self._slot_cache.get(slot_name)
            if entry is None:
                return None
            if self._clock() - entry.cached_at >= self.config.discovery_cache_ttl:
                del self._slot_cache[slot_name]
                return None
            return entry.metadata

    def invalidate_slot(self, slot_name: str) -> None:
        with self._cache_lock:
            self._slot_cache.pop(slot_name, None)
            if self._last_discovery is not None:
                self._dirty_slots.add(slot_name)
        logger.debug(f"Invalidated cached slot info for {slot_name}")

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._slot_cache.clear()
            self._dirty_slots.clear()
            self._last_discovery = None
        logger.debug("Cleared slot discovery cache")

    def _on_storage_event(self, event_type: str, data: dict[str, Any]) -> None:
        slot_name = data.get("slot_name")
        if slot_name:
            self.invalidate_slot(slot_name)

    def can_load(self, slot_name: str) -> bool:
        if self.is_loading:
            return False
        if not self.storage.slot_exists(slot_name):
            return False
        return self.storage.validate_file_integrity(slot_name)

    def shutdown(self) -> None:
        if self.is_loading:
            self.cancel_load()
        for subscription_id in self._subscriptions:
            self.event_manager.unsubscribe(subscription_id)
        self._subscriptions.clear()

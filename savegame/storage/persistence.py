"""Slot file storage.

Each slot is a directory under the save root holding the payload and a
metadata sidecar::

    <root>/<slot>/GameSave.json
    <root>/<slot>/Metadata.json
    <root>/Backups/<slot>_backup_<timestamp>.json
    <root>/Temp/

Writes go through a temporary file that is fsync'd and then renamed over
the target, so a failed write leaves the previous file untouched.
"""

import asyncio
import contextlib
import functools
import json
import logging
import os
import shutil
import tempfile
import time
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Union

from pydantic import ValidationError

from ..errors import SaveIOError, SaveNotFoundError
from ..events.manager import EventType
from ..models.save_data import compute_payload_checksum
from ..models.slots import BackupEntry, SaveFileInfo, SaveMetadata
from .backup import SlotBackupManager

if TYPE_CHECKING:
    from ..events.manager import EventManager

logger = logging.getLogger(__name__)

PAYLOAD_FILE_NAME = "GameSave.json"
METADATA_FILE_NAME = "Metadata.json"
BACKUPS_DIR_NAME = "Backups"
TEMP_DIR_NAME = "Temp"
RESERVED_DIR_NAMES = frozenset({BACKUPS_DIR_NAME, TEMP_DIR_NAME})

# Temp files older than this are considered abandoned
STALE_TEMP_FILE_AGE = 3600.0


class SaveFileStorage:
    """Byte-level storage of slot payloads and metadata sidecars.

    Methods raise ``SaveNotFoundError`` or ``SaveIOError`` to their callers.
    Storage failures and slot creation/deletion are also published on the
    event manager as ``save_file_error``, ``save_file_created`` and
    ``save_file_deleted``.
    """

    def __init__(
        self,
        save_directory: Union[str, Path],
        event_manager: Optional["EventManager"] = None,
        max_backups: int = 3,
    ):
        self.save_directory = Path(save_directory)
        self.backups_directory = self.save_directory / BACKUPS_DIR_NAME
        self.temp_directory = self.save_directory / TEMP_DIR_NAME
        self.event_manager = event_manager
        self.backups = SlotBackupManager(self, max_backups=max_backups)

        self._ensure_directories()

    def _ensure_directories(self) -> None:
        for directory in [
            self.save_directory,
            self.backups_directory,
            self.temp_directory,
        ]:
            directory.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Ensured directory exists: {directory}")

    # Paths

    def validate_slot_name(self, slot_name: str) -> str:
        """Check that a slot name maps to a single directory under the root.

        Raises:
            SaveIOError: If the name is empty, reserved or contains a path
                separator
        """
        if not slot_name or not slot_name.strip():
            raise SaveIOError("Slot name cannot be empty", slot_name=slot_name)
        if slot_name in RESERVED_DIR_NAMES:
            raise SaveIOError(
                f"Slot name is reserved: {slot_name}", slot_name=slot_name
            )
        if slot_name in (".", "..") or any(sep in slot_name for sep in ("/", "\\")):
            raise SaveIOError(f"Invalid slot name: {slot_name}", slot_name=slot_name)
        return slot_name

    def get_slot_directory(self, slot_name: str) -> Path:
        return self.save_directory / self.validate_slot_name(slot_name)

    def get_payload_path(self, slot_name: str) -> Path:
        return self.get_slot_directory(slot_name) / PAYLOAD_FILE_NAME

    def get_metadata_path(self, slot_name: str) -> Path:
        return self.get_slot_directory(slot_name) / METADATA_FILE_NAME

    def ensure_slot_directory(self, slot_name: str) -> Path:
        slot_dir = self.get_slot_directory(slot_name)
        slot_dir.mkdir(parents=True, exist_ok=True)
        return slot_dir

    def slot_exists(self, slot_name: str) -> bool:
        try:
            return self.get_payload_path(slot_name).exists()
        except SaveIOError:
            return False

    # Notifications

    def _notify(self, event_type: EventType, slot_name: str, **extra: Any) -> None:
        if self.event_manager is None:
            return
        data = {"slot_name": slot_name}
        data.update(extra)
        self.event_manager.emit_event(event_type, data)

    def _report_error(self, slot_name: str, message: str) -> None:
        logger.error(message)
        self._notify(EventType.SAVE_FILE_ERROR, slot_name, error=message)

    # Low-level IO

    def _atomic_write(self, file_path: Path, content: str) -> None:
        """Perform atomic write operation.

        Raises:
            SaveIOError: If write operation fails
        """
        temp_path = None
        try:
            self.temp_directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                dir=self.temp_directory,
                prefix=f".{file_path.parent.name}.{file_path.name}.",
                suffix=".tmp",
                delete=False,
                encoding="utf-8",
            ) as temp_file:
                temp_path = Path(temp_file.name)
                temp_file.write(content)
                temp_file.flush()
                os.fsync(temp_file.fileno())

            temp_path.replace(file_path)
            logger.debug(f"Atomic write completed: {file_path}")

        except OSError as e:
            if temp_path is not None and temp_path.exists():
                with contextlib.suppress(OSError):
                    temp_path.unlink()
            raise SaveIOError(f"Atomic write failed for {file_path}: {e}")

    def _read_text(self, file_path: Path) -> str:
        with open(file_path, encoding="utf-8") as f:
            return f.read()

    @staticmethod
    async def _run(func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(func, *args, **kwargs)
        )

    # Payload

    def load_file(self, slot_name: str) -> str:
        """Read a slot payload.

        Raises:
            SaveNotFoundError: If the slot has no payload
            SaveIOError: If the payload cannot be read
        """
        payload_path = self.get_payload_path(slot_name)
        if not payload_path.exists():
            raise SaveNotFoundError(
                f"Save slot not found: {slot_name}", slot_name=slot_name
            )

        try:
            return self._read_text(payload_path)
        except (OSError, UnicodeDecodeError) as e:
            message = f"Failed to read save file for {slot_name}: {e}"
            self._report_error(slot_name, message)
            raise SaveIOError(message, slot_name=slot_name)

    async def load_file_async(self, slot_name: str) -> str:
        return await self._run(self.load_file, slot_name)

    def save_file_atomic(self, slot_name: str, content: str) -> None:
        """Atomically replace a slot payload.

        Raises:
            SaveIOError: If the payload cannot be written
        """
        payload_path = self.ensure_slot_directory(slot_name) / PAYLOAD_FILE_NAME
        created = not payload_path.exists()
        try:
            self._atomic_write(payload_path, content)
        except SaveIOError as e:
            self._report_error(slot_name, str(e))
            raise

        if created:
            self._notify(EventType.SAVE_FILE_CREATED, slot_name, path=str(payload_path))

    async def save_file_atomic_async(self, slot_name: str, content: str) -> None:
        await self._run(self.save_file_atomic, slot_name, content)

    # Metadata

    def load_metadata(self, slot_name: str) -> Optional[SaveMetadata]:
        """Read a slot's metadata sidecar.

        Returns:
            Metadata, or None if the sidecar is missing or unreadable
        """
        metadata_path = self.get_metadata_path(slot_name)
        if not metadata_path.exists():
            return None

        try:
            return SaveMetadata.model_validate_json(self._read_text(metadata_path))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Failed to read metadata for {slot_name}: {e}")
            return None

    async def load_metadata_async(self, slot_name: str) -> Optional[SaveMetadata]:
        return await self._run(self.load_metadata, slot_name)

    def save_metadata(self, slot_name: str, metadata: SaveMetadata) -> None:
        """Atomically replace a slot's metadata sidecar.

        Raises:
            SaveIOError: If the sidecar cannot be written
        """
        metadata_path = self.ensure_slot_directory(slot_name) / METADATA_FILE_NAME
        try:
            self._atomic_write(metadata_path, metadata.model_dump_json(indent=2))
        except SaveIOError as e:
            self._report_error(slot_name, str(e))
            raise

    async def save_metadata_async(self, slot_name: str, metadata: SaveMetadata) -> None:
        await self._run(self.save_metadata, slot_name, metadata)

    def save_slot(self, slot_name: str, content: str, metadata: SaveMetadata) -> None:
        """Write payload and metadata as one unit.

        If the metadata write fails the previous payload is put back, so
        either both files change or neither does.

        Raises:
            SaveIOError: If either write fails
        """
        payload_path = self.ensure_slot_directory(slot_name) / PAYLOAD_FILE_NAME
        previous = None
        if payload_path.exists():
            try:
                previous = self._read_text(payload_path)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Could not read previous payload for {slot_name}: {e}")

        self.save_file_atomic(slot_name, content)
        try:
            self.save_metadata(slot_name, metadata)
        except SaveIOError:
            logger.warning(
                f"Rolling back payload for {slot_name} after metadata failure"
            )
            if previous is not None:
                with contextlib.suppress(SaveIOError):
                    self._atomic_write(payload_path, previous)
            else:
                with contextlib.suppress(OSError):
                    payload_path.unlink()
            raise

    async def save_slot_async(
        self, slot_name: str, content: str, metadata: SaveMetadata
    ) -> None:
        await self._run(self.save_slot, slot_name, content, metadata)

    # Inspection

    def validate_file_integrity(self, slot_name: str) -> bool:
        """Check that a payload exists, parses, and matches its checksum."""
        try:
            payload_path = self.get_payload_path(slot_name)
            if not payload_path.exists() or payload_path.stat().st_size == 0:
                return False
            payload = json.loads(self._read_text(payload_path))
        except (SaveIOError, OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Integrity check failed for {slot_name}: {e}")
            return False

        if not isinstance(payload, dict):
            return False

        checksum = payload.get("checksum")
        if not checksum:
            logger.warning(f"Save file for {slot_name} has no checksum")
            return False
        if checksum != compute_payload_checksum(payload):
            logger.warning(f"Checksum mismatch in save file for {slot_name}")
            return False
        return True

    def get_available_save_slots(self) -> list[str]:
        """List slots that have a payload, skipping reserved directories."""
        if not self.save_directory.exists():
            return []

        slots = []
        for entry in self.save_directory.iterdir():
            if not entry.is_dir() or entry.name in RESERVED_DIR_NAMES:
                continue
            if (entry / PAYLOAD_FILE_NAME).exists():
                slots.append(entry.name)
        return sorted(slots)

    def get_save_file_info(self, slot_name: str) -> Optional[SaveFileInfo]:
        try:
            payload_path = self.get_payload_path(slot_name)
            stat = payload_path.stat()
        except (SaveIOError, OSError):
            return None

        return SaveFileInfo(
            slot_name=slot_name,
            file_path=payload_path,
            creation_time=datetime.fromtimestamp(stat.st_ctime),
            last_write_time=datetime.fromtimestamp(stat.st_mtime),
            size_bytes=stat.st_size,
            is_valid=self.validate_file_integrity(slot_name),
        )

    def delete_save_slot(self, slot_name: str) -> bool:
        """Remove a slot directory and its backups.

        Returns:
            True if the slot existed and was removed
        """
        slot_dir = self.get_slot_directory(slot_name)
        if not slot_dir.exists():
            logger.warning(f"Cannot delete missing slot: {slot_name}")
            return False

        try:
            shutil.rmtree(slot_dir)
        except OSError as e:
            message = f"Failed to delete save slot {slot_name}: {e}"
            self._report_error(slot_name, message)
            raise SaveIOError(message, slot_name=slot_name)

        self.backups.delete_backups(slot_name)
        self._notify(EventType.SAVE_FILE_DELETED, slot_name)
        logger.info(f"Deleted save slot: {slot_name}")
        return True

    def cleanup_temp_files(self, max_age: float = STALE_TEMP_FILE_AGE) -> int:
        """Remove abandoned temp files.

        Returns:
            Number of files removed
        """
        removed = 0
        cutoff = time.time() - max_age
        for temp_file in self.temp_directory.glob("*.tmp"):
            try:
                if temp_file.stat().st_mtime < cutoff:
                    temp_file.unlink()
                    removed += 1
            except OSError as e:
                logger.warning(f"Failed to remove temp file {temp_file}: {e}")
        if removed:
            logger.info(f"Removed {removed} stale temp files")
        return removed

    def get_total_save_data_size(self) -> int:
        total = 0
        for file_path in self.save_directory.rglob("*.json"):
            with contextlib.suppress(OSError):
                total += file_path.stat().st_size
        return total

    # Backups

    def create_backup(self, slot_name: str) -> Optional[BackupEntry]:
        return self.backups.create_backup(slot_name)

    async def create_backup_async(self, slot_name: str) -> Optional[BackupEntry]:
        return await self._run(self.create_backup, slot_name)

    def cleanup_old_backups(
        self, slot_name: str, max_backups: Optional[int] = None
    ) -> int:
        return self.backups.cleanup_old_backups(slot_name, max_backups)

    async def cleanup_old_backups_async(
        self, slot_name: str, max_backups: Optional[int] = None
    ) -> int:
        return await self._run(self.cleanup_old_backups, slot_name, max_backups)

    def get_available_backups(self, slot_name: str) -> list[str]:
        return [entry.backup_id for entry in self.backups.list_backups(slot_name)]

    def restore_from_backup(
        self, slot_name: str, backup_id: Optional[str] = None
    ) -> bool:
        return self.backups.restore_backup(slot_name, backup_id)

    async def restore_from_backup_async(
        self, slot_name: str, backup_id: Optional[str] = None
    ) -> bool:
        return await self._run(self.restore_from_backup, slot_name, backup_id)

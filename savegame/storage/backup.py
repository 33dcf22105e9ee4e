"""Per-slot payload backups.

Before a save overwrites a payload, the previous payload is copied to
``Backups/<slot>_backup_<YYYYmmdd_HHMMSS_ffffff>.json``. Rotation keeps the
newest ``max_backups`` copies per slot and evicts the oldest first.
"""

import logging
import re
import shutil
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from ..errors import BackupError, SaveIntegrityError, SaveIOError
from ..models.save_data import SaveData
from ..models.slots import BackupEntry, SaveMetadata

if TYPE_CHECKING:
    from .persistence import SaveFileStorage

logger = logging.getLogger(__name__)

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"


class SlotBackupManager:
    """Creates, rotates and restores slot backups."""

    def __init__(self, storage: "SaveFileStorage", max_backups: int = 3):
        self.storage = storage
        self.max_backups = max_backups

    @property
    def backup_dir(self) -> Path:
        return self.storage.backups_directory

    def _backup_pattern(self, slot_name: str) -> "re.Pattern[str]":
        return re.compile(rf"^{re.escape(slot_name)}_backup_(\d{{8}}_\d{{6}}_\d{{6}})$")

    def _backup_path(self, slot_name: str, timestamp: datetime) -> Path:
        stamp = timestamp.strftime(BACKUP_TIMESTAMP_FORMAT)
        return self.backup_dir / f"{slot_name}_backup_{stamp}.json"

    def create_backup(self, slot_name: str) -> Optional[BackupEntry]:
        """Copy the current payload of a slot into the backup directory.

        Returns:
            The new backup, or None if the slot has no payload yet

        Raises:
            BackupError: If the copy fails
        """
        payload_path = self.storage.get_payload_path(slot_name)
        if not payload_path.exists():
            return None

        timestamp = datetime.now()
        backup_path = self._backup_path(slot_name, timestamp)
        # Keep names unique and ordered when two backups land in the same tick
        while backup_path.exists():
            timestamp += timedelta(microseconds=1)
            backup_path = self._backup_path(slot_name, timestamp)

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(payload_path, backup_path)
        except OSError as e:
            raise BackupError(
                f"Failed to create backup for {slot_name}: {e}", slot_name=slot_name
            )

        logger.info(f"Created backup: {backup_path.name}")
        return BackupEntry(
            slot_name=slot_name,
            backup_id=backup_path.stem,
            path=backup_path,
            created_at=timestamp,
            size_bytes=backup_path.stat().st_size,
        )

    def list_backups(self, slot_name: str) -> list[BackupEntry]:
        """List a slot's backups, oldest first."""
        if not self.backup_dir.exists():
            return []

        pattern = self._backup_pattern(slot_name)
        backups = []
        for backup_path in self.backup_dir.glob("*.json"):
            match = pattern.match(backup_path.stem)
            if not match:
                continue
            try:
                created_at = datetime.strptime(match.group(1), BACKUP_TIMESTAMP_FORMAT)
                size = backup_path.stat().st_size
            except (ValueError, OSError) as e:
                logger.warning(f"Skipping unreadable backup {backup_path.name}: {e}")
                continue
            backups.append(
                BackupEntry(
                    slot_name=slot_name,
                    backup_id=backup_path.stem,
                    path=backup_path,
                    created_at=created_at,
                    size_bytes=size,
                )
            )

        backups.sort(key=lambda entry: entry.created_at)
        return backups

    def get_latest_backup(self, slot_name: str) -> Optional[BackupEntry]:
        backups = self.list_backups(slot_name)
        return backups[-1] if backups else None

    def cleanup_old_backups(
        self, slot_name: str, max_backups: Optional[int] = None
    ) -> int:
        """Delete the oldest backups beyond the limit.

        Returns:
            Number of backups removed
        """
        limit = self.max_backups if max_backups is None else max_backups
        backups = self.list_backups(slot_name)
        if len(backups) <= limit:
            return 0

        removed = 0
        for entry in backups[: len(backups) - limit]:
            try:
                entry.path.unlink()
                removed += 1
                logger.debug(f"Removed old backup: {entry.backup_id}")
            except OSError as e:
                logger.warning(f"Failed to remove backup {entry.backup_id}: {e}")

        if removed:
            logger.info(f"Cleaned up {removed} old backups for {slot_name}")
        return removed

    def delete_backups(self, slot_name: str) -> int:
        return self.cleanup_old_backups(slot_name, max_backups=0)

    def restore_backup(self, slot_name: str, backup_id: Optional[str] = None) -> bool:
        """Restore a slot payload from a backup.

        The backup must pass its checksum before it replaces the payload. The
        metadata sidecar is regenerated from the restored payload.

        Args:
            slot_name: Slot to restore
            backup_id: Backup to restore (defaults to the most recent)

        Returns:
            True if the payload was restored
        """
        backups = {entry.backup_id: entry for entry in self.list_backups(slot_name)}
        if not backups:
            logger.warning(f"No backups available for {slot_name}")
            return False

        entry = backups.get(backup_id) if backup_id else list(backups.values())[-1]
        if entry is None:
            logger.warning(f"Backup not found for {slot_name}: {backup_id}")
            return False

        try:
            with open(entry.path, encoding="utf-8") as f:
                content = f.read()
            save_data = SaveData.from_json(content)
        except (OSError, UnicodeDecodeError, SaveIntegrityError) as e:
            logger.error(f"Backup {entry.backup_id} is not restorable: {e}")
            return False

        self.storage.ensure_slot_directory(slot_name)
        payload_path = self.storage.get_payload_path(slot_name)
        try:
            self.storage._atomic_write(payload_path, content)
        except SaveIOError as e:
            logger.error(f"Failed to restore {slot_name} from {entry.backup_id}: {e}")
            return False

        metadata = SaveMetadata.from_save_data(
            save_data, slot_name=slot_name, file_size=len(content.encode("utf-8"))
        )
        try:
            self.storage.save_metadata(slot_name, metadata)
        except SaveIOError as e:
            logger.warning(f"Restored {slot_name} but could not rewrite metadata: {e}")

        logger.info(f"Restored {slot_name} from backup {entry.backup_id}")
        return True

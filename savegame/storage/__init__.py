"""Durable slot storage, backups and change notifications."""

from .backup import SlotBackupManager
from .persistence import SaveFileStorage

__all__ = ["SaveFileStorage", "SlotBackupManager"]

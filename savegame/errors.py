"""Exception hierarchy for the save system.

These are raised inside the storage, validation and migration layers. The
public async operations of the managers catch them, log them and report a
failure event instead of letting them escape.
"""

from typing import Optional


class SaveSystemError(Exception):
    """Base exception for save system errors."""

    def __init__(self, message: str, slot_name: Optional[str] = None):
        super().__init__(message)
        self.slot_name = slot_name


class SaveNotFoundError(SaveSystemError):
    """Raised when a slot or its payload does not exist."""

    pass


class SaveIntegrityError(SaveSystemError):
    """Raised when a checksum or structural validation check fails."""

    pass


class VersionMismatchError(SaveSystemError):
    """Raised when a record cannot be migrated to the running version."""

    pass


class SaveIOError(SaveSystemError):
    """Raised for generic read/write failures against the save directory."""

    pass


class LoadCancelledError(SaveSystemError):
    """Raised inside the load pipeline after a cancellation request."""

    pass


class LoadInProgressError(SaveSystemError):
    """Raised inside the load pipeline when the save manager is already loading."""

    pass


class ConfigurationError(Exception):
    """Raised when save system settings cannot be loaded or validated."""

    pass


class BackupError(SaveSystemError):
    """Base exception for backup operations."""

    pass

"""Slot descriptors and file information."""

from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from .save_data import SaveData

UNKNOWN_VERSION = "Unknown"


class SaveMetadata(BaseModel):
    """Lightweight sidecar written next to every slot payload.

    Mirrors the scalar fields of a ``SaveData`` so slot listings never need
    to deserialize the full payload.
    """

    model_config = ConfigDict(extra="ignore")

    slot_name: str
    save_name: str = ""
    creation_date: Optional[datetime] = None
    last_modified: Optional[datetime] = None
    play_time_hours: float = 0.0
    current_credits: float = 0.0
    total_contracts: int = 0
    company_name: str = ""
    save_version: str = UNKNOWN_VERSION
    checksum: str = ""
    file_size: int = 0

    @classmethod
    def from_save_data(
        cls, save_data: SaveData, slot_name: Optional[str] = None, file_size: int = 0
    ) -> "SaveMetadata":
        """Build the descriptor for a record."""
        return cls(
            slot_name=slot_name or save_data.slot_name,
            save_name=save_data.save_name,
            creation_date=save_data.creation_date,
            last_modified=save_data.last_modified,
            play_time_hours=save_data.play_time_hours,
            current_credits=save_data.current_credits,
            total_contracts=save_data.total_contracts,
            company_name=save_data.game_state.company_name
            if save_data.game_state
            else "",
            save_version=save_data.save_version,
            checksum=save_data.checksum,
            file_size=file_size,
        )

    @classmethod
    def minimal(
        cls,
        slot_name: str,
        creation_date: Optional[datetime] = None,
        last_modified: Optional[datetime] = None,
    ) -> "SaveMetadata":
        """Fallback descriptor used when the sidecar cannot be read."""
        return cls(
            slot_name=slot_name,
            save_name=slot_name,
            creation_date=creation_date,
            last_modified=last_modified,
            save_version=UNKNOWN_VERSION,
        )

    @property
    def sort_key(self) -> datetime:
        return self.last_modified or datetime.min


class SaveSlotInfo(BaseModel):
    """Slot summary returned to consumers."""

    slot_name: str
    save_name: str = ""
    creation_date: Optional[datetime] = None
    last_modified: Optional[datetime] = None
    play_time_hours: float = 0.0
    current_credits: float = 0.0
    total_contracts: int = 0
    save_version: str = UNKNOWN_VERSION
    is_valid: bool = False
    file_size: int = 0

    @classmethod
    def from_metadata(cls, metadata: SaveMetadata) -> "SaveSlotInfo":
        return cls(
            slot_name=metadata.slot_name,
            save_name=metadata.save_name,
            creation_date=metadata.creation_date,
            last_modified=metadata.last_modified,
            play_time_hours=metadata.play_time_hours,
            current_credits=metadata.current_credits,
            total_contracts=metadata.total_contracts,
            save_version=metadata.save_version,
            is_valid=bool(metadata.checksum),
            file_size=metadata.file_size,
        )

    def get_display_info(self) -> str:
        modified = (
            f"{self.last_modified:%Y-%m-%d %H:%M}" if self.last_modified else "never"
        )
        return (
            f"{self.save_name or self.slot_name}\n"
            f"Last Played: {modified}\n"
            f"Play Time: {self.play_time_hours:.1f}h\n"
            f"Credits: {self.current_credits:,.0f}"
        )


@dataclass
class SaveFileInfo:
    """File-level information about a slot payload."""

    slot_name: str
    file_path: Path
    creation_time: datetime
    last_write_time: datetime
    size_bytes: int
    is_valid: bool


@dataclass
class BackupEntry:
    """A timestamped copy of a slot's previous payload."""

    slot_name: str
    backup_id: str
    path: Path
    created_at: datetime
    size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["path"] = str(self.path)
        data["created_at"] = self.created_at.isoformat()
        return data

"""Save record schema.

A ``SaveData`` is the full snapshot written to a slot payload. Nested
sections are plain pydantic models so the payload is explicit, versioned
JSON. The checksum covers the serialized payload minus the fields that
change on every write (``checksum`` itself and ``last_modified``).
"""

import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError

from ..errors import SaveIntegrityError

# Fields that never contribute to the payload checksum
CHECKSUM_EXCLUDED_FIELDS = ("checksum", "last_modified")

# Instance collections that a lazy load may defer
DEFERRABLE_SECTIONS = ("vehicle_instances", "contract_instances", "city_instances")


def compute_payload_checksum(payload: dict[str, Any]) -> str:
    """Compute the SHA-256 checksum of a serialized payload.

    Args:
        payload: Payload dictionary as written to disk

    Returns:
        Hex digest of the canonical JSON form of the payload
    """
    content = {k: v for k, v in payload.items() if k not in CHECKSUM_EXCLUDED_FIELDS}
    canonical = json.dumps(
        content, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class SaveModel(BaseModel):
    """Base class for payload sections."""

    model_config = ConfigDict(
        extra="ignore",
        use_enum_values=True,
    )


class GameState(SaveModel):
    """Company and economy state."""

    company_name: str = Field(default="", description="Player company name")
    current_credits: float = Field(default=0.0, description="Credits on hand")
    total_earnings: float = Field(default=0.0, description="Lifetime earnings")
    total_expenses: float = Field(default=0.0, description="Lifetime expenses")
    total_play_time: float = Field(default=0.0, description="Play time in hours")
    total_contracts: int = Field(default=0, description="Contracts taken")
    completed_contracts: int = Field(default=0, description="Contracts completed")
    owned_licenses: list[str] = Field(default_factory=list)
    outstanding_loans: float = Field(default=0.0, description="Loan balance")
    company_reputation: float = Field(default=0.0, description="Company reputation")


class PlayerProgress(SaveModel):
    """Player level and unlocks."""

    level: int = 1
    experience: float = 0.0
    unlocked_achievements: list[str] = Field(default_factory=list)
    tutorial_completed: bool = False


class SettingsData(SaveModel):
    """Per-save settings snapshot.

    ``settings_version`` is bumped whenever the shape of this section changes
    independently of the save schema version.
    """

    settings_version: int = 1
    master_volume: float = 1.0
    music_volume: float = 0.8
    sfx_volume: float = 0.8
    language: str = "en"
    auto_save_enabled: bool = True
    show_tutorials: bool = True


class ContractStatus(str, Enum):
    """Contract lifecycle status."""

    AVAILABLE = "available"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class VehicleInstanceData(SaveModel):
    """Runtime state of an owned vehicle."""

    instance_id: str = ""
    vehicle_type: str = ""
    fuel_capacity: float = 100.0
    weight_capacity: float = 1000.0
    current_fuel: float = 0.0
    current_weight: float = 0.0
    wear_level: float = 0.0
    total_distance: float = 0.0
    total_revenue: float = 0.0
    total_expenses: float = 0.0
    purchase_date: Optional[datetime] = None
    last_maintenance: Optional[datetime] = None
    current_city_name: Optional[str] = None
    destination_city_name: Optional[str] = None
    assigned_contract_id: Optional[str] = None


class ContractInstanceData(SaveModel):
    """Runtime state of a contract."""

    instance_id: str = ""
    contract_type: str = ""
    status: ContractStatus = ContractStatus.AVAILABLE
    acceptance_time: Optional[datetime] = None
    deadline: Optional[datetime] = None
    completion_time: Optional[datetime] = None
    progress_percentage: float = 0.0
    delivery_progress: float = 0.0
    agreed_reward: float = 0.0
    actual_reward: float = 0.0
    penalty_amount: float = 0.0
    assigned_vehicle_id: Optional[str] = None


class CityInstanceData(SaveModel):
    """Runtime state of a city."""

    instance_id: str = ""
    city_name: str = ""
    current_fuel_price: float = 1.5
    economic_multiplier: float = 1.0
    current_population: int = 0
    player_reputation: float = 0.0
    traffic_level: float = 0.0
    is_discovered: bool = False
    discovery_date: Optional[datetime] = None


class SaveData(SaveModel):
    """Full save record."""

    save_name: str = Field(default="", description="Display name of the save")
    slot_name: str = Field(default="", description="Slot the record was saved to")
    save_version: str = Field(default="1.0.0", description="Save schema version")
    creation_date: Optional[datetime] = Field(default_factory=datetime.now)
    last_modified: Optional[datetime] = Field(default_factory=datetime.now)
    checksum: str = Field(default="", description="Payload checksum")

    game_state: Optional[GameState] = Field(default_factory=GameState)
    player_progress: Optional[PlayerProgress] = Field(default_factory=PlayerProgress)
    settings: Optional[SettingsData] = Field(default_factory=SettingsData)

    vehicle_instances: list[VehicleInstanceData] = Field(default_factory=list)
    contract_instances: list[ContractInstanceData] = Field(default_factory=list)
    city_instances: list[CityInstanceData] = Field(default_factory=list)

    fuel_prices: dict[str, float] = Field(default_factory=dict)
    discovery_states: dict[str, bool] = Field(default_factory=dict)

    # Runtime-only information, never serialized
    save_file_path: Optional[str] = Field(default=None, exclude=True)
    save_file_size: int = Field(default=0, exclude=True)

    _deferred_sections: set[str] = PrivateAttr(default_factory=set)

    @property
    def current_credits(self) -> float:
        return self.game_state.current_credits if self.game_state else 0.0

    @property
    def play_time_hours(self) -> float:
        return self.game_state.total_play_time if self.game_state else 0.0

    @property
    def total_contracts(self) -> int:
        return self.game_state.total_contracts if self.game_state else 0

    @property
    def deferred_sections(self) -> frozenset[str]:
        """Instance collections that were not populated by a lazy load."""
        return frozenset(self._deferred_sections)

    @property
    def is_lazy(self) -> bool:
        return bool(self._deferred_sections)

    def defer_sections(self, sections=DEFERRABLE_SECTIONS) -> None:
        """Drop instance collections, marking them for on-demand population."""
        for section in sections:
            if section not in DEFERRABLE_SECTIONS:
                raise ValueError(f"Section cannot be deferred: {section}")
            setattr(self, section, [])
            self._deferred_sections.add(section)

    def restore_section(self, section: str, items: list[Any]) -> None:
        """Populate a deferred collection."""
        setattr(self, section, items)
        self._deferred_sections.discard(section)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    def compute_checksum(self) -> str:
        return compute_payload_checksum(self.to_payload())

    def verify_checksum(self) -> bool:
        return bool(self.checksum) and self.checksum == self.compute_checksum()

    def prepare_for_save(self, slot_name: Optional[str] = None) -> None:
        """Stamp timestamps and checksum before writing.

        Args:
            slot_name: Slot the record is about to be written to
        """
        now = datetime.now()
        if slot_name:
            self.slot_name = slot_name
        if not self.save_name:
            self.save_name = self.slot_name or f"Save Game {now:%Y-%m-%d}"
        if self.creation_date is None:
            self.creation_date = now
        self.last_modified = now
        self.checksum = self.compute_checksum()

    def get_display_name(self) -> str:
        if self.game_state and self.game_state.company_name and self.creation_date:
            return f"{self.game_state.company_name} - {self.creation_date:%m/%d/%Y}"
        return self.save_name or "Unnamed Save"

    def get_save_info(self) -> str:
        created = f"{self.creation_date:%Y-%m-%d %H:%M}" if self.creation_date else "-"
        modified = f"{self.last_modified:%Y-%m-%d %H:%M}" if self.last_modified else "-"
        return (
            f"Save: {self.get_display_name()}\n"
            f"Created: {created}\n"
            f"Last Modified: {modified}\n"
            f"Play Time: {self.play_time_hours:.1f} hours\n"
            f"Credits: {self.current_credits:,.0f}\n"
            f"Contracts: {self.total_contracts}\n"
            f"Version: {self.save_version}"
        )

    @classmethod
    def from_payload(
        cls, payload: dict[str, Any], verify_checksum: bool = True
    ) -> "SaveData":
        """Build a record from a payload dictionary.

        Args:
            payload: Payload dictionary read from disk
            verify_checksum: Reject payloads whose stored checksum is missing
                or does not match their content

        Returns:
            Parsed record

        Raises:
            SaveIntegrityError: If the payload is malformed or its checksum
                is missing or does not match
        """
        if not isinstance(payload, dict):
            raise SaveIntegrityError("Save payload is not an object")

        stored = payload.get("checksum") or ""
        if verify_checksum:
            # Every save stamps a checksum; a payload without one is corrupt
            if not stored:
                raise SaveIntegrityError("Save payload has no checksum")
            if stored != compute_payload_checksum(payload):
                raise SaveIntegrityError(
                    "Checksum validation failed - data may be corrupted"
                )

        try:
            record = cls.model_validate(payload)
        except ValidationError as e:
            raise SaveIntegrityError(f"Save payload is malformed: {e}")

        # The stored payload may predate fields this schema adds defaults for
        if verify_checksum:
            record.checksum = record.compute_checksum()
        return record

    @classmethod
    def from_json(cls, content: str, verify_checksum: bool = True) -> "SaveData":
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise SaveIntegrityError(f"Save payload is not valid JSON: {e}")
        return cls.from_payload(payload, verify_checksum=verify_checksum)

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_payload(), indent=indent, ensure_ascii=False)

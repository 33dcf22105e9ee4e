"""Data models for save records, slot descriptors and operation sessions."""

from .operations import (
    LoadOperation,
    LoadSession,
    LoadStrategy,
    OperationSession,
    SaveSession,
)
from .save_data import (
    CityInstanceData,
    ContractInstanceData,
    ContractStatus,
    GameState,
    PlayerProgress,
    SaveData,
    SettingsData,
    VehicleInstanceData,
    compute_payload_checksum,
)
from .slots import BackupEntry, SaveFileInfo, SaveMetadata, SaveSlotInfo

__all__ = [
    "BackupEntry",
    "CityInstanceData",
    "ContractInstanceData",
    "ContractStatus",
    "GameState",
    "LoadOperation",
    "LoadSession",
    "LoadStrategy",
    "OperationSession",
    "PlayerProgress",
    "SaveData",
    "SaveFileInfo",
    "SaveMetadata",
    "SaveSession",
    "SaveSlotInfo",
    "SettingsData",
    "VehicleInstanceData",
    "compute_payload_checksum",
]

"""Save/load persistence core.

Persists a player's game state into named slots and restores it with
checksum-gated validation, backup recovery, bounded retries and forward
schema migration.
"""

from .config.settings import SaveSystemConfig
from .events.manager import EventManager, EventType
from .managers.load_manager import LoadManager
from .managers.save_manager import SaveManager
from .models.operations import LoadOperation, LoadStrategy
from .models.save_data import SaveData
from .models.slots import SaveMetadata, SaveSlotInfo
from .system.context import SaveSystem, create_save_system

__version__ = "1.4.0"

__all__ = [
    "EventManager",
    "EventType",
    "LoadManager",
    "LoadOperation",
    "LoadStrategy",
    "SaveData",
    "SaveManager",
    "SaveMetadata",
    "SaveSlotInfo",
    "SaveSystem",
    "SaveSystemConfig",
    "create_save_system",
]

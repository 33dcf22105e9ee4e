"""Save and load managers."""

from .load_manager import LoadManager
from .save_manager import SaveManager

__all__ = ["LoadManager", "SaveManager"]

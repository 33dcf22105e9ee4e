"""Save system configuration."""

from .loader import EnvironmentLoader, load_settings
from .settings import SaveSystemConfig

__all__ = ["EnvironmentLoader", "SaveSystemConfig", "load_settings"]

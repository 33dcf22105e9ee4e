"""Save record validation, sanitization and migration."""

from .types import ValidationResult, ValidationSeverity
from .validator import SaveValidator

__all__ = ["SaveValidator", "ValidationResult", "ValidationSeverity"]

"""Settings model for the save system."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SaveSystemConfig(BaseModel):
    """Save system configuration."""

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        use_enum_values=True,
    )

    # Slots
    save_directory: Path = Field(
        default=Path("SaveData"), description="Root directory for save slots"
    )
    max_save_slots: int = Field(
        default=10, ge=1, description="Maximum number of distinct save slots"
    )

    # Backups
    create_backups: bool = Field(
        default=True, description="Back up the previous payload before overwriting"
    )
    max_backups: int = Field(default=3, ge=1, description="Backups kept per slot")

    # Autosave
    auto_save_enabled: bool = Field(default=True, description="Enable autosave")
    auto_save_interval: float = Field(
        default=300.0, gt=0, description="Autosave interval in seconds"
    )

    # Loading
    max_load_retries: int = Field(
        default=3, ge=1, description="Total load attempts before giving up"
    )
    retry_backoff_seconds: float = Field(
        default=1.0, ge=0, description="Backoff unit; delay is attempt * unit"
    )
    discovery_cache_ttl: float = Field(
        default=120.0, gt=0, description="Slot discovery cache lifetime in seconds"
    )
    auto_validate_before_load: bool = Field(
        default=True, description="Validate payloads before loading them"
    )
    enable_error_recovery: bool = Field(
        default=True, description="Restore from backup after a failed load"
    )
    enable_progress_reporting: bool = Field(
        default=True, description="Emit load progress events"
    )
    apply_settle_delay: float = Field(
        default=0.05, ge=0, description="Pause after applying loaded data"
    )
    streaming_chunk_delay: float = Field(
        default=0.1, ge=0, description="Delay between streaming load stages"
    )

    # Versioning
    app_version: str = Field(
        default="1.4.0", description="Save schema version of the running application"
    )

    # Lifecycle
    shutdown_save_timeout: float = Field(
        default=5.0, gt=0, description="Upper bound for the save on shutdown"
    )
    watch_save_directory: bool = Field(
        default=False, description="Watch the save directory for external changes"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_dir: Path = Field(default=Path("logs"), description="Log file directory")
    logging_config_path: Optional[Path] = Field(
        default=None, description="YAML dictConfig file for logging"
    )

    @field_validator("app_version")
    @classmethod
    def validate_app_version(cls, v):
        """Validate that the version is dotted numeric."""
        parts = v.split(".")
        if not parts or not all(part.isdigit() for part in parts):
            raise ValueError(f"Invalid version string: {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level name."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @property
    def backups_directory(self) -> Path:
        return self.save_directory / "Backups"

    @property
    def temp_directory(self) -> Path:
        return self.save_directory / "Temp"

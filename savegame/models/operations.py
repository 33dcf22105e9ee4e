"""In-flight operation state."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class LoadStrategy(Enum):
    """How a slot payload is brought into memory."""

    FULL = "full"
    LAZY = "lazy"
    STREAMING = "streaming"


class LoadOperation(Enum):
    """Phases of an orchestrated load."""

    NONE = "none"
    INITIALIZING = "initializing"
    VALIDATING = "validating"
    CHECKING_COMPATIBILITY = "checking_compatibility"
    MIGRATING_VERSION = "migrating_version"
    LOADING_DATA = "loading_data"
    LOADING_CORE_DATA = "loading_core_data"
    VALIDATING_DATA = "validating_data"
    SANITIZING_DATA = "sanitizing_data"
    FINAL_VALIDATION = "final_validation"
    APPLYING_DATA = "applying_data"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def in_progress(self) -> bool:
        return self not in (
            LoadOperation.NONE,
            LoadOperation.COMPLETED,
            LoadOperation.CANCELLED,
        )


@dataclass
class OperationSession:
    """Tracks one in-flight save or load."""

    slot_name: str
    progress: float = 0.0
    phase: str = ""
    retry_count: int = 0
    started_at: float = field(default_factory=time.time)
    cancelled: bool = False

    def update_progress(self, progress: float) -> float:
        self.progress = min(1.0, max(0.0, progress))
        return self.progress

    @property
    def elapsed(self) -> float:
        return time.time() - self.started_at


@dataclass
class SaveSession(OperationSession):
    """In-flight save."""

    reason: Optional[str] = None


@dataclass
class LoadSession(OperationSession):
    """In-flight load."""

    strategy: LoadStrategy = LoadStrategy.FULL
    operation: LoadOperation = LoadOperation.NONE
    last_error: Optional[str] = None

"""Version migration pipeline."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..errors import VersionMismatchError
from ..models.save_data import SaveData

logger = logging.getLogger(__name__)

# Guard against cycles in the registered steps
MAX_PATH_LENGTH = 20

# major.minor.patch
VERSION_PARTS = 3


def parse_version(version: str) -> tuple[int, ...]:
    """Parse a dotted version string into a comparable tuple.

    Versions are padded to major.minor.patch and extra trailing zero parts
    are dropped, so "1.0", "1.0.0" and "1.0.0.0" parse equal.

    Raises:
        ValueError: If the version is empty or not dotted numeric
    """
    if not version:
        raise ValueError("Version string is empty")
    try:
        parts = [int(part) for part in version.strip().split(".")]
    except ValueError:
        raise ValueError(f"Invalid version string: {version}")
    parts.extend([0] * (VERSION_PARTS - len(parts)))
    while len(parts) > VERSION_PARTS and parts[-1] == 0:
        parts.pop()
    return tuple(parts)


def normalize_version(version: str) -> str:
    return ".".join(str(part) for part in parse_version(version))


def versions_match(first: str, second: str) -> bool:
    """Compare two versions, falling back to string equality if unparseable."""
    try:
        return parse_version(first) == parse_version(second)
    except ValueError:
        return first == second


class MigrationStep:
    """Base class for a single-version migration.

    Subclasses set ``from_version``, ``to_version`` and ``description`` and
    implement ``apply``, which mutates and returns the record it is given.
    The pipeline always hands ``apply`` a private copy.
    """

    from_version: str = ""
    to_version: str = ""
    description: str = ""

    def apply(self, save_data: SaveData) -> SaveData:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.from_version} -> {self.to_version}>"


@dataclass
class MigrationResult:
    """Outcome of a migration run."""

    source_version: str
    target_version: str
    slot_name: Optional[str] = None
    success: bool = False
    message: str = ""
    completed_steps: list[str] = field(default_factory=list)
    duration: float = 0.0
    backup_created: bool = False
    save_data: Optional[SaveData] = None

    def get_summary(self) -> str:
        status = "SUCCESS" if self.success else "FAILED"
        return (
            f"Migration {status}: {self.source_version} -> {self.target_version} "
            f"in {self.duration:.1f}s"
        )


class VersionMigrationPipeline:
    """Plans and runs chains of forward migration steps."""

    def __init__(self, steps=None):
        self._steps: dict[str, MigrationStep] = {}
        for step in steps or ():
            self.register_step(step() if isinstance(step, type) else step)

    def register_step(self, step: MigrationStep) -> None:
        if parse_version(step.to_version) <= parse_version(step.from_version):
            raise ValueError(f"Migration step must move forward: {step!r}")
        key = normalize_version(step.from_version)
        if key in self._steps:
            logger.warning(f"Replacing migration step from {step.from_version}")
        self._steps[key] = step
        logger.debug(f"Registered migration step {step!r}")

    def get_supported_versions(self) -> list[str]:
        versions = set(self._steps)
        versions.update(
            normalize_version(step.to_version) for step in self._steps.values()
        )
        return sorted(versions, key=parse_version)

    def get_latest_supported_version(self) -> Optional[str]:
        versions = self.get_supported_versions()
        return versions[-1] if versions else None

    def plan_path(self, from_version: str, to_version: str) -> list[MigrationStep]:
        """Chain steps from one version to another.

        Returns:
            Ordered steps, empty when the versions match or no forward path
            exists
        """
        try:
            if parse_version(to_version) <= parse_version(from_version):
                return []
            current = normalize_version(from_version)
            target = normalize_version(to_version)
        except ValueError:
            return []

        path = []
        while current != target and len(path) < MAX_PATH_LENGTH:
            step = self._steps.get(current)
            if step is None:
                break
            path.append(step)
            current = normalize_version(step.to_version)

        return path if current == target else []

    def can_migrate(self, from_version: str, to_version: str) -> bool:
        return bool(self.plan_path(from_version, to_version))

    def is_migration_required(self, from_version: str, to_version: str) -> bool:
        if versions_match(from_version, to_version):
            return False
        return self.can_migrate(from_version, to_version)

    def get_migration_path(self, from_version: str, to_version: str) -> list[str]:
        return [step.description for step in self.plan_path(from_version, to_version)]

    def migrate(
        self,
        save_data: SaveData,
        target_version: str,
        step_callback: Optional[Callable[[MigrationStep], None]] = None,
    ) -> MigrationResult:
        """Migrate a copy of a record to the target version.

        The input record is never modified. On success the migrated copy is
        on ``result.save_data`` with its version set and checksum refreshed.

        Raises:
            VersionMismatchError: If no forward path exists or a step fails
        """
        start_time = time.time()
        source_version = save_data.save_version
        result = MigrationResult(
            source_version=source_version,
            target_version=target_version,
            slot_name=save_data.slot_name or None,
        )

        if versions_match(source_version, target_version):
            result.success = True
            result.message = "No migration needed - versions match"
            result.save_data = save_data
            return result

        steps = self.plan_path(source_version, target_version)
        if not steps:
            raise VersionMismatchError(
                f"No migration path found from {source_version} to {target_version}",
                slot_name=result.slot_name,
            )

        migrated = save_data.model_copy(deep=True)
        for step in steps:
            try:
                migrated = step.apply(migrated)
            except Exception as e:
                raise VersionMismatchError(
                    f"Migration step failed ({step.description}): {e}",
                    slot_name=result.slot_name,
                )
            migrated.save_version = step.to_version
            result.completed_steps.append(step.description)
            if step_callback:
                step_callback(step)
            logger.debug(f"Applied migration {step!r}")

        migrated.checksum = migrated.compute_checksum()

        result.duration = time.time() - start_time
        result.success = True
        result.save_data = migrated
        result.message = (
            f"Migrated from {source_version} to {target_version} "
            f"in {len(steps)} step(s)"
        )
        logger.info(result.message)
        return result

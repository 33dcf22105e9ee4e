"""Forward migration of save records between schema versions.

Each step upgrades a record by exactly one version. The pipeline chains
registered steps to reach the running version and never migrates backward.
"""

from .pipeline import (
    MigrationResult,
    MigrationStep,
    VersionMigrationPipeline,
    normalize_version,
    parse_version,
    versions_match,
)
from .steps import DEFAULT_MIGRATION_STEPS

__all__ = [
    "DEFAULT_MIGRATION_STEPS",
    "MigrationResult",
    "MigrationStep",
    "VersionMigrationPipeline",
    "normalize_version",
    "parse_version",
    "versions_match",
]

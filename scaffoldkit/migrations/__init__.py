"""Schema migrations: discovery, ledger, execution and file generation."""

from .engine import (
    Migration,
    MigrationEngine,
    MigrationFile,
    MigrationStatus,
    migration_filename,
)

__all__ = [
    "Migration",
    "MigrationEngine",
    "MigrationFile",
    "MigrationStatus",
    "migration_filename",
]

"""Configuration document lifecycle.

This package provides:
- Schema models and the validation gate (schema, validator)
- Append-only checksummed backup store (backup)
- Verified, reversible restore (restore)
- Migration from legacy KEY=VALUE sources (legacy, migrator)
"""

from confkeeper.lifecycle.backup import (
    BackupCreator,
    BackupMetadata,
    BackupRecord,
    BackupStats,
    BackupStore,
    VerificationResult,
)
from confkeeper.lifecycle.migrator import MigrationResult, Migrator, generate_report
from confkeeper.lifecycle.restore import RestoreCoordinator
from confkeeper.lifecycle.validator import (
    ValidationResult,
    format_validation_errors,
    validate_config,
)

__all__ = [
    "BackupCreator",
    "BackupMetadata",
    "BackupRecord",
    "BackupStats",
    "BackupStore",
    "MigrationResult",
    "Migrator",
    "RestoreCoordinator",
    "ValidationResult",
    "VerificationResult",
    "format_validation_errors",
    "generate_report",
    "validate_config",
]

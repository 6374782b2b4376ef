"""Backup, restore, export and import.

Usage:
    from db_admin.backup import BackupManager, StorageManager, PgDumpRunner
    from db_admin.backup import BackupManifest, BackupType, ValidationReport
"""

from db_admin.backup.dump import PgDumpRunner
from db_admin.backup.manager import BackupManager
from db_admin.backup.models import (
    BackupInfo,
    BackupManifest,
    BackupType,
    ExportResult,
    ImportResult,
    RestoreResult,
    TableCount,
    ValidationReport,
)
from db_admin.backup.storage import StorageManager
from db_admin.backup.validation import validate_artifact

__all__ = [
    "BackupManager",
    "StorageManager",
    "PgDumpRunner",
    "validate_artifact",
    "BackupInfo",
    "BackupManifest",
    "BackupType",
    "ExportResult",
    "ImportResult",
    "RestoreResult",
    "TableCount",
    "ValidationReport",
]

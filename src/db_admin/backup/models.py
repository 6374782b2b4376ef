"""Backup manifest and result models.

Every artifact written by ``BackupManager.backup_*`` gets a JSON
manifest sidecar (``BackupManifest``); exports do not.

Usage:
    from db_admin.backup.models import BackupManifest, BackupType

    manifest = BackupManifest.model_validate_json(path.read_text())
    if manifest.type is BackupType.INCREMENTAL:
        print(manifest.dependencies)
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class BackupType(str, Enum):
    FULL = "full"
    TABLE = "table"
    INCREMENTAL = "incremental"
    EXPORT = "export"
    UNKNOWN = "unknown"


class TableCount(BaseModel):
    """Row count of one table at backup time."""

    model_config = ConfigDict(frozen=True)

    name: str
    record_count: int = 0


class BackupManifest(BaseModel):
    """JSON sidecar describing one backup artifact.

    ``checksum`` is the SHA-256 of the artifact bytes as written (after
    compression), so any modification of the file is detected.
    """

    model_config = ConfigDict(frozen=True)

    backup_id: str
    type: BackupType
    artifact: str
    timestamp: datetime
    database: str
    postgres_version: str = "unknown"
    tables: list[TableCount] = Field(default_factory=list)
    total_record_count: int = 0
    size: int
    compressed: bool
    checksum: str
    checksum_algorithm: str = "sha256"
    data_only: bool = False
    schema_only: bool = False
    delta_tracking: bool | None = None  # incremental backups only
    dependencies: list[str] = Field(default_factory=list)
    duration_ms: int = 0

    @property
    def table_names(self) -> list[str]:
        return [t.name for t in self.tables]


class ValidationReport(BaseModel):
    """Result of ``validate_backup``."""

    file: str
    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    file_size: int | None = None
    file_type: BackupType = BackupType.UNKNOWN
    has_manifest: bool = False


class BackupInfo(BaseModel):
    """One entry of ``list_backups``."""

    file: str
    type: BackupType
    size: int
    created_at: datetime
    compressed: bool
    has_manifest: bool
    tables: list[str] = Field(default_factory=list)
    record_count: int | None = None


class ExportResult(BaseModel):
    export_file: str
    format: Literal["json", "csv"]
    table: str
    record_count: int
    size: int
    duration_ms: int


class ImportResult(BaseModel):
    table: str
    source_file: str
    imported_records: int
    skipped_records: int
    total_records: int
    on_conflict: str
    duration_ms: int


class RestoreResult(BaseModel):
    backup_file: str
    restored_tables: list[str]
    record_count: int
    warnings: list[str] = Field(default_factory=list)
    duration_ms: int

"""Backup directory layout and file operations.

The backup directory is created ``0o700``; every artifact and manifest is
created ``0o600``. Callers only ever pass bare file names, which are
resolved inside the directory.

File names:

- ``backup-full-{ts}.sql[.gz]``
- ``backup-table-{table}-{ts}.sql[.gz]``
- ``backup-incremental-{ts}-delta.sql[.gz]``
- ``export-{table}-{ts}.json`` / ``export-{table}-{ts}.csv``
- manifest: artifact name with its extension replaced by ``-manifest.json``

``{ts}`` is ``YYYYMMDD-HHMMSS-ffffff`` in UTC.
"""

import hashlib
import logging
import os
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import IO

from pydantic import ValidationError as PydanticValidationError

from db_admin.backup.models import BackupInfo, BackupManifest, BackupType
from db_admin.errors import BackupIntegrityError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
DIR_MODE = 0o700
FILE_MODE = 0o600
MANIFEST_SUFFIX = "-manifest.json"

_ARTIFACT_EXTENSION = re.compile(r"\.(sql|json|csv)(\.gz)?$")
_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S-%f"


def timestamp(now: datetime | None = None) -> str:
    """UTC timestamp used in artifact names."""
    return (now or datetime.now(timezone.utc)).strftime(_TIMESTAMP_FORMAT)


def manifest_name(artifact: str) -> str:
    """``backup-full-x.sql.gz`` -> ``backup-full-x-manifest.json``."""
    return _ARTIFACT_EXTENSION.sub("", artifact) + MANIFEST_SUFFIX


def backup_id(artifact: str) -> str:
    return _ARTIFACT_EXTENSION.sub("", artifact)


def detect_type(name: str) -> BackupType:
    if name.startswith("backup-full-"):
        return BackupType.FULL
    if name.startswith("backup-table-"):
        return BackupType.TABLE
    if name.startswith("backup-incremental-"):
        return BackupType.INCREMENTAL
    if name.startswith("export-") and name.endswith((".json", ".csv")):
        return BackupType.EXPORT
    return BackupType.UNKNOWN


def is_artifact_name(name: str) -> bool:
    """True for backup and export files; false for manifests and anything else."""
    return (
        not name.endswith(MANIFEST_SUFFIX)
        and _ARTIFACT_EXTENSION.search(name) is not None
        and detect_type(name) is not BackupType.UNKNOWN
    )


def is_gzip_name(name: str) -> bool:
    return name.endswith(".gz")


def sha256_file(path: Path) -> str:
    """SHA-256 of ``path`` read in 64 KiB chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class StorageManager:
    """File operations on one backup directory.

    Args:
        directory: Backup directory; created on first write.

    Example:
        storage = StorageManager(Path("backups"))
        name = storage.artifact_name(BackupType.TABLE, table="authors", compressed=True)
        with storage.open_new(name) as f:
            f.write(data)
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def ensure_directory(self) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        os.chmod(self.directory, DIR_MODE)
        return self.directory

    # ------------------------------------------------------------------
    # Names and paths
    # ------------------------------------------------------------------

    def artifact_name(
        self,
        backup_type: BackupType,
        *,
        table: str | None = None,
        compressed: bool = False,
        fmt: str = "sql",
        now: datetime | None = None,
    ) -> str:
        ts = timestamp(now)
        ext = ".gz" if compressed else ""
        if backup_type is BackupType.FULL:
            return f"backup-full-{ts}.sql{ext}"
        if backup_type is BackupType.TABLE:
            return f"backup-table-{table}-{ts}.sql{ext}"
        if backup_type is BackupType.INCREMENTAL:
            return f"backup-incremental-{ts}-delta.sql{ext}"
        if backup_type is BackupType.EXPORT:
            return f"export-{table}-{ts}.{fmt}"
        raise ValueError(f"No file name pattern for backup type {backup_type.value}")

    def path(self, name: str) -> Path:
        """Resolve a caller-supplied bare file name inside the directory.

        Raises:
            ValidationError: If ``name`` is empty or contains a path component
        """
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Backup file name is required")
        if "/" in name or "\\" in name or "\x00" in name or ".." in name or name.startswith("."):
            raise ValidationError(
                f"Invalid backup file name '{name}': must be a bare file name inside the backup directory"
            )
        return self.directory / name

    def existing(self, name: str) -> Path:
        """Like ``path`` but the file must exist.

        Raises:
            NotFoundError: If the file does not exist
        """
        path = self.path(name)
        if not path.is_file():
            raise NotFoundError(f"Backup file not found: {name}", data={"file": name})
        return path

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def open_new(self, name: str, mode: str = "wb", **kwargs) -> IO:
        """Create ``name`` with owner-only permissions and open it for writing."""
        self.ensure_directory()
        path = self.path(name)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
        return os.fdopen(fd, mode, **kwargs)

    def remove(self, name: str) -> bool:
        """Delete ``name`` if present; used to clean up partial artifacts."""
        path = self.path(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def checksum(self, name: str) -> str:
        return sha256_file(self.existing(name))

    def size(self, name: str) -> int:
        return self.existing(name).stat().st_size

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------

    def save_manifest(self, manifest: BackupManifest) -> str:
        name = manifest_name(manifest.artifact)
        with self.open_new(name, "w", encoding="utf-8") as f:
            f.write(manifest.model_dump_json(indent=2))
        return name

    def load_manifest(self, artifact: str) -> BackupManifest | None:
        """Manifest of ``artifact``, or ``None`` when there is none.

        Raises:
            BackupIntegrityError: If the manifest exists but cannot be parsed
        """
        path = self.path(manifest_name(artifact))
        if not path.is_file():
            return None
        try:
            return BackupManifest.model_validate_json(path.read_text(encoding="utf-8"))
        except (PydanticValidationError, OSError) as e:
            raise BackupIntegrityError(
                f"Manifest for {artifact} is unreadable",
                data={"file": artifact, "detail": str(e)},
            ) from e

    # ------------------------------------------------------------------
    # Listing and retention
    # ------------------------------------------------------------------

    def _artifacts(self) -> list[Path]:
        if not self.directory.is_dir():
            return []
        return [
            p for p in self.directory.iterdir()
            if p.is_file() and is_artifact_name(p.name)
        ]

    def _info(self, path: Path) -> BackupInfo:
        try:
            manifest = self.load_manifest(path.name)
        except BackupIntegrityError:
            logger.warning("Ignoring unreadable manifest for %s", path.name)
            manifest = None
        stat = path.stat()
        created_at = (
            manifest.timestamp
            if manifest is not None
            else datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        )
        return BackupInfo(
            file=path.name,
            type=detect_type(path.name),
            size=stat.st_size,
            created_at=created_at,
            compressed=is_gzip_name(path.name),
            has_manifest=manifest is not None,
            tables=manifest.table_names if manifest else [],
            record_count=manifest.total_record_count if manifest else None,
        )

    def list_backups(
        self,
        backup_type: BackupType | None = None,
        sort_by: str = "date",
        limit: int | None = None,
    ) -> list[BackupInfo]:
        """List artifacts, newest (``date``) or largest (``size``) first.

        Exports are only listed when ``backup_type`` is ``EXPORT``.
        """
        infos: list[BackupInfo] = []
        for path in self._artifacts():
            kind = detect_type(path.name)
            if backup_type is None and kind is BackupType.EXPORT:
                continue
            if backup_type is not None and kind is not backup_type:
                continue
            infos.append(self._info(path))

        if sort_by == "size":
            infos.sort(key=lambda i: i.size, reverse=True)
        elif sort_by == "name":
            infos.sort(key=lambda i: i.file)
        else:
            infos.sort(key=lambda i: i.created_at, reverse=True)

        return infos[:limit] if limit else infos

    def delete(self, name: str) -> dict:
        """Delete an artifact and its manifest permanently.

        Raises:
            ValidationError: If ``name`` is not a backup or export file
            NotFoundError: If the artifact does not exist
        """
        if not is_artifact_name(self.path(name).name):
            raise ValidationError(
                f"'{name}' is not a backup or export file; manifests are deleted with their backup",
                data={"file": name},
            )
        path = self.existing(name)
        size = path.stat().st_size
        path.unlink()
        deleted = [name]
        if self.remove(manifest_name(name)):
            deleted.append(manifest_name(name))
        logger.warning("Deleted backup %s (%d bytes)", name, size)
        return {"deleted_files": deleted, "freed_space": size}

    def cleanup(self, retention_days: int, now: datetime | None = None) -> dict:
        """Delete every artifact (exports included) older than ``retention_days``."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        deleted: list[str] = []
        freed = 0
        for path in self._artifacts():
            info = self._info(path)
            if info.created_at < cutoff:
                freed += self.delete(path.name)["freed_space"]
                deleted.append(path.name)
        if deleted:
            logger.warning(
                "Retention cleanup removed %d backup(s) older than %d days",
                len(deleted), retention_days,
            )
        return {"deleted_count": len(deleted), "deleted_backups": deleted, "freed_space": freed}

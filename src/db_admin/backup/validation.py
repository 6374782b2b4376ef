"""Integrity checks for backup artifacts.

``validate_artifact`` never raises for a bad artifact; every problem is
reported in the returned ``ValidationReport``. Errors make the report
invalid (restore refuses it); warnings are informational.
"""

import gzip
import re
import zlib
from typing import IO

from db_admin.backup.models import BackupManifest, BackupType, ValidationReport
from db_admin.backup.storage import StorageManager, detect_type, is_gzip_name, sha256_file
from db_admin.errors import BackupIntegrityError

GZIP_MAGIC = b"\x1f\x8b"
MIN_EXPECTED_SIZE = 100
SAMPLE_LINES = 100

_BEGIN = re.compile(rb"BEGIN\s*;")
_COMMIT = re.compile(rb"COMMIT\s*;")


def validate_artifact(storage: StorageManager, name: str) -> ValidationReport:
    """Check existence, size, manifest, checksum, gzip framing and SQL shape.

    Raises:
        ValidationError: If ``name`` is not a bare file name
    """
    path = storage.path(name)
    file_type = detect_type(name)
    errors: list[str] = []
    warnings: list[str] = []

    if not path.is_file():
        return ValidationReport(
            file=name,
            valid=False,
            errors=["Backup file does not exist or is not readable"],
            file_type=file_type,
        )

    size = path.stat().st_size
    if size == 0:
        errors.append("Backup file is empty")
    elif size < MIN_EXPECTED_SIZE:
        warnings.append("Backup file is very small, may be incomplete")

    # Manifest and checksum
    manifest: BackupManifest | None = None
    try:
        manifest = storage.load_manifest(name)
    except BackupIntegrityError as e:
        errors.append(e.message)
    else:
        if manifest is None and file_type is not BackupType.EXPORT:
            errors.append("Manifest file is missing; integrity cannot be verified")

    if manifest is not None:
        if sha256_file(path) != manifest.checksum:
            errors.append("Checksum mismatch - file may be corrupted")
        if manifest.size != size:
            warnings.append(f"File size mismatch (expected {manifest.size}, got {size})")
        if manifest.postgres_version != "unknown":
            warnings.append(
                f"Backup created with PostgreSQL {manifest.postgres_version} - verify compatibility"
            )
        for dependency in manifest.dependencies:
            if not storage.path(dependency).is_file():
                errors.append(f"Base backup not found: {dependency}")

    if file_type is BackupType.UNKNOWN:
        warnings.append("Unknown backup file type")

    # Gzip framing
    readable = size > 0
    if is_gzip_name(name) and size > 0:
        with open(path, "rb") as f:
            header = f.read(2)
        if header != GZIP_MAGIC:
            errors.append("File has .gz extension but is not a valid gzip file")
            readable = False

    if ".sql" in name and readable:
        opener = gzip.open if is_gzip_name(name) else open
        try:
            with opener(path, "rb") as f:
                warnings.extend(_sql_warnings(f))
        except (OSError, EOFError, zlib.error) as e:
            errors.append(f"Gzip validation failed: {e}")

    return ValidationReport(
        file=name,
        valid=not errors,
        errors=errors,
        warnings=warnings,
        file_size=size,
        file_type=file_type,
        has_manifest=manifest is not None,
    )


def _sql_warnings(lines: IO[bytes]) -> list[str]:
    """Superficial sanity checks on a plain SQL dump, read line by line."""
    warnings: list[str] = []
    has_create = has_insert = False
    begin_count = commit_count = 0

    for number, raw in enumerate(lines):
        line = raw.strip().upper()
        if number < SAMPLE_LINES:
            if line.startswith((b"CREATE TABLE", b"CREATE DATABASE")):
                has_create = True
            if line.startswith(b"INSERT INTO"):
                has_insert = True
            if b"DROP DATABASE" in line and b"IF EXISTS" not in line:
                warnings.append("Backup contains DROP DATABASE without IF EXISTS")
        if _BEGIN.match(line):
            begin_count += 1
        elif _COMMIT.match(line):
            commit_count += 1

    if not has_create and not has_insert:
        warnings.append("No CREATE or INSERT statements in the first 100 lines")
    if begin_count != commit_count:
        warnings.append(f"Unbalanced transactions (BEGIN: {begin_count}, COMMIT: {commit_count})")

    return warnings

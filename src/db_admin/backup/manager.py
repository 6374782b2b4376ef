"""Backup, restore, export and import of whitelisted tables.

Backups are plain SQL dumps produced by ``pg_dump`` (optionally gzip
compressed), each with a JSON manifest holding its SHA-256 checksum.
A backup moves through ``requested -> dumping -> (compressing) ->
checksumming -> manifest-written -> complete``; on failure at any stage
the partial artifact and manifest are deleted.

Exports are JSON or CSV files streamed from a server-side cursor; imports
read them back in a single transaction after validating every row.

Usage:
    manager = BackupManager(adapter, storage, runner, validator, access, introspector, cache)
    manifest = await manager.backup_table("authors", compress=True)
    report = await manager.validate_backup(manifest.artifact)
    result = await manager.restore_table(manifest.artifact, "authors", on_conflict="update")
"""

import asyncio
import csv
import json
import logging
import time
from contextlib import aclosing
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from db_admin.adapters.base import DatabaseClient
from db_admin.backup.dump import PgDumpRunner
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
from db_admin.backup.storage import (
    StorageManager,
    backup_id,
    detect_type,
    is_gzip_name,
    manifest_name,
)
from db_admin.backup.validation import validate_artifact
from db_admin.errors import (
    BackupIntegrityError,
    DatabaseError,
    NotFoundError,
    ValidationError,
    classify_db_error,
)
from db_admin.query import builder
from db_admin.query.models import ConflictMode, SortSpec
from db_admin.schema.cache import SchemaCache
from db_admin.schema.introspector import SchemaIntrospector
from db_admin.schema.types import coerce_row, coerce_where, load_column_types, load_columns
from db_admin.security.access import AccessControl
from db_admin.security.validator import SecurityValidator
from db_admin.whitelist import WhitelistEntry

logger = logging.getLogger(__name__)

MAX_REPORTED_ROW_ERRORS = 10

_LIST_SORT_KEYS = ("date", "size", "name")


def parse_conflict_mode(value: Any) -> ConflictMode:
    try:
        return ConflictMode(value)
    except ValueError:
        raise ValidationError(
            f"Invalid onConflict '{value}': must be one of error, skip, update"
        ) from None


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _csv_cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return value


class BackupManager:
    """Owns the backup directory and every operation on its artifacts.

    Args:
        adapter: Shared database client
        storage: Backup directory
        runner: ``pg_dump``/``psql`` driver
        validator: Whitelist gate for table names and payloads
        access: Operation-level access control
        introspector: Live schema metadata
        cache: Schema cache; restored and imported tables are invalidated
        compress_default: Compression when the caller does not say
        health_check_timeout: Seconds allowed for the pre-restore health check
        retention_days: Default age limit for ``cleanup_old_backups``
        large_backup_threshold: Artifacts above this size are hashed and
            validated in a worker thread
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        storage: StorageManager,
        runner: PgDumpRunner,
        validator: SecurityValidator,
        access: AccessControl,
        introspector: SchemaIntrospector,
        cache: SchemaCache,
        compress_default: bool = True,
        health_check_timeout: float = 5.0,
        retention_days: int = 30,
        large_backup_threshold: int = 10 * 1024 * 1024,
    ) -> None:
        self.adapter = adapter
        self.storage = storage
        self.runner = runner
        self.validator = validator
        self.access = access
        self.introspector = introspector
        self.cache = cache
        self.compress_default = compress_default
        self.health_check_timeout = health_check_timeout
        self.retention_days = retention_days
        self.large_backup_threshold = large_backup_threshold

    # ========================================================================
    # Backups
    # ========================================================================

    async def backup_full(self, compress: bool | None = None, include_schema: bool = True) -> BackupManifest:
        """Dump schema and data of every whitelisted table present in the database."""
        tables = await self._existing_tables(self.validator.registry.tables)
        return await self._create(
            BackupType.FULL,
            tables,
            self._compress(compress),
            data_only=not include_schema,
        )

    async def backup_table(
        self,
        table: str,
        data_only: bool = False,
        schema_only: bool = False,
        compress: bool | None = None,
    ) -> BackupManifest:
        """Dump one whitelisted table."""
        self.validator.validate_table(table)
        self.access.validate_table_access(table, "BACKUP")
        if data_only and schema_only:
            raise ValidationError("dataOnly and schemaOnly cannot both be set")

        tables = await self._existing_tables([table])
        return await self._create(
            BackupType.TABLE,
            tables,
            self._compress(compress),
            data_only=data_only,
            schema_only=schema_only,
        )

    async def backup_incremental(
        self, base_backup: str | None = None, compress: bool | None = None
    ) -> BackupManifest:
        """Incremental backup.

        Delta tracking is not implemented: this writes a full data-only
        dump of the whitelisted tables, typed ``incremental`` with
        ``delta_tracking=False``. A given ``base_backup`` must exist and
        is recorded as a dependency.
        """
        dependencies: list[str] = []
        if base_backup is not None:
            self.storage.existing(base_backup)
            if detect_type(base_backup) not in (BackupType.FULL, BackupType.INCREMENTAL):
                raise ValidationError(
                    f"Base backup must be a full or incremental backup, got '{base_backup}'"
                )
            dependencies.append(base_backup)

        logger.info("Incremental backup requested; writing a full data-only dump (no delta tracking)")
        tables = await self._existing_tables(self.validator.registry.tables)
        return await self._create(
            BackupType.INCREMENTAL,
            tables,
            self._compress(compress),
            data_only=True,
            delta_tracking=False,
            dependencies=dependencies,
        )

    async def _create(
        self,
        backup_type: BackupType,
        tables: list[str],
        compress: bool,
        *,
        data_only: bool = False,
        schema_only: bool = False,
        delta_tracking: bool | None = None,
        dependencies: list[str] | None = None,
    ) -> BackupManifest:
        start = time.monotonic()
        name = self.storage.artifact_name(
            backup_type,
            table=tables[0] if backup_type is BackupType.TABLE else None,
            compressed=compress,
        )
        logger.info("Backup %s: requested (%d table(s))", name, len(tables))

        counts = [TableCount(name=t) for t in tables] if schema_only else await self._record_counts(tables)
        version = await self._postgres_version()
        args = self.runner.dump_args(tables, data_only=data_only, schema_only=schema_only)

        try:
            logger.info("Backup %s: dumping%s", name, " and compressing" if compress else "")
            with self.storage.open_new(name) as output:
                await self.runner.dump(output, args, compress)

            logger.info("Backup %s: checksumming", name)
            checksum = await self._checksum(name)

            manifest = BackupManifest(
                backup_id=backup_id(name),
                type=backup_type,
                artifact=name,
                timestamp=datetime.now(timezone.utc),
                database=self.adapter.database_name,
                postgres_version=version,
                tables=counts,
                total_record_count=sum(c.record_count for c in counts),
                size=self.storage.size(name),
                compressed=compress,
                checksum=checksum,
                data_only=data_only,
                schema_only=schema_only,
                delta_tracking=delta_tracking,
                dependencies=dependencies or [],
                duration_ms=_elapsed_ms(start),
            )
            self.storage.save_manifest(manifest)
            logger.info("Backup %s: manifest-written", name)
        except BaseException:
            self.storage.remove(name)
            self.storage.remove(manifest_name(name))
            logger.warning("Backup %s: failed, partial artifacts removed", name)
            raise

        logger.info(
            "Backup %s: complete (%d bytes, %d records, %d ms)",
            name, manifest.size, manifest.total_record_count, manifest.duration_ms,
        )
        return manifest

    # ========================================================================
    # Exports
    # ========================================================================

    async def export_json(self, table: str, where: dict | None = None, limit: int | None = None) -> ExportResult:
        """Write matching rows as a JSON array of objects."""
        return await self._export(table, where, limit, "json")

    async def export_csv(self, table: str, where: dict | None = None, limit: int | None = None) -> ExportResult:
        """Write matching rows as CSV with a header row.

        Fields are quoted when needed (RFC 4180); NULL is an empty field.
        """
        return await self._export(table, where, limit, "csv")

    async def _export(self, table: str, where: dict | None, limit: int | None, fmt: str) -> ExportResult:
        start = time.monotonic()
        entry = self.validator.validate_table(table)
        self.access.validate_table_access(table, "EXPORT")
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
            raise ValidationError("Limit must be a positive integer")

        columns = await self._whitelisted_columns(entry)
        conditions = []
        if where:
            types = await load_column_types(self.cache, self.introspector, table)
            conditions = self.validator.validate_where_clause(table, coerce_where(where, types))
        sort = [SortSpec(column="id")] if "id" in columns else None
        query = builder.build_select(entry, columns, conditions, sort=sort)

        name = self.storage.artifact_name(BackupType.EXPORT, table=table, fmt=fmt)
        count = 0
        try:
            with self.storage.open_new(name, "w", encoding="utf-8", newline="") as f:
                writer = None
                if fmt == "csv":
                    writer = csv.writer(f, quoting=csv.QUOTE_MINIMAL)
                    writer.writerow(columns)
                else:
                    f.write("[")
                async with aclosing(self.adapter.stream(query.sql, query.params)) as rows:
                    async for row in rows:
                        if writer is not None:
                            writer.writerow([_csv_cell(row.get(c)) for c in columns])
                        else:
                            f.write(",\n  " if count else "\n  ")
                            f.write(json.dumps(row, ensure_ascii=False, default=str))
                        count += 1
                        if limit is not None and count >= limit:
                            break
                if writer is None:
                    f.write("\n]\n" if count else "]\n")
        except BaseException:
            self.storage.remove(name)
            raise

        size = self.storage.size(name)
        logger.info("Exported %d row(s) of %s to %s", count, table, name)
        return ExportResult(
            export_file=name,
            format=fmt,
            table=table,
            record_count=count,
            size=size,
            duration_ms=_elapsed_ms(start),
        )

    # ========================================================================
    # Imports
    # ========================================================================

    async def import_json(self, table: str, json_file: str, on_conflict: str = "error") -> ImportResult:
        """Import a JSON array of objects into ``table``.

        Every row is validated before anything is written; then all rows
        are inserted in one transaction.
        """
        mode = parse_conflict_mode(on_conflict)
        entry = self._import_target(table, mode)
        path = self.storage.existing(json_file)

        try:
            records = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError(f"Invalid JSON file {json_file}: {e}") from e
        if not isinstance(records, list):
            raise ValidationError("JSON import file must contain an array of objects")

        return await self._import(entry, json_file, records, mode)

    async def import_csv(
        self,
        table: str,
        csv_file: str,
        has_headers: bool = True,
        on_conflict: str = "error",
    ) -> ImportResult:
        """Import CSV rows into ``table``.

        Without a header row the columns are the table's whitelisted
        columns in database order. Empty fields import as NULL.
        """
        mode = parse_conflict_mode(on_conflict)
        entry = self._import_target(table, mode)
        path = self.storage.existing(csv_file)

        try:
            with open(path, newline="", encoding="utf-8") as f:
                rows = [row for row in csv.reader(f) if row]
        except (csv.Error, UnicodeDecodeError) as e:
            raise ValidationError(f"Invalid CSV file {csv_file}: {e}") from e

        if has_headers:
            if not rows:
                raise ValidationError("CSV file has no header row")
            headers = [h.strip() for h in rows[0]]
            rows = rows[1:]
            first_row = 2
        else:
            headers = await self._whitelisted_columns(entry)
            first_row = 1

        records: list[dict | None] = []
        errors: list[str] = []
        for offset, row in enumerate(rows):
            if len(row) != len(headers):
                errors.append(
                    f"Row {first_row + offset}: column count mismatch "
                    f"(expected {len(headers)}, got {len(row)})"
                )
                records.append(None)
                continue
            records.append({h: (v if v != "" else None) for h, v in zip(headers, row)})

        return await self._import(entry, csv_file, records, mode, errors, first_row)

    def _import_target(self, table: str, mode: ConflictMode) -> WhitelistEntry:
        entry = self.validator.validate_table(table)
        self.access.validate_table_access(table, "IMPORT")
        self.validator.validate_not_read_only(table, "IMPORT")
        if mode is ConflictMode.UPDATE and not entry.has_column("id"):
            raise ValidationError(
                f"onConflict 'update' needs an 'id' column, which table '{table}' does not have"
            )
        return entry

    async def _import(
        self,
        entry: WhitelistEntry,
        source: str,
        records: list[Any],
        mode: ConflictMode,
        errors: list[str] | None = None,
        first_row: int = 0,
    ) -> ImportResult:
        start = time.monotonic()
        table = entry.table
        types = await load_column_types(self.cache, self.introspector, table)
        errors = list(errors or [])

        prepared: list[dict[str, Any]] = []
        for offset, record in enumerate(records):
            if record is None:
                continue
            try:
                data = self.validator.validate_data(table, record)
                prepared.append(coerce_row(data, types))
            except ValidationError as e:
                errors.append(f"Row {first_row + offset}: {e.message}")

        if errors:
            logger.warning("Import of %s into %s rejected: %d invalid row(s)", source, table, len(errors))
            raise ValidationError(
                f"Import rejected: {len(errors)} invalid row(s); nothing was imported",
                data={"errors": errors[:MAX_REPORTED_ROW_ERRORS], "error_count": len(errors)},
            )

        on_conflict = None if mode is ConflictMode.ERROR else mode
        imported = 0
        if prepared:
            async with self.adapter.transaction() as tx:
                for offset, data in enumerate(prepared):
                    query = builder.build_insert(entry, data, on_conflict=on_conflict)
                    try:
                        rows = await tx.fetch(query.sql, query.params)
                    except SQLAlchemyError as e:
                        error = classify_db_error(e)
                        error.data = {**(error.data or {}), "row": first_row + offset}
                        raise error from e
                    imported += len(rows)

        self.cache.invalidate_table(table)
        skipped = len(prepared) - imported
        logger.info(
            "Imported %d row(s) from %s into %s (%d skipped, onConflict=%s)",
            imported, source, table, skipped, mode.value,
        )
        return ImportResult(
            table=table,
            source_file=source,
            imported_records=imported,
            skipped_records=skipped,
            total_records=len(prepared),
            on_conflict=mode.value,
            duration_ms=_elapsed_ms(start),
        )

    # ========================================================================
    # Restore
    # ========================================================================

    async def restore_full(
        self,
        backup_file: str,
        drop_existing: bool = False,
        on_conflict: str = "error",
        force: bool = False,
    ) -> RestoreResult:
        """Restore every table of a backup.

        ``on_conflict``:
        - ``error``: one transaction, the first failing statement aborts it
        - ``skip``: failing statements are skipped and reported as warnings
        - ``update``: one transaction that truncates the backed-up tables
          first, so the backup's rows replace the current contents

        Raises:
            NotFoundError: If the artifact does not exist
            BackupIntegrityError: If validation fails and ``force`` is not set
            DatabaseError: If the database is unhealthy or psql fails
        """
        return await self._restore(
            backup_file, table=None, drop_existing=drop_existing, on_conflict=on_conflict, force=force
        )

    async def restore_table(
        self,
        backup_file: str,
        table: str,
        on_conflict: str = "error",
        force: bool = False,
    ) -> RestoreResult:
        """Restore a table backup; its manifest must cover exactly ``table``."""
        self.validator.validate_table(table)
        self.access.validate_table_access(table, "RESTORE")
        return await self._restore(
            backup_file, table=table, drop_existing=False, on_conflict=on_conflict, force=force
        )

    async def _restore(
        self,
        backup_file: str,
        *,
        table: str | None,
        drop_existing: bool,
        on_conflict: str,
        force: bool,
    ) -> RestoreResult:
        start = time.monotonic()
        mode = parse_conflict_mode(on_conflict)
        path = self.storage.existing(backup_file)
        if detect_type(backup_file) is BackupType.EXPORT:
            raise ValidationError("Exports are loaded with import_json or import_csv, not restored")

        report = await self.validate_backup(backup_file)
        warnings = list(report.warnings)
        if not report.valid:
            if not force:
                raise BackupIntegrityError(
                    f"Backup validation failed: {'; '.join(report.errors)}",
                    data={"file": backup_file, "errors": report.errors},
                )
            logger.warning("Restoring %s despite failed validation (forced)", backup_file)
            warnings.extend(f"Validation overridden: {e}" for e in report.errors)

        if not await self.adapter.health_check(self.health_check_timeout):
            raise DatabaseError("Database connection is not healthy; restore aborted", retryable=True)

        try:
            manifest = self.storage.load_manifest(backup_file)
        except BackupIntegrityError:
            manifest = None  # only reachable when forced
        tables = manifest.table_names if manifest else []
        for name in tables:
            self.validator.validate_table(name)

        if table is not None and tables != [table]:
            raise ValidationError(
                f"Backup {backup_file} does not contain exactly table '{table}' "
                f"(contains: {', '.join(tables) or 'unknown'})"
            )

        preamble = self._restore_preamble(manifest, tables, drop_existing, mode)
        logger.info(
            "Restoring %s (%d table(s), onConflict=%s, dropExisting=%s)",
            backup_file, len(tables), mode.value, drop_existing,
        )
        psql_warnings = await self.runner.restore(
            path,
            compressed=is_gzip_name(backup_file),
            preamble=preamble,
            stop_on_error=mode is not ConflictMode.SKIP,
            single_transaction=mode is not ConflictMode.SKIP,
        )
        warnings.extend(psql_warnings)

        for name in tables:
            self.cache.invalidate_table(name)

        duration = _elapsed_ms(start)
        logger.info("Restore of %s complete in %d ms (%d warning(s))", backup_file, duration, len(warnings))
        return RestoreResult(
            backup_file=backup_file,
            restored_tables=tables,
            record_count=manifest.total_record_count if manifest else 0,
            warnings=warnings,
            duration_ms=duration,
        )

    def _restore_preamble(
        self,
        manifest: BackupManifest | None,
        tables: list[str],
        drop_existing: bool,
        mode: ConflictMode,
    ) -> str | None:
        if drop_existing:
            if manifest is not None and manifest.data_only:
                raise ValidationError(
                    "dropExisting cannot be used with a data-only backup: dropped tables would not be recreated"
                )
            if not tables:
                raise ValidationError("dropExisting needs a manifest listing the backed-up tables")
            return f"DROP TABLE IF EXISTS {', '.join(tables)} CASCADE;\n"
        if mode is ConflictMode.UPDATE:
            if not tables:
                raise ValidationError("onConflict 'update' needs a manifest listing the backed-up tables")
            return f"TRUNCATE TABLE {', '.join(tables)};\n"
        return None

    # ========================================================================
    # Listing, validation, retention
    # ========================================================================

    async def validate_backup(self, backup_file: str) -> ValidationReport:
        """Checksum, manifest, gzip and SQL sanity checks for one artifact."""
        path = self.storage.path(backup_file)
        if path.is_file() and path.stat().st_size > self.large_backup_threshold:
            return await asyncio.to_thread(validate_artifact, self.storage, backup_file)
        return validate_artifact(self.storage, backup_file)

    def list_backups(
        self,
        backup_type: str | None = None,
        sort_by: str = "date",
        limit: int | None = None,
    ) -> list[BackupInfo]:
        kind: BackupType | None = None
        if backup_type is not None:
            try:
                kind = BackupType(backup_type)
            except ValueError:
                kind = None
            if kind is None or kind is BackupType.UNKNOWN:
                raise ValidationError(
                    f"Invalid backup type '{backup_type}': must be one of full, table, incremental, export"
                )
        if sort_by not in _LIST_SORT_KEYS:
            raise ValidationError(f"Invalid sortBy '{sort_by}': must be one of {', '.join(_LIST_SORT_KEYS)}")
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
            raise ValidationError("Limit must be a positive integer")
        return self.storage.list_backups(kind, sort_by, limit)

    def delete_backup(self, backup_file: str) -> dict:
        """Permanently delete an artifact and its manifest."""
        return self.storage.delete(backup_file)

    def cleanup_old_backups(self, retention_days: int | None = None) -> dict:
        days = self.retention_days if retention_days is None else retention_days
        if isinstance(days, bool) or not isinstance(days, int) or days < 1:
            raise ValidationError("Retention days must be a positive integer")
        return self.storage.cleanup(days)

    # ========================================================================
    # Helpers
    # ========================================================================

    def _compress(self, compress: bool | None) -> bool:
        return self.compress_default if compress is None else bool(compress)

    async def _existing_tables(self, tables: list[str]) -> list[str]:
        live = await self.introspector.get_column_names()
        existing = [t for t in tables if t in live]
        if not existing:
            raise NotFoundError(
                f"None of the requested tables exist in the database: {', '.join(tables)}",
                data={"tables": tables},
            )
        return existing

    async def _whitelisted_columns(self, entry: WhitelistEntry) -> list[str]:
        columns = [
            c.name for c in await load_columns(self.cache, self.introspector, entry.table)
            if entry.has_column(c.name)
        ]
        if not columns:
            raise NotFoundError(f"Table '{entry.table}' not found in database", data={"table": entry.table})
        return columns

    async def _record_counts(self, tables: list[str]) -> list[TableCount]:
        counts: list[TableCount] = []
        for table in tables:
            query = builder.build_count(self.validator.validate_table(table))
            value = await self.adapter.fetch_value(query.sql, query.params)
            counts.append(TableCount(name=table, record_count=int(value or 0)))
        return counts

    async def _postgres_version(self) -> str:
        try:
            version = await self.adapter.fetch_value("SELECT current_setting('server_version') AS version")
        except SQLAlchemyError as e:
            logger.warning("Could not read server version: %s", e)
            return "unknown"
        return str(version) if version else "unknown"

    async def _checksum(self, name: str) -> str:
        if self.storage.size(name) > self.large_backup_threshold:
            return await asyncio.to_thread(self.storage.checksum, name)
        return self.storage.checksum(name)

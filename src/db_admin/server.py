"""FastMCP server exposing the admin tools.

One tool per operation; each tool forwards to a handler, which validates
its input and returns a success payload or ``{"error": {...}}``.
Logging goes to stderr because stdout carries the stdio transport.

Usage:
    from db_admin.config import get_settings
    from db_admin.factory import build_services
    from db_admin.server import create_server

    mcp = create_server(build_services(get_settings()))
    mcp.run(transport="stdio")
"""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP
from sqlalchemy.exc import SQLAlchemyError

from db_admin.factory import AdminServices
from db_admin.handlers import AdminHandlers

logger = logging.getLogger(__name__)

SERVER_NAME = "db-admin"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, stream=sys.stderr)


def create_server(services: AdminServices) -> FastMCP:
    """Build the ``FastMCP`` app with every admin tool registered.

    The lifespan checks database health and whitelist drift on startup
    (both only warn) and disposes of the connection pool on shutdown.
    """

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        settings = services.settings
        if await services.adapter.health_check(settings.health_check_timeout):
            logger.info("Connected to database '%s'", services.adapter.database_name)
            try:
                report = await services.verify_whitelist()
            except SQLAlchemyError as e:
                logger.warning("Could not compare whitelist with database: %s", e)
            else:
                if not report.valid:
                    logger.warning("Whitelist does not match database:\n%s", report.format_report())
        else:
            logger.warning("Database is not reachable; tools will report errors until it is")
        try:
            yield
        finally:
            await services.close()
            logger.info("Connection pool disposed")

    mcp = FastMCP(SERVER_NAME, lifespan=lifespan)
    handlers = AdminHandlers(services)
    db = handlers.database
    batch = handlers.batch
    schema = handlers.schema
    backup = handlers.backup
    audit = handlers.audit

    # ========================================================================
    # Records
    # ========================================================================

    @mcp.tool
    async def query_records(
        table: str,
        columns: list[str] | None = None,
        where: dict[str, Any] | None = None,
        order_by: list[dict[str, str]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        include_deleted: bool = False,
    ) -> dict:
        """Query records from a whitelisted table.

        Args:
            table: Table name
            columns: Columns to return (default: all)
            where: Filter object, e.g. {"name": {"$like": "Jane%"}, "id": {"$in": [1, 2]}}
            order_by: [{"column": "created_at", "direction": "DESC"}]
            limit: 1-1000 (default 100)
            offset: Rows to skip
            include_deleted: Also return soft-deleted rows
        """
        return await db.query_records(table, columns, where, order_by, limit, offset, include_deleted)

    @mcp.tool
    async def insert_record(table: str, data: dict[str, Any]) -> dict:
        """Insert one record and return it with its generated id."""
        return await db.insert_record(table, data)

    @mcp.tool
    async def update_records(table: str, data: dict[str, Any], where: dict[str, Any]) -> dict:
        """Update records matching a mandatory WHERE filter."""
        return await db.update_records(table, data, where)

    @mcp.tool
    async def delete_records(
        table: str, where: dict[str, Any], soft_delete: bool | None = None
    ) -> dict:
        """Delete records matching a mandatory WHERE filter.

        Tables with a deleted_at column are soft-deleted unless soft_delete is false.
        """
        return await db.delete_records(table, where, soft_delete)

    # ========================================================================
    # Batches
    # ========================================================================

    @mcp.tool
    async def batch_insert(table: str, records: list[dict[str, Any]]) -> dict:
        """Insert 1-1000 records in one transaction: all or nothing."""
        return await batch.batch_insert(table, records)

    @mcp.tool
    async def batch_update(
        table: str, updates: list[dict[str, Any]], return_records: bool = True
    ) -> dict:
        """Apply 1-1000 {where, data} updates in one transaction: all or nothing."""
        return await batch.batch_update(table, updates, return_records)

    @mcp.tool
    async def batch_delete(
        table: str, conditions: list[dict[str, Any]], soft_delete: bool | None = None
    ) -> dict:
        """Delete rows for 1-1000 WHERE filters in one transaction: all or nothing."""
        return await batch.batch_delete(table, conditions, soft_delete)

    # ========================================================================
    # Schema
    # ========================================================================

    @mcp.tool
    async def get_schema(table: str, refresh_cache: bool = False) -> dict:
        """Columns, constraints, indexes and allowed operations of a table."""
        return await schema.get_schema(table, refresh_cache)

    @mcp.tool
    async def list_tables(include_system_tables: bool = False, pattern: str | None = None) -> dict:
        """List whitelisted tables with row estimates, sizes and allowed operations."""
        return await schema.list_tables(include_system_tables, pattern)

    @mcp.tool
    async def get_relationships(
        table: str, depth: int = 1, refresh_cache: bool = False, include_graph: bool = False
    ) -> dict:
        """Foreign-key parents and children of a table, 1-3 hops deep."""
        return await schema.get_relationships(table, depth, refresh_cache, include_graph)

    @mcp.tool
    async def list_table_columns(table: str, include_metadata: bool = False) -> dict:
        """Whitelisted columns of a table, optionally with type metadata."""
        return await schema.list_table_columns(table, include_metadata)

    @mcp.tool
    async def find_relationship_path(from_table: str, to_table: str, max_depth: int = 3) -> dict:
        """Shortest foreign-key path between two tables."""
        return await schema.find_relationship_path(from_table, to_table, max_depth)

    @mcp.tool
    async def get_cache_stats() -> dict:
        """Schema cache hits, misses, evictions and size."""
        return await schema.get_cache_stats()

    @mcp.tool
    async def clear_schema_cache(table: str | None = None) -> dict:
        """Drop cached schema data for one table, or all of it."""
        return await schema.clear_schema_cache(table)

    # ========================================================================
    # Audit
    # ========================================================================

    @mcp.tool
    async def query_audit_logs(
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> dict:
        """Review the history of record and batch operations, newest first.

        Args:
            filters: Any of start_date, end_date (ISO 8601), table,
                operation (CREATE, READ, UPDATE, DELETE, BATCH_INSERT,
                BATCH_UPDATE, BATCH_DELETE), user_id, success
            limit: 1-1000 (default 100)
            offset: Entries to skip
        """
        return await audit.query_audit_logs(filters, limit, offset)

    @mcp.tool
    async def get_audit_summary(days: int = 7, table: str | None = None) -> dict:
        """Operation counts, success rate and timings over the last 1-365 days."""
        return await audit.get_audit_summary(days, table)

    # ========================================================================
    # Backups
    # ========================================================================

    @mcp.tool
    async def backup_full(compress: bool | None = None, includeSchema: bool = True) -> dict:
        """Back up every whitelisted table (schema and data) with a checksummed manifest."""
        return await backup.backup_full(compress, includeSchema)

    @mcp.tool
    async def backup_table(
        table: str,
        dataOnly: bool = False,
        schemaOnly: bool = False,
        compress: bool | None = None,
    ) -> dict:
        """Back up one table."""
        return await backup.backup_table(table, dataOnly, schemaOnly, compress)

    @mcp.tool
    async def backup_incremental(baseBackup: str | None = None, compress: bool | None = None) -> dict:
        """Data-only dump of every whitelisted table, typed incremental (no delta tracking)."""
        return await backup.backup_incremental(baseBackup, compress)

    @mcp.tool
    async def export_json(table: str, where: dict[str, Any] | None = None, limit: int | None = None) -> dict:
        """Export matching rows to a JSON file in the backup directory."""
        return await backup.export_json(table, where, limit)

    @mcp.tool
    async def export_csv(table: str, where: dict[str, Any] | None = None, limit: int | None = None) -> dict:
        """Export matching rows to a CSV file in the backup directory."""
        return await backup.export_csv(table, where, limit)

    @mcp.tool
    async def restore_full(
        backupFile: str,
        dropExisting: bool = False,
        onConflict: str = "error",
        force: bool = False,
    ) -> dict:
        """Restore a backup after validating it.

        Args:
            backupFile: Backup file name in the backup directory
            dropExisting: Drop the backed-up tables first (not for data-only backups)
            onConflict: error (stop and roll back), skip (skip failing statements),
                update (replace table contents)
            force: Restore even if validation fails
        """
        return await backup.restore_full(backupFile, dropExisting, onConflict, force)

    @mcp.tool
    async def restore_table(
        backupFile: str, table: str, onConflict: str = "error", force: bool = False
    ) -> dict:
        """Restore one table from a table backup."""
        return await backup.restore_table(backupFile, table, onConflict, force)

    @mcp.tool
    async def import_json(table: str, jsonFile: str, onConflict: str = "error") -> dict:
        """Import a JSON array of objects in one transaction (onConflict: error, skip, update)."""
        return await backup.import_json(table, jsonFile, onConflict)

    @mcp.tool
    async def import_csv(
        table: str, csvFile: str, hasHeaders: bool = True, onConflict: str = "error"
    ) -> dict:
        """Import CSV rows in one transaction (onConflict: error, skip, update)."""
        return await backup.import_csv(table, csvFile, hasHeaders, onConflict)

    @mcp.tool
    async def list_backups(type: str | None = None, sortBy: str = "date", limit: int | None = None) -> dict:
        """List backups (type: full, table, incremental, export; sortBy: date, size, name)."""
        return await backup.list_backups(type, sortBy, limit)

    @mcp.tool
    async def delete_backup(backupFile: str) -> dict:
        """Permanently delete a backup and its manifest."""
        return await backup.delete_backup(backupFile)

    @mcp.tool
    async def validate_backup(backupFile: str) -> dict:
        """Check a backup's checksum, manifest, compression and SQL content."""
        return await backup.validate_backup(backupFile)

    @mcp.tool
    async def cleanup_backups(retentionDays: int | None = None) -> dict:
        """Delete backups older than the retention period."""
        return await backup.cleanup_backups(retentionDays)

    return mcp


def run(
    services: AdminServices,
    transport: str = "stdio",
    host: str = "127.0.0.1",
    port: int = 8000,
) -> None:
    """Serve until interrupted."""
    mcp = create_server(services)
    if transport == "stdio":
        logger.info("Starting %s (stdio)", SERVER_NAME)
        mcp.run(transport="stdio")
    else:
        logger.info("Starting %s on http://%s:%d/mcp/", SERVER_NAME, host, port)
        mcp.run(transport="http", host=host, port=port)

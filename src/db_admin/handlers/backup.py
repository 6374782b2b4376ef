"""Backup, restore, export and import tools.

Each tool delegates to ``BackupManager`` and serializes its pydantic
result in JSON mode (datetimes as ISO strings).
"""

from typing import Any

from db_admin.factory import AdminServices
from db_admin.handlers.base import ToolResult, tool_handler


class BackupHandlers:
    def __init__(self, services: AdminServices) -> None:
        self.manager = services.backups

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    @tool_handler
    async def backup_full(self, compress: bool | None = None, include_schema: bool = True) -> ToolResult:
        manifest = await self.manager.backup_full(compress=compress, include_schema=include_schema)
        return {"success": True, "backup": manifest.model_dump(mode="json")}

    @tool_handler
    async def backup_table(
        self,
        table: str,
        data_only: bool = False,
        schema_only: bool = False,
        compress: bool | None = None,
    ) -> ToolResult:
        manifest = await self.manager.backup_table(
            table, data_only=data_only, schema_only=schema_only, compress=compress
        )
        return {"success": True, "backup": manifest.model_dump(mode="json")}

    @tool_handler
    async def backup_incremental(
        self, base_backup: str | None = None, compress: bool | None = None
    ) -> ToolResult:
        """Labelled fallback: a full data-only dump typed ``incremental``."""
        manifest = await self.manager.backup_incremental(base_backup=base_backup, compress=compress)
        return {
            "success": True,
            "backup": manifest.model_dump(mode="json"),
            "note": "Delta tracking is not implemented; this is a full data-only dump",
        }

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    @tool_handler
    async def export_json(
        self, table: str, where: dict[str, Any] | None = None, limit: int | None = None
    ) -> ToolResult:
        result = await self.manager.export_json(table, where=where, limit=limit)
        return {"success": True, **result.model_dump(mode="json")}

    @tool_handler
    async def export_csv(
        self, table: str, where: dict[str, Any] | None = None, limit: int | None = None
    ) -> ToolResult:
        result = await self.manager.export_csv(table, where=where, limit=limit)
        return {"success": True, **result.model_dump(mode="json")}

    @tool_handler
    async def import_json(self, table: str, json_file: str, on_conflict: str = "error") -> ToolResult:
        result = await self.manager.import_json(table, json_file, on_conflict=on_conflict)
        return {"success": True, **result.model_dump(mode="json")}

    @tool_handler
    async def import_csv(
        self,
        table: str,
        csv_file: str,
        has_headers: bool = True,
        on_conflict: str = "error",
    ) -> ToolResult:
        result = await self.manager.import_csv(
            table, csv_file, has_headers=has_headers, on_conflict=on_conflict
        )
        return {"success": True, **result.model_dump(mode="json")}

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    @tool_handler
    async def restore_full(
        self,
        backup_file: str,
        drop_existing: bool = False,
        on_conflict: str = "error",
        force: bool = False,
    ) -> ToolResult:
        result = await self.manager.restore_full(
            backup_file, drop_existing=drop_existing, on_conflict=on_conflict, force=force
        )
        return {"success": True, **result.model_dump(mode="json")}

    @tool_handler
    async def restore_table(
        self,
        backup_file: str,
        table: str,
        on_conflict: str = "error",
        force: bool = False,
    ) -> ToolResult:
        result = await self.manager.restore_table(
            backup_file, table, on_conflict=on_conflict, force=force
        )
        return {"success": True, **result.model_dump(mode="json")}

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    @tool_handler
    async def list_backups(
        self,
        backup_type: str | None = None,
        sort_by: str = "date",
        limit: int | None = None,
    ) -> ToolResult:
        backups = self.manager.list_backups(backup_type, sort_by=sort_by, limit=limit)
        return {
            "count": len(backups),
            "total_size": sum(b.size for b in backups),
            "backups": [b.model_dump(mode="json") for b in backups],
        }

    @tool_handler
    async def delete_backup(self, backup_file: str) -> ToolResult:
        return {"success": True, **self.manager.delete_backup(backup_file)}

    @tool_handler
    async def validate_backup(self, backup_file: str) -> ToolResult:
        report = await self.manager.validate_backup(backup_file)
        return report.model_dump(mode="json")

    @tool_handler
    async def cleanup_backups(self, retention_days: int | None = None) -> ToolResult:
        return {"success": True, **self.manager.cleanup_old_backups(retention_days)}

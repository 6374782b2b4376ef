"""Batch tools: thin wrappers over ``BatchEngine``.

A rolled-back batch is a normal result (``committed: false`` with the
failing index), not an error payload; only calls rejected before any
item is looked at (unknown table, access, batch size) return ``error``.
"""

from typing import Any

from db_admin.factory import AdminServices
from db_admin.handlers.base import ToolResult, tool_handler


class BatchHandlers:
    def __init__(self, services: AdminServices) -> None:
        self.engine = services.batch
        self.audit = services.audit

    @tool_handler
    async def batch_insert(
        self,
        table: str,
        records: list[dict[str, Any]],
        return_records: bool = True,
    ) -> ToolResult:
        result = await self.engine.batch_insert(table, records, return_records=return_records)
        return {"table": table, **result.model_dump()}

    @tool_handler
    async def batch_update(
        self,
        table: str,
        updates: list[dict[str, Any]],
        return_records: bool = True,
    ) -> ToolResult:
        result = await self.engine.batch_update(table, updates, return_records=return_records)
        return {"table": table, **result.model_dump()}

    @tool_handler
    async def batch_delete(
        self,
        table: str,
        conditions: list[dict[str, Any]],
        soft_delete: bool | None = None,
    ) -> ToolResult:
        result = await self.engine.batch_delete(table, conditions, soft_delete=soft_delete)
        return {"table": table, **result.model_dump()}

"""Single-statement CRUD tools: query, insert, update, delete.

Every argument is validated against the whitelist before anything
touches the database. Column types are only loaded (through the schema
cache) once the table, columns and operators have passed validation, so
rejected calls never reach SQL.
"""

import logging
from typing import Any

from db_admin.batch import resolve_soft_delete
from db_admin.errors import ValidationError
from db_admin.factory import AdminServices
from db_admin.handlers.base import ToolResult, tool_handler
from db_admin.query import builder
from db_admin.query.models import Condition
from db_admin.schema.types import coerce_row, coerce_where, load_column_types

logger = logging.getLogger(__name__)


def _require_where(where: Any, operation: str) -> None:
    if not where:
        if operation == "update":
            raise ValidationError(
                "WHERE clause is required for update operations to prevent accidental mass updates"
            )
        raise ValidationError(
            "WHERE clause is required for delete operations to prevent accidental mass deletion"
        )


class DatabaseHandlers:
    """``query_records``, ``insert_record``, ``update_records``, ``delete_records``."""

    def __init__(self, services: AdminServices) -> None:
        self.services = services
        self.adapter = services.adapter
        self.validator = services.validator
        self.access = services.access
        self.audit = services.audit
        self.default_limit = services.settings.default_query_limit

    async def _column_types(self, table: str) -> dict[str, str]:
        return await load_column_types(self.services.cache, self.services.introspector, table)

    async def _typed_where(self, table: str, where: Any) -> list[Condition]:
        # Reject unknown columns/operators before loading metadata
        self.validator.validate_where_clause(table, where)
        types = await self._column_types(table)
        return self.validator.validate_where_clause(table, coerce_where(where, types))

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    @tool_handler
    async def query_records(
        self,
        table: str,
        columns: list[str] | None = None,
        where: dict[str, Any] | None = None,
        order_by: list[dict[str, str]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        include_deleted: bool = False,
    ) -> ToolResult:
        """Select rows with optional filtering, sorting and paging.

        Soft-deleted rows are excluded unless ``include_deleted`` is set or
        the WHERE clause filters on ``id`` (a direct lookup).
        """
        entry = self.validator.validate_table(table)
        self.access.validate_table_access(table, "READ")

        selected = self.validator.validate_columns(table, columns) if columns else None
        sort = self.validator.validate_order_by(table, order_by) if order_by else None
        page = self.validator.validate_pagination(
            self.default_limit if limit is None else limit, offset
        )
        conditions = await self._typed_where(table, where) if where else []
        exclude_deleted = entry.soft_delete and not include_deleted and "id" not in (where or {})

        query = builder.build_select(entry, selected, conditions, sort, page, exclude_deleted)
        count = builder.build_count(entry, conditions, exclude_deleted)
        records = await self.adapter.fetch(query.sql, query.params)
        total = await self.adapter.fetch_value(count.sql, count.params)

        return {
            "table": table,
            "count": len(records),
            "total_count": int(total or 0),
            "limit": page.limit,
            "offset": page.offset,
            "records": records,
        }

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    @tool_handler
    async def insert_record(self, table: str, data: dict[str, Any]) -> ToolResult:
        """Insert one row and return it as stored (generated id included)."""
        entry = self.validator.validate_table(table)
        self.access.validate_table_access(table, "INSERT")
        self.validator.validate_not_read_only(table, "INSERT")
        data = self.validator.validate_data(table, data)

        query = builder.build_insert(entry, coerce_row(data, await self._column_types(table)))
        async with self.adapter.transaction() as tx:
            rows = await tx.fetch(query.sql, query.params)

        logger.info("Inserted 1 row into %s", table)
        return {"table": table, "record": rows[0] if rows else None}

    @tool_handler
    async def update_records(
        self, table: str, data: dict[str, Any], where: dict[str, Any] | None = None
    ) -> ToolResult:
        """Update rows matching ``where`` (mandatory) and return them."""
        entry = self.validator.validate_table(table)
        _require_where(where, "update")
        self.access.validate_table_access(table, "UPDATE")
        self.validator.validate_not_read_only(table, "UPDATE")
        data = self.validator.validate_data(table, data)
        conditions = await self._typed_where(table, where)

        query = builder.build_update(entry, coerce_row(data, await self._column_types(table)), conditions)
        async with self.adapter.transaction() as tx:
            rows = await tx.fetch(query.sql, query.params)

        logger.info("Updated %d row(s) in %s", len(rows), table)
        return {"table": table, "updated_count": len(rows), "records": rows}

    @tool_handler
    async def delete_records(
        self,
        table: str,
        where: dict[str, Any] | None = None,
        soft_delete: bool | None = None,
    ) -> ToolResult:
        """Delete rows matching ``where`` (mandatory).

        ``soft_delete`` defaults to the table's capability: soft-delete
        tables get ``deleted_at`` set, others lose the rows permanently.
        ``soft_delete=False`` always deletes permanently.
        """
        entry = self.validator.validate_table(table)
        _require_where(where, "delete")
        self.access.validate_table_access(table, "DELETE")
        self.validator.validate_not_read_only(table, "DELETE")
        use_soft = resolve_soft_delete(entry, soft_delete)
        conditions = await self._typed_where(table, where)

        query = builder.build_delete(entry, conditions, soft_delete=use_soft)
        async with self.adapter.transaction() as tx:
            rows = await tx.fetch(query.sql, query.params)

        logger.info(
            "%s %d row(s) from %s",
            "Soft-deleted" if use_soft else "Deleted", len(rows), table,
        )
        return {
            "table": table,
            "deleted_count": len(rows),
            "soft_delete": use_soft,
            "ids": [row["id"] for row in rows if row.get("id") is not None],
        }

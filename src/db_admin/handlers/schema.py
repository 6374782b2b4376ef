"""Schema tools: table schema, table listing, columns, relationships, cache.

All introspection goes through the shared ``SchemaCache``; responses say
whether they were served from it. Only whitelisted tables and columns are
ever reported.
"""

import logging

from db_admin.errors import NotFoundError, ValidationError
from db_admin.factory import AdminServices
from db_admin.handlers.base import ToolResult, tool_handler
from db_admin.schema.cache import SchemaCache
from db_admin.schema.relationships import MAX_DEPTH
from db_admin.schema.types import load_columns
from db_admin.whitelist import WhitelistEntry

logger = logging.getLogger(__name__)


class SchemaHandlers:
    def __init__(self, services: AdminServices) -> None:
        self.registry = services.registry
        self.validator = services.validator
        self.access = services.access
        self.introspector = services.introspector
        self.cache = services.cache
        self.relationships = services.relationships

    def _readable(self, table: str) -> WhitelistEntry:
        entry = self.validator.validate_table(table)
        self.access.validate_table_access(table, "SCHEMA")
        return entry

    @tool_handler
    async def get_schema(self, table: str, refresh_cache: bool = False) -> ToolResult:
        """Columns, constraints and indexes of a table plus its whitelist/access view."""
        entry = self._readable(table)

        key = SchemaCache.generate_key(table, "schema")
        schema, cached = await self.cache.get_or_load(
            key, lambda: self.introspector.get_table_schema(table), refresh=refresh_cache
        )
        if not schema.columns:
            raise NotFoundError(f"Table '{table}' not found in database", data={"table": table})

        return {
            "table": table,
            "cached": cached,
            "columns": [
                column.model_dump()
                for column in schema.columns.values()
                if entry.has_column(column.name)
            ],
            "primary_key": schema.primary_key,
            "constraints": [c.model_dump() for c in schema.constraints.values()],
            "indexes": [i.model_dump() for i in schema.indexes.values()],
            "whitelist": {
                "columns": sorted(entry.columns),
                "read_only": entry.read_only,
                "soft_delete": entry.soft_delete,
                "deletable": entry.deletable,
            },
            "access": self.access.get_allowed_operations(table).model_dump(),
        }

    @tool_handler
    async def list_tables(
        self, include_system_tables: bool = False, pattern: str | None = None
    ) -> ToolResult:
        """Whitelisted tables present in the database, with allowed operations.

        Whitelisted tables that do not exist are listed under
        ``missing_tables`` when no ``pattern`` is given.
        """
        if pattern is not None and not isinstance(pattern, str):
            raise ValidationError("pattern must be a string")

        key = SchemaCache.generate_key(
            "all", "tables", {"system": include_system_tables, "pattern": pattern}
        )
        tables, cached = await self.cache.get_or_load(
            key, lambda: self.introspector.list_tables(include_system_tables, pattern)
        )

        listed = [
            {
                **info.model_dump(),
                "allowed_operations": self.access.get_allowed_operations(info.name).model_dump(),
            }
            for info in tables
            if info.name in self.registry
        ]
        result: ToolResult = {"count": len(listed), "cached": cached, "tables": listed}
        if pattern is None:
            present = {t["name"] for t in listed}
            result["missing_tables"] = [t for t in self.registry.tables if t not in present]
        return result

    @tool_handler
    async def list_table_columns(self, table: str, include_metadata: bool = False) -> ToolResult:
        entry = self._readable(table)
        columns = [
            c for c in await load_columns(self.cache, self.introspector, table)
            if entry.has_column(c.name)
        ]
        if not columns:
            raise NotFoundError(f"Table '{table}' not found in database", data={"table": table})

        if include_metadata:
            listed = [
                {
                    "name": c.name,
                    "data_type": c.data_type,
                    "is_nullable": c.is_nullable,
                    "default": c.default,
                    "max_length": c.max_length,
                }
                for c in columns
            ]
        else:
            listed = [c.name for c in columns]
        return {"table": table, "count": len(listed), "columns": listed}

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    @tool_handler
    async def get_relationships(
        self,
        table: str,
        depth: int = 1,
        refresh_cache: bool = False,
        include_graph: bool = False,
    ) -> ToolResult:
        """Parent and child foreign keys of ``table`` up to ``depth`` hops (1-3)."""
        self._readable(table)
        relationships, cached = await self.relationships.get_relationships(
            table, depth, refresh=refresh_cache
        )
        result: ToolResult = {
            **relationships.model_dump(),
            "cached": cached,
            "parent_count": len(relationships.parents),
            "child_count": len(relationships.children),
        }
        if include_graph:
            result["graph"] = await self.relationships.get_relationship_graph(table, depth)
        return result

    @tool_handler
    async def find_relationship_path(
        self, from_table: str, to_table: str, max_depth: int = MAX_DEPTH
    ) -> ToolResult:
        """Shortest foreign-key path between two whitelisted tables."""
        self._readable(from_table)
        self._readable(to_table)
        path = await self.relationships.find_path(from_table, to_table, max_depth)
        return {
            "from_table": from_table,
            "to_table": to_table,
            "found": path is not None,
            "hops": len(path) if path is not None else None,
            "path": [edge.model_dump() for edge in path or []],
        }

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    @tool_handler
    async def get_cache_stats(self) -> ToolResult:
        return self.cache.get_stats()

    @tool_handler
    async def clear_schema_cache(self, table: str | None = None) -> ToolResult:
        """Drop cached schema data for one table, or everything."""
        if table is not None:
            self.validator.validate_table(table)
            cleared = self.cache.invalidate_table(table)
        else:
            cleared = self.cache.size
            self.cache.clear()
        logger.info("Schema cache cleared (%s): %d entries", table or "all", cleared)
        return {"cleared": cleared, "table": table}

"""PostgreSQL schema introspection via information_schema and pg_catalog.

This module queries the live database to extract schema information:
- Tables with estimated row counts and on-disk size
- Columns, data types, nullability, defaults, length/precision
- Constraints (primary key, foreign key, unique, check)
- Indexes (name, columns, uniqueness, type)
- Foreign keys in both directions, for the relationship mapper

Runs over the shared ``DatabaseClient`` pool. Table names reaching these
queries are always bound parameters, never interpolated.
"""

from collections import defaultdict

from db_admin.adapters.base import DatabaseClient
from db_admin.schema.models import (
    ColumnSchema,
    ConstraintSchema,
    IndexSchema,
    TableInfo,
    TableSchema,
)

SYSTEM_SCHEMAS = ("pg_catalog", "information_schema")

_FOREIGN_KEY_SELECT = """
    SELECT
        tc.constraint_name,
        kcu.table_name AS table_name,
        kcu.column_name,
        ccu.table_name AS references_table,
        ccu.column_name AS references_column,
        rc.delete_rule
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
        ON tc.constraint_name = kcu.constraint_name
        AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage ccu
        ON ccu.constraint_name = tc.constraint_name
        AND ccu.table_schema = tc.table_schema
    LEFT JOIN information_schema.referential_constraints rc
        ON rc.constraint_name = tc.constraint_name
        AND rc.constraint_schema = tc.table_schema
    WHERE tc.constraint_type = 'FOREIGN KEY'
      AND tc.table_schema = $1
"""


class SchemaIntrospector:
    """Introspects PostgreSQL database schema.

    Uses information_schema and pg_catalog for schema extraction.
    Works with any PostgreSQL database (RDS, Supabase, local).

    Usage:
        introspector = SchemaIntrospector(adapter)

        # Full schema of one table (columns, constraints, indexes)
        schema = await introspector.get_table_schema("books")

        # Or just column names for whitelist comparison
        columns = await introspector.get_column_names()
    """

    # Tables to exclude from listings (extension/bookkeeping tables)
    EXCLUDED_TABLES = {
        "schema_migrations",
        "pg_stat_statements",
        "spatial_ref_sys",
    }

    def __init__(self, adapter: DatabaseClient, schema_name: str = "public") -> None:
        self._adapter = adapter
        self.schema_name = schema_name

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    async def list_tables(
        self,
        include_system_tables: bool = False,
        pattern: str | None = None,
    ) -> list[TableInfo]:
        """List tables with row estimates and total relation size.

        Args:
            include_system_tables: Also list ``pg_catalog`` and
                ``information_schema`` tables.
            pattern: Optional SQL ``LIKE`` pattern on the table name.
        """
        params: list = [self.schema_name]
        schema_filter = "t.table_schema = $1"
        if include_system_tables:
            schema_filter = f"(t.table_schema = $1 OR t.table_schema IN {SYSTEM_SCHEMAS!r})"

        pattern_filter = ""
        if pattern:
            params.append(pattern)
            pattern_filter = "AND t.table_name LIKE $2"

        query = f"""
            SELECT
                t.table_name AS name,
                t.table_schema AS schema_name,
                t.table_type,
                CAST(c.reltuples AS bigint) AS estimated_rows,
                pg_total_relation_size(c.oid) AS size_bytes,
                pg_size_pretty(pg_total_relation_size(c.oid)) AS size
            FROM information_schema.tables t
            LEFT JOIN pg_namespace n ON n.nspname = t.table_schema
            LEFT JOIN pg_class c ON c.relname = t.table_name AND c.relnamespace = n.oid
            WHERE {schema_filter}
              {pattern_filter}
            ORDER BY t.table_schema, t.table_name
        """
        rows = await self._adapter.fetch(query, params)
        return [
            TableInfo(**row)
            for row in rows
            if row["name"] not in self.EXCLUDED_TABLES
        ]

    async def get_column_names(self) -> dict[str, set[str]]:
        """Get column names for all tables (simplified for comparator).

        Returns:
            Dict mapping table name to set of column names
        """
        query = """
            SELECT table_name, column_name
            FROM information_schema.columns
            WHERE table_schema = $1
        """
        result: dict[str, set[str]] = defaultdict(set)
        for row in await self._adapter.fetch(query, [self.schema_name]):
            if row["table_name"] in self.EXCLUDED_TABLES:
                continue
            result[row["table_name"]].add(row["column_name"])
        return dict(result)

    # ------------------------------------------------------------------
    # Single table
    # ------------------------------------------------------------------

    async def get_table_schema(self, table_name: str) -> TableSchema:
        """Columns, constraints and indexes of one table."""
        return TableSchema(
            name=table_name,
            columns={c.name: c for c in await self.get_columns(table_name)},
            constraints=await self._get_constraints(table_name),
            indexes=await self._get_indexes(table_name),
        )

    async def get_columns(self, table_name: str) -> list[ColumnSchema]:
        """Get columns for a table in ordinal order."""
        query = """
            SELECT
                column_name,
                data_type,
                udt_name,
                is_nullable,
                column_default,
                character_maximum_length,
                numeric_precision,
                numeric_scale,
                ordinal_position
            FROM information_schema.columns
            WHERE table_schema = $1
              AND table_name = $2
            ORDER BY ordinal_position
        """
        rows = await self._adapter.fetch(query, [self.schema_name, table_name])
        return [
            ColumnSchema(
                name=row["column_name"],
                data_type=self._normalize_data_type(row["data_type"]),
                udt_name=row.get("udt_name"),
                is_nullable=(row["is_nullable"] == "YES"),
                default=row.get("column_default"),
                max_length=row.get("character_maximum_length"),
                numeric_precision=row.get("numeric_precision"),
                numeric_scale=row.get("numeric_scale"),
                position=row.get("ordinal_position"),
            )
            for row in rows
        ]

    async def get_column_types(self, table_name: str) -> dict[str, str]:
        """Map column name to normalized data type."""
        return {c.name: c.data_type for c in await self.get_columns(table_name)}

    def _normalize_data_type(self, data_type: str) -> str:
        """Normalize PostgreSQL data type names.

        Maps verbose information_schema types to standard names.
        """
        type_map = {
            "character varying": "varchar",
            "character": "char",
            "timestamp with time zone": "timestamptz",
            "timestamp without time zone": "timestamp",
            "time with time zone": "timetz",
            "time without time zone": "time",
            "integer": "int",
            "boolean": "bool",
            "double precision": "float8",
        }
        return type_map.get(data_type.lower(), data_type.lower())

    async def _get_constraints(self, table_name: str) -> dict[str, ConstraintSchema]:
        """Get constraints for a table."""
        query = """
            SELECT
                tc.constraint_name,
                tc.constraint_type,
                kcu.column_name,
                ccu.table_name AS references_table,
                ccu.column_name AS references_column,
                rc.delete_rule,
                rc.update_rule
            FROM information_schema.table_constraints tc
            LEFT JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            LEFT JOIN information_schema.constraint_column_usage ccu
                ON tc.constraint_name = ccu.constraint_name
                AND tc.constraint_type = 'FOREIGN KEY'
            LEFT JOIN information_schema.referential_constraints rc
                ON tc.constraint_name = rc.constraint_name
            WHERE tc.table_schema = $1
              AND tc.table_name = $2
              AND tc.constraint_type IN ('PRIMARY KEY', 'FOREIGN KEY', 'UNIQUE', 'CHECK')
            ORDER BY tc.constraint_name, kcu.ordinal_position
        """
        rows = await self._adapter.fetch(query, [self.schema_name, table_name])

        constraints: dict[str, ConstraintSchema] = {}
        for row in rows:
            name = row["constraint_name"]
            ctype = row["constraint_type"]
            if name not in constraints:
                constraints[name] = ConstraintSchema(
                    name=name,
                    constraint_type=ctype,
                    references_table=row["references_table"] if ctype == "FOREIGN KEY" else None,
                    references_columns=[] if ctype == "FOREIGN KEY" else None,
                    on_delete=row.get("delete_rule"),
                    on_update=row.get("update_rule"),
                )
            constraint = constraints[name]
            column = row.get("column_name")
            if column and column not in constraint.columns:
                constraint.columns.append(column)
            ref_column = row.get("references_column")
            if (
                ref_column
                and constraint.references_columns is not None
                and ref_column not in constraint.references_columns
            ):
                constraint.references_columns.append(ref_column)

        return constraints

    async def _get_indexes(self, table_name: str) -> dict[str, IndexSchema]:
        """Get indexes for a table."""
        query = """
            SELECT
                i.relname AS index_name,
                array_agg(a.attname ORDER BY x.ordinality) AS columns,
                ix.indisunique AS is_unique,
                ix.indisprimary AS is_primary,
                am.amname AS index_type,
                pg_get_indexdef(ix.indexrelid) AS definition
            FROM pg_index ix
            JOIN pg_class t ON t.oid = ix.indrelid
            JOIN pg_class i ON i.oid = ix.indexrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            JOIN pg_am am ON am.oid = i.relam
            JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS x(attnum, ordinality) ON TRUE
            JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = x.attnum
            WHERE n.nspname = $1
              AND t.relname = $2
            GROUP BY i.relname, ix.indisunique, ix.indisprimary, am.amname, ix.indexrelid
            ORDER BY i.relname
        """
        rows = await self._adapter.fetch(query, [self.schema_name, table_name])
        return {
            row["index_name"]: IndexSchema(
                name=row["index_name"],
                columns=list(row["columns"] or []),
                is_unique=row["is_unique"],
                is_primary=row["is_primary"],
                index_type=row["index_type"],
                definition=row.get("definition") or "",
            )
            for row in rows
        }

    # ------------------------------------------------------------------
    # Foreign keys
    # ------------------------------------------------------------------

    async def get_parent_keys(self, table_name: str) -> list[dict]:
        """Foreign keys declared on ``table_name`` (tables it references)."""
        query = _FOREIGN_KEY_SELECT + " AND tc.table_name = $2 ORDER BY tc.constraint_name"
        return await self._adapter.fetch(query, [self.schema_name, table_name])

    async def get_child_keys(self, table_name: str) -> list[dict]:
        """Foreign keys on other tables that reference ``table_name``."""
        query = _FOREIGN_KEY_SELECT + " AND ccu.table_name = $2 ORDER BY kcu.table_name, tc.constraint_name"
        return await self._adapter.fetch(query, [self.schema_name, table_name])

"""All-or-nothing batch mutations.

``BatchEngine`` runs 1..1000 inserts, updates or deletes against one
table inside a single transaction. Every item is validated before the
transaction opens; the first failing statement rolls back everything.
A result with ``committed=False`` always has ``affected_count == 0``.

Usage:
    engine = BatchEngine(adapter, validator, access)
    result = await engine.batch_insert("characters", [{"name": "Ada"}, {"name": "Lin"}])
    if not result.committed:
        print(result.errors)
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from db_admin.adapters.base import DatabaseClient
from db_admin.errors import AdminError, ValidationError, classify_db_error
from db_admin.query import builder
from db_admin.query.models import Query
from db_admin.schema.types import coerce_row, coerce_where
from db_admin.security.access import AccessControl
from db_admin.security.validator import SecurityValidator
from db_admin.whitelist import WhitelistEntry

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 1000


class BatchResult(BaseModel):
    """Outcome of one batch.

    ``ids`` holds the ``id`` of every affected row that has one, in
    statement order; ``records`` holds the returned rows when requested.
    """

    committed: bool
    affected_count: int = 0
    ids: list[Any] = Field(default_factory=list)
    records: list[dict] | None = None
    errors: list[str] = Field(default_factory=list)
    failed_index: int | None = None
    error_code: str | None = None
    retryable: bool = False


class _ItemFailure(Exception):
    def __init__(self, index: int, cause: BaseException) -> None:
        super().__init__(str(cause))
        self.index = index
        self.cause = cause


def validate_batch_size(items: Any, label: str = "records", max_size: int = MAX_BATCH_SIZE) -> None:
    """Raise ``ValidationError`` unless ``items`` is a list of 1..max_size elements."""
    if not isinstance(items, list) or not items:
        raise ValidationError(f"{label} must be a non-empty array")
    if len(items) > max_size:
        raise ValidationError(
            f"Batch size {len(items)} exceeds maximum of {max_size} {label}",
            data={"size": len(items), "max": max_size},
        )


ColumnTypesLoader = Callable[[str], Awaitable[Mapping[str, str]]]


class BatchEngine:
    """Executes validated batches inside one transaction per call.

    Args:
        adapter: Shared database client
        validator: Whitelist gate
        access: Operation-level access control
        column_types: Optional ``table -> {column: data_type}`` loader;
            when given, string values are coerced to the column types
            while items are validated
        max_batch_size: Upper bound on items per call
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        validator: SecurityValidator,
        access: AccessControl,
        column_types: ColumnTypesLoader | None = None,
        max_batch_size: int = MAX_BATCH_SIZE,
    ) -> None:
        self._adapter = adapter
        self._validator = validator
        self._access = access
        self._column_types = column_types
        self.max_batch_size = max_batch_size

    def _check_table(self, table: str, operation: str) -> WhitelistEntry:
        entry = self._validator.validate_table(table)
        self._access.validate_table_access(table, operation)
        self._validator.validate_not_read_only(table, operation)
        return entry

    async def _types(self, table: str) -> Mapping[str, str]:
        if self._column_types is None:
            return {}
        return await self._column_types(table)

    async def batch_insert(
        self,
        table: str,
        records: list[dict[str, Any]],
        return_records: bool = True,
    ) -> BatchResult:
        """Insert every record or none of them."""
        entry = self._check_table(table, "BATCH_INSERT")
        validate_batch_size(records, "records", self.max_batch_size)
        types = await self._types(table)

        queries: list[Query] = []
        failures: list[tuple[int, str]] = []
        for index, record in enumerate(records):
            try:
                data = coerce_row(self._validator.validate_data(table, record), types)
                queries.append(builder.build_insert(entry, data))
            except ValidationError as e:
                failures.append((index, f"Invalid data at record index {index}: {e.message}"))

        if failures:
            return self._rejected(table, "insert", failures)
        return await self._run(table, queries, return_records)

    async def batch_update(
        self,
        table: str,
        updates: list[dict[str, Any]],
        return_records: bool = True,
    ) -> BatchResult:
        """Apply ``{where, data}`` updates in order, all or nothing."""
        entry = self._check_table(table, "BATCH_UPDATE")
        validate_batch_size(updates, "updates", self.max_batch_size)
        types = await self._types(table)

        queries: list[Query] = []
        failures: list[tuple[int, str]] = []
        for index, update in enumerate(updates):
            try:
                if not isinstance(update, dict):
                    raise ValidationError("Each update must be an object with 'where' and 'data'")
                if not update.get("where"):
                    raise ValidationError(
                        "WHERE clause is required for update operations to prevent accidental mass updates"
                    )
                data = coerce_row(self._validator.validate_data(table, update.get("data")), types)
                conditions = self._validator.validate_where_clause(
                    table, coerce_where(update["where"], types)
                )
                queries.append(builder.build_update(entry, data, conditions))
            except ValidationError as e:
                failures.append((index, f"Invalid data at record index {index}: {e.message}"))

        if failures:
            return self._rejected(table, "update", failures)
        return await self._run(table, queries, return_records)

    async def batch_delete(
        self,
        table: str,
        conditions: list[dict[str, Any]],
        soft_delete: bool | None = None,
        return_records: bool = False,
    ) -> BatchResult:
        """Delete rows matching each WHERE object in order, all or nothing.

        ``soft_delete=None`` soft-deletes when the table supports it.
        """
        entry = self._check_table(table, "BATCH_DELETE")
        validate_batch_size(conditions, "conditions", self.max_batch_size)
        use_soft = resolve_soft_delete(entry, soft_delete)
        types = await self._types(table)

        queries: list[Query] = []
        failures: list[tuple[int, str]] = []
        for index, where in enumerate(conditions):
            try:
                parsed = self._validator.validate_where_clause(table, coerce_where(where, types))
                queries.append(builder.build_delete(entry, parsed, soft_delete=use_soft))
            except ValidationError as e:
                failures.append((index, f"Invalid condition at index {index}: {e.message}"))

        if failures:
            return self._rejected(table, "delete", failures)
        return await self._run(table, queries, return_records)

    def _rejected(
        self, table: str, operation: str, failures: list[tuple[int, str]]
    ) -> BatchResult:
        logger.warning(
            "Batch %s on %s rejected before execution: %d invalid item(s)",
            operation, table, len(failures),
        )
        return BatchResult(
            committed=False,
            errors=[message for _, message in failures],
            failed_index=failures[0][0],
            error_code=ValidationError.code,
        )

    async def _run(self, table: str, queries: list[Query], return_records: bool) -> BatchResult:
        affected = 0
        ids: list[Any] = []
        records: list[dict] = []

        try:
            async with self._adapter.transaction() as tx:
                for index, query in enumerate(queries):
                    try:
                        rows = await tx.fetch(query.sql, query.params)
                    except SQLAlchemyError as e:
                        raise _ItemFailure(index, e) from e
                    affected += len(rows)
                    ids.extend(row["id"] for row in rows if row.get("id") is not None)
                    records.extend(rows)
        except _ItemFailure as failure:
            error = classify_db_error(failure.cause)
            return self._rolled_back(table, error, failure.index)
        except SQLAlchemyError as e:
            # Failure at COMMIT (e.g. deferred constraint)
            return self._rolled_back(table, classify_db_error(e), None)

        logger.info("Batch on %s committed: %d statement(s), %d row(s)", table, len(queries), affected)
        return BatchResult(
            committed=True,
            affected_count=affected,
            ids=ids,
            records=records if return_records else None,
        )

    def _rolled_back(self, table: str, error: AdminError, index: int | None) -> BatchResult:
        where = f"record index {index}" if index is not None else "commit"
        logger.warning("Batch on %s rolled back at %s: %s", table, where, error.message)
        return BatchResult(
            committed=False,
            errors=[f"Statement failed at {where}: {error.message}"],
            failed_index=index,
            error_code=error.code,
            retryable=bool(getattr(error, "retryable", False)),
        )


def resolve_soft_delete(entry: WhitelistEntry, soft_delete: bool | None) -> bool:
    """Decide between soft and hard delete for ``entry``.

    Raises:
        ValidationError: If soft delete is explicitly requested on a table
            without a ``deleted_at`` column.
    """
    if soft_delete is None:
        return entry.soft_delete
    if soft_delete and not entry.soft_delete:
        raise ValidationError(
            f"Table '{entry.table}' does not support soft delete; pass soft_delete=false "
            "to delete permanently",
            data={"table": entry.table},
        )
    return soft_delete

"""Audit trail for record and batch operations.

Every call of a record or batch tool produces one ``AuditEntry``. The
entry is mirrored to this module's logger and inserted into the
``audit_logs`` table through the shared adapter. A failed insert is
logged as a warning and never changes the result of the audited call.

Table layout (see ``audit_logs`` in the built-in whitelist)::

    id, timestamp, operation, table_name, record_id, user_id,
    client_info JSONB, changes JSONB, success, error_message,
    execution_time_ms, query_hash

``timestamp`` is stored as naive UTC.

Usage:
    from db_admin.audit import AuditFilters, AuditLogger

    audit = AuditLogger(adapter)
    rows = await audit.query(AuditFilters(table="books", success=False), limit=50)
    summary = await audit.summary(days=7)
"""

import hashlib
import json
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from db_admin.adapters.base import DatabaseClient
from db_admin.errors import ValidationError

logger = logging.getLogger(__name__)

AUDIT_TABLE = "audit_logs"
MAX_TEXT_LENGTH = 255
MAX_SUMMARY_DAYS = 365
TOP_TABLES = 20


class AuditOperation(str, Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    BATCH_INSERT = "BATCH_INSERT"
    BATCH_UPDATE = "BATCH_UPDATE"
    BATCH_DELETE = "BATCH_DELETE"


# Tool name -> audited operation
TOOL_OPERATIONS: dict[str, AuditOperation] = {
    "query_records": AuditOperation.READ,
    "insert_record": AuditOperation.CREATE,
    "update_records": AuditOperation.UPDATE,
    "delete_records": AuditOperation.DELETE,
    "batch_insert": AuditOperation.BATCH_INSERT,
    "batch_update": AuditOperation.BATCH_UPDATE,
    "batch_delete": AuditOperation.BATCH_DELETE,
}


def _utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _clip(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)[:MAX_TEXT_LENGTH]


def _to_json(value: dict[str, Any] | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, sort_keys=True, default=str)


def hash_call(tool: str, arguments: dict[str, Any]) -> str:
    """SHA-256 of a tool call, identical for identical calls."""
    payload = json.dumps({"tool": tool, "arguments": arguments}, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode()).hexdigest()


class AuditEntry(BaseModel):
    """One audited operation."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    operation: AuditOperation
    table_name: str
    record_id: str | None = None
    user_id: str | None = None
    client_info: dict[str, Any] | None = None
    changes: dict[str, Any] | None = None
    success: bool
    error_message: str | None = None
    execution_time_ms: int | None = None
    query_hash: str | None = None


class AuditFilters(BaseModel):
    """Filters accepted by ``query_audit_logs``; all optional, combined with AND."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    start_date: datetime | None = None
    end_date: datetime | None = None
    table: str | None = None
    operation: AuditOperation | None = None
    user_id: str | None = None
    success: bool | None = None

    @classmethod
    def parse(cls, filters: Any) -> "AuditFilters":
        """Build from a tool-call object.

        Raises:
            ValidationError: If ``filters`` has unknown keys or bad values
        """
        if filters is None:
            return cls()
        if not isinstance(filters, dict):
            raise ValidationError("filters must be an object")
        try:
            return cls.model_validate(filters)
        except PydanticValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'filters'}: {err['msg']}"
                for err in e.errors()
            )
            raise ValidationError(f"Invalid audit filters: {problems}") from e

    def where(self, start_index: int = 1) -> tuple[str, list[Any]]:
        """``WHERE`` clause (or ``""``) with ``$n`` placeholders from ``start_index``."""
        conditions: list[str] = []
        params: list[Any] = []

        def add(sql: str, value: Any) -> None:
            params.append(value)
            conditions.append(sql.format(f"${start_index + len(params) - 1}"))

        if self.start_date is not None:
            add("timestamp >= {}", _utc_naive(self.start_date))
        if self.end_date is not None:
            add("timestamp <= {}", _utc_naive(self.end_date))
        if self.table is not None:
            add("table_name = {}", self.table)
        if self.operation is not None:
            add("operation = {}", self.operation.value)
        if self.user_id is not None:
            add("user_id = {}", self.user_id)
        if self.success is not None:
            add("success = {}", self.success)

        if not conditions:
            return "", params
        return " WHERE " + " AND ".join(conditions), params


_INSERT = (
    f"INSERT INTO {AUDIT_TABLE} (timestamp, operation, table_name, record_id, user_id, "
    "client_info, changes, success, error_message, execution_time_ms, query_hash) "
    "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)"
)

_LOG_COLUMNS = (
    "id, timestamp, operation, table_name, record_id, user_id, success, "
    "error_message, execution_time_ms, changes"
)


class AuditLogger:
    """Writes and reads the audit trail.

    Args:
        client: Shared database client.
        enabled: When false, entries are only logged, never inserted.
        user_id: Operator identity stamped on every entry.
    """

    def __init__(
        self,
        client: DatabaseClient,
        enabled: bool = True,
        user_id: str | None = None,
    ) -> None:
        self._client = client
        self.enabled = enabled
        self.user_id = user_id

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    async def record(self, entry: AuditEntry) -> None:
        """Log ``entry`` and insert it unless it concerns the audit table itself."""
        if entry.success:
            logger.info(
                "%s %s ok (record=%s, %s ms)",
                entry.operation.value, entry.table_name, entry.record_id, entry.execution_time_ms,
            )
        else:
            logger.warning(
                "%s %s failed: %s (%s ms)",
                entry.operation.value, entry.table_name, entry.error_message, entry.execution_time_ms,
            )

        if not self.enabled or entry.table_name == AUDIT_TABLE:
            return

        params = [
            _utc_naive(entry.timestamp),
            entry.operation.value,
            entry.table_name,
            entry.record_id,
            entry.user_id,
            _to_json(entry.client_info),
            _to_json(entry.changes),
            entry.success,
            entry.error_message,
            entry.execution_time_ms,
            entry.query_hash,
        ]
        try:
            await self._client.execute(_INSERT, params)
        except SQLAlchemyError as e:
            logger.warning(
                "Could not write audit entry for %s on %s: %s",
                entry.operation.value, entry.table_name, e,
            )

    async def record_call(
        self,
        tool: str,
        arguments: dict[str, Any],
        result: dict[str, Any],
        elapsed_ms: int,
    ) -> None:
        """Audit one tool call from its arguments and returned payload."""
        operation = TOOL_OPERATIONS[tool]
        arguments = {k: v for k, v in arguments.items() if k != "self"}

        error = result.get("error")
        if error is not None:
            success, message = False, error.get("message")
        elif result.get("committed") is False:
            success, message = False, "; ".join(result.get("errors") or []) or "Batch rolled back"
        else:
            success, message = True, None

        changes = None
        if operation is AuditOperation.UPDATE:
            changes = {"data": arguments.get("data"), "where": arguments.get("where")}

        await self.record(
            AuditEntry(
                operation=operation,
                table_name=_clip(arguments.get("table")) or "",
                record_id=None if operation is AuditOperation.READ else _record_id(result),
                user_id=self.user_id,
                client_info={"tool": tool},
                changes=changes,
                success=success,
                error_message=message,
                execution_time_ms=elapsed_ms,
                query_hash=hash_call(tool, arguments),
            )
        )

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def query(self, filters: AuditFilters, limit: int = 100, offset: int = 0) -> list[dict]:
        """Entries matching ``filters``, newest first."""
        where, params = filters.where()
        n = len(params)
        sql = (
            f"SELECT {_LOG_COLUMNS} FROM {AUDIT_TABLE}{where} "
            f"ORDER BY timestamp DESC LIMIT ${n + 1} OFFSET ${n + 2}"
        )
        return await self._client.fetch(sql, [*params, limit, offset])

    async def summary(
        self,
        days: int = 7,
        table: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Totals, success rate and timings over the last ``days`` days.

        Raises:
            ValidationError: If ``days`` is not within 1..365
        """
        if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= MAX_SUMMARY_DAYS:
            raise ValidationError(
                f"days must be between 1 and {MAX_SUMMARY_DAYS}", data={"days": days}
            )
        since = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        where, params = AuditFilters(start_date=since, table=table).where()

        totals = await self._client.fetch_one(
            "SELECT COUNT(*) AS total_operations, "
            "COUNT(*) FILTER (WHERE success) AS successful_operations, "
            "COUNT(*) FILTER (WHERE NOT success) AS failed_operations, "
            "COUNT(DISTINCT table_name) AS tables_accessed, "
            "COUNT(DISTINCT user_id) AS unique_users, "
            "AVG(execution_time_ms) AS avg_execution_time_ms, "
            "MAX(execution_time_ms) AS max_execution_time_ms, "
            "MIN(timestamp) AS earliest, MAX(timestamp) AS latest "
            f"FROM {AUDIT_TABLE}{where}",
            params,
        ) or {}
        by_operation = await self._client.fetch(
            "SELECT operation, COUNT(*) AS count, "
            "COUNT(*) FILTER (WHERE success) AS successful, "
            "COUNT(*) FILTER (WHERE NOT success) AS failed "
            f"FROM {AUDIT_TABLE}{where} GROUP BY operation ORDER BY count DESC",
            params,
        )
        by_table = await self._client.fetch(
            "SELECT table_name, COUNT(*) AS count, "
            "COUNT(*) FILTER (WHERE success) AS successful, "
            "COUNT(*) FILTER (WHERE NOT success) AS failed "
            f"FROM {AUDIT_TABLE}{where} GROUP BY table_name ORDER BY count DESC "
            f"LIMIT {TOP_TABLES}",
            params,
        )

        total = int(totals.get("total_operations") or 0)
        successful = int(totals.get("successful_operations") or 0)
        average = totals.get("avg_execution_time_ms")
        return {
            "days": days,
            "since": since.isoformat(),
            "table": table,
            "summary": {
                "total_operations": total,
                "successful_operations": successful,
                "failed_operations": int(totals.get("failed_operations") or 0),
                "success_rate": round(successful / total * 100, 2) if total else 0.0,
                "tables_accessed": int(totals.get("tables_accessed") or 0),
                "unique_users": int(totals.get("unique_users") or 0),
                "avg_execution_time_ms": round(float(average), 2) if average is not None else None,
                "max_execution_time_ms": totals.get("max_execution_time_ms"),
                "earliest": totals.get("earliest"),
                "latest": totals.get("latest"),
            },
            "by_operation": by_operation,
            "by_table": by_table,
        }


def _record_id(result: dict[str, Any]) -> str | None:
    record = result.get("record")
    if isinstance(record, dict) and record.get("id") is not None:
        return _clip(record["id"])
    ids = result.get("ids")
    if not ids:
        ids = [
            row["id"] for row in result.get("records") or []
            if isinstance(row, dict) and row.get("id") is not None
        ]
    return _clip(",".join(str(i) for i in ids)) if ids else None

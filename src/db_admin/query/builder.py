"""Parameterized SQL generation from validated input.

Pure functions: no I/O, no database connections. Identifiers come from a
``WhitelistEntry`` (and are re-checked against it); every value becomes a
``$n`` positional parameter.

Usage:
    from db_admin.query.builder import build_select
    from db_admin.query.models import Condition, Operator, PageSpec

    query = build_select(
        entry,
        conditions=[Condition(column="name", operator=Operator.LIKE, value="Jane%")],
        page=PageSpec(limit=10),
    )
    query.sql     # 'SELECT * FROM authors WHERE name LIKE $1 LIMIT $2 OFFSET $3'
    query.params  # ['Jane%', 10, 0]
"""

from collections.abc import Sequence
from typing import Any

from db_admin.errors import ValidationError
from db_admin.query.models import (
    Condition,
    ConflictMode,
    Operator,
    PageSpec,
    Query,
    SortSpec,
)
from db_admin.whitelist import SOFT_DELETE_COLUMN, UPDATED_AT_COLUMN, WhitelistEntry

OPERATOR_SQL: dict[Operator, str] = {
    Operator.EQ: "=",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
    Operator.NE: "<>",
    Operator.LIKE: "LIKE",
    Operator.ILIKE: "ILIKE",
}


def _ident(entry: WhitelistEntry, column: str) -> str:
    if not entry.has_column(column):
        raise ValidationError(
            f"Column '{column}' is not whitelisted for table '{entry.table}'"
        )
    return column


def build_where(
    entry: WhitelistEntry,
    conditions: Sequence[Condition],
    start: int = 1,
) -> tuple[str, list[Any]]:
    """Render AND-joined conditions.

    Args:
        entry: Whitelist entry of the target table.
        conditions: Validated conditions, rendered in order.
        start: Number of the first ``$n`` placeholder.

    Returns:
        Tuple of clause text (without the ``WHERE`` keyword, empty when
        there are no conditions) and the parameter list.
    """
    parts: list[str] = []
    params: list[Any] = []
    index = start

    for condition in conditions:
        column = _ident(entry, condition.column)
        operator = condition.operator

        if operator is Operator.NULL:
            parts.append(f"{column} IS NULL" if condition.value else f"{column} IS NOT NULL")
            continue

        if operator is Operator.IN:
            if not isinstance(condition.value, (list, tuple)) or not condition.value:
                raise ValidationError(f"$in for column '{column}' requires a non-empty array")
            parts.append(f"{column} = ANY(${index})")
            params.append(list(condition.value))
        else:
            parts.append(f"{column} {OPERATOR_SQL[operator]} ${index}")
            params.append(condition.value)
        index += 1

    return " AND ".join(parts), params


def _soft_delete_filter(entry: WhitelistEntry, exclude_deleted: bool) -> list[str]:
    if exclude_deleted and entry.soft_delete:
        return [f"{SOFT_DELETE_COLUMN} IS NULL"]
    return []


def _join_where(*clauses: str) -> str:
    present = [clause for clause in clauses if clause]
    return f" WHERE {' AND '.join(present)}" if present else ""


def build_select(
    entry: WhitelistEntry,
    columns: Sequence[str] | None = None,
    conditions: Sequence[Condition] | None = None,
    sort: Sequence[SortSpec] | None = None,
    page: PageSpec | None = None,
    exclude_deleted: bool = False,
) -> Query:
    """Build ``SELECT <cols|*> FROM t [WHERE] [ORDER BY] [LIMIT $n OFFSET $m]``."""
    select_list = ", ".join(_ident(entry, c) for c in columns) if columns else "*"
    where_sql, params = build_where(entry, conditions or [])
    sql = f"SELECT {select_list} FROM {entry.table}"
    sql += _join_where(where_sql, *_soft_delete_filter(entry, exclude_deleted))

    if sort:
        order = ", ".join(f"{_ident(entry, s.column)} {s.direction}" for s in sort)
        sql += f" ORDER BY {order}"

    if page is not None:
        sql += f" LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}"
        params.extend([page.limit, page.offset])

    return Query(sql=sql, params=params)


def build_count(
    entry: WhitelistEntry,
    conditions: Sequence[Condition] | None = None,
    exclude_deleted: bool = False,
) -> Query:
    """Build ``SELECT COUNT(*) AS count FROM t [WHERE]``."""
    where_sql, params = build_where(entry, conditions or [])
    sql = f"SELECT COUNT(*) AS count FROM {entry.table}"
    sql += _join_where(where_sql, *_soft_delete_filter(entry, exclude_deleted))
    return Query(sql=sql, params=params)


def build_insert(
    entry: WhitelistEntry,
    data: dict[str, Any],
    on_conflict: ConflictMode | None = None,
    conflict_target: str = "id",
) -> Query:
    """Build ``INSERT INTO t (cols) VALUES ($1..$n) [ON CONFLICT ...] RETURNING *``.

    ``on_conflict`` is only used by imports: ``SKIP`` renders
    ``ON CONFLICT DO NOTHING`` and ``UPDATE`` an upsert on
    ``conflict_target``.
    """
    if not data:
        raise ValidationError("Insert data must not be empty")

    columns = [_ident(entry, c) for c in data]
    placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
    sql = f"INSERT INTO {entry.table} ({', '.join(columns)}) VALUES ({placeholders})"

    if on_conflict is ConflictMode.SKIP:
        sql += " ON CONFLICT DO NOTHING"
    elif on_conflict is ConflictMode.UPDATE:
        target = _ident(entry, conflict_target)
        updates = [c for c in columns if c != target]
        if updates:
            assignments = ", ".join(f"{c} = EXCLUDED.{c}" for c in updates)
            sql += f" ON CONFLICT ({target}) DO UPDATE SET {assignments}"
        else:
            sql += f" ON CONFLICT ({target}) DO NOTHING"

    sql += " RETURNING *"
    return Query(sql=sql, params=list(data.values()))


def build_update(
    entry: WhitelistEntry,
    data: dict[str, Any],
    conditions: Sequence[Condition],
) -> Query:
    """Build ``UPDATE t SET ... WHERE ... RETURNING *``.

    ``updated_at`` is set to ``CURRENT_TIMESTAMP`` when the table has the
    column and the caller did not set it explicitly.

    Raises:
        ValidationError: If ``data`` or ``conditions`` is empty.
    """
    if not data:
        raise ValidationError("Update data must not be empty")
    if not conditions:
        raise ValidationError(
            "WHERE clause is required for update operations to prevent accidental mass updates"
        )

    assignments: list[str] = []
    params: list[Any] = []
    for column, value in data.items():
        params.append(value)
        assignments.append(f"{_ident(entry, column)} = ${len(params)}")

    if entry.has_updated_at and UPDATED_AT_COLUMN not in data:
        assignments.append(f"{UPDATED_AT_COLUMN} = CURRENT_TIMESTAMP")

    where_sql, where_params = build_where(entry, conditions, start=len(params) + 1)
    params.extend(where_params)

    sql = f"UPDATE {entry.table} SET {', '.join(assignments)} WHERE {where_sql} RETURNING *"
    return Query(sql=sql, params=params)


def build_delete(
    entry: WhitelistEntry,
    conditions: Sequence[Condition],
    soft_delete: bool = False,
) -> Query:
    """Build a soft delete (``UPDATE ... SET deleted_at``) or a hard ``DELETE``.

    Soft delete is used only when requested and the table supports it;
    already soft-deleted rows are left untouched.

    Raises:
        ValidationError: If ``conditions`` is empty.
    """
    if not conditions:
        raise ValidationError(
            "WHERE clause is required for delete operations to prevent accidental mass deletion"
        )

    where_sql, params = build_where(entry, conditions)

    if soft_delete and entry.soft_delete:
        assignments = [f"{SOFT_DELETE_COLUMN} = CURRENT_TIMESTAMP"]
        if entry.has_updated_at:
            assignments.append(f"{UPDATED_AT_COLUMN} = CURRENT_TIMESTAMP")
        sql = (
            f"UPDATE {entry.table} SET {', '.join(assignments)} "
            f"WHERE {where_sql} AND {SOFT_DELETE_COLUMN} IS NULL RETURNING *"
        )
    else:
        sql = f"DELETE FROM {entry.table} WHERE {where_sql} RETURNING *"

    return Query(sql=sql, params=params)

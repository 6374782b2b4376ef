"""Coerce JSON input values to the Python types a column expects.

Tool arguments, JSON exports and CSV cells arrive as JSON scalars or
strings, while asyncpg binds parameters with strict types (a string is
not accepted for an ``integer`` column). Values are converted using the
live column types from ``SchemaIntrospector.get_column_types``; only
columns with a known type are touched.
"""

import json
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from db_admin.errors import ValidationError
from db_admin.schema.cache import SchemaCache
from db_admin.schema.introspector import SchemaIntrospector
from db_admin.schema.models import ColumnSchema

INTEGER_TYPES = frozenset({"int", "integer", "smallint", "bigint", "serial", "bigserial"})
NUMERIC_TYPES = frozenset({"numeric", "decimal"})
FLOAT_TYPES = frozenset({"real", "float8", "double precision"})
BOOLEAN_TYPES = frozenset({"bool", "boolean"})
TIMESTAMP_TYPES = frozenset({"timestamp", "timestamptz"})
JSON_TYPES = frozenset({"json", "jsonb"})

_TRUE = frozenset({"true", "t", "yes", "y", "1", "on"})
_FALSE = frozenset({"false", "f", "no", "n", "0", "off"})

# Operators whose operand is a pattern or flag, never a column value
_UNTYPED_OPERATORS = frozenset({"$like", "$ilike", "$null"})


def _fail(column: str, expected: str, value: Any) -> ValidationError:
    return ValidationError(
        f"Column '{column}' must be {expected}, got: {value!r}",
        data={"column": column},
    )


def coerce_value(column: str, value: Any, data_type: str | None) -> Any:
    """Convert ``value`` for a column of ``data_type``.

    Non-string values pass through unchanged (except dict/list values for
    JSON columns, which are encoded). Strings are parsed into the
    column's Python type.

    Raises:
        ValidationError: If a string cannot be parsed as the column type.
    """
    if value is None or data_type is None:
        return value

    if data_type in JSON_TYPES:
        if isinstance(value, str):
            try:
                json.loads(value)
            except ValueError:
                raise _fail(column, "valid JSON", value) from None
            return value
        return json.dumps(value)

    if data_type in INTEGER_TYPES and isinstance(value, float) and value.is_integer():
        return int(value)

    if not isinstance(value, str):
        return value

    try:
        if data_type in INTEGER_TYPES:
            return int(value.strip())
        if data_type in NUMERIC_TYPES:
            return Decimal(value.strip())
        if data_type in FLOAT_TYPES:
            return float(value)
        if data_type in BOOLEAN_TYPES:
            lowered = value.strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
            raise ValueError(value)
        if data_type in TIMESTAMP_TYPES:
            return datetime.fromisoformat(value.strip())
        if data_type == "date":
            return date.fromisoformat(value.strip()[:10])
        if data_type == "time":
            return time.fromisoformat(value.strip())
        if data_type == "uuid":
            return UUID(value.strip())
    except (ValueError, InvalidOperation):
        expected = "an integer" if data_type in INTEGER_TYPES else f"a valid {data_type}"
        raise _fail(column, expected, value) from None

    return value


def coerce_row(row: Mapping[str, Any], column_types: Mapping[str, str]) -> dict[str, Any]:
    """Coerce every value of an insert/update payload."""
    return {
        column: coerce_value(column, value, column_types.get(column))
        for column, value in row.items()
    }


def coerce_where(where: Any, column_types: Mapping[str, str]) -> Any:
    """Coerce the operands of a raw WHERE object.

    Shapes the validator will reject are returned untouched so the
    validator can report them.
    """
    if not isinstance(where, Mapping):
        return where

    coerced: dict[str, Any] = {}
    for column, value in where.items():
        data_type = column_types.get(column)
        if isinstance(value, list):
            coerced[column] = [coerce_value(column, item, data_type) for item in value]
        elif isinstance(value, Mapping) and len(value) == 1:
            operator, operand = next(iter(value.items()))
            if operator in _UNTYPED_OPERATORS:
                coerced[column] = dict(value)
            elif isinstance(operand, list):
                coerced[column] = {
                    operator: [coerce_value(column, item, data_type) for item in operand]
                }
            else:
                coerced[column] = {operator: coerce_value(column, operand, data_type)}
        elif isinstance(value, Mapping):
            coerced[column] = value
        else:
            coerced[column] = coerce_value(column, value, data_type)
    return coerced


# ============================================================================
# Cached column metadata
# ============================================================================


async def load_columns(
    cache: SchemaCache, introspector: SchemaIntrospector, table: str
) -> list[ColumnSchema]:
    """Live columns of ``table`` in ordinal order, through the schema cache."""
    key = SchemaCache.generate_key(table, "columns")
    columns, _ = await cache.get_or_load(key, lambda: introspector.get_columns(table))
    return columns


async def load_column_types(
    cache: SchemaCache, introspector: SchemaIntrospector, table: str
) -> dict[str, str]:
    return {c.name: c.data_type for c in await load_columns(cache, introspector, table)}

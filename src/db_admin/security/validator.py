"""Input validation gate for every admin operation.

All identifiers that end up in SQL pass through ``SecurityValidator``
first: they must match ``^[a-z_]+$`` and be present in the whitelist
registry. Values are never checked for "dangerous" content because they
are always bound as parameters.

Usage:
    from db_admin.security.validator import SecurityValidator
    from db_admin.whitelist import WhitelistRegistry

    validator = SecurityValidator(WhitelistRegistry.default())
    entry = validator.validate_table("authors")
    conditions = validator.validate_where_clause("authors", {"name": {"$like": "Jane%"}})
"""

from collections.abc import Iterable, Mapping
from typing import Any

from db_admin.errors import ValidationError
from db_admin.query.models import Condition, Operator, PageSpec, SortSpec
from db_admin.whitelist import IDENTIFIER_PATTERN, WhitelistEntry, WhitelistRegistry

MAX_LIMIT = 1000

_SCALAR_TYPES = (str, int, float, bool)

MUTATING_OPERATIONS = frozenset({
    "INSERT",
    "UPDATE",
    "DELETE",
    "WRITE",
    "BATCH_INSERT",
    "BATCH_UPDATE",
    "BATCH_DELETE",
    "IMPORT",
    "RESTORE",
})


def _is_scalar(value: Any) -> bool:
    return isinstance(value, _SCALAR_TYPES)


class SecurityValidator:
    """Validates table, column, filter, sort and paging input against the registry."""

    def __init__(self, registry: WhitelistRegistry) -> None:
        self.registry = registry

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    def validate_table(self, name: Any) -> WhitelistEntry:
        """Return the whitelist entry for ``name``.

        The format check runs before the membership check so malformed
        names are rejected without consulting the registry.

        Raises:
            ValidationError: If the name is malformed or not whitelisted.
        """
        if not isinstance(name, str) or not name:
            raise ValidationError("Table name must be a non-empty string")

        if not IDENTIFIER_PATTERN.fullmatch(name):
            raise ValidationError(
                "Invalid table name format. Only lowercase letters and underscores allowed.",
                data={"table": name},
            )

        entry = self.registry.get(name)
        if entry is None:
            raise ValidationError(
                f"Table '{name}' is not whitelisted. "
                f"Available tables: {', '.join(self.registry.tables)}",
                data={"table": name},
            )
        return entry

    def validate_column(self, entry: WhitelistEntry, column: Any) -> str:
        if not isinstance(column, str) or not column:
            raise ValidationError("Column names must be non-empty strings")

        if not IDENTIFIER_PATTERN.fullmatch(column):
            raise ValidationError(
                "Invalid column name format. Only lowercase letters and underscores allowed.",
                data={"table": entry.table, "column": column},
            )

        if not entry.has_column(column):
            raise ValidationError(
                f"Column '{column}' is not whitelisted for table '{entry.table}'. "
                f"Available columns: {', '.join(sorted(entry.columns))}",
                data={"table": entry.table, "column": column},
            )
        return column

    def validate_columns(self, table: str, columns: Iterable[Any] | str) -> list[str]:
        """Validate one or more column names for ``table``.

        Returns:
            The validated column names in the given order.
        """
        entry = self.validate_table(table)
        if isinstance(columns, str):
            columns = [columns]
        return [self.validate_column(entry, column) for column in columns]

    # ------------------------------------------------------------------
    # Payloads
    # ------------------------------------------------------------------

    def validate_data(self, table: str, data: Any) -> dict[str, Any]:
        """Validate an insert/update payload: non-empty, whitelisted keys."""
        entry = self.validate_table(table)
        if not isinstance(data, Mapping) or not data:
            raise ValidationError("Data must be a non-empty object")
        for column in data:
            self.validate_column(entry, column)
        return dict(data)

    def validate_where_clause(self, table: str, where: Any) -> list[Condition]:
        """Validate a WHERE object and convert it to typed conditions.

        Accepted value forms per column:

        - scalar: implicit ``=``
        - ``None``: ``IS NULL``
        - list: ``= ANY(...)``
        - ``{operator: value}`` with exactly one recognized operator key

        Raises:
            ValidationError: On an empty clause, unknown column or operator,
                or a value of the wrong shape for its operator.
        """
        entry = self.validate_table(table)
        if not isinstance(where, Mapping) or not where:
            raise ValidationError("WHERE clause must be a non-empty object")

        conditions: list[Condition] = []
        for column, value in where.items():
            self.validate_column(entry, column)
            conditions.append(self._parse_condition(column, value))
        return conditions

    def _parse_condition(self, column: str, value: Any) -> Condition:
        if value is None:
            return Condition(column=column, operator=Operator.NULL, value=True)

        if isinstance(value, list):
            return self._checked(column, Operator.IN, value)

        if isinstance(value, Mapping):
            if len(value) != 1:
                raise ValidationError(
                    f"Condition for column '{column}' must have exactly one operator",
                    data={"column": column, "operators": list(value)},
                )
            key, operand = next(iter(value.items()))
            try:
                operator = Operator.parse(key)
            except ValueError:
                raise ValidationError(
                    f"Unknown operator '{key}' for column '{column}'. "
                    f"Allowed: {', '.join(op.value for op in Operator)}",
                    data={"column": column, "operator": key},
                ) from None
            return self._checked(column, operator, operand)

        if _is_scalar(value):
            return Condition(column=column, operator=Operator.EQ, value=value)

        raise ValidationError(
            f"Unsupported value type for column '{column}'",
            data={"column": column, "type": type(value).__name__},
        )

    def _checked(self, column: str, operator: Operator, operand: Any) -> Condition:
        if operator is Operator.IN:
            if not isinstance(operand, list) or not operand:
                raise ValidationError(f"$in for column '{column}' requires a non-empty array")
            if not all(_is_scalar(item) for item in operand):
                raise ValidationError(f"$in for column '{column}' only accepts scalar values")
        elif operator is Operator.NULL:
            if not isinstance(operand, bool):
                raise ValidationError(f"$null for column '{column}' requires true or false")
        elif operator in (Operator.LIKE, Operator.ILIKE):
            if not isinstance(operand, str):
                raise ValidationError(
                    f"{operator.value} for column '{column}' requires a string pattern"
                )
        elif operand is None:
            if operator is Operator.EQ:
                return Condition(column=column, operator=Operator.NULL, value=True)
            raise ValidationError(f"{operator.value} for column '{column}' requires a value")
        elif not _is_scalar(operand):
            raise ValidationError(
                f"{operator.value} for column '{column}' requires a scalar value"
            )
        return Condition(column=column, operator=operator, value=operand)

    # ------------------------------------------------------------------
    # Sorting and paging
    # ------------------------------------------------------------------

    def validate_order_by(self, table: str, specs: Any) -> list[SortSpec]:
        """Validate ``[{column, direction}]`` and normalize direction to upper case."""
        entry = self.validate_table(table)
        if isinstance(specs, Mapping):
            specs = [specs]
        if not isinstance(specs, list):
            raise ValidationError("order_by must be an array of {column, direction} objects")

        sort: list[SortSpec] = []
        for spec in specs:
            if not isinstance(spec, Mapping) or "column" not in spec:
                raise ValidationError("order_by entries must be objects with a 'column' key")
            column = self.validate_column(entry, spec["column"])
            direction = spec.get("direction") or "ASC"
            if not isinstance(direction, str) or direction.upper() not in ("ASC", "DESC"):
                raise ValidationError(
                    f"Invalid sort direction '{direction}'. Must be ASC or DESC",
                    data={"column": column},
                )
            sort.append(SortSpec(column=column, direction=direction.upper()))
        return sort

    def validate_pagination(self, limit: Any, offset: Any = 0) -> PageSpec:
        """Validate and return a ``PageSpec``.

        Raises:
            ValidationError: If limit is not within 1..1000 or offset is negative.
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LIMIT:
            raise ValidationError(
                f"Limit must be between 1 and {MAX_LIMIT}", data={"limit": limit}
            )
        if offset is None:
            offset = 0
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise ValidationError(
                "Offset must be a non-negative integer", data={"offset": offset}
            )
        return PageSpec(limit=limit, offset=offset)

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def validate_not_read_only(self, table: str, operation: str) -> None:
        """Fail if ``table`` is read-only and ``operation`` mutates."""
        entry = self.validate_table(table)
        if entry.read_only and operation.upper() in MUTATING_OPERATIONS:
            raise ValidationError(
                f"Cannot {operation.lower()} table '{table}': table is read-only",
                data={"table": table, "operation": operation.upper()},
            )

    def supports_soft_delete(self, table: str) -> bool:
        return self.validate_table(table).soft_delete

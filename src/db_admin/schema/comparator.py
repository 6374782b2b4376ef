"""Whitelist comparison using set operations.

Compares the whitelisted columns against the actual columns of the live
database, so a registry that references dropped or renamed columns is
noticed at startup instead of at query time.
Pure logic -- no I/O, no database connections.

Usage:
    from db_admin.schema.comparator import compare_whitelist

    actual_columns = await introspector.get_column_names()
    result = compare_whitelist(actual_columns, registry)
    if not result.valid:
        print(result.format_report())
"""

from db_admin.schema.models import ColumnDiff, SchemaValidationResult
from db_admin.whitelist import WhitelistRegistry


def compare_whitelist(
    actual_columns: dict[str, set[str]],
    registry: WhitelistRegistry,
) -> SchemaValidationResult:
    """Validate the whitelist registry against the live schema.

    Performs pure set operations to find:
    - Missing tables: whitelisted tables absent from the database
    - Missing columns: whitelisted columns absent from their table
    - Unlisted tables: database tables not in the whitelist
      (informational -- does not affect ``valid`` status)

    Args:
        actual_columns: Dict mapping table name to set of column names,
            as returned by ``introspector.get_column_names()``.
        registry: The whitelist registry in use.

    Returns:
        ``SchemaValidationResult`` with ``valid=True`` if every whitelisted
        table and column exists.

    Examples:
        >>> registry = WhitelistRegistry.from_tables({"authors": ["id", "name"]})
        >>> compare_whitelist({"authors": {"id", "name", "bio"}}, registry).valid
        True

        >>> result = compare_whitelist({"authors": {"id"}}, registry)
        >>> result.missing_columns[0].column
        'name'
    """
    expected_columns = registry.expected_columns()
    actual_tables: set[str] = set(actual_columns.keys())
    expected_tables: set[str] = set(expected_columns.keys())

    # Whitelisted but not in the database
    missing_tables: list[str] = sorted(expected_tables - actual_tables)

    # In the database but unreachable (informational)
    unlisted_tables: list[str] = sorted(actual_tables - expected_tables)

    missing_columns: list[ColumnDiff] = []
    for table_name in sorted(expected_tables & actual_tables):
        missing_cols = expected_columns[table_name] - actual_columns[table_name]
        for col_name in sorted(missing_cols):
            missing_columns.append(
                ColumnDiff(
                    table=table_name,
                    column=col_name,
                    message=f"Whitelisted column '{col_name}' missing from table '{table_name}'",
                )
            )

    return SchemaValidationResult(
        valid=not missing_tables and not missing_columns,
        missing_tables=missing_tables,
        missing_columns=missing_columns,
        unlisted_tables=unlisted_tables,
    )

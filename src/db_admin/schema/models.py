"""Pydantic models for schema introspection and validation.

This module contains schema-domain models:
- Introspection models: ColumnSchema, ConstraintSchema, IndexSchema,
  TableSchema, TableInfo
- Relationship models: RelationshipEdge, RelationshipMap
- Validation models: ColumnDiff, SchemaValidationResult

Configuration models (DatabaseProfile, DatabaseConfig) live in
db_admin.config.models.
"""

from pydantic import BaseModel, Field


# ============================================================================
# Validation Result Models
# ============================================================================


class ColumnDiff(BaseModel):
    """A whitelisted column missing from the live database."""

    table: str
    column: str
    message: str = ""


class SchemaValidationResult(BaseModel):
    """Result of comparing the whitelist with the live schema.

    Example:
        >>> result = SchemaValidationResult(valid=True)
        >>> result.error_count
        0
        >>> result.format_report()
        'Whitelist matches database'
    """

    valid: bool
    missing_tables: list[str] = Field(default_factory=list)
    missing_columns: list[ColumnDiff] = Field(default_factory=list)
    unlisted_tables: list[str] = Field(default_factory=list)  # Informational only

    @property
    def error_count(self) -> int:
        """Count of critical errors (missing tables + missing columns)."""
        return len(self.missing_tables) + len(self.missing_columns)

    def format_report(self) -> str:
        """Format result as human-readable report."""
        if self.valid:
            return "Whitelist matches database"

        lines = ["Whitelist does not match database:"]

        if self.missing_tables:
            lines.append(f"\n  Missing tables ({len(self.missing_tables)}):")
            for table in self.missing_tables:
                lines.append(f"    - {table}")

        if self.missing_columns:
            lines.append(f"\n  Missing columns ({len(self.missing_columns)}):")
            for diff in self.missing_columns:
                lines.append(f"    - {diff.table}.{diff.column}")

        return "\n".join(lines)


# ============================================================================
# Schema Introspection Models
# ============================================================================


class ColumnSchema(BaseModel):
    """Schema for a database column.

    Example:
        >>> col = ColumnSchema(name="id", data_type="integer")
        >>> col.is_nullable
        True
    """

    name: str
    data_type: str
    udt_name: str | None = None
    is_nullable: bool = True
    default: str | None = None
    max_length: int | None = None
    numeric_precision: int | None = None
    numeric_scale: int | None = None
    position: int | None = None


class ConstraintSchema(BaseModel):
    """Schema for a database constraint."""

    name: str
    constraint_type: str  # PRIMARY KEY, FOREIGN KEY, UNIQUE, CHECK
    columns: list[str] = Field(default_factory=list)
    references_table: str | None = None
    references_columns: list[str] | None = None
    on_delete: str | None = None
    on_update: str | None = None


class IndexSchema(BaseModel):
    """Schema for a database index."""

    name: str
    columns: list[str] = Field(default_factory=list)
    is_unique: bool = False
    is_primary: bool = False
    index_type: str = "btree"
    definition: str = ""


class TableSchema(BaseModel):
    """Schema for a database table."""

    name: str
    columns: dict[str, ColumnSchema] = Field(default_factory=dict)
    constraints: dict[str, ConstraintSchema] = Field(default_factory=dict)
    indexes: dict[str, IndexSchema] = Field(default_factory=dict)

    @property
    def primary_key(self) -> list[str]:
        for constraint in self.constraints.values():
            if constraint.constraint_type == "PRIMARY KEY":
                return constraint.columns
        return []


class TableInfo(BaseModel):
    """Row of ``list_tables``."""

    name: str
    schema_name: str = "public"
    table_type: str = "BASE TABLE"
    estimated_rows: int | None = None
    size_bytes: int | None = None
    size: str | None = None


# ============================================================================
# Relationship Models
# ============================================================================


class RelationshipEdge(BaseModel):
    """One foreign key, seen from the traversal's point of view.

    ``table``/``column`` hold the referencing side and ``references_*``
    the referenced side. ``via_table`` is the table the traversal reached
    this edge from when ``depth > 1``.
    """

    constraint_name: str
    table: str
    column: str
    references_table: str
    references_column: str
    depth: int = 1
    via_table: str | None = None
    on_delete: str | None = None


class RelationshipMap(BaseModel):
    """Parents (tables this table references) and children (tables referencing it)."""

    table: str
    depth: int
    parents: list[RelationshipEdge] = Field(default_factory=list)
    children: list[RelationshipEdge] = Field(default_factory=list)

"""Schema introspection, caching and relationship mapping.

Provides live database introspection (``SchemaIntrospector``), the TTL
``SchemaCache``, foreign-key traversal (``RelationshipMapper``) and the
whitelist-versus-database comparison (``compare_whitelist``).

Usage:
    from db_admin.schema import SchemaCache, SchemaIntrospector, RelationshipMapper
    from db_admin.schema import compare_whitelist
"""

from db_admin.schema.cache import SchemaCache
from db_admin.schema.comparator import compare_whitelist
from db_admin.schema.introspector import SchemaIntrospector
from db_admin.schema.models import (
    ColumnDiff,
    ColumnSchema,
    ConstraintSchema,
    IndexSchema,
    RelationshipEdge,
    RelationshipMap,
    SchemaValidationResult,
    TableInfo,
    TableSchema,
)
from db_admin.schema.relationships import RelationshipMapper
from db_admin.schema.types import (
    coerce_row,
    coerce_value,
    coerce_where,
    load_column_types,
    load_columns,
)

__all__ = [
    "SchemaCache",
    "SchemaIntrospector",
    "RelationshipMapper",
    "compare_whitelist",
    "coerce_row",
    "coerce_value",
    "coerce_where",
    "load_columns",
    "load_column_types",
    "ColumnDiff",
    "ColumnSchema",
    "ConstraintSchema",
    "IndexSchema",
    "RelationshipEdge",
    "RelationshipMap",
    "SchemaValidationResult",
    "TableInfo",
    "TableSchema",
]

"""Parameterized SQL construction from validated input.

Usage:
    from db_admin.query import builder
    from db_admin.query.models import Condition, Operator, SortSpec, PageSpec
"""

from db_admin.query.models import (
    Condition,
    ConflictMode,
    Operator,
    PageSpec,
    Query,
    SortSpec,
)

__all__ = [
    "Condition",
    "ConflictMode",
    "Operator",
    "PageSpec",
    "Query",
    "SortSpec",
]

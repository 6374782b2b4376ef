"""Typed query inputs produced by the security validator.

``Condition`` is a tagged variant over ``Operator``; the builder renders
each operator through a fixed mapping so no free-form operator text ever
reaches SQL.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Operator(str, Enum):
    """Recognized WHERE operators (wire spelling as value)."""

    EQ = "="
    GT = "$gt"
    GTE = "$gte"
    LT = "$lt"
    LTE = "$lte"
    NE = "$ne"
    LIKE = "$like"
    ILIKE = "$ilike"
    IN = "$in"
    NULL = "$null"

    @classmethod
    def parse(cls, key: str) -> "Operator":
        """Resolve a wire operator key (``$eq`` is accepted for ``=``)."""
        if key == "$eq":
            return cls.EQ
        return cls(key)


class Condition(BaseModel):
    """One ``column <operator> value`` predicate.

    Example:
        >>> Condition(column="name", operator=Operator.LIKE, value="Jane%")
    """

    model_config = ConfigDict(frozen=True)

    column: str
    operator: Operator = Operator.EQ
    value: Any = None


class SortSpec(BaseModel):
    """ORDER BY element."""

    model_config = ConfigDict(frozen=True)

    column: str
    direction: Literal["ASC", "DESC"] = "ASC"


class PageSpec(BaseModel):
    """LIMIT/OFFSET window."""

    model_config = ConfigDict(frozen=True)

    limit: int = Field(ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class ConflictMode(str, Enum):
    """How imports and restores treat rows that already exist."""

    ERROR = "error"
    SKIP = "skip"
    UPDATE = "update"


class Query(BaseModel):
    """SQL text with ``$n`` placeholders and its positional parameters."""

    sql: str
    params: list[Any] = Field(default_factory=list)

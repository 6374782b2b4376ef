"""Tests for value coercion of JSON/CSV input to column types."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

import pytest

from db_admin.errors import ValidationError
from db_admin.schema.cache import SchemaCache
from db_admin.schema.introspector import SchemaIntrospector
from db_admin.schema.types import coerce_row, coerce_value, coerce_where, load_column_types

from conftest import AUTHOR_TYPES, FakeAdapter


class TestCoerceValue:
    """String values converted by column type."""

    @pytest.mark.parametrize(
        "value, data_type, expected",
        [
            ("42", "int", 42),
            (" 7 ", "bigint", 7),
            (3.0, "int", 3),
            ("1.50", "numeric", Decimal("1.50")),
            ("2.5", "float8", 2.5),
            ("yes", "bool", True),
            ("F", "bool", False),
            ("2024-03-01", "date", date(2024, 3, 1)),
            ("2024-03-01T10:00:00", "timestamp", datetime(2024, 3, 1, 10, 0)),
            (
                "12345678-1234-5678-1234-567812345678",
                "uuid",
                UUID("12345678-1234-5678-1234-567812345678"),
            ),
            ("plain", "text", "plain"),
            (None, "int", None),
            (5, "int", 5),
        ],
    )
    def test_conversions(self, value, data_type, expected) -> None:
        assert coerce_value("col", value, data_type) == expected

    def test_unknown_type_passthrough(self) -> None:
        assert coerce_value("col", "abc", None) == "abc"

    def test_json_encoding(self) -> None:
        assert coerce_value("meta", {"a": 1}, "jsonb") == '{"a": 1}'
        assert coerce_value("meta", '{"a": 1}', "json") == '{"a": 1}'

    def test_bad_integer(self) -> None:
        with pytest.raises(ValidationError, match="must be an integer") as excinfo:
            coerce_value("id", "abc", "int")
        assert excinfo.value.data == {"column": "id"}

    def test_bad_bool(self) -> None:
        with pytest.raises(ValidationError, match="valid bool"):
            coerce_value("is_active", "maybe", "bool")

    def test_bad_json(self) -> None:
        with pytest.raises(ValidationError, match="valid JSON"):
            coerce_value("meta", "{nope", "jsonb")


class TestCoerceRowAndWhere:
    """Rows and WHERE objects coerced as a whole."""

    def test_row(self) -> None:
        row = coerce_row({"id": "3", "name": "Jane", "extra": "x"}, AUTHOR_TYPES)
        assert row == {"id": 3, "name": "Jane", "extra": "x"}

    def test_where_shapes(self) -> None:
        where = coerce_where(
            {
                "id": ["1", "2"],
                "series_id": {"$gte": "5"},
                "name": {"$like": "12%"},
                "role": {"$in": ["a"]},
            },
            {"id": "int", "series_id": "int", "name": "varchar", "role": "varchar"},
        )
        assert where["id"] == [1, 2]
        assert where["series_id"] == {"$gte": 5}
        assert where["name"] == {"$like": "12%"}
        assert where["role"] == {"$in": ["a"]}

    def test_where_invalid_shape_untouched(self) -> None:
        """Multi-operator objects are left for the validator to reject."""
        where = {"id": {"$gt": "1", "$lt": "5"}}
        assert coerce_where(where, {"id": "int"}) == where
        assert coerce_where("id = 1", {"id": "int"}) == "id = 1"


class TestLoadColumnTypes:
    """Column types read through the schema cache."""

    async def test_uses_cache(self) -> None:
        adapter = FakeAdapter()
        adapter.on(
            "ORDER BY ordinal_position",
            [
                {"column_name": "id", "data_type": "integer", "is_nullable": "NO"},
                {"column_name": "name", "data_type": "text", "is_nullable": "YES"},
            ],
        )
        cache = SchemaCache()
        introspector = SchemaIntrospector(adapter)

        types = await load_column_types(cache, introspector, "authors")
        await load_column_types(cache, introspector, "authors")

        assert types == {"id": "int", "name": "text"}
        assert len(adapter.statements) == 1, "second lookup should be served from cache"

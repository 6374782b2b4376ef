"""Tests for the parameterized SQL builder.

Every value must end up in ``params``; SQL text only ever contains
whitelisted identifiers, fixed keywords and ``$n`` placeholders.
"""

import pytest

from db_admin.errors import ValidationError
from db_admin.query.builder import (
    build_count,
    build_delete,
    build_insert,
    build_select,
    build_update,
    build_where,
)
from db_admin.query.models import Condition, ConflictMode, Operator, PageSpec, SortSpec
from db_admin.whitelist import WhitelistRegistry


@pytest.fixture
def authors(registry: WhitelistRegistry):
    return registry.get("authors")


@pytest.fixture
def books(registry: WhitelistRegistry):
    return registry.get("books")


class TestWhere:
    """Conditions rendered with numbered placeholders."""

    def test_operators_render(self, authors) -> None:
        sql, params = build_where(
            authors,
            [
                Condition(column="name", operator=Operator.LIKE, value="J%"),
                Condition(column="id", operator=Operator.IN, value=[1, 2]),
                Condition(column="bio", operator=Operator.NULL, value=False),
                Condition(column="id", operator=Operator.NE, value=9),
            ],
        )
        assert sql == "name LIKE $1 AND id = ANY($2) AND bio IS NOT NULL AND id <> $3"
        assert params == ["J%", [1, 2], 9]

    def test_start_offset(self, authors) -> None:
        sql, params = build_where(authors, [Condition(column="id", value=1)], start=4)
        assert sql == "id = $4"
        assert params == [1]

    def test_unlisted_column_rejected(self, authors) -> None:
        """The builder re-checks identifiers even after validation."""
        with pytest.raises(ValidationError):
            build_where(authors, [Condition(column="password", value="x")])


class TestSelect:
    """SELECT and COUNT statements."""

    def test_full_select(self, authors) -> None:
        query = build_select(
            authors,
            columns=["id", "name"],
            conditions=[Condition(column="name", operator=Operator.LIKE, value="Jane%")],
            sort=[SortSpec(column="name", direction="DESC")],
            page=PageSpec(limit=10, offset=20),
        )
        assert query.sql == (
            "SELECT id, name FROM authors WHERE name LIKE $1 "
            "ORDER BY name DESC LIMIT $2 OFFSET $3"
        )
        assert query.params == ["Jane%", 10, 20]

    def test_select_star(self, authors) -> None:
        assert build_select(authors).sql == "SELECT * FROM authors"

    def test_exclude_deleted(self, books) -> None:
        query = build_select(books, conditions=[Condition(column="id", value=1)], exclude_deleted=True)
        assert query.sql == "SELECT * FROM books WHERE id = $1 AND deleted_at IS NULL"

    def test_exclude_deleted_ignored_without_soft_delete(self, authors) -> None:
        assert "deleted_at" not in build_select(authors, exclude_deleted=True).sql

    def test_count(self, books) -> None:
        query = build_count(books, exclude_deleted=True)
        assert query.sql == "SELECT COUNT(*) AS count FROM books WHERE deleted_at IS NULL"
        assert query.params == []


class TestInsert:
    """INSERT with optional ON CONFLICT handling."""

    def test_insert(self, authors) -> None:
        query = build_insert(authors, {"name": "Jane", "bio": "x"})
        assert query.sql == "INSERT INTO authors (name, bio) VALUES ($1, $2) RETURNING *"
        assert query.params == ["Jane", "x"]

    def test_on_conflict_skip(self, authors) -> None:
        query = build_insert(authors, {"id": 1, "name": "Jane"}, on_conflict=ConflictMode.SKIP)
        assert "ON CONFLICT DO NOTHING RETURNING *" in query.sql

    def test_on_conflict_update(self, authors) -> None:
        query = build_insert(authors, {"id": 1, "name": "Jane"}, on_conflict=ConflictMode.UPDATE)
        assert "ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name" in query.sql

    def test_on_conflict_update_only_target(self, authors) -> None:
        query = build_insert(authors, {"id": 1}, on_conflict=ConflictMode.UPDATE)
        assert "ON CONFLICT (id) DO NOTHING" in query.sql

    def test_empty_rejected(self, authors) -> None:
        with pytest.raises(ValidationError):
            build_insert(authors, {})


class TestUpdate:
    """UPDATE with the updated_at touch."""

    def test_updated_at_touched(self, authors) -> None:
        query = build_update(authors, {"bio": "new"}, [Condition(column="id", value=3)])
        assert query.sql == (
            "UPDATE authors SET bio = $1, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = $2 RETURNING *"
        )
        assert query.params == ["new", 3]

    def test_explicit_updated_at_kept(self, authors) -> None:
        query = build_update(
            authors, {"updated_at": "2024-01-01"}, [Condition(column="id", value=3)]
        )
        assert "CURRENT_TIMESTAMP" not in query.sql

    def test_no_updated_at_column(self, registry) -> None:
        query = build_update(
            registry.get("genres"), {"description": "d"}, [Condition(column="id", value=1)]
        )
        assert query.sql == "UPDATE genres SET description = $1 WHERE id = $2 RETURNING *"

    def test_where_required(self, authors) -> None:
        with pytest.raises(ValidationError, match="mass updates"):
            build_update(authors, {"bio": "x"}, [])


class TestDelete:
    """Soft and hard deletes."""

    def test_soft_delete(self, books) -> None:
        query = build_delete(books, [Condition(column="id", value=7)], soft_delete=True)
        assert query.sql == (
            "UPDATE books SET deleted_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = $1 AND deleted_at IS NULL RETURNING *"
        )
        assert query.params == [7]

    def test_hard_delete(self, books) -> None:
        query = build_delete(books, [Condition(column="id", value=7)], soft_delete=False)
        assert query.sql == "DELETE FROM books WHERE id = $1 RETURNING *"

    def test_soft_delete_falls_back_to_hard(self, registry) -> None:
        """Tables without deleted_at are always hard-deleted."""
        query = build_delete(registry.get("tropes"), [Condition(column="id", value=1)], True)
        assert query.sql.startswith("DELETE FROM tropes")

    def test_where_required(self, books) -> None:
        with pytest.raises(ValidationError, match="mass deletion"):
            build_delete(books, [])

"""Tests for RelationshipMapper traversal, path finding and caching.

The scripted schema::

    authors <- series <- books <- chapters <- scenes <- character_scenes
    authors <- books
    users   <- books            (users is not whitelisted)
    locations <- locations      (self reference)
    organizations <-> world_elements -> series   (two-table cycle)
"""

import pytest

from db_admin.errors import ValidationError
from db_admin.schema.cache import SchemaCache
from db_admin.schema.introspector import SchemaIntrospector
from db_admin.schema.relationships import RelationshipMapper
from db_admin.whitelist import WhitelistRegistry

from conftest import FakeAdapter

FOREIGN_KEYS = [
    ("series_author_id_fkey", "series", "author_id", "authors"),
    ("books_series_id_fkey", "books", "series_id", "series"),
    ("books_author_id_fkey", "books", "author_id", "authors"),
    ("books_owner_id_fkey", "books", "owner_id", "users"),
    ("chapters_book_id_fkey", "chapters", "book_id", "books"),
    ("scenes_chapter_id_fkey", "scenes", "chapter_id", "chapters"),
    ("character_scenes_scene_id_fkey", "character_scenes", "scene_id", "scenes"),
    ("locations_parent_location_id_fkey", "locations", "parent_location_id", "locations"),
    ("organizations_headquarters_id_fkey", "organizations", "headquarters_id", "world_elements"),
    ("world_elements_organization_id_fkey", "world_elements", "organization_id", "organizations"),
    ("world_elements_series_id_fkey", "world_elements", "series_id", "series"),
]


def foreign_key_rows(sql: str, params: list) -> list[dict]:
    table = params[1]
    parents = "AND tc.table_name = $2" in sql
    return [
        {
            "constraint_name": name,
            "table_name": source,
            "column_name": column,
            "references_table": target,
            "references_column": "id",
            "delete_rule": "CASCADE",
        }
        for name, source, column, target in FOREIGN_KEYS
        if (source if parents else target) == table
    ]


@pytest.fixture
def fk_adapter() -> FakeAdapter:
    adapter = FakeAdapter()
    adapter.on("tc.constraint_type = 'FOREIGN KEY'", foreign_key_rows)
    return adapter


@pytest.fixture
def mapper(fk_adapter: FakeAdapter, registry: WhitelistRegistry) -> RelationshipMapper:
    return RelationshipMapper(SchemaIntrospector(fk_adapter), SchemaCache(), registry)


class TestGetRelationships:
    """Parents and children up to a depth."""

    async def test_depth_one(self, mapper: RelationshipMapper) -> None:
        relationships, cached = await mapper.get_relationships("chapters")

        assert not cached
        assert [e.references_table for e in relationships.parents] == ["books"]
        assert [e.table for e in relationships.children] == ["scenes"]

    async def test_depth_two_records_via(self, mapper: RelationshipMapper) -> None:
        relationships, _ = await mapper.get_relationships("chapters", depth=2)

        parents = {(e.references_table, e.depth, e.via_table) for e in relationships.parents}
        assert parents == {("books", 1, None), ("series", 2, "books"), ("authors", 2, "books")}
        children = {(e.table, e.depth) for e in relationships.children}
        assert children == {("scenes", 1), ("character_scenes", 2)}

    async def test_unlisted_tables_omitted(self, mapper: RelationshipMapper) -> None:
        relationships, _ = await mapper.get_relationships("books")
        assert "users" not in {e.references_table for e in relationships.parents}

    async def test_self_reference_terminates(self, mapper: RelationshipMapper) -> None:
        relationships, _ = await mapper.get_relationships("locations", depth=3)
        assert len(relationships.parents) == 1
        assert len(relationships.children) == 1

    async def test_two_table_cycle_terminates(self, mapper: RelationshipMapper) -> None:
        """Each edge of an A -> B -> A cycle is reported once, at its first hop."""
        relationships, _ = await mapper.get_relationships("organizations", depth=3)

        parents = [(e.constraint_name, e.depth) for e in relationships.parents]
        assert parents == [
            ("organizations_headquarters_id_fkey", 1),
            ("world_elements_series_id_fkey", 2),
            ("series_author_id_fkey", 3),
        ]
        children = [(e.constraint_name, e.depth) for e in relationships.children]
        assert children == [("world_elements_organization_id_fkey", 1)]

    async def test_cycle_from_other_side(self, mapper: RelationshipMapper) -> None:
        relationships, _ = await mapper.get_relationships("world_elements", depth=3)

        assert {(e.references_table, e.depth) for e in relationships.parents} == {
            ("organizations", 1),
            ("series", 1),
            ("authors", 2),
        }
        assert [e.table for e in relationships.children] == ["organizations"]
        names = [e.constraint_name for e in relationships.parents]
        assert len(names) == len(set(names))

    async def test_second_call_cached(
        self, mapper: RelationshipMapper, fk_adapter: FakeAdapter
    ) -> None:
        await mapper.get_relationships("books", depth=2)
        issued = len(fk_adapter.statements)

        _, cached = await mapper.get_relationships("books", depth=2)

        assert cached
        assert len(fk_adapter.statements) == issued

    async def test_refresh_reloads_foreign_keys(
        self, mapper: RelationshipMapper, fk_adapter: FakeAdapter
    ) -> None:
        await mapper.get_relationships("chapters", depth=2)
        issued = len(fk_adapter.statements)

        _, cached = await mapper.get_relationships("chapters", depth=2, refresh=True)

        assert not cached
        # books' keys are looked up again, not only those of chapters
        reloaded = fk_adapter.statements[issued:]
        assert "books" in {params[1] for _, params in reloaded}

    @pytest.mark.parametrize("depth", [0, 4, True])
    async def test_depth_bounds(self, mapper: RelationshipMapper, depth) -> None:
        with pytest.raises(ValidationError, match="Depth must be between 1 and 3"):
            await mapper.get_relationships("books", depth=depth)

    async def test_graph(self, mapper: RelationshipMapper) -> None:
        graph = await mapper.get_relationship_graph("chapters")
        assert graph["center"] == "chapters"
        assert graph["nodes"] == ["books", "chapters", "scenes"]
        assert {(e["from"], e["to"]) for e in graph["edges"]} == {
            ("chapters", "books"),
            ("scenes", "chapters"),
        }


class TestFindPath:
    """Shortest foreign-key path between two tables."""

    async def test_three_hops(self, mapper: RelationshipMapper) -> None:
        path = await mapper.find_path("scenes", "series")
        assert [(e.table, e.references_table) for e in path] == [
            ("scenes", "chapters"),
            ("chapters", "books"),
            ("books", "series"),
        ]

    async def test_follows_children(self, mapper: RelationshipMapper) -> None:
        path = await mapper.find_path("authors", "books")
        assert len(path) == 1
        assert path[0].table == "books"

    async def test_path_through_cycle(self, mapper: RelationshipMapper) -> None:
        path = await mapper.find_path("organizations", "authors")
        assert [(e.table, e.references_table) for e in path] == [
            ("organizations", "world_elements"),
            ("world_elements", "series"),
            ("series", "authors"),
        ]

    async def test_cycle_without_exit(self, mapper: RelationshipMapper) -> None:
        """A cycle that never reaches the target ends with no path."""
        assert await mapper.find_path("organizations", "genres", max_depth=5) is None

    async def test_too_far(self, mapper: RelationshipMapper) -> None:
        assert await mapper.find_path("scenes", "series", max_depth=2) is None

    async def test_same_table(self, mapper: RelationshipMapper) -> None:
        assert await mapper.find_path("books", "books") == []

    async def test_bad_max_depth(self, mapper: RelationshipMapper) -> None:
        with pytest.raises(ValidationError, match="max_depth"):
            await mapper.find_path("books", "authors", max_depth=9)

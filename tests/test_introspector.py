"""Tests for SchemaIntrospector against scripted information_schema rows."""

from db_admin.schema.introspector import SchemaIntrospector

from conftest import FakeAdapter


class TestColumns:
    """Column metadata from information_schema."""

    async def test_types_normalized(self) -> None:
        adapter = FakeAdapter()
        adapter.on(
            "ORDER BY ordinal_position",
            [
                {
                    "column_name": "id",
                    "data_type": "integer",
                    "udt_name": "int4",
                    "is_nullable": "NO",
                    "column_default": "nextval('authors_id_seq'::regclass)",
                    "ordinal_position": 1,
                },
                {
                    "column_name": "name",
                    "data_type": "character varying",
                    "udt_name": "varchar",
                    "is_nullable": "YES",
                    "character_maximum_length": 200,
                    "ordinal_position": 2,
                },
                {
                    "column_name": "created_at",
                    "data_type": "timestamp with time zone",
                    "is_nullable": "NO",
                    "ordinal_position": 3,
                },
            ],
        )
        columns = await SchemaIntrospector(adapter).get_columns("authors")

        assert [c.data_type for c in columns] == ["int", "varchar", "timestamptz"]
        assert not columns[0].is_nullable
        assert columns[1].max_length == 200
        _, params = adapter.statements[0]
        assert params == ["public", "authors"], "table name must be a bound parameter"

    async def test_column_names_skip_excluded(self) -> None:
        adapter = FakeAdapter()
        adapter.on(
            "SELECT table_name, column_name",
            [
                {"table_name": "authors", "column_name": "id"},
                {"table_name": "authors", "column_name": "name"},
                {"table_name": "schema_migrations", "column_name": "version"},
            ],
        )
        names = await SchemaIntrospector(adapter).get_column_names()
        assert names == {"authors": {"id", "name"}}


class TestTables:
    """Table listing and primary keys."""

    async def test_list_tables(self) -> None:
        adapter = FakeAdapter()
        adapter.on(
            "pg_total_relation_size",
            [
                {"name": "authors", "schema_name": "public", "table_type": "BASE TABLE",
                 "estimated_rows": 12, "size_bytes": 16384, "size": "16 kB"},
                {"name": "spatial_ref_sys", "schema_name": "public", "table_type": "BASE TABLE",
                 "estimated_rows": 0, "size_bytes": 0, "size": "0 bytes"},
            ],
        )
        tables = await SchemaIntrospector(adapter).list_tables(pattern="auth%")

        assert [t.name for t in tables] == ["authors"]
        sql, params = adapter.statements[0]
        assert "LIKE $2" in sql
        assert params == ["public", "auth%"]

    async def test_system_schemas(self) -> None:
        adapter = FakeAdapter()
        await SchemaIntrospector(adapter).list_tables(include_system_tables=True)
        assert "pg_catalog" in adapter.sql[0]

    async def test_table_schema_primary_key(self) -> None:
        adapter = FakeAdapter()
        adapter.on("ORDER BY ordinal_position", [
            {"column_name": "id", "data_type": "integer", "is_nullable": "NO"},
            {"column_name": "series_id", "data_type": "integer", "is_nullable": "YES"},
        ])
        adapter.on("tc.constraint_type IN ('PRIMARY KEY'", [
            {"constraint_name": "books_pkey", "constraint_type": "PRIMARY KEY",
             "column_name": "id", "references_table": None, "references_column": None},
            {"constraint_name": "books_series_id_fkey", "constraint_type": "FOREIGN KEY",
             "column_name": "series_id", "references_table": "series",
             "references_column": "id", "delete_rule": "CASCADE"},
        ])
        adapter.on("FROM pg_index ix", [
            {"index_name": "books_pkey", "columns": ["id"], "is_unique": True,
             "is_primary": True, "index_type": "btree"},
        ])

        schema = await SchemaIntrospector(adapter).get_table_schema("books")

        assert schema.primary_key == ["id"]
        fk = schema.constraints["books_series_id_fkey"]
        assert fk.references_table == "series"
        assert fk.references_columns == ["id"]
        assert fk.on_delete == "CASCADE"
        assert schema.indexes["books_pkey"].is_primary


class TestForeignKeys:
    """Foreign keys filtered by direction."""

    async def test_direction_filters(self) -> None:
        adapter = FakeAdapter()
        introspector = SchemaIntrospector(adapter)
        await introspector.get_parent_keys("books")
        await introspector.get_child_keys("books")

        parent_sql, child_sql = adapter.sql
        assert "AND tc.table_name = $2" in parent_sql
        assert "AND ccu.table_name = $2" in child_sql

"""Tests for the whitelist registry and operation-level access control."""

import pytest

from db_admin.errors import AccessDeniedError, ValidationError
from db_admin.security.access import AccessControl, Permission
from db_admin.whitelist import WhitelistEntry, WhitelistRegistry


class TestWhitelistEntry:
    """WhitelistEntry validates identifiers at construction time."""

    def test_rejects_uppercase_table(self) -> None:
        """Table names are restricted to lowercase letters and underscores."""
        with pytest.raises(ValueError):
            WhitelistEntry(table="Authors", columns=frozenset({"id"}))

    def test_rejects_empty_columns(self) -> None:
        """An entry without columns is meaningless."""
        with pytest.raises(ValueError):
            WhitelistEntry(table="authors", columns=frozenset())

    def test_rejects_column_with_digits(self) -> None:
        with pytest.raises(ValueError):
            WhitelistEntry(table="authors", columns=frozenset({"col1"}))

    def test_has_updated_at(self) -> None:
        entry = WhitelistEntry(table="authors", columns=frozenset({"id", "updated_at"}))
        assert entry.has_updated_at
        assert entry.has_column("id")
        assert not entry.has_column("bio")

    def test_entries_are_frozen(self) -> None:
        entry = WhitelistEntry(table="authors", columns=frozenset({"id"}))
        with pytest.raises(Exception):
            entry.read_only = True


class TestDefaultRegistry:
    """The built-in registry carries the expected flags."""

    def test_authors_not_deletable(self, registry: WhitelistRegistry) -> None:
        entry = registry.get("authors")
        assert entry is not None
        assert not entry.deletable
        assert entry.columns == {"id", "name", "bio", "created_at", "updated_at"}

    def test_soft_delete_tables_get_deleted_at(self, registry: WhitelistRegistry) -> None:
        """Soft-delete tables always whitelist the deleted_at column."""
        for table in ("books", "characters", "chapters"):
            entry = registry.get(table)
            assert entry.soft_delete, f"{table} should be soft-delete"
            assert entry.has_column("deleted_at"), f"{table} missing deleted_at"

    def test_genres_read_only(self, registry: WhitelistRegistry) -> None:
        assert registry.get("genres").read_only

    def test_restricted_tables_not_whitelisted(self, registry: WhitelistRegistry) -> None:
        for table in ("users", "auth_tokens", "system_config", "system_settings"):
            assert table not in registry, f"{table} must never be whitelisted"

    def test_tables_sorted(self, registry: WhitelistRegistry) -> None:
        assert registry.tables == sorted(registry.tables)

    def test_expected_columns(self, registry: WhitelistRegistry) -> None:
        expected = registry.expected_columns()
        assert expected["genres"] == {"id", "genre_name", "description", "parent_genre_id"}


class TestFromTables:
    """Building a registry from a plain mapping."""

    def test_flags_applied(self) -> None:
        registry = WhitelistRegistry.from_tables(
            {"notes": ["id", "body"], "tags": ["id", "label"]},
            read_only={"tags"},
            soft_delete={"notes"},
        )
        assert registry.get("notes").soft_delete
        assert "deleted_at" in registry.get("notes").columns
        assert registry.get("tags").read_only

    def test_restricted_overlap_rejected(self) -> None:
        """A table cannot be both whitelisted and restricted."""
        with pytest.raises(ValueError, match="Restricted tables"):
            WhitelistRegistry.from_tables({"users": ["id"]}, restricted={"users"})


class TestAccessControl:
    """Operation checks derived from the registry flags."""

    @pytest.fixture
    def access(self, registry: WhitelistRegistry) -> AccessControl:
        return AccessControl(registry)

    def test_read_allowed_on_read_only(self, access: AccessControl) -> None:
        access.validate_table_access("genres", "READ")

    def test_write_denied_on_read_only(self, access: AccessControl) -> None:
        with pytest.raises(AccessDeniedError, match="read-only"):
            access.validate_table_access("genres", "UPDATE")

    def test_delete_denied_on_not_deletable(self, access: AccessControl) -> None:
        with pytest.raises(AccessDeniedError, match="Delete operations are not permitted"):
            access.validate_table_access("authors", "DELETE")

    def test_restricted_denied_for_read(self, access: AccessControl) -> None:
        with pytest.raises(AccessDeniedError, match="restricted") as excinfo:
            access.validate_table_access("users", "READ")
        assert excinfo.value.code == "DB_403_ACCESS_DENIED"

    def test_admin_only_denied(self, access: AccessControl) -> None:
        with pytest.raises(AccessDeniedError, match="administrator"):
            access.validate_table_access("system_settings", "SELECT")

    def test_unknown_operation(self, access: AccessControl) -> None:
        with pytest.raises(ValidationError, match="Unknown operation type"):
            access.validate_table_access("authors", "TRUNCATE")

    def test_operation_case_insensitive(self, access: AccessControl) -> None:
        assert access.map_operation_to_permission("batch_delete") is Permission.DELETE

    def test_allowed_operations_summary(self, access: AccessControl) -> None:
        allowed = access.get_allowed_operations("books")
        assert allowed.can_read and allowed.can_write and allowed.can_delete
        assert not allowed.is_restricted

        restricted = access.get_allowed_operations("auth_tokens")
        assert restricted.is_restricted
        assert not restricted.can_read

    def test_tables_with_permission(self, access: AccessControl) -> None:
        deletable = access.get_tables_with_permission("DELETE")
        assert "books" in deletable
        assert "authors" not in deletable
        assert "genres" not in deletable
        assert "genres" in access.get_tables_with_permission(Permission.READ)

"""Whitelist registry: the fixed set of tables and columns the admin layer may touch.

The registry is pure data. ``WhitelistEntry`` describes one table and the
registry maps table names to entries plus the restricted and admin-only
table lists. Nothing outside the registry is reachable from any tool.

Usage:
    from db_admin.whitelist import WhitelistRegistry

    registry = WhitelistRegistry.default()
    entry = registry.get("books")
    entry.soft_delete   # True
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

IDENTIFIER_PATTERN = re.compile(r"[a-z_]+")

SOFT_DELETE_COLUMN = "deleted_at"
UPDATED_AT_COLUMN = "updated_at"


class WhitelistEntry(BaseModel):
    """One reachable table and its capability flags.

    Example:
        >>> entry = WhitelistEntry(table="authors", columns={"id", "name"})
        >>> entry.read_only
        False
    """

    model_config = ConfigDict(frozen=True)

    table: str
    columns: frozenset[str]
    read_only: bool = False
    soft_delete: bool = False
    deletable: bool = True

    @field_validator("table")
    @classmethod
    def _check_table(cls, value: str) -> str:
        if not IDENTIFIER_PATTERN.fullmatch(value):
            raise ValueError(f"Invalid table name format: {value}")
        return value

    @field_validator("columns")
    @classmethod
    def _check_columns(cls, value: frozenset[str]) -> frozenset[str]:
        if not value:
            raise ValueError("Whitelist entry needs at least one column")
        for column in value:
            if not IDENTIFIER_PATTERN.fullmatch(column):
                raise ValueError(f"Invalid column name format: {column}")
        return value

    def has_column(self, column: str) -> bool:
        return column in self.columns

    @property
    def has_updated_at(self) -> bool:
        return UPDATED_AT_COLUMN in self.columns


class WhitelistRegistry(BaseModel):
    """Immutable mapping of table name to ``WhitelistEntry``."""

    model_config = ConfigDict(frozen=True)

    entries: dict[str, WhitelistEntry] = Field(default_factory=dict)
    restricted: frozenset[str] = frozenset()
    admin_only: frozenset[str] = frozenset()

    @classmethod
    def from_tables(
        cls,
        tables: dict[str, list[str]],
        *,
        read_only: set[str] | frozenset[str] = frozenset(),
        soft_delete: set[str] | frozenset[str] = frozenset(),
        not_deletable: set[str] | frozenset[str] = frozenset(),
        restricted: set[str] | frozenset[str] = frozenset(),
        admin_only: set[str] | frozenset[str] = frozenset(),
    ) -> "WhitelistRegistry":
        """Build a registry from a ``{table: [columns]}`` mapping.

        Soft-delete tables always get the ``deleted_at`` column.
        """
        entries: dict[str, WhitelistEntry] = {}
        for table, columns in tables.items():
            column_set = set(columns)
            if table in soft_delete:
                column_set.add(SOFT_DELETE_COLUMN)
            entries[table] = WhitelistEntry(
                table=table,
                columns=frozenset(column_set),
                read_only=table in read_only,
                soft_delete=table in soft_delete,
                deletable=table not in not_deletable,
            )

        overlap = set(entries) & (set(restricted) | set(admin_only))
        if overlap:
            raise ValueError(
                f"Restricted tables cannot be whitelisted: {', '.join(sorted(overlap))}"
            )

        return cls(
            entries=entries,
            restricted=frozenset(restricted),
            admin_only=frozenset(admin_only),
        )

    @classmethod
    def default(cls) -> "WhitelistRegistry":
        """The built-in registry for the writing-assistant schema."""
        return cls.from_tables(
            DEFAULT_TABLES,
            read_only=DEFAULT_READ_ONLY,
            soft_delete=DEFAULT_SOFT_DELETE,
            not_deletable=DEFAULT_NOT_DELETABLE,
            restricted=DEFAULT_RESTRICTED,
            admin_only=DEFAULT_ADMIN_ONLY,
        )

    def get(self, table: str) -> WhitelistEntry | None:
        return self.entries.get(table)

    def __contains__(self, table: object) -> bool:
        return table in self.entries

    @property
    def tables(self) -> list[str]:
        """Sorted list of whitelisted table names."""
        return sorted(self.entries)

    def expected_columns(self) -> dict[str, set[str]]:
        """Whitelisted columns per table, for comparison with a live database."""
        return {name: set(entry.columns) for name, entry in self.entries.items()}


# ============================================================================
# Built-in registry
# ============================================================================

_TIMESTAMPS = ["created_at", "updated_at"]

DEFAULT_TABLES: dict[str, list[str]] = {
    # Core entities
    "authors": ["id", "name", "bio", *_TIMESTAMPS],
    "series": ["id", "title", "author_id", "description", "start_year", "status", *_TIMESTAMPS],
    "books": [
        "id", "series_id", "title", "author_id", "description", "publication_year",
        "status", "book_order", *_TIMESTAMPS,
    ],
    "chapters": [
        "id", "book_id", "chapter_number", "title", "content", "word_count", "status",
        *_TIMESTAMPS,
    ],
    "scenes": [
        "id", "chapter_id", "scene_number", "title", "content", "word_count",
        "pov_character_id", "location_id", *_TIMESTAMPS,
    ],
    # Characters
    "characters": [
        "id", "series_id", "name", "role", "description", "appearance", "personality",
        "backstory", "goals", *_TIMESTAMPS,
    ],
    "character_arcs": [
        "id", "character_id", "book_id", "arc_type", "description", "starting_state",
        "ending_state", *_TIMESTAMPS,
    ],
    "character_relationships": [
        "id", "character_id", "related_character_id", "relationship_type",
        "description", "status", *_TIMESTAMPS,
    ],
    "character_timeline_events": [
        "id", "character_id", "event_date", "event_type", "description", "chapter_id",
        *_TIMESTAMPS,
    ],
    "character_knowledge": [
        "id", "character_id", "knowledge_type", "description", "acquired_chapter_id",
        *_TIMESTAMPS,
    ],
    # World building
    "locations": [
        "id", "series_id", "name", "type", "description", "parent_location_id",
        *_TIMESTAMPS,
    ],
    "world_elements": ["id", "series_id", "element_type", "name", "description", *_TIMESTAMPS],
    "organizations": ["id", "series_id", "name", "type", "description", *_TIMESTAMPS],
    # Plot
    "plot_threads": [
        "id", "series_id", "book_id", "thread_type", "title", "description", "status",
        "resolution", *_TIMESTAMPS,
    ],
    "tropes": ["id", "trope_name", "category", "description", *_TIMESTAMPS],
    # Lookup tables
    "genres": ["id", "genre_name", "description", "parent_genre_id"],
    "lookup_values": ["id", "lookup_type", "value", "display_order", "is_active"],
    # Junction tables
    "series_genres": ["series_id", "genre_id"],
    "book_genres": ["book_id", "genre_id"],
    "book_tropes": ["book_id", "trope_id", "prominence"],
    "character_scenes": ["character_id", "scene_id", "role"],
    # Sessions and exports
    "writing_sessions": [
        "id", "book_id", "chapter_id", "session_date", "words_written", "notes",
        "created_at",
    ],
    "exports": ["id", "book_id", "export_format", "file_path", "status", *_TIMESTAMPS],
    # Audit and bookkeeping
    "audit_logs": [
        "id", "timestamp", "operation", "table_name", "record_id", "user_id",
        "client_info", "changes", "success", "error_message", "execution_time_ms",
        "query_hash",
    ],
    "migrations": ["id", "filename", "run_on"],
}

DEFAULT_SOFT_DELETE = frozenset({
    "books",
    "chapters",
    "scenes",
    "characters",
    "locations",
    "world_elements",
    "organizations",
    "plot_threads",
})

DEFAULT_READ_ONLY = frozenset({"genres", "lookup_values", "audit_logs", "migrations"})

DEFAULT_NOT_DELETABLE = frozenset({"authors", "series", "tropes"})

DEFAULT_RESTRICTED = frozenset({"users", "auth_tokens", "system_config"})

DEFAULT_ADMIN_ONLY = frozenset({"system_settings"})

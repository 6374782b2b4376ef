"""Database client protocol definition.

Defines the ``DatabaseClient`` and ``Transaction`` Protocols the admin
layer executes SQL through. All methods are ``async def``.

SQL is passed as text with ``$n`` positional placeholders (as produced by
``db_admin.query.builder``) plus a list of parameter values. Adapters own
the connection pool; callers never create connections themselves.

Usage:
    from db_admin.adapters.base import DatabaseClient

    async def count_authors(client: DatabaseClient) -> int:
        return await client.fetch_value("SELECT COUNT(*) FROM authors")

    async def move_books(client: DatabaseClient) -> None:
        async with client.transaction() as tx:
            await tx.fetch("UPDATE books SET series_id = $1 WHERE id = $2 RETURNING *", [3, 7])
"""

from collections.abc import AsyncIterator, Sequence
from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol


class Transaction(Protocol):
    """Statement executor bound to one open transaction.

    Leaving the ``transaction()`` block normally commits; leaving it with
    an exception rolls back.
    """

    async def fetch(self, sql: str, params: Sequence[Any] | None = None) -> list[dict]:
        """Run a statement and return all result rows as dicts."""
        ...

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> int:
        """Run a statement and return the affected row count."""
        ...


class DatabaseClient(Protocol):
    """Database client interface the admin layer depends on.

    Every call acquires one pooled connection for its duration and
    releases it on every exit path.
    """

    @property
    def database_name(self) -> str:
        """Name of the connected database."""
        ...

    async def fetch(self, sql: str, params: Sequence[Any] | None = None) -> list[dict]:
        """Run a query and return rows.

        Args:
            sql: SQL text with ``$1..$n`` placeholders.
            params: Positional parameter values.

        Returns:
            List of dicts, one per row. Empty list if no rows.

        Example:
            rows = await client.fetch(
                "SELECT * FROM authors WHERE name LIKE $1",
                ["Jane%"],
            )
        """
        ...

    async def fetch_one(self, sql: str, params: Sequence[Any] | None = None) -> dict | None:
        """Run a query and return the first row, or ``None``."""
        ...

    async def fetch_value(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        """Run a query and return the first column of the first row."""
        ...

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> int:
        """Run a statement in its own transaction and return the row count.

        Example:
            await client.execute("DROP TABLE IF EXISTS scratch CASCADE")
        """
        ...

    def stream(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        chunk_size: int = 500,
    ) -> AsyncIterator[dict]:
        """Iterate over a large result set without buffering it.

        Example:
            async for row in client.stream("SELECT * FROM scenes"):
                write(row)
        """
        ...

    def transaction(self) -> AbstractAsyncContextManager[Transaction]:
        """Open a transaction holding one pooled connection until exit."""
        ...

    async def health_check(self, timeout: float = 5.0) -> bool:
        """Return ``True`` if the database answers within ``timeout`` seconds."""
        ...

    async def close(self) -> None:
        """Dispose of the connection pool."""
        ...

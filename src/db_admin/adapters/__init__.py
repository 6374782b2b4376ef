"""Database adapters package.

Provides the ``DatabaseClient`` and ``Transaction`` Protocols and the
async PostgreSQL implementation every component shares.

Usage:
    from db_admin.adapters import DatabaseClient, AsyncPostgresAdapter
"""

from db_admin.adapters.base import DatabaseClient, Transaction
from db_admin.adapters.postgres import AsyncPostgresAdapter

__all__ = [
    "DatabaseClient",
    "Transaction",
    "AsyncPostgresAdapter",
]

"""db-admin: whitelist-gated database administration over a tool-call server.

Exposes CRUD, batch, schema and backup operations on a fixed set of
PostgreSQL tables. Every table and column is checked against a whitelist
registry, every value is a bound parameter, and every failure is returned
as a structured ``{code, message, data}`` error.

Usage:
    from db_admin import get_settings, build_services, create_server

    services = build_services(get_settings())
    create_server(services).run(transport="stdio")
"""

__version__ = "0.1.0"

# Adapters
from db_admin.adapters.base import DatabaseClient
from db_admin.adapters.postgres import AsyncPostgresAdapter

# Config
from db_admin.config import DatabaseConfig, DatabaseProfile, Settings, get_settings, load_db_config

# Errors
from db_admin.errors import (
    AccessDeniedError,
    AdminError,
    BackupIntegrityError,
    DatabaseError,
    DatabaseTimeoutError,
    IntegrityError,
    NotFoundError,
    TransactionError,
    ValidationError,
    classify_db_error,
)

# Factory
from db_admin.factory import AdminServices, ProfileNotFoundError, build_services, resolve_url

# Core components
from db_admin.whitelist import WhitelistEntry, WhitelistRegistry
from db_admin.security import AccessControl, SecurityValidator
from db_admin.schema import RelationshipMapper, SchemaCache, SchemaIntrospector
from db_admin.batch import BatchEngine, BatchResult
from db_admin.backup import BackupManager, BackupManifest
from db_admin.audit import AuditEntry, AuditLogger

# Server
from db_admin.handlers import AdminHandlers
from db_admin.server import create_server

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncPostgresAdapter",
    # Config
    "Settings",
    "get_settings",
    "load_db_config",
    "DatabaseProfile",
    "DatabaseConfig",
    # Errors
    "AdminError",
    "ValidationError",
    "AccessDeniedError",
    "NotFoundError",
    "IntegrityError",
    "BackupIntegrityError",
    "TransactionError",
    "DatabaseError",
    "DatabaseTimeoutError",
    "classify_db_error",
    # Factory
    "AdminServices",
    "ProfileNotFoundError",
    "build_services",
    "resolve_url",
    # Core components
    "WhitelistEntry",
    "WhitelistRegistry",
    "SecurityValidator",
    "AccessControl",
    "SchemaCache",
    "SchemaIntrospector",
    "RelationshipMapper",
    "BatchEngine",
    "BatchResult",
    "BackupManager",
    "BackupManifest",
    "AuditEntry",
    "AuditLogger",
    # Server
    "AdminHandlers",
    "create_server",
]

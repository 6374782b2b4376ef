"""Service wiring.

Resolves the connection URL from settings (named db.toml profile or a
direct ``DATABASE_URL``) and builds every component around a single
pooled adapter and a single schema cache.

Usage:
    from db_admin.config import get_settings
    from db_admin.factory import build_services

    services = build_services(get_settings())
    try:
        ...
    finally:
        await services.close()
"""

import logging
from urllib.parse import quote

from db_admin.adapters.postgres import AsyncPostgresAdapter
from db_admin.audit import AuditLogger
from db_admin.backup.dump import PgDumpRunner
from db_admin.backup.manager import BackupManager
from db_admin.backup.storage import StorageManager
from db_admin.batch import BatchEngine
from db_admin.config.loader import load_db_config, load_whitelist
from db_admin.config.models import DatabaseProfile
from db_admin.config.settings import Settings
from db_admin.schema.cache import SchemaCache
from db_admin.schema.comparator import compare_whitelist
from db_admin.schema.introspector import SchemaIntrospector
from db_admin.schema.models import SchemaValidationResult
from db_admin.schema.relationships import RelationshipMapper
from db_admin.schema.types import load_column_types
from db_admin.security.access import AccessControl
from db_admin.security.validator import SecurityValidator
from db_admin.whitelist import WhitelistRegistry

logger = logging.getLogger(__name__)


class ProfileNotFoundError(Exception):
    """Raised when no database connection is configured."""

    pass


# ============================================================================
# Connection URL
# ============================================================================


def resolve_profile_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def resolve_url(settings: Settings) -> str:
    """Pick the connection URL for ``settings``.

    Priority:
    1. ``db_profile`` looked up in ``db_config_file``
    2. ``database_url``
    3. Raise ProfileNotFoundError

    Raises:
        ProfileNotFoundError: If the profile is unknown or nothing is configured
    """
    if settings.db_profile:
        try:
            config = load_db_config(settings.db_config_file)
        except FileNotFoundError as e:
            raise ProfileNotFoundError(str(e)) from e

        if settings.db_profile not in config.profiles:
            available = ", ".join(config.profiles.keys()) or "(none)"
            raise ProfileNotFoundError(
                f"Profile '{settings.db_profile}' not found in {settings.db_config_file}.\n"
                f"Available profiles: {available}"
            )
        return resolve_profile_url(config.profiles[settings.db_profile])

    if settings.database_url:
        return settings.database_url

    raise ProfileNotFoundError(
        "No database configuration found.\n"
        "Either:\n"
        "  1. Set DB_ADMIN_PROFILE=<name> with profiles in db.toml\n"
        "  2. Set DATABASE_URL in the environment or .env"
    )


def load_registry(settings: Settings) -> WhitelistRegistry:
    """Whitelist from ``settings.whitelist_file``, else the built-in registry."""
    if settings.whitelist_file is not None:
        registry = load_whitelist(settings.whitelist_file)
        logger.info(
            "Loaded whitelist from %s (%d tables)", settings.whitelist_file, len(registry.tables)
        )
        return registry
    return WhitelistRegistry.default()


# ============================================================================
# Services
# ============================================================================


class AdminServices:
    """Every component of the admin layer, sharing one pool and one cache."""

    def __init__(
        self,
        settings: Settings,
        adapter: AsyncPostgresAdapter,
        registry: WhitelistRegistry,
        cache: SchemaCache,
        backups: BackupManager | None = None,
    ) -> None:
        self.settings = settings
        self.adapter = adapter
        self.registry = registry
        self.cache = cache
        self.validator = SecurityValidator(registry)
        self.access = AccessControl(registry)
        self.introspector = SchemaIntrospector(adapter)
        self.relationships = RelationshipMapper(self.introspector, cache, registry)
        self.audit = AuditLogger(
            adapter, enabled=settings.audit_enabled, user_id=settings.audit_user
        )
        self.batch = BatchEngine(
            adapter,
            self.validator,
            self.access,
            column_types=lambda table: load_column_types(cache, self.introspector, table),
        )
        self.backups = backups or BackupManager(
            adapter=adapter,
            storage=StorageManager(settings.backup_dir),
            runner=PgDumpRunner(
                adapter.libpq_url,
                pg_dump_path=settings.pg_dump_path,
                psql_path=settings.psql_path,
                compression_level=settings.compression_level,
                timeout=settings.backup_timeout_seconds,
            ),
            validator=self.validator,
            access=self.access,
            introspector=self.introspector,
            cache=cache,
            compress_default=settings.backup_compression,
            health_check_timeout=settings.health_check_timeout,
            retention_days=settings.backup_retention_days,
            large_backup_threshold=settings.large_backup_threshold,
        )

    async def verify_whitelist(self) -> SchemaValidationResult:
        """Compare the registry with the live database."""
        actual = await self.introspector.get_column_names()
        return compare_whitelist(actual, self.registry)

    async def close(self) -> None:
        await self.adapter.close()


def build_services(settings: Settings) -> AdminServices:
    """Wire all components from ``settings``.

    Raises:
        ProfileNotFoundError: If no connection is configured
        FileNotFoundError: If the whitelist file is missing
        ValueError: If the whitelist file is malformed
    """
    url = resolve_url(settings)
    registry = load_registry(settings)

    adapter = AsyncPostgresAdapter(
        url,
        statement_timeout_ms=settings.statement_timeout_ms,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
    )
    cache = SchemaCache(ttl=settings.cache_ttl_seconds)
    logger.info(
        "Services ready for database '%s' (%d whitelisted tables)",
        adapter.database_name, len(registry.tables),
    )
    return AdminServices(settings, adapter, registry, cache)

"""Environment-driven settings for the admin server.

Every field accepts a ``DB_ADMIN_``-prefixed variable; the common
unprefixed names (``DATABASE_URL``, ``BACKUP_DIR``, ...) are accepted as
fallbacks. A ``.env`` file in the working directory is read as well.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Connection selection:
    - ``db_profile``: named profile from ``db_config_file`` (db.toml)
    - ``database_url``: direct connection string, used when no profile is set
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    # Connection
    database_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DB_ADMIN_DATABASE_URL", "DATABASE_URL"),
    )
    db_profile: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DB_ADMIN_PROFILE", "DB_PROFILE"),
    )
    db_config_file: Path = Field(
        default=Path("db.toml"),
        validation_alias=AliasChoices("DB_ADMIN_CONFIG"),
    )
    whitelist_file: Path | None = Field(
        default=None,
        validation_alias=AliasChoices("DB_ADMIN_WHITELIST"),
    )

    # Pool: 2..20 connections by default
    pool_size: int = Field(default=2, ge=1, validation_alias=AliasChoices("DB_ADMIN_POOL_SIZE"))
    max_overflow: int = Field(
        default=18, ge=0, validation_alias=AliasChoices("DB_ADMIN_MAX_OVERFLOW")
    )
    statement_timeout_ms: int = Field(
        default=30000, ge=0, validation_alias=AliasChoices("DB_ADMIN_STATEMENT_TIMEOUT_MS")
    )
    health_check_timeout: float = Field(
        default=5.0, gt=0, validation_alias=AliasChoices("DB_ADMIN_HEALTH_CHECK_TIMEOUT")
    )

    # Queries and cache
    default_query_limit: int = Field(
        default=100, ge=1, le=1000, validation_alias=AliasChoices("DB_ADMIN_DEFAULT_LIMIT")
    )
    cache_ttl_seconds: float = Field(
        default=300.0, gt=0, validation_alias=AliasChoices("DB_ADMIN_CACHE_TTL")
    )

    # Backups
    backup_dir: Path = Field(
        default=Path("backups"),
        validation_alias=AliasChoices("DB_ADMIN_BACKUP_DIR", "BACKUP_DIR"),
    )
    backup_retention_days: int = Field(
        default=30,
        ge=1,
        validation_alias=AliasChoices("DB_ADMIN_BACKUP_RETENTION_DAYS", "BACKUP_RETENTION_DAYS"),
    )
    backup_compression: bool = Field(
        default=True,
        validation_alias=AliasChoices("DB_ADMIN_BACKUP_COMPRESSION", "BACKUP_COMPRESSION"),
    )
    compression_level: int = Field(
        default=9, ge=1, le=9, validation_alias=AliasChoices("DB_ADMIN_COMPRESSION_LEVEL")
    )
    backup_timeout_seconds: float = Field(
        default=600.0, gt=0, validation_alias=AliasChoices("DB_ADMIN_BACKUP_TIMEOUT")
    )
    large_backup_threshold: int = Field(
        default=10 * 1024 * 1024,
        validation_alias=AliasChoices("DB_ADMIN_LARGE_BACKUP_THRESHOLD"),
    )
    pg_dump_path: str = Field(
        default="pg_dump", validation_alias=AliasChoices("DB_ADMIN_PG_DUMP_PATH", "PG_DUMP_PATH")
    )
    psql_path: str = Field(
        default="psql", validation_alias=AliasChoices("DB_ADMIN_PSQL_PATH", "PSQL_PATH")
    )

    # Audit trail
    audit_enabled: bool = Field(
        default=True, validation_alias=AliasChoices("DB_ADMIN_AUDIT_ENABLED", "AUDIT_ENABLED")
    )
    audit_user: str | None = Field(
        default=None, validation_alias=AliasChoices("DB_ADMIN_AUDIT_USER")
    )

    log_level: str = Field(
        default="INFO", validation_alias=AliasChoices("DB_ADMIN_LOG_LEVEL", "LOG_LEVEL")
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

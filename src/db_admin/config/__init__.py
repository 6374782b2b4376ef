"""Configuration: environment settings, db.toml profiles and whitelist files."""

from db_admin.config.loader import load_db_config, load_whitelist
from db_admin.config.models import DatabaseConfig, DatabaseProfile
from db_admin.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "load_db_config",
    "load_whitelist",
    "DatabaseConfig",
    "DatabaseProfile",
]

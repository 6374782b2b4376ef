"""Whitelist validation and operation-level access control."""

from db_admin.security.access import AccessControl, AllowedOperations, Permission
from db_admin.security.validator import SecurityValidator

__all__ = [
    "AccessControl",
    "AllowedOperations",
    "Permission",
    "SecurityValidator",
]

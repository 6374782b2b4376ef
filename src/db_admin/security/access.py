"""Operation-level access control derived from the whitelist registry.

Whitelisting decides whether a table is *reachable*; access control
decides whether a given operation may run on it. Both gates must pass
for any write path.
"""

import logging
from enum import Enum

from pydantic import BaseModel

from db_admin.errors import AccessDeniedError, ValidationError
from db_admin.whitelist import WhitelistRegistry

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    READ = "READ"
    WRITE = "WRITE"
    DELETE = "DELETE"


OPERATION_PERMISSIONS: dict[str, Permission] = {
    "READ": Permission.READ,
    "QUERY": Permission.READ,
    "SELECT": Permission.READ,
    "SCHEMA": Permission.READ,
    "EXPORT": Permission.READ,
    "BACKUP": Permission.READ,
    "INSERT": Permission.WRITE,
    "UPDATE": Permission.WRITE,
    "WRITE": Permission.WRITE,
    "BATCH_INSERT": Permission.WRITE,
    "BATCH_UPDATE": Permission.WRITE,
    "IMPORT": Permission.WRITE,
    "RESTORE": Permission.WRITE,
    "DELETE": Permission.DELETE,
    "BATCH_DELETE": Permission.DELETE,
}


class AllowedOperations(BaseModel):
    """Capability summary for one table."""

    can_read: bool
    can_write: bool
    can_delete: bool
    is_restricted: bool
    is_admin_only: bool = False


class AccessControl:
    """Checks operations against per-table capability flags.

    Example:
        >>> access = AccessControl(WhitelistRegistry.default())
        >>> access.validate_table_access("genres", "UPDATE")
        Traceback (most recent call last):
        ...
        db_admin.errors.AccessDeniedError: Access Denied: Cannot perform UPDATE on table 'genres'. ...
    """

    def __init__(self, registry: WhitelistRegistry) -> None:
        self.registry = registry

    def map_operation_to_permission(self, operation: str) -> Permission:
        try:
            return OPERATION_PERMISSIONS[operation.upper()]
        except KeyError:
            raise ValidationError(f"Unknown operation type: {operation}") from None

    def get_allowed_operations(self, table: str) -> AllowedOperations:
        is_restricted = table in self.registry.restricted
        is_admin_only = table in self.registry.admin_only
        entry = self.registry.get(table)

        if entry is None or is_restricted or is_admin_only:
            return AllowedOperations(
                can_read=False,
                can_write=False,
                can_delete=False,
                is_restricted=is_restricted,
                is_admin_only=is_admin_only,
            )

        return AllowedOperations(
            can_read=True,
            can_write=not entry.read_only,
            can_delete=not entry.read_only and entry.deletable,
            is_restricted=False,
            is_admin_only=False,
        )

    def validate_table_access(self, table: str, operation: str) -> None:
        """Raise ``AccessDeniedError`` unless ``operation`` is allowed on ``table``."""
        permission = self.map_operation_to_permission(operation)
        allowed = self.get_allowed_operations(table)

        reason: str | None = None
        if allowed.is_restricted:
            reason = "Table is restricted"
        elif allowed.is_admin_only:
            reason = "Table requires administrator access"
        elif table not in self.registry:
            reason = "Table is not accessible"
        elif permission is Permission.READ and not allowed.can_read:
            reason = "Read access is not permitted"
        elif permission is Permission.WRITE and not allowed.can_write:
            reason = "Table is read-only"
        elif permission is Permission.DELETE and not allowed.can_delete:
            reason = "Delete operations are not permitted on this table"

        if reason is not None:
            logger.warning("Access denied: %s on %s (%s)", operation.upper(), table, reason)
            raise AccessDeniedError(
                f"Access Denied: Cannot perform {operation.upper()} on table '{table}'. {reason}",
                data={"table": table, "operation": operation.upper(), "permission": permission.value},
            )

    def get_tables_with_permission(self, permission: Permission | str) -> list[str]:
        """List whitelisted tables that grant ``permission``."""
        permission = Permission(permission.upper() if isinstance(permission, str) else permission)
        tables: list[str] = []
        for table in self.registry.tables:
            allowed = self.get_allowed_operations(table)
            granted = {
                Permission.READ: allowed.can_read,
                Permission.WRITE: allowed.can_write,
                Permission.DELETE: allowed.can_delete,
            }[permission]
            if granted:
                tables.append(table)
        return tables

"""Tool handlers: the operations exposed over the tool-call transport.

Every public handler method returns either a success payload or
``{"error": {"code", "message", "data"?}}``; none of them raise.

Usage:
    from db_admin.handlers import AdminHandlers

    handlers = AdminHandlers(services)
    result = await handlers.database.query_records("authors", where={"name": {"$like": "Jane%"}})
"""

from db_admin.factory import AdminServices
from db_admin.handlers.audit import AuditHandlers
from db_admin.handlers.backup import BackupHandlers
from db_admin.handlers.base import INTERNAL_ERROR_CODE, ToolResult, error_payload, tool_handler
from db_admin.handlers.batch import BatchHandlers
from db_admin.handlers.database import DatabaseHandlers
from db_admin.handlers.schema import SchemaHandlers


class AdminHandlers:
    """All handler groups over one set of services."""

    def __init__(self, services: AdminServices) -> None:
        self.services = services
        self.database = DatabaseHandlers(services)
        self.batch = BatchHandlers(services)
        self.schema = SchemaHandlers(services)
        self.backup = BackupHandlers(services)
        self.audit = AuditHandlers(services)


__all__ = [
    "AdminHandlers",
    "AuditHandlers",
    "BackupHandlers",
    "BatchHandlers",
    "DatabaseHandlers",
    "SchemaHandlers",
    "INTERNAL_ERROR_CODE",
    "ToolResult",
    "error_payload",
    "tool_handler",
]

"""Audit tools: browse the audit trail and summarize recent activity.

Both tools read ``audit_logs`` and are gated like any other read: the
table must be whitelisted and readable.
"""

from typing import Any

from db_admin.audit import AUDIT_TABLE, AuditFilters
from db_admin.factory import AdminServices
from db_admin.handlers.base import ToolResult, tool_handler


class AuditHandlers:
    def __init__(self, services: AdminServices) -> None:
        self.log = services.audit
        self.validator = services.validator
        self.access = services.access
        self.default_limit = services.settings.default_query_limit

    def _readable(self) -> None:
        self.validator.validate_table(AUDIT_TABLE)
        self.access.validate_table_access(AUDIT_TABLE, "READ")

    @tool_handler
    async def query_audit_logs(
        self,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> ToolResult:
        """Audit entries matching ``filters``, newest first.

        Filter keys: ``start_date``, ``end_date`` (ISO 8601), ``table``,
        ``operation``, ``user_id``, ``success``.
        """
        self._readable()
        parsed = AuditFilters.parse(filters)
        page = self.validator.validate_pagination(
            self.default_limit if limit is None else limit, offset
        )
        logs = await self.log.query(parsed, page.limit, page.offset)
        return {
            "count": len(logs),
            "limit": page.limit,
            "offset": page.offset,
            "filters": parsed.model_dump(mode="json", exclude_none=True),
            "logs": logs,
        }

    @tool_handler
    async def get_audit_summary(self, days: int = 7, table: str | None = None) -> ToolResult:
        """Operation totals, success rate and timings for the last ``days`` days."""
        self._readable()
        return await self.log.summary(days, table)

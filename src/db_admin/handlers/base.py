"""Error boundary shared by every tool handler.

Handlers raise ``AdminError`` subclasses (or let SQLAlchemy errors
propagate); ``tool_handler`` turns them into the ``{"error": {...}}``
payload of the tool-call protocol so no driver exception reaches the
caller. Record and batch tools are audited here as well, once the
outcome is known.
"""

import functools
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from db_admin.audit import TOOL_OPERATIONS
from db_admin.errors import AdminError, classify_db_error

logger = logging.getLogger(__name__)

INTERNAL_ERROR_CODE = "DB_500_INTERNAL_ERROR"

ToolResult = dict[str, Any]


def error_payload(error: AdminError) -> ToolResult:
    return {"error": error.to_dict()}


async def _guarded(func: Callable[..., Awaitable[ToolResult]], args: tuple, kwargs: dict) -> ToolResult:
    try:
        return await func(*args, **kwargs)
    except AdminError as e:
        logger.info("%s failed: %s %s", func.__name__, e.code, e.message)
        return error_payload(e)
    except SQLAlchemyError as e:
        error = classify_db_error(e)
        logger.warning("%s failed: %s %s", func.__name__, error.code, error.message)
        return error_payload(error)
    except Exception as e:
        logger.exception("Unexpected error in %s", func.__name__)
        return {
            "error": {
                "code": INTERNAL_ERROR_CODE,
                "message": f"Internal error while running {func.__name__}",
                "data": {"type": type(e).__name__},
            }
        }


def tool_handler(func: Callable[..., Awaitable[ToolResult]]) -> Callable[..., Awaitable[ToolResult]]:
    """Wrap an async handler so every failure becomes a structured error.

    - ``AdminError``: returned as is
    - ``SQLAlchemyError``: classified by SQLSTATE via ``classify_db_error``
    - anything else: logged with traceback, returned as
      ``DB_500_INTERNAL_ERROR`` carrying only the exception type

    When the handler's owner has an ``audit`` logger and the tool is a
    record or batch operation, the call is audited with its outcome.

    Example:
        @tool_handler
        async def list_tables(self) -> dict:
            ...
    """
    audited = func.__name__ in TOOL_OPERATIONS
    signature = inspect.signature(func)

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> ToolResult:
        start = time.monotonic()
        result = await _guarded(func, args, kwargs)

        audit = getattr(args[0], "audit", None) if audited and args else None
        if audit is not None:
            try:
                arguments = dict(signature.bind(*args, **kwargs).arguments)
            except TypeError:
                # Already reported as an internal error
                arguments = {}
            elapsed_ms = int((time.monotonic() - start) * 1000)
            await audit.record_call(func.__name__, arguments, result, elapsed_ms)
        return result

    return wrapper

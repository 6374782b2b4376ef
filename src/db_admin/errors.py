"""Error taxonomy for the admin layer.

Every failure that reaches a tool caller is one of the ``AdminError``
subclasses below, serialized by ``AdminError.to_dict()`` into the
``{"code", "message", "data"}`` shape of the tool-call protocol.

Database driver errors are never surfaced directly: ``classify_db_error``
walks the exception chain for a PostgreSQL SQLSTATE and translates it.

Usage:
    from db_admin.errors import ValidationError, classify_db_error

    try:
        rows = await adapter.fetch(query.sql, query.params)
    except SQLAlchemyError as e:
        raise classify_db_error(e) from e
"""

from typing import Any


class AdminError(Exception):
    """Base class for all structured admin errors."""

    code = "DB_500_INTERNAL_ERROR"

    def __init__(self, message: str, *, data: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the ``{code, message, data?}`` error payload."""
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data:
            payload["data"] = self.data
        return payload


class ValidationError(AdminError):
    """Malformed or non-whitelisted input, raised before touching the DB."""

    code = "DB_400_VALIDATION_ERROR"


class AccessDeniedError(AdminError):
    """Table is reachable but the operation is forbidden."""

    code = "DB_403_ACCESS_DENIED"


class NotFoundError(AdminError):
    """Lookup target (table, backup file, row) is absent."""

    code = "DB_404_NOT_FOUND"


class IntegrityError(AdminError):
    """Unique, foreign-key, not-null or check constraint violation."""

    code = "DB_409_INTEGRITY_VIOLATION"


class BackupIntegrityError(AdminError):
    """Checksum mismatch, missing manifest or corrupt archive."""

    code = "DB_422_BACKUP_INTEGRITY"


class TransactionError(AdminError):
    """A batch item failed and the whole transaction was rolled back."""

    code = "DB_500_TRANSACTION_FAILED"

    def __init__(
        self,
        message: str,
        *,
        index: int | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, data=data)
        self.index = index


class DatabaseError(AdminError):
    """Database failure that is not a constraint violation."""

    code = "DB_503_DATABASE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = False,
        sqlstate: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, data=data)
        self.retryable = retryable
        self.sqlstate = sqlstate


class DatabaseTimeoutError(DatabaseError):
    """Statement, health check or backup exceeded its time limit."""

    code = "DB_504_TIMEOUT"


# ============================================================================
# SQLSTATE classification
# ============================================================================

RETRYABLE_SQLSTATES = frozenset({"40001", "40P01", "08006", "08003", "53300"})

_INTEGRITY_MESSAGES = {
    "23505": "Duplicate key violation: a record with this unique value already exists",
    "23503": "Foreign key violation: referenced record does not exist or is still referenced",
    "23502": "Not null violation: a required field is missing",
    "23514": "Check constraint violation: a value is outside the allowed range",
}

_DATABASE_MESSAGES = {
    "40001": "Serialization failure",
    "40P01": "Deadlock detected",
    "08006": "Connection failure",
    "08003": "Connection does not exist",
    "53300": "Too many connections",
}

_INVALID_INPUT_SQLSTATES = frozenset({"22P02", "22003", "22007", "22008", "22001"})


def _error_chain(exc: BaseException):
    """Yield ``exc`` and every wrapped driver exception beneath it."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        # SQLAlchemy DBAPIError keeps the driver error on ``orig``
        orig = getattr(current, "orig", None)
        current = orig if isinstance(orig, BaseException) else current.__cause__


def _find_attr(exc: BaseException, *names: str) -> str | None:
    for err in _error_chain(exc):
        for name in names:
            value = getattr(err, name, None)
            if isinstance(value, str) and value:
                return value
    return None


def get_sqlstate(exc: BaseException) -> str | None:
    """Return the PostgreSQL SQLSTATE carried anywhere in the chain."""
    return _find_attr(exc, "sqlstate")


def is_retryable(exc: BaseException) -> bool:
    """True when the error is transient (deadlock, serialization, connection)."""
    if isinstance(exc, DatabaseError):
        return exc.retryable
    return get_sqlstate(exc) in RETRYABLE_SQLSTATES


def classify_db_error(exc: BaseException) -> AdminError:
    """Translate a driver/SQLAlchemy exception into the admin taxonomy.

    Args:
        exc: Exception raised while executing SQL.

    Returns:
        An ``AdminError`` subclass instance. The raw driver message is
        only kept in ``data["detail"]``.

    Example:
        >>> err = classify_db_error(some_unique_violation)
        >>> err.code
        'DB_409_INTEGRITY_VIOLATION'
    """
    if isinstance(exc, AdminError):
        return exc

    sqlstate = get_sqlstate(exc)
    detail: dict[str, Any] = {"detail": str(exc).splitlines()[0] if str(exc) else type(exc).__name__}
    if sqlstate:
        detail["sqlstate"] = sqlstate

    if sqlstate in _INTEGRITY_MESSAGES:
        message = _INTEGRITY_MESSAGES[sqlstate]
        constraint = _find_attr(exc, "constraint_name")
        column = _find_attr(exc, "column_name")
        if constraint:
            message += f" (constraint '{constraint}')"
            detail["constraint"] = constraint
        elif column:
            message += f" (column '{column}')"
            detail["column"] = column
        return IntegrityError(message, data=detail)

    if sqlstate in RETRYABLE_SQLSTATES:
        return DatabaseError(
            f"{_DATABASE_MESSAGES[sqlstate]}: transient error, please retry",
            retryable=True,
            sqlstate=sqlstate,
            data=detail,
        )

    if sqlstate == "57014":
        return DatabaseTimeoutError(
            "Query timeout: operation took too long", sqlstate=sqlstate, data=detail
        )

    if sqlstate == "42P01":
        return NotFoundError("Table does not exist in the database", data=detail)

    if sqlstate in _INVALID_INPUT_SQLSTATES:
        return ValidationError("Invalid value for column type", data=detail)

    if isinstance(exc, TimeoutError):
        return DatabaseTimeoutError("Database operation timed out", data=detail)

    return DatabaseError("Database operation failed", sqlstate=sqlstate, data=detail)

"""Error classification for migrations.

Maps raw failures onto the closed MigrationErrorKind taxonomy. Each kind has
fixed recoverable/retryable defaults; the retry controller consults
`retryable` and never retries anything else.
"""

import re
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError

from replan.models.errors import (
    ERROR_KIND_DEFAULTS,
    MigrationError,
    MigrationErrorKind,
    MigrationFailure,
)


# Checked in order; first matching pattern wins. "date" only matches as a whole word.
_MESSAGE_RULES: Tuple[Tuple[MigrationErrorKind, Tuple[str, ...]], ...] = (
    (MigrationErrorKind.TASK_NOT_FOUND, ("not found", "does not exist")),
    (MigrationErrorKind.INVALID_DATE, ("invalid date", r"\bdate\b")),
    (MigrationErrorKind.PERMISSION_DENIED, ("permission", "unauthorized")),
    (MigrationErrorKind.NETWORK_ERROR, ("network", "connection")),
    (MigrationErrorKind.TIMEOUT_ERROR, ("timeout", "timed out")),
    (MigrationErrorKind.CONCURRENT_MODIFICATION, ("concurrent", "modified")),
    (MigrationErrorKind.STORAGE_FULL, ("storage", "disk full", "disk is full")),
    (MigrationErrorKind.SERVICE_UNAVAILABLE, ("service unavailable", "unavailable")),
    (MigrationErrorKind.DEPENDENCY_CONFLICT, ("dependency", "conflict")),
    (MigrationErrorKind.PERIODIC_TASK_CONFLICT, ("periodic", "template")),
)


def create_migration_error(
    kind: MigrationErrorKind,
    message: str,
    task_id: Optional[str] = None,
    cause: Optional[BaseException] = None,
    context: Optional[Dict[str, Any]] = None,
) -> MigrationError:
    """Build a MigrationError with the kind's default flags."""
    recoverable, retryable = ERROR_KIND_DEFAULTS[kind]
    return MigrationError(
        kind=kind,
        task_id=task_id,
        message=message,
        recoverable=recoverable,
        retryable=retryable,
        original_cause=f"{type(cause).__name__}: {cause}" if cause is not None else None,
        context=context or {},
    )


def migration_failure(
    kind: MigrationErrorKind,
    message: str,
    task_id: Optional[str] = None,
    cause: Optional[BaseException] = None,
) -> MigrationFailure:
    """Shortcut for raising an already classified error."""
    return MigrationFailure(create_migration_error(kind, message, task_id=task_id, cause=cause))


def _kind_from_message(message: str) -> Optional[MigrationErrorKind]:
    lowered = message.lower()
    for kind, patterns in _MESSAGE_RULES:
        if any(re.search(pattern, lowered) for pattern in patterns):
            return kind
    return None


def classify_error(error: BaseException, task_id: Optional[str] = None) -> MigrationError:
    """Classify any exception raised while validating or applying a migration.

    Args:
        error: The raised exception
        task_id: Task the failure relates to, if known

    Returns:
        MigrationError carrying the kind's recoverable/retryable defaults
    """
    if isinstance(error, MigrationFailure):
        if error.error.task_id is None and task_id is not None:
            return error.error.model_copy(update={"task_id": task_id})
        return error.error

    message = str(error) or type(error).__name__

    if isinstance(error, (TimeoutError, FuturesTimeoutError)):
        return create_migration_error(MigrationErrorKind.TIMEOUT_ERROR, message, task_id, error)
    if isinstance(error, PermissionError):
        return create_migration_error(MigrationErrorKind.PERMISSION_DENIED, message, task_id, error)
    if isinstance(error, ConnectionError):
        return create_migration_error(MigrationErrorKind.NETWORK_ERROR, message, task_id, error)
    if isinstance(error, OperationalError):
        lowered = message.lower()
        if "disk is full" in lowered or "disk full" in lowered:
            return create_migration_error(MigrationErrorKind.STORAGE_FULL, message, task_id, error)
        if getattr(error, "connection_invalidated", False):
            return create_migration_error(MigrationErrorKind.NETWORK_ERROR, message, task_id, error)
        return create_migration_error(MigrationErrorKind.DATABASE_ERROR, message, task_id, error)
    if isinstance(error, (DBAPIError, SQLAlchemyError)):
        return create_migration_error(MigrationErrorKind.DATABASE_ERROR, message, task_id, error)

    kind = _kind_from_message(message) or MigrationErrorKind.DATABASE_ERROR
    return create_migration_error(kind, message, task_id, error)

"""Migration error model for replan."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field


class MigrationErrorKind(str, Enum):
    """Closed taxonomy of migration failures."""
    TASK_NOT_FOUND = "task_not_found"
    INVALID_DATE = "invalid_date"
    DATABASE_ERROR = "database_error"
    DEPENDENCY_CONFLICT = "dependency_conflict"
    PERMISSION_DENIED = "permission_denied"
    NETWORK_ERROR = "network_error"
    VALIDATION_ERROR = "validation_error"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    STORAGE_FULL = "storage_full"
    SERVICE_UNAVAILABLE = "service_unavailable"
    TIMEOUT_ERROR = "timeout_error"
    PERIODIC_TASK_CONFLICT = "periodic_task_conflict"


# kind -> (recoverable, retryable)
ERROR_KIND_DEFAULTS: Dict[MigrationErrorKind, Tuple[bool, bool]] = {
    MigrationErrorKind.TASK_NOT_FOUND: (False, False),
    MigrationErrorKind.INVALID_DATE: (True, False),
    MigrationErrorKind.DATABASE_ERROR: (True, True),
    MigrationErrorKind.DEPENDENCY_CONFLICT: (True, False),
    MigrationErrorKind.PERMISSION_DENIED: (False, False),
    MigrationErrorKind.NETWORK_ERROR: (True, True),
    MigrationErrorKind.VALIDATION_ERROR: (True, False),
    MigrationErrorKind.CONCURRENT_MODIFICATION: (True, True),
    MigrationErrorKind.STORAGE_FULL: (False, False),
    MigrationErrorKind.SERVICE_UNAVAILABLE: (True, True),
    MigrationErrorKind.TIMEOUT_ERROR: (True, True),
    MigrationErrorKind.PERIODIC_TASK_CONFLICT: (True, False),
}

RETRYABLE_KINDS = tuple(kind for kind, (_, retryable) in ERROR_KIND_DEFAULTS.items() if retryable)


class MigrationError(BaseModel):
    """A classified migration failure. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    kind: MigrationErrorKind = Field(..., description="Error kind")
    task_id: Optional[str] = Field(None, description="Task the error relates to")
    message: str = Field(..., description="Human readable message")
    recoverable: bool = Field(..., description="Whether the user can fix and resubmit")
    retryable: bool = Field(..., description="Whether an automatic retry may succeed")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="When the error was classified")
    original_cause: Optional[str] = Field(
        None, description="Type and message of the underlying exception, if any"
    )
    context: Dict[str, Any] = Field(default_factory=dict, description="Additional error details")


class MigrationFailure(Exception):
    """Raised inside the migration pipeline to carry an already classified error."""

    def __init__(self, error: MigrationError):
        super().__init__(error.message)
        self.error = error


class MigrationCancelled(Exception):
    """Raised when a cancellation token interrupts a migration."""

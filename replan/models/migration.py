"""Migration request, attempt and result models for replan."""

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from replan.models.constants import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_MAX_RETRIES,
)
from replan.models.errors import MigrationError, MigrationErrorKind, RETRYABLE_KINDS


class Migration(BaseModel):
    """A request to move one task to a new scheduled date."""

    task_id: str = Field(..., description="Task to move")
    new_scheduled_date: Optional[date] = Field(..., description="Target day (null is rejected as invalid_date)")


class MigrationAttemptStatus(str, Enum):
    """Lifecycle of a single migration inside one batch call."""
    PENDING = "pending"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class MigrationAttempt(BaseModel):
    """Bookkeeping for one batch entry. Lives only for one orchestrator call."""

    migration: Migration
    attempts: int = 0
    status: MigrationAttemptStatus = MigrationAttemptStatus.PENDING
    last_error: Optional[MigrationError] = None
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None

    class Config:
        """Pydantic configuration."""
        use_enum_values = True


class RetryConfig(BaseModel):
    """Backoff settings for the retry controller."""

    max_retries: int = Field(DEFAULT_MAX_RETRIES, ge=1, description="Total attempts, including the first")
    base_delay_ms: int = Field(DEFAULT_BASE_DELAY_MS, ge=0)
    max_delay_ms: int = Field(DEFAULT_MAX_DELAY_MS, ge=0)
    backoff_multiplier: float = Field(DEFAULT_BACKOFF_MULTIPLIER, ge=1.0)
    retryable_kinds: List[MigrationErrorKind] = Field(default_factory=lambda: list(RETRYABLE_KINDS))
    jitter: bool = Field(False, description="Draw each delay uniformly from [0, backoff bound]")


class RecoveryOptions(BaseModel):
    """Failure handling switches for a batch migration."""

    enable_retry: bool = True
    enable_partial_success: bool = True
    enable_graceful_degradation: bool = True
    retry_config: RetryConfig = Field(default_factory=RetryConfig)


class MigrationValidation(BaseModel):
    """Pre-flight validation of one migration."""

    migration: Migration
    is_valid: bool
    errors: List[MigrationError] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    snapshot_updated_at: Optional[datetime] = Field(
        None, description="Task last-modified timestamp read during validation"
    )


class FailedMigration(BaseModel):
    """A migration that did not apply, with the reason."""

    migration: Migration
    error: str
    error_kind: MigrationErrorKind
    recoverable: bool
    retryable: bool
    attempts: int = 0

    @classmethod
    def from_error(cls, migration: Migration, error: MigrationError, attempts: int = 0) -> "FailedMigration":
        return cls(
            migration=migration,
            error=error.message,
            error_kind=error.kind,
            recoverable=error.recoverable,
            retryable=error.retryable,
            attempts=attempts,
        )


class MigrationSummary(BaseModel):
    total_migrated: int = 0
    by_day: Dict[str, int] = Field(default_factory=dict, description="ISO date -> number of tasks moved there")


class MigrationResult(BaseModel):
    """Outcome of one migrate_batch call."""

    successful: List[Migration] = Field(default_factory=list)
    failed: List[FailedMigration] = Field(default_factory=list)
    cancelled: List[Migration] = Field(default_factory=list)
    summary: MigrationSummary = Field(default_factory=MigrationSummary)
    warnings: Dict[str, List[str]] = Field(default_factory=dict, description="Task id -> validation warnings")
    previous_dates: Dict[str, Optional[date]] = Field(
        default_factory=dict,
        description="Task id -> scheduled date immediately before this batch wrote it",
    )
    attempts: List[MigrationAttempt] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed and not self.cancelled

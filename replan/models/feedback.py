"""Migration feedback models for replan."""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from replan.models.errors import MigrationErrorKind
from replan.models.migration import MigrationResult


class FeedbackSummary(BaseModel):
    total_tasks: int
    successful: int
    failed: int
    cancelled: int = 0
    by_day: Dict[str, int] = Field(default_factory=dict)
    duration_ms: float = 0.0


class FailureDetail(BaseModel):
    """A failed migration enriched for display."""

    task_id: str
    task_title: str
    error: str
    error_kind: MigrationErrorKind
    recoverable: bool


class MigrationFeedback(BaseModel):
    """What the caller renders after a batch: summary, failures and undo availability."""

    success: bool
    summary: FeedbackSummary
    failures: List[FailureDetail] = Field(default_factory=list)
    can_undo: bool = False
    undo_id: Optional[str] = None
    undo_time_limit_sec: Optional[float] = None
    result: MigrationResult


class DayBreakdown(BaseModel):
    day: str
    count: int
    day_name: str


class SummaryMessage(BaseModel):
    title: str
    message: str
    by_day_breakdown: List[DayBreakdown] = Field(default_factory=list)

"""Undo models for replan."""

from datetime import date, datetime, timedelta
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from replan.models.migration import Migration


class UndoRecord(BaseModel):
    """Compensating record for a successful batch."""

    id: str
    timestamp: datetime
    migrations: List[Migration]
    previous_dates: Dict[str, Optional[date]] = Field(
        default_factory=dict, description="Task id -> scheduled date before the batch"
    )
    time_limit: timedelta

    def task_ids(self) -> List[str]:
        """Distinct task ids in first-seen order."""
        return list(dict.fromkeys(m.task_id for m in self.migrations))

    def expires_at(self) -> datetime:
        return self.timestamp + self.time_limit

    def is_expired(self, now: datetime) -> bool:
        return now - self.timestamp > self.time_limit


class UndoOutcome(BaseModel):
    success: bool
    undone_count: int = 0
    error: Optional[str] = None
    failed_task_ids: List[str] = Field(default_factory=list)


class UndoHandle(BaseModel):
    """An undo operation that is still available."""

    id: str
    timestamp: datetime
    task_count: int
    time_remaining_sec: float

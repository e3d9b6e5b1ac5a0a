"""SchedulingSuggestion data model for replan."""

from datetime import date
from enum import Enum
from pydantic import BaseModel, Field


class SuggestionReason(str, Enum):
    """Which heuristic produced a suggestion."""
    PRIORITY = "priority"
    TIME_ESTIMATE = "time_estimate"
    DEPENDENCIES = "dependencies"
    WORKLOAD_BALANCE = "workload_balance"


class SchedulingSuggestion(BaseModel):
    """Proposed target date for one task."""

    task_id: str = Field(..., description="Task the suggestion is for")
    suggested_date: date = Field(..., description="Proposed day")
    reason: SuggestionReason = Field(..., description="Heuristic that chose the day")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Confidence in the suggestion")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

"""Task data model for replan."""

from datetime import date, datetime
from typing import List, Optional
from enum import Enum, IntEnum
from pydantic import BaseModel, Field


class TaskStatus(str, Enum):
    """Task status enumeration."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(IntEnum):
    """Task priority (ordinal, low to urgent)."""
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    URGENT = 3


INCOMPLETE_STATUSES = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)


class Task(BaseModel):
    """Canonical Task model as exposed by the task store."""

    id: str = Field(..., description="Unique task identifier (UUID v4)")
    title: str = Field(..., description="Task title")
    description: Optional[str] = Field(None, description="Task description")
    status: TaskStatus = Field(TaskStatus.PENDING, description="Task status")
    priority: TaskPriority = Field(TaskPriority.MEDIUM, description="Task priority")
    dependencies: List[str] = Field(default_factory=list, description="IDs of tasks this task depends on")
    scheduled_date: Optional[date] = Field(None, description="Day the task is scheduled for (null if unscheduled)")
    time_estimate: int = Field(0, ge=0, description="Estimated duration in minutes (0 if unknown)")
    created_at: datetime = Field(..., description="Task creation timestamp")
    updated_at: datetime = Field(..., description="Task last modification timestamp")

    # Periodic linkage (optional)
    is_periodic_instance: bool = Field(False, description="Whether the task was generated from a periodic template")
    periodic_template_id: Optional[str] = Field(
        None, description="If generated from a periodic template, the template id"
    )
    generation_date: Optional[date] = Field(
        None, description="If generated from a periodic template, the day it was generated for"
    )

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

    @property
    def is_incomplete(self) -> bool:
        return self.status in INCOMPLETE_STATUSES

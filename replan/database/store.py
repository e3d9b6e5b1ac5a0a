"""Task store interface consumed by the migration engine."""

from datetime import date
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from replan.models.task import Task, TaskStatus


class PeriodicFilter(str, Enum):
    ALL = "all"
    INSTANCES_ONLY = "instances_only"
    REGULAR_ONLY = "regular_only"


class WeekStartDay(IntEnum):
    """First day of the week (0 = Sunday, 1 = Monday)."""
    SUNDAY = 0
    MONDAY = 1


class TaskFilter(BaseModel):
    """Query filter for TaskStore.find_all."""

    periodic_template_id: Optional[str] = None
    periodic_filter: PeriodicFilter = PeriodicFilter.ALL
    scheduled_from: Optional[date] = Field(None, description="Inclusive lower bound on scheduled_date")
    scheduled_to: Optional[date] = Field(None, description="Inclusive upper bound on scheduled_date")
    statuses: Optional[List[TaskStatus]] = None


# Fields a migration-side caller may write through TaskStore.update
UPDATABLE_FIELDS = frozenset({
    "title",
    "description",
    "status",
    "priority",
    "dependencies",
    "scheduled_date",
    "time_estimate",
    "is_periodic_instance",
    "periodic_template_id",
    "generation_date",
})


class TaskStore(Protocol):
    """Persistent task store.

    `update` is a partial field update; passing `scheduled_date=None` clears
    the field. Every successful update advances `updated_at`.
    """

    def create(self, task: Task) -> Task:
        ...

    def find_by_id(self, task_id: str) -> Optional[Task]:
        ...

    def update(self, task_id: str, fields: Dict[str, Any]) -> Task:
        ...

    def get_dependencies(self, task_id: str) -> List[Task]:
        ...

    def get_dependents(self, task_id: str) -> List[Task]:
        ...

    def find_all(self, task_filter: Optional[TaskFilter] = None) -> List[Task]:
        ...

    def get_tasks_for_week(self, anchor: date, week_start_day: WeekStartDay = WeekStartDay.MONDAY) -> List[Task]:
        ...

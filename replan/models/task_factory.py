"""Task creation factory for replan.

This module centralizes task creation logic so every entry point applies
the same defaults.
"""

import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from replan.models.task import Task, TaskPriority, TaskStatus


def create_task_defaults() -> Dict[str, Any]:
    """Get default task values as a dictionary."""
    return {
        "description": None,
        "status": TaskStatus.PENDING,
        "priority": TaskPriority.MEDIUM,
        "dependencies": [],
        "scheduled_date": None,
        "time_estimate": 0,
        "is_periodic_instance": False,
        "periodic_template_id": None,
        "generation_date": None,
    }


def create_task_base(
    title: str,
    description: Optional[str] = None,
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    dependencies: Optional[List[str]] = None,
    scheduled_date: Optional[date] = None,
    time_estimate: Optional[int] = None,
    is_periodic_instance: Optional[bool] = None,
    periodic_template_id: Optional[str] = None,
    generation_date: Optional[date] = None,
    task_id: Optional[str] = None,
) -> Task:
    """Create a task with defaults, allowing overrides.

    Args:
        title: Task title (required)
        description: Task description
        status: Task status (defaults to PENDING)
        priority: Task priority (defaults to MEDIUM)
        dependencies: IDs of tasks this task depends on
        scheduled_date: Day the task is scheduled for
        time_estimate: Estimated duration in minutes (0 if unknown)
        is_periodic_instance: Whether the task was generated from a periodic template
        periodic_template_id: Template id for periodic instances
        generation_date: Day a periodic instance was generated for
        task_id: Explicit id (a UUID v4 is generated when omitted)

    Returns:
        Task object with defaults applied
    """
    now = datetime.utcnow()
    defaults = create_task_defaults()

    return Task(
        id=task_id or str(uuid.uuid4()),
        title=title,
        description=description if description is not None else defaults["description"],
        status=status if status is not None else defaults["status"],
        priority=priority if priority is not None else defaults["priority"],
        dependencies=dependencies if dependencies is not None else defaults["dependencies"],
        scheduled_date=scheduled_date if scheduled_date is not None else defaults["scheduled_date"],
        time_estimate=time_estimate if time_estimate is not None else defaults["time_estimate"],
        created_at=now,
        updated_at=now,
        is_periodic_instance=is_periodic_instance if is_periodic_instance is not None else defaults["is_periodic_instance"],
        periodic_template_id=periodic_template_id if periodic_template_id is not None else defaults["periodic_template_id"],
        generation_date=generation_date if generation_date is not None else defaults["generation_date"],
    )

"""Repository layer for database operations."""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Set
from sqlalchemy.orm import Session
from sqlalchemy import desc

from replan.models.task import Task
from replan.database.models import TaskDB, enum_to_value
from replan.database.store import PeriodicFilter, TaskFilter, UPDATABLE_FIELDS, WeekStartDay
from replan.engine.weeks import get_week_range

logger = logging.getLogger(__name__)


class TaskRepository:
    """Repository for Task database operations. Implements the TaskStore protocol."""

    def __init__(self, db: Session):
        self.db = db

    def _as_unique_ids(self, task_ids: List[str]) -> List[str]:
        """Deduplicate while preserving order."""
        seen: Set[str] = set()
        unique: List[str] = []
        for task_id in task_ids:
            if task_id not in seen:
                seen.add(task_id)
                unique.append(task_id)
        return unique

    def create(self, task: Task) -> Task:
        """Create a new task."""
        try:
            task_db = TaskDB.from_pydantic(task)
            self.db.add(task_db)
            self.db.commit()
            self.db.refresh(task_db)
            logger.debug(f"Created task {task.id}: {task.title[:50]}")
            return task_db.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create task {task.id}: {type(e).__name__}: {str(e)}")
            raise

    def find_by_id(self, task_id: str) -> Optional[Task]:
        """Get task by ID."""
        task_db = self.db.query(TaskDB).filter(TaskDB.id == task_id).first()
        return task_db.to_pydantic() if task_db else None

    def get_many(self, task_ids: List[str]) -> List[Task]:
        """Get tasks by ID, in the order given. Unknown IDs are skipped."""
        unique_ids = self._as_unique_ids(task_ids)
        if not unique_ids:
            return []
        rows = {row.id: row for row in self.db.query(TaskDB).filter(TaskDB.id.in_(unique_ids)).all()}
        return [rows[task_id].to_pydantic() for task_id in unique_ids if task_id in rows]

    def update(self, task_id: str, fields: Dict[str, Any]) -> Task:
        """Partially update a task. `scheduled_date=None` clears the date."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update unknown task fields: {', '.join(sorted(unknown))}")

        task_db = self.db.query(TaskDB).filter(TaskDB.id == task_id).first()
        if not task_db:
            raise ValueError(f"Task {task_id} not found")

        for name, value in fields.items():
            if name in ("status", "priority"):
                value = enum_to_value(value)
            elif name == "dependencies":
                value = list(value or [])
            setattr(task_db, name, value)
        task_db.updated_at = datetime.utcnow()

        try:
            self.db.commit()
            self.db.refresh(task_db)
            logger.debug(f"Updated task {task_id} fields: {', '.join(sorted(fields))}")
            return task_db.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to update task {task_id}: {type(e).__name__}: {str(e)}")
            raise

    def get_dependencies(self, task_id: str) -> List[Task]:
        """Tasks the given task depends on."""
        task_db = self.db.query(TaskDB).filter(TaskDB.id == task_id).first()
        if not task_db:
            raise ValueError(f"Task {task_id} not found")
        return self.get_many(task_db.dependencies or [])

    def get_dependents(self, task_id: str) -> List[Task]:
        """Tasks that depend on the given task."""
        # Dependencies are a JSON array; filter in Python for portability across backends.
        tasks_db = self.db.query(TaskDB).filter(TaskDB.id != task_id).all()
        return [t.to_pydantic() for t in tasks_db if task_id in (t.dependencies or [])]

    def find_all(self, task_filter: Optional[TaskFilter] = None) -> List[Task]:
        """Get all tasks matching a filter, newest first."""
        task_filter = task_filter or TaskFilter()
        query = self.db.query(TaskDB)

        if task_filter.periodic_template_id is not None:
            query = query.filter(TaskDB.periodic_template_id == task_filter.periodic_template_id)
        if task_filter.periodic_filter == PeriodicFilter.INSTANCES_ONLY:
            query = query.filter(TaskDB.is_periodic_instance.is_(True))
        elif task_filter.periodic_filter == PeriodicFilter.REGULAR_ONLY:
            query = query.filter(TaskDB.is_periodic_instance.is_(False))
        if task_filter.scheduled_from is not None:
            query = query.filter(TaskDB.scheduled_date >= task_filter.scheduled_from)
        if task_filter.scheduled_to is not None:
            query = query.filter(TaskDB.scheduled_date <= task_filter.scheduled_to)
        if task_filter.statuses:
            query = query.filter(TaskDB.status.in_([enum_to_value(s) for s in task_filter.statuses]))

        tasks_db = query.order_by(desc(TaskDB.created_at)).all()
        return [task_db.to_pydantic() for task_db in tasks_db]

    def get_tasks_for_week(self, anchor: date, week_start_day: WeekStartDay = WeekStartDay.MONDAY) -> List[Task]:
        """Tasks scheduled within the week containing `anchor`."""
        week_start, week_end = get_week_range(anchor, week_start_day)
        tasks_db = self.db.query(TaskDB).filter(
            TaskDB.scheduled_date >= week_start,
            TaskDB.scheduled_date <= week_end,
        ).order_by(TaskDB.scheduled_date).all()
        return [task_db.to_pydantic() for task_db in tasks_db]

"""Dependency conflict validation for batch migrations.

Dependency ordering is checked against the batch as a whole: a related task
that is also being migrated is compared using its new date (its effective
date), otherwise its stored scheduled date. Ordering conflicts never block a
migration; they are reported as warnings with a suggested fix.
"""

import logging
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional, Set, Tuple, TypeVar

from replan.database.store import TaskStore, WeekStartDay
from replan.engine.weeks import get_week_range
from replan.models.constants import MAX_DEPENDENCY_WALK
from replan.models.dependency import (
    ConflictKind,
    ConflictSeverity,
    DependencyConflict,
    DependencyInfo,
    DependencyValidationResult,
)
from replan.models.migration import Migration
from replan.models.task import Task

logger = logging.getLogger(__name__)

T = TypeVar("T")


def lookup_or_warn(fetch: Callable[[], T], default: T, description: str) -> Tuple[T, Optional[str]]:
    """Run a store lookup, converting failure into a warning.

    Returns:
        (value, None) on success, (default, warning message) on failure
    """
    try:
        return fetch(), None
    except Exception as e:
        warning = f"Could not {description}: {type(e).__name__}: {e}"
        logger.warning(warning)
        return default, warning


class DependencyConflictValidator:
    """Detects dependency ordering violations across a migration batch."""

    def __init__(self, store: TaskStore):
        self.store = store

    def validate_batch(self, migrations: List[Migration]) -> DependencyValidationResult:
        """Check every migrated task against its dependencies and dependents.

        Args:
            migrations: Proposed (task, new date) pairs

        Returns:
            DependencyValidationResult with conflicts and suggested fixes
        """
        # Later entries win for duplicate task ids
        new_dates: Dict[str, date] = {
            m.task_id: m.new_scheduled_date for m in migrations if m.new_scheduled_date is not None
        }
        conflicts: List[DependencyConflict] = []
        warnings: List[str] = []

        for task_id, new_date in new_dates.items():
            task, warning = lookup_or_warn(lambda: self.store.find_by_id(task_id), None, f"load task {task_id}")
            if warning:
                warnings.append(warning)
            if task is None:
                continue

            dependencies, warning = lookup_or_warn(
                lambda: self.store.get_dependencies(task.id), [], f"load dependencies of task {task.id}"
            )
            if warning:
                warnings.append(warning)
            conflicts.extend(self._dependency_conflicts(task, new_date, dependencies, new_dates))

            dependents, warning = lookup_or_warn(
                lambda: self.store.get_dependents(task.id), [], f"load dependents of task {task.id}"
            )
            if warning:
                warnings.append(warning)
            conflicts.extend(self._dependent_conflicts(task, new_date, dependents, new_dates))

            cycle, warning = lookup_or_warn(
                lambda: self._find_cycle(task), None, f"walk dependency chain of task {task.id}"
            )
            if warning:
                warnings.append(warning)
            if cycle is not None:
                conflicts.append(cycle)

        return DependencyValidationResult(
            has_conflicts=len(conflicts) > 0,
            conflicts=conflicts,
            suggested_fixes=self.suggest_fixes(conflicts, migrations),
            warnings=warnings,
        )

    @staticmethod
    def _effective_date(task: Task, new_dates: Dict[str, date]) -> Optional[date]:
        return new_dates.get(task.id, task.scheduled_date)

    def _dependency_conflicts(
        self, task: Task, new_date: date, dependencies: List[Task], new_dates: Dict[str, date]
    ) -> List[DependencyConflict]:
        conflicts = []
        for dependency in dependencies:
            dependency_date = self._effective_date(dependency, new_dates)
            if dependency_date is not None and dependency_date > new_date:
                conflicts.append(DependencyConflict(
                    task_id=task.id,
                    task_title=task.title,
                    kind=ConflictKind.DEPENDENCY_AFTER,
                    conflicting_task_id=dependency.id,
                    conflicting_task_title=dependency.title,
                    conflicting_date=dependency_date,
                    severity=ConflictSeverity.WARNING,
                    suggestion=f'Consider scheduling "{task.title}" after {dependency_date.isoformat()}',
                ))
        return conflicts

    def _dependent_conflicts(
        self, task: Task, new_date: date, dependents: List[Task], new_dates: Dict[str, date]
    ) -> List[DependencyConflict]:
        conflicts = []
        for dependent in dependents:
            dependent_date = self._effective_date(dependent, new_dates)
            if dependent_date is not None and dependent_date < new_date:
                conflicts.append(DependencyConflict(
                    task_id=task.id,
                    task_title=task.title,
                    kind=ConflictKind.DEPENDENT_BEFORE,
                    conflicting_task_id=dependent.id,
                    conflicting_task_title=dependent.title,
                    conflicting_date=dependent_date,
                    severity=ConflictSeverity.WARNING,
                    suggestion=f'Consider scheduling "{task.title}" before {dependent_date.isoformat()}',
                ))
        return conflicts

    def _find_cycle(self, task: Task) -> Optional[DependencyConflict]:
        """Walk the dependency chain of `task`; report a conflict if it leads back to it."""
        visited: Set[str] = set()
        # (task id to expand, task that depends on it)
        stack: List[Tuple[str, Task]] = [(dep_id, task) for dep_id in task.dependencies]
        while stack and len(visited) < MAX_DEPENDENCY_WALK:
            current_id, via = stack.pop()
            if current_id == task.id:
                return DependencyConflict(
                    task_id=task.id,
                    task_title=task.title,
                    kind=ConflictKind.CIRCULAR,
                    conflicting_task_id=via.id,
                    conflicting_task_title=via.title,
                    severity=ConflictSeverity.ERROR,
                    suggestion=f'"{task.title}" depends on itself through "{via.title}"',
                )
            if current_id in visited:
                continue
            visited.add(current_id)
            current = self.store.find_by_id(current_id)
            if current is None:
                continue
            stack.extend((dep_id, current) for dep_id in current.dependencies)
        return None

    @staticmethod
    def suggest_fixes(conflicts: List[DependencyConflict], migrations: List[Migration]) -> List[Migration]:
        """Propose a date per ordering conflict that would resolve it."""
        requested = {m.task_id: m.new_scheduled_date for m in migrations}
        fixes: List[Migration] = []
        for conflict in conflicts:
            if conflict.severity != ConflictSeverity.WARNING or conflict.conflicting_date is None:
                continue
            if conflict.task_id not in requested:
                continue
            if conflict.kind == ConflictKind.DEPENDENCY_AFTER:
                suggested = conflict.conflicting_date + timedelta(days=1)
            elif conflict.kind == ConflictKind.DEPENDENT_BEFORE:
                suggested = conflict.conflicting_date - timedelta(days=1)
            else:
                continue
            if suggested != requested[conflict.task_id]:
                fixes.append(Migration(task_id=conflict.task_id, new_scheduled_date=suggested))
        return fixes

    def get_dependency_info(self, task_ids: List[str]) -> Dict[str, DependencyInfo]:
        """Dependencies and dependents per task. Tasks whose lookup fails are left out."""
        info: Dict[str, DependencyInfo] = {}
        for task_id in task_ids:
            try:
                dependencies = self.store.get_dependencies(task_id)
                dependents = self.store.get_dependents(task_id)
            except Exception as e:
                logger.warning(f"Failed to get dependency info for task {task_id}: {type(e).__name__}: {e}")
                continue
            info[task_id] = DependencyInfo(
                dependencies=dependencies,
                dependents=dependents,
                has_relationships=bool(dependencies or dependents),
            )
        return info

    def suggest_dependent_migrations(
        self,
        primary: List[Migration],
        anchor: date,
        week_start_day: WeekStartDay = WeekStartDay.MONDAY,
    ) -> List[Migration]:
        """Suggest moving incomplete dependents along with their prerequisites.

        A dependent not already in the batch is suggested for the day after its
        prerequisite's new date, when that day falls inside the target week.
        """
        week_start, week_end = get_week_range(anchor, week_start_day)
        in_batch = {m.task_id for m in primary}
        suggestions: List[Migration] = []
        suggested_ids: Set[str] = set()

        for migration in primary:
            if migration.new_scheduled_date is None:
                continue
            dependents, _ = lookup_or_warn(
                lambda: self.store.get_dependents(migration.task_id), [],
                f"load dependents of task {migration.task_id}",
            )
            for dependent in dependents:
                if dependent.id in in_batch or dependent.id in suggested_ids or not dependent.is_incomplete:
                    continue
                suggested = migration.new_scheduled_date + timedelta(days=1)
                if week_start <= suggested <= week_end:
                    suggestions.append(Migration(task_id=dependent.id, new_scheduled_date=suggested))
                    suggested_ids.add(dependent.id)
        return suggestions

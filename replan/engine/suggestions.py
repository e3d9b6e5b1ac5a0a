"""Scheduling suggestions for migrated tasks.

Proposes one target day per task inside a target week. Heuristics are tried
in order and the first applicable one wins:

1. Dependencies: the day after the latest dependency date (clamped to the week)
2. Priority: HIGH/URGENT tasks go to the first day of the week
3. Workload balance: the least loaded day, by minutes already scheduled

This module is deterministic - same inputs always produce same outputs.
"""

import logging
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from replan.database.store import TaskStore, WeekStartDay
from replan.engine.dependencies import lookup_or_warn
from replan.engine.weeks import get_week_range, iter_week_days
from replan.models.constants import (
    BASE_CONFIDENCE,
    DEPENDENCY_CONFIDENCE,
    DEPENDENCY_ESTIMATE_NUDGE,
    ESTIMATE_NUDGE,
    LONG_TASK_MIN_MIN,
    LOOKUP_FAILURE_PENALTY,
    MAX_CONFIDENCE,
    MIN_CONFIDENCE,
    PRIORITY_CONFIDENCE,
    SHORT_TASK_MAX_MIN,
)
from replan.models.suggestion import SchedulingSuggestion, SuggestionReason
from replan.models.task import Task, TaskPriority

logger = logging.getLogger(__name__)


def _clamp_confidence(value: float) -> float:
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, value))


def _estimate_nudge(time_estimate: int, step: float) -> float:
    """Short tasks are easier to place, long tasks harder."""
    if time_estimate <= 0:
        return 0.0
    if time_estimate <= SHORT_TASK_MAX_MIN:
        return step
    if time_estimate >= LONG_TASK_MIN_MIN:
        return -step
    return 0.0


def calculate_workload_by_day(tasks: List[Task], week_start: date, week_end: date) -> Dict[date, int]:
    """Total estimated minutes already scheduled on each day of the week."""
    workload = {day: 0 for day in iter_week_days(week_start)}
    for task in tasks:
        if task.scheduled_date is not None and week_start <= task.scheduled_date <= week_end:
            workload[task.scheduled_date] += task.time_estimate or 0
    return workload


class SchedulingSuggestionEngine:
    """Suggests target days for tasks being migrated into a week."""

    def __init__(self, store: TaskStore):
        self.store = store

    def suggest(
        self,
        tasks: List[Task],
        anchor: date,
        week_start_day: WeekStartDay = WeekStartDay.MONDAY,
        planned_dates: Optional[Dict[str, date]] = None,
    ) -> List[SchedulingSuggestion]:
        """Suggest a day for every task, in input order.

        Args:
            tasks: Tasks to place
            anchor: Any day in the target week
            week_start_day: First day of the week
            planned_dates: Pending new dates for tasks in an unsaved batch; used
                as the effective date of dependencies that appear in it

        Returns:
            One SchedulingSuggestion per task
        """
        week_start, week_end = get_week_range(anchor, week_start_day)
        existing, _ = lookup_or_warn(
            lambda: self.store.get_tasks_for_week(anchor, week_start_day), [],
            f"load tasks for week of {week_start.isoformat()}",
        )
        workload = calculate_workload_by_day(existing, week_start, week_end)
        planned_dates = planned_dates or {}

        return [
            self._suggest_for_task(task, week_start, week_end, workload, planned_dates)
            for task in tasks
        ]

    def _latest_dependency_date(
        self, dependency_ids: List[str], planned_dates: Dict[str, date]
    ) -> Tuple[Optional[date], bool]:
        """Latest effective date among dependencies, and whether any lookup failed."""
        latest: Optional[date] = None
        lookup_failed = False
        for dep_id in dependency_ids:
            if dep_id in planned_dates:
                dep_date = planned_dates[dep_id]
            else:
                dependency, warning = lookup_or_warn(
                    lambda: self.store.find_by_id(dep_id), None, f"load dependency {dep_id}"
                )
                if warning:
                    lookup_failed = True
                    continue
                dep_date = dependency.scheduled_date if dependency else None
            if dep_date is not None and (latest is None or dep_date > latest):
                latest = dep_date
        return latest, lookup_failed

    def _suggest_for_task(
        self,
        task: Task,
        week_start: date,
        week_end: date,
        workload: Dict[date, int],
        planned_dates: Dict[str, date],
    ) -> SchedulingSuggestion:
        penalty = 0.0

        if task.dependencies:
            latest, lookup_failed = self._latest_dependency_date(task.dependencies, planned_dates)
            if lookup_failed:
                penalty = LOOKUP_FAILURE_PENALTY
            if latest is not None and latest <= week_end:
                day_after = min(max(latest + timedelta(days=1), week_start), week_end)
                confidence = DEPENDENCY_CONFIDENCE + _estimate_nudge(task.time_estimate, DEPENDENCY_ESTIMATE_NUDGE)
                return SchedulingSuggestion(
                    task_id=task.id,
                    suggested_date=day_after,
                    reason=SuggestionReason.DEPENDENCIES,
                    confidence=_clamp_confidence(confidence - penalty),
                )

        if task.priority >= TaskPriority.HIGH:
            suggested = week_start
            reason = SuggestionReason.PRIORITY
            confidence = PRIORITY_CONFIDENCE
        else:
            # min() keeps the earliest day on ties
            suggested = min(iter_week_days(week_start), key=lambda day: workload.get(day, 0))
            reason = SuggestionReason.WORKLOAD_BALANCE
            confidence = BASE_CONFIDENCE
            if task.time_estimate > 0:
                reason = SuggestionReason.TIME_ESTIMATE

        confidence += _estimate_nudge(task.time_estimate, ESTIMATE_NUDGE)

        return SchedulingSuggestion(
            task_id=task.id,
            suggested_date=suggested,
            reason=reason,
            confidence=_clamp_confidence(confidence - penalty),
        )

"""Week arithmetic and migration-candidate detection for replan."""

import logging
from datetime import date, timedelta
from typing import Iterable, List, Optional, Tuple

from replan.database.store import TaskFilter, TaskStore, WeekStartDay
from replan.models.task import INCOMPLETE_STATUSES, Task

logger = logging.getLogger(__name__)


def get_week_range(anchor: date, week_start_day: WeekStartDay = WeekStartDay.MONDAY) -> Tuple[date, date]:
    """Return (first day, last day) of the week containing `anchor`.

    Args:
        anchor: Any day in the week
        week_start_day: 0 for Sunday, 1 for Monday

    Returns:
        Inclusive (week_start, week_end) dates
    """
    # Python weekday: Monday=0 ... Sunday=6; shift to Sunday=0 ... Saturday=6
    day_of_week = (anchor.weekday() + 1) % 7
    offset = (day_of_week - int(week_start_day)) % 7
    week_start = anchor - timedelta(days=offset)
    return week_start, week_start + timedelta(days=6)


def iter_week_days(week_start: date) -> Iterable[date]:
    for offset in range(7):
        yield week_start + timedelta(days=offset)


def get_week_identifier(anchor: date, week_start_day: WeekStartDay = WeekStartDay.MONDAY) -> str:
    """Stable identifier for a week: the ISO date of its first day."""
    week_start, _ = get_week_range(anchor, week_start_day)
    return week_start.isoformat()


def detect_week_transition(
    current: date,
    previous: Optional[date],
    week_start_day: WeekStartDay = WeekStartDay.MONDAY,
) -> bool:
    """True when navigating from `previous` to `current` crosses a week boundary."""
    if previous is None:
        return False
    return get_week_identifier(current, week_start_day) != get_week_identifier(previous, week_start_day)


def find_incomplete_tasks_for_previous_week(
    store: TaskStore,
    anchor: date,
    week_start_day: WeekStartDay = WeekStartDay.MONDAY,
) -> List[Task]:
    """Incomplete tasks scheduled in the week before the one containing `anchor`.

    These are the natural candidates for a batch migration into the anchor week.
    """
    week_start, _ = get_week_range(anchor, week_start_day)
    previous_start = week_start - timedelta(days=7)
    previous_end = week_start - timedelta(days=1)
    tasks = store.find_all(TaskFilter(
        scheduled_from=previous_start,
        scheduled_to=previous_end,
        statuses=list(INCOMPLETE_STATUSES),
    ))
    logger.debug(f"Found {len(tasks)} incomplete tasks for week of {previous_start.isoformat()}")
    return sorted(tasks, key=lambda t: (t.scheduled_date, -int(t.priority), t.title))

"""User-facing feedback for migration batches.

Turns a MigrationResult into what a caller renders: counts, failure details
with task titles, undo availability and a localisable summary message.
"""

import logging
from datetime import date, datetime
from typing import List, Optional

from replan.database.store import TaskStore
from replan.engine.orchestrator import MigrationOrchestrator
from replan.engine.undo import UndoManager
from replan.models.feedback import (
    DayBreakdown,
    FailureDetail,
    FeedbackSummary,
    MigrationFeedback,
    SummaryMessage,
)
from replan.models.migration import FailedMigration, Migration, MigrationResult, RecoveryOptions

logger = logging.getLogger(__name__)

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class MigrationFeedbackService:
    """Builds feedback for finished batches and retries recoverable failures."""

    def __init__(self, store: TaskStore, orchestrator: MigrationOrchestrator, undo_manager: UndoManager):
        self.store = store
        self.orchestrator = orchestrator
        self.undo_manager = undo_manager

    def process_result(
        self,
        result: MigrationResult,
        migrations: List[Migration],
        started_at: datetime,
    ) -> MigrationFeedback:
        """Summarise a batch and record an undo when anything was migrated.

        Args:
            result: Orchestrator output
            migrations: The batch as submitted
            started_at: When the batch started (for duration)

        Returns:
            MigrationFeedback
        """
        duration_ms = (datetime.utcnow() - started_at).total_seconds() * 1000.0
        summary = FeedbackSummary(
            total_tasks=len(migrations),
            successful=len(result.successful),
            failed=len(result.failed),
            cancelled=len(result.cancelled),
            by_day=dict(result.summary.by_day),
            duration_ms=max(0.0, duration_ms),
        )

        undo_id: Optional[str] = None
        undo_time_limit_sec: Optional[float] = None
        if result.successful:
            undo_id = self.undo_manager.record(result.successful, result.previous_dates)
            undo_time_limit_sec = self.undo_manager.history.time_limit.total_seconds()

        return MigrationFeedback(
            success=result.success,
            summary=summary,
            failures=self._failure_details(result.failed),
            can_undo=undo_id is not None,
            undo_id=undo_id,
            undo_time_limit_sec=undo_time_limit_sec,
            result=result,
        )

    def _failure_details(self, failed: List[FailedMigration]) -> List[FailureDetail]:
        details = []
        for failure in failed:
            task_id = failure.migration.task_id
            title = f"Task {task_id}"
            try:
                task = self.store.find_by_id(task_id)
                if task is not None:
                    title = task.title
            except Exception as e:
                logger.warning(f"Could not load title for failed task {task_id}: {e}")
            details.append(FailureDetail(
                task_id=task_id,
                task_title=title,
                error=failure.error,
                error_kind=failure.error_kind,
                recoverable=failure.recoverable,
            ))
        return details

    @staticmethod
    def summary_message(summary: FeedbackSummary) -> SummaryMessage:
        """Message keys for the outcome plus a per-day breakdown in date order."""
        if summary.failed == 0 and summary.cancelled == 0:
            outcome = "success"
        elif summary.successful > 0:
            outcome = "partial"
        else:
            outcome = "failure"

        breakdown = [
            DayBreakdown(day=day, count=count, day_name=DAY_NAMES[date.fromisoformat(day).weekday()])
            for day, count in sorted(summary.by_day.items())
        ]
        return SummaryMessage(
            title=f"migration.result.{outcome}.title",
            message=f"migration.result.{outcome}.message",
            by_day_breakdown=breakdown,
        )

    def retry_failed(
        self,
        failures: List[FailureDetail],
        migrations: List[Migration],
        options: Optional[RecoveryOptions] = None,
    ) -> MigrationResult:
        """Re-run the migrations whose failures were marked recoverable."""
        recoverable_ids = {f.task_id for f in failures if f.recoverable}
        to_retry = [m for m in migrations if m.task_id in recoverable_ids]
        if not to_retry:
            return MigrationResult()
        logger.info(f"Retrying {len(to_retry)} recoverable migrations")
        return self.orchestrator.migrate_batch(to_retry, options)

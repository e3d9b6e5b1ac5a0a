"""Batch task migration.

Moves a batch of tasks to new scheduled dates:

1. Validate every migration against the task store
2. Apply each surviving migration through the retry controller, one at a
   time, with an optimistic last-modified check before every write
3. Compile successes, failures and cancellations into a MigrationResult

A single bad task never fails the call: per-migration problems are reported
in `MigrationResult.failed`, never raised.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from replan.database.store import PeriodicFilter, TaskFilter, TaskStore
from replan.engine.errors import classify_error, create_migration_error, migration_failure
from replan.engine.retry import CancellationToken, RetryController, RetryOutcome
from replan.models.constants import DEFAULT_APPLY_TIMEOUT_SEC, PAST_DATE_GRACE
from replan.models.errors import MigrationCancelled, MigrationError, MigrationErrorKind, MigrationFailure
from replan.models.migration import (
    FailedMigration,
    Migration,
    MigrationAttempt,
    MigrationAttemptStatus,
    MigrationResult,
    MigrationSummary,
    MigrationValidation,
    RecoveryOptions,
)
from replan.models.task import Task, TaskStatus

logger = logging.getLogger(__name__)


@dataclass
class _ApplyState:
    """Mutable per-migration state shared across retry attempts.

    `in_flight` holds an apply that outlived its timeout. Later attempts wait
    on that same future instead of starting a second write to the task.
    """

    baseline: Optional[datetime]
    previous_date: Optional[date] = None
    previous_captured: bool = False
    executor: Optional[ThreadPoolExecutor] = None
    in_flight: Optional[Future] = None

    def close(self) -> None:
        if self.executor is not None:
            self.executor.shutdown(wait=True)
            self.executor = None


@dataclass
class ServiceHealth:
    is_healthy: bool
    last_check: datetime
    errors: List[str] = field(default_factory=list)
    can_validate: bool = True
    can_migrate: bool = True
    can_retry: bool = True


@dataclass
class PeriodicInterference:
    has_interference: bool
    warnings: List[str] = field(default_factory=list)


class MigrationOrchestrator:
    """Validates and executes batch migrations against a task store."""

    def __init__(
        self,
        store: TaskStore,
        retry_controller: Optional[RetryController] = None,
        apply_timeout: Optional[float] = DEFAULT_APPLY_TIMEOUT_SEC,
        today: Optional[date] = None,
    ):
        """Create an orchestrator.

        Args:
            store: Task store to read and write
            retry_controller: Retry controller (a default one sleeps for real)
            apply_timeout: Seconds allowed per apply attempt; None runs inline without a timeout
            today: Fixed "today" for past-date warnings (defaults to the current UTC date)
        """
        self.store = store
        self.retry_controller = retry_controller or RetryController()
        self.apply_timeout = apply_timeout
        self._today = today

    def _current_day(self) -> date:
        return self._today or datetime.utcnow().date()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_migrations(
        self,
        migrations: List[Migration],
        graceful_degradation: bool = True,
    ) -> List[MigrationValidation]:
        """Validate each migration independently; never raises for per-task problems."""
        return [self._validate_one(m, graceful_degradation) for m in migrations]

    def _validate_one(self, migration: Migration, graceful_degradation: bool) -> MigrationValidation:
        errors: List[MigrationError] = []
        warnings: List[str] = []
        snapshot_updated_at: Optional[datetime] = None
        new_date = migration.new_scheduled_date

        if not isinstance(new_date, date):
            errors.append(create_migration_error(
                MigrationErrorKind.INVALID_DATE, "Invalid scheduled date provided", migration.task_id
            ))
        elif new_date < self._current_day() - PAST_DATE_GRACE:
            warnings.append("Scheduled date is in the past")

        try:
            task = self.store.find_by_id(migration.task_id)
        except Exception as e:
            error = classify_error(e, migration.task_id)
            if graceful_degradation:
                logger.warning(f"Could not validate task {migration.task_id}, proceeding: {error.message}")
                warnings.append(f"Could not validate task {migration.task_id}: {error.message}")
            else:
                errors.append(error)
            task = None
        else:
            if task is None:
                errors.append(create_migration_error(
                    MigrationErrorKind.TASK_NOT_FOUND,
                    f"Task with ID {migration.task_id} not found",
                    migration.task_id,
                ))

        if task is not None:
            snapshot_updated_at = task.updated_at
            task_errors, task_warnings = self._validate_task(task, new_date if isinstance(new_date, date) else None)
            errors.extend(task_errors)
            warnings.extend(task_warnings)

        return MigrationValidation(
            migration=migration,
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            snapshot_updated_at=snapshot_updated_at,
        )

    def _validate_task(self, task: Task, new_date: Optional[date]) -> Tuple[List[MigrationError], List[str]]:
        errors: List[MigrationError] = []
        warnings: List[str] = []

        if task.status == TaskStatus.CANCELLED:
            errors.append(create_migration_error(
                MigrationErrorKind.VALIDATION_ERROR,
                f'Task "{task.title}" is cancelled and cannot be migrated',
                task.id,
            ))
        elif task.status == TaskStatus.COMPLETED:
            warnings.append(f'Task "{task.title}" is already completed')

        if task.is_periodic_instance:
            if not task.periodic_template_id:
                errors.append(create_migration_error(
                    MigrationErrorKind.VALIDATION_ERROR,
                    f'Periodic task instance "{task.title}" is missing template ID and cannot be migrated safely',
                    task.id,
                ))
            else:
                warnings.append(
                    f'Migrating periodic task "{task.title}" may affect its template\'s generation schedule'
                )
                if new_date is not None:
                    try:
                        collision = self._find_periodic_collision(task, new_date)
                    except Exception as e:
                        logger.warning(f"Could not validate periodic task conflicts for {task.id}: {e}")
                        warnings.append("Could not validate periodic task conflicts")
                    else:
                        if collision is not None:
                            errors.append(self._periodic_conflict_error(task, new_date, collision))

        if task.dependencies and new_date is not None:
            warnings.extend(self._dependency_warnings(task, new_date))

        return errors, warnings

    def _dependency_warnings(self, task: Task, new_date: date) -> List[str]:
        warnings = []
        try:
            for dependency in self.store.get_dependencies(task.id):
                if dependency.scheduled_date is not None and dependency.scheduled_date > new_date:
                    warnings.append(f'Dependency "{dependency.title}" is scheduled after the new date')
        except Exception as e:
            logger.warning(f"Could not validate dependencies for task {task.id}: {e}")
            warnings.append("Could not validate all task dependencies")
        return warnings

    def _find_periodic_collision(self, task: Task, new_date: date) -> Optional[Task]:
        """Another instance of the same template already scheduled on `new_date`."""
        instances = self.store.find_all(TaskFilter(
            periodic_template_id=task.periodic_template_id,
            periodic_filter=PeriodicFilter.INSTANCES_ONLY,
        ))
        for instance in instances:
            if instance.id != task.id and instance.scheduled_date == new_date:
                return instance
        return None

    @staticmethod
    def _periodic_conflict_error(task: Task, new_date: date, collision: Task) -> MigrationError:
        return create_migration_error(
            MigrationErrorKind.PERIODIC_TASK_CONFLICT,
            f"Periodic task instance already exists for {new_date.isoformat()}",
            task.id,
            context={"conflicting_task_id": collision.id},
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def migrate_batch(
        self,
        migrations: List[Migration],
        options: Optional[RecoveryOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> MigrationResult:
        """Migrate tasks to new scheduled dates.

        Migrations run sequentially in input order. Duplicate task ids are
        processed independently; the last successful write wins.

        Args:
            migrations: Ordered (task, new date) requests
            options: Recovery switches (defaults to RecoveryOptions())
            cancel_token: Stops processing between migrations and during backoff

        Returns:
            MigrationResult (never raises for per-migration failures)
        """
        options = options or RecoveryOptions()
        attempts = [MigrationAttempt(migration=m) for m in migrations]
        result = MigrationResult(attempts=attempts)
        if not migrations:
            return result

        validations = self.validate_migrations(migrations, options.enable_graceful_degradation)
        for validation in validations:
            if validation.warnings:
                result.warnings.setdefault(validation.migration.task_id, []).extend(validation.warnings)

        invalid = [v for v in validations if not v.is_valid]
        if invalid and not options.enable_partial_success:
            return self._abort_batch(result, validations)

        retry_config = options.retry_config
        if not options.enable_retry:
            retry_config = retry_config.model_copy(update={"max_retries": 1})

        # Last write this batch made to each task; a duplicate entry checks against it
        written: Dict[str, datetime] = {}
        for index, (attempt, validation) in enumerate(zip(attempts, validations)):
            if cancel_token is not None and cancel_token.cancelled:
                self._cancel_remaining(result, attempts[index:])
                break

            if not validation.is_valid:
                error = validation.errors[0]
                self._fail(result, attempt, error, self._joined_message(validation.errors))
                continue

            task_id = attempt.migration.task_id
            state = _ApplyState(baseline=written.get(task_id, validation.snapshot_updated_at))
            try:
                outcome = self.retry_controller.run(
                    lambda: self._apply_with_timeout(attempt.migration, state),
                    lambda exc: classify_error(exc, task_id),
                    retry_config,
                    on_attempt=lambda n: self._mark_attempt(attempt, n),
                    cancel_token=cancel_token,
                )
                if not outcome.success:
                    late = self._settle_in_flight(task_id, state)
                    if late is not None:
                        outcome = RetryOutcome(success=True, attempts=outcome.attempts, value=late)
            except MigrationCancelled:
                late = self._settle_in_flight(task_id, state)
                if late is not None:
                    self._succeed(result, attempt, state)
                    index += 1
                self._cancel_remaining(result, attempts[index:])
                break
            finally:
                state.close()

            if outcome.success:
                written[task_id] = outcome.value.updated_at
                self._succeed(result, attempt, state)
            else:
                self._fail(result, attempt, outcome.error, outcome.error.message)

        logger.info(
            f"Batch migration finished: {result.summary.total_migrated} migrated, "
            f"{len(result.failed)} failed, {len(result.cancelled)} cancelled"
        )
        return result

    @staticmethod
    def _mark_attempt(attempt: MigrationAttempt, number: int) -> None:
        attempt.attempts = number
        attempt.status = MigrationAttemptStatus.PENDING if number == 1 else MigrationAttemptStatus.RETRYING

    @staticmethod
    def _joined_message(errors: List[MigrationError]) -> str:
        return "; ".join(e.message for e in errors)

    def _abort_batch(self, result: MigrationResult, validations: List[MigrationValidation]) -> MigrationResult:
        invalid_count = sum(1 for v in validations if not v.is_valid)
        logger.warning(f"Aborting batch before any write: {invalid_count} invalid migrations")
        for attempt, validation in zip(result.attempts, validations):
            if validation.is_valid:
                error = create_migration_error(
                    MigrationErrorKind.VALIDATION_ERROR,
                    f"Batch aborted: {invalid_count} migration(s) failed validation",
                    validation.migration.task_id,
                )
                self._fail(result, attempt, error, error.message)
            else:
                self._fail(result, attempt, validation.errors[0], self._joined_message(validation.errors))
        return result

    @staticmethod
    def _cancel_remaining(result: MigrationResult, remaining: List[MigrationAttempt]) -> None:
        now = datetime.utcnow()
        for attempt in remaining:
            attempt.status = MigrationAttemptStatus.CANCELLED
            attempt.end_time = now
            result.cancelled.append(attempt.migration)
        logger.info(f"Batch migration cancelled with {len(remaining)} migrations unprocessed")

    @staticmethod
    def _fail(result: MigrationResult, attempt: MigrationAttempt, error: MigrationError, message: str) -> None:
        attempt.status = MigrationAttemptStatus.FAILED
        attempt.last_error = error
        attempt.end_time = datetime.utcnow()
        failed = FailedMigration.from_error(attempt.migration, error, attempt.attempts)
        failed.error = message
        result.failed.append(failed)

    @staticmethod
    def _succeed(result: MigrationResult, attempt: MigrationAttempt, state: _ApplyState) -> None:
        migration = attempt.migration
        attempt.status = MigrationAttemptStatus.SUCCESS
        attempt.end_time = datetime.utcnow()
        result.successful.append(migration)
        # Keep the date from before the batch when a task appears more than once
        if migration.task_id not in result.previous_dates:
            result.previous_dates[migration.task_id] = state.previous_date
        day_key = migration.new_scheduled_date.isoformat()
        summary: MigrationSummary = result.summary
        summary.by_day[day_key] = summary.by_day.get(day_key, 0) + 1
        summary.total_migrated = len(result.successful)

    def _apply_with_timeout(self, migration: Migration, state: _ApplyState) -> Task:
        """Run one apply attempt, bounded by `apply_timeout`."""
        if self.apply_timeout is None:
            return self._apply_migration(migration, state)

        future = state.in_flight
        if future is None:
            if state.executor is None:
                state.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="migration-apply")
            future = state.executor.submit(self._apply_migration, migration, state)
            state.in_flight = future
        else:
            logger.debug(f"Waiting on the earlier apply for task {migration.task_id}")

        try:
            updated = future.result(timeout=self.apply_timeout)
        except FuturesTimeoutError as e:
            if future.done() and future.exception() is e:
                # The apply itself raised TimeoutError
                state.in_flight = None
                raise
            # The write keeps running and stays in flight for the next attempt
            raise migration_failure(
                MigrationErrorKind.TIMEOUT_ERROR, "Migration operation timed out", migration.task_id, e
            ) from e
        except Exception:
            state.in_flight = None
            raise
        state.in_flight = None
        return updated

    def _settle_in_flight(self, task_id: str, state: _ApplyState) -> Optional[Task]:
        """Block until a timed-out apply finishes; return the task if its write landed.

        The store is not touched again until the earlier write is done.
        """
        future = state.in_flight
        state.in_flight = None
        if future is None:
            return None
        logger.warning(f"Waiting for timed-out apply of task {task_id} to finish")
        try:
            updated = future.result()
        except Exception as e:
            logger.warning(f"Timed-out apply of task {task_id} failed: {type(e).__name__}: {e}")
            return None
        logger.info(f"Timed-out apply of task {task_id} completed late")
        return updated

    def _apply_migration(self, migration: Migration, state: _ApplyState) -> Task:
        """Re-read, check for a concurrent writer, and set the scheduled date."""
        task_id = migration.task_id
        current = self.store.find_by_id(task_id)
        if current is None:
            raise migration_failure(MigrationErrorKind.TASK_NOT_FOUND, f"Task with ID {task_id} not found", task_id)

        if state.baseline is not None and current.updated_at != state.baseline:
            # The next attempt re-validates against what the other writer left behind
            state.baseline = current.updated_at
            raise migration_failure(
                MigrationErrorKind.CONCURRENT_MODIFICATION,
                f"Task {task_id} was modified by another process",
                task_id,
            )
        state.baseline = current.updated_at

        if current.status == TaskStatus.CANCELLED:
            raise migration_failure(
                MigrationErrorKind.VALIDATION_ERROR,
                f'Task "{current.title}" is cancelled and cannot be migrated',
                task_id,
            )

        fields = {"scheduled_date": migration.new_scheduled_date}
        if current.is_periodic_instance:
            if not current.periodic_template_id:
                raise migration_failure(
                    MigrationErrorKind.VALIDATION_ERROR,
                    f'Periodic task instance "{current.title}" is missing template ID and cannot be migrated safely',
                    task_id,
                )
            fields["periodic_template_id"] = current.periodic_template_id
            fields["is_periodic_instance"] = True
            if current.generation_date is not None:
                fields["generation_date"] = current.generation_date
            self._check_periodic_safety(current, migration.new_scheduled_date)

        if not state.previous_captured:
            state.previous_date = current.scheduled_date
            state.previous_captured = True

        updated = self.store.update(task_id, fields)
        logger.debug(f"Migrated task {task_id} to {migration.new_scheduled_date.isoformat()}")
        return updated

    def _check_periodic_safety(self, task: Task, new_date: date) -> None:
        try:
            collision = self._find_periodic_collision(task, new_date)
        except Exception as e:
            # Validation already passed; an unavailable lookup does not block the write
            logger.warning(f"Could not validate periodic task migration safety for {task.id}: {e}")
            return
        if collision is not None:
            raise MigrationFailure(self._periodic_conflict_error(task, new_date, collision))

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get_health(self) -> ServiceHealth:
        """Check the task store and report what the orchestrator can currently do."""
        health = ServiceHealth(is_healthy=True, last_check=datetime.utcnow())
        try:
            self.store.find_all(TaskFilter())
        except Exception as e:
            logger.warning(f"Task store unavailable: {type(e).__name__}: {e}")
            health.can_migrate = False
            health.can_validate = False
            health.errors.append("Task service unavailable")
        health.is_healthy = not health.errors
        return health

    def check_periodic_interference(self, tasks: List[Task]) -> PeriodicInterference:
        """Warn about periodic instances whose migration may disturb their template."""
        result = PeriodicInterference(has_interference=False)
        today = self._current_day()
        for task in tasks:
            if not task.is_periodic_instance:
                continue
            if not task.periodic_template_id:
                result.warnings.append(f'Periodic task "{task.title}" is missing template ID')
                result.has_interference = True
                continue
            try:
                instances = self.store.find_all(TaskFilter(
                    periodic_template_id=task.periodic_template_id,
                    periodic_filter=PeriodicFilter.INSTANCES_ONLY,
                ))
            except Exception as e:
                logger.warning(f"Could not load instances of template {task.periodic_template_id}: {e}")
                result.warnings.append(f'Could not validate future instances for "{task.title}"')
                continue
            future_count = sum(
                1 for i in instances
                if i.id != task.id and i.scheduled_date is not None and i.scheduled_date >= today
            )
            if future_count > 0:
                result.warnings.append(
                    f'Template for "{task.title}" has {future_count} future instances that may be affected'
                )
        return result

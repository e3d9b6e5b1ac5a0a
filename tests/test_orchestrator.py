"""Tests for batch migration orchestration."""

import pytest
from datetime import date
from sqlalchemy.exc import OperationalError

from replan.engine.retry import CancellationToken
from replan.models.errors import MigrationErrorKind
from replan.models.migration import (
    Migration,
    MigrationAttemptStatus,
    RecoveryOptions,
    RetryConfig,
)
from replan.models.task import TaskPriority, TaskStatus

LAST_WEDNESDAY = date(2024, 1, 3)
MONDAY = date(2024, 1, 8)
WEDNESDAY = date(2024, 1, 10)


def _locked():
    return OperationalError("UPDATE tasks", {}, Exception("database is locked"))


class TestMigrateBatchBasics:
    """Test the happy path and result bookkeeping."""

    def test_empty_batch(self, task_repository, make_orchestrator):
        result = make_orchestrator(task_repository).migrate_batch([])

        assert result.success is True
        assert result.successful == []
        assert result.failed == []
        assert result.summary.total_migrated == 0
        assert result.summary.by_day == {}

    def test_migrates_tasks(self, task_repository, make_task, make_orchestrator):
        """Test that every valid migration is written and summarised by day."""
        make_task("Write report", id="t1", scheduled_date=LAST_WEDNESDAY)
        make_task("Call plumber", id="t2", scheduled_date=LAST_WEDNESDAY)
        make_task("Unscheduled", id="t3")
        migrations = [
            Migration(task_id="t1", new_scheduled_date=MONDAY),
            Migration(task_id="t2", new_scheduled_date=MONDAY),
            Migration(task_id="t3", new_scheduled_date=WEDNESDAY),
        ]

        result = make_orchestrator(task_repository).migrate_batch(migrations)

        assert result.success is True
        assert [m.task_id for m in result.successful] == ["t1", "t2", "t3"]
        assert result.summary.total_migrated == 3
        assert result.summary.by_day == {"2024-01-08": 2, "2024-01-10": 1}
        assert result.previous_dates == {"t1": LAST_WEDNESDAY, "t2": LAST_WEDNESDAY, "t3": None}
        assert task_repository.find_by_id("t1").scheduled_date == MONDAY
        assert task_repository.find_by_id("t3").scheduled_date == WEDNESDAY
        assert all(a.status == MigrationAttemptStatus.SUCCESS for a in result.attempts)
        assert all(a.attempts == 1 for a in result.attempts)

    def test_total_matches_successful(self, task_repository, make_task, make_orchestrator):
        make_task("A", id="a")
        result = make_orchestrator(task_repository).migrate_batch([
            Migration(task_id="a", new_scheduled_date=MONDAY),
            Migration(task_id="missing", new_scheduled_date=MONDAY),
        ])

        assert result.summary.total_migrated == len(result.successful) == 1
        assert sum(result.summary.by_day.values()) == 1
        assert len(result.successful) + len(result.failed) + len(result.cancelled) == 2

    def test_duplicate_task_ids_last_write_wins(self, task_repository, make_task, make_orchestrator, recording_sleep):
        """Test that duplicates run in order and the pre-batch date is kept for undo."""
        make_task("Dup", id="t1", scheduled_date=LAST_WEDNESDAY)

        result = make_orchestrator(task_repository).migrate_batch([
            Migration(task_id="t1", new_scheduled_date=MONDAY),
            Migration(task_id="t1", new_scheduled_date=WEDNESDAY),
        ])

        assert len(result.successful) == 2
        assert [a.attempts for a in result.attempts] == [1, 1]
        assert recording_sleep.calls == []
        assert task_repository.find_by_id("t1").scheduled_date == WEDNESDAY
        assert result.previous_dates["t1"] == LAST_WEDNESDAY

    def test_duplicate_task_ids_without_retry(self, task_repository, make_task, make_orchestrator):
        """Test that the batch's own earlier write is not mistaken for a concurrent writer."""
        make_task("Dup", id="t1", scheduled_date=LAST_WEDNESDAY)

        result = make_orchestrator(task_repository).migrate_batch(
            [
                Migration(task_id="t1", new_scheduled_date=MONDAY),
                Migration(task_id="t1", new_scheduled_date=WEDNESDAY),
            ],
            RecoveryOptions(enable_retry=False),
        )

        assert result.failed == []
        assert len(result.successful) == 2
        assert task_repository.find_by_id("t1").scheduled_date == WEDNESDAY

    def test_other_fields_untouched(self, task_repository, make_task, make_orchestrator):
        make_task("Keep me", id="t1", description="notes", priority=TaskPriority.HIGH, time_estimate=45)

        make_orchestrator(task_repository).migrate_batch([Migration(task_id="t1", new_scheduled_date=MONDAY)])

        task = task_repository.find_by_id("t1")
        assert task.title == "Keep me"
        assert task.description == "notes"
        assert task.priority == TaskPriority.HIGH
        assert task.time_estimate == 45


class TestValidation:
    """Test pre-flight validation and how invalid migrations are reported."""

    def test_unknown_task(self, task_repository, make_task, make_orchestrator):
        make_task("A", id="a")
        result = make_orchestrator(task_repository).migrate_batch([
            Migration(task_id="a", new_scheduled_date=MONDAY),
            Migration(task_id="ghost", new_scheduled_date=MONDAY),
        ])

        assert [m.task_id for m in result.successful] == ["a"]
        failure = result.failed[0]
        assert failure.migration.task_id == "ghost"
        assert failure.error_kind == MigrationErrorKind.TASK_NOT_FOUND
        assert failure.recoverable is False
        assert failure.attempts == 0

    def test_missing_date(self, task_repository, make_task, make_orchestrator):
        make_task("A", id="a")
        result = make_orchestrator(task_repository).migrate_batch([Migration(task_id="a", new_scheduled_date=None)])

        assert result.failed[0].error_kind == MigrationErrorKind.INVALID_DATE
        assert task_repository.find_by_id("a").scheduled_date is None

    def test_cancelled_task_rejected(self, task_repository, make_task, make_orchestrator):
        make_task("Dropped", id="c", status=TaskStatus.CANCELLED)
        result = make_orchestrator(task_repository).migrate_batch([Migration(task_id="c", new_scheduled_date=MONDAY)])

        assert result.failed[0].error_kind == MigrationErrorKind.VALIDATION_ERROR
        assert "cancelled" in result.failed[0].error

    def test_warnings_do_not_block(self, task_repository, make_task, make_orchestrator):
        """Test that completed tasks and past dates only produce warnings."""
        make_task("Done", id="d", status=TaskStatus.COMPLETED)
        result = make_orchestrator(task_repository).migrate_batch([
            Migration(task_id="d", new_scheduled_date=date(2023, 12, 1)),
        ])

        assert [m.task_id for m in result.successful] == ["d"]
        assert "Scheduled date is in the past" in result.warnings["d"]
        assert any("already completed" in w for w in result.warnings["d"])

    def test_dependency_after_new_date_warns(self, task_repository, make_task, make_orchestrator):
        make_task("Prereq", id="p", scheduled_date=WEDNESDAY)
        make_task("Follow-up", id="f", dependencies=["p"])

        validations = make_orchestrator(task_repository).validate_migrations([
            Migration(task_id="f", new_scheduled_date=MONDAY),
        ])

        assert validations[0].is_valid is True
        assert validations[0].warnings == ['Dependency "Prereq" is scheduled after the new date']

    def test_partial_success_disabled_aborts_before_writes(self, task_repository, make_task, make_orchestrator):
        make_task("A", id="a", scheduled_date=LAST_WEDNESDAY)
        options = RecoveryOptions(enable_partial_success=False)

        result = make_orchestrator(task_repository).migrate_batch([
            Migration(task_id="a", new_scheduled_date=MONDAY),
            Migration(task_id="ghost", new_scheduled_date=MONDAY),
        ], options)

        assert result.successful == []
        assert len(result.failed) == 2
        assert result.failed[0].error_kind == MigrationErrorKind.VALIDATION_ERROR
        assert "Batch aborted" in result.failed[0].error
        assert result.failed[1].error_kind == MigrationErrorKind.TASK_NOT_FOUND
        assert task_repository.find_by_id("a").scheduled_date == LAST_WEDNESDAY

    def test_lookup_failure_degrades_to_warning(self, faulty_store, make_task, make_orchestrator):
        """Test that a failed validation read is a warning when degradation is on."""
        make_task("A", id="a")

        def fail_first_read(task_id, call_number):
            if call_number == 1:
                raise ConnectionError("connection reset")

        faulty_store.before_find = fail_first_read
        result = make_orchestrator(faulty_store).migrate_batch([Migration(task_id="a", new_scheduled_date=MONDAY)])

        assert [m.task_id for m in result.successful] == ["a"]
        assert any("Could not validate task a" in w for w in result.warnings["a"])

    def test_lookup_failure_without_degradation_fails(self, faulty_store, make_task, make_orchestrator):
        make_task("A", id="a")
        faulty_store.find_failures["a"] = ConnectionError("connection reset")

        result = make_orchestrator(faulty_store).migrate_batch(
            [Migration(task_id="a", new_scheduled_date=MONDAY)],
            RecoveryOptions(enable_graceful_degradation=False),
        )

        assert result.failed[0].error_kind == MigrationErrorKind.NETWORK_ERROR
        assert faulty_store.update_calls == []


class TestRetries:
    """Test retry behaviour during apply."""

    def test_transient_failure_retried(self, faulty_store, make_task, make_orchestrator, recording_sleep):
        make_task("A", id="a")
        faulty_store.update_failures["a"] = [_locked()]

        result = make_orchestrator(faulty_store).migrate_batch([Migration(task_id="a", new_scheduled_date=MONDAY)])

        assert [m.task_id for m in result.successful] == ["a"]
        assert result.attempts[0].attempts == 2
        assert recording_sleep.calls == [1.0]

    def test_persistent_failure_exhausts_retries(self, faulty_store, make_task, make_orchestrator, recording_sleep):
        make_task("A", id="a")
        faulty_store.update_failures["a"] = [_locked() for _ in range(5)]

        result = make_orchestrator(faulty_store).migrate_batch(
            [Migration(task_id="a", new_scheduled_date=MONDAY)],
            RecoveryOptions(retry_config=RetryConfig(max_retries=3)),
        )

        failure = result.failed[0]
        assert failure.error_kind == MigrationErrorKind.DATABASE_ERROR
        assert failure.attempts == 3
        assert failure.retryable is True
        assert recording_sleep.calls == [1.0, 2.0]
        assert result.attempts[0].status == MigrationAttemptStatus.FAILED

    def test_retry_disabled(self, faulty_store, make_task, make_orchestrator, recording_sleep):
        make_task("A", id="a")
        faulty_store.update_failures["a"] = [_locked()]

        result = make_orchestrator(faulty_store).migrate_batch(
            [Migration(task_id="a", new_scheduled_date=MONDAY)],
            RecoveryOptions(enable_retry=False),
        )

        assert result.failed[0].attempts == 1
        assert recording_sleep.calls == []

    def test_non_retryable_failure_tried_once(self, faulty_store, make_task, make_orchestrator):
        make_task("A", id="a")
        faulty_store.update_failures["a"] = [PermissionError("read-only store"), PermissionError("read-only store")]

        result = make_orchestrator(faulty_store).migrate_batch([Migration(task_id="a", new_scheduled_date=MONDAY)])

        assert result.failed[0].error_kind == MigrationErrorKind.PERMISSION_DENIED
        assert result.failed[0].attempts == 1
        assert faulty_store.update_calls == ["a"]

    def test_one_failure_does_not_stop_batch(self, faulty_store, make_task, make_orchestrator):
        make_task("A", id="a")
        make_task("B", id="b")
        faulty_store.update_failures["a"] = [PermissionError("denied")]

        result = make_orchestrator(faulty_store).migrate_batch([
            Migration(task_id="a", new_scheduled_date=MONDAY),
            Migration(task_id="b", new_scheduled_date=MONDAY),
        ])

        assert [m.task_id for m in result.successful] == ["b"]
        assert [f.migration.task_id for f in result.failed] == ["a"]

    def test_timeout(self, slow_store, make_task, make_orchestrator, recording_sleep):
        """Test that a write that times out and then fails is reported as a timeout, written once."""
        make_task("Slow", id="s")
        slow_store.fail_updates = True

        result = make_orchestrator(slow_store, apply_timeout=0.05).migrate_batch(
            [Migration(task_id="s", new_scheduled_date=MONDAY)],
            RecoveryOptions(retry_config=RetryConfig(max_retries=2)),
        )

        failure = result.failed[0]
        assert failure.error_kind == MigrationErrorKind.TIMEOUT_ERROR
        assert failure.attempts == 2
        assert recording_sleep.calls == [1.0]
        assert slow_store.update_calls == ["s"]

    def test_timed_out_write_that_lands_is_a_success(self, slow_store, task_repository, make_task, make_orchestrator):
        """Test that retries wait on the running write and a late write still counts, with undo data."""
        make_task("Slow", id="s", scheduled_date=LAST_WEDNESDAY)
        make_task("Next", id="n", scheduled_date=LAST_WEDNESDAY)

        result = make_orchestrator(slow_store, apply_timeout=0.05).migrate_batch(
            [
                Migration(task_id="s", new_scheduled_date=MONDAY),
                Migration(task_id="n", new_scheduled_date=WEDNESDAY),
            ],
            RecoveryOptions(retry_config=RetryConfig(max_retries=2)),
        )

        assert result.failed == []
        assert [m.task_id for m in result.successful] == ["s", "n"]
        assert result.previous_dates == {"s": LAST_WEDNESDAY, "n": LAST_WEDNESDAY}
        assert slow_store.update_calls == ["s", "n"]
        assert slow_store.max_active == 1
        assert task_repository.find_by_id("s").scheduled_date == MONDAY
        assert task_repository.find_by_id("n").scheduled_date == WEDNESDAY



class TestConcurrentModification:
    """Test the optimistic last-modified check."""

    def test_racing_writer_detected_then_retried(self, faulty_store, task_repository, make_task, make_orchestrator):
        """Test that a write between validation and apply is detected and the retry succeeds."""
        make_task("Shared", id="a", scheduled_date=LAST_WEDNESDAY)

        def other_writer(task_id, call_number):
            if call_number == 2:
                task_repository.update(task_id, {"title": "Edited elsewhere"})

        faulty_store.before_find = other_writer
        result = make_orchestrator(faulty_store).migrate_batch([Migration(task_id="a", new_scheduled_date=MONDAY)])

        assert [m.task_id for m in result.successful] == ["a"]
        assert result.attempts[0].attempts == 2
        task = task_repository.find_by_id("a")
        assert task.title == "Edited elsewhere"
        assert task.scheduled_date == MONDAY

    def test_persistent_racing_writer_fails(self, faulty_store, task_repository, make_task, make_orchestrator):
        make_task("Shared", id="a", scheduled_date=LAST_WEDNESDAY)

        def other_writer(task_id, call_number):
            if call_number >= 2:
                task_repository.update(task_id, {"description": f"edit {call_number}"})

        faulty_store.before_find = other_writer
        result = make_orchestrator(faulty_store).migrate_batch([Migration(task_id="a", new_scheduled_date=MONDAY)])

        failure = result.failed[0]
        assert failure.error_kind == MigrationErrorKind.CONCURRENT_MODIFICATION
        assert failure.attempts == 3
        assert faulty_store.update_calls == []
        assert task_repository.find_by_id("a").scheduled_date == LAST_WEDNESDAY

    def test_cancelled_by_racing_writer(self, faulty_store, task_repository, make_task, make_orchestrator):
        """Test that a task cancelled elsewhere after validation is not moved."""
        make_task("Shared", id="a")

        def cancel_elsewhere(task_id, call_number):
            if call_number == 2:
                task_repository.update(task_id, {"status": TaskStatus.CANCELLED})

        faulty_store.before_find = cancel_elsewhere
        result = make_orchestrator(faulty_store).migrate_batch([Migration(task_id="a", new_scheduled_date=MONDAY)])

        assert result.failed[0].error_kind == MigrationErrorKind.VALIDATION_ERROR
        assert task_repository.find_by_id("a").scheduled_date is None


class TestPeriodicTasks:
    """Test migration of periodic task instances."""

    def test_instance_keeps_template_linkage(self, task_repository, make_task, make_orchestrator):
        make_task(
            "Weekly review", id="w1", scheduled_date=LAST_WEDNESDAY,
            is_periodic_instance=True, periodic_template_id="tpl", generation_date=LAST_WEDNESDAY,
        )

        result = make_orchestrator(task_repository).migrate_batch([Migration(task_id="w1", new_scheduled_date=MONDAY)])

        assert result.success is True
        assert any("generation schedule" in w for w in result.warnings["w1"])
        task = task_repository.find_by_id("w1")
        assert task.is_periodic_instance is True
        assert task.periodic_template_id == "tpl"
        assert task.generation_date == LAST_WEDNESDAY

    def test_missing_template_rejected(self, task_repository, make_task, make_orchestrator):
        make_task("Orphan", id="o", is_periodic_instance=True)

        result = make_orchestrator(task_repository).migrate_batch([Migration(task_id="o", new_scheduled_date=MONDAY)])

        assert result.failed[0].error_kind == MigrationErrorKind.VALIDATION_ERROR
        assert "missing template ID" in result.failed[0].error

    def test_same_day_instance_conflict(self, task_repository, make_task, make_orchestrator):
        make_task("Standup", id="s1", scheduled_date=LAST_WEDNESDAY, is_periodic_instance=True, periodic_template_id="tpl")
        make_task("Standup", id="s2", scheduled_date=MONDAY, is_periodic_instance=True, periodic_template_id="tpl")

        result = make_orchestrator(task_repository).migrate_batch([Migration(task_id="s1", new_scheduled_date=MONDAY)])

        failure = result.failed[0]
        assert failure.error_kind == MigrationErrorKind.PERIODIC_TASK_CONFLICT
        assert failure.recoverable is True
        assert failure.retryable is False
        assert task_repository.find_by_id("s1").scheduled_date == LAST_WEDNESDAY

    def test_periodic_interference(self, task_repository, make_task, make_orchestrator):
        first = make_task("Standup", id="s1", scheduled_date=LAST_WEDNESDAY, is_periodic_instance=True, periodic_template_id="tpl")
        make_task("Standup", id="s2", scheduled_date=MONDAY, is_periodic_instance=True, periodic_template_id="tpl")
        regular = make_task("Regular", id="r")

        report = make_orchestrator(task_repository).check_periodic_interference([first, regular])

        assert report.has_interference is False
        assert report.warnings == ['Template for "Standup" has 1 future instances that may be affected']


class TestCancellation:
    """Test cooperative cancellation of a running batch."""

    def test_cancelled_before_start(self, task_repository, make_task, make_orchestrator):
        make_task("A", id="a")
        token = CancellationToken()
        token.cancel()

        result = make_orchestrator(task_repository).migrate_batch(
            [Migration(task_id="a", new_scheduled_date=MONDAY)], cancel_token=token
        )

        assert result.success is False
        assert [m.task_id for m in result.cancelled] == ["a"]
        assert task_repository.find_by_id("a").scheduled_date is None

    def test_cancel_during_backoff_keeps_completed_work(
        self, faulty_store, task_repository, make_task, make_orchestrator, recording_sleep
    ):
        for task_id in ("a", "b", "c"):
            make_task(task_id.upper(), id=task_id)
        faulty_store.update_failures["b"] = [_locked()]
        token = CancellationToken()
        recording_sleep.on_sleep = lambda _: token.cancel()

        result = make_orchestrator(faulty_store).migrate_batch([
            Migration(task_id="a", new_scheduled_date=MONDAY),
            Migration(task_id="b", new_scheduled_date=MONDAY),
            Migration(task_id="c", new_scheduled_date=MONDAY),
        ], cancel_token=token)

        assert [m.task_id for m in result.successful] == ["a"]
        assert result.failed == []
        assert [m.task_id for m in result.cancelled] == ["b", "c"]
        assert result.summary.total_migrated == 1
        assert task_repository.find_by_id("a").scheduled_date == MONDAY
        assert task_repository.find_by_id("c").scheduled_date is None
        statuses = [a.status for a in result.attempts]
        assert statuses == [
            MigrationAttemptStatus.SUCCESS,
            MigrationAttemptStatus.CANCELLED,
            MigrationAttemptStatus.CANCELLED,
        ]


class TestHealth:
    def test_healthy(self, task_repository, make_orchestrator):
        health = make_orchestrator(task_repository).get_health()
        assert health.is_healthy is True
        assert health.can_migrate is True

    def test_store_unavailable(self, faulty_store, make_orchestrator):
        faulty_store.find_all_error = ConnectionError("connection refused")
        health = make_orchestrator(faulty_store).get_health()

        assert health.is_healthy is False
        assert health.can_migrate is False
        assert health.errors == ["Task service unavailable"]

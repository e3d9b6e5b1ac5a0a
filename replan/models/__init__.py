"""Data models for replan."""

from replan.models.task import Task, TaskStatus, TaskPriority
from replan.models.errors import MigrationError, MigrationErrorKind, MigrationFailure, MigrationCancelled
from replan.models.migration import (
    Migration,
    MigrationAttempt,
    MigrationAttemptStatus,
    MigrationResult,
    MigrationSummary,
    FailedMigration,
    RecoveryOptions,
    RetryConfig,
)
from replan.models.dependency import DependencyConflict, DependencyValidationResult, ConflictKind, ConflictSeverity
from replan.models.suggestion import SchedulingSuggestion, SuggestionReason
from replan.models.undo import UndoRecord, UndoOutcome, UndoHandle

__all__ = [
    "Task",
    "TaskStatus",
    "TaskPriority",
    "MigrationError",
    "MigrationErrorKind",
    "MigrationFailure",
    "MigrationCancelled",
    "Migration",
    "MigrationAttempt",
    "MigrationAttemptStatus",
    "MigrationResult",
    "MigrationSummary",
    "FailedMigration",
    "RecoveryOptions",
    "RetryConfig",
    "DependencyConflict",
    "DependencyValidationResult",
    "ConflictKind",
    "ConflictSeverity",
    "SchedulingSuggestion",
    "SuggestionReason",
    "UndoRecord",
    "UndoOutcome",
    "UndoHandle",
]

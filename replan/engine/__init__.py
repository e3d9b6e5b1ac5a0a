"""Migration engine for replan."""

from replan.engine.errors import classify_error, create_migration_error
from replan.engine.retry import CancellationToken, RetryController, RetryOutcome, compute_backoff_delay
from replan.engine.dependencies import DependencyConflictValidator
from replan.engine.suggestions import SchedulingSuggestionEngine
from replan.engine.orchestrator import MigrationOrchestrator
from replan.engine.undo import UndoHistory, UndoManager
from replan.engine.feedback import MigrationFeedbackService
from replan.engine.weeks import get_week_range, find_incomplete_tasks_for_previous_week

__all__ = [
    "classify_error",
    "create_migration_error",
    "CancellationToken",
    "RetryController",
    "RetryOutcome",
    "compute_backoff_delay",
    "DependencyConflictValidator",
    "SchedulingSuggestionEngine",
    "MigrationOrchestrator",
    "UndoHistory",
    "UndoManager",
    "MigrationFeedbackService",
    "get_week_range",
    "find_incomplete_tasks_for_previous_week",
]

"""FastAPI web application for replan."""

import logging
import os
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from replan.database.database import get_db
from replan.database.repository import TaskRepository
from replan.database.store import WeekStartDay
from replan.engine.dependencies import DependencyConflictValidator
from replan.engine.feedback import MigrationFeedbackService
from replan.engine.orchestrator import MigrationOrchestrator
from replan.engine.suggestions import SchedulingSuggestionEngine
from replan.engine.undo import UndoHistory, UndoManager
from replan.engine.weeks import find_incomplete_tasks_for_previous_week, get_week_range
from replan.models.constants import DEFAULT_APPLY_TIMEOUT_SEC, DEFAULT_UNDO_TIME_LIMIT
from replan.models.dependency import DependencyInfo, DependencyValidationResult
from replan.models.feedback import MigrationFeedback, SummaryMessage
from replan.models.migration import Migration, MigrationValidation, RecoveryOptions
from replan.models.suggestion import SchedulingSuggestion
from replan.models.task import Task, TaskPriority, TaskStatus
from replan.models.task_factory import create_task_base
from replan.models.undo import UndoHandle, UndoOutcome

load_dotenv()

logger = logging.getLogger(__name__)

APPLY_TIMEOUT_SEC = float(os.getenv("MIGRATION_APPLY_TIMEOUT_SEC", str(DEFAULT_APPLY_TIMEOUT_SEC)))
UNDO_TIME_LIMIT_MIN = float(
    os.getenv("MIGRATION_UNDO_TIME_LIMIT_MIN", str(DEFAULT_UNDO_TIME_LIMIT.total_seconds() / 60))
)

# Initialize FastAPI app
app = FastAPI(
    title="replan API",
    description="Moves unfinished tasks into a new week with retry, conflict checks and undo",
    version="0.1.0"
)

# Undo records outlive a request; one history per process
undo_history = UndoHistory(time_limit=timedelta(minutes=UNDO_TIME_LIMIT_MIN))


# Request models
class TaskCreateRequest(BaseModel):
    """Request body for task creation."""
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    dependencies: Optional[List[str]] = None
    scheduled_date: Optional[date] = None
    time_estimate: Optional[int] = Field(None, ge=0)
    is_periodic_instance: Optional[bool] = None
    periodic_template_id: Optional[str] = None
    generation_date: Optional[date] = None


class MigrationBatchRequest(BaseModel):
    """Request body for a batch migration."""
    migrations: List[Migration]
    options: Optional[RecoveryOptions] = None


class MigrationListRequest(BaseModel):
    migrations: List[Migration]


class DependencyInfoRequest(BaseModel):
    task_ids: List[str]


class SuggestionRequest(BaseModel):
    """Request body for scheduling suggestions."""
    task_ids: List[str]
    anchor_date: date
    week_start_day: WeekStartDay = WeekStartDay.MONDAY
    planned_dates: Dict[str, date] = Field(default_factory=dict, description="Pending dates of tasks in the batch")


# Response models
class TaskResponse(BaseModel):
    task: Task


class TaskListResponse(BaseModel):
    tasks: List[Task]


class CandidatesResponse(BaseModel):
    """Incomplete tasks from the previous week plus the target week range."""
    week_start: date
    week_end: date
    tasks: List[Task]


class MigrationResponse(BaseModel):
    feedback: MigrationFeedback
    message: SummaryMessage


class ValidationResponse(BaseModel):
    validations: List[MigrationValidation]


class SuggestionResponse(BaseModel):
    suggestions: List[SchedulingSuggestion]
    dependent_migrations: List[Migration] = Field(default_factory=list)


def _orchestrator(repo: TaskRepository) -> MigrationOrchestrator:
    return MigrationOrchestrator(repo, apply_timeout=APPLY_TIMEOUT_SEC or None)


@app.get("/health")
def health(db: Session = Depends(get_db)):
    """Health check endpoint."""
    status = _orchestrator(TaskRepository(db)).get_health()
    return {
        "status": "healthy" if status.is_healthy else "degraded",
        "version": "0.1.0",
        "can_migrate": status.can_migrate,
        "errors": status.errors,
    }


@app.post("/tasks", response_model=TaskResponse, status_code=201)
def create_task(request: TaskCreateRequest, db: Session = Depends(get_db)):
    """Create a task."""
    task = create_task_base(**request.model_dump())
    try:
        created = TaskRepository(db).create(task)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create task: {str(e)}")
    return TaskResponse(task=created)


@app.get("/tasks", response_model=TaskListResponse)
def list_tasks(db: Session = Depends(get_db)):
    """List all tasks, newest first."""
    return TaskListResponse(tasks=TaskRepository(db).find_all())


@app.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(task_id: str, db: Session = Depends(get_db)):
    """Get a single task."""
    task = TaskRepository(db).find_by_id(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return TaskResponse(task=task)


@app.get("/migrations/candidates", response_model=CandidatesResponse)
def migration_candidates(
    anchor_date: date = Query(..., description="Any day of the target week"),
    week_start_day: WeekStartDay = Query(WeekStartDay.MONDAY, description="0 = Sunday, 1 = Monday"),
    db: Session = Depends(get_db),
):
    """Incomplete tasks from the week before the target week."""
    week_start, week_end = get_week_range(anchor_date, week_start_day)
    tasks = find_incomplete_tasks_for_previous_week(TaskRepository(db), anchor_date, week_start_day)
    return CandidatesResponse(week_start=week_start, week_end=week_end, tasks=tasks)


@app.post("/migrations", response_model=MigrationResponse)
def migrate_tasks(request: MigrationBatchRequest, db: Session = Depends(get_db)):
    """Run a batch migration. Per-task failures are reported in the body, not as HTTP errors.

    An empty batch is a successful no-op.
    """
    repo = TaskRepository(db)
    orchestrator = _orchestrator(repo)
    feedback_service = MigrationFeedbackService(repo, orchestrator, UndoManager(repo, undo_history))

    started_at = datetime.utcnow()
    result = orchestrator.migrate_batch(request.migrations, request.options)
    feedback = feedback_service.process_result(result, request.migrations, started_at)
    return MigrationResponse(feedback=feedback, message=feedback_service.summary_message(feedback.summary))


@app.post("/migrations/validate", response_model=ValidationResponse)
def validate_migrations(request: MigrationListRequest, db: Session = Depends(get_db)):
    """Pre-flight validation without writing anything."""
    validations = _orchestrator(TaskRepository(db)).validate_migrations(request.migrations)
    return ValidationResponse(validations=validations)


@app.post("/migrations/dependencies", response_model=DependencyValidationResult)
def validate_dependencies(request: MigrationListRequest, db: Session = Depends(get_db)):
    """Dependency ordering conflicts across the proposed batch."""
    return DependencyConflictValidator(TaskRepository(db)).validate_batch(request.migrations)


@app.post("/migrations/dependency-info", response_model=Dict[str, DependencyInfo])
def dependency_info(request: DependencyInfoRequest, db: Session = Depends(get_db)):
    """Dependencies and dependents of each task."""
    return DependencyConflictValidator(TaskRepository(db)).get_dependency_info(request.task_ids)


@app.post("/suggestions", response_model=SuggestionResponse)
def suggest_dates(request: SuggestionRequest, db: Session = Depends(get_db)):
    """Suggest a day in the target week for each task."""
    repo = TaskRepository(db)
    tasks = repo.get_many(request.task_ids)
    missing = set(request.task_ids) - {t.id for t in tasks}
    if missing:
        raise HTTPException(status_code=404, detail=f"Tasks not found: {', '.join(sorted(missing))}")

    suggestions = SchedulingSuggestionEngine(repo).suggest(
        tasks, request.anchor_date, request.week_start_day, request.planned_dates
    )
    primary = [Migration(task_id=s.task_id, new_scheduled_date=s.suggested_date) for s in suggestions]
    dependent = DependencyConflictValidator(repo).suggest_dependent_migrations(
        primary, request.anchor_date, request.week_start_day
    )
    return SuggestionResponse(suggestions=suggestions, dependent_migrations=dependent)


@app.get("/undo", response_model=List[UndoHandle])
def list_undo(db: Session = Depends(get_db)):
    """Undo operations still available, newest first."""
    return UndoManager(TaskRepository(db), undo_history).list_available()


@app.post("/undo/{undo_id}", response_model=UndoOutcome)
def undo_migration(undo_id: str, db: Session = Depends(get_db)):
    """Restore the dates a batch overwrote. Unknown or expired ids return success=false."""
    outcome = UndoManager(TaskRepository(db), undo_history).undo(undo_id)
    if not outcome.success:
        logger.info(f"Undo {undo_id} failed: {outcome.error}")
    return outcome


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

"""Pytest fixtures and configuration for replan tests."""

import threading
import time
import pytest
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from replan.database.database import Base
from replan.database.repository import TaskRepository
from replan.engine.retry import RetryController
from replan.engine.orchestrator import MigrationOrchestrator
from replan.models.task import Task
from replan.models.task_factory import create_task_base


# Use in-memory SQLite database for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

# Fixed "today" for past-date checks; tests schedule into the week of Monday 2024-01-08
TODAY = date(2024, 1, 5)


@pytest.fixture(scope="function")
def db_session():
    """Create a database session for testing.

    Uses an in-memory SQLite database that is created fresh for each test.
    """
    # Create engine with StaticPool for in-memory database
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragmas(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # Import models so they register with Base.metadata
    from replan.database import models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def task_repository(db_session: Session):
    """Create a TaskRepository instance for testing."""
    return TaskRepository(db_session)


@pytest.fixture
def make_task(task_repository) -> Callable[..., Task]:
    """Create and persist a task; keyword arguments override defaults.

    `id` may be given to get readable task ids in assertions.
    """
    def _make(title: str = "Test Task", id: Optional[str] = None, **overrides) -> Task:
        task = create_task_base(title=title, task_id=id, **overrides)
        return task_repository.create(task)
    return _make


class RecordingSleep:
    """Stands in for time.sleep and remembers every requested delay."""

    def __init__(self, on_sleep: Optional[Callable[[float], None]] = None):
        self.calls: List[float] = []
        self.on_sleep = on_sleep

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(seconds)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 8, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FaultyStore:
    """Wraps a real store and injects failures.

    - `update_failures`: task id -> exceptions raised by successive updates of that task
    - `find_failures`: task id -> exception raised by find_by_id
    - `dependency_failures` / `dependent_failures`: task ids whose lookups raise
    - `before_find`: called with (task_id, call_number) before each find_by_id
    - `find_all_error`: raised by find_all when set
    """

    def __init__(self, inner: TaskRepository):
        self.inner = inner
        self.update_failures: Dict[str, List[Exception]] = {}
        self.find_failures: Dict[str, Exception] = {}
        self.dependency_failures: Dict[str, Exception] = {}
        self.dependent_failures: Dict[str, Exception] = {}
        self.before_find: Optional[Callable[[str, int], None]] = None
        self.find_all_error: Optional[Exception] = None
        self.update_calls: List[str] = []
        self.find_calls: Dict[str, int] = {}

    def create(self, task: Task) -> Task:
        return self.inner.create(task)

    def find_by_id(self, task_id: str) -> Optional[Task]:
        self.find_calls[task_id] = self.find_calls.get(task_id, 0) + 1
        if self.before_find is not None:
            self.before_find(task_id, self.find_calls[task_id])
        if task_id in self.find_failures:
            raise self.find_failures[task_id]
        return self.inner.find_by_id(task_id)

    def update(self, task_id: str, fields: Dict[str, Any]) -> Task:
        self.update_calls.append(task_id)
        if self.update_failures.get(task_id):
            raise self.update_failures[task_id].pop(0)
        return self.inner.update(task_id, fields)

    def get_dependencies(self, task_id: str) -> List[Task]:
        if task_id in self.dependency_failures:
            raise self.dependency_failures[task_id]
        return self.inner.get_dependencies(task_id)

    def get_dependents(self, task_id: str) -> List[Task]:
        if task_id in self.dependent_failures:
            raise self.dependent_failures[task_id]
        return self.inner.get_dependents(task_id)

    def find_all(self, task_filter=None) -> List[Task]:
        if self.find_all_error is not None:
            raise self.find_all_error
        return self.inner.find_all(task_filter)

    def get_tasks_for_week(self, anchor, week_start_day=1) -> List[Task]:
        return self.inner.get_tasks_for_week(anchor, week_start_day)


class SlowStore(FaultyStore):
    """Store whose updates take `delay` seconds, then write (or raise when `fail_updates` is set).

    `max_active` records how many updates ever ran at the same time.
    """

    def __init__(self, inner: TaskRepository, delay: float = 0.3, fail_updates: bool = False):
        super().__init__(inner)
        self.delay = delay
        self.fail_updates = fail_updates
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def update(self, task_id: str, fields: Dict[str, Any]) -> Task:
        self.update_calls.append(task_id)
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delay)
            if self.fail_updates:
                raise RuntimeError("write rejected")
            return self.inner.update(task_id, fields)
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def faulty_store(task_repository) -> FaultyStore:
    return FaultyStore(task_repository)


@pytest.fixture
def slow_store(task_repository) -> SlowStore:
    return SlowStore(task_repository)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def make_orchestrator(recording_sleep) -> Callable[..., MigrationOrchestrator]:
    """Orchestrator with recorded (instant) backoff, no apply timeout and a fixed today."""
    def _make(store, apply_timeout: Optional[float] = None) -> MigrationOrchestrator:
        return MigrationOrchestrator(
            store,
            retry_controller=RetryController(sleep=recording_sleep),
            apply_timeout=apply_timeout,
            today=TODAY,
        )
    return _make


@pytest.fixture
def test_client(db_session: Session, monkeypatch):
    """Create a FastAPI test client with overridden database dependency."""
    from replan.api import app as app_module
    from replan.database.database import get_db
    from replan.engine.undo import UndoHistory

    # Override the get_db dependency to use our test database session
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close the session here, let the fixture handle it

    # Run applies inline and start every test with an empty undo history
    monkeypatch.setattr(app_module, "APPLY_TIMEOUT_SEC", 0)
    monkeypatch.setattr(app_module, "undo_history", UndoHistory())

    app_module.app.dependency_overrides[get_db] = override_get_db

    with TestClient(app_module.app) as client:
        yield client

    # Clean up dependency overrides
    app_module.app.dependency_overrides.clear()

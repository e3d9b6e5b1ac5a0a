"""Time-boxed undo for successful migration batches.

An undo record holds the scheduled date every migrated task had before the
batch. Records live in an UndoHistory with an injected clock; expired records
are swept lazily on every access, so no background timer is needed.
"""

import logging
import threading
import uuid
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional

from replan.database.store import TaskStore
from replan.models.constants import DEFAULT_UNDO_TIME_LIMIT
from replan.models.migration import Migration
from replan.models.undo import UndoHandle, UndoOutcome, UndoRecord

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class UndoHistory:
    """In-memory undo records keyed by generated id."""

    def __init__(self, clock: Clock = datetime.utcnow, time_limit: timedelta = DEFAULT_UNDO_TIME_LIMIT):
        self.clock = clock
        self.time_limit = time_limit
        self._records: Dict[str, UndoRecord] = {}
        self._lock = threading.Lock()

    def _sweep(self, now: datetime) -> None:
        expired = [undo_id for undo_id, record in self._records.items() if record.is_expired(now)]
        for undo_id in expired:
            del self._records[undo_id]
        if expired:
            logger.debug(f"Swept {len(expired)} expired undo records")

    def add(self, migrations: List[Migration], previous_dates: Dict[str, Optional[date]]) -> UndoRecord:
        now = self.clock()
        record = UndoRecord(
            id=str(uuid.uuid4()),
            timestamp=now,
            migrations=list(migrations),
            previous_dates=dict(previous_dates),
            time_limit=self.time_limit,
        )
        with self._lock:
            self._sweep(now)
            self._records[record.id] = record
        return record

    def pop(self, undo_id: str) -> Optional[UndoRecord]:
        """Remove and return a record, expired or not. Sweeps the others."""
        with self._lock:
            record = self._records.pop(undo_id, None)
            self._sweep(self.clock())
        return record

    def available(self) -> List[UndoRecord]:
        """Unexpired records, newest first."""
        with self._lock:
            self._sweep(self.clock())
            records = list(self._records.values())
        return sorted(records, key=lambda r: r.timestamp, reverse=True)


class UndoManager:
    """Records and reverses successful migration batches."""

    def __init__(self, store: TaskStore, history: Optional[UndoHistory] = None):
        self.store = store
        self.history = history or UndoHistory()

    def record(
        self,
        migrations: List[Migration],
        previous_dates: Dict[str, Optional[date]],
    ) -> str:
        """Store a compensating record for the successful part of a batch.

        Args:
            migrations: Migrations that were applied
            previous_dates: Task id -> scheduled date before the batch

        Returns:
            The undo id
        """
        record = self.history.add(migrations, previous_dates)
        logger.info(f"Recorded undo {record.id} for {len(migrations)} migrations")
        return record.id

    def undo(self, undo_id: str) -> UndoOutcome:
        """Restore the pre-batch scheduled dates of a recorded batch.

        The record is removed whatever the outcome, so it cannot be replayed.
        Tasks whose previous date was not captured, or whose write fails, are
        skipped and listed in `failed_task_ids`.
        """
        now = self.history.clock()
        record = self.history.pop(undo_id)
        if record is None:
            return UndoOutcome(success=False, error="Undo operation not found")
        if record.is_expired(now):
            logger.info(f"Undo {undo_id} requested after its time limit")
            return UndoOutcome(success=False, error="Undo time limit has expired")

        undone = 0
        failed: List[str] = []
        for task_id in record.task_ids():
            if task_id not in record.previous_dates:
                logger.warning(f"No previous date captured for task {task_id}; skipping undo")
                failed.append(task_id)
                continue
            try:
                self.store.update(task_id, {"scheduled_date": record.previous_dates[task_id]})
            except Exception as e:
                logger.error(f"Failed to undo migration for task {task_id}: {type(e).__name__}: {e}")
                failed.append(task_id)
                continue
            undone += 1

        logger.info(f"Undo {undo_id}: restored {undone} tasks, {len(failed)} failed")
        if failed and undone == 0:
            return UndoOutcome(
                success=False,
                undone_count=0,
                error="Failed to undo any migrations",
                failed_task_ids=failed,
            )
        return UndoOutcome(
            success=True,
            undone_count=undone,
            error=f"Failed to undo {len(failed)} migrations" if failed else None,
            failed_task_ids=failed,
        )

    def list_available(self) -> List[UndoHandle]:
        """Undo operations that have not expired, newest first."""
        now = self.history.clock()
        return [
            UndoHandle(
                id=record.id,
                timestamp=record.timestamp,
                task_count=len(record.task_ids()),
                time_remaining_sec=max(0.0, (record.expires_at() - now).total_seconds()),
            )
            for record in self.history.available()
        ]

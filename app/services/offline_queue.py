"""Offline-tolerant submission of progression updates.

Updates that cannot reach the record store are persisted to a local queue
and replayed in enqueue order once connectivity returns. A failing head
entry blocks the entries behind it, so one user's updates are never applied
out of order. Entries are deleted only after their replay's write has been
confirmed, which makes delivery at-least-once: a crash between the write
and the delete replays that update again.
"""
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.db.queue_models import OfflineQueueEntry
from app.services.progression import (
    InvalidUpdate,
    ProgressionOrchestrator,
    ProgressionResult,
    ProgressionUpdate,
    coerce_update,
)
from app.services.store import StoreUnavailable

logger = logging.getLogger(__name__)


class ConnectivitySignal:
    """Pushed connectivity state. Subscribers hear transitions only."""

    def __init__(self, is_connected: bool = True):
        self._connected = is_connected
        self._subscribers: List[Callable[[bool], None]] = []
        self._lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected

    def subscribe(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Register a transition callback. Returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, is_connected: bool) -> bool:
        """
        Push the current state.

        Returns:
            True if the state changed and subscribers were notified
        """
        with self._lock:
            if is_connected == self._connected:
                return False
            self._connected = is_connected
            subscribers = list(self._subscribers)

        logger.info(f"Connectivity changed: {'online' if is_connected else 'offline'}")
        for callback in subscribers:
            callback(is_connected)
        return True


@dataclass(frozen=True)
class QueuedSubmission:
    entry_id: int
    submission_id: str
    user_id: str
    payload: str
    enqueued_at: datetime
    immediate: bool = True
    attempts: int = 0
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @classmethod
    def from_row(cls, row: OfflineQueueEntry) -> "QueuedSubmission":
        return cls(
            entry_id=row.id,
            submission_id=row.submission_id,
            user_id=row.user_id,
            payload=row.payload,
            enqueued_at=row.enqueued_at,
            immediate=row.immediate,
            attempts=row.attempts,
            next_attempt_at=row.next_attempt_at,
            last_error=row.last_error,
        )

    def update(self) -> ProgressionUpdate:
        """Decode the stored update. Raises InvalidUpdate if it is corrupt."""
        try:
            return ProgressionUpdate.model_validate_json(self.payload)
        except ValueError as e:
            raise InvalidUpdate(f"Corrupt queue entry {self.entry_id}: {e}") from e


class OfflineQueueStore:
    """FIFO queue persisted in the local queue database."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def enqueue(
        self,
        user_id: str,
        update: ProgressionUpdate,
        now: Optional[datetime] = None,
        immediate: bool = True
    ) -> QueuedSubmission:
        return self.enqueue_many(user_id, [update], now=now, immediate=immediate)[0]

    def enqueue_many(
        self,
        user_id: str,
        updates: List[ProgressionUpdate],
        now: Optional[datetime] = None,
        immediate: bool = True
    ) -> List[QueuedSubmission]:
        """Append updates in order, all or none in one transaction."""
        db = self._session_factory()
        try:
            rows = [
                OfflineQueueEntry(
                    submission_id=str(uuid.uuid4()),
                    user_id=user_id,
                    payload=update.model_dump_json(),
                    immediate=immediate,
                    enqueued_at=now or datetime.utcnow(),
                    attempts=0,
                )
                for update in updates
            ]
            db.add_all(rows)
            db.commit()
            for row in rows:
                db.refresh(row)
            return [QueuedSubmission.from_row(row) for row in rows]
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def head(self) -> Optional[QueuedSubmission]:
        db = self._session_factory()
        try:
            row = db.query(OfflineQueueEntry).order_by(OfflineQueueEntry.id).first()
            return QueuedSubmission.from_row(row) if row else None
        finally:
            db.close()

    def entries(self) -> List[QueuedSubmission]:
        db = self._session_factory()
        try:
            rows = db.query(OfflineQueueEntry).order_by(OfflineQueueEntry.id).all()
            return [QueuedSubmission.from_row(row) for row in rows]
        finally:
            db.close()

    def count(self) -> int:
        db = self._session_factory()
        try:
            return db.query(OfflineQueueEntry).count()
        finally:
            db.close()

    def remove(self, entry_id: int) -> bool:
        db = self._session_factory()
        try:
            deleted = db.query(OfflineQueueEntry).filter(OfflineQueueEntry.id == entry_id).delete()
            db.commit()
            return deleted > 0
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def record_failure(self, entry_id: int, error: str, next_attempt_at: datetime) -> Optional[QueuedSubmission]:
        """Increment an entry's attempts and schedule its next replay."""
        db = self._session_factory()
        try:
            row = db.get(OfflineQueueEntry, entry_id)
            if row is None:
                return None
            row.attempts += 1
            row.last_error = error[:500]
            row.next_attempt_at = next_attempt_at
            db.commit()
            db.refresh(row)
            return QueuedSubmission.from_row(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


@dataclass
class SubmissionResult:
    success: bool
    queued: bool
    result: Optional[ProgressionResult] = None
    entry_id: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class DrainReport:
    started: bool
    applied: List[int] = field(default_factory=list)
    failed: Optional[int] = None
    exhausted: List[int] = field(default_factory=list)
    blocked_until: Optional[datetime] = None
    remaining: int = 0


class OfflineSubmissionPipeline:
    """Passes updates straight through when possible, queues them otherwise."""

    def __init__(
        self,
        orchestrator: ProgressionOrchestrator,
        queue: OfflineQueueStore,
        signal: ConnectivitySignal,
        clock: Callable[[], datetime] = datetime.utcnow,
        max_attempts: int = settings.OFFLINE_MAX_ATTEMPTS,
        backoff_base_seconds: float = settings.OFFLINE_BACKOFF_BASE_SECONDS,
        backoff_max_seconds: float = settings.OFFLINE_BACKOFF_MAX_SECONDS
    ):
        self.orchestrator = orchestrator
        self.queue = queue
        self.signal = signal
        self.clock = clock
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self._drain_lock = threading.Lock()
        self._unsubscribe = signal.subscribe(self._on_connectivity_change)

    @property
    def draining(self) -> bool:
        return self._drain_lock.locked()

    def close(self) -> None:
        """Stop reacting to connectivity changes."""
        self._unsubscribe()

    def backoff(self, attempts: int) -> timedelta:
        """Delay before the next replay after ``attempts`` failures."""
        seconds = self.backoff_base_seconds * (2 ** max(0, attempts - 1))
        return timedelta(seconds=min(seconds, self.backoff_max_seconds))

    def submit(self, user_id: str, update, immediate: bool = True) -> SubmissionResult:
        """
        Submit an update.

        Offline, behind already-queued entries, or on a transient store
        failure, the update is queued and ``queued=True`` is returned: the
        update is accepted and will sync later. Malformed updates raise.

        Raises:
            InvalidUpdate: If the update or user id is invalid
        """
        update = coerce_update(update)
        if not user_id:
            raise InvalidUpdate("user_id is required")

        if not self.signal.is_connected:
            return self._enqueue(user_id, update, "offline", immediate)

        if self.queue.count() > 0:
            # Direct submission would overtake queued updates
            queued = self._enqueue(user_id, update, "queue not empty", immediate)
            self.drain()
            return queued

        try:
            result = self.orchestrator.apply_update(user_id, update, immediate=immediate)
        except StoreUnavailable as e:
            logger.warning(f"Direct submission failed, queueing: {e}", extra={"user_id": user_id})
            return self._enqueue(user_id, update, str(e), immediate)

        return SubmissionResult(success=True, queued=False, result=result)

    def _enqueue(self, user_id: str, update: ProgressionUpdate, reason: str, immediate: bool = True) -> SubmissionResult:
        entry = self.queue.enqueue(user_id, update, now=self.clock(), immediate=immediate)
        logger.info(f"Queued update for later sync ({reason})", extra={"user_id": user_id, "entry_id": entry.entry_id})
        return SubmissionResult(success=True, queued=True, entry_id=entry.entry_id, reason=reason)

    def drain(self, force: bool = False) -> DrainReport:
        """
        Replay queued updates in enqueue order.

        Stops at the first failure, leaving that entry at the head with its
        attempts incremented and a backoff scheduled. Only one drain runs at
        a time; a call made while another is running returns at once.

        Args:
            force: Ignore the head entry's backoff schedule

        Returns:
            DrainReport; ``started`` is False if a drain was already running
        """
        if not self._drain_lock.acquire(blocking=False):
            logger.debug("Drain already in progress")
            return DrainReport(started=False)

        try:
            report = DrainReport(started=True)
            while self.signal.is_connected:
                entry = self.queue.head()
                if entry is None:
                    break

                now = self.clock()
                if not force and entry.next_attempt_at is not None and entry.next_attempt_at > now:
                    report.blocked_until = entry.next_attempt_at
                    break

                try:
                    self.orchestrator.apply_update(entry.user_id, entry.update(), immediate=entry.immediate)
                except (StoreUnavailable, InvalidUpdate) as e:
                    self._record_failure(entry, e, now, report)
                    break

                self.queue.remove(entry.entry_id)
                report.applied.append(entry.entry_id)
                logger.info("Replayed queued update", extra={"user_id": entry.user_id, "entry_id": entry.entry_id})

            report.remaining = self.queue.count()
            return report
        finally:
            self._drain_lock.release()

    def _record_failure(self, entry: QueuedSubmission, error: Exception, now: datetime, report: DrainReport) -> None:
        attempts = entry.attempts + 1
        self.queue.record_failure(entry.entry_id, str(error), now + self.backoff(attempts))
        report.failed = entry.entry_id

        if attempts >= self.max_attempts:
            report.exhausted.append(entry.entry_id)
            logger.warning(
                f"Queued update still failing after {attempts} attempts; keeping it for resolution: {error}",
                extra={"user_id": entry.user_id, "entry_id": entry.entry_id}
            )
        else:
            logger.info(
                f"Replay attempt {attempts} failed, retrying in {self.backoff(attempts)}: {error}",
                extra={"user_id": entry.user_id, "entry_id": entry.entry_id}
            )

    def flush_deferred(self, user_id: Optional[str] = None) -> Dict[str, List[ProgressionResult]]:
        """
        Apply the orchestrator's buffered deferred updates.

        Updates the store cannot take right now are moved, in order, into the
        persisted queue, so a restart does not lose them.
        """
        return self.orchestrator.flush_pending(user_id, spill=self._spill_deferred)

    def _spill_deferred(self, user_id: str, updates: List[ProgressionUpdate]) -> None:
        entries = self.queue.enqueue_many(user_id, updates, now=self.clock())
        logger.warning(
            f"Moved {len(entries)} deferred updates to the offline queue",
            extra={"user_id": user_id, "entry_id": entries[0].entry_id}
        )

    def _on_connectivity_change(self, is_connected: bool) -> None:
        if is_connected:
            self.drain(force=True)

    def exhausted_entries(self) -> List[QueuedSubmission]:
        return [entry for entry in self.queue.entries() if entry.attempts >= self.max_attempts]

    def resolve(self, entry_id: int) -> bool:
        """Explicitly discard a queued entry, e.g. after manual review."""
        removed = self.queue.remove(entry_id)
        if removed:
            logger.warning("Queued update discarded by explicit resolution", extra={"entry_id": entry_id})
        return removed

    def status(self) -> dict:
        entries = self.queue.entries()
        return {
            "connected": self.signal.is_connected,
            "draining": self.draining,
            "queued": len(entries),
            "deferred": self.orchestrator.pending_count(),
            "entries": [
                {
                    "entry_id": e.entry_id,
                    "user_id": e.user_id,
                    "enqueued_at": e.enqueued_at.isoformat(),
                    "attempts": e.attempts,
                    "next_attempt_at": e.next_attempt_at.isoformat() if e.next_attempt_at else None,
                    "last_error": e.last_error,
                    "exhausted": e.attempts >= self.max_attempts,
                }
                for e in entries
            ],
            "warnings": [
                f"Update {e.entry_id} has not synced after {e.attempts} attempts"
                for e in entries
                if e.attempts >= self.max_attempts
            ],
        }

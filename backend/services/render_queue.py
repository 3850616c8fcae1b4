"""Render queue – in-memory job state, FIFO admission and progress listeners."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Callable, Optional

from models import RenderJob, RenderProgress, RenderStatus

logger = logging.getLogger("renderflow.queue")

ProgressCallback = Callable[[RenderProgress], None]

# Allowed status moves. Same-status updates carry progress changes.
_TRANSITIONS: dict[RenderStatus, frozenset[RenderStatus]] = {
    RenderStatus.QUEUED: frozenset(
        {RenderStatus.BUNDLING, RenderStatus.FAILED, RenderStatus.CANCELLED}
    ),
    RenderStatus.BUNDLING: frozenset(
        {RenderStatus.RENDERING, RenderStatus.FAILED, RenderStatus.CANCELLED}
    ),
    RenderStatus.RENDERING: frozenset(
        {
            RenderStatus.RENDERING,
            RenderStatus.ENCODING,
            RenderStatus.COMPLETED,
            RenderStatus.FAILED,
            RenderStatus.CANCELLED,
        }
    ),
    RenderStatus.ENCODING: frozenset(
        {
            RenderStatus.ENCODING,
            RenderStatus.COMPLETED,
            RenderStatus.FAILED,
            RenderStatus.CANCELLED,
        }
    ),
    RenderStatus.COMPLETED: frozenset(),
    RenderStatus.FAILED: frozenset(),
    RenderStatus.CANCELLED: frozenset(),
}

# Set when the job is created and never changed afterwards
_FIXED_FIELDS = frozenset(
    {
        "id",
        "composition_id",
        "input_props",
        "format",
        "width",
        "height",
        "duration",
        "fps",
        "quality",
        "output_path",
        "created_at",
    }
)


class JobNotFoundError(KeyError):
    """Raised for an unknown job id."""


class InvalidTransitionError(Exception):
    """Raised when a status change would move a job backwards or out of a terminal state."""


class RenderQueue:
    """Owns every ``RenderJob`` plus the scheduling bookkeeping around them.

    The queue is the single source of truth for whether a job is waiting,
    running or done. Job records are only changed through ``update()``.
    """

    def __init__(self, max_concurrent: int = 2) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._jobs: dict[str, RenderJob] = {}
        self._pending: deque[str] = deque()
        self._processing: set[str] = set()
        self._listeners: dict[str, list[ProgressCallback]] = {}
        self._listeners_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def get(self, job_id: str) -> Optional[RenderJob]:
        return self._jobs.get(job_id)

    def get_all(self) -> list[RenderJob]:
        return list(self._jobs.values())

    def get_pending(self) -> list[RenderJob]:
        return [self._jobs[job_id] for job_id in self._pending]

    def get_processing(self) -> list[RenderJob]:
        return [self._jobs[job_id] for job_id in self._processing]

    @property
    def processing_count(self) -> int:
        return len(self._processing)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def add(self, job: RenderJob) -> None:
        self._jobs[job.id] = job
        self._pending.append(job.id)
        logger.info("Job queued: %s (%s, %d waiting)", job.id, job.composition_id, len(self._pending))

    def can_process(self) -> bool:
        return len(self._processing) < self.max_concurrent and len(self._pending) > 0

    def dequeue(self) -> Optional[RenderJob]:
        """Move the oldest pending job into the processing set.

        The caller must call ``complete()`` once it is done with the job.
        """
        if not self._pending:
            return None
        job_id = self._pending.popleft()
        self._processing.add(job_id)
        return self._jobs[job_id]

    def complete(self, job_id: str) -> None:
        self._processing.discard(job_id)

    def remove_pending(self, job_id: str) -> bool:
        try:
            self._pending.remove(job_id)
        except ValueError:
            return False
        return True

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    def update(self, job_id: str, **changes: Any) -> RenderJob:
        """Merge ``changes`` into the job and notify its listeners."""
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        fixed = _FIXED_FIELDS.intersection(changes)
        if fixed:
            raise ValueError(f"Job {job_id}: cannot change {', '.join(sorted(fixed))}")

        status = changes.get("status")
        if status is not None:
            status = RenderStatus(status)
            if status != job.status and status not in _TRANSITIONS[job.status]:
                raise InvalidTransitionError(
                    f"Job {job_id}: cannot move from {job.status.value} to {status.value}"
                )
            if status == job.status and job.status.is_terminal:
                raise InvalidTransitionError(f"Job {job_id} is already {job.status.value}")
            changes["status"] = status

        progress = changes.get("progress")
        if progress is not None:
            changes["progress"] = max(job.progress, min(int(progress), 100))

        for field, value in changes.items():
            setattr(job, field, value)

        if status is not None and status.is_terminal:
            logger.info("Job %s %s", job_id, status.value)
        self._notify(job)
        return job

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def subscribe(self, job_id: str, callback: ProgressCallback) -> Callable[[], None]:
        with self._listeners_lock:
            self._listeners.setdefault(job_id, []).append(callback)

        subscribed = True

        def unsubscribe() -> None:
            nonlocal subscribed
            with self._listeners_lock:
                if not subscribed:
                    return
                subscribed = False
                listeners = self._listeners.get(job_id)
                if listeners and callback in listeners:
                    listeners.remove(callback)
                    if not listeners:
                        del self._listeners[job_id]

        return unsubscribe

    def listener_count(self, job_id: str) -> int:
        with self._listeners_lock:
            return len(self._listeners.get(job_id, []))

    def _notify(self, job: RenderJob) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners.get(job.id, []))
        if not listeners:
            return
        event = RenderProgress(job_id=job.id, status=job.status, progress=job.progress)
        for callback in listeners:
            try:
                callback(event)
            except Exception:
                logger.exception("Progress listener for job %s raised", job.id)

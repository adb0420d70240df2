"""Thread-safe registry of job_id -> JobStatus for polled long-running operations."""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from launchpad.modules.jobs.schemas import JobState, JobStatus, StatusUpdate

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 3600.0


@dataclass
class _JobRecord:
    status: JobStatus
    finished_at: Optional[float] = None


class JobTracker:
    """
    In-memory job table owned by the process.

    A job moves from in_progress to completed or failed exactly once; after
    that, appends and further terminal calls are ignored. Terminal jobs are
    reclaimed once the retention window has elapsed, after which read()
    returns None ("unknown") rather than a failure.
    """

    def __init__(self, retention_seconds: float = DEFAULT_RETENTION_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._jobs: Dict[str, _JobRecord] = {}

    def create(self, job_id: str) -> JobStatus:
        with self._lock:
            record = _JobRecord(status=JobStatus(job_id=job_id))
            self._jobs[job_id] = record
            logger.debug(f"Created job {job_id}")
            return record.status.model_copy(deep=True)

    def append(self, job_id: str, step: str, message: str, completed: bool = False) -> None:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None or record.status.status.is_terminal:
                return
            record.status.updates.append(StatusUpdate(step=step, message=message, completed=completed))

    def complete(self, job_id: str, result: Any = None) -> bool:
        return self._finish(job_id, JobState.COMPLETED, result=result)

    def fail(self, job_id: str, error: str, error_kind: Optional[str] = None) -> bool:
        return self._finish(job_id, JobState.FAILED, error=error, error_kind=error_kind)

    def read(self, job_id: str) -> Optional[JobStatus]:
        """Snapshot of the job, or None when it never existed or has been reclaimed."""
        self.purge_expired()
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                return None
            return record.status.model_copy(deep=True)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [
                job_id for job_id, record in self._jobs.items()
                if record.finished_at is not None and now - record.finished_at >= self.retention_seconds
            ]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.debug(f"Reclaimed {len(expired)} finished job(s)")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _finish(self, job_id: str, state: JobState, result: Any = None,
                error: Optional[str] = None, error_kind: Optional[str] = None) -> bool:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                return False
            if record.status.status.is_terminal:
                logger.debug(f"Ignoring {state.value} for job {job_id}: already {record.status.status.value}")
                return False
            record.status.status = state
            record.status.result = result
            record.status.error = error
            record.status.error_kind = error_kind
            record.finished_at = self._clock()
        logger.info(f"Job {job_id} {state.value}")
        return True


async def retention_loop(tracker: JobTracker, interval_seconds: float):
    """Background task that periodically reclaims expired jobs"""
    while True:
        try:
            tracker.purge_expired()
        except Exception as e:
            logger.error(f"Error in job retention loop: {str(e)}")
        await asyncio.sleep(interval_seconds)

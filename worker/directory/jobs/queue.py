"""Background run queue: one worker pool, whole-run retries with backoff."""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from directory.core.models import RunRecord, RunState, utcnow
from directory.core.store import RecordStore
from directory.jobs.coordinator import generate_run_id
from directory.notify.webhook import Notifier, dispatch_notification

logger = logging.getLogger(__name__)

FULL_CRAWL_MINUTES_PER_SOURCE = 15
INCREMENTAL_MINUTES_PER_SOURCE = 8


@dataclass(slots=True)
class RefreshRequest:
    sources: Optional[List[str]] = None
    regions: List[str] = field(default_factory=list)
    full_crawl: bool = False
    trigger: str = "manual"


@dataclass(slots=True)
class RefreshJob:
    run_id: str
    request: RefreshRequest
    state: RunState = RunState.QUEUED
    progress: int = 0
    attempts: int = 0
    error: Optional[str] = None
    result: Optional[RunRecord] = None
    enqueued_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    future: Optional[Future] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "trigger": self.request.trigger,
            "state": self.state.value,
            "progress": self.progress,
            "attempts": self.attempts,
            "error": self.error,
            "sources": self.request.sources,
            "regions": self.request.regions,
            "full_crawl": self.request.full_crawl,
            "enqueued_at": self.enqueued_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "result": self.result.to_dict() if self.result else None,
        }


Runner = Callable[[RefreshRequest, str, Callable[[int], None]], RunRecord]


def estimate_duration_minutes(sources: Sequence[str], full_crawl: bool) -> int:
    per_source = FULL_CRAWL_MINUTES_PER_SOURCE if full_crawl else INCREMENTAL_MINUTES_PER_SOURCE
    return per_source * max(1, len(sources))


class RefreshQueue:
    """Runs refresh jobs on a thread pool; one job occupies one worker for its whole run."""

    def __init__(
        self,
        runner: Runner,
        *,
        max_workers: int = 1,
        max_attempts: int = 3,
        backoff_seconds: float = 60.0,
        notifier: Optional[Notifier] = None,
        store: Optional[RecordStore] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.runner = runner
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.notifier = notifier
        self.store = store
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="refresh")
        self._jobs: Dict[str, RefreshJob] = {}
        self._lock = threading.Lock()

    def enqueue(self, request: RefreshRequest) -> RefreshJob:
        job = RefreshJob(run_id=generate_run_id(), request=request)
        with self._lock:
            self._jobs[job.run_id] = job
            job.future = self._executor.submit(self._run_job_safe, job)
        logger.info("Queued run %s (trigger=%s)", job.run_id, request.trigger)
        return job

    def backoff_for(self, attempt: int) -> float:
        return self.backoff_seconds * 2 ** (attempt - 1)

    def _set_progress(self, job: RefreshJob, progress: int) -> None:
        job.progress = progress

    def _run_job_safe(self, job: RefreshJob) -> None:
        with self._lock:
            if job.state is RunState.CANCELLED:
                return
            job.state = RunState.RUNNING
            job.started_at = utcnow()

        for attempt in range(1, self.max_attempts + 1):
            job.attempts = attempt
            try:
                record = self.runner(job.request, job.run_id, lambda value: self._set_progress(job, value))
            except Exception as exc:  # noqa: BLE001
                job.error = str(exc)
                if attempt < self.max_attempts:
                    delay = self.backoff_for(attempt)
                    logger.warning(
                        "Run %s failed (attempt %s/%s): %s; retrying in %.0fs",
                        job.run_id,
                        attempt,
                        self.max_attempts,
                        exc,
                        delay,
                    )
                    self._sleep(delay)
                    continue
                logger.exception("Run %s failed permanently after %s attempts", job.run_id, attempt)
                self._finish(job, RunState.FAILED)
                job.result = self._record_failure(job)
                dispatch_notification(
                    self.notifier,
                    run_id=job.run_id,
                    trigger=job.request.trigger,
                    found=0,
                    new=0,
                    updated=0,
                    duration_ms=job.result.duration_ms,
                    success=False,
                    errors=[job.error],
                )
                return

            job.result = record
            job.progress = 100
            job.error = None if record.success else "; ".join(record.errors[:5]) or "run failed"
            self._finish(job, RunState.COMPLETED if record.success else RunState.FAILED)
            return

    def _record_failure(self, job: RefreshJob) -> RunRecord:
        """Persist a failed run record for a job that ran out of attempts."""
        record = RunRecord(
            run_id=job.run_id,
            trigger=job.request.trigger,
            state=RunState.FAILED,
            progress=job.progress,
            errors=[job.error or "run failed"],
            started_at=job.started_at,
            completed_at=job.finished_at,
            success=False,
        )
        if self.store is None:
            return record
        try:
            self.store.save_run(record)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Could not record failed run %s: %s", job.run_id, exc)
        return record

    def _finish(self, job: RefreshJob, state: RunState) -> None:
        with self._lock:
            job.state = state
            job.finished_at = utcnow()

    def cancel(self, run_id: str) -> bool:
        """Cancel a job that has not started; running jobs are never interrupted."""
        with self._lock:
            job = self._jobs.get(run_id)
            if job is None or job.state is not RunState.QUEUED:
                return False
            if job.future is not None and not job.future.cancel():
                return False
            job.state = RunState.CANCELLED
            job.finished_at = utcnow()
        logger.info("Cancelled queued run %s", run_id)
        return True

    def get(self, run_id: str) -> Optional[RefreshJob]:
        with self._lock:
            return self._jobs.get(run_id)

    def list_jobs(self) -> List[RefreshJob]:
        with self._lock:
            return sorted(self._jobs.values(), key=lambda job: job.run_id, reverse=True)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            counts = Counter(job.state.value for job in self._jobs.values())
        return {state.value: counts.get(state.value, 0) for state in RunState}

    def wait(self, run_id: str, timeout: Optional[float] = None) -> Optional[RefreshJob]:
        job = self.get(run_id)
        if job is None or job.future is None:
            return job
        try:
            job.future.result(timeout=timeout)
        except (CancelledError, FutureTimeoutError):
            pass
        return job

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            for job in self._jobs.values():
                if job.state is RunState.QUEUED and job.future is not None and job.future.cancel():
                    job.state = RunState.CANCELLED
                    job.finished_at = utcnow()
        self._executor.shutdown(wait=wait, cancel_futures=True)

"""Job queue facade: the single entry point for creating and transitioning jobs.

Composes the record store, the pending index and the per-user index over one
backend. The facade does not claim jobs: two workers calling
:meth:`JobQueue.get_next_pending_job` concurrently may receive the same job, so
deployments run a single worker.
"""
from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from config import JOB_MAX_RETRIES, JOB_PENDING_MAX_AGE_S, JOB_TTL_S, USER_JOBS_HISTORY_MAX, USER_JOBS_LIMIT
from observability.logger import get_logger, log_transition
from observability.metrics import get_registry

from .backends import Backend
from .models import Job, JobKind, JobStatus
from .store import JobRecordStore, PendingIndex, UserJobIndex

LOGGER = get_logger("issue_relay.jobs.queue")
REGISTRY = get_registry()
CREATED_COUNTER = REGISTRY.counter("jobs.created_total")
COMPLETED_COUNTER = REGISTRY.counter("jobs.completed_total")
FAILED_COUNTER = REGISTRY.counter("jobs.failed_total")
RETRIED_COUNTER = REGISTRY.counter("jobs.retried_total")
PENDING_GAUGE = REGISTRY.gauge("jobs.pending")

MAX_RETRIES_EXCEEDED = "Max retries exceeded"


class JobQueueError(Exception):
    """Base class for job queue usage errors."""


class JobNotFoundError(JobQueueError, LookupError):
    """Raised when a transition targets a job that no longer exists."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobQueue:
    """Pending → processing → completed/failed, with failed → pending retries."""

    def __init__(
        self,
        backend: Backend,
        *,
        ttl_seconds: int = JOB_TTL_S,
        pending_max_age_seconds: int = JOB_PENDING_MAX_AGE_S,
        history_max: int = USER_JOBS_HISTORY_MAX,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self._clock = clock
        self._ttl_seconds = ttl_seconds
        self._pending_max_age_seconds = pending_max_age_seconds
        self.records = JobRecordStore(backend, ttl_seconds=ttl_seconds)
        self.pending = PendingIndex(backend)
        self.user_jobs = UserJobIndex(backend, max_length=history_max)

    @property
    def backend(self) -> Backend:
        return self._backend

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), timezone.utc)

    def create_job(
        self,
        owner_id: str,
        kind: Union[JobKind, str],
        payload: Dict[str, Any],
        max_retries: int = JOB_MAX_RETRIES,
    ) -> Job:
        now = self._now()
        job = Job(
            id=uuid.uuid4().hex,
            owner_id=str(owner_id),
            kind=JobKind(kind),
            payload=dict(payload),
            status=JobStatus.PENDING,
            retry_count=0,
            max_retries=max(0, int(max_retries)),
            created_at=now,
            updated_at=now,
        )
        with self._backend.pipeline() as pipe:
            self.records.put(job, pipe=pipe)
            self.pending.enqueue(job.id, now.timestamp(), pipe=pipe)
            self.user_jobs.push(job.owner_id, job.id, ttl_seconds=self._ttl_seconds, pipe=pipe)
        CREATED_COUNTER.inc()
        self._refresh_pending_gauge()
        LOGGER.info("job_created", extra={"job_id": job.id, "owner_id": job.owner_id, "kind": job.kind.value})
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.records.get(job_id)

    def _require_job(self, job_id: str) -> Job:
        job = self.records.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def update_job_status(
        self,
        job_id: str,
        status: Union[JobStatus, str],
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Job:
        new_status = JobStatus(status)
        if new_status == JobStatus.PENDING:
            raise ValueError("Jobs return to pending only through retry_job")
        job = self._require_job(job_id)
        previous = job.status
        now = self._now()

        job.status = new_status
        job.updated_at = now
        if result is not None:
            job.result = result
        if error is not None:
            job.error = error
        if new_status == JobStatus.COMPLETED:
            job.error = None
        elif new_status == JobStatus.FAILED:
            job.result = None

        with self._backend.pipeline() as pipe:
            if new_status.is_terminal:
                job.completed_at = now
                self.pending.remove(job.id, pipe=pipe)
            self.records.put(job, pipe=pipe)

        if new_status == JobStatus.COMPLETED:
            COMPLETED_COUNTER.inc()
        elif new_status == JobStatus.FAILED:
            FAILED_COUNTER.inc()
        self._refresh_pending_gauge()
        log_transition(
            LOGGER,
            job_id=job.id,
            from_status=previous.value,
            to_status=new_status.value,
            error=job.error,
        )
        return job

    def retry_job(self, job_id: str) -> Job:
        job = self._require_job(job_id)
        if job.retry_count >= job.max_retries:
            LOGGER.warning(
                "job_retries_exhausted",
                extra={"job_id": job.id, "retry_count": job.retry_count, "max_retries": job.max_retries},
            )
            return self.update_job_status(job.id, JobStatus.FAILED, error=MAX_RETRIES_EXCEEDED)

        previous = job.status
        now = self._now()
        job.status = JobStatus.PENDING
        job.retry_count += 1
        job.error = None
        job.result = None
        job.completed_at = None
        job.updated_at = now
        with self._backend.pipeline() as pipe:
            self.records.put(job, pipe=pipe)
            # Re-enqueued at the current time so a retried job goes to the back.
            self.pending.enqueue(job.id, now.timestamp(), pipe=pipe)

        RETRIED_COUNTER.inc()
        self._refresh_pending_gauge()
        log_transition(
            LOGGER,
            job_id=job.id,
            from_status=previous.value,
            to_status=job.status.value,
            retry_count=job.retry_count,
            max_retries=job.max_retries,
        )
        return job

    def get_next_pending_job(self) -> Optional[Job]:
        job_id = self.pending.peek_oldest()
        if job_id is None:
            return None
        job = self.records.get(job_id)
        if job is None:
            self.pending.remove(job_id)
            self._refresh_pending_gauge()
            LOGGER.info("pending_entry_pruned", extra={"job_id": job_id})
            return None
        return job

    def get_user_jobs(self, owner_id: str, limit: int = USER_JOBS_LIMIT) -> List[Job]:
        jobs: List[Job] = []
        for job_id in self.user_jobs.recent(str(owner_id), limit):
            job = self.records.get(job_id)
            if job is not None:
                jobs.append(job)
        return jobs

    def cleanup_old_jobs(self) -> int:
        cutoff = self._clock() - self._pending_max_age_seconds
        removed = self.pending.prune_older_than(cutoff)
        self._refresh_pending_gauge()
        if removed:
            LOGGER.info("pending_entries_cleaned", extra={"removed": removed})
        return removed

    def pending_count(self) -> int:
        return len(self.pending)

    def _refresh_pending_gauge(self) -> None:
        PENDING_GAUGE.set(float(self.pending_count()))


__all__ = [
    "JobNotFoundError",
    "JobQueue",
    "JobQueueError",
    "MAX_RETRIES_EXCEEDED",
]

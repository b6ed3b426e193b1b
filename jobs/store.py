"""Job record store and the two job indices layered over a storage backend."""
from __future__ import annotations

from typing import Any, List, Optional

from config import USER_JOBS_HISTORY_MAX
from observability.logger import get_logger

from .backends import Backend
from .models import Job

LOGGER = get_logger("issue_relay.jobs.store")

JOB_KEY_PREFIX = "job:"
PENDING_JOBS_KEY = "pending-jobs"
USER_JOBS_KEY_PREFIX = "user-jobs:"


def job_key(job_id: str) -> str:
    return f"{JOB_KEY_PREFIX}{job_id}"


def user_jobs_key(owner_id: str) -> str:
    return f"{USER_JOBS_KEY_PREFIX}{owner_id}"


class JobRecordStore:
    """Serialized job records with a TTL that restarts on every write."""

    def __init__(self, backend: Backend, *, ttl_seconds: int) -> None:
        self._backend = backend
        self._ttl_seconds = max(1, int(ttl_seconds))

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def put(self, job: Job, pipe: Any = None) -> None:
        target = pipe if pipe is not None else self._backend
        target.setex(job_key(job.id), self._ttl_seconds, job.to_json())

    def get(self, job_id: str) -> Optional[Job]:
        raw = self._backend.get(job_key(job_id))
        if raw is None:
            return None
        try:
            return Job.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            # An unreadable record is treated like an expired one.
            LOGGER.warning("job_record_corrupt", extra={"job_id": job_id, "error": str(exc)})
            return None


class PendingIndex:
    """Ids awaiting execution, ordered by enqueue time."""

    def __init__(self, backend: Backend, *, key: str = PENDING_JOBS_KEY) -> None:
        self._backend = backend
        self._key = key

    def enqueue(self, job_id: str, timestamp: float, pipe: Any = None) -> None:
        target = pipe if pipe is not None else self._backend
        target.zadd(self._key, {job_id: float(timestamp)})

    def peek_oldest(self) -> Optional[str]:
        ids = self._backend.zrange(self._key, 0, 0)
        return ids[0] if ids else None

    def remove(self, job_id: str, pipe: Any = None) -> None:
        target = pipe if pipe is not None else self._backend
        target.zrem(self._key, job_id)

    def prune_older_than(self, cutoff: float) -> int:
        return int(self._backend.zremrangebyscore(self._key, "-inf", float(cutoff)))

    def contains(self, job_id: str) -> bool:
        return self._backend.zscore(self._key, job_id) is not None

    def score(self, job_id: str) -> Optional[float]:
        return self._backend.zscore(self._key, job_id)

    def __len__(self) -> int:
        return int(self._backend.zcard(self._key))


class UserJobIndex:
    """Per-user job ids, most recent first, capped at ``max_length``."""

    def __init__(self, backend: Backend, *, max_length: int = USER_JOBS_HISTORY_MAX) -> None:
        self._backend = backend
        self._max_length = max(1, int(max_length))

    @property
    def max_length(self) -> int:
        return self._max_length

    def push(self, owner_id: str, job_id: str, *, ttl_seconds: int, pipe: Any = None) -> None:
        target = pipe if pipe is not None else self._backend
        key = user_jobs_key(owner_id)
        target.lpush(key, job_id)
        target.ltrim(key, 0, self._max_length - 1)
        target.expire(key, ttl_seconds)

    def recent(self, owner_id: str, limit: int) -> List[str]:
        if limit <= 0:
            return []
        return [str(job_id) for job_id in self._backend.lrange(user_jobs_key(owner_id), 0, limit - 1)]


__all__ = [
    "JOB_KEY_PREFIX",
    "JobRecordStore",
    "PENDING_JOBS_KEY",
    "PendingIndex",
    "USER_JOBS_KEY_PREFIX",
    "UserJobIndex",
    "job_key",
    "user_jobs_key",
]

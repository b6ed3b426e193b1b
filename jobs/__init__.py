"""Asynchronous job queue: records, indices, state machine and polling."""

from .backends import InMemoryBackend, RedisBackend, create_backend  # noqa: F401
from .models import Job, JobKind, JobStatus  # noqa: F401
from .poller import HttpStatusFetcher, JobPoller, PollOutcome, PollState  # noqa: F401
from .queue import JobNotFoundError, JobQueue, JobQueueError  # noqa: F401

__all__ = [
    "HttpStatusFetcher",
    "InMemoryBackend",
    "Job",
    "JobKind",
    "JobNotFoundError",
    "JobPoller",
    "JobQueue",
    "JobQueueError",
    "JobStatus",
    "PollOutcome",
    "PollState",
    "RedisBackend",
    "create_backend",
]

from __future__ import annotations

import pytest

from jobs.backends import InMemoryBackend
from jobs.queue import JobQueue


class FakeClock:
    """Manually advanced wall clock shared by the backend and the queue."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(clock) -> InMemoryBackend:
    return InMemoryBackend(clock=clock)


@pytest.fixture
def queue(backend, clock) -> JobQueue:
    return JobQueue(backend, ttl_seconds=24 * 60 * 60, pending_max_age_seconds=7 * 24 * 60 * 60, clock=clock)


@pytest.fixture
def issue_payload() -> dict:
    return {"title": "T", "prompt": "Add dark mode", "repository": "x/y", "generated_content": None}

"""Client-side polling of a job until it reaches a terminal state.

A poll that times out reports :attr:`PollState.TIMED_OUT`, never a failure:
the job may still finish on the server. Giving up locally does not touch the
job record.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import httpx

from config import JOB_POLL_INTERVAL_S, JOB_POLL_TIMEOUT_S
from observability.logger import get_logger

from .models import JobStatus

LOGGER = get_logger("issue_relay.jobs.poller")

StatusSnapshot = Dict[str, Any]
StatusFetcher = Callable[[str], StatusSnapshot]


class JobStatusUnavailable(RuntimeError):
    """A single status read failed; the poller treats it as transient."""


TRANSIENT_POLL_ERRORS = (httpx.HTTPError, JobStatusUnavailable)


class PollState(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class PollOutcome:
    job_id: str
    state: PollState
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    last_status: Optional[str] = None
    attempts: int = 0
    elapsed_s: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.state == PollState.COMPLETED


class JobPoller:
    def __init__(
        self,
        fetch_status: StatusFetcher,
        *,
        interval_s: float = JOB_POLL_INTERVAL_S,
        timeout_s: float = JOB_POLL_TIMEOUT_S,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self._fetch_status = fetch_status
        self._interval_s = float(interval_s)
        self._timeout_s = max(0.0, float(timeout_s))
        self._sleep = sleep
        self._clock = clock

    def poll(
        self,
        job_id: str,
        *,
        on_update: Optional[Callable[[StatusSnapshot], None]] = None,
    ) -> PollOutcome:
        started_at = self._clock()
        attempts = 0
        last_status: Optional[str] = None

        while True:
            attempts += 1
            try:
                snapshot = self._fetch_status(job_id)
            except TRANSIENT_POLL_ERRORS as exc:
                LOGGER.warning("job_poll_error", extra={"job_id": job_id, "attempt": attempts, "error": str(exc)})
            else:
                last_status = snapshot.get("status")
                if on_update is not None:
                    on_update(snapshot)
                elapsed = self._clock() - started_at
                if last_status == JobStatus.COMPLETED.value:
                    LOGGER.info("job_poll_completed", extra={"job_id": job_id, "attempts": attempts})
                    return PollOutcome(
                        job_id=job_id,
                        state=PollState.COMPLETED,
                        result=snapshot.get("result"),
                        last_status=last_status,
                        attempts=attempts,
                        elapsed_s=elapsed,
                    )
                if last_status == JobStatus.FAILED.value:
                    LOGGER.info("job_poll_failed", extra={"job_id": job_id, "attempts": attempts})
                    return PollOutcome(
                        job_id=job_id,
                        state=PollState.FAILED,
                        error=snapshot.get("error") or "Job failed",
                        last_status=last_status,
                        attempts=attempts,
                        elapsed_s=elapsed,
                    )

            elapsed = self._clock() - started_at
            remaining = self._timeout_s - elapsed
            if remaining <= 0:
                LOGGER.warning(
                    "job_poll_timed_out",
                    extra={"job_id": job_id, "attempts": attempts, "last_status": last_status},
                )
                return PollOutcome(
                    job_id=job_id,
                    state=PollState.TIMED_OUT,
                    last_status=last_status,
                    attempts=attempts,
                    elapsed_s=elapsed,
                )
            self._sleep(min(self._interval_s, remaining))


class HttpStatusFetcher:
    """Reads ``GET /api/jobs/<id>`` from a running server."""

    def __init__(
        self,
        base_url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        cookies: Optional[Dict[str, str]] = None,
        timeout_s: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            cookies=cookies,
            timeout=httpx.Timeout(timeout_s),
        )

    def __call__(self, job_id: str) -> StatusSnapshot:
        response = self._client.get(f"/api/jobs/{job_id}")
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError as exc:
            raise JobStatusUnavailable("Job status response is not JSON") from exc
        if not isinstance(data, dict):
            raise JobStatusUnavailable("Job status response is not an object")
        return data

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpStatusFetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = [
    "HttpStatusFetcher",
    "JobPoller",
    "JobStatusUnavailable",
    "PollOutcome",
    "PollState",
]

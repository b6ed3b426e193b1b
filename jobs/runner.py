"""Background loop driving the job processor with an explicit lifecycle."""
from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from config import WORKER_BATCH_SIZE, WORKER_CLEANUP_INTERVAL_S, WORKER_INTERVAL_S
from observability.logger import get_logger

from .processor import JobProcessor

LOGGER = get_logger("issue_relay.jobs.runner")


class JobRunner:
    """Single background worker.

    Nothing starts at import time: the owning application calls :meth:`start`
    and :meth:`stop`. Only one runner should be active per queue.
    """

    def __init__(
        self,
        processor: JobProcessor,
        *,
        interval_s: float = WORKER_INTERVAL_S,
        cleanup_interval_s: float = WORKER_CLEANUP_INTERVAL_S,
        batch_size: int = WORKER_BATCH_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._processor = processor
        self._interval_s = max(0.01, float(interval_s))
        self._cleanup_interval_s = max(self._interval_s, float(cleanup_interval_s))
        self._batch_size = max(1, int(batch_size))
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._last_cleanup: Optional[float] = None

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._worker, name="job-runner", daemon=True)
            self._thread.start()
        LOGGER.info("job_runner_started", extra={"interval_s": self._interval_s, "batch_size": self._batch_size})

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._stop_event.set()
        if thread is not None:
            thread.join(timeout=timeout)
        with self._lock:
            if self._thread is thread and (thread is None or not thread.is_alive()):
                self._thread = None
        LOGGER.info("job_runner_stopped")

    def run_once(self) -> int:
        """Process one batch and run cleanup when it is due."""

        processed = self._processor.process_pending_jobs(self._batch_size)
        now = self._clock()
        if self._last_cleanup is None or now - self._last_cleanup >= self._cleanup_interval_s:
            self._processor.queue.cleanup_old_jobs()
            self._last_cleanup = now
        if processed:
            LOGGER.info("job_batch_processed", extra={"processed": processed})
        return processed

    def _worker(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("job_runner_iteration_failed", extra={"error": str(exc)})
            self._stop_event.wait(self._interval_s)


__all__ = ["JobRunner"]

"""Worker that executes pending jobs and reports outcomes through the queue."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from config import WORKER_BATCH_SIZE
from observability.logger import get_logger
from services.github_client import GitHubPublisher
from services.issue_generator import IssueGenerator
from services.titles import generate_auto_title

from .models import CreateIssuePayload, GeneratedContent, IssueResult, Job, JobKind, JobStatus
from .queue import JobQueue

if TYPE_CHECKING:  # pragma: no cover
    from services.credentials import CredentialStore

LOGGER = get_logger("issue_relay.jobs.processor")

UNKNOWN_JOB_TYPE = "Unknown job type"


class JobProcessingError(RuntimeError):
    """Raised inside a job handler; the message becomes the job error."""


class JobProcessor:
    """Pulls the oldest pending job, runs it and records the outcome.

    While the retry budget lasts a failed attempt goes straight back to
    ``pending``; only the attempt that exhausts it is recorded as ``failed``.
    Transient and permanent errors are retried alike.
    """

    def __init__(
        self,
        queue: JobQueue,
        credentials: "CredentialStore",
        *,
        generator: Optional[IssueGenerator] = None,
        publisher: Optional[GitHubPublisher] = None,
        auto_retry: bool = True,
    ) -> None:
        self._queue = queue
        self._credentials = credentials
        self._generator = generator or IssueGenerator()
        self._publisher = publisher or GitHubPublisher()
        self._auto_retry = auto_retry

    @property
    def queue(self) -> JobQueue:
        return self._queue

    def process_next_job(self) -> bool:
        job = self._queue.get_next_pending_job()
        if job is None:
            return False

        LOGGER.info("job_picked", extra={"job_id": job.id, "kind": job.kind.value, "retry_count": job.retry_count})
        if job.kind == JobKind.CREATE_AND_PUBLISH_ISSUE:
            self.process_create_and_publish_issue(job)
        else:  # pragma: no cover - JobKind is closed today
            LOGGER.error("job_unknown_kind", extra={"job_id": job.id, "kind": job.kind.value})
            self._queue.update_job_status(job.id, JobStatus.FAILED, error=UNKNOWN_JOB_TYPE)
        return True

    def process_pending_jobs(self, max_jobs: int = WORKER_BATCH_SIZE) -> int:
        processed = 0
        for _ in range(max(0, int(max_jobs))):
            if not self.process_next_job():
                break
            processed += 1
        return processed

    def process_create_and_publish_issue(self, job: Job) -> None:
        self._queue.update_job_status(job.id, JobStatus.PROCESSING)
        try:
            result = self._create_and_publish(job)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("job_failed", extra={"job_id": job.id, "error": str(exc)})
            self._handle_failure(job.id, str(exc) or exc.__class__.__name__)
            return
        self._queue.update_job_status(job.id, JobStatus.COMPLETED, result=result.to_dict())

    def _create_and_publish(self, job: Job) -> IssueResult:
        payload = CreateIssuePayload.from_dict(job.payload)
        content = payload.generated_content or self._generate_content(job.owner_id, payload)

        title = generate_auto_title(content.markdown, payload.title).title
        access_token = self._credentials.get_github_token(job.owner_id)
        if not access_token:
            raise JobProcessingError("GitHub not connected")

        published = self._publisher.publish_with_retry(
            title=title,
            body=content.markdown,
            labels=[content.summary.type],
            access_token=access_token,
            repository=payload.repository,
        )
        if not published.success:
            raise JobProcessingError(published.error or "Failed to publish to GitHub")

        return IssueResult(
            issue_url=str(published.issue_url),
            issue_number=int(published.issue_number or 0),
            repository=payload.repository,
            title=title,
        )

    def _generate_content(self, owner_id: str, payload: CreateIssuePayload) -> GeneratedContent:
        api_key = self._credentials.get_openai_key(owner_id)
        if not api_key:
            raise JobProcessingError("OpenAI API key not found")
        generated = self._generator.generate(payload.prompt, api_key=api_key)
        self._credentials.record_usage(owner_id, generated.estimated_tokens, generated.estimated_cost)
        return generated.content

    def _handle_failure(self, job_id: str, message: str) -> None:
        job = self._queue.get_job(job_id)
        if self._auto_retry and job is not None and job.can_retry:
            # ``failed`` is written only once the retry budget is spent.
            LOGGER.info(
                "job_requeued_after_error",
                extra={"job_id": job_id, "error": message, "retry_count": job.retry_count},
            )
            self._queue.retry_job(job_id)
            return
        self._queue.update_job_status(job_id, JobStatus.FAILED, error=message)


__all__ = ["JobProcessingError", "JobProcessor", "UNKNOWN_JOB_TYPE"]

from __future__ import annotations

from typing import List

import pytest

from jobs.models import GeneratedContent, IssueSummary, JobKind, JobStatus
from jobs.processor import JobProcessor
from jobs.queue import FAILED_COUNTER
from services.credentials import CredentialStore
from services.github_client import PublishResult
from services.issue_generator import GeneratedIssue

KIND = JobKind.CREATE_AND_PUBLISH_ISSUE


class FakeGenerator:
    def __init__(self, markdown: str = "# Dark mode\n\nAdd a dark theme.", error: Exception | None = None):
        self.markdown = markdown
        self.error = error
        self.calls: List[dict] = []

    def generate(self, prompt, *, api_key):
        self.calls.append({"prompt": prompt, "api_key": api_key})
        if self.error:
            raise self.error
        return GeneratedIssue(
            content=GeneratedContent(markdown=self.markdown, summary=IssueSummary(type="feature")),
            estimated_tokens=42,
            estimated_cost=0.00042,
        )


class FakePublisher:
    def __init__(self, results: List[PublishResult] | None = None):
        self.results = list(results or [])
        self.calls: List[dict] = []

    def publish_with_retry(self, **params):
        self.calls.append(params)
        if self.results:
            return self.results.pop(0)
        return PublishResult(success=True, issue_url="https://github.com/x/y/issues/7", issue_number=7)


@pytest.fixture
def credentials(backend) -> CredentialStore:
    store = CredentialStore(backend, default_github_token="", default_openai_key="")
    store.set_github_token("user-1", "gh-token")
    store.set_openai_key("user-1", "sk-user")
    return store


def _processor(queue, credentials, generator=None, publisher=None) -> JobProcessor:
    return JobProcessor(
        queue,
        credentials,
        generator=generator or FakeGenerator(),
        publisher=publisher or FakePublisher(),
    )


def test_process_next_job_on_empty_queue(queue, credentials):
    assert _processor(queue, credentials).process_next_job() is False


def test_pre_generated_content_skips_enrichment(queue, credentials):
    generator = FakeGenerator()
    publisher = FakePublisher()
    payload = {
        "title": "Support dark mode in settings",
        "prompt": "dark mode",
        "repository": "x/y",
        "generated_content": {"markdown": "Body", "summary": {"type": "bug"}},
    }
    job = queue.create_job("user-1", KIND, payload)

    assert _processor(queue, credentials, generator, publisher).process_next_job() is True

    stored = queue.get_job(job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.result == {
        "issue_url": "https://github.com/x/y/issues/7",
        "issue_number": 7,
        "repository": "x/y",
        "title": "Support dark mode in settings",
    }
    assert generator.calls == []
    assert publisher.calls[0]["labels"] == ["bug"]
    assert publisher.calls[0]["access_token"] == "gh-token"
    assert publisher.calls[0]["body"] == "Body"
    assert queue.pending_count() == 0


def test_enrichment_uses_user_key_and_records_usage(queue, credentials, issue_payload):
    generator = FakeGenerator(markdown="Add a dark theme to the settings page. It should persist.")
    publisher = FakePublisher()
    issue_payload["title"] = ""
    job = queue.create_job("user-1", KIND, issue_payload)

    _processor(queue, credentials, generator, publisher).process_next_job()

    assert generator.calls == [{"prompt": "Add dark mode", "api_key": "sk-user"}]
    stored = queue.get_job(job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.result["title"] == "Add a dark theme to the settings page"
    usage = credentials.get_usage("user-1")
    assert usage["total_tokens"] == 42
    assert usage["requests"] == 1


def test_failure_with_budget_is_requeued(queue, credentials, issue_payload):
    publisher = FakePublisher([PublishResult(success=False, error="GitHub API error: HTTP 502")])
    job = queue.create_job("user-1", KIND, issue_payload)

    _processor(queue, credentials, publisher=publisher).process_next_job()

    stored = queue.get_job(job.id)
    assert stored.status == JobStatus.PENDING
    assert stored.retry_count == 1
    assert stored.error is None
    assert queue.pending.contains(job.id)


def test_retryable_failure_never_writes_failed(queue, credentials, issue_payload, monkeypatch):
    written: List[JobStatus] = []
    original_put = queue.records.put

    def _recording_put(job, pipe=None):
        written.append(job.status)
        original_put(job, pipe=pipe)

    monkeypatch.setattr(queue.records, "put", _recording_put)
    failures_before = FAILED_COUNTER.snapshot()
    publisher = FakePublisher([PublishResult(success=False, error="GitHub API error: HTTP 502")])
    job = queue.create_job("user-1", KIND, issue_payload)

    _processor(queue, credentials, publisher=publisher).process_next_job()

    assert written == [JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.PENDING]
    assert FAILED_COUNTER.snapshot() == failures_before

    _processor(queue, credentials, publisher=publisher).process_next_job()

    assert written[-2:] == [JobStatus.PROCESSING, JobStatus.COMPLETED]
    assert JobStatus.FAILED not in written
    assert queue.get_job(job.id).result["issue_number"] == 7


def test_failure_without_budget_stays_failed(queue, credentials, issue_payload):
    publisher = FakePublisher([PublishResult(success=False, error="Repository not found or access denied")])
    job = queue.create_job("user-1", KIND, issue_payload, max_retries=0)

    _processor(queue, credentials, publisher=publisher).process_next_job()

    stored = queue.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.error == "Repository not found or access denied"
    assert stored.completed_at is not None
    assert not queue.pending.contains(job.id)


def test_missing_github_connection_fails(queue, backend, issue_payload):
    credentials = CredentialStore(backend, default_github_token="", default_openai_key="sk-env")
    job = queue.create_job("user-9", KIND, issue_payload, max_retries=0)

    _processor(queue, credentials).process_next_job()

    stored = queue.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.error == "GitHub not connected"


def test_missing_openai_key_fails(queue, backend, issue_payload):
    credentials = CredentialStore(backend, default_github_token="gh-env", default_openai_key="")
    job = queue.create_job("user-9", KIND, issue_payload, max_retries=0)

    _processor(queue, credentials).process_next_job()

    assert queue.get_job(job.id).error == "OpenAI API key not found"


def test_generator_error_message_becomes_job_error(queue, credentials, issue_payload):
    generator = FakeGenerator(error=RuntimeError("No content generated from AI"))
    job = queue.create_job("user-1", KIND, issue_payload, max_retries=0)

    _processor(queue, credentials, generator=generator).process_next_job()

    assert queue.get_job(job.id).error == "No content generated from AI"


def test_process_pending_jobs_drains_failing_job_budget(queue, credentials, issue_payload):
    failure = PublishResult(success=False, error="GitHub API error: HTTP 500")
    publisher = FakePublisher([failure] * 10)
    job = queue.create_job("user-1", KIND, issue_payload, max_retries=3)

    processed = _processor(queue, credentials, publisher=publisher).process_pending_jobs(max_jobs=10)

    assert processed == 4
    stored = queue.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.retry_count == 3
    assert stored.error == "GitHub API error: HTTP 500"
    assert len(publisher.calls) == 4


def test_process_pending_jobs_respects_batch_size(queue, credentials, issue_payload):
    for _ in range(3):
        queue.create_job("user-1", KIND, issue_payload)

    processed = _processor(queue, credentials).process_pending_jobs(max_jobs=2)

    assert processed == 2
    assert queue.pending_count() == 1

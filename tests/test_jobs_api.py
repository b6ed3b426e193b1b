from __future__ import annotations

import pytest
from werkzeug.security import generate_password_hash

from jobs.models import JobKind, JobStatus
from jobs.processor import JobProcessor
from server import create_app, parse_users
from services.credentials import CredentialStore
from services.github_client import PublishResult

KIND = JobKind.CREATE_AND_PUBLISH_ISSUE
CREATE_BODY = {
    "title": "Support dark mode",
    "prompt": "Add dark mode",
    "repository": "x/y",
    "generated_content": {"markdown": "Body", "summary": {"type": "feature"}},
}


class StubPublisher:
    def __init__(self):
        self.calls = []

    def publish_with_retry(self, **params):
        self.calls.append(params)
        return PublishResult(success=True, issue_url="https://github.com/x/y/issues/1", issue_number=1)


@pytest.fixture
def processor(queue, backend):
    credentials = CredentialStore(backend, default_github_token="gh-env", default_openai_key="")
    return JobProcessor(queue, credentials, publisher=StubPublisher())


@pytest.fixture
def app(processor):
    app = create_app(processor=processor, start_worker=False)
    app.config.update(TESTING=True, CRON_SECRET="")
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def _login(client, user="alice"):
    with client.session_transaction() as sess:
        sess["user"] = user


def test_create_job_requires_session(client):
    response = client.post("/api/jobs", json=CREATE_BODY)
    assert response.status_code == 401
    assert response.get_json()["error"]["message"] == "Unauthorized"


def test_create_job_returns_pending_job(client, queue):
    _login(client)
    response = client.post("/api/jobs", json=CREATE_BODY)

    assert response.status_code == 202
    body = response.get_json()
    assert body["success"] is True
    assert body["status"] == "pending"
    job = queue.get_job(body["job_id"])
    assert job.owner_id == "alice"
    assert job.payload["repository"] == "x/y"
    assert queue.pending.contains(job.id)


@pytest.mark.parametrize(
    "body",
    [
        {"repository": "x/y"},
        {"prompt": "", "repository": "x/y"},
        {"prompt": "Add dark mode", "repository": "not-a-repo"},
        {"prompt": "Add dark mode", "repository": "x/y", "generated_content": {"summary": {}}},
    ],
)
def test_create_job_validates_payload(client, body):
    _login(client)
    response = client.post("/api/jobs", json=body)
    assert response.status_code == 400
    assert response.get_json()["error"]["message"].startswith("Invalid")


def test_create_job_rejects_non_json(client):
    _login(client)
    response = client.post("/api/jobs", data="not json", content_type="text/plain")
    assert response.status_code == 400


def test_job_status_exposes_public_fields_only(client, queue):
    _login(client)
    job = queue.create_job("alice", KIND, CREATE_BODY)

    response = client.get(f"/api/jobs/{job.id}")

    assert response.status_code == 200
    body = response.get_json()
    assert body["id"] == job.id
    assert body["status"] == "pending"
    assert "payload" not in body
    assert "owner_id" not in body
    assert response.headers.get("X-Trace-Id")


def test_job_status_missing_and_foreign(client, queue):
    _login(client)
    assert client.get("/api/jobs/missing").status_code == 404

    foreign = queue.create_job("bob", KIND, CREATE_BODY)
    assert client.get(f"/api/jobs/{foreign.id}").status_code == 403


def test_job_history_lists_own_jobs(client, queue, clock):
    _login(client)
    first = queue.create_job("alice", KIND, CREATE_BODY)
    clock.advance(1)
    second = queue.create_job("alice", KIND, CREATE_BODY)
    queue.create_job("bob", KIND, CREATE_BODY)

    response = client.get("/api/jobs?limit=5")

    assert response.status_code == 200
    assert [item["id"] for item in response.get_json()["jobs"]] == [second.id, first.id]


def test_retry_only_failed_jobs(client, queue):
    _login(client)
    job = queue.create_job("alice", KIND, CREATE_BODY)
    assert client.post(f"/api/jobs/{job.id}/retry").status_code == 409

    queue.update_job_status(job.id, JobStatus.FAILED, error="boom")
    response = client.post(f"/api/jobs/{job.id}/retry")

    assert response.status_code == 200
    assert response.get_json()["status"] == "pending"
    assert queue.get_job(job.id).retry_count == 1


def test_process_endpoint_runs_worker_batch(client, queue):
    job = queue.create_job("alice", KIND, CREATE_BODY)

    response = client.post("/api/jobs/process")

    assert response.status_code == 200
    assert response.get_json() == {"success": True, "processed_count": 1}
    stored = queue.get_job(job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.result["issue_number"] == 1


def test_process_endpoint_checks_cron_secret(app, client):
    app.config["CRON_SECRET"] = "s3cret"
    assert client.post("/api/jobs/process").status_code == 401
    response = client.get("/api/jobs/process", headers={"Authorization": "Bearer s3cret"})
    assert response.status_code == 200
    assert response.get_json()["processed_count"] == 0


def test_cleanup_endpoint(client, queue, backend, clock):
    backend.zadd("pending-jobs", {"ancient": clock() - 30 * 24 * 60 * 60})
    response = client.post("/api/jobs/cleanup")
    assert response.get_json() == {"success": True, "removed": 1}


def test_login_with_configured_user(app, client):
    app.config["AUTH_USERS"] = {"alice": generate_password_hash("wonderland")}

    assert client.post("/api/login", json={"username": "alice", "password": "nope"}).status_code == 401
    response = client.post("/api/login", json={"username": "alice", "password": "wonderland"})
    assert response.status_code == 200
    assert client.post("/api/jobs", json=CREATE_BODY).status_code == 202

    client.post("/api/logout")
    assert client.get("/api/jobs").status_code == 401


def test_credentials_update(client, backend):
    _login(client)
    assert client.put("/api/user/credentials", json={}).status_code == 400

    response = client.put("/api/user/credentials", json={"github_token": "gh-alice"})

    assert response.get_json() == {"updated": ["github_token"]}
    assert CredentialStore(backend).get_github_token("alice") == "gh-alice"


def test_health_reports_queue_state(client, queue):
    queue.create_job("alice", KIND, CREATE_BODY)
    response = client.get("/api/health")
    body = response.get_json()
    assert response.status_code == 200
    assert body["ok"] is True
    assert body["checks"]["job_store"]["message"] == "Pending jobs: 1"
    assert "jobs.created_total" in body["metrics"]


def test_unknown_route_returns_json_error(client):
    response = client.get("/api/nope")
    assert response.status_code == 404
    assert response.get_json()["error"]["code"] == 404


def test_parse_users():
    assert parse_users("alice=hash1; bob=hash2;broken") == {"alice": "hash1", "bob": "hash2"}
    assert parse_users("") == {}

"""Flask application exposing the issue publishing job queue via HTTP."""
from __future__ import annotations

import atexit
import hmac
import os
import secrets
import uuid
from functools import wraps
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from flask import Flask, current_app, g, jsonify, request, session
from flask_cors import CORS
from jsonschema import Draft7Validator
from werkzeug.exceptions import HTTPException
from werkzeug.security import check_password_hash

from config import (
    AUTH_USERS,
    CRON_SECRET,
    JOB_STORE_URL,
    USER_JOBS_LIMIT,
    WORKER_BATCH_SIZE,
    WORKER_ENABLED,
)
from jobs import JobKind, JobNotFoundError, JobQueue, JobStatus, create_backend
from jobs.backends import Backend
from jobs.processor import JobProcessor
from jobs.runner import JobRunner
from observability.logger import bind_trace_id, clear_trace_id, get_logger
from observability.metrics import get_registry
from services.credentials import CredentialStore

load_dotenv()

LOGGER = get_logger("issue_relay.api")

EXTENSION_KEY = "issue_relay"

CREATE_JOB_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["prompt", "repository"],
    "properties": {
        "title": {"type": ["string", "null"], "maxLength": 256},
        "prompt": {"type": "string", "minLength": 1},
        "repository": {"type": "string", "pattern": r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$"},
        "generated_content": {
            "type": ["object", "null"],
            "required": ["markdown"],
            "properties": {
                "markdown": {"type": "string", "minLength": 1},
                "summary": {
                    "type": "object",
                    "properties": {
                        "type": {"type": "string"},
                        "priority": {"type": "string"},
                        "complexity": {"type": "string"},
                    },
                },
            },
        },
    },
}
_CREATE_JOB_VALIDATOR = Draft7Validator(CREATE_JOB_SCHEMA)


class ApiError(Exception):
    """Exception translated into an HTTP error response."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def parse_users(raw: str) -> Dict[str, str]:
    """Parse ``name=hash;name=hash`` into a username → password hash map."""

    users: Dict[str, str] = {}
    for chunk in (raw or "").split(";"):
        name, _, password_hash = chunk.strip().partition("=")
        if name.strip() and password_hash.strip():
            users[name.strip()] = password_hash.strip()
    return users


def login_required(view_func):
    """Decorator rejecting API calls without an authenticated session."""

    @wraps(view_func)
    def wrapper(*args, **kwargs):
        if not session.get("user"):
            raise ApiError("Unauthorized", status_code=401)
        return view_func(*args, **kwargs)

    return wrapper


def cron_authorized(view_func):
    """Decorator checking ``Authorization: Bearer <CRON_SECRET>`` when a secret is configured."""

    @wraps(view_func)
    def wrapper(*args, **kwargs):
        secret = current_app.config.get("CRON_SECRET") or ""
        if secret:
            supplied = request.headers.get("Authorization", "")
            if not hmac.compare_digest(supplied, f"Bearer {secret}"):
                raise ApiError("Unauthorized", status_code=401)
        return view_func(*args, **kwargs)

    return wrapper


def create_app(
    *,
    backend: Optional[Backend] = None,
    processor: Optional[JobProcessor] = None,
    start_worker: Optional[bool] = None,
) -> Flask:
    app = Flask(__name__)
    if hasattr(app, "json"):
        app.json.ensure_ascii = False
    CORS(app, resources={r"/api/*": {"origins": "*"}})

    secret_key = os.environ.get("FLASK_SECRET_KEY")
    if not secret_key:
        LOGGER.warning("FLASK_SECRET_KEY is not set; generating a temporary secret key")
    app.secret_key = secret_key or secrets.token_hex(32)
    app.config.setdefault("CRON_SECRET", CRON_SECRET)
    app.config.setdefault("AUTH_USERS", parse_users(AUTH_USERS))

    if processor is not None:
        queue = processor.queue
        backend = queue.backend
    else:
        backend = backend if backend is not None else create_backend(JOB_STORE_URL)
        queue = JobQueue(backend)
    credentials = CredentialStore(backend)
    processor = processor or JobProcessor(queue, credentials)
    runner = JobRunner(processor)
    app.extensions[EXTENSION_KEY] = {
        "queue": queue,
        "credentials": credentials,
        "processor": processor,
        "runner": runner,
    }

    if WORKER_ENABLED if start_worker is None else start_worker:
        runner.start()
        atexit.register(runner.stop)

    @app.before_request
    def _bind_request_trace() -> None:
        trace_id = request.headers.get("X-Trace-Id") or uuid.uuid4().hex
        g.trace_id = trace_id
        bind_trace_id(trace_id)

    @app.after_request
    def _append_trace(response):  # type: ignore[override]
        trace_id = getattr(g, "trace_id", None)
        if trace_id:
            response.headers.setdefault("X-Trace-Id", trace_id)
        return response

    @app.teardown_request
    def _teardown_trace(_exc):  # type: ignore[override]
        clear_trace_id()

    @app.errorhandler(ApiError)
    def _handle_api_error(exc: ApiError):  # type: ignore[override]
        LOGGER.warning("API error", extra={"error_message": exc.message, "code": exc.status_code})
        return _error_response(exc.message, exc.status_code)

    @app.errorhandler(JobNotFoundError)
    def _handle_job_not_found(exc: JobNotFoundError):  # type: ignore[override]
        return _error_response("Job not found", 404)

    @app.errorhandler(HTTPException)
    def _handle_http_error(exc: HTTPException):  # type: ignore[override]
        return _error_response(exc.description or exc.name, exc.code or 500)

    @app.errorhandler(Exception)
    def _handle_generic_error(exc: Exception):  # type: ignore[override]
        LOGGER.exception("Unhandled error")
        return _error_response("Internal server error", 500)

    @app.post("/api/login")
    def login():
        payload = _require_json(request)
        username = str(payload.get("username", "")).strip()
        password = str(payload.get("password", ""))
        password_hash = current_app.config["AUTH_USERS"].get(username)
        if not password_hash or not check_password_hash(password_hash, password):
            raise ApiError("Invalid username or password", status_code=401)
        session.clear()
        session["user"] = username
        LOGGER.info("user_logged_in", extra={"user": username})
        return jsonify({"user": username})

    @app.post("/api/logout")
    def logout():
        session.clear()
        return jsonify({"success": True})

    @app.post("/api/jobs")
    @login_required
    def create_job():
        payload = _require_json(request)
        errors = sorted(_CREATE_JOB_VALIDATOR.iter_errors(payload), key=lambda err: list(err.path))
        if errors:
            field = ".".join(str(part) for part in errors[0].path) or "request"
            raise ApiError(f"Invalid {field}: {errors[0].message}")

        job_payload = {
            "title": str(payload.get("title") or "").strip(),
            "prompt": payload["prompt"],
            "repository": payload["repository"],
            "generated_content": payload.get("generated_content"),
        }
        job = _queue().create_job(session["user"], JobKind.CREATE_AND_PUBLISH_ISSUE, job_payload)
        return jsonify({"success": True, "job_id": job.id, "status": job.status.value}), 202

    @app.get("/api/jobs")
    @login_required
    def list_jobs():
        limit = _safe_int(request.args.get("limit"), default=USER_JOBS_LIMIT)
        limit = max(1, min(_queue().user_jobs.max_length, limit))
        jobs = _queue().get_user_jobs(session["user"], limit=limit)
        return jsonify({"jobs": [job.to_status_dict() for job in jobs]})

    @app.get("/api/jobs/<job_id>")
    @login_required
    def job_status(job_id: str):
        job = _owned_job(job_id)
        return jsonify(job.to_status_dict())

    @app.post("/api/jobs/<job_id>/retry")
    @login_required
    def retry_job(job_id: str):
        job = _owned_job(job_id)
        if job.status != JobStatus.FAILED:
            raise ApiError(f"Only failed jobs can be retried (status: {job.status.value})", status_code=409)
        job = _queue().retry_job(job.id)
        return jsonify(job.to_status_dict())

    @app.route("/api/jobs/process", methods=["GET", "POST"])
    @cron_authorized
    def process_jobs():
        processed = _components()["processor"].process_pending_jobs(WORKER_BATCH_SIZE)
        return jsonify({"success": True, "processed_count": processed})

    @app.post("/api/jobs/cleanup")
    @cron_authorized
    def cleanup_jobs():
        removed = _queue().cleanup_old_jobs()
        return jsonify({"success": True, "removed": removed})

    @app.put("/api/user/credentials")
    @login_required
    def update_credentials():
        payload = _require_json(request)
        store: CredentialStore = _components()["credentials"]
        updated = []
        github_token = str(payload.get("github_token") or "").strip()
        if github_token:
            store.set_github_token(session["user"], github_token)
            updated.append("github_token")
        openai_key = str(payload.get("openai_key") or "").strip()
        if openai_key:
            store.set_openai_key(session["user"], openai_key)
            updated.append("openai_key")
        if not updated:
            raise ApiError("Nothing to update: provide github_token or openai_key")
        return jsonify({"updated": updated})

    @app.get("/api/user/usage")
    @login_required
    def usage_stats():
        store: CredentialStore = _components()["credentials"]
        return jsonify(store.get_usage(session["user"]))

    @app.get("/api/health")
    def health():
        components = _components()
        checks: Dict[str, Dict[str, Any]] = {}
        ok = True
        try:
            components["queue"].backend.ping()
            pending = components["queue"].pending_count()
            checks["job_store"] = {"ok": True, "message": f"Pending jobs: {pending}"}
        except Exception as exc:  # noqa: BLE001
            ok = False
            LOGGER.warning("job_store_unavailable", extra={"error": str(exc)})
            checks["job_store"] = {"ok": False, "message": f"Job store unavailable: {exc}"}
        runner: JobRunner = components["runner"]
        checks["job_runner"] = {
            "ok": True,
            "message": "running" if runner.is_running else "not started (use /api/jobs/process)",
        }
        payload = {"ok": ok, "checks": checks, "metrics": get_registry().snapshot()}
        return jsonify(payload), 200 if ok else 503

    return app


def _components() -> Dict[str, Any]:
    return current_app.extensions[EXTENSION_KEY]


def _queue() -> JobQueue:
    return _components()["queue"]


def _owned_job(job_id: str):
    job = _queue().get_job(job_id)
    if job is None:
        raise ApiError("Job not found", status_code=404)
    if job.owner_id != session.get("user"):
        raise ApiError("Forbidden", status_code=403)
    return job


def _error_response(message: str, status_code: int):
    trace_id = getattr(g, "trace_id", None)
    return (
        jsonify(
            {
                "error": {
                    "message": message,
                    "code": status_code,
                    "trace_id": trace_id,
                }
            }
        ),
        status_code,
    )


def _require_json(req) -> Dict[str, Any]:
    data = req.get_json(force=True, silent=True)
    if data is None:
        raise ApiError("Invalid JSON")
    if not isinstance(data, dict):
        raise ApiError("Expected a JSON object")
    return data


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default

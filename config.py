# -*- coding: utf-8 -*-

import os


def _env_int(name: str, default: int) -> int:
    value = str(os.getenv(name, "")).strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = str(os.getenv(name, "")).strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = str(os.getenv(name, "")).strip().lower()
    if not raw:
        return default
    return raw not in {"0", "false", "off", "no"}


def _env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name, default)).strip()


# Хранилище заданий: пустой URL означает in-memory backend
JOB_STORE_URL = _env_str("JOB_STORE_URL", os.getenv("REDIS_URL", ""))
JOB_TTL_S = max(60, _env_int("JOB_TTL_S", 24 * 60 * 60))
JOB_MAX_RETRIES = max(0, _env_int("JOB_MAX_RETRIES", 3))
JOB_PENDING_MAX_AGE_S = max(JOB_TTL_S, _env_int("JOB_PENDING_MAX_AGE_S", 7 * 24 * 60 * 60))
USER_JOBS_LIMIT = max(1, _env_int("USER_JOBS_LIMIT", 10))
USER_JOBS_HISTORY_MAX = max(USER_JOBS_LIMIT, _env_int("USER_JOBS_HISTORY_MAX", 50))

# Клиентский опрос статуса
JOB_POLL_INTERVAL_S = max(0.1, _env_float("JOB_POLL_INTERVAL_S", 5.0))
JOB_POLL_TIMEOUT_S = max(JOB_POLL_INTERVAL_S, _env_float("JOB_POLL_TIMEOUT_S", 300.0))

# Фоновый обработчик
WORKER_ENABLED = _env_bool("WORKER_ENABLED", False)
WORKER_INTERVAL_S = max(0.5, _env_float("WORKER_INTERVAL_S", 10.0))
WORKER_BATCH_SIZE = max(1, _env_int("WORKER_BATCH_SIZE", 5))
WORKER_CLEANUP_INTERVAL_S = max(WORKER_INTERVAL_S, _env_float("WORKER_CLEANUP_INTERVAL_S", 3600.0))
CRON_SECRET = _env_str("CRON_SECRET")

OPENAI_API_KEY = _env_str("OPENAI_API_KEY")
OPENAI_ISSUE_MODEL = _env_str("OPENAI_ISSUE_MODEL", "gpt-4o-mini") or "gpt-4o-mini"
OPENAI_TIMEOUT_S = max(1, _env_int("OPENAI_TIMEOUT_S", 60))
OPENAI_TEMPERATURE = min(2.0, max(0.0, _env_float("OPENAI_TEMPERATURE", 0.7)))

GITHUB_TOKEN = _env_str("GITHUB_TOKEN")
GITHUB_API_URL = (_env_str("GITHUB_API_URL", "https://api.github.com") or "https://api.github.com").rstrip("/")
GITHUB_TIMEOUT_S = max(1, _env_int("GITHUB_TIMEOUT_S", 20))
PUBLISH_MAX_RETRIES = max(1, _env_int("PUBLISH_MAX_RETRIES", 3))
PUBLISH_INITIAL_DELAY_S = max(0.0, _env_float("PUBLISH_INITIAL_DELAY_S", 1.0))

# Формат: "alice=<werkzeug hash>;bob=<werkzeug hash>"
AUTH_USERS = _env_str("AUTH_USERS")

LOG_LEVEL = (_env_str("LOG_LEVEL", "INFO") or "INFO").upper()

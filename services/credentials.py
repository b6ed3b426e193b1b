"""Per-user secrets and usage accounting kept in the job backend."""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from config import GITHUB_TOKEN, OPENAI_API_KEY
from jobs.backends import Backend
from jobs.models import format_timestamp, utcnow


def github_key(owner_id: str) -> str:
    return f"github:{owner_id}"


def openai_key(owner_id: str) -> str:
    return f"openai-key:{owner_id}"


def usage_key(owner_id: str) -> str:
    return f"usage:{owner_id}"


class CredentialStore:
    """Resolves the GitHub token and OpenAI key a job runs with.

    Per-user values win; the process-wide defaults from the environment are
    used when a user has not connected their own account.
    """

    def __init__(
        self,
        backend: Backend,
        *,
        default_github_token: str = GITHUB_TOKEN,
        default_openai_key: str = OPENAI_API_KEY,
    ) -> None:
        self._backend = backend
        self._default_github_token = default_github_token
        self._default_openai_key = default_openai_key

    def set_github_token(self, owner_id: str, access_token: str) -> None:
        connection = {
            "user_id": owner_id,
            "access_token": access_token,
            "updated_at": format_timestamp(utcnow()),
        }
        self._backend.set(github_key(owner_id), json.dumps(connection))

    def get_github_token(self, owner_id: str) -> Optional[str]:
        raw = self._backend.get(github_key(owner_id))
        if raw:
            token = json.loads(raw).get("access_token")
            if token:
                return str(token)
        return self._default_github_token or None

    def set_openai_key(self, owner_id: str, api_key: str) -> None:
        self._backend.set(openai_key(owner_id), api_key)

    def get_openai_key(self, owner_id: str) -> Optional[str]:
        return self._backend.get(openai_key(owner_id)) or self._default_openai_key or None

    def record_usage(self, owner_id: str, tokens: int, cost: float) -> Dict[str, Any]:
        stats = self.get_usage(owner_id)
        stats["total_tokens"] += int(tokens)
        stats["total_cost"] = round(stats["total_cost"] + float(cost), 6)
        stats["requests"] += 1
        stats["last_used_at"] = format_timestamp(utcnow())
        self._backend.set(usage_key(owner_id), json.dumps(stats))
        return stats

    def get_usage(self, owner_id: str) -> Dict[str, Any]:
        raw = self._backend.get(usage_key(owner_id))
        stats: Dict[str, Any] = {"total_tokens": 0, "total_cost": 0.0, "requests": 0, "last_used_at": None}
        if raw:
            stats.update(json.loads(raw))
        return stats


__all__ = ["CredentialStore"]

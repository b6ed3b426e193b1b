"""Issue publishing against the GitHub REST API."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from config import GITHUB_API_URL, GITHUB_TIMEOUT_S, PUBLISH_INITIAL_DELAY_S, PUBLISH_MAX_RETRIES
from observability.logger import get_logger

LOGGER = get_logger("issue_relay.services.github")

GITHUB_API_VERSION = "2022-11-28"
ERROR_INVALID_REPOSITORY = 'Invalid repository format. Expected "owner/repo"'
ERROR_NOT_FOUND = "Repository not found or access denied"
ERROR_FORBIDDEN = "GitHub API rate limit exceeded or insufficient permissions"
ERROR_UNAUTHORIZED = "GitHub authentication failed. Please reconnect your account"
_NON_RETRYABLE_MARKERS = ("authentication", "access denied", "Invalid repository")


@dataclass
class PublishResult:
    success: bool
    issue_url: Optional[str] = None
    issue_number: Optional[int] = None
    error: Optional[str] = None


def split_repository(repository: str) -> Optional[tuple[str, str]]:
    owner, _, repo = (repository or "").strip().partition("/")
    if not owner or not repo or "/" in repo:
        return None
    return owner, repo


class GitHubPublisher:
    """Creates issues and maps HTTP failures to user-facing messages."""

    def __init__(
        self,
        *,
        api_url: str = GITHUB_API_URL,
        timeout_s: float = GITHUB_TIMEOUT_S,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._timeout_s = float(timeout_s)
        self._sleep = sleep

    def publish(
        self,
        *,
        title: str,
        body: str,
        access_token: str,
        repository: str,
        labels: Optional[Sequence[str]] = None,
        assignees: Optional[Sequence[str]] = None,
    ) -> PublishResult:
        parts = split_repository(repository)
        if parts is None:
            return PublishResult(success=False, error=ERROR_INVALID_REPOSITORY)
        owner, repo = parts

        payload: Dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = [label for label in labels if label]
        if assignees:
            payload["assignees"] = list(assignees)
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {access_token}",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        url = f"{self._api_url}/repos/{owner}/{repo}/issues"

        try:
            with httpx.Client(timeout=httpx.Timeout(self._timeout_s)) as client:
                response = client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            LOGGER.warning("github_publish_transport_error", extra={"repository": repository, "error": str(exc)})
            return PublishResult(success=False, error=str(exc) or "Failed to publish issue")

        if response.status_code >= 400:
            error = _map_error(response)
            LOGGER.warning(
                "github_publish_failed",
                extra={"repository": repository, "status_code": response.status_code, "error": error},
            )
            return PublishResult(success=False, error=error)

        data = response.json()
        LOGGER.info("github_issue_created", extra={"repository": repository, "issue_number": data.get("number")})
        return PublishResult(success=True, issue_url=data.get("html_url"), issue_number=data.get("number"))

    def publish_with_retry(
        self,
        *,
        max_retries: int = PUBLISH_MAX_RETRIES,
        initial_delay: float = PUBLISH_INITIAL_DELAY_S,
        **params: Any,
    ) -> PublishResult:
        attempts = max(1, int(max_retries))
        last_error: Optional[str] = None
        for attempt in range(attempts):
            result = self.publish(**params)
            if result.success:
                return result
            last_error = result.error
            if result.error and any(marker in result.error for marker in _NON_RETRYABLE_MARKERS):
                return result
            if attempt < attempts - 1:
                self._sleep(initial_delay * (2**attempt))
        return PublishResult(success=False, error=last_error or "Failed after multiple attempts")


def _map_error(response: httpx.Response) -> str:
    if response.status_code == 404:
        return ERROR_NOT_FOUND
    if response.status_code == 403:
        return ERROR_FORBIDDEN
    if response.status_code == 401:
        return ERROR_UNAUTHORIZED
    message: Optional[str] = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message")
        details: List[str] = [
            str(item.get("message") or item.get("code"))
            for item in body.get("errors") or []
            if isinstance(item, dict) and (item.get("message") or item.get("code"))
        ]
        if message and details:
            message = f"{message}: {'; '.join(details)}"
    return message or f"GitHub API error: HTTP {response.status_code}"


__all__ = ["GitHubPublisher", "PublishResult", "split_repository"]

"""Data models describing asynchronous publishing jobs."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    """Return a timezone-aware UTC datetime."""

    return datetime.now(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.strftime(ISO_FORMAT) if value else None


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.strptime(str(value), ISO_FORMAT).replace(tzinfo=timezone.utc)


class JobStatus(str, Enum):
    """Lifecycle states for a background job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class JobKind(str, Enum):
    """Closed set of job types understood by the processor."""

    CREATE_AND_PUBLISH_ISSUE = "create-and-publish-issue"


@dataclass
class IssueSummary:
    type: str = "feature"
    priority: str = "medium"
    complexity: str = "medium"

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "priority": self.priority, "complexity": self.complexity}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "IssueSummary":
        data = data or {}
        return cls(
            type=str(data.get("type") or "feature"),
            priority=str(data.get("priority") or "medium"),
            complexity=str(data.get("complexity") or "medium"),
        )


@dataclass
class GeneratedContent:
    markdown: str
    summary: IssueSummary = field(default_factory=IssueSummary)

    def to_dict(self) -> Dict[str, Any]:
        return {"markdown": self.markdown, "summary": self.summary.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeneratedContent":
        return cls(markdown=str(data.get("markdown") or ""), summary=IssueSummary.from_dict(data.get("summary")))


@dataclass
class CreateIssuePayload:
    """Input of a ``create-and-publish-issue`` job."""

    prompt: str
    repository: str
    title: str = ""
    generated_content: Optional[GeneratedContent] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "prompt": self.prompt,
            "repository": self.repository,
            "generated_content": self.generated_content.to_dict() if self.generated_content else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreateIssuePayload":
        generated = data.get("generated_content")
        return cls(
            prompt=str(data.get("prompt") or ""),
            repository=str(data.get("repository") or ""),
            title=str(data.get("title") or ""),
            generated_content=GeneratedContent.from_dict(generated) if isinstance(generated, dict) else None,
        )


@dataclass
class IssueResult:
    """Outcome of a successfully published issue."""

    issue_url: str
    issue_number: int
    repository: str
    title: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "issue_url": self.issue_url,
            "issue_number": self.issue_number,
            "repository": self.repository,
            "title": self.title,
        }


@dataclass
class Job:
    """Durable record of one unit of deferred work and its outcome."""

    id: str
    owner_id: str
    kind: JobKind
    payload: Dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "payload": self.payload,
            "result": self.result,
            "error": self.error,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "completed_at": format_timestamp(self.completed_at),
        }

    def to_status_dict(self) -> Dict[str, Any]:
        """Public view of the job: no owner and no payload."""

        return {
            "id": self.id,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "completed_at": format_timestamp(self.completed_at),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            id=str(data["id"]),
            owner_id=str(data["owner_id"]),
            kind=JobKind(data["kind"]),
            payload=dict(data.get("payload") or {}),
            status=JobStatus(data.get("status", JobStatus.PENDING.value)),
            result=data.get("result"),
            error=data.get("error"),
            retry_count=int(data.get("retry_count") or 0),
            max_retries=int(data.get("max_retries") or 0),
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
            updated_at=parse_timestamp(data.get("updated_at")) or utcnow(),
            completed_at=parse_timestamp(data.get("completed_at")),
        )

    @classmethod
    def from_json(cls, payload: str) -> "Job":
        return cls.from_dict(json.loads(payload))


__all__ = [
    "CreateIssuePayload",
    "GeneratedContent",
    "IssueResult",
    "IssueSummary",
    "Job",
    "JobKind",
    "JobStatus",
    "TERMINAL_STATUSES",
    "format_timestamp",
    "parse_timestamp",
    "utcnow",
]

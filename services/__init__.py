"""Service layer utilities."""

from .credentials import CredentialStore  # noqa: F401
from .github_client import GitHubPublisher, PublishResult  # noqa: F401
from .issue_generator import GeneratedIssue, IssueGenerationError, IssueGenerator  # noqa: F401
from .titles import TitleResult, generate_auto_title  # noqa: F401

__all__ = [
    "CredentialStore",
    "GeneratedIssue",
    "GitHubPublisher",
    "IssueGenerationError",
    "IssueGenerator",
    "PublishResult",
    "TitleResult",
    "generate_auto_title",
]

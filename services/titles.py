"""Title derivation for published issues."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

DEFAULT_TITLE = "Generated Issue"
MAX_TITLE_CHARS = 50
GENERIC_TITLES = (
    "generated issue",
    "new issue",
    "issue",
    "feature request",
    "bug report",
    "enhancement",
)

_HEADING_PREFIX_RE = re.compile(r"^#+\s*title:?\s*", re.IGNORECASE)
_LABEL_PREFIX_RE = re.compile(r"^title:?\s*", re.IGNORECASE)
_NON_WORD_RE = re.compile(r"[^\w\s.!?]")
_SPACES_RE = re.compile(r"\s+")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]")


@dataclass
class TitleResult:
    title: str
    is_generated: bool


def is_generic_title(title: str) -> bool:
    normalized = title.strip().lower()
    return any(normalized == generic or normalized.startswith(generic) for generic in GENERIC_TITLES)


def generate_auto_title(content: str, current_title: Optional[str] = None) -> TitleResult:
    """Keep a meaningful user title, otherwise derive one from the issue body."""

    candidate = (current_title or "").strip()
    if len(candidate) > 5 and not is_generic_title(candidate):
        return TitleResult(title=candidate, is_generated=False)
    return TitleResult(title=fallback_title(content), is_generated=True)


def fallback_title(content: str) -> str:
    sanitized = (content or "").strip()
    sanitized = _HEADING_PREFIX_RE.sub("", sanitized)
    sanitized = _LABEL_PREFIX_RE.sub("", sanitized)

    # Sentence punctuation survives until the first sentence is cut out.
    cleaned = _SPACES_RE.sub(" ", _NON_WORD_RE.sub(" ", sanitized)).strip()
    first_sentence = _SENTENCE_SPLIT_RE.split(cleaned, maxsplit=1)[0].strip()
    if first_sentence and len(first_sentence) <= MAX_TITLE_CHARS:
        return first_sentence

    flattened = _SPACES_RE.sub(" ", re.sub(r"[.!?]", " ", cleaned)).strip()
    if len(flattened) > MAX_TITLE_CHARS:
        return flattened[: MAX_TITLE_CHARS - 3] + "..."
    return flattened or DEFAULT_TITLE


__all__ = ["DEFAULT_TITLE", "TitleResult", "fallback_title", "generate_auto_title", "is_generic_title"]

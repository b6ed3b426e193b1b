"""Issue enrichment through OpenAI chat completions."""
from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import ValidationError as JSONSchemaValidationError
from openai import OpenAI

from config import OPENAI_ISSUE_MODEL, OPENAI_TEMPERATURE, OPENAI_TIMEOUT_S
from jobs.models import GeneratedContent, IssueSummary
from observability.logger import get_logger

LOGGER = get_logger("issue_relay.services.issue_generator")

SYSTEM_PROMPT = (
    "You are an expert at creating comprehensive GitHub issues optimized for AI-assisted development.\n"
    "Create a detailed issue based on the user's prompt.\n"
    "Include all sections: Overview, Context, Requirements, Technical Specifications, Implementation Guide, "
    "Acceptance Criteria, Additional Notes, and Definition of Done.\n"
    'Return ONLY valid JSON with the structure: { "markdown": "...", "summary": { "type": '
    '"feature|bug|epic|technical-debt", "priority": "high|medium|low", "complexity": "small|medium|large" } }'
)

ISSUE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["markdown", "summary"],
    "properties": {
        "markdown": {"type": "string", "minLength": 1},
        "summary": {
            "type": "object",
            "required": ["type"],
            "properties": {
                "type": {"type": "string", "enum": ["feature", "bug", "epic", "technical-debt"]},
                "priority": {"type": "string", "enum": ["high", "medium", "low"]},
                "complexity": {"type": "string", "enum": ["small", "medium", "large"]},
            },
        },
    },
}
_VALIDATOR = Draft7Validator(ISSUE_SCHEMA)

# Rough per-token price used for usage accounting.
COST_PER_TOKEN_USD = 0.00001


class IssueGenerationError(RuntimeError):
    """Raised when the model returns nothing usable."""


@dataclass
class GeneratedIssue:
    content: GeneratedContent
    estimated_tokens: int
    estimated_cost: float


class IssueGenerator:
    def __init__(
        self,
        *,
        model: str = OPENAI_ISSUE_MODEL,
        temperature: float = OPENAI_TEMPERATURE,
        timeout_s: float = OPENAI_TIMEOUT_S,
        client_factory: Callable[..., Any] = OpenAI,
    ) -> None:
        self._model = model
        self._temperature = temperature
        self._timeout_s = timeout_s
        self._client_factory = client_factory

    def generate(self, prompt: str, *, api_key: str) -> GeneratedIssue:
        if not api_key:
            raise IssueGenerationError("OpenAI API key not found")
        client = self._client_factory(api_key=api_key, timeout=self._timeout_s)
        completion = client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=self._temperature,
            response_format={"type": "json_object"},
        )
        raw = _first_message_content(completion)
        if not raw:
            raise IssueGenerationError("No content generated from AI")

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise IssueGenerationError("AI response is not valid JSON") from exc
        try:
            _VALIDATOR.validate(data)
        except JSONSchemaValidationError as exc:
            raise IssueGenerationError(f"AI response has unexpected shape: {exc.message}") from exc

        content = GeneratedContent(markdown=data["markdown"], summary=IssueSummary.from_dict(data["summary"]))
        estimated_tokens = math.ceil((len(content.markdown) + len(raw)) / 4)
        LOGGER.info(
            "issue_generated",
            extra={"model": self._model, "estimated_tokens": estimated_tokens, "issue_type": content.summary.type},
        )
        return GeneratedIssue(
            content=content,
            estimated_tokens=estimated_tokens,
            estimated_cost=estimated_tokens * COST_PER_TOKEN_USD,
        )


def _first_message_content(completion: Any) -> Optional[str]:
    choices = getattr(completion, "choices", None) or []
    if not choices:
        return None
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    return content.strip() if isinstance(content, str) else None


__all__ = ["GeneratedIssue", "IssueGenerationError", "IssueGenerator", "ISSUE_SCHEMA"]

"""
Text-understanding provider and schema-validated JSON results.

The provider returns raw text. request_structured() turns that into a
tagged LLMResult: either a validated pydantic value or the error that
prevented it. Callers branch on the tag; nothing here raises.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Generic, Optional, Type, TypeVar

from anthropic import Anthropic
from pydantic import BaseModel, ValidationError

from universal_edgar.errors import ParseFailure
from universal_edgar.ports import TextProvider

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


# =============================================================================
# Anthropic Provider
# =============================================================================


class AnthropicTextProvider(TextProvider):
    """TextProvider backed by the Anthropic messages API.

    Each call is a single bounded attempt (explicit timeout, no SDK retries);
    the caller's deterministic fallback is the only recovery path.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-haiku-4-5-20251001",
        timeout: float = 20.0,
        max_tokens: int = 1024,
        temperature: float = 0.0,
        client: Optional[Anthropic] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.client = client or Anthropic(api_key=api_key, timeout=timeout, max_retries=0)

    def complete(self, prompt: str, schema_hint: Optional[str] = None) -> str:
        content = prompt
        if schema_hint:
            content = f"{prompt}\n\nRespond with ONLY valid JSON matching:\n{schema_hint}"

        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            messages=[{"role": "user", "content": content}],
        )
        if not response.content:
            raise ParseFailure("Empty response from provider")
        return response.content[0].text


# =============================================================================
# Tagged Result
# =============================================================================


@dataclass(frozen=True)
class LLMResult(Generic[T]):
    """Success-with-value or failure-with-error."""

    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def is_ok(self) -> bool:
        return self.error is None and self.value is not None

    @classmethod
    def ok(cls, value: T) -> "LLMResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> "LLMResult[T]":
        return cls(error=error)


_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def extract_json_text(text: str) -> str:
    """Strip markdown code fences and surrounding prose from a JSON reply."""
    stripped = _CODE_FENCE.sub("", text.strip()).strip()
    if stripped.startswith("{") or stripped.startswith("["):
        return stripped
    # Prose around a JSON object: take the outermost braces
    start = stripped.find("{")
    end = stripped.rfind("}")
    if start != -1 and end > start:
        return stripped[start:end + 1]
    return stripped


def parse_structured(text: str, model_cls: Type[T]) -> LLMResult[T]:
    """Validate raw provider text against a pydantic schema."""
    try:
        payload = json.loads(extract_json_text(text))
    except (json.JSONDecodeError, TypeError) as e:
        return LLMResult.failure(f"invalid JSON: {e}")
    try:
        return LLMResult.ok(model_cls.model_validate(payload))
    except ValidationError as e:
        return LLMResult.failure(f"schema mismatch: {e.error_count()} error(s)")


def request_structured(
    provider: Optional[TextProvider],
    prompt: str,
    model_cls: Type[T],
    schema_hint: Optional[str] = None,
) -> LLMResult[T]:
    """Call the provider and validate its reply. Never raises."""
    if provider is None:
        return LLMResult.failure("no provider configured")
    try:
        text = provider.complete(prompt, schema_hint)
    except Exception as e:
        logger.warning(f"Provider call failed for {model_cls.__name__}: {e}")
        return LLMResult.failure(f"provider error: {e}")

    result = parse_structured(text, model_cls)
    if not result.is_ok:
        logger.warning(f"Provider output rejected for {model_cls.__name__}: {result.error}")
    return result

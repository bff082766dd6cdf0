"""
Error taxonomy for the query pipeline.

Every per-query failure is one of these. The orchestrator catches them and
turns them into degraded answers; only ConfigurationError is allowed to
escape, and only at construction time.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class EdgarPipelineError(Exception):
    """Base pipeline exception with a structured payload."""

    error_code: str = "PIPELINE_ERROR"
    message: str = "An unexpected pipeline error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a log/JSON friendly dict."""
        return {
            "error": self.error_code,
            "message": self.message,
            **({"details": self.details} if self.details else {}),
        }


class ParseFailure(EdgarPipelineError):
    """Understanding provider output was unusable (timeout, invalid JSON, schema mismatch)."""

    error_code = "PARSE_FAILURE"
    message = "Could not parse provider output"


class EntityResolutionFailure(EdgarPipelineError):
    """A company reference could not be resolved to a CIK."""

    error_code = "ENTITY_RESOLUTION_FAILURE"
    message = "Company could not be resolved"


class ExternalAPIFailure(EdgarPipelineError):
    """The filings directory failed (network, rate limit, 4xx/5xx, bad JSON)."""

    error_code = "EXTERNAL_API_FAILURE"
    message = "Filings directory request failed"


class ContentParseFailure(EdgarPipelineError):
    """A filing document did not contain the expected section."""

    error_code = "CONTENT_PARSE_FAILURE"
    message = "Section not found in filing document"


class SynthesisFailure(EdgarPipelineError):
    """Narrative generation failed."""

    error_code = "SYNTHESIS_FAILURE"
    message = "Answer synthesis failed"


class DeadlineExceeded(EdgarPipelineError):
    """The overall query deadline (or a bounded wait) expired."""

    error_code = "DEADLINE_EXCEEDED"
    message = "Query deadline exceeded"


class ConfigurationError(EdgarPipelineError):
    """Required credentials or settings are missing."""

    error_code = "CONFIGURATION_ERROR"
    message = "Invalid configuration"

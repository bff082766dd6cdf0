"""
Configuration for the query pipeline.

All settings default from environment variables (a .env file is honoured).
Credentials are only checked when real providers are built, so tests and
stub-driven runs never need them.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from universal_edgar.errors import ConfigurationError

load_dotenv()


# Common copy-paste mistakes that get an IP flagged by the SEC
PLACEHOLDER_USER_AGENTS = [
    "your.real.email",
    "placeholder",
    "example.com",
    "your-email",
    "youremail",
    "your_email",
]


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_deadline() -> Optional[float]:
    raw = os.getenv("EDGAR_DEADLINE_SECONDS", "60")
    if raw.strip().lower() in ("", "none", "0"):
        return None
    return float(raw)


@dataclass
class PipelineConfig:
    """Settings for parsing, extraction, synthesis and orchestration."""

    # Credentials
    anthropic_api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("ANTHROPIC_API_KEY")
    )
    sec_user_agent: Optional[str] = field(
        default_factory=lambda: os.getenv("SEC_USER_AGENT")
    )

    # Understanding provider
    parser_model: str = field(
        default_factory=lambda: os.getenv("EDGAR_PARSER_MODEL", "claude-haiku-4-5-20251001")
    )
    synthesis_model: str = field(
        default_factory=lambda: os.getenv("EDGAR_SYNTHESIS_MODEL", "claude-sonnet-4-20250514")
    )
    llm_timeout_seconds: float = field(
        default_factory=lambda: _env_float("EDGAR_LLM_TIMEOUT_SECONDS", 20.0)
    )

    # Filings directory (SEC fair-access limit is 10 req/sec)
    sec_rate_limit: float = field(
        default_factory=lambda: _env_float("EDGAR_SEC_RATE_LIMIT", 10.0)
    )
    sec_timeout_seconds: float = field(
        default_factory=lambda: _env_float("EDGAR_SEC_TIMEOUT_SECONDS", 30.0)
    )
    data_host: str = field(default_factory=lambda: os.getenv("EDGAR_DATA_HOST", "data.sec.gov"))
    filings_host: str = field(default_factory=lambda: os.getenv("EDGAR_FILINGS_HOST", "www.sec.gov"))

    # Orchestration
    max_workers: int = field(default_factory=lambda: _env_int("EDGAR_MAX_WORKERS", 4))
    deadline_seconds: Optional[float] = field(default_factory=_env_deadline)
    use_tool_router: bool = field(
        default_factory=lambda: _env_bool("EDGAR_USE_TOOL_ROUTER", True)
    )

    # Remote tool server; unset means tools run in-process over the SEC client
    mcp_server_url: Optional[str] = field(
        default_factory=lambda: os.getenv("EDGAR_MCP_SERVER_URL") or None
    )
    mcp_transport: str = field(
        default_factory=lambda: os.getenv("EDGAR_MCP_TRANSPORT", "streamable_http")
    )
    mcp_timeout_seconds: float = field(
        default_factory=lambda: _env_float("EDGAR_MCP_TIMEOUT_SECONDS", 30.0)
    )

    # Confidence gates
    parse_confidence_gate: float = 0.1
    alternate_confidence_gate: float = 0.3
    extraction_confidence_gate: float = 0.2

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create config from environment variables."""
        return cls()

    def validate(self) -> None:
        """Fail fast when real providers would be built without credentials.

        Raises:
            ConfigurationError: If the Anthropic key or SEC user agent is missing,
                or the user agent is a known placeholder.
        """
        if not self.anthropic_api_key:
            raise ConfigurationError(
                "ANTHROPIC_API_KEY environment variable required",
                details={"setting": "ANTHROPIC_API_KEY"},
            )
        if not self.sec_user_agent:
            raise ConfigurationError(
                "SEC_USER_AGENT environment variable required. "
                "Set it to 'YourAppName your-email@domain.com'",
                details={"setting": "SEC_USER_AGENT"},
            )
        ua_lower = self.sec_user_agent.lower()
        if any(placeholder in ua_lower for placeholder in PLACEHOLDER_USER_AGENTS):
            raise ConfigurationError(
                f"SEC_USER_AGENT appears to be a placeholder: '{self.sec_user_agent}'",
                details={"setting": "SEC_USER_AGENT"},
            )
        if self.sec_rate_limit <= 0:
            raise ConfigurationError("EDGAR_SEC_RATE_LIMIT must be positive")
        if self.mcp_transport not in ("streamable_http", "sse"):
            raise ConfigurationError(
                f"EDGAR_MCP_TRANSPORT must be streamable_http or sse, got '{self.mcp_transport}'",
                details={"setting": "EDGAR_MCP_TRANSPORT"},
            )


# Global default config
default_config = PipelineConfig()

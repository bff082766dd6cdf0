"""
Structured Logging for the Query Pipeline.

Provides audit-ready structured logs for:
- Confidence gate decisions (parse, alternate provider, extraction)
- Per-company extraction events
- Pipeline stage flow and timing

Uses Python's logging with a JSON payload after a fixed prefix, so logs stay
grep-able in plain text and parseable by machines.
"""
from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional


# =============================================================================
# Logger Setup
# =============================================================================

logger = logging.getLogger("universal_edgar.observability")


def setup_structured_logging(
    level: int = logging.INFO,
    json_format: bool = False,
) -> None:
    """Configure structured logging for the pipeline.

    Args:
        level: Logging level (default INFO)
        json_format: If True, output bare messages for machine parsing
    """
    handler = logging.StreamHandler()

    if json_format:
        formatter = logging.Formatter('%(message)s')
    else:
        formatter = logging.Formatter(
            '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handler.setFormatter(formatter)

    package_logger = logging.getLogger("universal_edgar")
    package_logger.handlers = []
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    package_logger.propagate = False


# =============================================================================
# Structured Log Events
# =============================================================================

def _now() -> str:
    return datetime.now().isoformat()


@dataclass
class GateDecision:
    """A confidence gate comparing a stage's score to its threshold."""
    gate: str  # "parse", "alternate", "extraction"
    score: float
    threshold: float
    result: str  # "pass", "fail"
    query_id: Optional[str] = None
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = _now()


@dataclass
class ExtractionEvent:
    """Per-company extraction outcome."""
    event_type: str  # "complete", "error", "skipped"
    company: str
    cik: Optional[str] = None
    categories_requested: int = 0
    categories_populated: int = 0
    filings: int = 0
    duration_ms: Optional[float] = None
    error: Optional[str] = None
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = _now()


@dataclass
class PipelineEvent:
    """Pipeline stage flow event."""
    event: str  # "parsing", "routing", "extracting", "synthesizing", "query"
    status: str = "started"  # "started", "completed", "failed"
    details: Optional[Dict[str, Any]] = None
    duration_ms: Optional[float] = None
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = _now()


# =============================================================================
# Logging Functions
# =============================================================================

def log_gate_decision(
    gate: str,
    score: float,
    threshold: float,
    query_id: Optional[str] = None,
) -> bool:
    """Log a confidence gate and return whether it passed (score >= threshold)."""
    passed = score >= threshold
    decision = GateDecision(
        gate=gate,
        score=round(score, 4),
        threshold=threshold,
        result="pass" if passed else "fail",
        query_id=query_id,
    )
    log_data = asdict(decision)

    if passed:
        logger.info(f"GATE_DECISION | {json.dumps(log_data)}")
    else:
        logger.warning(f"GATE_DECISION | {json.dumps(log_data)}")
    return passed


def log_extraction_event(
    event_type: str,
    company: str,
    **kwargs
) -> None:
    """Log a per-company extraction event.

    Args:
        event_type: "complete", "error", or "skipped"
        company: Company name or identifier as requested
        **kwargs: Additional ExtractionEvent fields
    """
    event = ExtractionEvent(event_type=event_type, company=company, **kwargs)
    log_data = asdict(event)

    if event_type == "error":
        logger.error(f"EXTRACTION | {json.dumps(log_data, default=str)}")
    else:
        logger.info(f"EXTRACTION | {json.dumps(log_data, default=str)}")


def log_pipeline_event(
    event: str,
    status: str = "started",
    **kwargs
) -> None:
    """Log a pipeline flow event.

    Args:
        event: Stage name
        status: "started", "completed", or "failed"
        **kwargs: Additional PipelineEvent fields
    """
    pipeline_event = PipelineEvent(event=event, status=status, **kwargs)
    log_data = asdict(pipeline_event)

    if status == "failed":
        logger.error(f"PIPELINE | {json.dumps(log_data, default=str)}")
    else:
        logger.info(f"PIPELINE | {json.dumps(log_data, default=str)}")


# =============================================================================
# Context Managers
# =============================================================================

@contextmanager
def timed_operation(operation_name: str, **context):
    """Context manager for timing operations with structured logging.

    Usage:
        with timed_operation("extracting", companies=2) as timer:
            # do work
            timer["resolved"] = 1

    Args:
        operation_name: Name of the operation
        **context: Additional context fields
    """
    start_time = time.perf_counter()
    result_data: Dict[str, Any] = {}

    log_pipeline_event(operation_name, status="started", details=context)

    try:
        yield result_data
        duration_ms = (time.perf_counter() - start_time) * 1000
        log_pipeline_event(
            operation_name,
            status="completed",
            duration_ms=round(duration_ms, 2),
            details={**context, **result_data}
        )
    except Exception as e:
        duration_ms = (time.perf_counter() - start_time) * 1000
        log_pipeline_event(
            operation_name,
            status="failed",
            duration_ms=round(duration_ms, 2),
            details={**context, "error": str(e)}
        )
        raise


# =============================================================================
# Query Audit
# =============================================================================

class QueryAudit:
    """Collects per-query counters for a final summary log line."""

    def __init__(self, query_id: str):
        self.query_id = query_id
        self.start_time = time.perf_counter()
        self.gates_passed = 0
        self.gates_failed = 0
        self.tools_used: List[str] = []
        self.errors: List[str] = []
        self.final_state = "parsing"

    def record_gate(self, passed: bool):
        if passed:
            self.gates_passed += 1
        else:
            self.gates_failed += 1

    def record_error(self, error: str):
        self.errors.append(error)

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.start_time) * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query_id": self.query_id,
            "duration_ms": round(self.elapsed_ms(), 2),
            "final_state": self.final_state,
            "gates_passed": self.gates_passed,
            "gates_failed": self.gates_failed,
            "tools_used": self.tools_used,
            "error_count": len(self.errors),
        }

    def log_summary(self):
        logger.info(f"AUDIT_SUMMARY | {json.dumps(self.to_dict())}")

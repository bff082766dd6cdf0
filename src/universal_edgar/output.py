"""
Structured Output - serialization for UniversalAnswer.

JSON is the primary output format, with snake_case keys as modelled.
Markdown is a secondary human-readable wrapper for terminals and reports.
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List

from universal_edgar.models import Table, UniversalAnswer


def answer_to_dict(answer: UniversalAnswer) -> Dict[str, Any]:
    return answer.model_dump(mode="json")


def answer_to_json(answer: UniversalAnswer, pretty: bool = True) -> str:
    """Serialize an answer to JSON.

    Args:
        answer: Answer to serialize
        pretty: Indented output (default) or compact single-line output
    """
    data = answer.model_dump()
    if pretty:
        return json.dumps(data, indent=2, default=_json_serializer)
    return json.dumps(data, separators=(",", ":"), default=_json_serializer)


def _json_serializer(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _table_to_markdown(table: Table) -> List[str]:
    lines = [f"### {table.title}", ""]
    lines.append("| " + " | ".join(table.headers) + " |")
    lines.append("|" + "|".join("---" for _ in table.headers) + "|")
    for row in table.rows:
        lines.append("| " + " | ".join(cell.replace("|", "\\|") for cell in row) + " |")
    lines.append("")
    return lines


def answer_to_markdown(answer: UniversalAnswer) -> str:
    """Human-readable report: narrative, tables, timelines, sources, assessment."""
    lines: List[str] = [answer.narrative, ""]

    for table in answer.data.tables:
        lines.extend(_table_to_markdown(table))

    for timeline in answer.data.timelines:
        lines.append(f"### {timeline.title}")
        lines.append("")
        for event in timeline.events:
            lines.append(f"- {event.date}: {event.company} {event.event}")
        lines.append("")

    filing_citations = [c for c in answer.citations if c.filing is not None]
    if filing_citations:
        lines.append("## Sources")
        lines.append("")
        for citation in filing_citations:
            label = citation.source.name
            if citation.filing.url:
                lines.append(f"- [{label}]({citation.filing.url})")
            else:
                lines.append(f"- {label}")
        lines.append("")

    assessment = answer.assessment
    lines.append("## Assessment")
    lines.append("")
    lines.append(f"- Confidence: {assessment.confidence:.0%}")
    lines.append(f"- Completeness: {assessment.completeness:.0%}")
    for limitation in assessment.limitations:
        lines.append(f"- Limitation: {limitation}")
    lines.append("")

    if answer.follow_up.suggested_queries:
        lines.append("## Follow-up Questions")
        lines.append("")
        for suggestion in answer.follow_up.suggested_queries:
            lines.append(f"- {suggestion}")
        lines.append("")

    meta = answer.metadata
    lines.append("---")
    lines.append(
        f"*{meta.query_id} | {meta.data_source} | {meta.pipeline_state} | "
        f"{meta.processing_time_ms:.0f} ms*"
    )
    return "\n".join(lines)

"""
Tool-routing knowledge provider.

An alternate path to knowledge: the structured query is turned into a plan
of named tool calls against a ToolClient, the calls are executed one by one
(an individual failure is recorded as an error payload, never raised), and
the routed results are converted into a KnowledgeSet.

Companies only ever come from directory-backed payloads (submissions, facts,
filing search, comparisons); a curated name lookup enriches but never creates.
Routed knowledge is scored with the same formula as direct extraction, and
the orchestrator only uses it when the route clears its gate and nothing the
query asks for is missing. Otherwise direct extraction takes over.
"""
from __future__ import annotations

import json
import logging
import re
import threading
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional

from mcp.types import CallToolResult, TextContent

from universal_edgar.entities import pad_cik, resolve_cik, resolve_entity
from universal_edgar.errors import ExternalAPIFailure
from universal_edgar.extractor import (
    build_identity,
    check_cancelled,
    company_coverage,
    filing_recency,
    filing_summaries,
    requested_categories,
    score_knowledge,
)
from universal_edgar.financials import (
    extract_latest_metrics,
    get_concept_data,
    latest_annual_observation,
)
from universal_edgar.models import (
    CompanyKnowledge,
    CompanyIdentity,
    CompanyRef,
    DataSource,
    FilingKnowledge,
    FilingMetadata,
    FinancialMetrics,
    FinancialProfile,
    KnowledgeSet,
    StructuredQuery,
)
from universal_edgar.observability import timed_operation
from universal_edgar.ports import FilingsDirectory, ToolClient

logger = logging.getLogger(__name__)



# =============================================================================
# Concept Mapping
# =============================================================================

CONCEPT_MAP: Dict[str, str] = {
    "revenue": "Revenues",
    "revenues": "Revenues",
    "sales": "Revenues",
    "income": "NetIncomeLoss",
    "net income": "NetIncomeLoss",
    "profit": "NetIncomeLoss",
    "earnings": "NetIncomeLoss",
    "assets": "Assets",
    "total assets": "Assets",
    "liabilities": "Liabilities",
    "equity": "StockholdersEquity",
    "cash": "CashAndCashEquivalentsAtCarryingValue",
    "debt": "LongTermDebt",
}

DEFAULT_COMPARISON_CONCEPT = "Revenues"

FILING_INTENTS = {"filing_lookup", "content_search"}
FINANCIAL_INTENTS = {"financial_metrics", "trend_analysis"}


def map_concept(term: str) -> str:
    """Plain-language metric -> us-gaap concept name (unknown terms pass through)."""
    return CONCEPT_MAP.get(term.strip().lower(), term)


def text_result(payload: Any) -> CallToolResult:
    """Wrap a JSON-serializable payload as a single text content item."""
    return CallToolResult(content=[TextContent(type="text", text=json.dumps(payload, default=str))])


def error_result(message: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=f"Error: {message}")], isError=True)


def result_payload(result: CallToolResult) -> Optional[Any]:
    """Decode the first text content item of a tool result, or None."""
    if result.isError:
        return None
    for item in result.content:
        if isinstance(item, TextContent):
            try:
                return json.loads(item.text)
            except ValueError:
                return None
    return None


# =============================================================================
# Tool Client over the Filings Directory
# =============================================================================


class EdgarToolClient(ToolClient):
    """In-process tool server backed by a FilingsDirectory."""

    def __init__(self, directory: FilingsDirectory):
        self.directory = directory
        self._tools: Dict[str, Callable[..., Any]] = {
            "company_search": self.company_search,
            "get_company_submissions": self.get_company_submissions,
            "get_company_facts": self.get_company_facts,
            "search_filings": self.search_filings,
            "compare_financial_metrics": self.compare_financial_metrics,
        }

    def list_tools(self) -> List[str]:
        return list(self._tools)

    def call_tool(self, name: str, arguments: Dict[str, Any]) -> CallToolResult:
        handler = self._tools.get(name)
        if handler is None:
            raise ExternalAPIFailure(f"Unknown tool: {name}", details={"tool": name})
        logger.debug(f"call_tool: {name} args={arguments}")
        return text_result(handler(**arguments))

    @staticmethod
    def _cik(identifier: str) -> str:
        ident = str(identifier).strip()
        return pad_cik(ident) if ident.isdigit() else resolve_cik(ident)

    # -------------------------------------------------------------------------
    # Tools
    # -------------------------------------------------------------------------

    def company_search(self, query: str) -> List[Dict[str, Any]]:
        entity = resolve_entity(query)
        if entity is None:
            return []
        return [{"name": entity.company_name, "ticker": entity.ticker, "cik": entity.cik}]

    def get_company_submissions(self, cik: str) -> Dict[str, Any]:
        padded = self._cik(cik)
        submissions = self.directory.get_submissions(padded)
        return {**submissions, "cik": padded}

    def get_company_facts(self, cik: str) -> Dict[str, Any]:
        padded = self._cik(cik)
        facts = self.directory.get_facts(padded)
        return {
            "cik": padded,
            "name": facts.get("entityName"),
            "metrics": extract_latest_metrics(facts).model_dump(),
        }

    def search_filings(
        self,
        cik: str,
        formType: Optional[str] = None,
        dateFrom: Optional[str] = None,
        dateTo: Optional[str] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        padded = self._cik(cik)
        submissions = self.directory.get_submissions(padded)
        matches = []
        for row in submissions.get("filings") or []:
            if formType and row.get("form", "").upper() != formType.upper():
                continue
            filed = row.get("filingDate", "")
            if dateFrom and filed < dateFrom:
                continue
            if dateTo and filed > dateTo:
                continue
            matches.append({**row, "cik": padded, "companyName": submissions.get("name")})
            if len(matches) >= limit:
                break
        return matches

    def compare_financial_metrics(self, companies: List[str], concept: str) -> Dict[str, Any]:
        rows = []
        for identifier in companies:
            padded = self._cik(identifier)
            latest = latest_annual_observation(get_concept_data(self.directory.get_facts(padded), concept))
            rows.append({
                "cik": padded,
                "company": identifier,
                "value": latest.get("val") if latest else None,
                "end": latest.get("end") if latest else None,
            })
        return {"concept": concept, "results": rows}


# =============================================================================
# Routing
# =============================================================================


@dataclass
class ToolCall:
    name: str
    arguments: Dict[str, Any]


@dataclass
class RouteResult:
    """Outcome of routing one query through the tool client."""
    success: bool
    data: Dict[str, Any]
    tools_used: List[str]
    confidence: float
    sources: List[str]
    processing_time_ms: float


def route_confidence(results: List[CallToolResult]) -> float:
    """min(0.8 * success_rate + 0.1 if more than two successes, 0.95); 0 with no calls."""
    if not results:
        return 0.0
    successes = sum(1 for r in results if not r.isError)
    confidence = 0.8 * successes / len(results)
    if successes > 2:
        confidence += 0.1
    return min(confidence, 0.95)


def parse_time_range(description: str, today: date) -> Dict[str, str]:
    """Very small set of date windows for filing search."""
    desc = description.lower()
    if "last year" in desc or "past year" in desc:
        year = today.year - 1
        return {"dateFrom": f"{year}-01-01", "dateTo": f"{year}-12-31"}
    if "last 6 months" in desc or "past 6 months" in desc:
        return {"dateFrom": (today - timedelta(days=180)).isoformat(), "dateTo": today.isoformat()}
    year_match = re.search(r"\b(19|20)\d{2}\b", desc)
    if year_match:
        year = year_match.group(0)
        return {"dateFrom": f"{year}-01-01", "dateTo": f"{year}-12-31"}
    return {}


def _identifier(ref: CompanyRef) -> str:
    return ref.cik or ref.name or ref.ticker or ""


def plan_tool_calls(query: StructuredQuery, today: Optional[date] = None) -> List[ToolCall]:
    """Tool calls for a query, chosen by primary intent.

    Every company gets a directory-backed call; a name lookup is only added
    for references without a CIK.
    """
    intent = query.intent.primary
    companies = query.entities.companies
    calls: List[ToolCall] = []

    if intent in FILING_INTENTS:
        specific = [f.form_type for f in query.entities.filing_types if f.form_type.upper() != "ALL"]
        window: Dict[str, Any] = {}
        if query.entities.time_ranges:
            window = parse_time_range(query.entities.time_ranges[0].description, today or date.today())
        for ref in companies:
            arguments: Dict[str, Any] = {"cik": _identifier(ref), **window}
            if specific:
                arguments["formType"] = specific[0]
            if intent == "content_search":
                arguments["limit"] = 1
            calls.append(ToolCall("search_filings", arguments))

    else:
        for ref in companies:
            if not ref.cik:
                calls.append(ToolCall("company_search", {"query": ref.name or ref.ticker}))
            calls.append(ToolCall("get_company_submissions", {"cik": _identifier(ref)}))
            if intent in FINANCIAL_INTENTS:
                calls.append(ToolCall("get_company_facts", {"cik": _identifier(ref)}))

        if intent == "comparative_analysis" and len(companies) > 1:
            metrics = query.entities.metrics
            concept = map_concept(metrics[0].metric) if metrics else DEFAULT_COMPARISON_CONCEPT
            calls.append(ToolCall(
                "compare_financial_metrics",
                {"companies": [_identifier(c) for c in companies], "concept": concept},
            ))

    logger.info(f"Planned {len(calls)} tool calls: {[c.name for c in calls]}")
    return calls


class ToolRoutingKnowledgeProvider:
    """Routes structured queries to a ToolClient and reports confidence.

    Args:
        tool_client: In-process or remote tool client
        filings_host: Host used for constructed document URLs
        today: Clock for recency scoring (injectable for tests)
    """

    def __init__(
        self,
        tool_client: ToolClient,
        filings_host: str = "www.sec.gov",
        today: Callable[[], date] = date.today,
    ):
        self.tool_client = tool_client
        self.filings_host = filings_host
        self.today = today

    def execute(
        self,
        calls: List[ToolCall],
        cancelled: Optional[threading.Event] = None,
    ) -> List[Dict[str, Any]]:
        """Run calls in order; a failed call is recorded as an error result.

        Raises:
            DeadlineExceeded: If ``cancelled`` is set before a call
        """
        records = []
        for call in calls:
            check_cancelled(cancelled, call.name)
            try:
                result = self.tool_client.call_tool(call.name, call.arguments)
            except Exception as e:
                logger.warning(f"Tool call {call.name} failed: {e}")
                result = error_result(str(e) or type(e).__name__)
            records.append({"name": call.name, "arguments": call.arguments, "result": result})
        return records

    def route(self, query: StructuredQuery, cancelled: Optional[threading.Event] = None) -> RouteResult:
        start = time.perf_counter()
        with timed_operation("routing", intent=query.intent.primary) as timer:
            available = set(self.tool_client.list_tools())
            calls = []
            for call in plan_tool_calls(query, self.today()):
                if call.name in available:
                    calls.append(call)
                else:
                    logger.info(f"Tool {call.name} not offered by the tool server, skipping")
            records = self.execute(calls, cancelled)
            confidence = route_confidence([r["result"] for r in records])
            timer["calls"] = len(calls)
            timer["confidence"] = round(confidence, 3)

        return RouteResult(
            success=True,
            data={"intent": query.intent.primary, "results": records},
            tools_used=[c.name for c in calls],
            confidence=confidence,
            sources=list(dict.fromkeys(f"SEC EDGAR ({c.name})" for c in calls)),
            processing_time_ms=(time.perf_counter() - start) * 1000,
        )

    # -------------------------------------------------------------------------
    # Conversion
    # -------------------------------------------------------------------------

    def to_knowledge_set(self, route: RouteResult, query: StructuredQuery) -> KnowledgeSet:
        """Routed tool payloads -> KnowledgeSet (provider='tool_router').

        Confidence is the lower of the route confidence and the knowledge
        score, so a route that resolved nothing scores 0.
        """
        companies: Dict[str, CompanyKnowledge] = {}
        filings: List[FilingKnowledge] = []
        lookups: Dict[str, Dict[str, Any]] = {}

        def company_for(cik: str, name: Optional[str]) -> CompanyKnowledge:
            if cik not in companies:
                companies[cik] = CompanyKnowledge(identity=CompanyIdentity(cik=cik, name=name or cik))
            return companies[cik]

        for record in route.data.get("results", []):
            payload = result_payload(record["result"])
            if payload is None:
                continue
            name = record["name"]

            if name == "company_search":
                for hit in payload:
                    lookups[pad_cik(hit["cik"])] = hit

            elif name == "get_company_submissions":
                cik = payload["cik"]
                existing = companies.get(cik)
                company = CompanyKnowledge(
                    identity=build_identity(cik, CompanyRef(name=payload.get("name") or cik), payload),
                    recent_filings=filing_summaries(cik, payload.get("filings") or [], self.filings_host)[:5],
                )
                if existing is not None:
                    company.financials = existing.financials
                companies[cik] = company

            elif name == "get_company_facts":
                company = company_for(payload["cik"], payload.get("name"))
                company.financials = FinancialProfile(metrics=FinancialMetrics(**payload["metrics"]))

            elif name == "search_filings":
                for row in payload:
                    cik = row["cik"]
                    company = company_for(cik, row.get("companyName"))
                    for summary in filing_summaries(cik, [row], self.filings_host):
                        if summary.accession_number not in {f.accession_number for f in company.recent_filings}:
                            company.recent_filings.append(summary)
                        filings.append(FilingKnowledge(metadata=FilingMetadata(
                            cik=cik,
                            company_name=company.identity.name,
                            accession_number=summary.accession_number,
                            form=summary.form,
                            filing_date=summary.filing_date,
                            primary_document=summary.primary_document,
                            url=summary.url,
                        )))

            elif name == "compare_financial_metrics":
                for row in payload.get("results", []):
                    if row.get("value") is None:
                        continue
                    company = company_for(row["cik"], row.get("company"))
                    if company.financials is None:
                        company.financials = FinancialProfile()
                    if payload.get("concept") == "Revenues":
                        company.financials.metrics.revenue = float(row["value"])
                    elif payload.get("concept") == "NetIncomeLoss":
                        company.financials.metrics.net_income = float(row["value"])
                    company.financials.metrics.period_end = row.get("end")

        # Lookups fill in what the directory left blank, they never add a company
        for cik, hit in lookups.items():
            company = companies.get(cik)
            if company is not None and not company.identity.ticker:
                company.identity.ticker = hit.get("ticker")

        categories = requested_categories(query)
        today = self.today()
        score, completeness = score_knowledge(
            requested=len(query.entities.companies),
            resolved=len(companies),
            coverages=[company_coverage(c, categories) for c in companies.values()],
            recencies=[
                filing_recency(max((f.filing_date for f in c.recent_filings), default=None), today)
                for c in companies.values()
            ],
        )
        return KnowledgeSet(
            companies=list(companies.values()),
            filings=filings,
            sources=[DataSource(type="tool_router", name=s) for s in route.sources],
            confidence=min(route.confidence, score),
            completeness=completeness,
            provider="tool_router",
        )

    def missing_coverage(self, knowledge: KnowledgeSet, query: StructuredQuery) -> List[str]:
        """What the query asks for that the routed knowledge lacks (empty when complete)."""
        missing = []
        unresolved = len(query.entities.companies) - len(knowledge.companies)
        if not knowledge.companies:
            missing.append("no companies resolved")
        elif unresolved > 0:
            missing.append(f"{unresolved} unresolved companies")
        categories = requested_categories(query)
        for company in knowledge.companies:
            for category in categories:
                if company_coverage(company, [category]) < 1.0:
                    missing.append(f"{company.identity.name}: {category}")
        return missing

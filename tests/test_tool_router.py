"""
Tests for tool_router.py - tool planning, execution and knowledge conversion.
"""
from __future__ import annotations

import json
import threading
from typing import Any, List, Optional
from unittest.mock import MagicMock

import pytest
from mcp.types import CallToolResult, TextContent

from conftest import APPLE_CIK, MICROSOFT_CIK, TODAY, StubDirectory, make_apple_submissions
from universal_edgar.errors import DeadlineExceeded, ExternalAPIFailure
from universal_edgar.models import (
    CompanyRef,
    EntitySet,
    FilingTypeRef,
    MetricRef,
    QueryIntent,
    QueryScope,
    StructuredQuery,
    TimeRangeRef,
)
from universal_edgar.tool_router import (
    EdgarToolClient,
    ToolCall,
    ToolRoutingKnowledgeProvider,
    error_result,
    map_concept,
    parse_time_range,
    plan_tool_calls,
    result_payload,
    route_confidence,
    text_result,
)

APPLE = CompanyRef(name="Apple", ticker="AAPL", cik=APPLE_CIK)
MICROSOFT = CompanyRef(name="Microsoft", ticker="MSFT", cik=MICROSOFT_CIK)


def make_query(
    primary: str,
    companies=None,
    data_types: Optional[List[str]] = None,
    **entities: Any,
) -> StructuredQuery:
    scope = QueryScope(data_types=data_types) if data_types is not None else QueryScope()
    return StructuredQuery(
        original_query="test question",
        entities=EntitySet(companies=companies if companies is not None else [APPLE], **entities),
        intent=QueryIntent(primary=primary),
        scope=scope,
    )


@pytest.fixture
def client(directory: StubDirectory) -> EdgarToolClient:
    return EdgarToolClient(directory)


@pytest.fixture
def provider(client: EdgarToolClient) -> ToolRoutingKnowledgeProvider:
    return ToolRoutingKnowledgeProvider(client, today=lambda: TODAY)


class OfferingOnly(EdgarToolClient):
    """Tool server that only advertises some of its tools."""

    def __init__(self, directory: StubDirectory, offered: List[str]):
        super().__init__(directory)
        self.offered = offered

    def list_tools(self):
        return list(self.offered)


def payload_of(result: CallToolResult) -> Any:
    return json.loads(result.content[0].text)


# =============================================================================
# Result Helpers
# =============================================================================


class TestResultHelpers:

    def test_text_result_round_trip(self):
        result = text_result({"a": 1})
        assert isinstance(result, CallToolResult)
        assert result.content[0].type == "text"
        assert not result.isError
        assert result_payload(result) == {"a": 1}

    def test_error_result(self):
        result = error_result("boom")
        assert result.isError
        assert result.content[0].text == "Error: boom"
        assert result_payload(result) is None

    def test_non_json_text(self):
        result = CallToolResult(content=[TextContent(type="text", text="plain words")])
        assert result_payload(result) is None

    @pytest.mark.parametrize("term,concept", [
        ("Revenue", "Revenues"),
        ("net income", "NetIncomeLoss"),
        ("cash", "CashAndCashEquivalentsAtCarryingValue"),
        ("GrossProfit", "GrossProfit"),
    ])
    def test_map_concept(self, term: str, concept: str):
        assert map_concept(term) == concept


class TestRouteConfidence:

    def test_empty(self):
        assert route_confidence([]) == 0.0

    def test_success_rate(self):
        assert route_confidence([text_result(1), error_result("x")]) == pytest.approx(0.4)

    def test_bonus_above_two_successes(self):
        assert route_confidence([text_result(1)] * 3) == pytest.approx(0.9)

    def test_capped(self):
        assert route_confidence([text_result(1)] * 10) == pytest.approx(0.9)
        assert route_confidence([text_result(1)] * 10) <= 0.95


class TestParseTimeRange:

    def test_last_year(self):
        assert parse_time_range("last year", TODAY) == {"dateFrom": "2023-01-01", "dateTo": "2023-12-31"}

    def test_six_months(self):
        window = parse_time_range("past 6 months", TODAY)
        assert window == {"dateFrom": "2023-07-19", "dateTo": "2024-01-15"}

    def test_explicit_year(self):
        assert parse_time_range("filings from 2021", TODAY)["dateFrom"] == "2021-01-01"

    def test_unknown(self):
        assert parse_time_range("recent", TODAY) == {}


# =============================================================================
# EdgarToolClient
# =============================================================================


class TestEdgarToolClient:

    def test_lists_tools(self, client: EdgarToolClient):
        assert set(client.list_tools()) == {
            "company_search", "get_company_submissions", "get_company_facts",
            "search_filings", "compare_financial_metrics",
        }

    def test_company_search(self, client: EdgarToolClient, directory: StubDirectory):
        hits = payload_of(client.call_tool("company_search", {"query": "Apple"}))
        assert hits == [{"name": "Apple", "ticker": "AAPL", "cik": APPLE_CIK}]
        assert payload_of(client.call_tool("company_search", {"query": "Acme"})) == []
        # Curated lookup only
        assert directory.calls == []

    def test_get_company_facts(self, client: EdgarToolClient):
        payload = payload_of(client.call_tool("get_company_facts", {"cik": "320193"}))
        assert payload["cik"] == APPLE_CIK
        assert payload["metrics"]["revenue"] == 383_285_000_000

    def test_name_identifier_is_resolved(self, client: EdgarToolClient, directory: StubDirectory):
        client.call_tool("get_company_submissions", {"cik": "AAPL"})
        assert ("submissions", APPLE_CIK) in directory.calls

    def test_search_filings_filters(self, client: EdgarToolClient):
        rows = payload_of(client.call_tool("search_filings", {"cik": APPLE_CIK, "formType": "10-q"}))
        assert [r["filingDate"] for r in rows] == ["2023-08-04", "2023-05-05", "2023-02-03"]
        assert rows[0]["companyName"] == "Apple Inc."

        windowed = payload_of(client.call_tool(
            "search_filings",
            {"cik": APPLE_CIK, "dateFrom": "2023-05-01", "dateTo": "2023-08-31", "limit": 2},
        ))
        assert [r["accessionNumber"] for r in windowed] == ["0000320193-23-000077", "0000320193-23-000064"]

    def test_compare_financial_metrics(self, client: EdgarToolClient):
        payload = payload_of(client.call_tool(
            "compare_financial_metrics",
            {"companies": [APPLE_CIK, MICROSOFT_CIK], "concept": "NetIncomeLoss"},
        ))
        values = {row["cik"]: row["value"] for row in payload["results"]}
        assert values == {APPLE_CIK: 96_995_000_000, MICROSOFT_CIK: 72_361_000_000}

    def test_unknown_tool(self, client: EdgarToolClient):
        with pytest.raises(ExternalAPIFailure, match="Unknown tool"):
            client.call_tool("delete_everything", {})


# =============================================================================
# Planning
# =============================================================================


class TestPlanToolCalls:

    def test_business_overview_with_cik(self):
        calls = plan_tool_calls(make_query("business_overview"))
        assert calls == [ToolCall("get_company_submissions", {"cik": APPLE_CIK})]

    def test_business_overview_without_cik(self):
        calls = plan_tool_calls(make_query("business_overview", companies=[CompanyRef(name="Apple")]))
        assert [c.name for c in calls] == ["company_search", "get_company_submissions"]
        assert calls[1].arguments == {"cik": "Apple"}

    def test_financial_metrics(self):
        calls = plan_tool_calls(make_query("financial_metrics", companies=[APPLE, CompanyRef(name="Tesla")]))
        assert [c.name for c in calls] == [
            "get_company_submissions", "get_company_facts",
            "company_search", "get_company_submissions", "get_company_facts",
        ]
        assert calls[4].arguments == {"cik": "Tesla"}

    def test_filing_lookup(self):
        query = make_query(
            "filing_lookup",
            filing_types=[FilingTypeRef(form_type="ALL"), FilingTypeRef(form_type="10-K")],
            time_ranges=[TimeRangeRef(description="last year")],
        )
        calls = plan_tool_calls(query, today=TODAY)
        assert calls == [ToolCall("search_filings", {
            "cik": APPLE_CIK, "formType": "10-K", "dateFrom": "2023-01-01", "dateTo": "2023-12-31",
        })]

    def test_filing_lookup_searches_every_company(self):
        calls = plan_tool_calls(make_query("filing_lookup", companies=[APPLE, MICROSOFT]))
        assert [c.arguments["cik"] for c in calls] == [APPLE_CIK, MICROSOFT_CIK]

    def test_content_search_limits_to_one(self):
        calls = plan_tool_calls(make_query("content_search"))
        assert calls[0].arguments["limit"] == 1

    def test_comparison(self):
        query = make_query(
            "comparative_analysis",
            companies=[APPLE, MICROSOFT],
            metrics=[MetricRef(metric="net income")],
        )
        calls = plan_tool_calls(query)
        assert [c.name for c in calls] == [
            "get_company_submissions", "get_company_submissions", "compare_financial_metrics",
        ]
        assert calls[-1] == ToolCall("compare_financial_metrics", {
            "companies": [APPLE_CIK, MICROSOFT_CIK], "concept": "NetIncomeLoss",
        })

    def test_comparison_needs_two_companies(self):
        calls = plan_tool_calls(make_query("comparative_analysis"))
        assert [c.name for c in calls] == ["get_company_submissions"]

    def test_comparison_default_concept(self):
        calls = plan_tool_calls(make_query("comparative_analysis", companies=[APPLE, MICROSOFT]))
        assert calls[-1].arguments["concept"] == "Revenues"

    def test_other_intents_fetch_submissions(self):
        assert [c.name for c in plan_tool_calls(make_query("risk_analysis"))] == ["get_company_submissions"]

    def test_no_companies_no_calls(self):
        assert plan_tool_calls(make_query("business_overview", companies=[])) == []


# =============================================================================
# ToolRoutingKnowledgeProvider
# =============================================================================


class TestToolRoutingKnowledgeProvider:

    def test_route_business_overview(self, provider: ToolRoutingKnowledgeProvider):
        query = make_query("business_overview")
        route = provider.route(query)

        assert route.success
        assert route.tools_used == ["get_company_submissions"]
        assert route.confidence == pytest.approx(0.8)
        assert route.sources == ["SEC EDGAR (get_company_submissions)"]
        assert route.processing_time_ms >= 0

        knowledge = provider.to_knowledge_set(route, query)
        assert knowledge.provider == "tool_router"
        assert len(knowledge.companies) == 1
        company = knowledge.companies[0]
        assert company.identity.name == "Apple Inc."
        assert company.identity.industry.sector == "Technology"
        assert len(company.recent_filings) == 5
        assert all(s.type == "tool_router" for s in knowledge.sources)

        # Filings present, business description is not: coverage 0.5, recency 0.9
        assert knowledge.confidence == pytest.approx(0.8)
        assert knowledge.completeness == pytest.approx(0.62)
        assert provider.missing_coverage(knowledge, query) == ["Apple Inc.: business"]

    def test_name_lookup_never_creates_companies(self):
        provider = ToolRoutingKnowledgeProvider(EdgarToolClient(StubDirectory()), today=lambda: TODAY)
        query = make_query("business_overview", companies=[CompanyRef(name="Apple")])

        route = provider.route(query)
        # The curated lookup succeeded, the directory call did not
        assert route.confidence == pytest.approx(0.4)

        knowledge = provider.to_knowledge_set(route, query)
        assert knowledge.companies == []
        assert knowledge.confidence == 0.0
        assert knowledge.completeness == 0.0
        assert provider.missing_coverage(knowledge, query) == ["no companies resolved"]

    def test_lookup_fills_missing_ticker(self):
        directory = StubDirectory(submissions={APPLE_CIK: {**make_apple_submissions(), "ticker": None}})
        provider = ToolRoutingKnowledgeProvider(EdgarToolClient(directory), today=lambda: TODAY)
        query = make_query("business_overview", companies=[CompanyRef(name="Apple")])

        knowledge = provider.to_knowledge_set(provider.route(query), query)
        assert knowledge.companies[0].identity.ticker == "AAPL"

    def test_failed_call_is_recorded(self):
        tool_client = MagicMock()
        tool_client.list_tools.return_value = ["get_company_submissions"]
        tool_client.call_tool.side_effect = ExternalAPIFailure("directory down")
        provider = ToolRoutingKnowledgeProvider(tool_client)

        route = provider.route(make_query("business_overview"))
        assert route.confidence == 0.0
        result = route.data["results"][0]["result"]
        assert result.isError
        assert result.content[0].text == "Error: directory down"
        assert provider.to_knowledge_set(route, make_query("business_overview")).companies == []

    def test_financials_merge_into_company(self, provider: ToolRoutingKnowledgeProvider):
        query = make_query(
            "financial_metrics",
            companies=[CompanyRef(name="Apple")],
            data_types=["financial_statements"],
        )
        route = provider.route(query)
        knowledge = provider.to_knowledge_set(route, query)

        assert route.tools_used == ["company_search", "get_company_submissions", "get_company_facts"]
        assert len(knowledge.companies) == 1
        company = knowledge.companies[0]
        assert company.identity.name == "Apple Inc."
        assert company.financials.metrics.net_income == 96_995_000_000
        assert provider.missing_coverage(knowledge, query) == []
        assert knowledge.confidence == pytest.approx(0.9)
        assert knowledge.completeness == pytest.approx(0.97)

    def test_filing_search_builds_filings(self, provider: ToolRoutingKnowledgeProvider):
        query = make_query(
            "filing_lookup",
            filing_types=[FilingTypeRef(form_type="8-K")],
            data_types=["company_profile"],
        )
        knowledge = provider.to_knowledge_set(provider.route(query), query)

        assert [f.metadata.form for f in knowledge.filings] == ["8-K", "8-K"]
        assert knowledge.filings[0].metadata.url == (
            "https://www.sec.gov/Archives/edgar/data/0000320193/000032019323000104/aapl-20231102.htm"
        )
        assert knowledge.companies[0].identity.name == "Apple Inc."
        assert len(knowledge.companies[0].recent_filings) == 2
        assert provider.missing_coverage(knowledge, query) == []

    def test_comparison_values(self, provider: ToolRoutingKnowledgeProvider):
        query = make_query(
            "comparative_analysis",
            companies=[APPLE, MICROSOFT],
            metrics=[MetricRef(metric="profit")],
            data_types=["financial_statements"],
        )
        knowledge = provider.to_knowledge_set(provider.route(query), query)
        incomes = {c.identity.cik: c.financials.metrics.net_income for c in knowledge.companies}
        assert incomes == {APPLE_CIK: 96_995_000_000, MICROSOFT_CIK: 72_361_000_000}
        assert [c.identity.name for c in knowledge.companies] == ["Apple Inc.", "MICROSOFT CORP"]
        assert provider.missing_coverage(knowledge, query) == []

    def test_partial_resolution_is_missing(self, provider: ToolRoutingKnowledgeProvider):
        query = make_query(
            "filing_lookup",
            companies=[APPLE, CompanyRef(name="Acme Widgets", cik="0000000001")],
            data_types=["company_profile"],
        )
        knowledge = provider.to_knowledge_set(provider.route(query), query)
        assert len(knowledge.companies) == 1
        assert provider.missing_coverage(knowledge, query) == ["1 unresolved companies"]

    def test_skips_tools_the_server_does_not_offer(self, directory: StubDirectory):
        provider = ToolRoutingKnowledgeProvider(OfferingOnly(directory, ["get_company_submissions"]))
        route = provider.route(make_query("financial_metrics"))
        assert route.tools_used == ["get_company_submissions"]
        assert ("facts", APPLE_CIK) not in directory.calls

    def test_cancelled_route_makes_no_calls(self, provider: ToolRoutingKnowledgeProvider, directory: StubDirectory):
        cancelled = threading.Event()
        cancelled.set()
        with pytest.raises(DeadlineExceeded):
            provider.route(make_query("business_overview"), cancelled)
        assert directory.calls == []

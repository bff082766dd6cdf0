"""
Knowledge synthesizer: (StructuredQuery, KnowledgeSet) -> UniversalAnswer.

The text-generation provider is the ONLY component that writes free prose,
and it only sees the knowledge context block built here. Everything else in
the answer (filing lists, tables, citations, assessment, follow-ups) is
deterministic and computed from the KnowledgeSet.

Filing lookups never reach the provider: they are answered from a template.
"""
from __future__ import annotations

import logging
import re
import time
from datetime import date, datetime
from typing import Callable, List, Optional

from universal_edgar.edgar_client import build_browse_url, build_document_url
from universal_edgar.models import (
    AnswerAssessment,
    AnswerData,
    AnswerMetadata,
    Citation,
    CompanyKnowledge,
    CoverageGap,
    DataFreshness,
    DataSource,
    FilingReference,
    FollowUpSuggestions,
    KnowledgeSet,
    StructuredQuery,
    Table,
    Timeline,
    TimelineEvent,
    UniversalAnswer,
)
from universal_edgar.observability import timed_operation
from universal_edgar.ports import TextProvider

logger = logging.getLogger(__name__)


# =============================================================================
# Prompt Templates
# =============================================================================

NARRATIVE_PROMPT = """You are an expert financial analyst with deep knowledge of SEC filings and public company data. Answer the query using ONLY the knowledge provided.

QUERY: "{query}"

QUERY ANALYSIS:
- Primary Intent: {primary}
- Secondary Intents: {secondary}
- Complexity: {complexity}
- Requires Analysis: {requires_analysis}
- Requires Comparison: {requires_comparison}
- Requires Historical: {requires_historical}

AVAILABLE KNOWLEDGE:
{context}

REQUIREMENTS:
1. Provide a direct answer to the specific question asked
2. Use specific data and facts from the knowledge provided
3. Include quantitative details where available
4. Explain context and significance of findings
5. Address all aspects of the query (primary and secondary intents)
6. Be precise and factual - do NOT speculate or add outside knowledge
7. Structure the response logically with clear sections if needed
8. If comparing companies, provide balanced analysis
9. If analyzing trends, explain the trajectory and implications
10. Maintain a professional, analytical tone
11. Reference specific SEC filings when citing data (e.g., "According to Tesla's 10-K filed on [date]...")

RESPONSE FORMAT:
- Start with a direct answer to the main question
- Provide supporting details and context with filing references
- Include specific data points and metrics with sources
- End with implications or significance
- Source links are provided separately; focus on clear attribution in text

Response:"""

FILING_TYPE_GUIDE = (
    "**📋 Filing Type Guide:**\n"
    "- **10-K**: Annual report with comprehensive business and financial information\n"
    "- **10-Q**: Quarterly report with unaudited financial statements\n"
    "- **8-K**: Current report for material events or corporate changes\n"
    "- **DEF 14A**: Proxy statement for shareholder meetings\n\n"
)

DEFAULT_FILING_COUNT = 5

# "last 3", "latest 10", "top 2" first; then "3 filings"/"2 most recent reports";
# then the first standalone integer. Digits joined by "-" (10-K, S-1) never count.
COUNT_PATTERNS = [
    re.compile(r"\b(?:last|latest|recent|past|top|first)\s+(\d{1,3})\b(?!-)", re.IGNORECASE),
    re.compile(r"\b(\d{1,3})\s+(?:most\s+recent\s+|latest\s+|recent\s+)?(?:filings?|reports?|documents?|submissions?)\b", re.IGNORECASE),
    re.compile(r"(?<!-)\b(\d{1,3})\b(?!-)"),
]

FAILURE_PHRASES = ("could not", "unable to")

FOLLOW_UP_QUERIES = {
    "business_overview": [
        "What are the main risk factors for this company?",
        "How has the business model evolved over time?",
        "What are the key financial metrics?",
    ],
    "financial_metrics": [
        "How do these metrics compare to industry peers?",
        "What are the trends over the last 5 years?",
        "What factors are driving these financial results?",
    ],
    "comparative_analysis": [
        "Which company has stronger profitability?",
        "How do their risk profiles differ?",
        "How have their revenues grown relative to each other?",
    ],
    "trend_analysis": [
        "What is driving this trend?",
        "How does this trend compare to industry peers?",
        "What does management say about the outlook?",
    ],
    "filing_lookup": [
        "What does the latest 10-K say about the business?",
        "What are the main risk factors in the latest annual report?",
        "Have there been any recent 8-K current reports?",
    ],
    "risk_analysis": [
        "How have these risk factors changed since the prior year?",
        "Which risks are most material to financial results?",
        "How do these risks compare to industry peers?",
    ],
    "regulatory_analysis": [
        "What regulatory proceedings are disclosed in recent filings?",
        "How could regulatory changes affect revenue?",
    ],
}

GENERIC_FOLLOW_UPS = [
    "What does this company do?",
    "What are the key financial metrics?",
    "What are the most recent SEC filings?",
]


# =============================================================================
# Formatting Helpers
# =============================================================================


def format_millions(amount: Optional[float]) -> str:
    """$xM, or N/A when missing or zero."""
    if not amount:
        return "N/A"
    return f"${amount / 1_000_000:,.0f}M"


def _millions_plain(amount: Optional[float]) -> str:
    if not amount:
        return "N/A"
    return f"{amount / 1_000_000:.0f}"


def format_filing_date(filing_date: str) -> str:
    """2023-11-03 -> Nov 3, 2023 (unparseable dates pass through)."""
    try:
        d = datetime.strptime(filing_date[:10], "%Y-%m-%d")
    except ValueError:
        return filing_date
    return f"{d.strftime('%b')} {d.day}, {d.year}"


def parse_requested_count(text: str, default: int = DEFAULT_FILING_COUNT) -> int:
    """Number of filings asked for; form-type digits such as 10-K are ignored."""
    for pattern in COUNT_PATTERNS:
        match = pattern.search(text)
        if match:
            count = int(match.group(1))
            if count > 0:
                return count
    return default


# =============================================================================
# Narrative
# =============================================================================


def filing_lookup_narrative(
    query: StructuredQuery,
    company: CompanyKnowledge,
    host: str = "www.sec.gov",
) -> str:
    """Deterministic list of a company's most recent filings."""
    name = company.identity.name
    if not company.recent_filings:
        return (
            f"I could not find recent SEC filings for {name}. This may be due to API "
            f"limitations or the company may not have recent filings available."
        )

    requested = parse_requested_count(query.original_query)
    filings = company.recent_filings[:requested]

    lines = [f"Here are the {len(filings)} most recent SEC filings for {name}:\n\n"]
    for index, filing in enumerate(filings, start=1):
        url = filing.url or build_document_url(
            company.identity.cik, filing.accession_number, filing.primary_document, host
        )
        lines.append(f"{index}. **{filing.form}** - Filed on {format_filing_date(filing.filing_date)}\n")
        lines.append(f"   📄 **[View Filing]({url})**\n")
        lines.append(f"   Accession Number: {filing.accession_number}\n")
        if filing.primary_document:
            lines.append(f"   Document: {filing.primary_document}\n")
        lines.append("\n")

    lines.append(FILING_TYPE_GUIDE)
    lines.append(f"🔗 **[Browse All {name} Filings]({build_browse_url(company.identity.cik, host)})**")
    return "".join(lines)


def fallback_narrative(query: StructuredQuery, knowledge: KnowledgeSet) -> str:
    if not knowledge.companies:
        return (
            f'I was unable to find sufficient company data to answer "{query.original_query}". '
            f"This could be due to the company not being in our database or issues with data extraction."
        )
    company = knowledge.companies[0]
    description = company.business.description if company.business else ""
    if not description:
        sic = company.identity.industry.sic_description
        description = f"{company.identity.name} operates in the {sic} industry" if sic else company.identity.name
    return (
        f"Based on available SEC filing data for {company.identity.name}: {description.rstrip('.')}. "
        f"Additional analysis was limited due to data extraction constraints."
    )


def build_knowledge_context(knowledge: KnowledgeSet) -> str:
    """Plain-text knowledge block handed to the text-generation provider."""
    parts: List[str] = []

    if knowledge.companies:
        parts.append("\nCOMPANY INFORMATION:\n")
        for index, company in enumerate(knowledge.companies, start=1):
            identity = company.identity
            parts.append(f"\n{index}. {identity.name} ({identity.ticker or 'N/A'}):\n")
            parts.append(f"   - Industry: {identity.industry.sic_description or identity.industry.sector}\n")
            if company.business and company.business.description:
                parts.append(f"   - Business: {company.business.description}\n")
            if company.financials:
                metrics = company.financials.metrics
                if metrics.revenue:
                    parts.append(f"   - Revenue: {format_millions(metrics.revenue)}"
                                 f"{f' (period ending {metrics.period_end})' if metrics.period_end else ''}\n")
                if metrics.net_income:
                    parts.append(f"   - Net Income: {format_millions(metrics.net_income)}\n")
                for trend in company.financials.trends:
                    if trend.yoy_growth is not None:
                        parts.append(f"   - {trend.metric} trend: {trend.direction} "
                                     f"({trend.yoy_growth:+.1%} year over year)\n")
                for ratio in company.financials.ratios:
                    parts.append(f"   - {ratio.name}: {ratio.value:.2%}\n")
            if company.risks and company.risks.risk_factors:
                categories = [r.category for r in company.risks.risk_factors[:3]]
                parts.append(f"   - Key Risks: {', '.join(categories)}\n")
            if company.recent_filings:
                recent = ", ".join(
                    f"{f.form} ({f.filing_date})" for f in company.recent_filings[:3]
                )
                parts.append(f"   - Recent Filings: {recent}\n")

    insights = [
        f for f in knowledge.filings
        if f.content.business_description or f.content.risk_factors
    ]
    if insights:
        parts.append("\nFILING INSIGHTS:\n")
        for index, filing in enumerate(insights, start=1):
            meta = filing.metadata
            parts.append(f"\n{index}. {meta.company_name} {meta.form} ({meta.filing_date}):\n")
            if filing.content.business_description:
                parts.append(f"   - Business Description: {filing.content.business_description[:200]}...\n")
            if filing.content.risk_factors:
                top = ", ".join(r.category for r in filing.content.risk_factors[:3])
                parts.append(f"   - Risk Factors: {len(filing.content.risk_factors)} identified\n")
                parts.append(f"   - Top Risk Categories: {top}\n")

    parts.append(f"\nDATA SOURCES: {', '.join(s.name for s in knowledge.sources)}\n")
    parts.append(f"KNOWLEDGE CONFIDENCE: {knowledge.confidence * 100:.0f}%\n")
    parts.append(f"KNOWLEDGE COMPLETENESS: {knowledge.completeness * 100:.0f}%\n")
    return "".join(parts)


# =============================================================================
# Supporting Data
# =============================================================================


def comparison_table(companies: List[CompanyKnowledge]) -> Table:
    rows = []
    for company in companies:
        metrics = company.financials.metrics if company.financials else None
        risks = company.risks.risk_factors if company.risks else []
        rows.append([
            company.identity.name,
            company.identity.industry.sic_description or "N/A",
            _millions_plain(metrics.revenue if metrics else None),
            _millions_plain(metrics.net_income if metrics else None),
            ", ".join(r.category for r in risks[:2]) or "N/A",
        ])
    return Table(
        title="Company Comparison",
        headers=["Company", "Industry", "Revenue ($M)", "Net Income ($M)", "Key Risks"],
        rows=rows,
    )


def financial_metrics_table(companies: List[CompanyKnowledge]) -> Table:
    rows = []
    for company in companies:
        m = company.financials.metrics if company.financials else None
        rows.append([
            company.identity.name,
            format_millions(m.revenue if m else None),
            format_millions(m.net_income if m else None),
            format_millions(m.total_assets if m else None),
            format_millions(m.cash if m else None),
            format_millions(m.debt if m else None),
        ])
    return Table(
        title="Financial Metrics Summary",
        headers=["Company", "Revenue", "Net Income", "Total Assets", "Cash", "Debt"],
        rows=rows,
    )


def risk_table(companies: List[CompanyKnowledge], limit: int = 10) -> Table:
    rows = []
    for company in companies:
        for risk in (company.risks.risk_factors if company.risks else []):
            rows.append([
                company.identity.name,
                risk.category,
                risk.severity,
                risk.description[:100] + "...",
            ])
    return Table(
        title="Risk Factor Analysis",
        headers=["Company", "Risk Category", "Severity", "Description"],
        rows=rows[:limit],
    )


def filing_timeline(knowledge: KnowledgeSet, limit: int = 10) -> Timeline:
    """Chronological filing events across companies, keeping the latest ``limit``."""
    events = [
        TimelineEvent(
            date=f.filing_date,
            event=f"{f.form} filed",
            company=company.identity.name,
            accession_number=f.accession_number,
        )
        for company in knowledge.companies
        for f in company.recent_filings
    ]
    events.sort(key=lambda e: e.date)
    return Timeline(title="Filing Timeline", events=events[-limit:])


def build_supporting_data(query: StructuredQuery, knowledge: KnowledgeSet) -> AnswerData:
    data = AnswerData()
    if query.intent.requires_comparison and len(knowledge.companies) >= 2:
        data.tables.append(comparison_table(knowledge.companies))
    if query.intent.primary == "financial_metrics":
        data.tables.append(financial_metrics_table(knowledge.companies))
    if query.intent.primary == "risk_analysis":
        data.tables.append(risk_table(knowledge.companies))
    if query.intent.requires_historical:
        data.timelines.append(filing_timeline(knowledge))
    return data


# =============================================================================
# Citations
# =============================================================================


def _parse_date(value: str) -> Optional[datetime]:
    try:
        return datetime.strptime(value[:10], "%Y-%m-%d")
    except (ValueError, TypeError):
        return None


def build_citations(knowledge: KnowledgeSet, host: str = "www.sec.gov") -> List[Citation]:
    """One citation per (company, filing) pair, then one per raw source."""
    citations: List[Citation] = []

    for company in knowledge.companies:
        identity = company.identity
        for filing in company.recent_filings:
            url = filing.url or build_document_url(
                identity.cik, filing.accession_number, filing.primary_document, host
            )
            section = None
            if filing.form == "10-K":
                section = "Item 1 - Business"
            elif filing.form == "8-K":
                section = "Current Report"
            citations.append(Citation(
                id=f"cite_{len(citations) + 1}",
                source=DataSource(
                    type="sec_filing",
                    name=f"{identity.name} {filing.form} ({filing.filing_date})",
                    timestamp=_parse_date(filing.filing_date) or datetime.now(),
                    reliability=1.0,
                    is_official=True,
                ),
                filing=FilingReference(
                    cik=identity.cik,
                    accession_number=filing.accession_number,
                    form=filing.form,
                    filing_date=filing.filing_date,
                    section=section,
                    url=url,
                ),
                content=f"SEC Filing: {filing.form} filed on {filing.filing_date}",
                confidence=0.95,
                relevance=0.9,
            ))

    for source in knowledge.sources:
        citations.append(Citation(
            id=f"cite_{len(citations) + 1}",
            source=source,
            content=source.name,
            confidence=0.9,
            relevance=0.8,
        ))
    return citations


# =============================================================================
# Assessment
# =============================================================================


def _clamp(value: float, low: float = 0.1, high: float = 1.0) -> float:
    return max(low, min(high, value))


def answer_confidence(query: StructuredQuery, knowledge: KnowledgeSet, narrative: str) -> float:
    confidence = knowledge.confidence
    if query.complexity == "research":
        confidence *= 0.8
    elif query.complexity == "analytical":
        confidence *= 0.9
    if not knowledge.companies:
        confidence *= 0.3
    if not knowledge.filings:
        confidence *= 0.5
    if len(narrative) < 100:
        confidence *= 0.6
    if any(phrase in narrative.lower() for phrase in FAILURE_PHRASES):
        confidence *= 0.7
    return _clamp(confidence)


def answer_completeness(query: StructuredQuery, knowledge: KnowledgeSet) -> float:
    completeness = knowledge.completeness
    requested = len(query.entities.companies)
    if requested > 0:
        completeness *= min(1.0, len(knowledge.companies) / requested)
    return _clamp(completeness)


def identify_limitations(knowledge: KnowledgeSet) -> List[str]:
    limitations: List[str] = []
    if not knowledge.companies:
        limitations.append("No company data available")
    if not knowledge.filings:
        limitations.append("No filing content analyzed")
    if knowledge.confidence < 0.7:
        limitations.append("Low confidence in extracted data")
    limitations.append("Analysis based on most recent filings only")
    limitations.append("Risk assessments are qualitative interpretations")
    return limitations


def identify_assumptions(query: StructuredQuery) -> List[str]:
    assumptions = [
        "Filing data is accurate and complete",
        "Most recent data represents current state",
    ]
    if query.intent.requires_comparison:
        assumptions.append("Companies are comparable within their respective contexts")
    if query.intent.requires_historical:
        assumptions.append("Historical patterns may predict future trends")
    return assumptions


def identify_bias_risks(query: StructuredQuery, knowledge: KnowledgeSet) -> List[str]:
    risks: List[str] = []
    if len(knowledge.companies) == 1:
        risks.append("Single company analysis may lack industry context")
    if query.intent.requires_comparison and len(knowledge.companies) < len(query.entities.companies):
        risks.append("Incomplete comparison due to missing company data")
    risks.append("Analysis based on company self-reported information")
    risks.append("Recent filing data may not reflect current market conditions")
    return risks


def assess_data_freshness(knowledge: KnowledgeSet, today: date) -> DataFreshness:
    """Freshness from the filing dates that back the answer."""
    dates = sorted(
        d for d in (
            _parse_date(f.filing_date)
            for company in knowledge.companies
            for f in company.recent_filings
        )
        if d is not None
    )
    if not dates:
        return DataFreshness(
            average_age_days=365,
            has_realtime_data=False,
            coverage_gaps=[CoverageGap(area="All data", description="No timestamp information", impact="high")],
        )
    ages = [max(0, (today - d.date()).days) for d in dates]
    return DataFreshness(
        oldest_data=dates[0].date().isoformat(),
        newest_data=dates[-1].date().isoformat(),
        average_age_days=round(sum(ages) / len(ages), 1),
        has_realtime_data=ages[-1] < 1,
        coverage_gaps=[],
    )


def build_follow_up(query: StructuredQuery, knowledge: KnowledgeSet) -> FollowUpSuggestions:
    sectors = list(dict.fromkeys(c.identity.industry.sector for c in knowledge.companies))
    return FollowUpSuggestions(
        suggested_queries=list(FOLLOW_UP_QUERIES.get(query.intent.primary, GENERIC_FOLLOW_UPS)),
        related_topics=[f"Other companies in {sector} sector" for sector in sectors],
    )


# =============================================================================
# Synthesizer
# =============================================================================


class KnowledgeSynthesizer:
    """Turns a KnowledgeSet into a UniversalAnswer.

    Args:
        provider: Text-generation provider; None always uses the templated
            fallback narrative.
        filings_host: Host for constructed document and browse URLs
        today: Clock for data-freshness ages (injectable for tests)
    """

    def __init__(
        self,
        provider: Optional[TextProvider] = None,
        filings_host: str = "www.sec.gov",
        today: Callable[[], date] = date.today,
    ):
        self.provider = provider
        self.filings_host = filings_host
        self.today = today

    def generate_narrative(self, query: StructuredQuery, knowledge: KnowledgeSet) -> str:
        if query.intent.primary == "filing_lookup" and knowledge.companies:
            return filing_lookup_narrative(query, knowledge.companies[0], self.filings_host)

        if self.provider is None:
            return fallback_narrative(query, knowledge)

        prompt = NARRATIVE_PROMPT.format(
            query=query.original_query,
            primary=query.intent.primary,
            secondary=", ".join(query.intent.secondary) or "none",
            complexity=query.complexity,
            requires_analysis=query.intent.requires_analysis,
            requires_comparison=query.intent.requires_comparison,
            requires_historical=query.intent.requires_historical,
            context=build_knowledge_context(knowledge),
        )
        try:
            text = self.provider.complete(prompt).strip()
        except Exception as e:
            logger.warning(f"Narrative generation failed: {e}")
            return fallback_narrative(query, knowledge)
        if not text:
            logger.warning("Narrative generation returned empty text")
            return fallback_narrative(query, knowledge)
        return text

    def synthesize(self, query: StructuredQuery, knowledge: KnowledgeSet) -> UniversalAnswer:
        with timed_operation("synthesizing", intent=query.intent.primary) as timer:
            narrative = self.generate_narrative(query, knowledge)
            answer = self._assemble(query, knowledge, narrative)
            timer["citations"] = len(answer.citations)
            timer["confidence"] = round(answer.assessment.confidence, 3)
        return answer

    def fallback_answer(self, query: StructuredQuery, knowledge: KnowledgeSet) -> UniversalAnswer:
        """Answer without calling the provider (deadline expiry path)."""
        if query.intent.primary == "filing_lookup" and knowledge.companies:
            narrative = filing_lookup_narrative(query, knowledge.companies[0], self.filings_host)
        else:
            narrative = fallback_narrative(query, knowledge)
        return self._assemble(query, knowledge, narrative)

    def _assemble(self, query: StructuredQuery, knowledge: KnowledgeSet, narrative: str) -> UniversalAnswer:
        assessment = AnswerAssessment(
            confidence=answer_confidence(query, knowledge, narrative),
            completeness=answer_completeness(query, knowledge),
            limitations=identify_limitations(knowledge),
            assumptions=identify_assumptions(query),
            data_freshness=assess_data_freshness(knowledge, self.today()),
            bias_risks=identify_bias_risks(query, knowledge),
        )
        return UniversalAnswer(
            narrative=narrative,
            data=build_supporting_data(query, knowledge),
            citations=build_citations(knowledge, self.filings_host),
            assessment=assessment,
            follow_up=build_follow_up(query, knowledge),
            metadata=AnswerMetadata(
                query_id=f"query_{int(time.time() * 1000)}",
                complexity=query.complexity,
                confidence=assessment.confidence,
                sources=[s.name for s in knowledge.sources],
            ),
        )

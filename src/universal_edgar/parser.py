"""
Query parser: natural language -> StructuredQuery.

Entities, intent and scope are each delegated to the text-understanding
provider with a fixed JSON schema prompt. A missing or invalid reply
falls back to the deterministic rules below; there is exactly one fallback
per stage and no retries. Constraints, complexity and confidence are always
computed locally.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel

from universal_edgar.entities import (
    find_companies_in_text,
    find_tickers_in_text,
    resolve_entity,
)
from universal_edgar.llm import request_structured
from universal_edgar.models import (
    CompanyRef,
    ConceptRef,
    EntitySet,
    FilingTypeRef,
    MetricRef,
    QueryConstraints,
    QueryIntent,
    QueryScope,
    StructuredQuery,
    TimeRangeRef,
)
from universal_edgar.observability import timed_operation
from universal_edgar.ports import TextProvider

logger = logging.getLogger(__name__)


# =============================================================================
# Prompt Templates
# =============================================================================

ENTITY_PROMPT = """Extract entities from this SEC EDGAR database query.

Query: "{query}"

Return a JSON object with:
{{
  "companies": [{{"name": "Company Name", "ticker": "TICK", "variations": ["Name1", "TICK"], "confidence": 0.9, "context": "how mentioned"}}],
  "concepts": [{{"concept": "business model", "category": "business", "variations": ["business", "model"], "confidence": 0.8}}],
  "timeRanges": [{{"description": "last 3 years", "period": "annual", "confidence": 0.9}}],
  "metrics": [{{"metric": "revenue", "category": "revenue", "standardName": "Revenues", "confidence": 0.9}}],
  "filingTypes": [{{"formType": "10-K", "description": "Annual Report", "category": "periodic", "confidence": 0.8}}],
  "amounts": [{{"value": 1000000, "currency": "USD", "unit": "actual", "confidence": 0.7}}],
  "people": [{{"name": "Elon Musk", "role": "CEO", "company": "Tesla", "confidence": 0.9}}],
  "locations": [{{"location": "California", "type": "state", "confidence": 0.8}}]
}}

Concept categories: business, financial, risk, regulatory, operational
Metric categories: revenue, profitability, efficiency, liquidity, leverage, growth
Filing categories: periodic, proxy, insider, registration, other
Time periods: current, latest, annual, quarterly

Include confidence scores 0-1. Respond with ONLY valid JSON."""

INTENT_PROMPT = """Classify the intent of this SEC EDGAR database query.

Query: "{query}"
Entities found: {entities}

PRIMARY INTENTS (choose exactly one):
- business_overview: Understanding what a company does
- financial_metrics: Getting specific financial numbers
- comparative_analysis: Comparing multiple companies/metrics
- trend_analysis: Looking at changes over time
- content_search: Finding text/content within filings
- filing_lookup: Finding specific documents
- risk_analysis: Understanding risks and uncertainties
- regulatory_analysis: Understanding regulatory impacts
- market_analysis: Market-wide or sector analysis
- relationship_analysis: Company relationships and connections
- pattern_analysis: Statistical patterns across companies
- predictive_analysis: Forward-looking analysis
- meta_analysis: Questions about the database itself

SECONDARY INTENTS (zero or more):
geographic_focus, industry_focus, size_focus, time_series, benchmarking,
correlation, causation, ranking, aggregation, summarization

Respond with ONLY valid JSON:
{{"primary": "business_overview", "secondary": ["industry_focus"], "requiresAnalysis": true, "requiresComparison": false, "requiresHistorical": true}}"""

SCOPE_PROMPT = """Determine the scope for this SEC EDGAR query.

Query: "{query}"
Intent: {intent}

DATA TYPES:
company_profile, financial_statements, filing_content, risk_factors,
business_description, management_discussion, legal_proceedings,
corporate_governance, insider_transactions, market_data, regulatory_context,
industry_context, peer_data, historical_events, forward_guidance

GRANULARITY: summary | detailed | comprehensive
PERSPECTIVE: factual | analytical | comparative | predictive
BREADTH: single_company | industry | market_wide | cross_industry
DEPTH: surface | moderate | deep | exhaustive

Respond with ONLY valid JSON:
{{"dataTypes": ["business_description", "filing_content"], "granularity": "detailed", "perspective": "analytical", "breadth": "single_company", "depth": "moderate"}}"""


# =============================================================================
# Fallback Rules
# =============================================================================

FILING_PATTERN = re.compile(r"filing|10-k|10-q|8-k|document|last.*filing", re.IGNORECASE)
SPECIFIC_FORM_PATTERN = re.compile(r"\b(10-K|10-Q|8-K|DEF\s?14A|S-1|20-F)\b", re.IGNORECASE)
RECENCY_PATTERN = re.compile(r"last|recent|latest|past", re.IGNORECASE)
SPAN_PATTERN = re.compile(r"\b(?:last|past)\s+(\d+)\s+(years?|quarters?)\b", re.IGNORECASE)

BUSINESS_PATTERN = re.compile(r"what.*business|what.*do|what.*company", re.IGNORECASE)
FINANCIAL_PATTERN = re.compile(r"revenue|profit|income|financial", re.IGNORECASE)
COMPARISON_PATTERN = re.compile(r"compare|versus|vs\b", re.IGNORECASE)
RISK_PATTERN = re.compile(r"\brisks?\b|uncertaint|threats?", re.IGNORECASE)

ANALYSIS_PATTERN = re.compile(r"analyze|analysis|trend|impact", re.IGNORECASE)
HISTORICAL_PATTERN = re.compile(r"history|historical|over time|since", re.IGNORECASE)
COMPLEX_WORDS_PATTERN = re.compile(r"\b(analyze|compare|trend|evolve|impact|correlation|pattern)\b", re.IGNORECASE)
TIMEBOUND_PATTERN = re.compile(r"\b(since|until|between|from|to|last|recent|current|latest)\b")

# (pattern, concept, category, variations)
CONCEPT_KEYWORDS = [
    (re.compile(r"business|company|operations", re.IGNORECASE), "business", "business",
     ["business", "operations", "company"]),
    (re.compile(r"revenue|profit|earnings|margin|cash flow|financial", re.IGNORECASE), "financial performance",
     "financial", ["revenue", "profit", "earnings"]),
    (re.compile(r"\brisks?\b|uncertaint|threats?|exposure", re.IGNORECASE), "risk factors", "risk",
     ["risk", "uncertainty", "threat"]),
    (re.compile(r"regulat|compliance|legal", re.IGNORECASE), "regulation", "regulatory",
     ["regulation", "compliance"]),
]

# (pattern, metric, standard XBRL concept)
METRIC_KEYWORDS = [
    (re.compile(r"revenues?|sales", re.IGNORECASE), "revenue", "Revenues"),
    (re.compile(r"net income|profit|earnings", re.IGNORECASE), "net income", "NetIncomeLoss"),
    (re.compile(r"\bassets\b", re.IGNORECASE), "total assets", "Assets"),
    (re.compile(r"\bcash\b", re.IGNORECASE), "cash", "CashAndCashEquivalentsAtCarryingValue"),
    (re.compile(r"\bdebt\b", re.IGNORECASE), "debt", "LongTermDebt"),
]


def fallback_entities(query: str) -> EntitySet:
    """Deterministic entity extraction from curated tables and keyword lists."""
    companies: List[CompanyRef] = []
    seen_ciks = set()

    for entity in find_companies_in_text(query):
        seen_ciks.add(entity.cik)
        companies.append(CompanyRef(
            name=entity.company_name,
            ticker=entity.ticker,
            cik=entity.cik,
            variations=[entity.company_name, entity.ticker],
            confidence=0.8,
            context="pattern_match",
        ))
    for entity in find_tickers_in_text(query):
        if entity.cik in seen_ciks:
            continue
        seen_ciks.add(entity.cik)
        companies.append(CompanyRef(
            name=entity.company_name,
            ticker=entity.ticker,
            cik=entity.cik,
            variations=[entity.company_name, entity.ticker],
            confidence=0.8,
            context="ticker_match",
        ))

    concepts = [
        ConceptRef(concept=concept, category=category, variations=variations, confidence=0.7)
        for pattern, concept, category, variations in CONCEPT_KEYWORDS
        if pattern.search(query)
    ]

    filing_types: List[FilingTypeRef] = []
    if FILING_PATTERN.search(query):
        filing_types.append(FilingTypeRef(
            form_type="ALL", description="SEC Filings", category="periodic", confidence=0.9,
        ))
        for form in dict.fromkeys(m.upper() for m in SPECIFIC_FORM_PATTERN.findall(query)):
            filing_types.append(FilingTypeRef(
                form_type=form, description=f"{form} filings", category="periodic", confidence=0.9,
            ))

    time_ranges: List[TimeRangeRef] = []
    if RECENCY_PATTERN.search(query):
        time_ranges.append(TimeRangeRef(description="recent", period="latest", confidence=0.8))
    span = SPAN_PATTERN.search(query)
    if span:
        period = "annual" if span.group(2).lower().startswith("year") else "quarterly"
        time_ranges.append(TimeRangeRef(description=span.group(0).lower(), period=period, confidence=0.8))

    metrics = [
        MetricRef(metric=metric, category="financial", standard_name=standard, confidence=0.8)
        for pattern, metric, standard in METRIC_KEYWORDS
        if pattern.search(query)
    ]

    return EntitySet(
        companies=companies,
        concepts=concepts,
        time_ranges=time_ranges,
        metrics=metrics,
        filing_types=filing_types,
    )


def fallback_intent(query: str) -> QueryIntent:
    """Ordered keyword ladder; first rule that matches sets the primary intent."""
    if FILING_PATTERN.search(query):
        primary = "filing_lookup"
    elif BUSINESS_PATTERN.search(query):
        primary = "business_overview"
    elif FINANCIAL_PATTERN.search(query):
        primary = "financial_metrics"
    elif COMPARISON_PATTERN.search(query):
        primary = "comparative_analysis"
    elif RISK_PATTERN.search(query):
        primary = "risk_analysis"
    else:
        primary = "business_overview"

    return QueryIntent(
        primary=primary,
        secondary=[],
        requires_analysis=bool(ANALYSIS_PATTERN.search(query)),
        requires_comparison=bool(COMPARISON_PATTERN.search(query)),
        requires_historical=bool(HISTORICAL_PATTERN.search(query)),
    )


def fallback_scope(intent: QueryIntent) -> QueryScope:
    """Minimal single-company scope, widened only for what the intent needs."""
    data_types = ["company_profile", "business_description"]
    if intent.primary in ("financial_metrics", "comparative_analysis", "trend_analysis"):
        data_types.append("financial_statements")
    if intent.primary == "risk_analysis":
        data_types.append("risk_factors")
    return QueryScope(
        data_types=data_types,
        granularity="summary",
        perspective="factual",
        breadth="single_company",
        depth="surface",
    )


# =============================================================================
# Deterministic Stages
# =============================================================================


def extract_constraints(query: str) -> QueryConstraints:
    lower = query.lower()
    return QueryConstraints(
        timebound=bool(TIMEBOUND_PATTERN.search(lower)),
        minimum_confidence=0.7,
        required_sources=[],
        exclude_estimates="actual" in lower or "filed" in lower,
        include_forward_looking=any(w in lower for w in ("forecast", "guidance", "outlook")),
        max_age_days=30 if ("latest" in lower or "recent" in lower) else 365,
        require_official_filings="estimate" not in lower and "projection" not in lower,
    )


def complexity_indicators(query: str, intent: QueryIntent, entities: EntitySet) -> Dict[str, bool]:
    return {
        "multiple_companies": len(entities.companies) > 1,
        "multiple_time_ranges": len(entities.time_ranges) > 1,
        "multiple_concepts": len(entities.concepts) > 2,
        "requires_analysis": intent.requires_analysis,
        "requires_comparison": intent.requires_comparison,
        "requires_historical": intent.requires_historical,
        "has_secondary_intents": len(intent.secondary) > 0,
        "complex_words": bool(COMPLEX_WORDS_PATTERN.search(query)),
    }


def score_complexity(indicators: Mapping[str, bool]) -> str:
    """6+ true -> research, 4-5 -> analytical, 2-3 -> compound, else simple."""
    score = sum(1 for flag in indicators.values() if flag)
    if score >= 6:
        return "research"
    if score >= 4:
        return "analytical"
    if score >= 2:
        return "compound"
    return "simple"


def calculate_confidence(entities: EntitySet) -> float:
    """Mean of per-category average confidence; empty categories are skipped."""
    categories = [entities.companies, entities.concepts, entities.time_ranges, entities.metrics]
    averages = [
        sum(e.confidence for e in refs) / len(refs)
        for refs in categories
        if refs
    ]
    if not averages:
        return 0.5
    return max(0.0, min(1.0, sum(averages) / len(averages)))


# =============================================================================
# Parser
# =============================================================================


def _enrich_companies(entities: EntitySet) -> EntitySet:
    """Fill missing CIKs/tickers from the curated table."""
    for company in entities.companies:
        if company.cik:
            continue
        entity = resolve_entity(company.ticker or "") or resolve_entity(company.name)
        if entity is not None:
            company.cik = entity.cik
            company.ticker = company.ticker or entity.ticker
    return entities


def _dump(model: BaseModel) -> str:
    return json.dumps(model.model_dump(by_alias=True, exclude_defaults=True))


class QueryParser:
    """Converts free text into a StructuredQuery.

    Args:
        provider: Text-understanding provider; None runs the deterministic
            rules only.
    """

    def __init__(self, provider: Optional[TextProvider] = None):
        self.provider = provider

    def extract_entities(self, query: str) -> EntitySet:
        result = request_structured(self.provider, ENTITY_PROMPT.format(query=query), EntitySet)
        if result.is_ok:
            return _enrich_companies(result.value)
        logger.info(f"Entity extraction fell back to rules: {result.error}")
        return fallback_entities(query)

    def classify_intent(self, query: str, entities: EntitySet) -> QueryIntent:
        prompt = INTENT_PROMPT.format(query=query, entities=_dump(entities))
        result = request_structured(self.provider, prompt, QueryIntent)
        if result.is_ok:
            return result.value
        logger.info(f"Intent classification fell back to rules: {result.error}")
        return fallback_intent(query)

    def determine_scope(self, query: str, intent: QueryIntent) -> QueryScope:
        prompt = SCOPE_PROMPT.format(query=query, intent=_dump(intent))
        result = request_structured(self.provider, prompt, QueryScope)
        if result.is_ok and result.value.data_types:
            return result.value
        logger.info(f"Scope determination fell back to rules: {result.error or 'empty data types'}")
        return fallback_scope(intent)

    def parse(self, query: str) -> StructuredQuery:
        """Parse one question. Never raises for provider problems."""
        query = (query or "").strip()
        with timed_operation("parsing", query_length=len(query)) as timer:
            entities = self.extract_entities(query)
            intent = self.classify_intent(query, entities)
            scope = self.determine_scope(query, intent)
            constraints = extract_constraints(query)
            complexity = score_complexity(complexity_indicators(query, intent, entities))
            confidence = calculate_confidence(entities)

            timer["primary_intent"] = intent.primary
            timer["companies"] = len(entities.companies)
            timer["confidence"] = round(confidence, 3)

        return StructuredQuery(
            original_query=query,
            entities=entities,
            intent=intent,
            scope=scope,
            constraints=constraints,
            confidence=confidence,
            complexity=complexity,
        )

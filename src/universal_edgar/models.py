"""
Pydantic models for structured queries, extracted knowledge and answers.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


ACCESSION_PATTERN = re.compile(r"^\d{10}-\d{2}-\d{6}$")


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class _QueryModel(BaseModel):
    """Query-side models accept the provider's camelCase keys as well as field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _Scored(_QueryModel):
    """Base for anything carrying a confidence in [0, 1]."""

    confidence: float = 0.5

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        # Provider output is clamped rather than rejected
        if value is None:
            return 0.5
        return _clamp(value)


# =============================================================================
# Query Side
# =============================================================================

PrimaryIntent = Literal[
    "business_overview",
    "financial_metrics",
    "comparative_analysis",
    "trend_analysis",
    "content_search",
    "filing_lookup",
    "risk_analysis",
    "regulatory_analysis",
    "market_analysis",
    "relationship_analysis",
    "pattern_analysis",
    "predictive_analysis",
    "meta_analysis",
]

SecondaryIntent = Literal[
    "geographic_focus",
    "industry_focus",
    "size_focus",
    "time_series",
    "benchmarking",
    "correlation",
    "causation",
    "ranking",
    "aggregation",
    "summarization",
]

DataType = Literal[
    "company_profile",
    "financial_statements",
    "filing_content",
    "risk_factors",
    "business_description",
    "management_discussion",
    "legal_proceedings",
    "corporate_governance",
    "insider_transactions",
    "market_data",
    "regulatory_context",
    "industry_context",
    "peer_data",
    "historical_events",
    "forward_guidance",
]

Complexity = Literal["simple", "compound", "analytical", "research"]


class CompanyRef(_Scored):
    """A company mentioned in the query."""

    name: str
    ticker: Optional[str] = None
    cik: Optional[str] = None
    variations: List[str] = Field(default_factory=list)
    context: str = ""


class ConceptRef(_Scored):
    """A business, financial or risk concept mentioned in the query."""

    concept: str
    category: str = "business"  # business, financial, risk, regulatory, operational
    variations: List[str] = Field(default_factory=list)


class TimeRangeRef(_Scored):
    """A time expression such as 'last 2 years' or 'latest'."""

    description: str
    period: Optional[str] = None  # current, latest, annual, quarterly
    start: Optional[str] = None
    end: Optional[str] = None


class MetricRef(_Scored):
    """A financial metric, e.g. revenue -> Revenues."""

    metric: str
    category: str = "financial"
    standard_name: Optional[str] = None


class FilingTypeRef(_Scored):
    form_type: str
    description: str = ""
    category: str = "periodic"


class AmountRef(_Scored):
    value: Optional[float] = None
    currency: str = "USD"
    unit: str = "units"
    comparison: Optional[str] = None


class PersonRef(_Scored):
    name: str
    role: Optional[str] = None
    company: Optional[str] = None


class LocationRef(_Scored):
    location: str
    type: str = "country"


class EntitySet(_QueryModel):
    """Everything the parser found in the query text."""

    companies: List[CompanyRef] = Field(default_factory=list)
    concepts: List[ConceptRef] = Field(default_factory=list)
    time_ranges: List[TimeRangeRef] = Field(default_factory=list)
    metrics: List[MetricRef] = Field(default_factory=list)
    filing_types: List[FilingTypeRef] = Field(default_factory=list)
    amounts: List[AmountRef] = Field(default_factory=list)
    people: List[PersonRef] = Field(default_factory=list)
    locations: List[LocationRef] = Field(default_factory=list)


class QueryIntent(_QueryModel):
    primary: PrimaryIntent = "business_overview"
    secondary: List[SecondaryIntent] = Field(default_factory=list)
    requires_analysis: bool = False
    requires_comparison: bool = False
    requires_historical: bool = False

    @field_validator("secondary", mode="before")
    @classmethod
    def _known_secondary(cls, value: Any) -> List[str]:
        # Unknown modifiers from the provider are dropped, not fatal
        allowed = set(get_args(SecondaryIntent))
        return [v for v in (value or []) if v in allowed]


class QueryScope(_QueryModel):
    data_types: List[DataType] = Field(
        default_factory=lambda: ["company_profile", "business_description"]
    )
    granularity: Literal["summary", "detailed", "comprehensive"] = "summary"
    perspective: Literal["factual", "analytical", "comparative", "predictive"] = "factual"
    breadth: Literal["single_company", "industry", "market_wide", "cross_industry"] = "single_company"
    depth: Literal["surface", "moderate", "deep", "exhaustive"] = "surface"

    @field_validator("data_types", mode="before")
    @classmethod
    def _known_data_types(cls, value: Any) -> List[str]:
        allowed = set(get_args(DataType))
        return [v for v in (value or []) if v in allowed]


class QueryConstraints(_QueryModel):
    timebound: bool = False
    minimum_confidence: float = 0.7
    required_sources: List[str] = Field(default_factory=list)
    exclude_estimates: bool = False
    include_forward_looking: bool = False
    max_age_days: int = 365
    require_official_filings: bool = True


class StructuredQuery(_Scored):
    """Structured representation of one natural-language question."""

    original_query: str
    entities: EntitySet = Field(default_factory=EntitySet)
    intent: QueryIntent = Field(default_factory=QueryIntent)
    scope: QueryScope = Field(default_factory=QueryScope)
    constraints: QueryConstraints = Field(default_factory=QueryConstraints)
    complexity: Complexity = "simple"


# =============================================================================
# Knowledge Side
# =============================================================================


class IndustryClassification(BaseModel):
    sic: Optional[str] = None
    sic_description: Optional[str] = None
    sector: str = "Unknown"
    industry: Optional[str] = None


class HeadquartersLocation(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


class IncorporationInfo(BaseModel):
    state: Optional[str] = None
    country: Optional[str] = None


class CompanyIdentity(BaseModel):
    """Who a company is, keyed by its 10-digit CIK."""

    cik: str
    name: str
    ticker: Optional[str] = None
    industry: IndustryClassification = Field(default_factory=IndustryClassification)
    headquarters: HeadquartersLocation = Field(default_factory=HeadquartersLocation)
    incorporation: IncorporationInfo = Field(default_factory=IncorporationInfo)
    status: Literal["active", "inactive", "merged", "acquired"] = "active"
    aliases: List[str] = Field(default_factory=list)

    @field_validator("cik")
    @classmethod
    def _ten_digit_cik(cls, value: str) -> str:
        value = str(value).strip()
        if not value.isdigit() or len(value) > 10:
            raise ValueError(f"CIK must be numeric with at most 10 digits: {value!r}")
        return value.zfill(10)


class SectionExtract(BaseModel):
    """Result of locating one section of a filing document.

    Carries the text AND how it was found. Extraction methods (in priority
    order):
    - header_scan: normalized item-header tokenizer (most reliable)
    - regex: labelled-section regex bounded by the next item header
    - sentence_pattern: business-description sentences anywhere in the text
    """

    section: str
    text: str
    method: Literal["header_scan", "regex", "sentence_pattern"]
    confidence: Literal["HIGH", "MED", "LOW"]
    reason: str
    char_count: int


class BusinessProfile(BaseModel):
    description: str = ""
    extraction_method: Optional[str] = None
    source_accession: Optional[str] = None


class FinancialObservation(BaseModel):
    """A single XBRL datapoint."""

    concept: str
    value: float
    unit: str = "USD"
    end: str
    form: Optional[str] = None
    fiscal_year: Optional[int] = None
    fiscal_period: Optional[str] = None
    filed: Optional[str] = None
    accession_number: Optional[str] = None


class FinancialMetrics(BaseModel):
    revenue: Optional[float] = None
    net_income: Optional[float] = None
    total_assets: Optional[float] = None
    cash: Optional[float] = None
    debt: Optional[float] = None
    stockholders_equity: Optional[float] = None
    period_end: Optional[str] = None
    fiscal_year: Optional[int] = None
    currency: str = "USD"

    def has_data(self) -> bool:
        return any(
            v is not None
            for v in (self.revenue, self.net_income, self.total_assets, self.cash, self.debt)
        )


class FinancialTrend(BaseModel):
    metric: str
    direction: Literal["up", "down", "flat"]
    yoy_growth: Optional[float] = None
    cagr: Optional[float] = None
    periods: int = 0
    start_period: Optional[str] = None
    end_period: Optional[str] = None


class FinancialRatio(BaseModel):
    name: str
    value: float
    numerator: str
    denominator: str
    period_end: Optional[str] = None


class FinancialProfile(BaseModel):
    metrics: FinancialMetrics = Field(default_factory=FinancialMetrics)
    trends: List[FinancialTrend] = Field(default_factory=list)
    ratios: List[FinancialRatio] = Field(default_factory=list)


RiskCategory = Literal[
    "Cybersecurity & Data Protection",
    "Regulatory & Legal",
    "Market & Competition",
    "Financial",
    "Operational",
    "Technology & IP",
    "Human Capital",
    "Environmental & Climate",
    "General Business",
]

Severity = Literal["critical", "high", "medium", "low"]


class RiskFactor(BaseModel):
    category: RiskCategory
    description: str
    severity: Severity
    likelihood: Literal["high", "medium", "low"] = "medium"
    trend: Literal["increasing", "stable", "decreasing"] = "stable"


class RiskProfile(BaseModel):
    risk_factors: List[RiskFactor] = Field(default_factory=list)
    extraction_method: Optional[str] = None


class FilingSummary(BaseModel):
    """One row of a company's recent-filings list."""

    accession_number: str
    form: str
    filing_date: str
    primary_document: str = ""
    url: Optional[str] = None

    @field_validator("accession_number")
    @classmethod
    def _accession_format(cls, value: str) -> str:
        if not ACCESSION_PATTERN.match(value):
            raise ValueError(f"Accession number must match NNNNNNNNNN-YY-NNNNNN: {value!r}")
        return value


class CompanyKnowledge(BaseModel):
    identity: CompanyIdentity
    business: Optional[BusinessProfile] = None
    financials: Optional[FinancialProfile] = None
    risks: Optional[RiskProfile] = None
    recent_filings: List[FilingSummary] = Field(default_factory=list)


class FilingMetadata(BaseModel):
    cik: str
    company_name: str
    accession_number: str
    form: str
    filing_date: str
    primary_document: str = ""
    url: Optional[str] = None

    @field_validator("accession_number")
    @classmethod
    def _accession_format(cls, value: str) -> str:
        if not ACCESSION_PATTERN.match(value):
            raise ValueError(f"Accession number must match NNNNNNNNNN-YY-NNNNNN: {value!r}")
        return value


class FilingContent(BaseModel):
    """Parsed sections of a filing. Each is independently optional."""

    business_description: Optional[str] = None
    risk_factors: List[RiskFactor] = Field(default_factory=list)
    sections: Dict[str, str] = Field(default_factory=dict)


class FilingKnowledge(BaseModel):
    metadata: FilingMetadata
    content: FilingContent = Field(default_factory=FilingContent)


class DataSource(BaseModel):
    type: Literal["sec_filing", "xbrl_data", "submissions", "tool_router", "curated"] = "submissions"
    name: str
    timestamp: datetime = Field(default_factory=datetime.now)
    reliability: float = 1.0
    is_official: bool = True


class KnowledgeSet(BaseModel):
    """Aggregate of everything extracted for one query."""

    companies: List[CompanyKnowledge] = Field(default_factory=list)
    filings: List[FilingKnowledge] = Field(default_factory=list)
    sources: List[DataSource] = Field(default_factory=list)
    confidence: float = 0.0
    completeness: float = 0.0
    provider: Literal["direct", "tool_router"] = "direct"

    @field_validator("confidence", "completeness", mode="before")
    @classmethod
    def _clamp_scores(cls, value: Any) -> float:
        return _clamp(value or 0.0)


# =============================================================================
# Answer Side
# =============================================================================


class Table(BaseModel):
    title: str
    headers: List[str]
    rows: List[List[str]] = Field(default_factory=list)


class TimelineEvent(BaseModel):
    date: str
    event: str
    company: str
    accession_number: Optional[str] = None


class Timeline(BaseModel):
    title: str
    events: List[TimelineEvent] = Field(default_factory=list)


class AnswerData(BaseModel):
    tables: List[Table] = Field(default_factory=list)
    timelines: List[Timeline] = Field(default_factory=list)


class FilingReference(BaseModel):
    cik: str
    accession_number: str
    form: str
    filing_date: str
    section: Optional[str] = None
    url: Optional[str] = None


class Citation(BaseModel):
    id: str
    source: DataSource
    filing: Optional[FilingReference] = None
    content: str = ""
    confidence: float
    relevance: float


class CoverageGap(BaseModel):
    area: str
    description: str
    impact: Literal["high", "medium", "low"]


class DataFreshness(BaseModel):
    oldest_data: Optional[str] = None
    newest_data: Optional[str] = None
    average_age_days: float = 365.0
    has_realtime_data: bool = False
    coverage_gaps: List[CoverageGap] = Field(default_factory=list)


class AnswerAssessment(BaseModel):
    confidence: float
    completeness: float
    limitations: List[str] = Field(default_factory=list)
    assumptions: List[str] = Field(default_factory=list)
    data_freshness: DataFreshness = Field(default_factory=DataFreshness)
    bias_risks: List[str] = Field(default_factory=list)


class FollowUpSuggestions(BaseModel):
    suggested_queries: List[str] = Field(default_factory=list)
    related_topics: List[str] = Field(default_factory=list)


class AnswerMetadata(BaseModel):
    query_id: str
    timestamp: datetime = Field(default_factory=datetime.now)
    processing_time_ms: float = 0.0
    complexity: Complexity = "simple"
    confidence: float = 0.0
    sources: List[str] = Field(default_factory=list)
    data_source: str = "Direct"
    tools_used: List[str] = Field(default_factory=list)
    pipeline_state: str = "done"


class UniversalAnswer(BaseModel):
    """Final answer for one query. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    narrative: str
    data: AnswerData = Field(default_factory=AnswerData)
    citations: List[Citation] = Field(default_factory=list)
    assessment: AnswerAssessment
    follow_up: FollowUpSuggestions = Field(default_factory=FollowUpSuggestions)
    metadata: AnswerMetadata

    def with_metadata(self, **updates: Any) -> "UniversalAnswer":
        """Return a copy with metadata fields replaced."""
        return self.model_copy(
            update={"metadata": self.metadata.model_copy(update=updates)}
        )

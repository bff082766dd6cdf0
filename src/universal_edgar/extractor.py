"""
Knowledge extractor: StructuredQuery -> KnowledgeSet.

Each requested company is extracted independently on a bounded worker
pool. The directory client's shared rate limiter paces every outbound call,
so fan-out never exceeds the external request budget. One company's failure
is logged and that company is simply absent from the result.

Aggregate scores are computed from what actually happened:

    resolution = resolved companies / requested companies
    coverage   = mean over companies of populated / requested categories
    recency    = mean over companies of max(0, 1 - newest_filing_age / 730d)

    confidence   = 0.5 * resolution + 0.3 * coverage + 0.2 * recency
    completeness = resolution * (0.7 * coverage + 0.3 * recency)

Both are monotonic in every input and 0.0 when nothing resolved.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from universal_edgar.edgar_client import build_document_url
from universal_edgar.entities import pad_cik, resolve_cik, sector_from_sic
from universal_edgar.errors import ContentParseFailure, DeadlineExceeded, ExternalAPIFailure
from universal_edgar.financials import (
    AnnualGrowthTrend,
    RatioCalculator,
    StandardRatios,
    TrendCalculator,
    build_financial_profile,
)
from universal_edgar.models import (
    BusinessProfile,
    CompanyIdentity,
    CompanyKnowledge,
    CompanyRef,
    DataSource,
    FilingContent,
    FilingKnowledge,
    FilingMetadata,
    FilingSummary,
    FinancialProfile,
    HeadquartersLocation,
    IncorporationInfo,
    IndustryClassification,
    KnowledgeSet,
    RiskProfile,
    StructuredQuery,
)
from universal_edgar.observability import log_extraction_event, timed_operation
from universal_edgar.ports import FilingsDirectory
from universal_edgar.risk_analysis import analyze_risk_section
from universal_edgar.section_locator import extract_section, summarize_business

logger = logging.getLogger(__name__)

BUSINESS_PLACEHOLDER = "Business description could not be extracted from filing content."
RECENT_FILINGS_LIMIT = 5
RECENCY_HORIZON_DAYS = 730

RESOLUTION_WEIGHT = 0.5
COVERAGE_WEIGHT = 0.3
RECENCY_WEIGHT = 0.2

FINANCIAL_DATA_TYPES = {"financial_statements", "market_data"}
FINANCIAL_INTENTS = {"financial_metrics", "comparative_analysis", "trend_analysis"}


# =============================================================================
# Scoring
# =============================================================================


def requested_categories(query: StructuredQuery) -> List[str]:
    """Knowledge categories the query's scope asks for (filings are always wanted)."""
    data_types = set(query.scope.data_types)
    categories = ["filings"]
    if "business_description" in data_types:
        categories.append("business")
    if data_types & FINANCIAL_DATA_TYPES or query.intent.primary in FINANCIAL_INTENTS:
        categories.append("financials")
    if "risk_factors" in data_types or query.intent.primary == "risk_analysis":
        categories.append("risks")
    return categories


def category_populated(company: CompanyKnowledge, category: str) -> bool:
    if category == "filings":
        return bool(company.recent_filings)
    if category == "business":
        return company.business is not None and company.business.extraction_method not in (None, "industry_fallback")
    if category == "financials":
        return company.financials is not None and company.financials.metrics.has_data()
    if category == "risks":
        return company.risks is not None and bool(company.risks.risk_factors)
    return False


def company_coverage(company: CompanyKnowledge, categories: List[str]) -> float:
    """Fraction of the requested categories this company has data for."""
    if not categories:
        return 0.0
    return sum(1 for c in categories if category_populated(company, c)) / len(categories)


def check_cancelled(cancelled: Optional[threading.Event], operation: str) -> None:
    """Raise DeadlineExceeded once the caller has given up on the query."""
    if cancelled is not None and cancelled.is_set():
        raise DeadlineExceeded(f"Query cancelled before {operation}", details={"operation": operation})



def filing_recency(filing_date: Optional[str], today: date) -> float:
    """1.0 for a filing made today, falling linearly to 0 at two years."""
    if not filing_date:
        return 0.0
    try:
        filed = datetime.strptime(filing_date[:10], "%Y-%m-%d").date()
    except ValueError:
        return 0.0
    age = max(0, (today - filed).days)
    return max(0.0, 1.0 - age / RECENCY_HORIZON_DAYS)


def score_knowledge(
    requested: int,
    resolved: int,
    coverages: List[float],
    recencies: List[float],
) -> tuple[float, float]:
    """Return (confidence, completeness), both clamped to [0, 1]."""
    if resolved <= 0:
        return 0.0, 0.0
    resolution = min(1.0, resolved / max(requested, resolved))
    coverage = sum(coverages) / len(coverages) if coverages else 0.0
    recency = sum(recencies) / len(recencies) if recencies else 0.0

    confidence = (
        RESOLUTION_WEIGHT * resolution
        + COVERAGE_WEIGHT * coverage
        + RECENCY_WEIGHT * recency
    )
    completeness = resolution * (0.7 * coverage + 0.3 * recency)
    return max(0.0, min(1.0, confidence)), max(0.0, min(1.0, completeness))


# =============================================================================
# Per-Company Outcome
# =============================================================================


@dataclass
class CompanyOutcome:
    knowledge: CompanyKnowledge
    filings: List[FilingKnowledge] = field(default_factory=list)
    sources: List[DataSource] = field(default_factory=list)
    coverage: float = 0.0
    recency: float = 0.0


def build_identity(cik: str, ref: CompanyRef, submissions: Dict[str, Any]) -> CompanyIdentity:
    business = (submissions.get("addresses") or {}).get("business") or {}
    sic = submissions.get("sic")
    aliases = list(dict.fromkeys(
        [a for a in (ref.variations or [ref.name]) if a]
        + list(submissions.get("formerNames") or [])
    ))
    return CompanyIdentity(
        cik=cik,
        name=submissions.get("name") or ref.name,
        ticker=submissions.get("ticker") or ref.ticker,
        industry=IndustryClassification(
            sic=str(sic) if sic else None,
            sic_description=submissions.get("sicDescription") or None,
            sector=sector_from_sic(sic),
            industry=submissions.get("sicDescription") or None,
        ),
        headquarters=HeadquartersLocation(
            street=business.get("street1"),
            city=business.get("city"),
            state=business.get("stateOrCountry"),
            country=business.get("stateOrCountryDescription"),
        ),
        incorporation=IncorporationInfo(state=submissions.get("stateOfIncorporation") or None),
        status="active",
        aliases=aliases,
    )


def filing_summaries(
    cik: str,
    raw_filings: List[Dict[str, Any]],
    host: str = "www.sec.gov",
) -> List[FilingSummary]:
    """Submissions rows -> FilingSummary, skipping malformed rows."""
    summaries: List[FilingSummary] = []
    for raw in raw_filings:
        try:
            summaries.append(FilingSummary(
                accession_number=raw.get("accessionNumber", ""),
                form=raw.get("form", ""),
                filing_date=raw.get("filingDate", ""),
                primary_document=raw.get("primaryDocument", ""),
                url=(
                    build_document_url(cik, raw["accessionNumber"], raw["primaryDocument"], host)
                    if raw.get("primaryDocument") else None
                ),
            ))
        except (ValueError, KeyError) as e:
            logger.debug(f"Skipping malformed filing row for CIK {cik}: {e}")
    return summaries


def industry_description(identity: CompanyIdentity) -> str:
    if identity.industry.sic_description:
        return f"{identity.name} operates in the {identity.industry.sic_description} industry."
    return BUSINESS_PLACEHOLDER


# =============================================================================
# Extractor
# =============================================================================


class KnowledgeExtractor:
    """Resolves companies against a FilingsDirectory and parses their filings.

    Args:
        directory: Filings directory (rate limited by its own shared limiter)
        max_workers: Upper bound on concurrent per-company extractions
        filings_host: Host used for constructed document URLs
        trend_calculator: Pluggable trend computation (None disables)
        ratio_calculator: Pluggable ratio computation (None disables)
        today: Clock for recency scoring (injectable for tests)
    """

    def __init__(
        self,
        directory: FilingsDirectory,
        max_workers: int = 4,
        filings_host: str = "www.sec.gov",
        trend_calculator: Optional[TrendCalculator] = None,
        ratio_calculator: Optional[RatioCalculator] = None,
        today: Callable[[], date] = date.today,
    ):
        self.directory = directory
        self.max_workers = max(1, max_workers)
        self.filings_host = filings_host
        self.trend_calculator = trend_calculator if trend_calculator is not None else AnnualGrowthTrend()
        self.ratio_calculator = ratio_calculator if ratio_calculator is not None else StandardRatios()
        self.today = today

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def extract(self, query: StructuredQuery, cancelled: Optional[threading.Event] = None) -> KnowledgeSet:
        """Extract every requested company. Once ``cancelled`` is set, no further directory calls are made."""
        refs = query.entities.companies
        knowledge = KnowledgeSet(provider="direct")

        with timed_operation("extracting", companies=len(refs)) as timer:
            outcomes: List[Optional[CompanyOutcome]] = []
            if refs:
                workers = min(self.max_workers, len(refs))
                with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="extract") as pool:
                    futures = [pool.submit(self._safe_extract, ref, query, cancelled) for ref in refs]
                    # Request order, not completion order
                    outcomes = [f.result() for f in futures]

            seen = set()
            coverages: List[float] = []
            recencies: List[float] = []
            for outcome in outcomes:
                if outcome is None:
                    continue
                cik = outcome.knowledge.identity.cik
                if cik in seen:
                    continue
                seen.add(cik)
                knowledge.companies.append(outcome.knowledge)
                knowledge.filings.extend(outcome.filings)
                knowledge.sources.extend(outcome.sources)
                coverages.append(outcome.coverage)
                recencies.append(outcome.recency)

            confidence, completeness = score_knowledge(
                requested=len(refs),
                resolved=len(knowledge.companies),
                coverages=coverages,
                recencies=recencies,
            )
            knowledge.confidence = confidence
            knowledge.completeness = completeness

            timer["resolved"] = len(knowledge.companies)
            timer["filings"] = len(knowledge.filings)
            timer["confidence"] = round(confidence, 3)

        return knowledge

    def _safe_extract(
        self,
        ref: CompanyRef,
        query: StructuredQuery,
        cancelled: Optional[threading.Event] = None,
    ) -> Optional[CompanyOutcome]:
        """Per-company boundary: any failure skips this company only."""
        start = time.perf_counter()
        try:
            outcome = self.extract_company(ref, query, cancelled)
        except Exception as e:
            log_extraction_event(
                "error",
                company=ref.name,
                cik=ref.cik,
                error=f"{type(e).__name__}: {e}",
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            return None
        log_extraction_event(
            "complete",
            company=ref.name,
            cik=outcome.knowledge.identity.cik,
            categories_requested=len(requested_categories(query)),
            categories_populated=round(outcome.coverage * len(requested_categories(query))),
            filings=len(outcome.filings),
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return outcome

    # -------------------------------------------------------------------------
    # One company
    # -------------------------------------------------------------------------

    def extract_company(
        self,
        ref: CompanyRef,
        query: StructuredQuery,
        cancelled: Optional[threading.Event] = None,
    ) -> CompanyOutcome:
        """Extract one company.

        Raises:
            DeadlineExceeded: If ``cancelled`` is set before a directory call
            EntityResolutionFailure: If the reference cannot be resolved to a CIK
            ExternalAPIFailure: If the submissions lookup fails
        """
        cik = pad_cik(ref.cik) if ref.cik else resolve_cik(ref.ticker or ref.name)
        check_cancelled(cancelled, "submissions")
        submissions = self.directory.get_submissions(cik)
        identity = build_identity(cik, ref, submissions)
        sources = [DataSource(type="submissions", name=f"SEC EDGAR submissions ({identity.name})")]

        all_filings = filing_summaries(cik, submissions.get("filings") or [], self.filings_host)
        recent = all_filings[:RECENT_FILINGS_LIMIT]
        latest_10k = next((f for f in all_filings if f.form == "10-K"), None)

        categories = requested_categories(query)
        company = CompanyKnowledge(identity=identity, recent_filings=recent)

        document: Optional[str] = None
        if latest_10k is not None and ("business" in categories or "risks" in categories):
            check_cancelled(cancelled, "document")
            document = self._fetch_document(cik, latest_10k)
            if document is not None:
                sources.append(DataSource(
                    type="sec_filing",
                    name=f"{identity.name} {latest_10k.form} ({latest_10k.filing_date})",
                ))

        if "business" in categories:
            company.business = self._business_profile(identity, latest_10k, document)

        if "financials" in categories:
            check_cancelled(cancelled, "facts")
            company.financials = self._financial_profile(cik)
            if category_populated(company, "financials"):
                sources.append(DataSource(type="xbrl_data", name=f"SEC XBRL company facts ({identity.name})"))

        if "risks" in categories:
            company.risks = self._risk_profile(document)

        filings = [self._filing_knowledge(identity, f, latest_10k, company) for f in recent]
        newest = recent[0].filing_date if recent else None

        return CompanyOutcome(
            knowledge=company,
            filings=filings,
            sources=sources,
            coverage=company_coverage(company, categories),
            recency=filing_recency(newest, self.today()),
        )

    def _fetch_document(self, cik: str, filing: FilingSummary) -> Optional[str]:
        if not filing.primary_document:
            return None
        try:
            return self.directory.get_document(cik, filing.accession_number, filing.primary_document)
        except ExternalAPIFailure as e:
            logger.warning(f"Document fetch failed for {filing.accession_number}: {e}")
            return None

    def _business_profile(
        self,
        identity: CompanyIdentity,
        filing: Optional[FilingSummary],
        document: Optional[str],
    ) -> BusinessProfile:
        """Item 1 summary from the latest 10-K; industry one-liner otherwise. Never raises."""
        if document:
            try:
                extract = extract_section(document, "business")
                if extract is None:
                    raise ContentParseFailure("Item 1 not found", details={"cik": identity.cik})
                text = extract.text if extract.method == "sentence_pattern" else summarize_business(extract.text)
                if text:
                    return BusinessProfile(
                        description=text,
                        extraction_method=extract.method,
                        source_accession=filing.accession_number if filing else None,
                    )
            except ContentParseFailure as e:
                logger.info(f"{identity.name}: {e.message}")
        return BusinessProfile(
            description=industry_description(identity),
            extraction_method="industry_fallback",
        )

    def _financial_profile(self, cik: str) -> FinancialProfile:
        try:
            facts = self.directory.get_facts(cik)
        except ExternalAPIFailure as e:
            logger.warning(f"Facts fetch failed for CIK {cik}: {e}")
            return FinancialProfile()
        return build_financial_profile(facts, self.trend_calculator, self.ratio_calculator)

    def _risk_profile(self, document: Optional[str]) -> RiskProfile:
        if not document:
            return RiskProfile()
        extract = extract_section(document, "risk_factors")
        if extract is None:
            return RiskProfile()
        return RiskProfile(
            risk_factors=analyze_risk_section(extract.text),
            extraction_method=extract.method,
        )

    def _filing_knowledge(
        self,
        identity: CompanyIdentity,
        filing: FilingSummary,
        latest_10k: Optional[FilingSummary],
        company: CompanyKnowledge,
    ) -> FilingKnowledge:
        content = FilingContent()
        if latest_10k is not None and filing.accession_number == latest_10k.accession_number:
            if company.business and company.business.extraction_method != "industry_fallback":
                content.business_description = company.business.description
            if company.risks:
                content.risk_factors = list(company.risks.risk_factors)
        return FilingKnowledge(
            metadata=FilingMetadata(
                cik=identity.cik,
                company_name=identity.name,
                accession_number=filing.accession_number,
                form=filing.form,
                filing_date=filing.filing_date,
                primary_document=filing.primary_document,
                url=filing.url,
            ),
            content=content,
        )

"""
Financial facts from XBRL company facts.

Latest annual metrics come straight from 10-K-sourced observations. Trend
and ratio computation are pluggable: the extractor takes any
TrendCalculator / RatioCalculator, and the defaults here are deterministic
numpy computations over the same facts structure.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np

from universal_edgar.models import (
    FinancialMetrics,
    FinancialObservation,
    FinancialProfile,
    FinancialRatio,
    FinancialTrend,
)

logger = logging.getLogger(__name__)


# =============================================================================
# XBRL Concept Mappings
# =============================================================================

# Companies may use different concepts for the same metric; first hit wins
METRIC_TO_CONCEPTS: Dict[str, List[str]] = {
    "revenue": [
        "Revenues",
        "Revenue",
        "RevenueFromContractWithCustomerExcludingAssessedTax",
        "SalesRevenueNet",
    ],
    "net_income": ["NetIncomeLoss", "ProfitLoss"],
    "total_assets": ["Assets"],
    "cash": ["CashAndCashEquivalentsAtCarryingValue", "Cash"],
    "debt": ["LongTermDebt", "LongTermDebtNoncurrent"],
    "stockholders_equity": ["StockholdersEquity"],
}

# Duration concepts need a ~12 month window to count as annual
FLOW_METRICS = {"revenue", "net_income"}
ANNUAL_FORM = "10-K"
FLAT_THRESHOLD = 0.02
MIN_ANNUAL_DAYS = 300


def get_concept_data(facts: Dict[str, Any], concept: str) -> Optional[Dict[str, Any]]:
    """Concept payload from normalized ``{concepts: ...}`` or raw ``{facts: {us-gaap: ...}}``."""
    if "concepts" in facts:
        return (facts.get("concepts") or {}).get(concept)
    return ((facts.get("facts") or {}).get("us-gaap") or {}).get(concept)


def _unit_values(concept_data: Dict[str, Any]) -> tuple[str, List[Dict[str, Any]]]:
    units = concept_data.get("units") or {}
    if not units:
        return "USD", []
    unit = "USD" if "USD" in units else next(iter(units))
    return unit, units.get(unit) or []


def _duration_days(entry: Dict[str, Any]) -> Optional[int]:
    start, end = entry.get("start"), entry.get("end")
    if not start or not end:
        return None
    try:
        return (datetime.strptime(end, "%Y-%m-%d") - datetime.strptime(start, "%Y-%m-%d")).days
    except ValueError:
        return None


def latest_annual_observation(concept_data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Observation with the most recent ``end`` among 10-K entries.

    Duration entries shorter than ~10 months (the fourth-quarter figures a
    10-K also tags) are skipped; instant entries have no start and are kept.
    """
    if not concept_data:
        return None
    _, values = _unit_values(concept_data)
    annual = [
        v for v in values
        if v.get("form") == ANNUAL_FORM and v.get("end")
        and (_duration_days(v) is None or _duration_days(v) >= MIN_ANNUAL_DAYS)
    ]
    if not annual:
        return None
    return max(annual, key=lambda v: (v.get("end", ""), v.get("filed", "")))


def _first_concept(facts: Dict[str, Any], metric: str) -> Optional[tuple[str, Dict[str, Any]]]:
    for concept in METRIC_TO_CONCEPTS[metric]:
        data = get_concept_data(facts, concept)
        if data and (data.get("units") or {}):
            return concept, data
    return None


def extract_latest_metrics(facts: Dict[str, Any]) -> FinancialMetrics:
    """Latest 10-K value of each tracked metric."""
    metrics = FinancialMetrics()
    for metric in METRIC_TO_CONCEPTS:
        found = _first_concept(facts, metric)
        if found is None:
            continue
        _, concept_data = found
        latest = latest_annual_observation(concept_data)
        if latest is None or latest.get("val") is None:
            continue
        setattr(metrics, metric, float(latest["val"]))
        if metric == "revenue" or metrics.period_end is None:
            metrics.period_end = latest.get("end")
            metrics.fiscal_year = latest.get("fy")
    return metrics


def annual_series(facts: Dict[str, Any], metric: str) -> List[FinancialObservation]:
    """One 10-K observation per period end, oldest first.

    When several filings report the same period (restatements, comparatives),
    the most recently filed value wins.
    """
    found = _first_concept(facts, metric)
    if found is None:
        return []
    concept, concept_data = found
    unit, values = _unit_values(concept_data)

    by_end: Dict[str, Dict[str, Any]] = {}
    for entry in values:
        if entry.get("form") != ANNUAL_FORM or entry.get("val") is None or not entry.get("end"):
            continue
        if metric in FLOW_METRICS:
            days = _duration_days(entry)
            if days is not None and days < MIN_ANNUAL_DAYS:
                continue
        current = by_end.get(entry["end"])
        if current is None or entry.get("filed", "") >= current.get("filed", ""):
            by_end[entry["end"]] = entry

    return [
        FinancialObservation(
            concept=concept,
            value=float(e["val"]),
            unit=unit,
            end=e["end"],
            form=e.get("form"),
            fiscal_year=e.get("fy"),
            fiscal_period=e.get("fp"),
            filed=e.get("filed"),
            accession_number=e.get("accn"),
        )
        for _, e in sorted(by_end.items())
    ]


# =============================================================================
# Pluggable Analytics
# =============================================================================


class TrendCalculator(ABC):
    @abstractmethod
    def compute(self, facts: Dict[str, Any]) -> List[FinancialTrend]:
        pass


class RatioCalculator(ABC):
    @abstractmethod
    def compute(self, metrics: FinancialMetrics) -> List[FinancialRatio]:
        pass


class AnnualGrowthTrend(TrendCalculator):
    """Year-over-year growth and log-linear CAGR over annual observations.

    CAGR is exp(slope) - 1 of a least-squares line through ln(value) against
    elapsed years, so it uses every period rather than just the endpoints.
    It is only computed when every value is positive.
    """

    def __init__(self, metrics: Optional[List[str]] = None, max_periods: int = 5):
        self.metrics = metrics or ["revenue", "net_income", "total_assets"]
        self.max_periods = max_periods

    def compute(self, facts: Dict[str, Any]) -> List[FinancialTrend]:
        trends: List[FinancialTrend] = []
        for metric in self.metrics:
            series = annual_series(facts, metric)[-self.max_periods:]
            if len(series) < 2:
                continue

            values = np.array([o.value for o in series], dtype=float)
            prev, last = values[-2], values[-1]
            yoy = float((last - prev) / abs(prev)) if prev != 0 else None

            cagr = None
            if np.all(values > 0):
                ends = [datetime.strptime(o.end, "%Y-%m-%d") for o in series]
                years = np.array([(d - ends[0]).days / 365.25 for d in ends])
                if years[-1] > 0:
                    slope, _ = np.polyfit(years, np.log(values), 1)
                    cagr = float(np.exp(slope) - 1)

            basis = yoy if yoy is not None else cagr
            if basis is None or abs(basis) < FLAT_THRESHOLD:
                direction = "flat"
            else:
                direction = "up" if basis > 0 else "down"

            trends.append(FinancialTrend(
                metric=metric,
                direction=direction,
                yoy_growth=yoy,
                cagr=cagr,
                periods=len(series),
                start_period=series[0].end,
                end_period=series[-1].end,
            ))
        return trends


class StandardRatios(RatioCalculator):
    """Ratios over the latest annual metrics. Skipped when an input is missing or a denominator is zero."""

    RATIOS = [
        ("net_margin", "net_income", "revenue"),
        ("return_on_assets", "net_income", "total_assets"),
        ("debt_to_equity", "debt", "stockholders_equity"),
        ("cash_to_assets", "cash", "total_assets"),
    ]

    def compute(self, metrics: FinancialMetrics) -> List[FinancialRatio]:
        ratios: List[FinancialRatio] = []
        for name, numerator, denominator in self.RATIOS:
            num = getattr(metrics, numerator)
            den = getattr(metrics, denominator)
            if num is None or den in (None, 0):
                continue
            ratios.append(FinancialRatio(
                name=name,
                value=round(num / den, 4),
                numerator=numerator,
                denominator=denominator,
                period_end=metrics.period_end,
            ))
        return ratios


def build_financial_profile(
    facts: Dict[str, Any],
    trend_calculator: Optional[TrendCalculator] = None,
    ratio_calculator: Optional[RatioCalculator] = None,
) -> FinancialProfile:
    """Latest metrics plus whatever the calculators derive from them."""
    metrics = extract_latest_metrics(facts)
    trends = trend_calculator.compute(facts) if trend_calculator else []
    ratios = ratio_calculator.compute(metrics) if ratio_calculator else []
    return FinancialProfile(metrics=metrics, trends=trends, ratios=ratios)

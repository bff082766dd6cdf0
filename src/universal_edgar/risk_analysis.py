"""
Risk factor splitting and classification.

Splits an Item 1A body into candidate factors, then assigns each exactly
one category (first keyword match in priority order) and a severity from a
keyword ladder. Pure functions over text.
"""
from __future__ import annotations

import logging
import re
from typing import List, Tuple

from universal_edgar.models import RiskFactor

logger = logging.getLogger(__name__)

MAX_RISK_FACTORS = 10
MIN_FACTOR_CHARS = 50
MAX_DESCRIPTION_CHARS = 500

# =============================================================================
# Splitting
# =============================================================================

# Ordered pattern families
BULLET_PATTERN = re.compile(r"(?:^|\n)\s*(?:[•·\-\*]|\(?\d{1,2}[.)])\s*([^\n]{50,})")
HEADER_PARAGRAPH_PATTERN = re.compile(r"(?:^|\n)\s*([A-Z][^\n]{20,100})\s*[\n\r]\s*([^\n]{100,})")
KEYWORD_SENTENCE_PATTERN = re.compile(
    r"(?:^|\.)\s*([^.]*?(?:risk|uncertainty|challenge|threat|adverse|negative|decline|volatility)"
    r"[^.]*?\.[^.]*?\.[^.]*?\.)",
    re.IGNORECASE,
)


def _normalize(text: str) -> str:
    return " ".join(text.split()).strip()


def split_risk_factors(section_text: str, limit: int = MAX_RISK_FACTORS) -> List[str]:
    """Split a risk section into at most ``limit`` factor descriptions.

    Families are tried in order (bullets, header+paragraph pairs, keyword
    sentence runs) and each contributes until the cap is reached.
    """
    factors: List[str] = []
    seen = set()

    def _add(candidate: str) -> None:
        text = _normalize(candidate)
        if len(text) <= MIN_FACTOR_CHARS or len(factors) >= limit:
            return
        key = text[:80].lower()
        if key in seen:
            return
        seen.add(key)
        factors.append(text[:MAX_DESCRIPTION_CHARS])

    for match in BULLET_PATTERN.finditer(section_text):
        _add(match.group(1))

    if len(factors) < limit:
        for match in HEADER_PARAGRAPH_PATTERN.finditer(section_text):
            _add(f"{match.group(1).strip()}: {match.group(2).strip()}")

    if len(factors) < limit:
        for match in KEYWORD_SENTENCE_PATTERN.finditer(section_text):
            _add(match.group(1))

    return factors


# =============================================================================
# Classification
# =============================================================================

# (category, keywords), priority order
CATEGORY_KEYWORDS: List[Tuple[str, List[str]]] = [
    ("Cybersecurity & Data Protection", ["cyber", "data", "security"]),
    ("Regulatory & Legal", ["regulatory", "compliance", "legal"]),
    ("Market & Competition", ["market", "competition", "customer"]),
    ("Financial", ["financial", "credit", "liquidity"]),
    ("Operational", ["operational", "supply", "manufacturing"]),
    ("Technology & IP", ["technology", "innovation", "intellectual"]),
    ("Human Capital", ["human", "talent", "employee"]),
    ("Environmental & Climate", ["environmental", "climate", "sustainability"]),
]

SEVERITY_LADDER: List[Tuple[str, List[str]]] = [
    ("critical", ["material adverse", "significant harm", "going concern", "bankruptcy"]),
    ("high", ["substantial", "significant", "materially", "severe"]),
    ("medium", ["adverse", "negative", "harm", "impact"]),
]


def categorize_risk(text: str) -> str:
    lowered = text.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(k in lowered for k in keywords):
            return category
    return "General Business"


def assess_severity(text: str) -> str:
    lowered = text.lower()
    for severity, keywords in SEVERITY_LADDER:
        if any(k in lowered for k in keywords):
            return severity
    return "low"


def analyze_risk_section(section_text: str, limit: int = MAX_RISK_FACTORS) -> List[RiskFactor]:
    """Split, categorize and grade the factors in a risk section."""
    factors = [
        RiskFactor(
            category=categorize_risk(text),
            description=text,
            severity=assess_severity(text),
        )
        for text in split_risk_factors(section_text, limit)
    ]
    logger.debug(f"Classified {len(factors)} risk factors")
    return factors

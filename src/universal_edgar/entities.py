"""
Company resolution and industry lookup tables.

The curated table is intentionally small: it backs the deterministic parser
fallback and resolves tickers/names when a query does not carry a CIK.
"""
from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from universal_edgar.errors import EntityResolutionFailure

logger = logging.getLogger(__name__)


class EntityInfo(BaseModel):
    """Information about a company resolved from ticker or name."""

    ticker: str
    company_name: str
    cik: str  # 10-digit zero-padded string
    name_patterns: List[str] = Field(default_factory=list)


def pad_cik(cik) -> str:
    """Zero-pad a CIK to 10 digits.

    Raises:
        ValueError: If the CIK is not numeric.
    """
    value = str(cik).strip()
    if value.upper().startswith("CIK"):
        value = value[3:]
    if not value.isdigit():
        raise ValueError(f"CIK must be numeric: {cik!r}")
    return value.zfill(10)


# =============================================================================
# Curated Companies
# =============================================================================

KNOWN_COMPANIES: List[EntityInfo] = [
    EntityInfo(ticker="TSLA", company_name="Tesla", cik="0001318605", name_patterns=[r"\btesla\b"]),
    EntityInfo(ticker="AAPL", company_name="Apple", cik="0000320193", name_patterns=[r"\bapple\b"]),
    EntityInfo(ticker="MSFT", company_name="Microsoft", cik="0000789019", name_patterns=[r"\bmicrosoft\b"]),
    EntityInfo(
        ticker="GOOGL", company_name="Alphabet", cik="0001652044",
        name_patterns=[r"\bgoogle\b", r"\balphabet\b"],
    ),
    EntityInfo(ticker="AMZN", company_name="Amazon", cik="0001018724", name_patterns=[r"\bamazon\b"]),
    EntityInfo(
        ticker="META", company_name="Meta", cik="0001326801",
        name_patterns=[r"\bmeta\b", r"\bfacebook\b"],
    ),
    EntityInfo(ticker="NVDA", company_name="NVIDIA", cik="0001045810", name_patterns=[r"\bnvidia\b"]),
    EntityInfo(ticker="NFLX", company_name="Netflix", cik="0001065280", name_patterns=[r"\bnetflix\b"]),
    EntityInfo(ticker="JPM", company_name="JPMorgan Chase", cik="0000019617", name_patterns=[r"\bjp\s*morgan\b"]),
    EntityInfo(ticker="INTC", company_name="Intel", cik="0000050863", name_patterns=[r"\bintel\b"]),
]

_BY_TICKER = {e.ticker: e for e in KNOWN_COMPANIES}
_BY_CIK = {e.cik: e for e in KNOWN_COMPANIES}


def resolve_entity(identifier: str) -> Optional[EntityInfo]:
    """Resolve a ticker, CIK or company name against the curated table.

    Args:
        identifier: Ticker ("AAPL"), CIK ("320193") or name ("Apple Inc.")

    Returns:
        EntityInfo, or None if unknown
    """
    if not identifier:
        return None
    ident = identifier.strip()

    if ident.upper() in _BY_TICKER:
        return _BY_TICKER[ident.upper()]

    if ident.isdigit():
        return _BY_CIK.get(ident.zfill(10))

    lowered = ident.lower()
    for entity in KNOWN_COMPANIES:
        if any(re.search(p, lowered) for p in entity.name_patterns):
            return entity
    return None


def resolve_cik(identifier: str) -> str:
    """Resolve an identifier to a padded CIK or raise EntityResolutionFailure."""
    entity = resolve_entity(identifier)
    if entity is None:
        raise EntityResolutionFailure(
            f"Could not resolve '{identifier}' to a CIK",
            details={"identifier": identifier},
        )
    return entity.cik


def find_companies_in_text(text: str) -> List[EntityInfo]:
    """Substring-match curated company names, in table order."""
    lowered = text.lower()
    return [
        e for e in KNOWN_COMPANIES
        if any(re.search(p, lowered) for p in e.name_patterns)
    ]


TICKER_PATTERN = re.compile(r"\b[A-Z]{1,5}\b")


def find_tickers_in_text(text: str) -> List[EntityInfo]:
    """Find uppercase ticker symbols that exist in the curated table."""
    found: List[EntityInfo] = []
    for match in TICKER_PATTERN.findall(text):
        entity = _BY_TICKER.get(match)
        if entity is not None and entity not in found:
            found.append(entity)
    return found


# =============================================================================
# SIC -> Sector
# =============================================================================

# (low, high, sector), first match wins
SIC_SECTOR_RANGES: List[Tuple[int, int, str]] = [
    (3700, 3799, "Automotive"),
    (7370, 7379, "Technology"),
    (2830, 2836, "Pharmaceuticals"),
    (2800, 2899, "Chemicals"),
    (3570, 3579, "Technology"),
    (3660, 3679, "Technology"),
    (4800, 4899, "Communications"),
    (5900, 5999, "Retail"),
    (6000, 6799, "Financials"),
    (1300, 1399, "Energy"),
    (2900, 2999, "Energy"),
]


def sector_from_sic(sic) -> str:
    """Map an SIC code to a coarse sector name.

    Returns "Unknown" when the code is missing or unparseable, "Other" when
    it falls outside every known range.
    """
    if sic is None or str(sic).strip() == "":
        return "Unknown"
    try:
        code = int(str(sic).strip())
    except ValueError:
        logger.debug(f"Unparseable SIC code: {sic!r}")
        return "Unknown"
    for low, high, sector in SIC_SECTOR_RANGES:
        if low <= code <= high:
            return sector
    return "Other"

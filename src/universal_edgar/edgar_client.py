"""
SEC EDGAR filings directory client.

Talks to the public JSON endpoints (submissions, companyfacts) and the
Archives document store. Every request, from any thread, passes through one
shared RateLimiter so parallel per-company extraction stays inside the
SEC's 10 requests/second fair-access budget.
"""
from __future__ import annotations

import functools
import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from universal_edgar.config import PipelineConfig
from universal_edgar.entities import pad_cik
from universal_edgar.errors import ExternalAPIFailure
from universal_edgar.ports import FilingsDirectory
from universal_edgar.rate_limit import RateLimiter

logger = logging.getLogger(__name__)


# =============================================================================
# URLs
# =============================================================================


def build_document_url(
    cik: str,
    accession_number: str,
    primary_document: str,
    host: str = "www.sec.gov",
) -> str:
    """Archive URL of a filing's primary document.

    The CIK segment keeps its 10-digit padding; the accession number has
    its dashes removed.
    """
    accession = accession_number.replace("-", "")
    return f"https://{host}/Archives/edgar/data/{pad_cik(cik)}/{accession}/{primary_document}"


def build_browse_url(cik: str, host: str = "www.sec.gov") -> str:
    """EDGAR browse page listing all filings for a company."""
    return f"https://{host}/edgar/browse/?CIK={pad_cik(cik)}&owner=exclude"


# =============================================================================
# Session
# =============================================================================


def get_requests_session(user_agent: str, timeout: float = 30.0) -> requests.Session:
    """
    Creates a requests session with automatic retries for rate limits and server errors.

    Uses exponential backoff: sleeps 1s, 2s, 4s between retries.
    Handles HTTP 429 (Rate Limit) and 5xx server errors.

    Args:
        user_agent: SEC-required identification ("AppName email@domain.com")
        timeout: Default per-request timeout in seconds
    """
    session = requests.Session()

    retry_strategy = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["HEAD", "GET", "OPTIONS"]
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    session.headers.update({
        "User-Agent": user_agent,
        "Accept-Encoding": "gzip, deflate",
    })

    # Prevents hanging indefinitely on slow/unresponsive endpoints
    session.request = functools.partial(session.request, timeout=timeout)

    return session


# =============================================================================
# Normalization
# =============================================================================


def normalize_submissions(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten the submissions document into the directory shape.

    The directory returns ``filings.recent`` as parallel columnar arrays;
    this zips them into one dict per filing, preserving the most-recent-first
    order.
    """
    recent = (raw.get("filings") or {}).get("recent") or {}
    accessions = recent.get("accessionNumber") or []
    forms = recent.get("form") or []
    dates = recent.get("filingDate") or []
    documents = recent.get("primaryDocument") or []

    filings: List[Dict[str, str]] = []
    for i, accession in enumerate(accessions):
        filings.append({
            "accessionNumber": accession,
            "form": forms[i] if i < len(forms) else "",
            "filingDate": dates[i] if i < len(dates) else "",
            "primaryDocument": documents[i] if i < len(documents) else "",
        })

    tickers = raw.get("tickers") or []
    return {
        "cik": raw.get("cik"),
        "name": raw.get("name", ""),
        "ticker": raw.get("ticker") or (tickers[0] if tickers else None),
        "sic": raw.get("sic"),
        "sicDescription": raw.get("sicDescription"),
        "addresses": raw.get("addresses") or {},
        "stateOfIncorporation": raw.get("stateOfIncorporation"),
        "formerNames": [f.get("name") for f in raw.get("formerNames") or [] if f.get("name")],
        "filings": filings,
    }


def normalize_facts(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Merge taxonomies (us-gaap first) into ``{concepts: {name: {units: ...}}}``."""
    if "concepts" in raw:
        return raw
    concepts: Dict[str, Any] = {}
    taxonomies = raw.get("facts") or {}
    ordered = sorted(taxonomies.keys(), key=lambda t: (t != "us-gaap", t))
    for taxonomy in ordered:
        for name, payload in (taxonomies[taxonomy] or {}).items():
            concepts.setdefault(name, {"units": payload.get("units") or {}})
    return {"concepts": concepts, "entityName": raw.get("entityName")}


# =============================================================================
# Client
# =============================================================================


class SECEdgarClient(FilingsDirectory):
    """FilingsDirectory backed by data.sec.gov and the EDGAR Archives."""

    def __init__(
        self,
        user_agent: str,
        limiter: RateLimiter,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        data_host: str = "data.sec.gov",
        filings_host: str = "www.sec.gov",
    ):
        self.limiter = limiter
        self.session = session or get_requests_session(user_agent, timeout)
        self.timeout = timeout
        self.data_host = data_host
        self.filings_host = filings_host

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "SECEdgarClient":
        limiter = RateLimiter("sec_edgar", calls_per_second=config.sec_rate_limit)
        return cls(
            user_agent=config.sec_user_agent or "",
            limiter=limiter,
            timeout=config.sec_timeout_seconds,
            data_host=config.data_host,
            filings_host=config.filings_host,
        )

    def _get(self, url: str) -> requests.Response:
        self.limiter.acquire(timeout=self.timeout)
        logger.debug(f"GET {url}")
        try:
            response = self.session.get(url)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"SEC request failed: {url}: {e}")
            raise ExternalAPIFailure(
                f"Request to {url} failed: {e}",
                details={"url": url},
            ) from e
        return response

    def _get_json(self, url: str) -> Dict[str, Any]:
        response = self._get(url)
        try:
            return response.json()
        except ValueError as e:
            raise ExternalAPIFailure(
                f"Invalid JSON from {url}",
                details={"url": url},
            ) from e

    def get_submissions(self, cik: str) -> Dict[str, Any]:
        url = f"https://{self.data_host}/submissions/CIK{pad_cik(cik)}.json"
        return normalize_submissions(self._get_json(url))

    def get_facts(self, cik: str) -> Dict[str, Any]:
        url = f"https://{self.data_host}/api/xbrl/companyfacts/CIK{pad_cik(cik)}.json"
        return normalize_facts(self._get_json(url))

    def get_document(self, cik: str, accession_number: str, primary_document: str) -> str:
        url = build_document_url(cik, accession_number, primary_document, self.filings_host)
        return self._get(url).text

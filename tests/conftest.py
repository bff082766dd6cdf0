"""
Shared fixtures: deterministic stand-ins for the text provider and the
filings directory, plus a small Apple dataset shaped like normalized EDGAR
responses.
"""
from __future__ import annotations

import threading
from datetime import date
from typing import Any, Dict, List, Optional

import pytest

from universal_edgar.errors import ExternalAPIFailure
from universal_edgar.ports import FilingsDirectory, TextProvider

APPLE_CIK = "0000320193"
MICROSOFT_CIK = "0000789019"
TODAY = date(2024, 1, 15)


# =============================================================================
# Stub Providers
# =============================================================================


class StubTextProvider(TextProvider):
    """Replays canned replies in order; raises ``error`` when set."""

    def __init__(self, responses: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.responses = list(responses or [])
        self.error = error
        self.prompts: List[str] = []

    def complete(self, prompt: str, schema_hint: Optional[str] = None) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        if not self.responses:
            return ""
        return self.responses.pop(0)


class StubDirectory(FilingsDirectory):
    """In-memory filings directory keyed by padded CIK."""

    def __init__(
        self,
        submissions: Optional[Dict[str, Dict[str, Any]]] = None,
        facts: Optional[Dict[str, Dict[str, Any]]] = None,
        documents: Optional[Dict[str, str]] = None,
        failing: Optional[set] = None,
    ):
        self.submissions = submissions or {}
        self.facts = facts or {}
        self.documents = documents or {}
        self.failing = failing or set()
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def _record(self, *call: Any) -> None:
        with self._lock:
            self.calls.append(call)

    def get_submissions(self, cik: str) -> Dict[str, Any]:
        self._record("submissions", cik)
        if cik in self.failing or cik not in self.submissions:
            raise ExternalAPIFailure(f"submissions unavailable for {cik}")
        return self.submissions[cik]

    def get_facts(self, cik: str) -> Dict[str, Any]:
        self._record("facts", cik)
        if cik in self.failing or cik not in self.facts:
            raise ExternalAPIFailure(f"facts unavailable for {cik}")
        return self.facts[cik]

    def get_document(self, cik: str, accession_number: str, primary_document: str) -> str:
        self._record("document", cik, accession_number)
        if accession_number not in self.documents:
            raise ExternalAPIFailure(f"document {accession_number} not found")
        return self.documents[accession_number]


# =============================================================================
# Apple Dataset
# =============================================================================


APPLE_FILINGS = [
    {"accessionNumber": "0000320193-23-000106", "form": "10-K", "filingDate": "2023-11-03",
     "primaryDocument": "aapl-20230930.htm"},
    {"accessionNumber": "0000320193-23-000104", "form": "8-K", "filingDate": "2023-11-02",
     "primaryDocument": "aapl-20231102.htm"},
    {"accessionNumber": "0000320193-23-000077", "form": "10-Q", "filingDate": "2023-08-04",
     "primaryDocument": "aapl-20230701.htm"},
    {"accessionNumber": "0000320193-23-000064", "form": "10-Q", "filingDate": "2023-05-05",
     "primaryDocument": "aapl-20230401.htm"},
    {"accessionNumber": "0000320193-23-000063", "form": "8-K", "filingDate": "2023-05-04",
     "primaryDocument": "aapl-20230504.htm"},
    {"accessionNumber": "0000320193-23-000006", "form": "10-Q", "filingDate": "2023-02-03",
     "primaryDocument": "aapl-20221231.htm"},
]


APPLE_10K_HTML = """
<html>
<head><style>p { margin: 0; }</style></head>
<body>
<p>Table of Contents</p>
<p>Item 1. Business</p>
<p>Item 1A. Risk Factors</p>
<p>Item 2. Properties</p>
<p>PART I</p>
<p>Item 1. Business</p>
<p>Company Background</p>
<p>The Company designs, manufactures and markets smartphones, personal computers, tablets,
wearables and accessories, and sells a variety of related services. The Company's fiscal
year is the 52- or 53-week period that ends on the last Saturday of September.</p>
<p>iPhone is the Company's line of smartphones based on its iOS operating system. The iPhone
line includes iPhone 15 Pro, iPhone 15, iPhone 14 and iPhone SE.</p>
<p>Item 1A. Risk Factors</p>
<p>The following risks could affect the Company's business, reputation, results of operations
and financial condition.</p>
<p>• The Company faces substantial competition in global markets from companies that have
significant technical, marketing, distribution and other resources.</p>
<p>• The Company is subject to complex and changing laws and regulatory requirements worldwide, which exposes
the Company to potential liabilities, increased costs and other adverse effects on its business.</p>
<p>• Losses or unauthorized access to or releases of confidential data, including personal
information, could subject the Company to significant reputational, financial, legal and operational consequences.</p>
<p>Item 1B. Unresolved Staff Comments</p>
<p>None.</p>
<p>Item 2. Properties</p>
<p>The Company's headquarters are located in Cupertino, California.</p>
</body>
</html>
"""


def _annual(val: float, start: str, end: str, fy: int, filed: str, accn: str) -> Dict[str, Any]:
    return {"start": start, "end": end, "val": val, "form": "10-K", "fy": fy, "fp": "FY",
            "filed": filed, "accn": accn}


def _instant(val: float, end: str, fy: int, filed: str, accn: str) -> Dict[str, Any]:
    return {"end": end, "val": val, "form": "10-K", "fy": fy, "fp": "FY", "filed": filed, "accn": accn}


def make_apple_facts() -> Dict[str, Any]:
    return {
        "concepts": {
            "RevenueFromContractWithCustomerExcludingAssessedTax": {"units": {"USD": [
                _annual(365_817_000_000, "2020-09-27", "2021-09-25", 2021, "2021-10-29", "0000320193-21-000105"),
                _annual(394_328_000_000, "2021-09-26", "2022-09-24", 2022, "2022-10-28", "0000320193-22-000108"),
                _annual(383_285_000_000, "2022-09-25", "2023-09-30", 2023, "2023-11-03", "0000320193-23-000106"),
                # Fourth-quarter figure tagged in the same 10-K
                _annual(89_498_000_000, "2023-07-02", "2023-09-30", 2023, "2023-11-03", "0000320193-23-000106"),
                {"start": "2023-07-02", "end": "2023-09-30", "val": 89_498_000_000, "form": "10-Q",
                 "fy": 2023, "fp": "Q4", "filed": "2023-11-03", "accn": "0000320193-23-000106"},
            ]}},
            "NetIncomeLoss": {"units": {"USD": [
                _annual(99_803_000_000, "2021-09-26", "2022-09-24", 2022, "2022-10-28", "0000320193-22-000108"),
                _annual(96_995_000_000, "2022-09-25", "2023-09-30", 2023, "2023-11-03", "0000320193-23-000106"),
            ]}},
            "Assets": {"units": {"USD": [
                _instant(352_755_000_000, "2022-09-24", 2022, "2022-10-28", "0000320193-22-000108"),
                _instant(352_583_000_000, "2023-09-30", 2023, "2023-11-03", "0000320193-23-000106"),
            ]}},
            "CashAndCashEquivalentsAtCarryingValue": {"units": {"USD": [
                _instant(29_965_000_000, "2023-09-30", 2023, "2023-11-03", "0000320193-23-000106"),
            ]}},
            "LongTermDebt": {"units": {"USD": [
                _instant(95_281_000_000, "2023-09-30", 2023, "2023-11-03", "0000320193-23-000106"),
            ]}},
            "StockholdersEquity": {"units": {"USD": [
                _instant(62_146_000_000, "2023-09-30", 2023, "2023-11-03", "0000320193-23-000106"),
            ]}},
        }
    }


def make_apple_submissions() -> Dict[str, Any]:
    return {
        "cik": "320193",
        "name": "Apple Inc.",
        "ticker": "AAPL",
        "sic": "3571",
        "sicDescription": "Electronic Computers",
        "addresses": {"business": {"street1": "One Apple Park Way", "city": "Cupertino",
                                   "stateOrCountry": "CA", "stateOrCountryDescription": "CA"}},
        "stateOfIncorporation": "CA",
        "formerNames": ["APPLE COMPUTER INC"],
        "filings": [dict(f) for f in APPLE_FILINGS],
    }


def make_microsoft_submissions() -> Dict[str, Any]:
    return {
        "cik": "789019",
        "name": "MICROSOFT CORP",
        "ticker": "MSFT",
        "sic": "7372",
        "sicDescription": "Services-Prepackaged Software",
        "addresses": {},
        "stateOfIncorporation": "WA",
        "formerNames": [],
        "filings": [
            {"accessionNumber": "0000950170-23-035122", "form": "10-K", "filingDate": "2023-07-27",
             "primaryDocument": "msft-20230630.htm"},
        ],
    }


def make_microsoft_facts() -> Dict[str, Any]:
    return {
        "concepts": {
            "RevenueFromContractWithCustomerExcludingAssessedTax": {"units": {"USD": [
                _annual(211_915_000_000, "2022-07-01", "2023-06-30", 2023, "2023-07-27", "0000950170-23-035122"),
            ]}},
            "NetIncomeLoss": {"units": {"USD": [
                _annual(72_361_000_000, "2022-07-01", "2023-06-30", 2023, "2023-07-27", "0000950170-23-035122"),
            ]}},
        }
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def apple_submissions() -> Dict[str, Any]:
    return make_apple_submissions()


@pytest.fixture
def apple_facts() -> Dict[str, Any]:
    return make_apple_facts()


@pytest.fixture
def apple_10k_html() -> str:
    return APPLE_10K_HTML


@pytest.fixture
def directory() -> StubDirectory:
    """Apple and Microsoft, with Apple's latest 10-K document available."""
    return StubDirectory(
        submissions={APPLE_CIK: make_apple_submissions(), MICROSOFT_CIK: make_microsoft_submissions()},
        facts={APPLE_CIK: make_apple_facts(), MICROSOFT_CIK: make_microsoft_facts()},
        documents={"0000320193-23-000106": APPLE_10K_HTML},
    )


@pytest.fixture
def today() -> date:
    return TODAY

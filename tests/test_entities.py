"""
Tests for entities.py - CIK padding, curated resolution and SIC sectors.
"""
from __future__ import annotations

import pytest

from universal_edgar.entities import (
    find_companies_in_text,
    find_tickers_in_text,
    pad_cik,
    resolve_cik,
    resolve_entity,
    sector_from_sic,
)
from universal_edgar.errors import EntityResolutionFailure


class TestPadCik:

    @pytest.mark.parametrize("raw,padded", [
        ("320193", "0000320193"),
        (320193, "0000320193"),
        ("CIK0000789019", "0000789019"),
        (" 1318605 ", "0001318605"),
    ])
    def test_padding(self, raw, padded: str):
        assert pad_cik(raw) == padded

    def test_rejects_non_numeric(self):
        with pytest.raises(ValueError):
            pad_cik("AAPL")


class TestResolveEntity:

    def test_ticker(self):
        assert resolve_entity("aapl").company_name == "Apple"

    def test_cik(self):
        assert resolve_entity("789019").ticker == "MSFT"

    def test_name(self):
        assert resolve_entity("Alphabet Inc.").ticker == "GOOGL"
        assert resolve_entity("google").cik == "0001652044"

    def test_unknown(self):
        assert resolve_entity("Acme Widgets") is None
        assert resolve_entity("") is None

    def test_resolve_cik_raises(self):
        assert resolve_cik("Tesla") == "0001318605"
        with pytest.raises(EntityResolutionFailure) as exc_info:
            resolve_cik("Acme Widgets")
        assert exc_info.value.details == {"identifier": "Acme Widgets"}


class TestTextSearch:

    def test_names_in_table_order(self):
        found = find_companies_in_text("How does Microsoft compare to Apple and Facebook?")
        assert [e.ticker for e in found] == ["AAPL", "MSFT", "META"]

    def test_word_boundaries(self):
        assert find_companies_in_text("pineapple metadata") == []

    def test_tickers(self):
        found = find_tickers_in_text("NVDA vs INTC, and AAPL or NVDA again. ZZZZ is unknown")
        assert [e.ticker for e in found] == ["NVDA", "INTC", "AAPL"]


class TestSectorFromSic:

    @pytest.mark.parametrize("sic,sector", [
        ("3571", "Technology"),
        (7372, "Technology"),
        ("3711", "Automotive"),
        ("2834", "Pharmaceuticals"),
        ("2821", "Chemicals"),
        ("6022", "Financials"),
        ("1311", "Energy"),
        ("0100", "Other"),
        (None, "Unknown"),
        ("", "Unknown"),
        ("abc", "Unknown"),
    ])
    def test_mapping(self, sic, sector: str):
        assert sector_from_sic(sic) == sector

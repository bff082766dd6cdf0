"""
Tests for risk_analysis.py - factor splitting, categories and severity.
"""
from __future__ import annotations

import pytest

from universal_edgar.risk_analysis import (
    MAX_DESCRIPTION_CHARS,
    analyze_risk_section,
    assess_severity,
    categorize_risk,
    split_risk_factors,
)
from universal_edgar.section_locator import extract_section


# =============================================================================
# Severity
# =============================================================================


class TestAssessSeverity:

    @pytest.mark.parametrize("text,expected", [
        ("There is substantial doubt about our ability to continue as a going concern.", "critical"),
        ("This could have a material adverse effect on our results.", "critical"),
        ("We face significant competition.", "high"),
        ("Changes in tax law could have an adverse effect.", "medium"),
        ("Weather may affect store traffic.", "low"),
    ])
    def test_ladder(self, text: str, expected: str):
        assert assess_severity(text) == expected

    def test_critical_checked_before_high(self):
        assert assess_severity("A significant harm to our brand would be substantial.") == "critical"


# =============================================================================
# Categories
# =============================================================================


class TestCategorizeRisk:

    @pytest.mark.parametrize("text,expected", [
        ("A cyber attack could disrupt our systems.", "Cybersecurity & Data Protection"),
        ("New compliance obligations may increase costs.", "Regulatory & Legal"),
        ("Competition from new entrants may reduce prices.", "Market & Competition"),
        ("Our liquidity depends on credit markets.", "Market & Competition"),
        ("We depend on liquidity from our lenders.", "Financial"),
        ("Supply disruptions could delay shipments.", "Operational"),
        ("We may fail to protect our intellectual property.", "Technology & IP"),
        ("We must attract and retain talent.", "Human Capital"),
        ("Climate change may affect our facilities.", "Environmental & Climate"),
        ("Our stock price may fluctuate.", "General Business"),
    ])
    def test_first_match_in_priority_order(self, text: str, expected: str):
        assert categorize_risk(text) == expected


# =============================================================================
# Splitting
# =============================================================================


class TestSplitRiskFactors:

    def test_bullets(self):
        text = (
            "• We face intense competition from larger companies with more resources than we have.\n"
            "• Our business depends on a small number of suppliers located outside the United States.\n"
        )
        factors = split_risk_factors(text)
        assert factors[0].startswith("We face intense competition")
        assert factors[1].startswith("Our business depends")

    def test_numbered_items(self):
        text = (
            "1. Demand for our products may decline during an economic downturn in our core markets.\n"
            "2) We rely on third-party logistics providers that we do not control or audit directly.\n"
        )
        assert len(split_risk_factors(text)) == 2

    def test_header_paragraph_pairs(self):
        text = (
            "We may not be able to raise capital\n"
            "Our operations require significant capital and we may be unable to obtain financing on "
            "acceptable terms, which would force us to curtail our growth plans.\n"
        )
        factors = split_risk_factors(text)
        assert factors[0].startswith("We may not be able to raise capital: Our operations")

    def test_short_fragments_are_skipped(self):
        assert split_risk_factors("• Too short to be a factor.") == []

    def test_duplicates_are_removed(self):
        line = "• We face intense competition from larger companies with more resources than we have.\n"
        assert len(split_risk_factors(line * 3)) == 1

    def test_limit(self):
        text = "".join(
            f"• Risk number {i} could harm our business, financial condition and operating results.\n"
            for i in range(15)
        )
        assert len(split_risk_factors(text)) == 10
        assert len(split_risk_factors(text, limit=3)) == 3

    def test_long_descriptions_truncated(self):
        text = "• " + "Our business is exposed to many risks " * 40 + "\n"
        factors = split_risk_factors(text)
        assert len(factors[0]) == MAX_DESCRIPTION_CHARS


# =============================================================================
# analyze_risk_section
# =============================================================================


class TestAnalyzeRiskSection:

    def test_filing_section(self, apple_10k_html: str):
        extract = extract_section(apple_10k_html, "risk_factors")
        factors = analyze_risk_section(extract.text)

        assert len(factors) >= 3
        competition, regulation, data = factors[:3]
        assert competition.category == "Market & Competition"
        assert competition.severity == "high"
        assert regulation.category == "Regulatory & Legal"
        assert regulation.severity == "medium"
        assert data.category == "Cybersecurity & Data Protection"
        assert data.severity == "high"

    def test_defaults(self):
        factors = analyze_risk_section(
            "• Weather patterns may change store traffic in ways that are difficult to predict.\n"
        )
        assert factors[0].likelihood == "medium"
        assert factors[0].trend == "stable"
        assert factors[0].severity == "low"

    def test_empty(self):
        assert analyze_risk_section("") == []

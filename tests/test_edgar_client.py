"""
Tests for edgar_client.py - URL building, response normalization and the
rate-limited HTTP client. No network: the session is a MagicMock.
"""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from universal_edgar.config import PipelineConfig
from universal_edgar.edgar_client import (
    SECEdgarClient,
    build_browse_url,
    build_document_url,
    get_requests_session,
    normalize_facts,
    normalize_submissions,
)
from universal_edgar.errors import ExternalAPIFailure


RAW_SUBMISSIONS = {
    "cik": "320193",
    "name": "Apple Inc.",
    "tickers": ["AAPL", "AAPL.W"],
    "sic": "3571",
    "sicDescription": "Electronic Computers",
    "stateOfIncorporation": "CA",
    "formerNames": [{"name": "APPLE COMPUTER INC", "from": "1994-01-26"}, {"from": "2000-01-01"}],
    "filings": {
        "recent": {
            "accessionNumber": ["0000320193-23-000106", "0000320193-23-000104"],
            "form": ["10-K", "8-K"],
            "filingDate": ["2023-11-03", "2023-11-02"],
            "primaryDocument": ["aapl-20230930.htm"],
        }
    },
}


@pytest.fixture
def session() -> MagicMock:
    return MagicMock()


@pytest.fixture
def limiter() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(session: MagicMock, limiter: MagicMock) -> SECEdgarClient:
    return SECEdgarClient(user_agent="TestApp ops@testcorp.io", limiter=limiter, session=session, timeout=5.0)


def json_response(payload) -> MagicMock:
    response = MagicMock()
    response.json.return_value = payload
    return response


# =============================================================================
# URLs
# =============================================================================


class TestUrls:

    def test_document_url(self):
        url = build_document_url("320193", "0000320193-23-000106", "aapl-20230930.htm")
        assert url == "https://www.sec.gov/Archives/edgar/data/0000320193/000032019323000106/aapl-20230930.htm"

    def test_browse_url(self):
        assert build_browse_url("789019") == "https://www.sec.gov/edgar/browse/?CIK=0000789019&owner=exclude"

    def test_custom_host(self):
        assert build_document_url("1", "a-b", "d.htm", host="mirror.local").startswith("https://mirror.local/")


# =============================================================================
# Normalization
# =============================================================================


class TestNormalizeSubmissions:

    def test_columns_are_zipped(self):
        normalized = normalize_submissions(RAW_SUBMISSIONS)
        assert normalized["filings"][0] == {
            "accessionNumber": "0000320193-23-000106",
            "form": "10-K",
            "filingDate": "2023-11-03",
            "primaryDocument": "aapl-20230930.htm",
        }
        # Short columns fill with empty strings
        assert normalized["filings"][1]["primaryDocument"] == ""

    def test_identity_fields(self):
        normalized = normalize_submissions(RAW_SUBMISSIONS)
        assert normalized["ticker"] == "AAPL"
        assert normalized["sicDescription"] == "Electronic Computers"
        assert normalized["formerNames"] == ["APPLE COMPUTER INC"]

    def test_empty_document(self):
        normalized = normalize_submissions({})
        assert normalized["filings"] == []
        assert normalized["ticker"] is None
        assert normalized["addresses"] == {}


class TestNormalizeFacts:

    def test_us_gaap_wins(self):
        raw = {
            "entityName": "Apple Inc.",
            "facts": {
                "dei": {"Revenues": {"units": {"USD": ["dei"]}}},
                "us-gaap": {"Revenues": {"units": {"USD": ["gaap"]}}, "Assets": {"units": {}}},
            },
        }
        normalized = normalize_facts(raw)
        assert normalized["entityName"] == "Apple Inc."
        assert normalized["concepts"]["Revenues"]["units"]["USD"] == ["gaap"]
        assert "Assets" in normalized["concepts"]

    def test_already_normalized(self):
        payload = {"concepts": {"Assets": {"units": {}}}}
        assert normalize_facts(payload) is payload


# =============================================================================
# Client
# =============================================================================


class TestSECEdgarClient:

    def test_get_submissions(self, client: SECEdgarClient, session: MagicMock, limiter: MagicMock):
        session.get.return_value = json_response(RAW_SUBMISSIONS)

        result = client.get_submissions("320193")

        session.get.assert_called_once_with("https://data.sec.gov/submissions/CIK0000320193.json")
        limiter.acquire.assert_called_once_with(timeout=5.0)
        assert result["name"] == "Apple Inc."

    def test_get_facts(self, client: SECEdgarClient, session: MagicMock):
        session.get.return_value = json_response({"facts": {"us-gaap": {}}})
        assert client.get_facts("0000320193") == {"concepts": {}, "entityName": None}
        session.get.assert_called_once_with(
            "https://data.sec.gov/api/xbrl/companyfacts/CIK0000320193.json"
        )

    def test_get_document(self, client: SECEdgarClient, session: MagicMock):
        session.get.return_value = MagicMock(text="<html>10-K</html>")
        assert client.get_document("320193", "0000320193-23-000106", "aapl.htm") == "<html>10-K</html>"

    def test_http_error_becomes_external_failure(self, client: SECEdgarClient, session: MagicMock):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("404 Client Error")
        session.get.return_value = response

        with pytest.raises(ExternalAPIFailure) as exc_info:
            client.get_submissions("320193")
        assert exc_info.value.details["url"].endswith("CIK0000320193.json")

    def test_connection_error(self, client: SECEdgarClient, session: MagicMock):
        session.get.side_effect = requests.ConnectionError("connection reset")
        with pytest.raises(ExternalAPIFailure, match="connection reset"):
            client.get_facts("320193")

    def test_invalid_json(self, client: SECEdgarClient, session: MagicMock):
        response = MagicMock()
        response.json.side_effect = ValueError("Expecting value")
        session.get.return_value = response
        with pytest.raises(ExternalAPIFailure, match="Invalid JSON"):
            client.get_submissions("320193")

    def test_non_numeric_cik(self, client: SECEdgarClient):
        with pytest.raises(ValueError):
            client.get_submissions("AAPL")

    def test_from_config(self):
        config = PipelineConfig(
            anthropic_api_key="key",
            sec_user_agent="TestApp ops@testcorp.io",
            filings_host="mirror.local",
        )
        client = SECEdgarClient.from_config(config)
        assert client.filings_host == "mirror.local"
        assert client.session.headers["User-Agent"] == "TestApp ops@testcorp.io"
        assert client.limiter.name == "sec_edgar"


class TestRequestsSession:

    def test_retry_adapter_mounted(self):
        session = get_requests_session("TestApp ops@testcorp.io")
        adapter = session.get_adapter("https://data.sec.gov/")
        assert adapter.max_retries.total == 3
        assert 429 in adapter.max_retries.status_forcelist
        assert session.headers["User-Agent"] == "TestApp ops@testcorp.io"

"""
Ports - Interfaces for external collaborators

The pipeline depends only on these. Real implementations live in
edgar_client, llm and tool_router; tests substitute deterministic stubs.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from mcp.types import CallToolResult


class TextProvider(ABC):
    """Port for the text-understanding / text-generation collaborator"""

    @abstractmethod
    def complete(self, prompt: str, schema_hint: Optional[str] = None) -> str:
        """Return the raw completion text. Raise on transport failure or timeout."""
        pass


class FilingsDirectory(ABC):
    """Port for the regulatory filings directory"""

    @abstractmethod
    def get_submissions(self, cik: str) -> Dict[str, Any]:
        """Company metadata plus recent filings, most recent first:
        {name, ticker, sic, sicDescription, addresses, stateOfIncorporation,
         filings: [{accessionNumber, form, filingDate, primaryDocument}, ...]}
        """
        pass

    @abstractmethod
    def get_facts(self, cik: str) -> Dict[str, Any]:
        """XBRL facts: {concepts: {name: {units: {unit: [observation, ...]}}}}"""
        pass

    @abstractmethod
    def get_document(self, cik: str, accession_number: str, primary_document: str) -> str:
        """Raw text/HTML of a filing's primary document"""
        pass


class ToolClient(ABC):
    """Port for a remote tool server (one named tool per call)"""

    @abstractmethod
    def call_tool(self, name: str, arguments: Dict[str, Any]) -> CallToolResult:
        """Invoke a tool. Failures the server reports come back with ``isError`` set."""
        pass

    @abstractmethod
    def list_tools(self) -> List[str]:
        """Names of the tools this client can call"""
        pass

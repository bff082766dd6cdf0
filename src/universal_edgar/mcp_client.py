"""
Remote tool client for an EDGAR MCP server.

Speaks the Model Context Protocol over streamable HTTP (``{url}/mcp``) or
SSE (``{url}/sse``). The pipeline is synchronous, so every operation opens
a short-lived session on its own event loop; the orchestrator already runs
queries on a worker thread.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.types import CallToolResult

from universal_edgar.errors import EdgarPipelineError, ExternalAPIFailure
from universal_edgar.ports import ToolClient

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "http://localhost:8080"
TRANSPORTS = ("streamable_http", "sse")


class McpToolClient(ToolClient):
    """ToolClient backed by a remote MCP server.

    Args:
        server_url: Base URL of the server (transport path is appended)
        transport: "streamable_http" or "sse"
        timeout: Read timeout for each request, in seconds
    """

    def __init__(
        self,
        server_url: str = DEFAULT_SERVER_URL,
        transport: str = "streamable_http",
        timeout: float = 30.0,
    ):
        if transport not in TRANSPORTS:
            raise ValueError(f"Unknown MCP transport: {transport}")
        self.server_url = server_url.rstrip("/")
        self.transport = transport
        self.timeout = timeout
        self._tool_names: Optional[List[str]] = None

    @property
    def endpoint(self) -> str:
        return f"{self.server_url}/sse" if self.transport == "sse" else f"{self.server_url}/mcp"

    def _connect(self):
        if self.transport == "sse":
            return sse_client(self.endpoint)
        return streamablehttp_client(self.endpoint)

    async def _with_session(self, operation: Callable[[ClientSession], Awaitable[Any]]) -> Any:
        async with self._connect() as streams:
            read_stream, write_stream = streams[0], streams[1]
            async with ClientSession(
                read_stream,
                write_stream,
                read_timeout_seconds=timedelta(seconds=self.timeout),
            ) as session:
                await session.initialize()
                return await operation(session)

    def _run(self, operation: Callable[[ClientSession], Awaitable[Any]], description: str) -> Any:
        try:
            return asyncio.run(self._with_session(operation))
        except EdgarPipelineError:
            raise
        except Exception as e:
            logger.warning(f"MCP {description} against {self.endpoint} failed: {e}")
            raise ExternalAPIFailure(
                f"Tool server {description} failed: {e}",
                details={"server": self.endpoint, "operation": description},
            ) from e

    # -------------------------------------------------------------------------
    # ToolClient
    # -------------------------------------------------------------------------

    def call_tool(self, name: str, arguments: Dict[str, Any]) -> CallToolResult:
        logger.debug(f"MCP call_tool: {name} args={arguments}")
        return self._run(lambda session: session.call_tool(name, arguments), f"call {name}")

    def list_tools(self) -> List[str]:
        """Tool names offered by the server (fetched once per client)."""
        if self._tool_names is None:
            listing = self._run(lambda session: session.list_tools(), "tool listing")
            self._tool_names = [tool.name for tool in listing.tools]
        return list(self._tool_names)

    def ping(self) -> bool:
        try:
            self._run(lambda session: session.send_ping(), "ping")
        except ExternalAPIFailure:
            return False
        return True

"""
MCP tool transport.

Graphs call tools on one MCP server over streamable HTTP. Open the client
with ``async with`` in the task that runs the graph; node steps then share
the session through ``call_tool``.
"""

import logging
from contextlib import AsyncExitStack
from datetime import timedelta
from typing import Any, Dict, Optional, Protocol

from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client
from mcp.types import CallToolResult, Implementation

from agentlib.config import settings
from agentlib.exceptions import ExecutionError

logger = logging.getLogger(__name__)


class ToolTransport(Protocol):
    """Anything that can call a named tool with an argument map."""

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> CallToolResult:
        ...


class MCPClient:
    """Session-holding MCP client implementing ``ToolTransport``."""

    def __init__(
        self,
        server_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.server_url = server_url or settings.mcp_server_url
        if not self.server_url:
            raise ExecutionError("MCP server URL is not configured (set MCP_SERVER_URL)")
        self.timeout_seconds = timeout_seconds or settings.mcp_timeout_seconds
        self._stack: Optional[AsyncExitStack] = None
        self._session: Optional[ClientSession] = None

    async def __aenter__(self) -> "MCPClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def connect(self) -> None:
        if self._session is not None:
            return
        stack = AsyncExitStack()
        try:
            read, write, _ = await stack.enter_async_context(
                streamablehttp_client(
                    self.server_url,
                    timeout=timedelta(seconds=self.timeout_seconds),
                )
            )
            session = await stack.enter_async_context(
                ClientSession(
                    read,
                    write,
                    read_timeout_seconds=timedelta(seconds=self.timeout_seconds),
                    client_info=Implementation(
                        name=settings.mcp_client_name,
                        version=settings.mcp_client_version,
                    ),
                )
            )
            await session.initialize()
        except Exception as e:
            await stack.aclose()
            raise ExecutionError(f"failed to connect to MCP server {self.server_url}: {e}") from e
        self._stack = stack
        self._session = session
        logger.info(f"[MCP] Connected to {self.server_url}")

    async def close(self) -> None:
        if self._stack is not None:
            await self._stack.aclose()
            logger.info(f"[MCP] Disconnected from {self.server_url}")
        self._stack = None
        self._session = None

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> CallToolResult:
        if self._session is None:
            raise ExecutionError("MCP client is not connected")
        try:
            return await self._session.call_tool(name, arguments)
        except Exception as e:
            raise ExecutionError(f"mcp call_tool {name!r} failed: {e}") from e

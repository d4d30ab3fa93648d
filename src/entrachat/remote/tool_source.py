"""
Remote tool source backed by an MCP server.

The server speaks JSON-RPC over either SSE or streamable HTTP; the ``mcp`` SDK handles the
transport and handshake.  We only need two things from it: the tool catalog (once, at session
start) and ``call_tool``.
"""

import logging
from contextlib import AsyncExitStack
from typing import (
    Any,
    Dict,
    List,
    Protocol,
    Sequence,
)

from entrachat.common import (
    RULE,
    AnsiColors,
    colored_print,
)
from entrachat.core.schema import ToolDescriptor
from entrachat.tools import describe_tool

logger = logging.getLogger(__name__)

TRANSPORTS = ("sse", "streamable-http")


class RemoteToolSourceError(RuntimeError):
    """Raised when the MCP session is missing or the transport is unknown."""


class RemoteToolSource(Protocol):
    """What the rest of the client needs from a tool server."""

    async def list_tools(self) -> List[ToolDescriptor]:
        ...

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        ...


class McpToolSource:
    """
    Async context manager holding one MCP client session.

    Usage::

        async with McpToolSource(url, token) as source:
            tools = await source.list_tools()
            result = await source.call_tool("microsoft_graph_get", {"relativeUrl": "/users/$count"})
    """

    def __init__(
        self,
        url: str,
        token: str,
        transport: str = "sse",
        timeout: float = 30.0,
    ) -> None:
        if transport not in TRANSPORTS:
            raise RemoteToolSourceError(
                f"Unknown MCP transport '{transport}' (expected one of {', '.join(TRANSPORTS)})"
            )
        self.url = url
        self.transport = transport
        self.timeout = timeout
        self._headers = {"Authorization": f"Bearer {token}"}
        self._stack: AsyncExitStack | None = None
        self._session: Any = None

    async def __aenter__(self) -> "McpToolSource":
        from mcp import ClientSession  # pylint: disable=import-outside-toplevel

        self._stack = AsyncExitStack()
        await self._stack.__aenter__()
        try:
            logger.info("Connecting to MCP server %s over %s", self.url, self.transport)
            if self.transport == "sse":
                from mcp.client.sse import sse_client  # pylint: disable=import-outside-toplevel

                read_stream, write_stream = await self._stack.enter_async_context(
                    sse_client(self.url, headers=self._headers, timeout=self.timeout)
                )
            else:
                from mcp.client.streamable_http import (  # pylint: disable=import-outside-toplevel
                    streamablehttp_client,
                )

                read_stream, write_stream, _ = await self._stack.enter_async_context(
                    streamablehttp_client(self.url, headers=self._headers, timeout=self.timeout)
                )
            session = await self._stack.enter_async_context(
                ClientSession(read_stream, write_stream)
            )
            await session.initialize()
        except BaseException:
            await self._stack.aclose()
            self._stack = None
            raise

        self._session = session
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._session = None
        if self._stack is not None:
            stack, self._stack = self._stack, None
            await stack.__aexit__(*exc)

    def _require_session(self) -> Any:
        if self._session is None:
            raise RemoteToolSourceError("MCP session is not connected")
        return self._session

    async def list_tools(self) -> List[ToolDescriptor]:
        """Discover the server's tools and attach their argument schemas."""
        listing = await self._require_session().list_tools()
        tools = [describe_tool(tool.name, tool.description) for tool in listing.tools]
        logger.info("Discovered %d MCP tool(s): %s", len(tools), [t.name for t in tools])
        return tools

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        """Invoke *name* and return the SDK's ``CallToolResult``."""
        return await self._require_session().call_tool(name, arguments)


def print_tool_catalog(tools: Sequence[ToolDescriptor]) -> None:
    """Show the operator what the model will be able to call."""
    print("Available MCP Tools:")
    print(RULE)
    for tool in tools:
        colored_print(f"• {tool.name}", AnsiColors.CYAN)
        print(f"  {tool.description}\n")
    print(f"Total tools available: {len(tools)}\n")

"""
MCP server connections and the tools they serve.

Each :class:`McpConnection` owns one client session. The transport and
session contexts are entered and exited by a dedicated owner task, so
connect and close may be called from any task.
"""
from __future__ import annotations

import asyncio
import os
import re
from contextlib import AsyncExitStack
from enum import Enum
from typing import Any

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client

from agent_runtime.cancellation import CancellationToken, run_cancellable
from agent_runtime.config import McpServerConfig
from agent_runtime.errors import ToolExecutionError, TransportError
from agent_runtime.logging import get_logger
from agent_runtime.tools.base import (
    Tool,
    ToolCallConfirmationDetails,
    ToolConfirmationOutcome,
    ToolResult,
)

logger = get_logger("tools.mcp")

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_.-]")


class McpConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


class McpConnection:
    """Lifecycle of one client session: connect, list, call, close."""

    def __init__(self, name: str, config: McpServerConfig) -> None:
        self.name = name
        self.config = config
        self.state = McpConnectionState.DISCONNECTED
        self.session: ClientSession | None = None
        self._task: asyncio.Task | None = None
        self._ready = asyncio.Event()
        self._closing = asyncio.Event()

    def _open_transport(self):
        if self.config.url:
            return sse_client(self.config.url)
        params = StdioServerParameters(
            command=self.config.command,
            args=list(self.config.args),
            env={**os.environ, **self.config.env} if self.config.env else None,
            cwd=self.config.cwd,
        )
        return stdio_client(params)

    async def _serve(self) -> None:
        async with AsyncExitStack() as stack:
            read, write = await stack.enter_async_context(self._open_transport())
            session = await stack.enter_async_context(ClientSession(read, write))
            await session.initialize()
            self.session = session
            self._ready.set()
            await self._closing.wait()

    async def connect(self) -> None:
        """
        Open the transport and initialize the session.

        Raises:
            TransportError: if the server cannot be started or reached,
                or does not initialize within the configured timeout.
        """
        if self.state is not McpConnectionState.DISCONNECTED:
            raise TransportError(f"MCP server '{self.name}' is already {self.state.value}")
        self.state = McpConnectionState.CONNECTING
        self._ready.clear()
        self._closing.clear()
        self._task = asyncio.create_task(self._serve(), name=f"mcp:{self.name}")
        ready = asyncio.create_task(self._ready.wait())
        try:
            await asyncio.wait(
                {self._task, ready},
                timeout=self.config.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            ready.cancel()

        if self._ready.is_set():
            self.state = McpConnectionState.CONNECTED
            logger.debug("Connected to MCP server %s", self.name)
            return

        if self._task.done() and not self._task.cancelled():
            cause: BaseException | None = self._task.exception()
            reason = str(cause) or type(cause).__name__
        else:
            cause = None
            reason = f"timed out after {self.config.timeout}s"
        await self._stop()
        raise TransportError(f"Failed to connect to MCP server '{self.name}': {reason}") from cause

    async def _stop(self) -> None:
        self._closing.set()
        task, self._task = self._task, None
        if task is not None:
            if not self._ready.is_set():
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug("MCP server %s exited with error: %s", self.name, e)
        self.session = None
        self.state = McpConnectionState.DISCONNECTED

    async def close(self) -> None:
        if self.state is McpConnectionState.DISCONNECTED:
            return
        self.state = McpConnectionState.CLOSING
        await self._stop()
        logger.debug("Closed MCP server %s", self.name)

    def _require_session(self) -> ClientSession:
        if self.state is not McpConnectionState.CONNECTED or self.session is None:
            raise TransportError(f"MCP server '{self.name}' is not connected")
        return self.session

    async def list_tools(self) -> list[Any]:
        result = await self._require_session().list_tools()
        return list(result.tools)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        return await self._require_session().call_tool(name, arguments)


def sanitize_tool_name(name: str) -> str:
    """Make a server-provided tool name safe for model function declarations."""
    cleaned = _INVALID_NAME_CHARS.sub("_", name)
    if len(cleaned) > 63:
        cleaned = cleaned[:28] + "___" + cleaned[-32:]
    return cleaned


def content_to_text(content: list[Any]) -> str:
    """Flatten MCP result content blocks into text."""
    parts: list[str] = []
    for block in content or []:
        text = getattr(block, "text", None)
        if text is not None:
            parts.append(text)
        elif getattr(block, "type", None) == "image":
            parts.append(f"[image: {getattr(block, 'mimeType', 'unknown')}]")
        elif getattr(block, "type", None) == "resource":
            resource = getattr(block, "resource", None)
            parts.append(getattr(resource, "text", None) or f"[resource: {getattr(resource, 'uri', '')}]")
        else:
            parts.append(str(block))
    return "\n".join(parts)


class McpTool(Tool):
    """
    A tool served by an MCP server.

    ``allowlist`` is shared with the owning registry; an "always" approval
    adds ``server`` or ``server.tool`` to it.
    """

    kind = "mcp"

    def __init__(
        self,
        connection: McpConnection,
        server_tool_name: str,
        description: str,
        parameter_schema: dict[str, Any] | None,
        allowlist: set[str],
        trust: bool = False,
        timeout: float | None = None,
    ) -> None:
        super().__init__(
            name=sanitize_tool_name(server_tool_name),
            description=description or "",
            parameter_schema=parameter_schema,
            requires_confirmation=not trust,
            display_name=f"{server_tool_name} ({connection.name} MCP Server)",
        )
        self.connection = connection
        self.server_name = connection.name
        self.server_tool_name = server_tool_name
        self.allowlist = allowlist
        self.trust = trust
        self.timeout = timeout

    async def should_confirm_execute(
        self, params: dict[str, Any], cancel: CancellationToken | None = None
    ) -> ToolCallConfirmationDetails | None:
        server_key = self.server_name
        tool_key = f"{self.server_name}.{self.server_tool_name}"
        if self.trust or server_key in self.allowlist or tool_key in self.allowlist:
            return None

        def on_confirm(outcome: ToolConfirmationOutcome) -> None:
            if outcome is ToolConfirmationOutcome.PROCEED_ALWAYS_SERVER:
                self.allowlist.add(server_key)
            elif outcome is ToolConfirmationOutcome.PROCEED_ALWAYS_TOOL:
                self.allowlist.add(tool_key)

        return ToolCallConfirmationDetails(
            type="mcp",
            title="Confirm MCP Tool Execution",
            prompt=f"{self.server_name} wants to run {self.server_tool_name}: {self.get_description(params)}",
            on_confirm=on_confirm,
        )

    async def run(self, params: dict[str, Any], cancel: CancellationToken | None) -> ToolResult:
        call = self.connection.call_tool(self.server_tool_name, params)
        if self.timeout is not None:
            call = asyncio.wait_for(call, self.timeout)
        try:
            result = await run_cancellable(call, cancel, f"MCP tool {self.name} was cancelled.")
        except asyncio.TimeoutError as e:
            raise ToolExecutionError(
                f"MCP tool {self.server_tool_name} timed out after {self.timeout}s"
            ) from e

        text = content_to_text(getattr(result, "content", []))
        if getattr(result, "isError", False):
            raise ToolExecutionError(text or f"MCP tool {self.server_tool_name} reported an error")
        return ToolResult(llm_content=text, return_display=text)


async def discover_server_tools(
    name: str, config: McpServerConfig, allowlist: set[str]
) -> tuple[McpConnection, list[McpTool]]:
    """
    Connect to one server and wrap its tools.

    The connection is closed again if listing fails.
    """
    connection = McpConnection(name, config)
    await connection.connect()
    try:
        listed = await connection.list_tools()
    except BaseException:
        await connection.close()
        raise
    tools = [
        McpTool(
            connection,
            server_tool_name=tool.name,
            description=tool.description or "",
            parameter_schema=tool.inputSchema,
            allowlist=allowlist,
            trust=config.trust,
            timeout=config.timeout,
        )
        for tool in listed
    ]
    logger.info("Discovered %d tool(s) from MCP server %s", len(tools), name)
    return connection, tools

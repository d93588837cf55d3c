"""
The tool registry.

One registry per session, owned by its creator and passed by reference.
Tools come from three sources: static registration, a discovery command
and configured MCP servers. Each discovery pass rebuilds the discovered
set and publishes it with a single assignment.
"""
from __future__ import annotations

import asyncio
from pathlib import Path

from agent_runtime.config import McpServerConfig, RuntimeConfig
from agent_runtime.errors import ProtocolError, ToolExecutionError
from agent_runtime.logging import get_logger
from agent_runtime.security import (
    create_secure_execution_environment,
    split_command,
    validate_tool_command,
)
from agent_runtime.tools.base import Tool
from agent_runtime.tools.discovered import SubprocessTool, parse_discovery_output
from agent_runtime.tools.mcp import McpConnection, McpTool, discover_server_tools
from agent_runtime.tools.process import run_process
from agent_runtime.types import FunctionDeclaration

logger = get_logger("tools.registry")

STATIC = "static"
SUBPROCESS = "subprocess"
MCP = "mcp"


class _Entry:
    """Internal entry holding a tool and the source that contributed it."""

    __slots__ = ("tool", "source")

    def __init__(self, tool: Tool, source: str) -> None:
        self.tool = tool
        self.source = source


class ToolRegistry:
    """
    Name-keyed collection of tools with discovery.

    At most one tool exists per name; a later registration replaces an
    earlier one with a warning.

    Example:
        async with ToolRegistry(discovery_command="python3 tools.py list",
                                call_command="python3 tools.py call") as registry:
            await registry.discover_tools()
            declarations = registry.get_function_declarations()
    """

    def __init__(
        self,
        root: Path | str | None = None,
        discovery_command: str | None = None,
        call_command: str | None = None,
        mcp_servers: dict[str, McpServerConfig] | None = None,
        discovery_timeout: float | None = 60.0,
    ) -> None:
        self.root = Path(root) if root is not None else Path.cwd()
        self.discovery_command = discovery_command
        self.call_command = call_command
        self.mcp_servers = dict(mcp_servers or {})
        self.discovery_timeout = discovery_timeout
        # "server" or "server.tool" keys approved with an "always" outcome
        self.mcp_allowlist: set[str] = set()
        self._tools: dict[str, _Entry] = {}
        self._connections: dict[str, McpConnection] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> ToolRegistry:
        return cls(
            root=config.target_dir,
            discovery_command=config.tool_discovery_command,
            call_command=config.tool_call_command,
            mcp_servers=config.mcp_servers,
        )

    def register_tool(self, tool: Tool) -> None:
        self._insert(tool, STATIC)

    def _insert(self, tool: Tool, source: str, tools: dict[str, _Entry] | None = None) -> None:
        target = self._tools if tools is None else tools
        if tool.name in target:
            logger.warning(
                "Tool with name %r is already registered (%s); overwriting.",
                tool.name,
                target[tool.name].source,
            )
        target[tool.name] = _Entry(tool, source)

    def unregister_tool(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    async def discover_tools(self) -> None:
        """
        Replace all previously discovered tools.

        Subprocess and MCP discovery are isolated from each other and MCP
        servers from one another: a failing source is logged and contributes
        nothing. Never raises for discovery failures.
        """
        async with self._lock:
            static = {n: e for n, e in self._tools.items() if e.source == STATIC}
            self._tools = static
            await self._close_connections()

            subprocess_tools = await self._discover_subprocess_tools()
            connections, mcp_tools = await self._discover_mcp_tools()

            rebuilt = dict(self._tools)
            for tool in [*subprocess_tools, *mcp_tools]:
                self._insert(tool, tool.kind, rebuilt)
            self._connections = connections
            self._tools = rebuilt
            logger.info(
                "Discovery complete: %d subprocess tool(s), %d MCP tool(s)",
                len(subprocess_tools),
                len(mcp_tools),
            )

    async def _discover_subprocess_tools(self) -> list[SubprocessTool]:
        if not self.discovery_command:
            return []
        error = validate_tool_command(self.discovery_command)
        if error:
            logger.error("Refusing to run tool discovery command %r: %s", self.discovery_command, error)
            return []
        if not self.call_command:
            logger.error("Tool discovery command is set but no tool call command is configured")
            return []
        error = validate_tool_command(self.call_command)
        if error:
            logger.error("Refusing to use tool call command %r: %s", self.call_command, error)
            return []

        try:
            result = await run_process(
                split_command(self.discovery_command),
                cwd=str(self.root),
                env=create_secure_execution_environment(),
                timeout=self.discovery_timeout,
            )
        except (ToolExecutionError, OSError, ValueError) as e:
            logger.error("Tool discovery command failed: %s", e)
            return []
        if not result.ok:
            logger.error("Tool discovery command failed:\n%s", result.describe())
            return []

        try:
            declarations = parse_discovery_output(result.stdout)
        except ProtocolError as e:
            logger.error("Invalid tool discovery output: %s", e)
            return []
        return [SubprocessTool(d, self.call_command, self.root) for d in declarations]

    async def _discover_mcp_tools(self) -> tuple[dict[str, McpConnection], list[McpTool]]:
        names = list(self.mcp_servers)
        outcomes = await asyncio.gather(
            *(
                discover_server_tools(name, self.mcp_servers[name], self.mcp_allowlist)
                for name in names
            ),
            return_exceptions=True,
        )
        connections: dict[str, McpConnection] = {}
        tools: list[McpTool] = []
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error("Failed to discover tools from MCP server %s: %s", name, outcome)
                continue
            connection, server_tools = outcome
            connections[name] = connection
            tools.extend(server_tools)
        return connections, tools

    async def _close_connections(self) -> None:
        connections, self._connections = self._connections, {}
        for name, connection in connections.items():
            try:
                await connection.close()
            except Exception as e:
                logger.warning("Error closing MCP server %s: %s", name, e)

    def get_tool(self, name: str) -> Tool | None:
        entry = self._tools.get(name)
        return entry.tool if entry else None

    def get_all_tools(self) -> list[Tool]:
        return [entry.tool for entry in self._tools.values()]

    def get_tools_by_server(self, server_name: str) -> list[McpTool]:
        return [
            e.tool for e in self._tools.values()
            if isinstance(e.tool, McpTool) and e.tool.server_name == server_name
        ]

    def get_function_declarations(self) -> list[FunctionDeclaration]:
        """Schema projection of every tool, as sent to the model."""
        return [entry.tool.schema for entry in self._tools.values()]

    def get_connection(self, server_name: str) -> McpConnection | None:
        return self._connections.get(server_name)

    async def close(self) -> None:
        """Close MCP connections and drop discovered tools."""
        async with self._lock:
            await self._close_connections()
            self._tools = {n: e for n, e in self._tools.items() if e.source == STATIC}

    async def __aenter__(self) -> ToolRegistry:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

"""Tool contract, built-in tools and the tool registry."""
from __future__ import annotations

from pathlib import Path

from agent_runtime.config import RuntimeConfig
from agent_runtime.logging import get_logger
from agent_runtime.tools.base import (
    NativeTool,
    Tool,
    ToolCallConfirmationDetails,
    ToolConfirmationOutcome,
    ToolResult,
)
from agent_runtime.tools.discovered import SubprocessTool, parse_discovery_output
from agent_runtime.tools.ls import ListDirectoryTool
from agent_runtime.tools.mcp import McpConnection, McpConnectionState, McpTool
from agent_runtime.tools.read import ReadFileTool
from agent_runtime.tools.registry import ToolRegistry
from agent_runtime.tools.shell import ShellTool
from agent_runtime.tools.write import WriteFileTool

__all__ = [
    "Tool",
    "NativeTool",
    "SubprocessTool",
    "McpTool",
    "McpConnection",
    "McpConnectionState",
    "ToolResult",
    "ToolCallConfirmationDetails",
    "ToolConfirmationOutcome",
    "ToolRegistry",
    "ReadFileTool",
    "WriteFileTool",
    "ListDirectoryTool",
    "ShellTool",
    "parse_discovery_output",
    "create_builtin_tools",
    "create_tool_registry",
]

logger = get_logger("tools")

BUILTIN_TOOLS = (ReadFileTool, WriteFileTool, ListDirectoryTool, ShellTool)


def create_builtin_tools(root: Path | str) -> list[Tool]:
    """Create every built-in tool confined to ``root``."""
    return [cls(root) for cls in BUILTIN_TOOLS]


def _enabled(tool: Tool, core_tools: list[str] | None, exclude_tools: list[str]) -> bool:
    names = {tool.name, type(tool).__name__}
    if core_tools is not None and not names & set(core_tools):
        return False
    return not names & set(exclude_tools)


def create_tool_registry(config: RuntimeConfig) -> ToolRegistry:
    """
    Build a registry holding the built-in tools enabled by ``config``.

    ``core_tools`` (when set) lists the built-ins to keep and
    ``exclude_tools`` removes built-ins; either may use the tool name or
    its class name. Discovery is not run; await
    :meth:`ToolRegistry.discover_tools` for that.
    """
    registry = ToolRegistry.from_config(config)
    for tool in create_builtin_tools(config.target_dir):
        if _enabled(tool, config.core_tools, config.exclude_tools):
            registry.register_tool(tool)
        else:
            logger.debug("Built-in tool %s disabled by configuration", tool.name)
    return registry

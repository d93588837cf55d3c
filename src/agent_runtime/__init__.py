"""
Agent Runtime - let a language model drive local actions through tools.

The runtime streams model output from one of several backends, turns
function calls into tool invocations (built-in, discovered by command, or
served over MCP) and feeds the results back to the model.

Example:
    from agent_runtime import AgentSession, RuntimeConfig

    config = RuntimeConfig.from_env("anthropic")
    async with await AgentSession.create(config) as agent:
        result = await agent.send_message("Summarize README.md")
        print(result.text)
"""

from agent_runtime.adapters import ContentGenerator, GeneratorRegistry, create_content_generator
from agent_runtime.agent import AgentResult, AgentSession
from agent_runtime.cancellation import CancellationToken
from agent_runtime.chat import ChatSession
from agent_runtime.config import AuthType, McpServerConfig, RuntimeConfig
from agent_runtime.errors import (
    AgentRuntimeError,
    CancellationError,
    ConfigError,
    ProtocolError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolValidationError,
    TransportError,
)
from agent_runtime.events import (
    AwaitingConfirmationEvent,
    ContentEvent,
    EventBus,
    ToolCallEventResult,
    ToolCallOutcome,
    ToolCallRequestEvent,
    ToolCallRequestInfo,
    ToolCallResultEvent,
)
from agent_runtime.logging import get_logger, setup_logging
from agent_runtime.tools import (
    Tool,
    ToolConfirmationOutcome,
    ToolRegistry,
    ToolResult,
    create_tool_registry,
)
from agent_runtime.turn import PendingConfirmation, Turn

__version__ = "0.1.0"

__all__ = [
    # Session
    "AgentSession",
    "AgentResult",
    "ChatSession",
    "Turn",
    "PendingConfirmation",
    "CancellationToken",
    # Config
    "RuntimeConfig",
    "AuthType",
    "McpServerConfig",
    # Generators
    "ContentGenerator",
    "GeneratorRegistry",
    "create_content_generator",
    # Tools
    "Tool",
    "ToolResult",
    "ToolRegistry",
    "ToolConfirmationOutcome",
    "create_tool_registry",
    # Events
    "EventBus",
    "ContentEvent",
    "ToolCallRequestEvent",
    "ToolCallResultEvent",
    "AwaitingConfirmationEvent",
    "ToolCallRequestInfo",
    "ToolCallOutcome",
    "ToolCallEventResult",
    # Errors
    "AgentRuntimeError",
    "CancellationError",
    "ConfigError",
    "ProtocolError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolValidationError",
    "TransportError",
    # Logging
    "get_logger",
    "setup_logging",
]

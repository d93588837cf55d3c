"""
Exception hierarchy for the agent runtime.

Tool-level failures (validation, missing tool, execution) are recovered
into function responses by the turn loop. Transport, protocol and
cancellation failures propagate to the caller.
"""

from __future__ import annotations


class AgentRuntimeError(Exception):
    """Base class for all runtime errors."""


class ConfigError(AgentRuntimeError):
    """Invalid or incomplete configuration."""


class ToolValidationError(AgentRuntimeError):
    """Tool parameters were rejected before execution."""


class PathSecurityError(ToolValidationError):
    """A path resolved outside of its permitted root."""


class ToolNotFoundError(AgentRuntimeError):
    """The model asked for a tool the registry does not know."""

    def __init__(self, name: str) -> None:
        super().__init__(f'Tool "{name}" not found.')
        self.name = name


class ToolExecutionError(AgentRuntimeError):
    """A tool failed while executing."""


class TransportError(AgentRuntimeError):
    """A network, subprocess or API failure while talking to a collaborator."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(AgentRuntimeError):
    """A peer sent data that violates the expected wire format."""


class CancellationError(AgentRuntimeError):
    """The operation was cancelled through a cancellation token."""

    def __init__(self, message: str = "Operation cancelled.") -> None:
        super().__init__(message)

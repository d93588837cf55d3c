"""
The tool contract.

Every tool, whatever its origin, offers the same four operations:
``validate_params``, ``get_description``, ``should_confirm_execute`` and
``execute``. The turn loop talks to tools only through this interface.
Variants: :class:`NativeTool` (in-process), ``SubprocessTool`` (discovered
via a command) and ``McpTool`` (served by an MCP server).
"""
from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from agent_runtime.cancellation import CancellationToken
from agent_runtime.errors import PathSecurityError
from agent_runtime.security.paths import safe_resolve_path
from agent_runtime.tools.schema import validate_schema
from agent_runtime.types import FunctionDeclaration


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one execution: what the model sees and what a human sees."""

    llm_content: str
    return_display: str = ""

    @property
    def display(self) -> str:
        return self.return_display or self.llm_content


class ToolConfirmationOutcome(str, Enum):
    PROCEED_ONCE = "proceed_once"
    PROCEED_ALWAYS = "proceed_always"
    PROCEED_ALWAYS_SERVER = "proceed_always_server"
    PROCEED_ALWAYS_TOOL = "proceed_always_tool"
    CANCEL = "cancel"

    @property
    def approved(self) -> bool:
        return self is not ToolConfirmationOutcome.CANCEL


ConfirmCallback = Callable[[ToolConfirmationOutcome], "Awaitable[None] | None"]


@dataclass
class ToolCallConfirmationDetails:
    """What an approver is shown before a gated tool runs."""

    type: str  # "exec", "edit", "mcp" or "info"
    title: str
    prompt: str = ""
    on_confirm: ConfirmCallback | None = None

    async def confirm(self, outcome: ToolConfirmationOutcome) -> None:
        """Report the approver's decision back to the tool."""
        if self.on_confirm is None:
            return
        result = self.on_confirm(outcome)
        if asyncio.iscoroutine(result):
            await result


class Tool(ABC):
    """Base class for every tool variant."""

    kind = "native"

    def __init__(
        self,
        name: str,
        description: str,
        parameter_schema: dict[str, Any] | None = None,
        requires_confirmation: bool = False,
        display_name: str | None = None,
    ) -> None:
        self.name = name
        self.description = description
        self.parameter_schema = parameter_schema or {"type": "object", "properties": {}}
        self.requires_confirmation = requires_confirmation
        self.display_name = display_name or name

    @property
    def schema(self) -> FunctionDeclaration:
        """Declaration sent to the model."""
        return FunctionDeclaration(
            name=self.name,
            description=self.description,
            parameters=self.parameter_schema,
        )

    def validate_params(self, params: dict[str, Any]) -> str | None:
        """Return None when ``params`` are acceptable, else an error message."""
        return validate_schema(self.parameter_schema, params)

    def get_description(self, params: dict[str, Any]) -> str:
        """One-line, human readable summary of what a call will do."""
        return json.dumps(params)

    async def should_confirm_execute(
        self, params: dict[str, Any], cancel: CancellationToken | None = None
    ) -> ToolCallConfirmationDetails | None:
        """
        Decide whether this call needs external approval.

        Returns:
            None to run immediately, or details for the approver.
        """
        if not self.requires_confirmation:
            return None
        return ToolCallConfirmationDetails(
            type="info",
            title=f"Confirm {self.display_name}",
            prompt=self.get_description(params),
        )

    async def execute(
        self, params: dict[str, Any], cancel: CancellationToken | None = None
    ) -> ToolResult:
        """Run the tool. Fails fast when ``cancel`` has already fired."""
        if cancel is not None:
            cancel.raise_if_cancelled(f"Tool {self.name} was cancelled before execution.")
        return await self.run(params, cancel)

    @abstractmethod
    async def run(
        self, params: dict[str, Any], cancel: CancellationToken | None
    ) -> ToolResult:
        """Tool-specific execution."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class NativeTool(Tool):
    """In-process tool confined to a root directory."""

    def __init__(self, root: Path | str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.root = Path(root).resolve()

    def check_path(self, path: str, must_be_absolute: bool = True) -> str | None:
        """Validate that ``path`` is absolute and resolves inside the root."""
        if must_be_absolute and not Path(path).is_absolute():
            return f"Path must be absolute: {path}"
        try:
            safe_resolve_path(path, self.root)
        except PathSecurityError:
            return f"Path must be within the root directory ({self.root}): {path}"
        return None

    def resolve_path(self, path: str) -> Path:
        return safe_resolve_path(path, self.root)

    def relative(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.root)) or "."
        except ValueError:
            return str(path)

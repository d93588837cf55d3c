"""
Tools reported by a discovery command.

Protocol: the discovery command prints a JSON array of
``{"function_declarations": [...]}`` objects. Each declared function is
invoked as ``<call command> <tool name>`` with its JSON arguments on
stdin; stdout of a zero exit is the result.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from agent_runtime.cancellation import CancellationToken
from agent_runtime.errors import ProtocolError, ToolExecutionError
from agent_runtime.logging import get_logger
from agent_runtime.security import (
    create_secure_execution_environment,
    split_command,
    validate_tool_name,
)
from agent_runtime.tools.base import Tool, ToolResult
from agent_runtime.tools.process import run_process
from agent_runtime.types import FunctionDeclaration

logger = get_logger("tools.discovered")

_WRAPPER_KEYS = {"function_declarations"}
_DECLARATION_KEYS = {"name", "description", "parameters"}


def parse_discovery_output(stdout: str) -> list[FunctionDeclaration]:
    """
    Parse and strictly validate discovery command output.

    Raises:
        ProtocolError: on invalid JSON or any deviation from the schema,
            including unknown keys.
    """
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Tool discovery output is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise ProtocolError("Tool discovery output must be a JSON array")

    declarations: list[FunctionDeclaration] = []
    seen: set[str] = set()
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            raise ProtocolError(f"Discovery item {i} must be an object")
        extra = set(item) - _WRAPPER_KEYS
        if extra:
            raise ProtocolError(f"Discovery item {i} has unexpected keys: {sorted(extra)}")
        functions = item.get("function_declarations")
        if not isinstance(functions, list):
            raise ProtocolError(f"Discovery item {i} must contain a 'function_declarations' array")

        for j, decl in enumerate(functions):
            where = f"function_declarations[{j}] of item {i}"
            if not isinstance(decl, dict):
                raise ProtocolError(f"{where} must be an object")
            extra = set(decl) - _DECLARATION_KEYS
            if extra:
                raise ProtocolError(f"{where} has unexpected keys: {sorted(extra)}")
            name = decl.get("name")
            error = validate_tool_name(name)
            if error:
                raise ProtocolError(f"{where}: {error}")
            if name in seen:
                raise ProtocolError(f"{where}: duplicate tool name '{name}'")
            description = decl.get("description", "")
            if not isinstance(description, str):
                raise ProtocolError(f"{where}: description must be a string")
            parameters = decl.get("parameters")
            if parameters is not None and not isinstance(parameters, dict):
                raise ProtocolError(f"{where}: parameters must be an object")
            seen.add(name)
            declarations.append(
                FunctionDeclaration(name=name, description=description, parameters=parameters)
            )
    return declarations


class SubprocessTool(Tool):
    """A tool executed by spawning the configured call command."""

    kind = "subprocess"

    def __init__(
        self,
        declaration: FunctionDeclaration,
        call_command: str,
        root: Path | str,
        timeout: float | None = None,
    ) -> None:
        description = declaration.description or ""
        description += (
            f"\n\nThis tool was discovered from the project by executing a "
            f"discovery command. When called, it runs `{call_command} "
            f"{declaration.name}` with the JSON arguments on stdin."
        )
        super().__init__(
            name=declaration.name,
            description=description.strip(),
            parameter_schema=declaration.parameters,
        )
        self.call_command = call_command
        self.root = Path(root)
        self.timeout = timeout

    async def run(self, params: dict[str, Any], cancel: CancellationToken | None) -> ToolResult:
        argv = split_command(self.call_command) + [self.name]
        logger.debug("Calling discovered tool %s: %s", self.name, argv)
        result = await run_process(
            argv,
            input=json.dumps(params).encode("utf-8"),
            cwd=str(self.root),
            env=create_secure_execution_environment(),
            cancel=cancel,
            timeout=self.timeout,
        )
        if not result.ok:
            raise ToolExecutionError(result.describe())
        return ToolResult(llm_content=result.stdout, return_display=result.stdout)

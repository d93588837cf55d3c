"""run_shell_command - execute shell commands behind confirmation."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from agent_runtime.cancellation import CancellationToken
from agent_runtime.errors import ToolExecutionError
from agent_runtime.logging import get_logger
from agent_runtime.security import validate_command_safety
from agent_runtime.tools.base import (
    NativeTool,
    ToolCallConfirmationDetails,
    ToolConfirmationOutcome,
    ToolResult,
)
from agent_runtime.tools.process import run_process, truncate_output

logger = get_logger("tools.shell")

# Default timeout in seconds
_DEFAULT_TIMEOUT = 120.0

DANGEROUS_COMMANDS = ("rm -rf", "mkfs.", "dd ", "fdisk ", "format ", "reboot ", "shutdown ")


def command_root(command: str) -> str:
    """First word of a command without any leading path (``/bin/ls -la`` -> ``ls``)."""
    words = command.strip().split()
    if not words:
        return ""
    return os.path.basename(words[0])


class ShellTool(NativeTool):
    """
    Run a command through the system shell in the root directory or one
    of its subdirectories.

    Every call needs approval until the approver picks "always" for a
    command's root word, after which that root runs without prompting.
    """

    def __init__(self, root: Path | str, timeout: float = _DEFAULT_TIMEOUT) -> None:
        super().__init__(
            root,
            name="run_shell_command",
            display_name="Shell",
            description=(
                "Execute a shell command and return its output. Commands run "
                "in the root directory unless 'directory' names a subdirectory "
                "relative to it. Output includes stdout, stderr and exit code."
            ),
            parameter_schema={
                "type": "object",
                "properties": {
                    "command": {"type": "string", "description": "The shell command to execute."},
                    "description": {
                        "type": "string",
                        "description": "Brief description of the command for the user.",
                    },
                    "directory": {
                        "type": "string",
                        "description": "Directory to run the command in, relative to the root.",
                    },
                },
                "required": ["command"],
            },
            requires_confirmation=True,
        )
        self.timeout = timeout
        self.allowed_roots: set[str] = set()

    def validate_params(self, params: dict[str, Any]) -> str | None:
        error = super().validate_params(params)
        if error:
            return error
        command = params["command"]
        error = validate_command_safety(command)
        if error:
            return error
        lowered = command.lower()
        for pattern in DANGEROUS_COMMANDS:
            if pattern in lowered:
                return f"Command contains potentially dangerous operation: {pattern.strip()}"
        if not command_root(command):
            return "Could not identify command root"
        directory = params.get("directory")
        if directory:
            if Path(directory).is_absolute():
                return "Directory cannot be absolute. Must be relative to the root directory."
            error = self.check_path(directory, must_be_absolute=False)
            if error:
                return error
            if not self.resolve_path(directory).is_dir():
                return f"Directory must exist: {directory}"
        return None

    def get_description(self, params: dict[str, Any]) -> str:
        text = params.get("command", "")
        if params.get("directory"):
            text += f" [in {params['directory']}]"
        if params.get("description"):
            text += f" ({params['description']})"
        return text

    async def should_confirm_execute(
        self, params: dict[str, Any], cancel: CancellationToken | None = None
    ) -> ToolCallConfirmationDetails | None:
        if self.validate_params(params) is not None:
            # Invalid calls fail at execution without prompting
            return None
        root = command_root(params["command"])
        if root in self.allowed_roots:
            return None

        def on_confirm(outcome: ToolConfirmationOutcome) -> None:
            if outcome is ToolConfirmationOutcome.PROCEED_ALWAYS:
                self.allowed_roots.add(root)

        return ToolCallConfirmationDetails(
            type="exec",
            title="Confirm Shell Command",
            prompt=params["command"],
            on_confirm=on_confirm,
        )

    async def run(self, params: dict[str, Any], cancel: CancellationToken | None) -> ToolResult:
        error = self.validate_params(params)
        if error:
            raise ToolExecutionError(f"Command rejected: {params.get('command', '')}\nReason: {error}")

        command = params["command"]
        cwd = self.resolve_path(params["directory"]) if params.get("directory") else self.root
        logger.debug("Executing: %s (cwd=%s, timeout=%ss)", command, cwd, self.timeout)

        result = await run_process(
            shell_command=command,
            cwd=str(cwd),
            env=os.environ.copy(),
            cancel=cancel,
            timeout=self.timeout,
        )

        llm_content = "\n".join([
            f"Command: {command}",
            f"Directory: {params.get('directory') or '(root)'}",
            truncate_output(result.describe()),
        ])
        if result.ok:
            display = truncate_output((result.stdout or result.stderr).rstrip()) or "(no output)"
        else:
            display = f"Command exited with code {result.exit_code}: {(result.stderr or result.stdout).rstrip()}"
        logger.debug("Command finished (exit=%s)", result.exit_code)
        return ToolResult(llm_content=llm_content, return_display=display)

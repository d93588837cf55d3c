"""write_file - create or overwrite files, gated behind a diff preview."""
from __future__ import annotations

import difflib
from pathlib import Path
from typing import Any

from agent_runtime.cancellation import CancellationToken
from agent_runtime.errors import ToolExecutionError
from agent_runtime.logging import get_logger
from agent_runtime.tools.base import (
    NativeTool,
    ToolCallConfirmationDetails,
    ToolConfirmationOutcome,
    ToolResult,
)

logger = get_logger("tools.write")


def unified_diff(path: str, old: str, new: str) -> str:
    """Unified diff between the current and proposed file contents."""
    return "".join(
        difflib.unified_diff(
            old.splitlines(keepends=True),
            new.splitlines(keepends=True),
            fromfile=f"{path} (current)",
            tofile=f"{path} (proposed)",
        )
    )


class WriteFileTool(NativeTool):
    """Create or overwrite files, creating parent directories as needed."""

    def __init__(self, root: Path | str) -> None:
        super().__init__(
            root,
            name="write_file",
            display_name="WriteFile",
            description=(
                "Write content to a file. Creates the file if it doesn't exist, "
                "or overwrites it if it does. Parent directories are created "
                "automatically. The path must be absolute."
            ),
            parameter_schema={
                "type": "object",
                "properties": {
                    "file_path": {
                        "type": "string",
                        "description": "Absolute path to the file to write.",
                    },
                    "content": {
                        "type": "string",
                        "description": "The content to write to the file.",
                    },
                },
                "required": ["file_path", "content"],
            },
            requires_confirmation=True,
        )
        self.always_allow = False

    def validate_params(self, params: dict[str, Any]) -> str | None:
        error = super().validate_params(params)
        if error:
            return error
        return self.check_path(params["file_path"])

    def get_description(self, params: dict[str, Any]) -> str:
        path = params.get("file_path", "")
        try:
            return f"Writing to {self.relative(self.resolve_path(path))}"
        except Exception:
            return f"Writing to {path}"

    async def should_confirm_execute(
        self, params: dict[str, Any], cancel: CancellationToken | None = None
    ) -> ToolCallConfirmationDetails | None:
        if self.always_allow or self.validate_params(params) is not None:
            return None
        path = self.resolve_path(params["file_path"])
        old = self._read_current(path)
        diff = unified_diff(self.relative(path), old, params["content"])

        def on_confirm(outcome: ToolConfirmationOutcome) -> None:
            if outcome is ToolConfirmationOutcome.PROCEED_ALWAYS:
                self.always_allow = True

        return ToolCallConfirmationDetails(
            type="edit",
            title=f"Confirm Write: {self.relative(path)}",
            prompt=diff or "(no changes)",
            on_confirm=on_confirm,
        )

    async def run(self, params: dict[str, Any], cancel: CancellationToken | None) -> ToolResult:
        path = self.resolve_path(params["file_path"])
        content = params["content"]
        old = self._read_current(path)
        existed = path.exists()

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to write %s: %s", path, e)
            raise ToolExecutionError(f"Error writing file: {e}") from e

        line_count = content.count("\n") + (1 if content and not content.endswith("\n") else 0)
        if existed:
            logger.debug("Overwrote %s (%d bytes)", path, len(content))
            message = f"Successfully overwrote file: {path} ({line_count} lines)"
        else:
            logger.debug("Created %s (%d bytes)", path, len(content))
            message = f"Successfully created and wrote to new file: {path} ({line_count} lines)"
        return ToolResult(
            llm_content=message,
            return_display=unified_diff(self.relative(path), old, content) or message,
        )

    @staticmethod
    def _read_current(path: Path) -> str:
        if not path.is_file():
            return ""
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return ""

"""list_directory - list directory contents."""
from __future__ import annotations

import fnmatch
from pathlib import Path
from typing import Any

from agent_runtime.cancellation import CancellationToken
from agent_runtime.errors import ToolExecutionError
from agent_runtime.tools.base import NativeTool, ToolResult


class ListDirectoryTool(NativeTool):
    def __init__(self, root: Path | str) -> None:
        super().__init__(
            root,
            name="list_directory",
            display_name="ReadFolder",
            description=(
                "List the files and subdirectories directly inside a directory. "
                "Directories are listed first and marked with [DIR]. "
                "The path must be absolute."
            ),
            parameter_schema={
                "type": "object",
                "properties": {
                    "path": {
                        "type": "string",
                        "description": "Absolute path of the directory to list.",
                    },
                    "ignore": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Glob patterns of entry names to leave out.",
                    },
                },
                "required": ["path"],
            },
        )

    def validate_params(self, params: dict[str, Any]) -> str | None:
        error = super().validate_params(params)
        if error:
            return error
        return self.check_path(params["path"])

    def get_description(self, params: dict[str, Any]) -> str:
        path = params.get("path", "")
        try:
            return self.relative(self.resolve_path(path))
        except Exception:
            return str(path)

    async def run(self, params: dict[str, Any], cancel: CancellationToken | None) -> ToolResult:
        directory = self.resolve_path(params["path"])
        ignore = params.get("ignore") or []

        if not directory.exists():
            raise ToolExecutionError(f"Directory not found: {directory}")
        if not directory.is_dir():
            raise ToolExecutionError(f"Path is not a directory: {directory}")

        try:
            entries = [
                entry for entry in directory.iterdir()
                if not any(fnmatch.fnmatch(entry.name, pattern) for pattern in ignore)
            ]
        except OSError as e:
            raise ToolExecutionError(f"Error listing directory: {e}") from e

        # Directories first, then alphabetical
        entries.sort(key=lambda p: (not p.is_dir(), p.name.lower()))
        if not entries:
            message = f"Directory {directory} is empty."
            return ToolResult(llm_content=message, return_display=message)

        listing = "\n".join(
            f"[DIR] {entry.name}" if entry.is_dir() else entry.name for entry in entries
        )
        return ToolResult(
            llm_content=f"Directory listing for {directory}:\n{listing}",
            return_display=f"Listed {len(entries)} item(s).",
        )

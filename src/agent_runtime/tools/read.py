"""read_file - read file contents with optional line range."""
from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Any

from agent_runtime.cancellation import CancellationToken
from agent_runtime.errors import ToolExecutionError
from agent_runtime.logging import get_logger
from agent_runtime.tools.base import NativeTool, ToolResult

logger = get_logger("tools.read")

# Maximum number of lines to read by default
_DEFAULT_LIMIT = 2000

# Maximum line length before truncation
_MAX_LINE_LENGTH = 2000


class ReadFileTool(NativeTool):
    """Read text files inside the root directory, numbered like ``cat -n``."""

    def __init__(self, root: Path | str) -> None:
        super().__init__(
            root,
            name="read_file",
            display_name="ReadFile",
            description=(
                "Read the contents of a file. Returns numbered lines for text "
                "files. Use offset and limit to read specific line ranges in "
                "large files. The path must be absolute."
            ),
            parameter_schema={
                "type": "object",
                "properties": {
                    "absolute_path": {
                        "type": "string",
                        "description": "Absolute path to the file to read.",
                    },
                    "offset": {
                        "type": "integer",
                        "minimum": 0,
                        "description": "0-based line number to start reading from.",
                    },
                    "limit": {
                        "type": "integer",
                        "minimum": 1,
                        "description": f"Maximum number of lines to read. Defaults to {_DEFAULT_LIMIT}.",
                    },
                },
                "required": ["absolute_path"],
            },
        )

    def validate_params(self, params: dict[str, Any]) -> str | None:
        error = super().validate_params(params)
        if error:
            return error
        return self.check_path(params["absolute_path"])

    def get_description(self, params: dict[str, Any]) -> str:
        path = params.get("absolute_path", "")
        try:
            return self.relative(self.resolve_path(path))
        except Exception:
            return str(path)

    async def run(self, params: dict[str, Any], cancel: CancellationToken | None) -> ToolResult:
        path = self.resolve_path(params["absolute_path"])
        offset = params.get("offset", 0)
        limit = params.get("limit", _DEFAULT_LIMIT)

        if not path.exists():
            raise ToolExecutionError(f"File not found: {path}")
        if path.is_dir():
            raise ToolExecutionError(f"{path} is a directory, not a file. Use list_directory instead.")

        if self._is_binary(path):
            mime = mimetypes.guess_type(str(path))[0] or "application/octet-stream"
            size = path.stat().st_size
            message = f"Binary file: {path} ({mime}, {size} bytes)"
            return ToolResult(llm_content=message, return_display=message)

        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Failed to read %s: %s", path, e)
            raise ToolExecutionError(f"Error reading file: {e}") from e

        lines = text.splitlines()
        total = len(lines)
        if total == 0:
            return ToolResult(llm_content="", return_display=f"{self.relative(path)} is empty")
        if offset >= total:
            raise ToolExecutionError(
                f"Offset {offset} is beyond the end of the file ({total} lines)"
            )

        end = min(offset + limit, total)
        width = len(str(end))
        output: list[str] = []
        for number, line in enumerate(lines[offset:end], start=offset + 1):
            if len(line) > _MAX_LINE_LENGTH:
                line = line[:_MAX_LINE_LENGTH] + "... (truncated)"
            output.append(f"{number:>{width}}\t{line}")

        content = "\n".join(output)
        if offset > 0 or end < total:
            content += (
                f"\n\n(Showing lines {offset + 1}-{end} of {total} total. "
                "Use offset/limit to read more.)"
            )
        return ToolResult(
            llm_content=content,
            return_display=f"Read {end - offset} lines from {self.relative(path)}",
        )

    @staticmethod
    def _is_binary(path: Path) -> bool:
        """Null bytes in the first chunk mean binary."""
        try:
            with path.open("rb") as fh:
                return b"\x00" in fh.read(8192)
        except OSError:
            return False

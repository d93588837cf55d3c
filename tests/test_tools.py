"""Tests for the tool contract, parameter schemas and built-in tools."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from agent_runtime.cancellation import CancellationToken
from agent_runtime.config import RuntimeConfig
from agent_runtime.errors import CancellationError, ToolExecutionError
from agent_runtime.tools import (
    ListDirectoryTool,
    ReadFileTool,
    ShellTool,
    Tool,
    ToolConfirmationOutcome,
    ToolResult,
    WriteFileTool,
    create_tool_registry,
)
from agent_runtime.tools.process import ProcessResult, run_process, truncate_output
from agent_runtime.tools.schema import validate_schema

# The python3 child waits on a sleep grandchild that inherits its stdout/stderr pipes
GRANDCHILD_SLEEP = "python3 -c \"import subprocess; subprocess.run(['sleep', '30'])\""


class CountingTool(Tool):
    def __init__(self) -> None:
        super().__init__(
            name="count",
            description="Counts calls",
            parameter_schema={
                "type": "object",
                "properties": {"n": {"type": "integer", "minimum": 1}},
                "required": ["n"],
            },
        )
        self.runs = 0

    async def run(self, params: dict[str, Any], cancel: CancellationToken | None) -> ToolResult:
        self.runs += 1
        return ToolResult(llm_content=str(params["n"]))


class TestValidateSchema:
    SCHEMA = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "minLength": 1},
            "mode": {"enum": ["a", "b"]},
            "count": {"type": "integer", "minimum": 0, "maximum": 10},
            "tags": {"type": "array", "items": {"type": "string"}, "minItems": 1},
        },
        "required": ["path"],
        "additionalProperties": False,
    }

    def test_valid(self) -> None:
        assert validate_schema(self.SCHEMA, {"path": "x", "mode": "a", "count": 3, "tags": ["t"]}) is None

    @pytest.mark.parametrize(
        "value, fragment",
        [
            ([], "params must be object"),
            ({}, "required property 'path'"),
            ({"path": ""}, "params.path must have at least 1 characters"),
            ({"path": "x", "mode": "c"}, "params.mode must be one of"),
            ({"path": "x", "count": 11}, "params.count must be <= 10"),
            ({"path": "x", "count": True}, "params.count must be integer"),
            ({"path": "x", "tags": []}, "at least 1 items"),
            ({"path": "x", "tags": [1]}, "params.tags[0] must be string"),
            ({"path": "x", "extra": 1}, "additional property 'extra'"),
        ],
    )
    def test_invalid(self, value, fragment) -> None:
        error = validate_schema(self.SCHEMA, value)
        assert error is not None
        assert fragment in error

    def test_empty_schema_accepts_anything(self) -> None:
        assert validate_schema(None, object()) is None


class TestToolContract:
    @pytest.mark.asyncio
    async def test_execute_runs_tool(self) -> None:
        tool = CountingTool()
        result = await tool.execute({"n": 2})
        assert result.llm_content == "2"
        assert result.display == "2"

    @pytest.mark.asyncio
    async def test_execute_fails_fast_when_cancelled(self) -> None:
        tool = CountingTool()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(CancellationError):
            await tool.execute({"n": 1}, token)
        assert tool.runs == 0

    @pytest.mark.asyncio
    async def test_default_confirmation(self) -> None:
        tool = CountingTool()
        assert await tool.should_confirm_execute({"n": 1}) is None

        tool.requires_confirmation = True
        details = await tool.should_confirm_execute({"n": 1})
        assert details.type == "info"
        assert details.prompt == '{"n": 1}'
        await details.confirm(ToolConfirmationOutcome.PROCEED_ONCE)

    def test_schema_projection(self) -> None:
        declaration = CountingTool().schema
        assert declaration.name == "count"
        assert declaration.parameters["required"] == ["n"]
        assert CountingTool().validate_params({"n": 0}) == "params.n must be >= 1"

    def test_outcome_approval(self) -> None:
        assert ToolConfirmationOutcome.PROCEED_ALWAYS_TOOL.approved
        assert not ToolConfirmationOutcome.CANCEL.approved


class TestReadFileTool:
    @pytest.mark.asyncio
    async def test_reads_numbered_lines(self, tmp_path: Path) -> None:
        (tmp_path / "a.txt").write_text("one\ntwo\nthree\n")
        tool = ReadFileTool(tmp_path)

        result = await tool.execute({"absolute_path": str(tmp_path / "a.txt")})

        assert result.llm_content == "1\tone\n2\ttwo\n3\tthree"

    @pytest.mark.asyncio
    async def test_offset_and_limit(self, tmp_path: Path) -> None:
        (tmp_path / "a.txt").write_text("\n".join(f"line{i}" for i in range(1, 21)))
        tool = ReadFileTool(tmp_path)

        result = await tool.execute({"absolute_path": str(tmp_path / "a.txt"), "offset": 9, "limit": 2})

        assert result.llm_content.startswith("10\tline10\n11\tline11")
        assert "Showing lines 10-11 of 20" in result.llm_content

    def test_rejects_relative_and_escaping_paths(self, tmp_path: Path) -> None:
        tool = ReadFileTool(tmp_path)
        assert "must be absolute" in tool.validate_params({"absolute_path": "a.txt"})
        assert "within the root" in tool.validate_params({"absolute_path": "/etc/hostname"})

    @pytest.mark.asyncio
    async def test_missing_and_directory(self, tmp_path: Path) -> None:
        tool = ReadFileTool(tmp_path)
        with pytest.raises(ToolExecutionError, match="File not found"):
            await tool.execute({"absolute_path": str(tmp_path / "nope")})
        with pytest.raises(ToolExecutionError, match="is a directory"):
            await tool.execute({"absolute_path": str(tmp_path)})

    @pytest.mark.asyncio
    async def test_binary_file(self, tmp_path: Path) -> None:
        (tmp_path / "blob.bin").write_bytes(b"\x00\x01\x02")
        tool = ReadFileTool(tmp_path)

        result = await tool.execute({"absolute_path": str(tmp_path / "blob.bin")})

        assert result.llm_content.startswith("Binary file:")


class TestWriteFileTool:
    @pytest.mark.asyncio
    async def test_confirmation_shows_diff(self, tmp_path: Path) -> None:
        target = tmp_path / "f.txt"
        target.write_text("old\n")
        tool = WriteFileTool(tmp_path)

        details = await tool.should_confirm_execute({"file_path": str(target), "content": "new\n"})

        assert details.type == "edit"
        assert "-old" in details.prompt
        assert "+new" in details.prompt

    @pytest.mark.asyncio
    async def test_proceed_always_stops_asking(self, tmp_path: Path) -> None:
        tool = WriteFileTool(tmp_path)
        params = {"file_path": str(tmp_path / "f.txt"), "content": "x"}

        details = await tool.should_confirm_execute(params)
        await details.confirm(ToolConfirmationOutcome.PROCEED_ALWAYS)

        assert await tool.should_confirm_execute(params) is None

    @pytest.mark.asyncio
    async def test_creates_parents_and_overwrites(self, tmp_path: Path) -> None:
        tool = WriteFileTool(tmp_path)
        target = tmp_path / "deep" / "dir" / "f.txt"

        created = await tool.execute({"file_path": str(target), "content": "a\nb\n"})
        overwritten = await tool.execute({"file_path": str(target), "content": "c\n"})

        assert target.read_text() == "c\n"
        assert created.llm_content.startswith("Successfully created and wrote to new file")
        assert overwritten.llm_content.startswith("Successfully overwrote file")
        assert "+c" in overwritten.return_display


class TestListDirectoryTool:
    @pytest.mark.asyncio
    async def test_directories_first(self, tmp_path: Path) -> None:
        (tmp_path / "b.txt").write_text("")
        (tmp_path / "a_dir").mkdir()
        (tmp_path / "c.log").write_text("")
        tool = ListDirectoryTool(tmp_path)

        result = await tool.execute({"path": str(tmp_path), "ignore": ["*.log"]})

        assert result.llm_content == f"Directory listing for {tmp_path.resolve()}:\n[DIR] a_dir\nb.txt"

    @pytest.mark.asyncio
    async def test_empty_directory(self, tmp_path: Path) -> None:
        result = await ListDirectoryTool(tmp_path).execute({"path": str(tmp_path)})
        assert result.llm_content.endswith("is empty.")


class TestShellTool:
    @pytest.mark.asyncio
    async def test_runs_command(self, tmp_path: Path) -> None:
        tool = ShellTool(tmp_path)

        result = await tool.execute({"command": "echo hello"})

        assert "Command: echo hello" in result.llm_content
        assert "Stdout: hello" in result.llm_content
        assert "Exit Code: 0" in result.llm_content
        assert result.return_display == "hello"

    @pytest.mark.asyncio
    async def test_runs_in_subdirectory(self, tmp_path: Path) -> None:
        (tmp_path / "sub").mkdir()
        tool = ShellTool(tmp_path)

        result = await tool.execute({"command": "pwd", "directory": "sub"})

        assert f"Stdout: {(tmp_path / 'sub').resolve()}" in result.llm_content

    @pytest.mark.asyncio
    async def test_non_zero_exit_is_reported(self, tmp_path: Path) -> None:
        tool = ShellTool(tmp_path)

        result = await tool.execute({"command": 'python3 -c "import sys; sys.exit(3)"'})

        assert "Exit Code: 3" in result.llm_content
        assert result.return_display.startswith("Command exited with code 3")

    @pytest.mark.parametrize(
        "params, fragment",
        [
            ({"command": "ls; rm x"}, "chaining"),
            ({"command": "echo $(whoami)"}, "substitution"),
            ({"command": "rm -rf build"}, "dangerous operation"),
            ({"command": "ls", "directory": "/tmp"}, "cannot be absolute"),
            ({"command": "ls", "directory": "missing"}, "must exist"),
            ({"command": "ls", "directory": "../.."}, "within the root"),
        ],
    )
    def test_validation(self, tmp_path: Path, params, fragment) -> None:
        error = ShellTool(tmp_path).validate_params(params)
        assert error is not None
        assert fragment in error

    @pytest.mark.asyncio
    async def test_always_allow_by_command_root(self, tmp_path: Path) -> None:
        tool = ShellTool(tmp_path)

        details = await tool.should_confirm_execute({"command": "ls -la"})
        assert details.type == "exec"
        await details.confirm(ToolConfirmationOutcome.PROCEED_ALWAYS)

        assert await tool.should_confirm_execute({"command": "/bin/ls"}) is None
        assert await tool.should_confirm_execute({"command": "echo hi"}) is not None

    @pytest.mark.asyncio
    async def test_cancellation_kills_command(self, tmp_path: Path) -> None:
        tool = ShellTool(tmp_path)
        token = CancellationToken()
        task = asyncio.create_task(
            tool.execute({"command": 'python3 -c "import time; time.sleep(30)"'}, token)
        )
        await asyncio.sleep(0.2)
        token.cancel()

        with pytest.raises(CancellationError):
            await asyncio.wait_for(task, timeout=5)

    @pytest.mark.asyncio
    async def test_cancellation_is_prompt_for_child_processes(self, tmp_path: Path) -> None:
        tool = ShellTool(tmp_path)
        token = CancellationToken()
        task = asyncio.create_task(
            tool.execute({"command": GRANDCHILD_SLEEP}, token)
        )
        await asyncio.sleep(0.3)
        loop = asyncio.get_running_loop()
        started = loop.time()
        token.cancel()

        with pytest.raises(CancellationError):
            await asyncio.wait_for(task, timeout=5)
        assert loop.time() - started < 3

    @pytest.mark.asyncio
    async def test_timeout_kills_child_processes(self, tmp_path: Path) -> None:
        tool = ShellTool(tmp_path, timeout=0.3)
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(ToolExecutionError, match="timed out"):
            await tool.execute({"command": GRANDCHILD_SLEEP})
        assert loop.time() - started < 5

    @pytest.mark.asyncio
    async def test_display_trims_trailing_newline(self, tmp_path: Path) -> None:
        result = await ShellTool(tmp_path).execute({"command": "printf 'a\\n\\n'"})
        assert result.return_display == "a"

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path: Path) -> None:
        tool = ShellTool(tmp_path, timeout=0.2)
        with pytest.raises(ToolExecutionError, match="timed out"):
            await tool.execute({"command": 'python3 -c "import time; time.sleep(30)"'})


class TestProcess:
    @pytest.mark.asyncio
    async def test_argv_with_stdin(self) -> None:
        result = await run_process(
            ["python3", "-c", "import sys; print(sys.stdin.read().upper())"], input=b"abc"
        )
        assert result.ok
        assert result.stdout == "ABC\n"

    @pytest.mark.asyncio
    async def test_missing_executable(self) -> None:
        with pytest.raises(ToolExecutionError, match="Failed to start"):
            await run_process(["definitely-not-a-real-binary-xyz"])

    @pytest.mark.asyncio
    async def test_exactly_one_command_form(self) -> None:
        with pytest.raises(ValueError):
            await run_process(["ls"], shell_command="ls")

    def test_describe_signal(self) -> None:
        text = ProcessResult(stdout="", stderr="boom", exit_code=None, signal=9).describe()
        assert text == "Stdout: (empty)\nStderr: boom\nExit Code: (none)\nSignal: SIGKILL"

    def test_truncate_output(self) -> None:
        text = truncate_output("a" * 50 + "b" * 50, limit=20)
        assert text.startswith("a" * 10)
        assert text.endswith("b" * 10)
        assert "80 characters truncated" in text


class TestCreateToolRegistry:
    def test_all_builtins_by_default(self, tmp_path: Path) -> None:
        registry = create_tool_registry(RuntimeConfig(target_dir=tmp_path))
        assert sorted(t.name for t in registry.get_all_tools()) == [
            "list_directory", "read_file", "run_shell_command", "write_file",
        ]

    def test_core_and_exclude(self, tmp_path: Path) -> None:
        registry = create_tool_registry(RuntimeConfig(
            target_dir=tmp_path,
            core_tools=["read_file", "ShellTool", "list_directory"],
            exclude_tools=["list_directory"],
        ))
        assert sorted(t.name for t in registry.get_all_tools()) == ["read_file", "run_shell_command"]

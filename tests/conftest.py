"""Shared pytest fixtures for agent-runtime tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from textwrap import dedent
from typing import Any

import pytest

from agent_runtime.adapters.base import ContentGenerator
from agent_runtime.cancellation import CancellationToken
from agent_runtime.tools.base import Tool, ToolResult
from agent_runtime.types import (
    CountTokensResponse,
    FunctionCall,
    GenerateContentResponse,
    Part,
)


def text_chunk(text: str) -> GenerateContentResponse:
    return GenerateContentResponse.from_parts([Part(text=text)])


def call_chunk(*calls: tuple[str, dict[str, Any]] | FunctionCall) -> GenerateContentResponse:
    parts = []
    for call in calls:
        if not isinstance(call, FunctionCall):
            call = FunctionCall(name=call[0], args=call[1])
        parts.append(Part(function_call=call))
    return GenerateContentResponse.from_parts(parts, finish_reason="STOP")


class ScriptedGenerator(ContentGenerator):
    """Replays one scripted list of chunks per request and records requests."""

    def __init__(self, script: list[list[GenerateContentResponse]]) -> None:
        self.script = list(script)
        self.requests = []
        self.closed = False

    async def generate_content(self, request):
        self.requests.append(request)
        chunks = self.script.pop(0)
        parts = [p for c in chunks for p in c.candidates[0].content.parts]
        return GenerateContentResponse.from_parts(parts, finish_reason="STOP")

    async def generate_content_stream(self, request):
        self.requests.append(request)
        for chunk in self.script.pop(0):
            await asyncio.sleep(0)
            yield chunk

    async def count_tokens(self, request):
        return CountTokensResponse(total_tokens=0)

    async def close(self) -> None:
        self.closed = True


class RecordingTool(Tool):
    """Tool that records calls and optionally sleeps or fails."""

    def __init__(
        self,
        name: str = "echo",
        delay: float = 0.0,
        fail: str | None = None,
        requires_confirmation: bool = False,
    ) -> None:
        super().__init__(
            name=name,
            description=f"{name} tool",
            parameter_schema={
                "type": "object",
                "properties": {"value": {"type": "string"}},
            },
            requires_confirmation=requires_confirmation,
        )
        self.delay = delay
        self.fail = fail
        self.calls: list[dict[str, Any]] = []
        self.finished: list[str] = []

    async def run(self, params: dict[str, Any], cancel: CancellationToken | None) -> ToolResult:
        self.calls.append(params)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError(self.fail)
        self.finished.append(self.name)
        return ToolResult(llm_content=f"{self.name}:{params.get('value', '')}")


@pytest.fixture
def scripted_generator():
    """Factory for :class:`ScriptedGenerator`."""
    return ScriptedGenerator


@pytest.fixture
def recording_tool():
    """Factory for :class:`RecordingTool`."""
    return RecordingTool


@pytest.fixture
def chunks():
    """Helpers building streamed response chunks."""

    class _Chunks:
        text = staticmethod(text_chunk)
        calls = staticmethod(call_chunk)

    return _Chunks


@pytest.fixture
def python_script(tmp_path: Path):
    """Write a small Python helper script and return the command running it."""

    def write(name: str, source: str) -> str:
        path = tmp_path / name
        path.write_text(dedent(source))
        return f"python3 {path}"

    return write

"""Tests for the event bus and event records."""

from __future__ import annotations

import logging

import pytest

from agent_runtime.events import (
    AWAITING_CONFIRMATION,
    BEFORE_TOOL_CALL,
    CONTENT,
    TOOL_CALL_REQUEST,
    TOOL_CALL_RESULT,
    AwaitingConfirmationEvent,
    BeforeToolCallEvent,
    ContentEvent,
    EventBus,
    ToolCallEventResult,
    ToolCallOutcome,
    ToolCallRequestEvent,
    ToolCallRequestInfo,
    ToolCallResultEvent,
)
from agent_runtime.tools.base import ToolCallConfirmationDetails, ToolResult


class TestEventBus:
    @pytest.mark.asyncio
    async def test_on_and_emit(self) -> None:
        bus = EventBus()
        received: list[str] = []
        bus.on("test", lambda data: received.append(data))

        await bus.emit("test", "hello")

        assert received == ["hello"]

    @pytest.mark.asyncio
    async def test_decorator(self) -> None:
        bus = EventBus()
        received: list[str] = []

        @bus.on("test")
        def handler(data: str) -> None:
            received.append(data)

        await bus.emit("test", "world")
        assert received == ["world"]
        assert handler("direct") is None

    @pytest.mark.asyncio
    async def test_unsubscribe_and_off(self) -> None:
        bus = EventBus()
        received: list[str] = []

        def handler(data: str) -> None:
            received.append(data)

        unsubscribe = bus.on("a", lambda data: received.append(f"lambda:{data}"))
        bus.on("a", handler)
        unsubscribe()
        unsubscribe()
        await bus.emit("a", "1")
        bus.off("a", handler)
        await bus.emit("a", "2")

        assert received == ["1"]
        assert not bus.has_handlers("a")

    @pytest.mark.asyncio
    async def test_priority_order_and_results(self) -> None:
        bus = EventBus()
        bus.on("e", lambda _: "late", priority=10)
        bus.on("e", lambda _: None)
        bus.on("e", lambda _: "early", priority=-5)

        assert await bus.emit("e") == ["early", "late"]

    @pytest.mark.asyncio
    async def test_async_handlers(self) -> None:
        bus = EventBus()

        async def handler(event: BeforeToolCallEvent) -> ToolCallEventResult:
            return ToolCallEventResult(block=event.tool_name == "rm")

        bus.on(BEFORE_TOOL_CALL, handler)
        [result] = await bus.emit(BEFORE_TOOL_CALL, BeforeToolCallEvent("c1", "rm", {}))

        assert result.block

    @pytest.mark.asyncio
    async def test_failing_handler_is_skipped(self, caplog) -> None:
        bus = EventBus()

        def broken(_):
            raise RuntimeError("handler bug")

        bus.on("e", broken, source="plugin")
        bus.on("e", lambda _: "still runs", priority=1)

        with caplog.at_level(logging.WARNING, logger="agent_runtime.events"):
            results = await bus.emit("e")

        assert results == ["still runs"]
        assert "handler bug" in caplog.text

    def test_off_by_source_and_clear(self) -> None:
        bus = EventBus()
        bus.on("a", print, source="ext")
        bus.on("b", print, source="ext")
        bus.on("b", print)

        assert bus.off_by_source("ext") == 2
        assert bus.handler_count == 1
        bus.clear("b")
        assert bus.handler_count == 0


class TestEventRecords:
    def test_stream_event_types(self) -> None:
        request = ToolCallRequestInfo("c1", "read_file", {"absolute_path": "/a"})
        outcome = ToolCallOutcome("c1", "read_file", result=ToolResult("text"))
        details = ToolCallConfirmationDetails(type="info", title="t")

        assert ContentEvent("x").type == CONTENT
        assert ToolCallRequestEvent(request).type == TOOL_CALL_REQUEST
        assert ToolCallResultEvent(outcome).type == TOOL_CALL_RESULT
        assert AwaitingConfirmationEvent(request, details).type == AWAITING_CONFIRMATION

    def test_outcome_ok(self) -> None:
        assert ToolCallOutcome("c", "n", result=ToolResult("r")).ok
        assert not ToolCallOutcome("c", "n", error="boom").ok
        assert not ToolCallOutcome("c", "n", error="denied", denied=True).ok

"""
Events for the agent runtime.

Two kinds live here:

* **Stream events** yielded by :class:`~agent_runtime.turn.Turn.run`:
  :class:`ContentEvent`, :class:`ToolCallRequestEvent`,
  :class:`ToolCallResultEvent` and :class:`AwaitingConfirmationEvent`.
* **Hook events** dispatched through an :class:`EventBus`. Handlers can
  observe tool calls or block them by returning a result object.

Example:
    from agent_runtime.events import EventBus, ToolCallEventResult

    bus = EventBus()

    @bus.on("before_tool_call")
    async def guard(event):
        if "rm -rf" in event.args.get("command", ""):
            return ToolCallEventResult(block=True, reason="Dangerous command")
        return None
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Union

from agent_runtime.logging import get_logger
from agent_runtime.tools.base import ToolCallConfirmationDetails, ToolResult

logger = get_logger("events")


# ---------------------------------------------------------------------------
# Tool call records
# ---------------------------------------------------------------------------


@dataclass
class ToolCallRequestInfo:
    """A function call observed in the model stream."""

    call_id: str
    name: str
    args: dict[str, Any]
    requires_confirmation: bool = False


@dataclass
class ToolCallOutcome:
    """Result XOR error of one tool call."""

    call_id: str
    name: str
    result: ToolResult | None = None
    error: str | None = None
    denied: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------

CONTENT = "content"
TOOL_CALL_REQUEST = "tool_call_request"
TOOL_CALL_RESULT = "tool_call_result"
AWAITING_CONFIRMATION = "awaiting_confirmation"


@dataclass
class ContentEvent:
    text: str
    type: str = field(default=CONTENT, init=False)


@dataclass
class ToolCallRequestEvent:
    request: ToolCallRequestInfo
    type: str = field(default=TOOL_CALL_REQUEST, init=False)


@dataclass
class ToolCallResultEvent:
    outcome: ToolCallOutcome
    type: str = field(default=TOOL_CALL_RESULT, init=False)


@dataclass
class AwaitingConfirmationEvent:
    """A gated call has been parked until an approver decides."""

    request: ToolCallRequestInfo
    details: ToolCallConfirmationDetails
    type: str = field(default=AWAITING_CONFIRMATION, init=False)


StreamEvent = Union[ContentEvent, ToolCallRequestEvent, ToolCallResultEvent, AwaitingConfirmationEvent]


# ---------------------------------------------------------------------------
# Hook events
# ---------------------------------------------------------------------------

AGENT_START = "agent_start"
AGENT_END = "agent_end"
TURN_START = "turn_start"
TURN_END = "turn_end"
BEFORE_TOOL_CALL = "before_tool_call"
AFTER_TOOL_RESULT = "after_tool_result"


@dataclass
class AgentStartEvent:
    """Emitted before the first model call of a ``send_message``."""

    user_input: str
    model: str


@dataclass
class AgentEndEvent:
    """Emitted after the agent loop finishes."""

    user_input: str
    total_turns: int
    finish_reason: str = ""  # "complete", "max_turns", "error", "cancelled"
    error: str | None = None


@dataclass
class TurnStartEvent:
    turn: int


@dataclass
class TurnEndEvent:
    turn: int
    tool_call_count: int = 0


@dataclass
class BeforeToolCallEvent:
    """Emitted before a tool is executed. Handler can block or modify args."""

    call_id: str
    tool_name: str
    args: dict[str, Any]


@dataclass
class ToolCallEventResult:
    """Result returned by a before_tool_call handler."""

    block: bool = False
    reason: str = ""
    modified_args: dict[str, Any] | None = None  # None = no modification


@dataclass
class AfterToolResultEvent:
    """Emitted after a tool call produced its outcome."""

    call_id: str
    tool_name: str
    args: dict[str, Any]
    outcome: ToolCallOutcome


# ---------------------------------------------------------------------------
# EventBus
# ---------------------------------------------------------------------------

# Handlers can be sync or async, and optionally return a result object.
EventHandler = Callable[..., Any]


@dataclass
class _HandlerEntry:
    """Internal: a registered handler with metadata."""

    event: str
    handler: EventHandler
    priority: int = 0  # lower runs first
    source: str = ""


class EventBus:
    """
    A typed event bus for agent lifecycle and tool events.

    Handlers are called in priority order (lower first) and can be sync
    or async. A handler that raises is logged and skipped.

    Usage:
        bus = EventBus()

        @bus.on("agent_start")
        def on_start(event: AgentStartEvent):
            print(f"Agent starting with model {event.model}")

        unsub = bus.on("agent_end", on_end)
        unsub()  # remove handler
    """

    def __init__(self) -> None:
        self._handlers: list[_HandlerEntry] = []

    def on(
        self,
        event: str,
        handler: EventHandler | None = None,
        priority: int = 0,
        source: str = "",
    ) -> Callable[[], None] | Callable[[EventHandler], EventHandler]:
        """
        Register an event handler.

        With a handler, returns an unsubscribe function. Without one,
        returns a decorator that registers and returns the function.
        """
        if handler is not None:
            entry = _HandlerEntry(event=event, handler=handler, priority=priority, source=source)
            self._handlers.append(entry)

            def unsubscribe() -> None:
                try:
                    self._handlers.remove(entry)
                except ValueError:
                    pass

            return unsubscribe

        def decorator(fn: EventHandler) -> EventHandler:
            self.on(event, fn, priority=priority, source=source)
            return fn

        return decorator

    def off(self, event: str, handler: EventHandler) -> None:
        """Remove a specific handler for an event."""
        self._handlers = [
            h for h in self._handlers if not (h.event == event and h.handler is handler)
        ]

    def off_by_source(self, source: str) -> int:
        """Remove all handlers registered by a given source. Returns count removed."""
        before = len(self._handlers)
        self._handlers = [h for h in self._handlers if h.source != source]
        return before - len(self._handlers)

    def clear(self, event: str | None = None) -> None:
        if event is None:
            self._handlers.clear()
        else:
            self._handlers = [h for h in self._handlers if h.event != event]

    async def emit(self, event: str, data: Any = None) -> list[Any]:
        """
        Emit an event and collect handler results.

        Returns:
            List of non-None results from handlers, in call order.
        """
        relevant = sorted(
            (h for h in self._handlers if h.event == event),
            key=lambda h: h.priority,
        )

        results: list[Any] = []
        for entry in relevant:
            try:
                result = entry.handler(data)
                if asyncio.iscoroutine(result) or asyncio.isfuture(result):
                    result = await result
                if result is not None:
                    results.append(result)
            except Exception as e:
                logger.warning(
                    "Event handler error (event=%s, source=%s): %s",
                    event,
                    entry.source,
                    e,
                )
        return results

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    def has_handlers(self, event: str) -> bool:
        return any(h.event == event for h in self._handlers)

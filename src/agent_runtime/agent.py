"""
Multi-turn agent session.

:class:`AgentSession` drives :class:`~agent_runtime.turn.Turn` objects
until the model stops calling tools: each turn's function responses are
sent back as the next message. Gated calls are resolved through an
approver callback.

Example:
    config = RuntimeConfig.from_env("openai-compatible")
    async with await AgentSession.create(config) as agent:
        result = await agent.send_message("What is in README.md?")
        print(result.text)
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Union

from agent_runtime.adapters.base import ContentGenerator
from agent_runtime.adapters.registry import create_content_generator
from agent_runtime.cancellation import CancellationToken
from agent_runtime.chat import ChatSession
from agent_runtime.config import RuntimeConfig
from agent_runtime.errors import CancellationError
from agent_runtime.events import (
    AGENT_END,
    AGENT_START,
    TURN_END,
    TURN_START,
    AgentEndEvent,
    AgentStartEvent,
    ContentEvent,
    EventBus,
    StreamEvent,
    ToolCallOutcome,
    ToolCallResultEvent,
    TurnEndEvent,
    TurnStartEvent,
)
from agent_runtime.logging import get_logger
from agent_runtime.tools import create_tool_registry
from agent_runtime.tools.base import ToolConfirmationOutcome
from agent_runtime.tools.registry import ToolRegistry
from agent_runtime.turn import PendingConfirmation, Turn, function_response_part
from agent_runtime.types import Content, GenerationConfig, PartLike

logger = get_logger("agent")

# (pending call) -> outcome; may be sync or async
Approver = Callable[
    [PendingConfirmation],
    Union[ToolConfirmationOutcome, Awaitable[ToolConfirmationOutcome]],
]


@dataclass
class AgentResult:
    """What one ``send_message`` produced."""

    text: str
    turns: int
    finish_reason: str  # "complete" or "max_turns"
    outcomes: list[ToolCallOutcome] = field(default_factory=list)


class AgentSession:
    """
    A conversation that lets the model call tools.

    Without ``approver`` and with ``auto_approve`` off, gated calls are
    denied. Denials are reported to the model and never retried.
    """

    def __init__(
        self,
        generator: ContentGenerator,
        registry: ToolRegistry,
        model: str,
        generation_config: GenerationConfig | None = None,
        events: EventBus | None = None,
        approver: Approver | None = None,
        auto_approve: bool = False,
        max_turns: int = 20,
    ) -> None:
        self.generator = generator
        self.registry = registry
        self.events = events or EventBus()
        self.approver = approver
        self.auto_approve = auto_approve
        self.max_turns = max_turns
        self.chat = ChatSession(generator, model, generation_config)
        self._cancel = CancellationToken()
        self.turn_count = 0
        self.finish_reason: str | None = None

    @classmethod
    async def create(
        cls,
        config: RuntimeConfig,
        approver: Approver | None = None,
        events: EventBus | None = None,
    ) -> AgentSession:
        """Build the generator and registry ``config`` describes and run tool discovery."""
        generator = create_content_generator(config)
        registry = create_tool_registry(config)
        await registry.discover_tools()
        generation_config = GenerationConfig(
            temperature=config.temperature,
            max_output_tokens=config.max_output_tokens,
            system_instruction=config.system_instruction,
        )
        return cls(
            generator,
            registry,
            model=config.model,
            generation_config=generation_config,
            events=events,
            approver=approver,
            auto_approve=config.auto_approve,
            max_turns=config.max_turns,
        )

    def abort(self, reason: str | None = None) -> None:
        """Cancel the running ``send_message``; the session can be used again afterwards."""
        self._cancel.cancel(reason)

    async def _decide(self, pending: PendingConfirmation) -> ToolConfirmationOutcome:
        if self.auto_approve:
            return ToolConfirmationOutcome.PROCEED_ONCE
        if self.approver is None:
            logger.info("No approver configured; denying %s", pending.name)
            return ToolConfirmationOutcome.CANCEL
        decision = self.approver(pending)
        if asyncio.iscoroutine(decision) or asyncio.isfuture(decision):
            decision = await decision
        return decision

    def _answer_open_calls(self, resolved: dict[str, ToolCallOutcome], reason: str) -> None:
        """Reply to calls an interrupted exchange left unanswered so the history stays well-formed."""
        calls = self.chat.open_function_calls()
        if not calls:
            return
        parts = [
            function_response_part(
                resolved.get(call.id) or ToolCallOutcome(call.id or call.name, call.name, error=reason)
            )
            for call in calls
        ]
        self.chat.add_history(Content(role="user", parts=parts))
        logger.debug("Answered %d open call(s) after an interrupted exchange", len(parts))

    async def send_message_stream(
        self, message: PartLike | list[PartLike]
    ) -> AsyncIterator[StreamEvent]:
        """
        Run turns until the model answers without tool calls.

        Yields every turn's stream events plus a result event for each
        resolved confirmation.

        Raises:
            CancellationError: after :meth:`abort`.
        """
        self._cancel = cancel = CancellationToken()
        next_message: PartLike | list[PartLike] = message
        user_input = message if isinstance(message, str) else ""
        turns = 0
        finish_reason = "complete"
        turn: Turn | None = None
        resolved: dict[str, ToolCallOutcome] = {}

        await self.events.emit(AGENT_START, AgentStartEvent(user_input, self.chat.model))
        try:
            while True:
                turns += 1
                self.chat.config.tools = self.registry.get_function_declarations()
                await self.events.emit(TURN_START, TurnStartEvent(turns))

                turn = Turn(self.chat, self.registry, self.events)
                async for event in turn.run(next_message, cancel):
                    yield event

                for pending in turn.get_awaiting_confirmation_calls():
                    decision = await self._decide(pending)
                    outcome = await turn.approve(pending.request.call_id, decision, cancel)
                    yield ToolCallResultEvent(outcome)

                resolved.update(turn.outcomes)
                await self.events.emit(TURN_END, TurnEndEvent(turns, len(turn.requests)))
                responses = turn.get_function_responses()
                if not responses:
                    break
                if turns >= self.max_turns:
                    # Keep the history well-formed for the next message
                    self.chat.add_history(Content(role="user", parts=responses))
                    finish_reason = "max_turns"
                    logger.warning("Stopping after %d turns", turns)
                    break
                next_message = responses
        except CancellationError as e:
            if turn is not None:
                resolved.update(turn.outcomes)
            self._answer_open_calls(resolved, str(e))
            await self.events.emit(
                AGENT_END, AgentEndEvent(user_input, turns, "cancelled", str(e))
            )
            raise
        except Exception as e:
            if turn is not None:
                resolved.update(turn.outcomes)
            self._answer_open_calls(resolved, str(e))
            await self.events.emit(AGENT_END, AgentEndEvent(user_input, turns, "error", str(e)))
            raise
        await self.events.emit(AGENT_END, AgentEndEvent(user_input, turns, finish_reason))
        self.turn_count = turns
        self.finish_reason = finish_reason

    async def send_message(self, message: PartLike | list[PartLike]) -> AgentResult:
        """Run :meth:`send_message_stream` to completion and collect the results."""
        texts: list[str] = []
        outcomes: list[ToolCallOutcome] = []
        async for event in self.send_message_stream(message):
            if isinstance(event, ContentEvent):
                texts.append(event.text)
            elif isinstance(event, ToolCallResultEvent):
                outcomes.append(event.outcome)
        return AgentResult(
            text="".join(texts),
            turns=self.turn_count,
            finish_reason=self.finish_reason or "complete",
            outcomes=outcomes,
        )

    def get_history(self) -> list[Content]:
        return self.chat.get_history()

    async def close(self) -> None:
        await self.registry.close()
        await self.generator.close()

    async def __aenter__(self) -> AgentSession:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

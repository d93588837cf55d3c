"""
The agent loop for one model exchange.

A :class:`Turn` streams a model reply, turns function calls into tool
invocations and yields :mod:`~agent_runtime.events` stream events.
Immediate tools start as soon as their call is seen and run concurrently;
their results are yielded in request order once the stream ends.
Confirmation-gated calls are parked in :attr:`Turn.pending` until an
approver calls :meth:`Turn.approve` or :meth:`Turn.deny`.

Example:
    turn = Turn(chat, registry)
    async for event in turn.run("list the files here", cancel):
        ...
    for pending in turn.get_awaiting_confirmation_calls():
        await turn.approve(pending.request.call_id)
    parts = turn.get_function_responses()  # send these next
"""

from __future__ import annotations

import asyncio
import secrets
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from agent_runtime.cancellation import CancellationToken, iterate_cancellable
from agent_runtime.chat import ChatSession
from agent_runtime.errors import CancellationError, ToolNotFoundError
from agent_runtime.events import (
    AFTER_TOOL_RESULT,
    BEFORE_TOOL_CALL,
    AfterToolResultEvent,
    AwaitingConfirmationEvent,
    BeforeToolCallEvent,
    ContentEvent,
    EventBus,
    StreamEvent,
    ToolCallEventResult,
    ToolCallOutcome,
    ToolCallRequestEvent,
    ToolCallRequestInfo,
    ToolCallResultEvent,
)
from agent_runtime.logging import get_logger
from agent_runtime.tools.base import Tool, ToolCallConfirmationDetails, ToolConfirmationOutcome
from agent_runtime.tools.registry import ToolRegistry
from agent_runtime.types import FunctionCall, Part, PartLike

logger = get_logger("turn")

DENIED_MESSAGE = "Tool execution denied by user."


@dataclass
class PendingConfirmation:
    """A gated call waiting for an approver."""

    request: ToolCallRequestInfo
    tool: Tool
    details: ToolCallConfirmationDetails

    @property
    def name(self) -> str:
        return self.request.name

    @property
    def args(self) -> dict[str, Any]:
        return self.request.args


def function_response_part(outcome: ToolCallOutcome) -> Part:
    """Function-response part for one outcome, as sent back to the model."""
    if outcome.denied:
        response: dict[str, Any] = {"error": outcome.error or DENIED_MESSAGE}
    elif outcome.ok:
        response = {"output": outcome.result.llm_content if outcome.result else ""}
    else:
        response = {"error": f"Tool execution failed: {outcome.error}"}
    return Part.from_function_response(outcome.name, response, id=outcome.call_id)


class Turn:
    """
    One model exchange and the tool calls it produced.

    A turn owns its pending-confirmation map; it is not shared between
    turns or concurrent callers. Call :meth:`run` once.
    """

    def __init__(
        self,
        chat: ChatSession,
        registry: ToolRegistry,
        events: EventBus | None = None,
    ) -> None:
        self.chat = chat
        self.registry = registry
        self.events = events
        self.pending: dict[str, PendingConfirmation] = {}
        self.requests: list[ToolCallRequestInfo] = []
        self.outcomes: dict[str, ToolCallOutcome] = {}
        self.finish_reason: str | None = None
        self._started = False

    # -- streaming -----------------------------------------------------------

    async def run(
        self, message: PartLike | list[PartLike], cancel: CancellationToken | None = None
    ) -> AsyncIterator[StreamEvent]:
        """
        Send ``message`` and yield stream events.

        Raises:
            CancellationError: when ``cancel`` fires; no further events follow.
            TransportError, ProtocolError: when the model stream fails.
        """
        if self._started:
            raise RuntimeError("A Turn can only be run once")
        self._started = True

        scheduled: list[tuple[ToolCallRequestInfo, asyncio.Future[ToolCallOutcome]]] = []
        try:
            stream = self.chat.send_message_stream(message)
            async for response in iterate_cancellable(stream, cancel, "Turn was cancelled."):
                if response.candidates and response.candidates[0].finish_reason:
                    self.finish_reason = response.candidates[0].finish_reason
                text = response.text
                if text:
                    yield ContentEvent(text)

                for call in response.function_calls:
                    request = self._new_request(call)
                    tool = self.registry.get_tool(request.name)
                    early_error = self._precheck(request, tool)
                    details = None
                    if early_error is None:
                        details = await tool.should_confirm_execute(request.args, cancel)
                        request.requires_confirmation = details is not None
                    yield ToolCallRequestEvent(request)

                    if early_error is not None:
                        scheduled.append((request, _completed(early_error)))
                    elif details is not None:
                        self.pending[request.call_id] = PendingConfirmation(request, tool, details)
                        yield AwaitingConfirmationEvent(request, details)
                    else:
                        task = asyncio.create_task(self._execute(request, tool, request.args, cancel))
                        scheduled.append((request, task))

            outcomes = await self._join(scheduled, cancel)
        except BaseException:
            await _settle(scheduled)
            for request, task in scheduled:
                if task.done() and not task.cancelled() and task.exception() is None:
                    self.outcomes[request.call_id] = task.result()
            raise

        for outcome in outcomes:
            self.outcomes[outcome.call_id] = outcome
            yield ToolCallResultEvent(outcome)

    def _new_request(self, call: FunctionCall) -> ToolCallRequestInfo:
        call_id = call.id or f"{call.name}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"
        taken = {r.call_id for r in self.requests}
        while call_id in taken:
            call_id = f"{call_id}-{secrets.token_hex(2)}"
        # The recorded model content shares this object, so history and responses carry the same id
        call.id = call_id
        request = ToolCallRequestInfo(call_id=call_id, name=call.name, args=dict(call.args or {}))
        self.requests.append(request)
        return request

    def _precheck(self, request: ToolCallRequestInfo, tool: Tool | None) -> ToolCallOutcome | None:
        """Unknown tools and invalid arguments fail without reaching ``execute``."""
        if tool is None:
            return ToolCallOutcome(request.call_id, request.name, error=str(ToolNotFoundError(request.name)))
        error = tool.validate_params(request.args)
        if error:
            return ToolCallOutcome(request.call_id, request.name, error=f"Invalid parameters: {error}")
        return None

    async def _join(
        self,
        scheduled: list[tuple[ToolCallRequestInfo, asyncio.Future[ToolCallOutcome]]],
        cancel: CancellationToken | None,
    ) -> list[ToolCallOutcome]:
        results = await asyncio.gather(*(task for _, task in scheduled), return_exceptions=True)
        outcomes: list[ToolCallOutcome] = []
        for (request, _), result in zip(scheduled, results):
            if isinstance(result, CancellationError):
                raise result
            if isinstance(result, BaseException):
                # _execute already converts tool failures; this is a bug path
                logger.exception("Unexpected failure running %s", request.name, exc_info=result)
                result = ToolCallOutcome(request.call_id, request.name, error=str(result))
            outcomes.append(result)
        if cancel is not None:
            cancel.raise_if_cancelled("Turn was cancelled.")
        return outcomes

    # -- execution -----------------------------------------------------------

    async def _execute(
        self,
        request: ToolCallRequestInfo,
        tool: Tool,
        args: dict[str, Any],
        cancel: CancellationToken | None,
    ) -> ToolCallOutcome:
        """Run one call, converting tool failures into an error outcome."""
        if self.events is not None:
            results = await self.events.emit(
                BEFORE_TOOL_CALL, BeforeToolCallEvent(request.call_id, request.name, args)
            )
            for result in results:
                if not isinstance(result, ToolCallEventResult):
                    continue
                if result.block:
                    outcome = ToolCallOutcome(
                        request.call_id,
                        request.name,
                        error=f"Blocked: {result.reason or 'blocked by hook'}",
                    )
                    return await self._after(request, args, outcome)
                if result.modified_args is not None:
                    args = result.modified_args
                    error = tool.validate_params(args)
                    if error:
                        outcome = ToolCallOutcome(
                            request.call_id, request.name, error=f"Invalid parameters: {error}"
                        )
                        return await self._after(request, args, outcome)

        try:
            tool_result = await tool.execute(args, cancel)
            outcome = ToolCallOutcome(request.call_id, request.name, result=tool_result)
        except CancellationError:
            raise
        except Exception as e:
            logger.warning("Tool %s failed: %s", request.name, e)
            outcome = ToolCallOutcome(request.call_id, request.name, error=str(e) or type(e).__name__)
        return await self._after(request, args, outcome)

    async def _after(
        self, request: ToolCallRequestInfo, args: dict[str, Any], outcome: ToolCallOutcome
    ) -> ToolCallOutcome:
        if self.events is not None:
            await self.events.emit(
                AFTER_TOOL_RESULT, AfterToolResultEvent(request.call_id, request.name, args, outcome)
            )
        return outcome

    # -- confirmation ----------------------------------------------------------

    def get_awaiting_confirmation_call(self, call_id: str | None = None) -> PendingConfirmation | None:
        """The pending call with ``call_id``, or the oldest one when omitted."""
        if call_id is None:
            return next(iter(self.pending.values()), None)
        return self.pending.get(call_id)

    def get_awaiting_confirmation_calls(self) -> list[PendingConfirmation]:
        return list(self.pending.values())

    def clear_awaiting_confirmation_call(self, call_id: str) -> bool:
        """Discard a pending call without producing an outcome."""
        return self.pending.pop(call_id, None) is not None

    async def approve(
        self,
        call_id: str,
        outcome: ToolConfirmationOutcome = ToolConfirmationOutcome.PROCEED_ONCE,
        cancel: CancellationToken | None = None,
    ) -> ToolCallOutcome:
        """
        Resolve a pending call and run it (or deny it for ``CANCEL``).

        Raises:
            KeyError: if ``call_id`` is not pending.
            CancellationError: if ``cancel`` fires during execution.
        """
        if not outcome.approved:
            return await self.deny(call_id)
        pending = self.pending.pop(call_id)
        await pending.details.confirm(outcome)
        result = await self._execute(pending.request, pending.tool, pending.request.args, cancel)
        self.outcomes[call_id] = result
        return result

    async def deny(self, call_id: str) -> ToolCallOutcome:
        """Resolve a pending call as denied. The tool never runs."""
        pending = self.pending.pop(call_id)
        await pending.details.confirm(ToolConfirmationOutcome.CANCEL)
        result = ToolCallOutcome(call_id, pending.name, error=DENIED_MESSAGE, denied=True)
        self.outcomes[call_id] = result
        logger.debug("Tool call %s (%s) denied", call_id, pending.name)
        return result

    # -- results -------------------------------------------------------------

    def get_function_responses(self) -> list[Part]:
        """Function-response parts for every resolved call, in request order."""
        return [
            function_response_part(self.outcomes[r.call_id])
            for r in self.requests
            if r.call_id in self.outcomes
        ]

    @property
    def has_function_calls(self) -> bool:
        return bool(self.requests)


def _completed(outcome: ToolCallOutcome) -> asyncio.Future[ToolCallOutcome]:
    future: asyncio.Future[ToolCallOutcome] = asyncio.get_running_loop().create_future()
    future.set_result(outcome)
    return future


async def _settle(scheduled: list[tuple[ToolCallRequestInfo, asyncio.Future]]) -> None:
    """Wait for dispatched executions after the stream failed or was cancelled."""
    pending = [task for _, task in scheduled if not task.done()]
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

"""Conversation history on top of a content generator."""
from __future__ import annotations

import copy
from collections.abc import AsyncIterator

from agent_runtime.adapters.base import ContentGenerator
from agent_runtime.logging import get_logger
from agent_runtime.types import (
    Content,
    FunctionCall,
    GenerateContentRequest,
    GenerateContentResponse,
    GenerationConfig,
    Part,
    PartLike,
    to_parts,
)

logger = get_logger("chat")


def merge_parts(parts: list[Part]) -> list[Part]:
    """Join adjacent plain text chunks so streamed text is stored as one part."""
    merged: list[Part] = []
    for part in parts:
        is_text = part.text is not None and part.function_call is None and part.function_response is None
        if (
            is_text
            and merged
            and merged[-1].text is not None
            and merged[-1].function_call is None
            and merged[-1].function_response is None
            and merged[-1].thought == part.thought
        ):
            merged[-1] = Part(text=merged[-1].text + part.text, thought=part.thought)
        else:
            merged.append(part)
    return merged


class ChatSession:
    """
    A multi-turn exchange with one model.

    Every request re-sends the full curated history. The user message and
    the model reply are appended only after a call succeeds, so a failed
    or cancelled request leaves the history unchanged.
    """

    def __init__(
        self,
        generator: ContentGenerator,
        model: str,
        config: GenerationConfig | None = None,
        history: list[Content] | None = None,
    ) -> None:
        self.generator = generator
        self.model = model
        self.config = config or GenerationConfig()
        self._history: list[Content] = list(history or [])

    def get_history(self) -> list[Content]:
        return copy.deepcopy(self._history)

    def add_history(self, content: Content) -> None:
        self._history.append(content)

    def clear_history(self) -> None:
        self._history.clear()

    def open_function_calls(self) -> list[FunctionCall]:
        """Function calls in the last model reply that no user content has answered yet."""
        if not self._history or self._history[-1].role != "model":
            return []
        return [p.function_call for p in self._history[-1].parts if p.function_call is not None]

    def _request(self, user: Content) -> GenerateContentRequest:
        return GenerateContentRequest(
            model=self.model,
            contents=[*self._history, user],
            config=self.config,
        )

    async def send_message(self, message: PartLike | list[PartLike]) -> GenerateContentResponse:
        user = Content(role="user", parts=to_parts(message))
        response = await self.generator.generate_content(self._request(user))
        self._history.append(user)
        if response.candidates:
            self._history.append(
                Content(role="model", parts=merge_parts(response.candidates[0].content.parts))
            )
        return response

    async def send_message_stream(
        self, message: PartLike | list[PartLike]
    ) -> AsyncIterator[GenerateContentResponse]:
        """Stream the reply, recording the exchange once the stream completes."""
        user = Content(role="user", parts=to_parts(message))
        collected: list[Part] = []
        async for chunk in self.generator.generate_content_stream(self._request(user)):
            if chunk.candidates:
                collected.extend(chunk.candidates[0].content.parts)
            yield chunk
        self._history.append(user)
        if collected:
            self._history.append(Content(role="model", parts=merge_parts(collected)))
        logger.debug("History now holds %d message(s)", len(self._history))

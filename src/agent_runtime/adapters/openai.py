"""
OpenAI-compatible backend (OpenAI, local servers, other compatible APIs).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import openai
from openai import AsyncOpenAI

from agent_runtime.adapters.base import ContentGenerator, approximate_token_count
from agent_runtime.adapters.transform import (
    parse_tool_arguments,
    to_openai_messages,
    to_openai_tool_choice,
    to_openai_tools,
)
from agent_runtime.errors import TransportError
from agent_runtime.logging import get_logger
from agent_runtime.types import (
    CountTokensRequest,
    CountTokensResponse,
    EmbedContentRequest,
    EmbedContentResponse,
    FunctionCall,
    GenerateContentRequest,
    GenerateContentResponse,
    Part,
    UsageMetadata,
)

logger = get_logger("adapters.openai")

_FINISH_REASONS = {
    "stop": "STOP",
    "tool_calls": "STOP",
    "function_call": "STOP",
    "length": "MAX_TOKENS",
    "content_filter": "SAFETY",
}


def _usage(usage: Any) -> UsageMetadata | None:
    if usage is None:
        return None
    return UsageMetadata(
        prompt_token_count=usage.prompt_tokens or 0,
        candidates_token_count=usage.completion_tokens or 0,
        total_token_count=usage.total_tokens or 0,
    )


def _transport_error(e: openai.APIError) -> TransportError:
    return TransportError(f"OpenAI API error: {e}", status_code=getattr(e, "status_code", None))


class OpenAICompatibleContentGenerator(ContentGenerator):
    """
    Content generator for chat-completions compatible APIs.

    Example:
        generator = OpenAICompatibleContentGenerator(
            api_key="sk-...", base_url="http://localhost:8080/v1"
        )
    """

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> None:
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            default_headers=headers or None,
            timeout=timeout,
        )

    def _request_kwargs(self, request: GenerateContentRequest) -> dict[str, Any]:
        config = request.config
        kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": to_openai_messages(request.contents, config),
        }
        if config.tools:
            kwargs["tools"] = to_openai_tools(config.tools)
            choice = to_openai_tool_choice(config)
            if choice is not None:
                kwargs["tool_choice"] = choice
        optional = {
            "temperature": config.temperature,
            "top_p": config.top_p,
            "max_tokens": config.max_output_tokens,
            "stop": config.stop_sequences,
            "n": config.candidate_count,
        }
        kwargs.update({k: v for k, v in optional.items() if v is not None})
        return kwargs

    async def generate_content(
        self, request: GenerateContentRequest
    ) -> GenerateContentResponse:
        try:
            response = await self.client.chat.completions.create(**self._request_kwargs(request))
        except openai.APIError as e:
            raise _transport_error(e) from e

        choice = response.choices[0]
        parts: list[Part] = []
        if choice.message.content:
            parts.append(Part(text=choice.message.content))
        for tc in choice.message.tool_calls or []:
            parts.append(Part(function_call=FunctionCall(
                name=tc.function.name,
                args=parse_tool_arguments(tc.function.arguments),
                id=tc.id,
            )))
        return GenerateContentResponse.from_parts(
            parts,
            finish_reason=_FINISH_REASONS.get(choice.finish_reason or "", choice.finish_reason),
            usage=_usage(response.usage),
        )

    async def generate_content_stream(
        self, request: GenerateContentRequest
    ) -> AsyncIterator[GenerateContentResponse]:
        """
        Stream chunks from the chat-completions API.

        Text deltas are yielded as they arrive. Tool-call fragments are
        accumulated by index and yielded together as one chunk once the
        model reports a finish reason (or the stream ends).
        """
        try:
            stream = await self.client.chat.completions.create(
                **self._request_kwargs(request), stream=True
            )
        except openai.APIError as e:
            raise _transport_error(e) from e

        # index -> {id, name, args}
        active_tool_calls: dict[int, dict[str, str]] = {}
        flushed = False

        def flush(finish_reason: str | None, usage: UsageMetadata | None) -> GenerateContentResponse:
            parts = [
                Part(function_call=FunctionCall(
                    name=tc["name"], args=parse_tool_arguments(tc["args"]), id=tc["id"] or None
                ))
                for _, tc in sorted(active_tool_calls.items())
            ]
            return GenerateContentResponse.from_parts(
                parts,
                finish_reason=_FINISH_REASONS.get(finish_reason or "", finish_reason),
                usage=usage,
            )

        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta

                if delta.content:
                    yield GenerateContentResponse.from_parts([Part(text=delta.content)])

                for tc_delta in delta.tool_calls or []:
                    entry = active_tool_calls.setdefault(
                        tc_delta.index, {"id": "", "name": "", "args": ""}
                    )
                    if tc_delta.id:
                        entry["id"] = tc_delta.id
                    if tc_delta.function:
                        if tc_delta.function.name:
                            entry["name"] = tc_delta.function.name
                        if tc_delta.function.arguments:
                            entry["args"] += tc_delta.function.arguments

                finish_reason = chunk.choices[0].finish_reason
                if finish_reason is not None and not flushed:
                    flushed = True
                    yield flush(finish_reason, _usage(getattr(chunk, "usage", None)))
        except openai.APIError as e:
            raise _transport_error(e) from e

        if not flushed and active_tool_calls:
            yield flush(None, None)

    async def count_tokens(self, request: CountTokensRequest) -> CountTokensResponse:
        # The chat-completions API has no token counting endpoint
        return CountTokensResponse(total_tokens=approximate_token_count(request))

    async def embed_content(self, request: EmbedContentRequest) -> EmbedContentResponse:
        texts = [
            "".join(p.text or "" for p in content.parts) for content in request.contents
        ]
        try:
            response = await self.client.embeddings.create(model=request.model, input=texts)
        except openai.APIError as e:
            raise _transport_error(e) from e
        return EmbedContentResponse(embeddings=[item.embedding for item in response.data])

    async def close(self) -> None:
        await self.client.close()

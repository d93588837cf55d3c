"""
Anthropic Messages API backend.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import anthropic
from anthropic import AsyncAnthropic

from agent_runtime.adapters.base import ContentGenerator
from agent_runtime.adapters.transform import (
    system_text,
    to_anthropic_messages,
    to_anthropic_tool_choice,
    to_anthropic_tools,
)
from agent_runtime.errors import TransportError
from agent_runtime.types import (
    CountTokensRequest,
    CountTokensResponse,
    EmbedContentRequest,
    EmbedContentResponse,
    FunctionCall,
    GenerateContentRequest,
    GenerateContentResponse,
    GenerationConfig,
    Part,
    UsageMetadata,
)

_DEFAULT_MAX_TOKENS = 4096

_STOP_REASONS = {
    "end_turn": "STOP",
    "tool_use": "STOP",
    "stop_sequence": "STOP",
    "max_tokens": "MAX_TOKENS",
}


def _transport_error(e: anthropic.APIError) -> TransportError:
    return TransportError(f"Anthropic API error: {e}", status_code=getattr(e, "status_code", None))


def _block_to_part(block: Any) -> Part | None:
    if block.type == "text":
        return Part(text=block.text)
    if block.type == "tool_use":
        return Part(function_call=FunctionCall(name=block.name, args=dict(block.input or {}), id=block.id))
    return None


class AnthropicContentGenerator(ContentGenerator):
    """
    Anthropic backend. Embeddings are not offered by this API.

    Example:
        generator = AnthropicContentGenerator(api_key=os.environ["ANTHROPIC_API_KEY"])
    """

    def __init__(
        self,
        client: AsyncAnthropic | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        max_tokens: int = _DEFAULT_MAX_TOKENS,
    ) -> None:
        self.client = client or AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
            default_headers=headers or None,
            timeout=timeout,
        )
        self.max_tokens = max_tokens

    def _base_kwargs(self, model: str, contents: list, config: GenerationConfig) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": to_anthropic_messages(contents),
        }
        system = system_text(config)
        if system:
            kwargs["system"] = system
        if config.tools:
            kwargs["tools"] = to_anthropic_tools(config.tools)
            choice = to_anthropic_tool_choice(config)
            if choice is not None:
                kwargs["tool_choice"] = choice
        return kwargs

    def _request_kwargs(self, request: GenerateContentRequest) -> dict[str, Any]:
        config = request.config
        kwargs = self._base_kwargs(request.model, request.contents, config)
        kwargs["max_tokens"] = config.max_output_tokens or self.max_tokens
        optional = {
            "temperature": config.temperature,
            "top_p": config.top_p,
            "top_k": config.top_k,
            "stop_sequences": config.stop_sequences,
        }
        kwargs.update({k: v for k, v in optional.items() if v is not None})
        return kwargs

    async def generate_content(
        self, request: GenerateContentRequest
    ) -> GenerateContentResponse:
        try:
            message = await self.client.messages.create(**self._request_kwargs(request))
        except anthropic.APIError as e:
            raise _transport_error(e) from e
        parts = [p for p in (_block_to_part(b) for b in message.content) if p is not None]
        return GenerateContentResponse.from_parts(
            parts,
            finish_reason=_STOP_REASONS.get(message.stop_reason or "", message.stop_reason),
            usage=UsageMetadata(
                prompt_token_count=message.usage.input_tokens,
                candidates_token_count=message.usage.output_tokens,
                total_token_count=message.usage.input_tokens + message.usage.output_tokens,
            ),
        )

    async def generate_content_stream(
        self, request: GenerateContentRequest
    ) -> AsyncIterator[GenerateContentResponse]:
        """Yield text deltas as they stream and each tool_use block once it closes."""
        try:
            async with self.client.messages.stream(**self._request_kwargs(request)) as stream:
                async for event in stream:
                    if event.type == "text":
                        yield GenerateContentResponse.from_parts([Part(text=event.text)])
                    elif event.type == "content_block_stop" and event.content_block.type == "tool_use":
                        part = _block_to_part(event.content_block)
                        if part is not None:
                            yield GenerateContentResponse.from_parts([part])
        except anthropic.APIError as e:
            raise _transport_error(e) from e

    async def count_tokens(self, request: CountTokensRequest) -> CountTokensResponse:
        try:
            result = await self.client.messages.count_tokens(
                **self._base_kwargs(request.model, request.contents, GenerationConfig())
            )
        except anthropic.APIError as e:
            raise _transport_error(e) from e
        return CountTokensResponse(total_tokens=result.input_tokens)

    async def embed_content(self, request: EmbedContentRequest) -> EmbedContentResponse:
        raise NotImplementedError("Anthropic does not provide an embeddings API")

    async def close(self) -> None:
        await self.client.close()

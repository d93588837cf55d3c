"""
Base content generator interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from agent_runtime.types import (
    CountTokensRequest,
    CountTokensResponse,
    EmbedContentRequest,
    EmbedContentResponse,
    GenerateContentRequest,
    GenerateContentResponse,
)


class ContentGenerator(ABC):
    """
    Abstract base class for model backends.

    A content generator turns a provider-neutral
    :class:`~agent_runtime.types.GenerateContentRequest` into the backend's
    wire format and maps the answer back. Streams are lazy, finite and not
    restartable: calling :meth:`generate_content_stream` again re-sends the
    whole request.

    Example implementation for a custom backend:

        class EchoGenerator(ContentGenerator):
            async def generate_content(self, request):
                last = request.contents[-1].parts[0].text or ""
                return GenerateContentResponse.from_parts([Part(text=last)])

            async def count_tokens(self, request):
                return CountTokensResponse(total_tokens=0)
    """

    @abstractmethod
    async def generate_content(
        self, request: GenerateContentRequest
    ) -> GenerateContentResponse:
        """Send a request and return the complete response."""
        pass

    async def generate_content_stream(
        self, request: GenerateContentRequest
    ) -> AsyncIterator[GenerateContentResponse]:
        """
        Stream response chunks.

        Default implementation falls back to a single non-streaming call.
        Override for true streaming support.
        """
        yield await self.generate_content(request)

    @abstractmethod
    async def count_tokens(self, request: CountTokensRequest) -> CountTokensResponse:
        """Count the tokens ``request.contents`` would consume."""
        pass

    async def embed_content(self, request: EmbedContentRequest) -> EmbedContentResponse:
        """
        Embed ``request.contents``.

        Raises:
            NotImplementedError: When the backend has no embedding endpoint.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support embeddings")

    async def close(self) -> None:
        """Release network clients. Safe to call more than once."""
        return None


def approximate_token_count(request: CountTokensRequest) -> int:
    """Estimate tokens as one per four characters of text and call arguments."""
    chars = 0
    for content in request.contents:
        for part in content.parts:
            if part.text:
                chars += len(part.text)
            if part.function_call:
                chars += len(part.function_call.name) + len(str(part.function_call.args))
            if part.function_response:
                chars += len(str(part.function_response.response))
    return -(-chars // 4)

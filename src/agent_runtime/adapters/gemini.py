"""
Direct Gemini API backend (API key or Vertex AI).

Talks to the REST endpoints with httpx; streaming uses the same
``data:``/blank-line frame decoder as the proxied backend.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx

from agent_runtime.adapters.base import ContentGenerator
from agent_runtime.adapters.converter import to_vertex_request
from agent_runtime.errors import TransportError
from agent_runtime.logging import get_logger
from agent_runtime.transports.base import TransportConfig
from agent_runtime.transports.sse import SSETransport
from agent_runtime.types import (
    CountTokensRequest,
    CountTokensResponse,
    EmbedContentRequest,
    EmbedContentResponse,
    GenerateContentRequest,
    GenerateContentResponse,
)

logger = get_logger("adapters.gemini")

GEMINI_API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
VERTEX_API_BASE_URL = "https://aiplatform.googleapis.com/v1"


class GeminiContentGenerator(ContentGenerator):
    """
    Gemini backend over the public REST API.

    Example:
        generator = GeminiContentGenerator(api_key=os.environ["GEMINI_API_KEY"])
        response = await generator.generate_content(
            GenerateContentRequest(model="gemini-2.5-pro", contents=to_contents("Hi"))
        )
    """

    def __init__(
        self,
        api_key: str | None = None,
        vertexai: bool = False,
        project: str | None = None,
        location: str | None = None,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.vertexai = vertexai
        self.project = project
        self.location = location
        self.base_url = (base_url or self._default_base_url()).rstrip("/")
        self.headers = dict(headers or {})
        if api_key:
            self.headers["x-goog-api-key"] = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._transport = SSETransport(
            TransportConfig(headers=self.headers, timeout=timeout), client=self._client
        )

    def _default_base_url(self) -> str:
        if not self.vertexai:
            return GEMINI_API_BASE_URL
        if self.project and self.location and not self.api_key:
            return (
                f"https://{self.location}-aiplatform.googleapis.com/v1/projects/"
                f"{self.project}/locations/{self.location}"
            )
        return VERTEX_API_BASE_URL

    def _model_url(self, model: str, method: str) -> str:
        prefix = "publishers/google/models" if self.vertexai else "models"
        model = model.removeprefix("models/")
        return f"{self.base_url}/{prefix}/{model}:{method}"

    async def _post(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(url, json=body, headers=self.headers)
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {url} failed: {e}") from e
        if response.status_code >= 400:
            raise TransportError(
                f"Gemini API error {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )
        return response.json()

    async def generate_content(
        self, request: GenerateContentRequest
    ) -> GenerateContentResponse:
        data = await self._post(
            self._model_url(request.model, "generateContent"), to_vertex_request(request)
        )
        return GenerateContentResponse.from_dict(data)

    async def generate_content_stream(
        self, request: GenerateContentRequest
    ) -> AsyncIterator[GenerateContentResponse]:
        url = self._model_url(request.model, "streamGenerateContent")
        logger.debug("Streaming %s", url)
        async for record in self._transport.stream(to_vertex_request(request), url=url):
            yield GenerateContentResponse.from_dict(record)

    async def count_tokens(self, request: CountTokensRequest) -> CountTokensResponse:
        data = await self._post(
            self._model_url(request.model, "countTokens"),
            {"contents": [c.to_dict() for c in request.contents]},
        )
        return CountTokensResponse(total_tokens=data.get("totalTokens", 0))

    async def embed_content(self, request: EmbedContentRequest) -> EmbedContentResponse:
        model = request.model.removeprefix("models/")
        body = {
            "requests": [
                {"model": f"models/{model}", "content": {"parts": [p.to_dict() for p in c.parts]}}
                for c in request.contents
            ]
        }
        data = await self._post(self._model_url(model, "batchEmbedContents"), body)
        return EmbedContentResponse(
            embeddings=[e.get("values", []) for e in data.get("embeddings", [])]
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

"""
OAuth-proxied Code Assist backend.

Requests go to ``{endpoint}/v1internal:{method}`` wrapped in a
``{model, project, request}`` envelope; responses arrive wrapped in
``{response: ...}``. Streaming uses :class:`~agent_runtime.transports.sse.SSETransport`.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator
from typing import Any

import httpx

from agent_runtime.adapters.base import ContentGenerator
from agent_runtime.adapters.converter import (
    to_code_assist_count_request,
    to_code_assist_request,
)
from agent_runtime.adapters.oauth import OAuthCredentials
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

logger = get_logger("adapters.code_assist")

CODE_ASSIST_ENDPOINT = os.environ.get("CODE_ASSIST_ENDPOINT", "https://cloudcode-pa.googleapis.com")
CODE_ASSIST_API_VERSION = "v1internal"

_CLIENT_METADATA = {
    "ideType": "IDE_UNSPECIFIED",
    "platform": "PLATFORM_UNSPECIFIED",
    "pluginType": "GEMINI",
}


def _unwrap(record: dict[str, Any]) -> GenerateContentResponse:
    return GenerateContentResponse.from_dict(record.get("response") or {})


class CodeAssistContentGenerator(ContentGenerator):
    """Content generator for the OAuth-authenticated Code Assist proxy."""

    def __init__(
        self,
        credentials: OAuthCredentials,
        project: str | None = None,
        endpoint: str = CODE_ASSIST_ENDPOINT,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
        onboard_poll_interval: float = 5.0,
    ) -> None:
        self.credentials = credentials
        self.project = project
        self.endpoint = endpoint.rstrip("/")
        self.headers = dict(headers or {})
        self.onboard_poll_interval = onboard_poll_interval
        self._setup_done = project is not None
        self._setup_lock = asyncio.Lock()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._transport = SSETransport(
            TransportConfig(headers=self.headers, timeout=timeout), client=self._client
        )

    async def ensure_project(self) -> str | None:
        """Run :meth:`setup_user` before the first request when no project was configured."""
        if not self._setup_done:
            async with self._setup_lock:
                if not self._setup_done:
                    await self.setup_user()
                    self._setup_done = True
        return self.project

    def method_url(self, method: str) -> str:
        return f"{self.endpoint}/{CODE_ASSIST_API_VERSION}:{method}"

    async def call_endpoint(self, method: str, body: dict[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json", **self.headers}
        headers.update(await self.credentials.auth_headers())
        try:
            response = await self._client.post(self.method_url(method), json=body, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"Code Assist {method} failed: {e}") from e
        if response.status_code >= 400:
            raise TransportError(
                f"Code Assist {method} failed with HTTP {response.status_code}: "
                f"{response.text[:500]}",
                status_code=response.status_code,
            )
        return response.json()

    async def generate_content(
        self, request: GenerateContentRequest
    ) -> GenerateContentResponse:
        project = await self.ensure_project()
        record = await self.call_endpoint(
            "generateContent", to_code_assist_request(request, project)
        )
        return _unwrap(record)

    async def generate_content_stream(
        self, request: GenerateContentRequest
    ) -> AsyncIterator[GenerateContentResponse]:
        project = await self.ensure_project()
        headers = await self.credentials.auth_headers()
        async for record in self._transport.stream(
            to_code_assist_request(request, project),
            headers=headers,
            url=self.method_url("streamGenerateContent"),
        ):
            yield _unwrap(record)

    async def count_tokens(self, request: CountTokensRequest) -> CountTokensResponse:
        record = await self.call_endpoint("countTokens", to_code_assist_count_request(request))
        return CountTokensResponse(total_tokens=record.get("totalTokens", 0))

    async def embed_content(self, request: EmbedContentRequest) -> EmbedContentResponse:
        raise NotImplementedError("Code Assist does not support embedContent")

    async def setup_user(self) -> str:
        """
        Resolve the Code Assist project for the signed-in user.

        Calls ``loadCodeAssist`` and then polls ``onboardUser`` until the
        long-running onboarding operation reports ``done``.
        """
        metadata = {**_CLIENT_METADATA, "duetProject": self.project}
        loaded = await self.call_endpoint(
            "loadCodeAssist",
            {"cloudaicompanionProject": self.project, "metadata": metadata},
        )
        tier = next(
            (t.get("id") for t in loaded.get("allowedTiers", []) if t.get("isDefault")),
            "legacy-tier",
        )
        onboard = {
            "tierId": tier,
            "cloudaicompanionProject": loaded.get("cloudaicompanionProject") or self.project or "",
            "metadata": metadata,
        }
        operation = await self.call_endpoint("onboardUser", onboard)
        while not operation.get("done"):
            await asyncio.sleep(self.onboard_poll_interval)
            operation = await self.call_endpoint("onboardUser", onboard)

        project = (
            (operation.get("response") or {}).get("cloudaicompanionProject") or {}
        ).get("id", "")
        self.project = project or self.project
        logger.info("Code Assist project: %s", self.project)
        return self.project or ""

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

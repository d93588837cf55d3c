"""
Multi-provider routing.

A providers document names several backends and routes each task category
(``chat``, ``fast``, ``embedding``, ``code``) to one of them, so a single
session can, for instance, chat through one vendor and embed through another.

Example YAML (the ``providers`` key of the runtime config):
    default_provider: openrouter
    providers:
      - id: openrouter
        name: OpenRouter
        type: openrouter
        base_url: https://openrouter.ai/api/v1
        auth: {api_key: sk-or-...}
        models: {chat: anthropic/claude-3.5-sonnet, fast: openai/gpt-4o-mini}
      - id: gemini
        name: Google Gemini
        type: gemini
        base_url: https://generativelanguage.googleapis.com/v1beta
        auth: {api_key: AIza...}
        models: {chat: gemini-2.5-pro, embedding: text-embedding-004}
    model_routing:
      embedding: gemini
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml

from agent_runtime.adapters.base import ContentGenerator
from agent_runtime.adapters.gemini import GeminiContentGenerator
from agent_runtime.adapters.openai import OpenAICompatibleContentGenerator
from agent_runtime.errors import ConfigError
from agent_runtime.logging import get_logger
from agent_runtime.types import (
    CountTokensRequest,
    CountTokensResponse,
    EmbedContentRequest,
    EmbedContentResponse,
    GenerateContentRequest,
    GenerateContentResponse,
)

logger = get_logger("adapters.providers")

TaskType = Literal["chat", "fast", "embedding", "code"]
TASK_TYPES: tuple[str, ...] = ("chat", "fast", "embedding", "code")
PROVIDER_TYPES = frozenset({"openrouter", "deepseek", "openai-compatible", "gemini"})


def _get(data: dict[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    return data.get(snake, data.get(camel, default))


@dataclass
class ProviderModels:
    chat: str
    fast: str | None = None
    embedding: str | None = None
    code: str | None = None

    def for_task(self, task: str) -> str:
        """Model for ``task``, falling back to the chat model."""
        return getattr(self, task, None) or self.chat

    def all(self) -> list[str]:
        return [m for m in (self.chat, self.fast, self.embedding, self.code) if m]


@dataclass
class ProviderConfig:
    id: str
    name: str
    type: str
    base_url: str
    api_key: str
    models: ProviderModels
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None
    parameters: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderConfig:
        auth = data.get("auth") or {}
        models = data.get("models") or {}
        settings = data.get("settings") or {}
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            type=data.get("type", ""),
            base_url=_get(data, "base_url", "baseUrl", ""),
            api_key=_get(auth, "api_key", "apiKey", ""),
            headers=dict(auth.get("headers") or {}),
            models=ProviderModels(
                chat=models.get("chat", ""),
                fast=models.get("fast"),
                embedding=models.get("embedding"),
                code=models.get("code"),
            ),
            timeout=settings.get("timeout"),
            parameters=dict(settings.get("parameters") or {}),
        )


class ProviderConfigManager:
    """Validated view over a providers document."""

    def __init__(
        self,
        default_provider: str,
        providers: list[ProviderConfig],
        model_routing: dict[str, str] | None = None,
    ) -> None:
        self.default_provider = default_provider
        self.providers = list(providers)
        self.model_routing = dict(model_routing or {})
        self.validate()

    def validate(self) -> None:
        if not self.default_provider:
            raise ConfigError("Default provider must be specified")
        if not self.providers:
            raise ConfigError("At least one provider must be configured")
        ids = [p.id for p in self.providers]
        if self.default_provider not in ids:
            raise ConfigError(
                f"Default provider '{self.default_provider}' not found in providers list"
            )
        for provider in self.providers:
            if not (provider.id and provider.name and provider.type and provider.base_url):
                raise ConfigError(f"Provider {provider.id or 'unknown'} is missing required fields")
            if provider.type not in PROVIDER_TYPES:
                raise ConfigError(f"Provider {provider.id} has unsupported type '{provider.type}'")
            if not provider.api_key:
                raise ConfigError(f"Provider {provider.id} is missing API key")
            if not provider.models.chat:
                raise ConfigError(f"Provider {provider.id} is missing chat model configuration")
        for task, provider_id in self.model_routing.items():
            if task not in TASK_TYPES:
                raise ConfigError(f"Unknown task type in model routing: '{task}'")
            if provider_id not in ids:
                raise ConfigError(f"Model routing for '{task}' names unknown provider '{provider_id}'")

    def get_provider(self, provider_id: str) -> ProviderConfig:
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        raise ConfigError(f"Provider '{provider_id}' not found")

    def get_default_provider(self) -> ProviderConfig:
        return self.get_provider(self.default_provider)

    def get_provider_for_task(self, task: str) -> ProviderConfig:
        routed = self.model_routing.get(task)
        return self.get_provider(routed) if routed else self.get_default_provider()

    def get_model_for_task(self, task: str) -> str:
        return self.get_provider_for_task(task).models.for_task(task)

    def get_all_providers(self) -> list[ProviderConfig]:
        return list(self.providers)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderConfigManager:
        return cls(
            default_provider=_get(data, "default_provider", "defaultProvider", ""),
            providers=[ProviderConfig.from_dict(p) for p in data.get("providers") or []],
            model_routing=_get(data, "model_routing", "modelRouting"),
        )

    @classmethod
    def from_json(cls, content: str) -> ProviderConfigManager:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Failed to parse provider configuration: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: Path) -> ProviderConfigManager:
        """Load a JSON or YAML providers document."""
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Failed to load provider configuration from {path}: {e}") from e
        if Path(path).suffix in (".yaml", ".yml"):
            return cls.from_dict(yaml.safe_load(text) or {})
        return cls.from_json(text)


def create_provider_generator(
    provider: ProviderConfig, headers: dict[str, str] | None = None
) -> ContentGenerator:
    """Build the backend for one provider entry."""
    merged = {**(headers or {}), **provider.headers}
    if provider.type == "gemini":
        return GeminiContentGenerator(
            api_key=provider.api_key,
            base_url=provider.base_url,
            headers=merged,
            timeout=provider.timeout,
        )
    return OpenAICompatibleContentGenerator(
        api_key=provider.api_key,
        base_url=provider.base_url,
        headers=merged,
        timeout=provider.timeout,
    )


class MultiProviderContentGenerator(ContentGenerator):
    """
    Routes each call to the provider configured for its task.

    Generation and token counting use the session's task type; embeddings
    always use the ``embedding`` route. Gemini-typed providers are served
    by ``primary`` when one is given. Request model names are replaced by
    the routed provider's model for the task.
    """

    def __init__(
        self,
        manager: ProviderConfigManager,
        primary: ContentGenerator | None = None,
        task_type: str = "chat",
        headers: dict[str, str] | None = None,
    ) -> None:
        if task_type not in TASK_TYPES:
            raise ConfigError(f"Unknown task type: '{task_type}'")
        self.manager = manager
        self.primary = primary
        self.task_type = task_type
        self.headers = dict(headers or {})
        self._override: str | None = None
        self._generators: dict[str, ContentGenerator] = {}

    def _provider_for(self, task: str) -> ProviderConfig:
        if self._override is not None:
            return self.manager.get_provider(self._override)
        return self.manager.get_provider_for_task(task)

    def _generator_for(self, provider: ProviderConfig) -> ContentGenerator:
        if provider.type == "gemini" and self.primary is not None:
            return self.primary
        generator = self._generators.get(provider.id)
        if generator is None:
            generator = create_provider_generator(provider, self.headers)
            self._generators[provider.id] = generator
            logger.debug("Created %s generator for provider %s", provider.type, provider.id)
        return generator

    def _route(self, task: str) -> tuple[ContentGenerator, str]:
        provider = self._provider_for(task)
        return self._generator_for(provider), provider.models.for_task(task)

    async def generate_content(
        self, request: GenerateContentRequest
    ) -> GenerateContentResponse:
        generator, model = self._route(self.task_type)
        return await generator.generate_content(dataclasses.replace(request, model=model))

    async def generate_content_stream(
        self, request: GenerateContentRequest
    ) -> AsyncIterator[GenerateContentResponse]:
        generator, model = self._route(self.task_type)
        async for chunk in generator.generate_content_stream(
            dataclasses.replace(request, model=model)
        ):
            yield chunk

    async def count_tokens(self, request: CountTokensRequest) -> CountTokensResponse:
        generator, model = self._route(self.task_type)
        return await generator.count_tokens(dataclasses.replace(request, model=model))

    async def embed_content(self, request: EmbedContentRequest) -> EmbedContentResponse:
        generator, model = self._route("embedding")
        return await generator.embed_content(dataclasses.replace(request, model=model))

    def switch_provider(self, provider_id: str, task_type: str | None = None) -> None:
        """Pin every task to ``provider_id`` (validated) until switched again."""
        self.manager.get_provider(provider_id)
        if task_type is not None:
            if task_type not in TASK_TYPES:
                raise ConfigError(f"Unknown task type: '{task_type}'")
            self.task_type = task_type
        self._override = provider_id
        logger.info("Switched to provider %s (task=%s)", provider_id, self.task_type)

    def get_current_provider(self) -> dict[str, str]:
        provider = self._provider_for(self.task_type)
        return {"id": provider.id, "name": provider.name, "type": provider.type}

    def get_available_models(self) -> list[str]:
        return self._provider_for(self.task_type).models.all()

    async def close(self) -> None:
        for generator in self._generators.values():
            await generator.close()
        self._generators.clear()
        if self.primary is not None:
            await self.primary.close()

"""Tests for multi-provider routing and content generator selection."""

from __future__ import annotations

import json
from typing import Any

import pytest

from agent_runtime.adapters import providers as providers_module
from agent_runtime.adapters.anthropic import AnthropicContentGenerator
from agent_runtime.adapters.base import ContentGenerator
from agent_runtime.adapters.gemini import GeminiContentGenerator
from agent_runtime.adapters.openai import OpenAICompatibleContentGenerator
from agent_runtime.adapters.providers import (
    MultiProviderContentGenerator,
    ProviderConfigManager,
)
from agent_runtime.adapters.registry import GeneratorRegistry, create_content_generator
from agent_runtime.config import AuthType, RuntimeConfig
from agent_runtime.errors import ConfigError
from agent_runtime.types import (
    CountTokensRequest,
    CountTokensResponse,
    EmbedContentRequest,
    EmbedContentResponse,
    GenerateContentRequest,
    GenerateContentResponse,
    Part,
    to_contents,
)


def _document() -> dict[str, Any]:
    return {
        "default_provider": "router",
        "providers": [
            {
                "id": "router",
                "name": "Router",
                "type": "openrouter",
                "base_url": "https://router.example/v1",
                "auth": {"api_key": "sk-router"},
                "models": {"chat": "chat-model", "fast": "fast-model"},
            },
            {
                "id": "gemini",
                "name": "Gemini",
                "type": "gemini",
                "base_url": "https://gemini.example/v1beta",
                "auth": {"apiKey": "AIza"},
                "models": {"chat": "gemini-chat", "embedding": "gemini-embed"},
            },
        ],
        "model_routing": {"embedding": "gemini"},
    }


class NamedGenerator(ContentGenerator):
    def __init__(self, name: str) -> None:
        self.name = name
        self.models: list[str] = []
        self.closed = False

    async def generate_content(self, request: GenerateContentRequest) -> GenerateContentResponse:
        self.models.append(request.model)
        return GenerateContentResponse.from_parts([Part(text=self.name)])

    async def count_tokens(self, request: CountTokensRequest) -> CountTokensResponse:
        self.models.append(request.model)
        return CountTokensResponse(total_tokens=1)

    async def embed_content(self, request: EmbedContentRequest) -> EmbedContentResponse:
        self.models.append(request.model)
        return EmbedContentResponse(embeddings=[[0.5]])

    async def close(self) -> None:
        self.closed = True


class TestProviderConfigManager:
    def test_from_dict(self) -> None:
        manager = ProviderConfigManager.from_dict(_document())
        assert manager.get_default_provider().id == "router"
        assert manager.get_provider("gemini").api_key == "AIza"
        assert manager.get_provider_for_task("embedding").id == "gemini"
        assert manager.get_model_for_task("fast") == "fast-model"
        # Unset task models fall back to the chat model
        assert manager.get_model_for_task("code") == "chat-model"

    def test_from_json_and_yaml_file(self, tmp_path) -> None:
        json_path = tmp_path / "providers.json"
        json_path.write_text(json.dumps(_document()))
        assert len(ProviderConfigManager.from_file(json_path).get_all_providers()) == 2

        yaml_path = tmp_path / "providers.yaml"
        yaml_path.write_text("default_provider: local\nproviders:\n"
                             "  - {id: local, name: Local, type: openai-compatible,"
                             " base_url: 'http://localhost:8080/v1', auth: {api_key: x},"
                             " models: {chat: llama}}\n")
        assert ProviderConfigManager.from_file(yaml_path).get_model_for_task("chat") == "llama"

    def test_malformed_json(self) -> None:
        with pytest.raises(ConfigError, match="Failed to parse"):
            ProviderConfigManager.from_json("{not json")

    @pytest.mark.parametrize(
        "mutate, message",
        [
            (lambda d: d.update(default_provider="missing"), "not found in providers"),
            (lambda d: d.update(providers=[]), "At least one provider"),
            (lambda d: d["providers"][0].update(type="bogus"), "unsupported type"),
            (lambda d: d["providers"][0]["auth"].pop("api_key"), "missing API key"),
            (lambda d: d["providers"][0]["models"].pop("chat"), "missing chat model"),
            (lambda d: d["model_routing"].update(vision="router"), "Unknown task type"),
            (lambda d: d["model_routing"].update(fast="nowhere"), "unknown provider"),
        ],
    )
    def test_validation(self, mutate, message) -> None:
        document = _document()
        mutate(document)
        with pytest.raises(ConfigError, match=message):
            ProviderConfigManager.from_dict(document)


class TestMultiProviderContentGenerator:
    @pytest.fixture
    def built(self, monkeypatch) -> dict[str, NamedGenerator]:
        built: dict[str, NamedGenerator] = {}

        def fake_create(provider, headers=None):
            built[provider.id] = NamedGenerator(provider.id)
            return built[provider.id]

        monkeypatch.setattr(providers_module, "create_provider_generator", fake_create)
        return built

    def _request(self) -> GenerateContentRequest:
        return GenerateContentRequest(model="ignored", contents=to_contents("hi"))

    @pytest.mark.asyncio
    async def test_routes_chat_to_default_provider(self, built) -> None:
        generator = MultiProviderContentGenerator(ProviderConfigManager.from_dict(_document()))

        response = await generator.generate_content(self._request())

        assert response.text == "router"
        assert built["router"].models == ["chat-model"]

    @pytest.mark.asyncio
    async def test_embeddings_follow_embedding_route(self, built) -> None:
        generator = MultiProviderContentGenerator(ProviderConfigManager.from_dict(_document()))

        result = await generator.embed_content(EmbedContentRequest(model="x", contents=to_contents("a")))

        assert result.embeddings == [[0.5]]
        assert built["gemini"].models == ["gemini-embed"]

    @pytest.mark.asyncio
    async def test_gemini_routes_use_primary(self, built) -> None:
        primary = NamedGenerator("primary")
        generator = MultiProviderContentGenerator(
            ProviderConfigManager.from_dict(_document()), primary=primary
        )

        await generator.embed_content(EmbedContentRequest(model="x", contents=to_contents("a")))

        assert primary.models == ["gemini-embed"]
        assert "gemini" not in built

    @pytest.mark.asyncio
    async def test_task_type_selects_model(self, built) -> None:
        generator = MultiProviderContentGenerator(
            ProviderConfigManager.from_dict(_document()), task_type="fast"
        )

        await generator.count_tokens(CountTokensRequest(model="x", contents=to_contents("a")))

        assert built["router"].models == ["fast-model"]

    @pytest.mark.asyncio
    async def test_switch_provider(self, built) -> None:
        generator = MultiProviderContentGenerator(ProviderConfigManager.from_dict(_document()))
        generator.switch_provider("gemini")

        response = await generator.generate_content(self._request())

        assert response.text == "gemini"
        assert generator.get_current_provider()["id"] == "gemini"
        assert generator.get_available_models() == ["gemini-chat", "gemini-embed"]
        with pytest.raises(ConfigError):
            generator.switch_provider("nope")

    @pytest.mark.asyncio
    async def test_generators_are_cached_and_closed(self, built) -> None:
        generator = MultiProviderContentGenerator(ProviderConfigManager.from_dict(_document()))
        await generator.generate_content(self._request())
        await generator.generate_content(self._request())
        router = built["router"]

        await generator.close()

        assert router.models == ["chat-model", "chat-model"]
        assert router.closed

    def test_unknown_task_type(self) -> None:
        with pytest.raises(ConfigError):
            MultiProviderContentGenerator(
                ProviderConfigManager.from_dict(_document()), task_type="dream"
            )


class TestGeneratorRegistry:
    def test_defaults_cover_every_auth_type(self) -> None:
        registry = GeneratorRegistry.with_defaults()
        for auth in AuthType:
            assert auth.value in registry

    def test_register_create_unregister(self) -> None:
        registry = GeneratorRegistry()
        made = NamedGenerator("custom")
        registry.register_factory("custom", lambda config, headers: made, source="plugin")

        assert registry.create("custom", RuntimeConfig()) is made
        assert registry.list_generators() == ["custom"]
        assert registry.unregister_by_source("plugin") == 1
        assert len(registry) == 0

    def test_missing_factory(self) -> None:
        with pytest.raises(KeyError, match="not found"):
            GeneratorRegistry().create("nope", RuntimeConfig())

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValueError):
            GeneratorRegistry().register_factory("", lambda c, h: NamedGenerator("x"))


class TestCreateContentGenerator:
    @pytest.mark.parametrize(
        "auth_type, expected",
        [
            (AuthType.USE_GEMINI, GeminiContentGenerator),
            (AuthType.USE_OPENAI_COMPATIBLE, OpenAICompatibleContentGenerator),
            (AuthType.USE_LOCAL_LLM, OpenAICompatibleContentGenerator),
            (AuthType.USE_ANTHROPIC, AnthropicContentGenerator),
        ],
    )
    def test_selects_backend_by_auth_type(self, auth_type, expected) -> None:
        config = RuntimeConfig(auth_type=auth_type, api_key="key", base_url="http://localhost:1")
        assert isinstance(create_content_generator(config), expected)

    def test_custom_registry_receives_user_agent(self) -> None:
        seen: dict[str, str] = {}

        def factory(config, headers):
            seen.update(headers)
            return NamedGenerator("x")

        registry = GeneratorRegistry()
        registry.register_factory(AuthType.USE_GEMINI.value, factory)
        config = RuntimeConfig(custom_headers={"X-Trace": "1"})

        create_content_generator(config, registry=registry)

        assert seen["User-Agent"].startswith("AgentRuntime/")
        assert seen["X-Trace"] == "1"

    def test_unsupported_auth_type(self) -> None:
        with pytest.raises(ConfigError, match="Unsupported auth type"):
            create_content_generator(RuntimeConfig(), registry=GeneratorRegistry())

    def test_providers_document_builds_router(self) -> None:
        config = RuntimeConfig(
            auth_type=AuthType.USE_OPENAI_COMPATIBLE, api_key="k", providers=_document()
        )
        generator = create_content_generator(config)
        assert isinstance(generator, MultiProviderContentGenerator)
        assert generator.primary is None

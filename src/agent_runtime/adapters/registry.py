"""
Content generator factories keyed by auth type.

Example:
    from agent_runtime.adapters.registry import GeneratorRegistry, create_content_generator

    registry = GeneratorRegistry.with_defaults()

    # Plug in a custom backend
    registry.register_factory("my-llm", lambda config: MyGenerator(config.base_url))

    generator = create_content_generator(config, registry=registry)
"""

from __future__ import annotations

import platform
import sys
from collections.abc import Callable
from importlib.metadata import PackageNotFoundError, version

from agent_runtime.adapters.anthropic import AnthropicContentGenerator
from agent_runtime.adapters.base import ContentGenerator
from agent_runtime.adapters.code_assist import CodeAssistContentGenerator
from agent_runtime.adapters.gemini import GeminiContentGenerator
from agent_runtime.adapters.oauth import OAuthCredentials
from agent_runtime.adapters.openai import OpenAICompatibleContentGenerator
from agent_runtime.adapters.providers import (
    MultiProviderContentGenerator,
    ProviderConfigManager,
)
from agent_runtime.config import AuthType, RuntimeConfig
from agent_runtime.errors import ConfigError
from agent_runtime.logging import get_logger

logger = get_logger("adapters.registry")

# (config, headers) -> ContentGenerator
GeneratorFactory = Callable[[RuntimeConfig, dict[str, str]], ContentGenerator]


def user_agent() -> str:
    try:
        pkg_version = version("agent-runtime")
    except PackageNotFoundError:
        pkg_version = "dev"
    return f"AgentRuntime/{pkg_version} ({sys.platform}; {platform.machine()})"


class _FactoryEntry:
    """Internal entry holding a factory and who registered it."""

    __slots__ = ("name", "factory", "source")

    def __init__(self, name: str, factory: GeneratorFactory, source: str = "") -> None:
        self.name = name
        self.factory = factory
        self.source = source


class GeneratorRegistry:
    """
    A registry of content generator factories.

    Names are auth-type strings (``gemini-api-key``, ``anthropic``, ...) or any
    custom key. Registering an existing name replaces it; the last
    registration wins.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _FactoryEntry] = {}

    def register_factory(self, name: str, factory: GeneratorFactory, source: str = "") -> None:
        """
        Register a factory.

        Raises:
            ValueError: If name is empty
        """
        if not name:
            raise ValueError("Generator name must not be empty")
        if name in self._entries:
            logger.debug("Overriding generator factory: %s", name)
        self._entries[name] = _FactoryEntry(name=name, factory=factory, source=source)
        logger.debug("Registered generator factory: %s (source=%s)", name, source or "manual")

    def create(self, name: str, config: RuntimeConfig, headers: dict[str, str] | None = None) -> ContentGenerator:
        """
        Build a generator with the factory registered under ``name``.

        Raises:
            KeyError: If no factory has that name
        """
        entry = self._entries.get(name)
        if entry is None:
            available = ", ".join(self._entries) or "(none)"
            raise KeyError(f"Generator '{name}' not found. Available: {available}")
        logger.debug("Creating content generator '%s'", name)
        return entry.factory(config, dict(headers or {}))

    def unregister(self, name: str) -> bool:
        return self._entries.pop(name, None) is not None

    def unregister_by_source(self, source: str) -> int:
        """Remove all factories registered by ``source``. Returns count removed."""
        to_remove = [name for name, e in self._entries.items() if e.source == source]
        for name in to_remove:
            del self._entries[name]
        return len(to_remove)

    def list_generators(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @classmethod
    def with_defaults(cls) -> GeneratorRegistry:
        """A registry pre-populated with every built-in backend."""
        registry = cls()
        registry.register_factory(AuthType.LOGIN_WITH_GOOGLE.value, _code_assist, source="builtin")
        registry.register_factory(AuthType.USE_GEMINI.value, _gemini, source="builtin")
        registry.register_factory(AuthType.USE_VERTEX_AI.value, _gemini, source="builtin")
        registry.register_factory(AuthType.USE_OPENAI_COMPATIBLE.value, _openai, source="builtin")
        registry.register_factory(AuthType.USE_LOCAL_LLM.value, _openai, source="builtin")
        registry.register_factory(AuthType.USE_ANTHROPIC.value, _anthropic, source="builtin")
        return registry


def _code_assist(config: RuntimeConfig, headers: dict[str, str]) -> ContentGenerator:
    return CodeAssistContentGenerator(
        credentials=OAuthCredentials(config.oauth_credentials_path),
        project=config.project or None,
        headers=headers,
        timeout=config.timeout,
    )


def _gemini(config: RuntimeConfig, headers: dict[str, str]) -> ContentGenerator:
    return GeminiContentGenerator(
        api_key=config.api_key or None,
        vertexai=config.vertexai,
        project=config.project,
        location=config.location,
        base_url=config.base_url,
        headers=headers,
        timeout=config.timeout,
    )


def _openai(config: RuntimeConfig, headers: dict[str, str]) -> ContentGenerator:
    return OpenAICompatibleContentGenerator(
        api_key=config.api_key,
        base_url=config.base_url,
        headers=headers,
        timeout=config.timeout,
    )


def _anthropic(config: RuntimeConfig, headers: dict[str, str]) -> ContentGenerator:
    return AnthropicContentGenerator(
        api_key=config.api_key,
        base_url=config.base_url,
        headers=headers,
        timeout=config.timeout,
    )


def create_content_generator(
    config: RuntimeConfig, registry: GeneratorRegistry | None = None
) -> ContentGenerator:
    """
    Build the generator ``config`` selects.

    With a ``providers`` document the result is a
    :class:`MultiProviderContentGenerator` whose Gemini-typed routes are
    served by the auth-type backend when that backend is Gemini-family.
    """
    if registry is None:
        registry = GeneratorRegistry.with_defaults()
    headers = {"User-Agent": user_agent(), **config.custom_headers}

    if config.providers:
        manager = ProviderConfigManager.from_dict(config.providers)
        primary = None
        if config.auth_type in (AuthType.USE_GEMINI, AuthType.USE_VERTEX_AI, AuthType.LOGIN_WITH_GOOGLE):
            primary = registry.create(config.auth_type.value, config, headers)
        return MultiProviderContentGenerator(
            manager, primary=primary, task_type=config.task_type, headers=headers
        )

    try:
        return registry.create(config.auth_type.value, config, headers)
    except KeyError as e:
        raise ConfigError(f"Unsupported auth type: {config.auth_type.value}") from e

"""
Content generators: one interface over several model backends.
"""

from agent_runtime.adapters.anthropic import AnthropicContentGenerator
from agent_runtime.adapters.base import ContentGenerator
from agent_runtime.adapters.code_assist import CodeAssistContentGenerator
from agent_runtime.adapters.gemini import GeminiContentGenerator
from agent_runtime.adapters.oauth import OAuthCredentials, OAuthToken
from agent_runtime.adapters.openai import OpenAICompatibleContentGenerator
from agent_runtime.adapters.providers import (
    MultiProviderContentGenerator,
    ProviderConfig,
    ProviderConfigManager,
)
from agent_runtime.adapters.registry import GeneratorRegistry, create_content_generator

__all__ = [
    "AnthropicContentGenerator",
    "CodeAssistContentGenerator",
    "ContentGenerator",
    "GeminiContentGenerator",
    "GeneratorRegistry",
    "MultiProviderContentGenerator",
    "OAuthCredentials",
    "OAuthToken",
    "OpenAICompatibleContentGenerator",
    "ProviderConfig",
    "ProviderConfigManager",
    "create_content_generator",
]

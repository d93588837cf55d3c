"""
Configuration models for the agent runtime.

Configuration can be loaded from YAML, built from a plain dictionary, or
resolved from environment variables (``.env`` files are loaded by the CLI
through python-dotenv before :meth:`RuntimeConfig.from_env` runs).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from agent_runtime.errors import ConfigError

DEFAULT_GEMINI_MODEL = "gemini-2.5-pro"
DEFAULT_OPENAI_MODEL = "gpt-4o"
DEFAULT_ANTHROPIC_MODEL = "claude-3-5-sonnet-20241022"
DEFAULT_LOCAL_MODEL = "llama2"

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_ANTHROPIC_BASE_URL = "https://api.anthropic.com"
DEFAULT_LOCAL_BASE_URL = "http://localhost:8080"


class AuthType(str, Enum):
    """How the runtime authenticates against its model backend."""

    LOGIN_WITH_GOOGLE = "oauth-personal"
    USE_GEMINI = "gemini-api-key"
    USE_VERTEX_AI = "vertex-ai"
    USE_OPENAI_COMPATIBLE = "openai-compatible"
    USE_ANTHROPIC = "anthropic"
    USE_LOCAL_LLM = "local-llm"


@dataclass
class McpServerConfig:
    """
    Connection settings for one MCP server.

    Either ``command`` (stdio transport) or ``url`` (SSE transport) must be set.
    """

    command: str | None = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    url: str | None = None
    timeout: float | None = None  # None = no timeout
    trust: bool = False  # trusted servers skip confirmation

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> McpServerConfig:
        return cls(
            command=data.get("command"),
            args=list(data.get("args", [])),
            env=dict(data.get("env", {})),
            cwd=data.get("cwd"),
            url=data.get("url"),
            timeout=data.get("timeout"),
            trust=data.get("trust", False),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "args": self.args,
            "env": self.env,
            "cwd": self.cwd,
            "url": self.url,
            "timeout": self.timeout,
            "trust": self.trust,
        }


@dataclass
class RuntimeConfig:
    """
    Main configuration for the agent runtime.

    Example YAML:
        auth_type: openai-compatible
        model: gpt-4o
        target_dir: ./workspace
        core_tools: [read_file, list_directory]
        tool_discovery_command: python3 tools.py discover
        tool_call_command: python3 tools.py call
        mcp_servers:
          files:
            command: npx
            args: ["-y", "@modelcontextprotocol/server-filesystem", "."]
            trust: true
    """

    # Model backend
    auth_type: AuthType = AuthType.USE_GEMINI
    model: str = DEFAULT_GEMINI_MODEL
    api_key: str | None = None
    vertexai: bool = False
    project: str | None = None
    location: str | None = None
    base_url: str | None = None
    custom_headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None
    oauth_credentials_path: Path | None = None

    # Generation
    temperature: float | None = None
    max_output_tokens: int | None = None
    system_instruction: str | None = None

    # Tools
    target_dir: Path = field(default_factory=Path.cwd)
    core_tools: list[str] | None = None  # None = all built-in tools
    exclude_tools: list[str] = field(default_factory=list)
    tool_discovery_command: str | None = None
    tool_call_command: str | None = None
    mcp_servers: dict[str, McpServerConfig] = field(default_factory=dict)

    # Multi-provider routing document (see adapters.providers)
    providers: dict[str, Any] | None = None
    task_type: str = "chat"

    # Agent loop
    max_turns: int = 20
    auto_approve: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuntimeConfig:
        """Create config from a dictionary."""
        try:
            auth_type = AuthType(data.get("auth_type", AuthType.USE_GEMINI.value))
        except ValueError as e:
            raise ConfigError(f"Unknown auth_type: {data.get('auth_type')!r}") from e

        servers = {
            name: McpServerConfig.from_dict(server or {})
            for name, server in (data.get("mcp_servers") or {}).items()
        }
        for name, server in servers.items():
            if not server.command and not server.url:
                raise ConfigError(f"MCP server {name!r} needs either 'command' or 'url'")

        credentials = data.get("oauth_credentials_path")
        return cls(
            auth_type=auth_type,
            model=data.get("model", DEFAULT_GEMINI_MODEL),
            api_key=data.get("api_key"),
            vertexai=data.get("vertexai", auth_type is AuthType.USE_VERTEX_AI),
            project=data.get("project"),
            location=data.get("location"),
            base_url=data.get("base_url"),
            custom_headers=dict(data.get("custom_headers", {})),
            timeout=data.get("timeout"),
            oauth_credentials_path=Path(credentials).expanduser() if credentials else None,
            temperature=data.get("temperature"),
            max_output_tokens=data.get("max_output_tokens"),
            system_instruction=data.get("system_instruction"),
            target_dir=Path(data.get("target_dir", ".")).expanduser().resolve(),
            core_tools=data.get("core_tools"),
            exclude_tools=list(data.get("exclude_tools", [])),
            tool_discovery_command=data.get("tool_discovery_command"),
            tool_call_command=data.get("tool_call_command"),
            mcp_servers=servers,
            providers=data.get("providers"),
            task_type=data.get("task_type", "chat"),
            max_turns=data.get("max_turns", 20),
            auto_approve=data.get("auto_approve", False),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> RuntimeConfig:
        """Load config from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_yaml_string(cls, content: str) -> RuntimeConfig:
        """Load config from a YAML string."""
        data = yaml.safe_load(content)
        return cls.from_dict(data or {})

    @classmethod
    def from_env(
        cls,
        auth_type: AuthType | str | None = None,
        model: str | None = None,
        base: RuntimeConfig | None = None,
        environ: dict[str, str] | None = None,
    ) -> RuntimeConfig:
        """
        Resolve backend credentials from environment variables.

        Args:
            auth_type: Backend to configure; defaults to ``base.auth_type``
            model: Model name; Gemini model names are swapped for the
                backend's default when a non-Gemini backend is selected
            base: Config to start from (a copy is returned)
            environ: Environment mapping (defaults to ``os.environ``)
        """
        env = os.environ if environ is None else environ
        config = cls.from_dict(base.to_dict()) if base else cls()
        if auth_type is not None:
            config.auth_type = AuthType(auth_type)
        if model:
            config.model = model

        custom_base_url = env.get("CUSTOM_BASE_URL")
        custom_timeout = env.get("CUSTOM_TIMEOUT")
        if custom_base_url:
            config.base_url = custom_base_url
        if custom_timeout:
            try:
                config.timeout = float(custom_timeout)
            except ValueError as e:
                raise ConfigError(f"CUSTOM_TIMEOUT is not a number: {custom_timeout!r}") from e

        is_gemini_model = "gemini" in config.model
        auth = config.auth_type

        if auth is AuthType.USE_GEMINI:
            config.api_key = env.get("GEMINI_API_KEY", config.api_key)
        elif auth is AuthType.USE_VERTEX_AI:
            config.api_key = env.get("GOOGLE_API_KEY", config.api_key)
            config.project = env.get("GOOGLE_CLOUD_PROJECT", config.project)
            config.location = env.get("GOOGLE_CLOUD_LOCATION", config.location)
            config.vertexai = True
        elif auth is AuthType.USE_OPENAI_COMPATIBLE:
            config.api_key = env.get("OPENAI_API_KEY", config.api_key)
            config.base_url = config.base_url or DEFAULT_OPENAI_BASE_URL
            if is_gemini_model:
                config.model = DEFAULT_OPENAI_MODEL
        elif auth is AuthType.USE_ANTHROPIC:
            config.api_key = env.get("ANTHROPIC_API_KEY", config.api_key)
            config.base_url = config.base_url or DEFAULT_ANTHROPIC_BASE_URL
            if is_gemini_model:
                config.model = DEFAULT_ANTHROPIC_MODEL
        elif auth is AuthType.USE_LOCAL_LLM:
            # Most local servers ignore the key but the client library wants one
            config.api_key = env.get("LOCAL_LLM_API_KEY", config.api_key) or "dummy-key"
            config.base_url = config.base_url or DEFAULT_LOCAL_BASE_URL
            if is_gemini_model:
                config.model = DEFAULT_LOCAL_MODEL
        elif auth is AuthType.LOGIN_WITH_GOOGLE:
            config.project = env.get("GOOGLE_CLOUD_PROJECT", config.project)

        return config

    def validate(self) -> None:
        """Check that the selected backend has the credentials it needs."""
        auth = self.auth_type
        if auth is AuthType.USE_GEMINI and not self.api_key:
            raise ConfigError("GEMINI_API_KEY environment variable not found.")
        if auth is AuthType.USE_VERTEX_AI and not (
            self.api_key or (self.project and self.location)
        ):
            raise ConfigError(
                "Vertex AI needs GOOGLE_API_KEY, or GOOGLE_CLOUD_PROJECT and "
                "GOOGLE_CLOUD_LOCATION."
            )
        if auth is AuthType.USE_OPENAI_COMPATIBLE and not self.api_key:
            raise ConfigError("OPENAI_API_KEY environment variable not found.")
        if auth is AuthType.USE_ANTHROPIC and not self.api_key:
            raise ConfigError("ANTHROPIC_API_KEY environment variable not found.")

    def to_dict(self) -> dict[str, Any]:
        """Convert config to a dictionary."""
        return {
            "auth_type": self.auth_type.value,
            "model": self.model,
            "api_key": self.api_key,
            "vertexai": self.vertexai,
            "project": self.project,
            "location": self.location,
            "base_url": self.base_url,
            "custom_headers": self.custom_headers,
            "timeout": self.timeout,
            "oauth_credentials_path": (
                str(self.oauth_credentials_path) if self.oauth_credentials_path else None
            ),
            "temperature": self.temperature,
            "max_output_tokens": self.max_output_tokens,
            "system_instruction": self.system_instruction,
            "target_dir": str(self.target_dir),
            "core_tools": self.core_tools,
            "exclude_tools": self.exclude_tools,
            "tool_discovery_command": self.tool_discovery_command,
            "tool_call_command": self.tool_call_command,
            "mcp_servers": {name: s.to_dict() for name, s in self.mcp_servers.items()},
            "providers": self.providers,
            "task_type": self.task_type,
            "max_turns": self.max_turns,
            "auto_approve": self.auto_approve,
        }

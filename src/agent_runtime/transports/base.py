"""Base transport interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any


@dataclass
class TransportConfig:
    """Configuration for a streaming HTTP transport."""

    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None  # None = no timeout


class TransportBase(ABC):
    """Abstract base class for streaming transports."""

    def __init__(self, config: TransportConfig | None = None) -> None:
        self.config = config or TransportConfig()

    @abstractmethod
    def stream(
        self,
        request: dict[str, Any],
        headers: dict[str, str] | None = None,
        url: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Send ``request`` (to ``url`` or the configured URL) and yield decoded records."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the transport and release resources."""
        ...

    async def __aenter__(self) -> TransportBase:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

"""Streaming transports."""

from agent_runtime.transports.base import TransportBase, TransportConfig
from agent_runtime.transports.sse import (
    SSEFrameDecoder,
    SSETransport,
    iter_sse_records,
    iter_text_lines,
    parse_sse_lines,
)

__all__ = [
    "SSEFrameDecoder",
    "SSETransport",
    "TransportBase",
    "TransportConfig",
    "iter_sse_records",
    "iter_text_lines",
    "parse_sse_lines",
]

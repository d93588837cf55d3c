"""
Server-sent events transport for the OAuth-proxied backend.

The response body is newline-delimited. Lines starting with ``data: ``
accumulate into a buffer; a blank line flushes the buffer as one JSON
record. Both LF and CRLF terminators are accepted. Any other non-empty
line is a protocol violation and ends the stream with
:class:`~agent_runtime.errors.ProtocolError`; there is no automatic retry.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator
from typing import Any

import httpx

from agent_runtime.errors import ProtocolError, TransportError
from agent_runtime.logging import get_logger
from agent_runtime.transports.base import TransportBase, TransportConfig

logger = get_logger("transports.sse")

_DATA_PREFIX = "data: "


class SSEFrameDecoder:
    """Incremental decoder: feed lines, get records back on frame boundaries."""

    def __init__(self) -> None:
        self._buffer: list[str] = []

    def feed(self, line: str) -> Any | None:
        """
        Consume one line (terminator optional).

        Returns:
            The decoded record when ``line`` completes a frame, else None.

        Raises:
            ProtocolError: On a line that is neither blank nor ``data:``,
                or when a completed frame is not valid JSON.
        """
        line = _strip_cr(line.removesuffix("\n"))
        if line == "":
            return self.flush()
        if line.startswith(_DATA_PREFIX):
            self._buffer.append(line[len(_DATA_PREFIX):].strip())
            return None
        raise ProtocolError(f"Unexpected line format in response: {line}")

    def flush(self) -> Any | None:
        """Decode and clear the buffered frame, if any."""
        if not self._buffer:
            return None
        payload = "\n".join(self._buffer)
        self._buffer = []
        try:
            return json.loads(payload)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Invalid JSON in stream frame: {e}") from e


def _strip_cr(line: str) -> str:
    return line[:-1] if line.endswith("\r") else line


def _split_lines(chunks: Iterable[str]) -> Iterator[str]:
    # Only LF and CRLF end a line; U+2028 and friends may appear inside JSON strings
    for chunk in chunks:
        for line in chunk.split("\n"):
            yield _strip_cr(line)


async def iter_text_lines(chunks: AsyncIterable[str]) -> AsyncIterator[str]:
    """Re-split arbitrary text chunks (e.g. ``Response.aiter_text()``) on LF/CRLF only."""
    pending = ""
    async for chunk in chunks:
        pending += chunk
        *lines, pending = pending.split("\n")
        for line in lines:
            yield _strip_cr(line)
    if pending:
        yield _strip_cr(pending)


def parse_sse_lines(lines: Iterable[str]) -> Iterator[Any]:
    """Decode records from an in-memory sequence of lines or text blocks."""
    decoder = SSEFrameDecoder()
    for line in _split_lines(lines):
        record = decoder.feed(line)
        if record is not None:
            yield record
    record = decoder.flush()
    if record is not None:
        yield record


async def iter_sse_records(lines: AsyncIterable[str]) -> AsyncIterator[Any]:
    """Decode records from an async line source (see :func:`iter_text_lines`)."""
    decoder = SSEFrameDecoder()
    async for line in lines:
        record = decoder.feed(line)
        if record is not None:
            yield record
    # A trailing frame without its blank-line terminator is still delivered
    record = decoder.flush()
    if record is not None:
        yield record


class SSETransport(TransportBase):
    """
    POSTs a JSON body with ``alt=sse`` and yields the decoded records.

    Example:
        transport = SSETransport(TransportConfig(url=".../v1internal:streamGenerateContent"))
        async for record in transport.stream({"model": "...", "request": {...}}):
            ...
    """

    def __init__(
        self,
        config: TransportConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.config.timeout)

    async def stream(
        self,
        request: dict[str, Any],
        headers: dict[str, str] | None = None,
        url: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        target = url or self.config.url
        params = {**self.config.params, "alt": "sse"}
        merged = {"Content-Type": "application/json", **self.config.headers, **(headers or {})}
        try:
            async with self._client.stream(
                "POST", target, params=params, headers=merged, json=request
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(
                        f"Streaming request failed with HTTP {response.status_code}: {body[:500]}",
                        status_code=response.status_code,
                    )
                async for record in iter_sse_records(iter_text_lines(response.aiter_text())):
                    yield record
        except httpx.HTTPError as e:
            logger.debug("SSE stream to %s failed: %s", target, e)
            raise TransportError(f"Streaming request failed: {e}") from e

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

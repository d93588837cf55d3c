"""Tests for the SSE frame decoder and transport."""

from __future__ import annotations

import json

import httpx
import pytest

from agent_runtime.errors import ProtocolError, TransportError
from agent_runtime.transports import (
    SSEFrameDecoder,
    SSETransport,
    TransportConfig,
    iter_sse_records,
    iter_text_lines,
    parse_sse_lines,
)


async def _lines(*lines: str):
    for line in lines:
        yield line


class TestFrameDecoder:
    def test_two_frames_in_order(self) -> None:
        body = 'data: {"a":1}\n\ndata: {"b":2}\n\n'
        assert list(parse_sse_lines([body])) == [{"a": 1}, {"b": 2}]

    def test_crlf_terminators(self) -> None:
        body = 'data: {"a":1}\r\n\r\ndata: {"b":2}\r\n\r\n'
        assert list(parse_sse_lines([body])) == [{"a": 1}, {"b": 2}]

    def test_multiline_data_joins_into_one_record(self) -> None:
        lines = ['data: {"a":', "data: 1}", ""]
        assert list(parse_sse_lines(lines)) == [{"a": 1}]

    def test_blank_lines_without_data_emit_nothing(self) -> None:
        assert list(parse_sse_lines(["", "", 'data: {"x":true}', ""])) == [{"x": True}]

    def test_trailing_frame_is_flushed(self) -> None:
        assert list(parse_sse_lines(['data: {"last":1}'])) == [{"last": 1}]

    def test_unicode_line_separators_stay_inside_payload(self) -> None:
        body = 'data: {"a": "x\u2028y\x85zw"}\n\n'
        assert list(parse_sse_lines([body])) == [{"a": "x\u2028y\x85zw"}]

    @pytest.mark.asyncio
    async def test_text_chunks_rejoined_across_boundaries(self) -> None:
        async def chunks():
            for chunk in ('data: {"a": "x\u2028', 'y"}\r', "\n\r\n", 'data: {"b":2}'):
                yield chunk

        lines = [line async for line in iter_text_lines(chunks())]
        assert lines == ['data: {"a": "x\u2028y"}', "", 'data: {"b":2}']

    def test_unexpected_line_is_fatal(self) -> None:
        records = parse_sse_lines(['data: {"a":1}', "", "event: ping", 'data: {"b":2}', ""])
        assert next(records) == {"a": 1}
        with pytest.raises(ProtocolError, match="Unexpected line format"):
            next(records)

    def test_invalid_json_is_fatal(self) -> None:
        decoder = SSEFrameDecoder()
        assert decoder.feed("data: {not json}") is None
        with pytest.raises(ProtocolError, match="Invalid JSON"):
            decoder.feed("")

    @pytest.mark.asyncio
    async def test_async_records(self) -> None:
        records = [r async for r in iter_sse_records(_lines('data: {"a":1}', "", 'data: {"b":2}', ""))]
        assert records == [{"a": 1}, {"b": 2}]


class TestSSETransport:
    @pytest.mark.asyncio
    async def test_posts_with_alt_sse_and_decodes(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization")
            body = b'data: {"n":1}\r\n\r\ndata: {"n":2}\r\n\r\n'
            return httpx.Response(200, content=body)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = SSETransport(TransportConfig(url="https://proxy.test/v1:stream"), client=client)

        records = [
            r async for r in transport.stream({"q": "hi"}, headers={"Authorization": "Bearer t"})
        ]

        assert records == [{"n": 1}, {"n": 2}]
        assert seen["params"]["alt"] == "sse"
        assert seen["body"] == {"q": "hi"}
        assert seen["auth"] == "Bearer t"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_line_separator_inside_json_string(self) -> None:
        body = 'data: {"a": "x\u2028y"}\n\n'.encode("utf-8")
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(
                lambda r: httpx.Response(
                    200, content=body, headers={"Content-Type": "text/event-stream; charset=utf-8"}
                )
            )
        )
        transport = SSETransport(TransportConfig(url="https://proxy.test/x"), client=client)

        records = [r async for r in transport.stream({})]

        assert records == [{"a": "x\u2028y"}]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(403, content=b"denied"))
        )
        transport = SSETransport(TransportConfig(url="https://proxy.test/x"), client=client)

        with pytest.raises(TransportError) as info:
            [r async for r in transport.stream({})]
        assert info.value.status_code == 403
        await client.aclose()

    @pytest.mark.asyncio
    async def test_protocol_violation_propagates(self) -> None:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(
                lambda r: httpx.Response(200, content=b'data: {"ok":1}\n\n<html>oops</html>\n')
            )
        )
        transport = SSETransport(TransportConfig(url="https://proxy.test/x"), client=client)

        received = []
        with pytest.raises(ProtocolError):
            async for record in transport.stream({}):
                received.append(record)
        assert received == [{"ok": 1}]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_connection_error_becomes_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = SSETransport(TransportConfig(url="https://proxy.test/x"), client=client)

        with pytest.raises(TransportError, match="refused"):
            [r async for r in transport.stream({})]
        await client.aclose()

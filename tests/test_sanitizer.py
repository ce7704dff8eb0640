"""Tests for byoc_proxy.proxy.sanitizer."""

from __future__ import annotations

import httpx
import pytest

from byoc_proxy.proxy.sanitizer import (
    BACKEND_INTERNAL_HEADERS,
    HOP_BY_HOP_HEADERS,
    SNIFF_BYTES,
    head_is_complete,
    is_event_stream,
    looks_like_event_stream,
    sanitize,
)

_NOISY = {
    "Connection": "keep-alive",
    "Keep-Alive": "timeout=5",
    "Proxy-Authenticate": "Basic",
    "Proxy-Authorization": "Basic abc",
    "TE": "trailers",
    "Trailer": "Expires",
    "Transfer-Encoding": "chunked",
    "Upgrade": "h2c",
    "Livepeer-Balance": "42",
    "X-Metadata": "{}",
    "X-Orchestrator-Url": "https://orch:8935",
}


class TestStripHeaders:
    def test_strips_hop_by_hop_and_internal(self):
        headers = dict(_NOISY, **{"X-Request-Id": "req_1", "Content-Type": "application/json"})
        result = sanitize(headers).headers
        assert result["x-request-id"] == "req_1"
        for name in _NOISY:
            assert name.lower() not in result

    @pytest.mark.parametrize("name", sorted(HOP_BY_HOP_HEADERS | BACKEND_INTERNAL_HEADERS))
    def test_case_insensitive(self, name):
        for variant in (name, name.upper(), name.title()):
            assert variant.lower() not in sanitize({variant: "v"}).headers

    def test_drops_framing_headers(self):
        result = sanitize({"Content-Length": "10", "Content-Encoding": "gzip"}).headers
        assert "content-length" not in result
        assert "content-encoding" not in result

    def test_accepts_httpx_headers(self):
        headers = httpx.Headers([("x-a", "1"), ("Livepeer-Balance", "3")])
        result = sanitize(headers).headers
        assert result["x-a"] == "1"
        assert "livepeer-balance" not in result

    def test_repeated_headers_survive_in_order(self):
        headers = httpx.Headers([
            ("Set-Cookie", "a=1"), ("X-Metadata", "{}"), ("set-cookie", "b=2"),
        ])
        result = sanitize(headers).headers
        assert result.get_list("set-cookie") == ["a=1", "b=2"]
        assert "x-metadata" not in result

    def test_single_content_type_emitted(self):
        result = sanitize([("Content-Type", "text/plain"), ("Content-Type", "text/html")]).headers
        assert result.get_list("content-type") == ["application/json"]


class TestContentType:
    def test_event_stream_declared(self):
        s = sanitize({"Content-Type": "text/event-stream; charset=utf-8"})
        assert s.content_type == "text/event-stream"
        assert s.headers["content-type"] == "text/event-stream"
        assert s.headers["cache-control"] == "no-cache"
        assert s.headers["x-accel-buffering"] == "no"

    def test_text_plain_json_becomes_json(self):
        s = sanitize({"Content-Type": "text/plain"}, b'{"data": []}')
        assert s.content_type == "application/json"
        assert not s.is_event_stream

    def test_text_plain_event_stream_body_becomes_event_stream(self):
        s = sanitize({"Content-Type": "text/plain"}, b'data: {"choices": []}\n\n')
        assert s.content_type == "text/event-stream"
        assert s.is_event_stream

    def test_missing_content_type_defaults_to_json(self):
        assert sanitize({}).content_type == "application/json"

    def test_upstream_cache_control_kept(self):
        s = sanitize({"Content-Type": "text/event-stream", "Cache-Control": "no-store"})
        assert s.headers["cache-control"] == "no-store"


class TestSniff:
    @pytest.mark.parametrize("chunk", [
        b"data: {}\n", b"event: ping\n", b": keep-alive\n", b"\r\ndata: x\n", b"id: 1\n", b"retry: 10\n",
    ])
    def test_sse_shapes(self, chunk):
        assert looks_like_event_stream(chunk)

    @pytest.mark.parametrize("chunk", [b"", b'{"a": 1}', b"[1, 2]", b"ok", b"database"])
    def test_non_sse_shapes(self, chunk):
        assert not looks_like_event_stream(chunk)

    def test_declared_type_wins(self):
        assert is_event_stream("TEXT/EVENT-STREAM", b'{"a": 1}')


class TestHeadIsComplete:
    @pytest.mark.parametrize("head", [b"", b"d", b"\n", b"\r\n\r\n", b"data: {\"choi", b"{"])
    def test_waits_for_more(self, head):
        assert not head_is_complete(head)

    @pytest.mark.parametrize("head", [b"data: {}\n", b"\n: ping\n", b'{"a": 1}\n'])
    def test_first_line_complete(self, head):
        assert head_is_complete(head)

    def test_long_line_capped(self):
        assert head_is_complete(b"x" * SNIFF_BYTES)
        assert not head_is_complete(b"x" * (SNIFF_BYTES - 1))

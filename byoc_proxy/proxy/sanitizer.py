"""Response sanitizer: make backend headers look like a public-dialect reply."""

from __future__ import annotations

from typing import Iterable, Mapping

import httpx

from ..types import SanitizedResponse

EVENT_STREAM = "text/event-stream"
JSON = "application/json"

HOP_BY_HOP_HEADERS = frozenset({
    "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
    "te", "trailer", "trailers", "transfer-encoding", "upgrade",
})

# Backend bookkeeping that is not part of the public API.
BACKEND_INTERNAL_HEADERS = frozenset({
    "livepeer-balance", "x-metadata", "x-orchestrator-url",
})

# httpx hands us a decoded body and the filter re-frames it.
_FRAMING_HEADERS = frozenset({"content-length", "content-encoding"})

_STRIPPED = HOP_BY_HOP_HEADERS | BACKEND_INTERNAL_HEADERS | _FRAMING_HEADERS | {"content-type"}

_SSE_FIELD_PREFIXES = (b"data:", b"event:", b"id:", b"retry:", b":")

# Enough body to tell an event stream from JSON.
SNIFF_BYTES = 64


def looks_like_event_stream(first_chunk: bytes) -> bool:
    """Sniff the first body bytes for an SSE field line."""
    head = first_chunk.lstrip(b"\r\n")[:SNIFF_BYTES]
    return head.startswith(_SSE_FIELD_PREFIXES)


def head_is_complete(head: bytes) -> bool:
    """True once *head* holds enough of the body to sniff.

    That is the first non-empty line in full, or :data:`SNIFF_BYTES` of it.
    """
    rest = head.lstrip(b"\r\n")
    return b"\n" in rest or len(rest) >= SNIFF_BYTES


def is_event_stream(declared_type: str | None, first_chunk: bytes = b"") -> bool:
    if declared_type and declared_type.strip().lower().startswith(EVENT_STREAM):
        return True
    return looks_like_event_stream(first_chunk)


def _items(headers: Mapping[str, str] | Iterable[tuple[str, str]]):
    if hasattr(headers, "multi_items"):
        return headers.multi_items()
    if isinstance(headers, Mapping):
        return headers.items()
    return headers


def sanitize(
    headers: Mapping[str, str] | Iterable[tuple[str, str]],
    first_chunk: bytes = b"",
) -> SanitizedResponse:
    """Filter backend response headers and settle the content type.

    The content type is derived from what the body actually looks like; the
    backend sometimes labels JSON (and event streams) as ``text/plain``.
    """
    declared = None
    out: list[tuple[str, str]] = []
    for name, value in _items(headers):
        lname = name.lower()
        if lname == "content-type":
            declared = value
        if lname in _STRIPPED:
            continue
        out.append((lname, value))

    if is_event_stream(declared, first_chunk):
        content_type = EVENT_STREAM
        present = {name for name, _ in out}
        if "cache-control" not in present:
            out.append(("cache-control", "no-cache"))
        if "x-accel-buffering" not in present:
            out.append(("x-accel-buffering", "no"))
    else:
        content_type = JSON
    out.append(("content-type", content_type))
    return SanitizedResponse(headers=httpx.Headers(out), content_type=content_type)

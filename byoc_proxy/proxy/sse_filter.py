"""Line-level filter for backend event streams.

The backend injects its own events into chat-completion streams, e.g.
``data: {"balance": 42}``.  OpenAI-compatible SDKs parse every ``data:`` line
as a completion chunk and crash on anything without ``choices``, so those
lines are dropped here.  Everything else passes through in order, one line
per yielded chunk, so Starlette flushes each line as soon as it arrives.
"""

from __future__ import annotations

import enum
import json
import logging
from collections.abc import AsyncIterator, Callable

from ..types import LineTooLongError

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
DEFAULT_MAX_LINE_BYTES = 256 * 1024
DEFAULT_REQUIRED_FIELD = "choices"


class LineKind(enum.Enum):
    SEPARATOR = "separator"  # blank line: event boundary
    TERMINAL = "terminal"    # data: [DONE]
    DATA = "data"
    OTHER = "other"          # event:, id:, comments, anything else


def _data_payload(line: str) -> str | None:
    if not line.startswith("data:"):
        return None
    payload = line[5:]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload


def classify_line(
    line: str, required_field: str = DEFAULT_REQUIRED_FIELD,
) -> tuple[LineKind, bool]:
    """Return ``(kind, forward)`` for one decoded line (without its newline).

    Data payloads that are not JSON objects are forwarded untouched: an
    unparseable payload is not evidence of a backend-internal event.
    """
    if line == "":
        return LineKind.SEPARATOR, True
    payload = _data_payload(line)
    if payload is None:
        return LineKind.OTHER, True
    if payload.strip() == DONE_SENTINEL:
        return LineKind.TERMINAL, True
    try:
        obj = json.loads(payload)
    except ValueError:
        return LineKind.DATA, True
    if not isinstance(obj, dict):
        return LineKind.DATA, True
    return LineKind.DATA, required_field in obj


async def iter_lines(
    chunks: AsyncIterator[bytes],
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
) -> AsyncIterator[bytes]:
    """Split a byte stream into lines (without terminators), in order.

    ``\\r\\n`` and ``\\n`` both end a line.  A line that grows past
    *max_line_bytes* before its newline raises :class:`LineTooLongError`.
    """
    buf = bytearray()
    async for chunk in chunks:
        if not chunk:
            continue
        buf.extend(chunk)
        start = 0
        while True:
            nl = buf.find(b"\n", start)
            if nl < 0:
                break
            line = bytes(buf[start:nl])
            if len(line) > max_line_bytes:
                raise LineTooLongError(max_line_bytes)
            yield line[:-1] if line.endswith(b"\r") else line
            start = nl + 1
        del buf[:start]
        if len(buf) > max_line_bytes:
            raise LineTooLongError(max_line_bytes)
    if buf:
        line = bytes(buf)
        yield line[:-1] if line.endswith(b"\r") else line


def error_event(message: str, kind: str, code: int = 502) -> list[bytes]:
    """A terminal error event in the shape OpenAI SDKs raise on."""
    body = json.dumps({"error": {"message": message, "type": kind, "code": code}})
    return [f"data: {body}\n".encode(), b"\n"]


async def filter_event_stream(
    chunks: AsyncIterator[bytes],
    *,
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
    required_field: str = DEFAULT_REQUIRED_FIELD,
    on_drop: Callable[[str], None] | None = None,
) -> AsyncIterator[bytes]:
    """Forward conformant lines of an event stream, one line per yield.

    On an oversized line the stream ends with an explicit error event
    instead of silently stopping.
    """
    try:
        async for raw in iter_lines(chunks, max_line_bytes):
            line = raw.decode("utf-8", errors="replace")
            kind, forward = classify_line(line, required_field)
            if not forward:
                logger.info("filtered non-conformant stream event: %s", line[:200])
                if on_drop is not None:
                    on_drop(line)
                continue
            yield raw + b"\n"
    except LineTooLongError as e:
        logger.warning("stream aborted: %s", e.message)
        for part in error_event(e.message, e.kind, e.status_code):
            yield part

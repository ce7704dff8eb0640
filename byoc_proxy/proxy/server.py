"""HTTP gateway between public-dialect clients and a BYOC backend.

Every public route is served by the same handler, parameterized by its
:class:`RouteDescriptor`: read the body, attach the capability header,
forward once, sanitize the reply, and either filter the event stream or copy
the body through.

Usage:
    byoc-proxy -c byoc-proxy.yaml serve --backend http://gateway:9935
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from ..types import (
    BackendError,
    BackendUnreachableError,
    GatewayConfig,
    GatewayError,
    InboundRequest,
    MethodNotAllowedError,
    RouteDescriptor,
)
from .client import Deadline, create_backend_client, execute, iter_with_deadline
from .metrics import ProxyMetrics
from .registry import CapabilityRegistry
from .sanitizer import head_is_complete, sanitize
from .sse_filter import filter_event_stream
from .transformer import read_body, transform

logger = logging.getLogger(__name__)


def _error_response(error: GatewayError) -> PlainTextResponse:
    headers = {}
    if isinstance(error, MethodNotAllowedError):
        headers["allow"] = error.allowed
    return PlainTextResponse(error.message, status_code=error.status_code, headers=headers)


async def _prepend(first: bytes, rest: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    if first:
        yield first
    async for chunk in rest:
        yield chunk


def create_app(
    config: GatewayConfig | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    metrics: ProxyMetrics | None = None,
) -> FastAPI:
    """Create the FastAPI gateway application.

    Args:
        config: Immutable gateway config; defaults when omitted.
        transport: Optional httpx transport for the backend client (tests).
        metrics: Reuse an existing metrics collector.
    """
    config = config or GatewayConfig()
    registry = CapabilityRegistry(config)
    metrics = metrics or ProxyMetrics()
    client = create_backend_client(config, transport=transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        logger.info("gateway backend=%s", config.backend_url)
        for d in registry:
            logger.info(
                "  %s %s -> %s capability=%s timeout=%ss",
                d.method, d.inbound_path, d.backend_path, d.capability_name, d.timeout_seconds,
            )
        yield
        await client.aclose()

    app = FastAPI(title="byoc-gateway-proxy", lifespan=lifespan)
    app.state.config = config
    app.state.registry = registry
    app.state.metrics = metrics

    @app.get("/healthz", response_class=PlainTextResponse)
    async def healthz() -> str:
        return "ok"

    @app.get("/stats")
    async def stats() -> JSONResponse:
        return JSONResponse(metrics.snapshot())

    @app.get("/stats/events")
    async def stats_events(since: int = -1) -> JSONResponse:
        """Retained events newer than *since*, for polling clients."""
        return JSONResponse({"events": metrics.events_since(since)})

    async def dispatch(request: Request) -> Response:
        path = request.url.path
        known = registry.get(path)
        route = known.key if known else None
        metrics.record({"type": "request", "route": route, "method": request.method})
        try:
            descriptor = registry.lookup(request.method, path)
        except GatewayError as e:
            metrics.record({"type": "error", "route": route, "kind": e.kind})
            return _error_response(e)
        return await _handle(request, descriptor, config, client, metrics)

    # No method list: every verb reaches the registry so 404/405 stay plain text.
    app.add_route("/{path:path}", dispatch, methods=None, include_in_schema=False)

    return app


async def _handle(
    request: Request,
    descriptor: RouteDescriptor,
    config: GatewayConfig,
    client: httpx.AsyncClient,
    metrics: ProxyMetrics,
) -> Response:
    route = descriptor.key
    try:
        body = await read_body(request, descriptor.max_body_bytes)
        inbound = InboundRequest(
            method=request.method,
            path=request.url.path,
            headers=request.headers,
            body=body,
        )
        outbound = transform(inbound, descriptor, config.backend_url, config.header_name)
        deadline = Deadline(descriptor.deadline_seconds)
        t_upstream = time.monotonic()
        upstream = await execute(client, outbound, deadline)
    except GatewayError as e:
        metrics.record({"type": "error", "route": route, "kind": e.kind})
        return _error_response(e)
    return await _relay(upstream, descriptor, config, deadline, metrics, t_upstream)


async def _read_head(chunks: AsyncIterator[bytes]) -> bytes:
    """Buffer the start of the body until its type can be sniffed."""
    head = b""
    while not head_is_complete(head):
        try:
            head += await chunks.__anext__()
        except StopAsyncIteration:
            break
    return head


async def _relay(
    upstream: httpx.Response,
    descriptor: RouteDescriptor,
    config: GatewayConfig,
    deadline: Deadline,
    metrics: ProxyMetrics,
    t_upstream: float,
) -> Response:
    """Stream *upstream* back to the client, filtering SSE when needed."""
    route = descriptor.key
    chunks = iter_with_deadline(upstream.aiter_bytes(), deadline)

    # Backends split reads arbitrarily; sniff only a settled head.
    try:
        first = await _read_head(chunks)
    except (GatewayError, httpx.HTTPError) as e:
        await upstream.aclose()
        error = e if isinstance(e, GatewayError) else BackendUnreachableError(
            f"gateway request failed: {e}",
        )
        metrics.record({"type": "error", "route": route, "kind": error.kind})
        return _error_response(error)

    sanitized = sanitize(upstream.headers, first)
    filtered = descriptor.streaming and sanitized.is_event_stream

    def on_drop(line: str) -> None:
        metrics.record({"type": "filtered_event", "route": route})

    async def body() -> AsyncIterator[bytes]:
        source = _prepend(first, chunks)
        if filtered:
            source = filter_event_stream(
                source,
                max_line_bytes=config.stream_max_line_bytes,
                on_drop=on_drop,
            )
        try:
            async for part in source:
                yield part
        except (BackendError, httpx.HTTPError) as e:
            # Bytes already sent cannot be recalled; the stream just ends.
            logger.warning("backend stream for %s ended early: %s", route, e)
            metrics.record({"type": "error", "route": route, "kind": "mid-stream"})

    async def finish() -> None:
        await upstream.aclose()
        metrics.record({
            "type": "response",
            "route": route,
            "status": upstream.status_code,
            "streaming": filtered,
            "upstream_ms": round((time.monotonic() - t_upstream) * 1000, 1),
        })

    response = StreamingResponse(
        body(),
        status_code=upstream.status_code,
        background=BackgroundTask(finish),
    )
    for name, value in sanitized.headers.multi_items():
        response.headers.append(name, value)
    return response

"""Backend client: one pooled httpx client plus a per-request deadline."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator

import httpx

from ..types import (
    BackendTimeoutError,
    BackendUnreachableError,
    GatewayConfig,
    OutboundRequest,
    TransformError,
)

logger = logging.getLogger(__name__)


def create_backend_client(
    config: GatewayConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Build the shared client.  Pool limits and connect timeouts are fixed here.

    Read/write budgets are left open; the route's :class:`Deadline` bounds
    the whole round trip instead.
    """
    cc = config.client
    return httpx.AsyncClient(
        timeout=httpx.Timeout(None, connect=max(cc.connect_timeout, cc.tls_timeout)),
        limits=httpx.Limits(
            max_connections=None,
            max_keepalive_connections=cc.pool_max_idle,
            keepalive_expiry=cc.idle_timeout,
        ),
        trust_env=cc.trust_env,
        follow_redirects=False,
        transport=transport,
    )


class Deadline:
    """Monotonic time budget covering send, headers, and body draining."""

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        self._expires_at = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0


async def execute(
    client: httpx.AsyncClient,
    outbound: OutboundRequest,
    deadline: Deadline,
) -> httpx.Response:
    """Send *outbound* once and return the (still streaming) response.

    There is no retry: some capabilities, job submission in particular, are
    not idempotent.
    """
    try:
        request = client.build_request(
            outbound.method, outbound.url,
            headers=outbound.headers, content=outbound.body,
        )
    except (httpx.InvalidURL, ValueError) as e:
        raise TransformError(f"failed to create gateway request: {e}") from e

    try:
        return await asyncio.wait_for(
            client.send(request, stream=True), timeout=deadline.remaining(),
        )
    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        logger.warning("backend timeout after %.0fs: %s", deadline.seconds, outbound.url)
        raise BackendTimeoutError(
            f"gateway request failed: timed out after {deadline.seconds:g}s",
        ) from e
    except (httpx.HTTPError, OSError) as e:
        logger.warning("backend unreachable: %s (%s)", outbound.url, e)
        raise BackendUnreachableError(f"gateway request failed: {e}") from e


async def iter_with_deadline(
    chunks: AsyncIterator[bytes],
    deadline: Deadline,
) -> AsyncIterator[bytes]:
    """Yield from *chunks* until exhausted or the deadline passes."""
    iterator = chunks.__aiter__()
    while True:
        try:
            chunk = await asyncio.wait_for(iterator.__anext__(), timeout=deadline.remaining())
        except StopAsyncIteration:
            return
        except asyncio.TimeoutError as e:
            raise BackendTimeoutError(
                f"response exceeded {deadline.seconds:g}s budget",
            ) from e
        yield chunk

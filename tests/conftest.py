"""Shared fixtures for byoc-proxy tests."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from byoc_proxy.config import load_config
from byoc_proxy.proxy.metrics import ProxyMetrics
from byoc_proxy.proxy.server import create_app
from byoc_proxy.types import GatewayConfig

BACKEND_URL = "http://backend.test:9935"


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return load_config(
        config_dict={"backend_url": BACKEND_URL, "client": {"trust_env": False}},
        env={},
    )


class FakeBackend:
    """Stands in for the BYOC gateway behind an ``httpx.MockTransport``.

    Records every request it receives and answers with the queued response
    (or the default one).  ``chunks`` lets a test shape how the body arrives.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.headers: dict[str, str] | list[tuple[str, str]] = {"content-type": "application/json"}
        self.chunks: list[bytes] = [b'{"ok": true}']
        self.error: Exception | None = None
        self.delay: float = 0.0

    def respond(self, status_code: int = 200, headers=None, chunks=None) -> None:
        self.status_code = status_code
        if headers is not None:
            self.headers = headers
        if chunks is not None:
            self.chunks = list(chunks)

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def _body(self):
        for chunk in self.chunks:
            yield chunk

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return httpx.Response(
            self.status_code,
            headers=self.headers,
            content=self._body(),
        )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def metrics() -> ProxyMetrics:
    return ProxyMetrics()


@pytest.fixture
def app(gateway_config, backend, metrics):
    return create_app(
        gateway_config,
        transport=httpx.MockTransport(backend),
        metrics=metrics,
    )


@pytest.fixture
def test_client(app):
    """Provide a TestClient for the gateway app."""
    from starlette.testclient import TestClient
    with TestClient(app) as client:
        yield client

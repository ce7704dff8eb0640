"""Capability registry: the static table of public routes.

Each public path maps to exactly one :class:`RouteDescriptor`.  The registry
is built once from a :class:`GatewayConfig` and never mutated afterwards, so
concurrent requests can read it without locking.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterator

from ..types import (
    GatewayConfig,
    MethodNotAllowedError,
    RouteDescriptor,
    RouteNotFoundError,
)

BACKEND_PREFIX = "/process/request"

# Short fixed budget for async job submission/status calls.
JOB_ROUND_TRIP_SECONDS = 30


@dataclass(frozen=True)
class _RouteDef:
    key: str
    path: str
    capability: str
    timeout_seconds: int
    max_body_bytes: int
    streaming: bool = False
    round_trip_seconds: int | None = None
    fixed_timeout: bool = False     # ignores timeout overrides
    capability_from: str = ""       # share another route's capability name


ROUTE_TABLE: tuple[_RouteDef, ...] = (
    _RouteDef("chat_completions", "/v1/chat/completions", "openai-chat-completions",
              120, 5_000_000, streaming=True),
    _RouteDef("image_generation", "/v1/images/generations", "openai-image-generation",
              120, 1_000_000),
    _RouteDef("text_embeddings", "/v1/embeddings", "openai-text-embeddings",
              30, 1_000_000),
    _RouteDef("rerank", "/v1/rerank", "cohere-rerank",
              30, 1_000_000),
    _RouteDef("video_generation", "/v1/video/generations", "video-generation",
              900, 1_000_000, round_trip_seconds=JOB_ROUND_TRIP_SECONDS),
    _RouteDef("video_generation_status", "/v1/video/generations/status", "video-generation",
              JOB_ROUND_TRIP_SECONDS, 1_000_000,
              round_trip_seconds=JOB_ROUND_TRIP_SECONDS,
              fixed_timeout=True, capability_from="video_generation"),
)

ROUTE_KEYS = frozenset(r.key for r in ROUTE_TABLE)


def _descriptor(route: _RouteDef, config: GatewayConfig) -> RouteDescriptor:
    cap_key = route.capability_from or route.key
    timeout = route.timeout_seconds
    if not route.fixed_timeout:
        timeout = config.timeouts.get(route.key, timeout)
    return RouteDescriptor(
        key=route.key,
        inbound_path=route.path,
        method="POST",
        backend_path=BACKEND_PREFIX + route.path,
        capability_name=config.capabilities.get(cap_key, route.capability),
        timeout_seconds=timeout,
        max_body_bytes=config.max_body_bytes.get(route.key, route.max_body_bytes),
        streaming=route.streaming,
        round_trip_timeout_seconds=route.round_trip_seconds,
    )


class CapabilityRegistry:
    """Read-only lookup of route descriptors by (method, path)."""

    def __init__(self, config: GatewayConfig | None = None) -> None:
        config = config or GatewayConfig()
        routes = tuple(_descriptor(r, config) for r in ROUTE_TABLE)
        self._routes = routes
        self._by_path = MappingProxyType({d.inbound_path: d for d in routes})

    def __iter__(self) -> Iterator[RouteDescriptor]:
        return iter(self._routes)

    def __len__(self) -> int:
        return len(self._routes)

    def descriptors(self) -> tuple[RouteDescriptor, ...]:
        return self._routes

    def get(self, path: str) -> RouteDescriptor | None:
        return self._by_path.get(path)

    def lookup(self, method: str, path: str) -> RouteDescriptor:
        """Return the descriptor for *path*, or raise 404/405."""
        descriptor = self._by_path.get(path)
        if descriptor is None:
            raise RouteNotFoundError(path)
        if method.upper() != descriptor.method:
            raise MethodNotAllowedError(method, allowed=descriptor.method)
        return descriptor

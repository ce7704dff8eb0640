"""All dataclasses and the error taxonomy for byoc-proxy."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

import httpx


def _frozen_map(raw: Mapping | None = None) -> Mapping:
    return MappingProxyType(dict(raw or {}))


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ClientConfig:
    """Backend connection pool settings, applied once at startup."""
    connect_timeout: float = 10.0
    tls_timeout: float = 10.0
    pool_max_idle: int = 200
    idle_timeout: float = 90.0
    trust_env: bool = True  # honour HTTP(S)_PROXY from the environment


@dataclass(frozen=True)
class GatewayConfig:
    listen_host: str = "0.0.0.0"
    listen_port: int = 8090
    backend_url: str = "http://gateway:9935"
    header_name: str = "Livepeer"
    capabilities: Mapping[str, str] = field(default_factory=_frozen_map)  # route key → capability
    timeouts: Mapping[str, int] = field(default_factory=_frozen_map)      # route key → seconds
    max_body_bytes: Mapping[str, int] = field(default_factory=_frozen_map)
    stream_max_line_bytes: int = 256 * 1024
    client: ClientConfig = field(default_factory=ClientConfig)


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RouteDescriptor:
    """Everything the dispatcher needs to serve one public route."""
    key: str
    inbound_path: str
    method: str
    backend_path: str
    capability_name: str
    timeout_seconds: int             # budget advertised to the backend
    max_body_bytes: int
    streaming: bool = False
    round_trip_timeout_seconds: int | None = None  # None → timeout_seconds

    @property
    def deadline_seconds(self) -> int:
        if self.round_trip_timeout_seconds is None:
            return self.timeout_seconds
        return self.round_trip_timeout_seconds


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

@dataclass
class InboundRequest:
    method: str
    path: str
    headers: Mapping[str, str]
    body: bytes = b""


@dataclass
class OutboundRequest:
    method: str
    url: str
    headers: dict[str, str]
    body: bytes = b""


@dataclass
class SanitizedResponse:
    """Response headers as ordered pairs; repeated names are kept."""
    headers: httpx.Headers
    content_type: str

    @property
    def is_event_stream(self) -> bool:
        return self.content_type == "text/event-stream"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class GatewayError(Exception):
    """Base for every failure the gateway reports to a client."""
    status_code: int = 502
    kind: str = "gateway-error"

    def __init__(self, message: str = "") -> None:
        self.message = message or self.kind
        super().__init__(self.message)


class ClientInputError(GatewayError):
    status_code = 400
    kind = "client-input"


class BodyTooLargeError(ClientInputError):
    kind = "body-too-large"

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"request body exceeds {limit} bytes")


class BodyReadError(ClientInputError):
    kind = "read-error"

    def __init__(self, message: str = "failed to read request body") -> None:
        super().__init__(message)


class MethodNotAllowedError(GatewayError):
    status_code = 405
    kind = "method-not-allowed"

    def __init__(self, method: str, allowed: str = "POST") -> None:
        self.method = method
        self.allowed = allowed
        super().__init__("method not allowed")


class RouteNotFoundError(GatewayError):
    status_code = 404
    kind = "not-found"

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"no route for {path}")


class TransformError(GatewayError):
    kind = "transform-error"


class BackendError(GatewayError):
    kind = "backend-error"


class BackendUnreachableError(BackendError):
    kind = "backend-unreachable"


class BackendTimeoutError(BackendError):
    kind = "backend-timeout"


class LineTooLongError(GatewayError):
    kind = "stream-line-too-long"

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"stream line exceeds {limit} bytes")

"""Request transformer: public-dialect call → backend call.

The backend only accepts requests that carry a capability descriptor in a
single header (base64 of a small JSON object).  Everything else about the
request is forwarded as-is: the body is passed through byte-for-byte and
only the content-negotiation headers survive.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import asdict, dataclass
from typing import Mapping

from starlette.requests import ClientDisconnect, Request

from ..types import (
    BodyReadError,
    BodyTooLargeError,
    InboundRequest,
    OutboundRequest,
    RouteDescriptor,
    TransformError,
)

logger = logging.getLogger(__name__)

CAPABILITY_HEADER = "Livepeer"
FORWARDED_HEADERS = ("Content-Type", "Accept")

# Orchestrator selection is not exposed; the backend picks freely.
_DEFAULT_PARAMETERS = {"orchestrators": {"include": [], "exclude": []}}


@dataclass(frozen=True)
class CapabilityHeader:
    """The descriptor the backend uses to route a call to a worker.

    ``request`` and ``parameters`` are JSON documents embedded as strings,
    which is what the backend expects on the wire.
    """
    request: str
    parameters: str
    capability: str
    timeout_seconds: int

    @classmethod
    def for_route(cls, descriptor: RouteDescriptor) -> CapabilityHeader:
        return cls(
            request=json.dumps({"run": descriptor.capability_name}, separators=(",", ":")),
            parameters=json.dumps(_DEFAULT_PARAMETERS, separators=(",", ":")),
            capability=descriptor.capability_name,
            timeout_seconds=int(descriptor.timeout_seconds),
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    def encode(self) -> str:
        return base64.b64encode(self.to_json().encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, value: str) -> CapabilityHeader:
        """Parse an encoded header value.  Raises ``ValueError`` on garbage."""
        try:
            raw = json.loads(base64.b64decode(value, validate=True))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"not a capability header: {e}") from e
        if not isinstance(raw, dict) or set(raw) != {
            "request", "parameters", "capability", "timeout_seconds",
        }:
            raise ValueError("capability header must have exactly four fields")
        return cls(**raw)


async def read_body(request: Request, max_bytes: int) -> bytes:
    """Read at most *max_bytes* from the inbound body.

    Bodies over the cap are rejected rather than truncated, so the backend
    never sees a silently clipped payload.
    """
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise BodyTooLargeError(max_bytes)

    chunks: list[bytes] = []
    size = 0
    try:
        async for chunk in request.stream():
            size += len(chunk)
            if size > max_bytes:
                raise BodyTooLargeError(max_bytes)
            chunks.append(chunk)
    except ClientDisconnect as e:
        raise BodyReadError() from e
    return b"".join(chunks)


def _forward_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Keep only content-negotiation headers (never Authorization)."""
    lowered = {k.lower(): v for k, v in headers.items()}
    out: dict[str, str] = {}
    for name in FORWARDED_HEADERS:
        value = lowered.get(name.lower())
        if value:
            out[name] = value
    return out


def transform(
    inbound: InboundRequest,
    descriptor: RouteDescriptor,
    backend_url: str,
    header_name: str = CAPABILITY_HEADER,
) -> OutboundRequest:
    """Build the backend call for *inbound* on *descriptor*'s route."""
    if len(inbound.body) > descriptor.max_body_bytes:
        raise BodyTooLargeError(descriptor.max_body_bytes)

    header = CapabilityHeader.for_route(descriptor)
    try:
        encoded = header.encode()
    except (TypeError, ValueError) as e:
        raise TransformError(f"failed to encode capability header: {e}") from e

    headers = _forward_headers(inbound.headers)
    headers[header_name] = encoded
    url = backend_url.rstrip("/") + descriptor.backend_path

    logger.info(
        "sending to backend: url=%s content_len=%d %s=%s",
        url, len(inbound.body), header_name.lower(), header.to_json(),
    )
    return OutboundRequest(
        method=descriptor.method,
        url=url,
        headers=headers,
        body=inbound.body,
    )

"""byoc-proxy: OpenAI-compatible front door for a BYOC capability gateway."""

from .config import load_config, validate_config
from .types import (
    GatewayConfig,
    GatewayError,
    RouteDescriptor,
)

__version__ = "0.1.0"

__all__ = [
    "load_config",
    "validate_config",
    "GatewayConfig",
    "GatewayError",
    "RouteDescriptor",
]

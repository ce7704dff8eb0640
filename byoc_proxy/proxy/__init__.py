from .server import create_app
from .registry import CapabilityRegistry, ROUTE_TABLE
from .transformer import CapabilityHeader
from .metrics import ProxyMetrics

__all__ = [
    "create_app",
    "CapabilityRegistry",
    "CapabilityHeader",
    "ProxyMetrics",
    "ROUTE_TABLE",
]

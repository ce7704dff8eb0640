"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml

from .types import ClientConfig, GatewayConfig, _frozen_map

CONFIG_FILENAMES = [
    "byoc-proxy.yaml",
    "byoc-proxy.yml",
    "byoc-proxy.json",
]

# Environment variables of the container deployment, keyed by route.
CAPABILITY_ENV = {
    "chat_completions": "CHAT_COMPLETIONS_CAPABILITY",
    "image_generation": "IMAGE_GENERATION_CAPABILITY",
    "text_embeddings": "TEXT_EMBEDDINGS_CAPABILITY",
    "rerank": "RERANK_CAPABILITY",
    "video_generation": "VIDEO_GENERATION_CAPABILITY",
}
TIMEOUT_ENV = {
    "chat_completions": "CHAT_COMPLETIONS_TIMEOUT_SECONDS",
    "image_generation": "IMAGE_GENERATION_TIMEOUT_SECONDS",
    "text_embeddings": "TEXT_EMBEDDINGS_TIMEOUT_SECONDS",
    "rerank": "RERANK_TIMEOUT_SECONDS",
    "video_generation": "VIDEO_GENERATION_TIMEOUT_SECONDS",
}


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def parse_listen_addr(addr: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``:port``) into its parts."""
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address: {addr!r}")
    return host or "0.0.0.0", int(port)


def _env_int(value: str | None) -> int | None:
    # Digits only; anything else keeps the default.
    if not value or not value.isdigit():
        return None
    return int(value)


def _apply_env(raw: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    raw = dict(raw)
    listen = raw.get("listen") or {}
    if env.get("PROXY_ADDR"):
        host, port = parse_listen_addr(env["PROXY_ADDR"])
        raw["listen"] = {**listen, "host": host, "port": port}
    if env.get("GATEWAY_URL"):
        raw["backend_url"] = env["GATEWAY_URL"]

    capabilities = dict(raw.get("capabilities") or {})
    for key, var in CAPABILITY_ENV.items():
        if env.get(var):
            capabilities[key] = env[var]
    raw["capabilities"] = capabilities

    timeouts = dict(raw.get("timeouts") or {})
    for key, var in TIMEOUT_ENV.items():
        seconds = _env_int(env.get(var))
        if seconds is not None:
            timeouts[key] = seconds
    raw["timeouts"] = timeouts
    return raw


def _build_config(raw: dict[str, Any]) -> GatewayConfig:
    """Build a GatewayConfig from a raw dict."""
    listen = raw.get("listen") or {}
    client_raw = raw.get("client") or {}
    client = ClientConfig(
        connect_timeout=float(client_raw.get("connect_timeout", 10.0)),
        tls_timeout=float(client_raw.get("tls_timeout", 10.0)),
        pool_max_idle=int(client_raw.get("pool_max_idle", 200)),
        idle_timeout=float(client_raw.get("idle_timeout", 90.0)),
        trust_env=bool(client_raw.get("trust_env", True)),
    )
    stream_raw = raw.get("stream") or {}
    return GatewayConfig(
        listen_host=str(listen.get("host", "0.0.0.0")),
        listen_port=int(listen.get("port", 8090)),
        backend_url=str(raw.get("backend_url", "http://gateway:9935")).rstrip("/"),
        header_name=str(raw.get("header_name", "Livepeer")),
        capabilities=_frozen_map(raw.get("capabilities")),
        timeouts=_frozen_map({k: int(v) for k, v in (raw.get("timeouts") or {}).items()}),
        max_body_bytes=_frozen_map(
            {k: int(v) for k, v in (raw.get("max_body_bytes") or {}).items()}
        ),
        stream_max_line_bytes=int(stream_raw.get("max_line_bytes", 256 * 1024)),
        client=client,
    )


def validate_config(config: GatewayConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    from .proxy.registry import ROUTE_KEYS

    errors: list[str] = []

    parsed = urlparse(config.backend_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        errors.append(f"backend_url must be an http(s) URL, got {config.backend_url!r}")

    if not 0 < config.listen_port < 65536:
        errors.append(f"listen port out of range: {config.listen_port}")

    if not config.header_name:
        errors.append("header_name must not be empty")

    for section in ("capabilities", "timeouts", "max_body_bytes"):
        for key in getattr(config, section):
            if key not in ROUTE_KEYS:
                errors.append(f"{section}: unknown route '{key}'")

    for key, name in config.capabilities.items():
        if not name:
            errors.append(f"capabilities: empty capability name for '{key}'")
    for key, seconds in config.timeouts.items():
        if seconds <= 0:
            errors.append(f"timeouts: '{key}' must be > 0 (got {seconds})")
    for key, limit in config.max_body_bytes.items():
        if limit <= 0:
            errors.append(f"max_body_bytes: '{key}' must be > 0 (got {limit})")

    if config.stream_max_line_bytes < 1024:
        errors.append("stream.max_line_bytes must be >= 1024")
    if config.client.pool_max_idle < 1:
        errors.append("client.pool_max_idle must be >= 1")

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
    env: Mapping[str, str] | None = None,
) -> GatewayConfig:
    """Load config from dict, explicit path, or auto-discover.

    Environment variables are layered on top.  Pass ``env={}`` to ignore the
    process environment (tests do).
    """
    if env is None:
        env = os.environ

    if config_dict is not None:
        return _build_config(_apply_env(config_dict, env))

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        return _build_config(_apply_env({}, env))

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(_apply_env(raw, env))

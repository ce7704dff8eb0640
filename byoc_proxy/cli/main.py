"""CLI: byoc-proxy serve, routes, config validate, decode-header."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict, replace

from ..config import load_config, validate_config
from ..proxy.registry import CapabilityRegistry
from ..proxy.transformer import CapabilityHeader


class _SuppressCancelled(logging.Filter):
    """Drop CancelledError tracebacks uvicorn logs when it force-closes streams."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.exc_info:
            exc_type = record.exc_info[0]
            if exc_type is asyncio.CancelledError:
                return False
        return True


class _SuppressHealthAccess(logging.Filter):
    """Hide repetitive GET /healthz access logs."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        if "GET /healthz" in msg and "200" in msg:
            return False
        return True


def _load(args):
    try:
        return load_config(config_path=args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Config error: {e}", file=sys.stderr)
        sys.exit(1)


def cmd_serve(args):
    """Start the gateway under uvicorn."""
    import uvicorn

    from ..proxy import create_app

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("uvicorn.error").addFilter(_SuppressCancelled())
    logging.getLogger("uvicorn.access").addFilter(_SuppressHealthAccess())

    config = _load(args)
    overrides = {}
    if args.host:
        overrides["listen_host"] = args.host
    if args.port:
        overrides["listen_port"] = args.port
    if args.backend:
        overrides["backend_url"] = args.backend.rstrip("/")
    if overrides:
        config = replace(config, **overrides)

    errors = validate_config(config)
    if errors:
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        sys.exit(1)

    app = create_app(config)
    print(f"byoc-proxy on {config.listen_host}:{config.listen_port} -> {config.backend_url}")
    uvicorn.run(
        app, host=config.listen_host, port=config.listen_port,
        log_level=args.log_level.lower(), timeout_graceful_shutdown=2,
    )


def cmd_routes(args):
    """Print the effective route table."""
    registry = CapabilityRegistry(_load(args))
    print(f"{'Path':<32} {'Capability':<28} {'Timeout':>8} {'Body cap':>10} {'Stream':>7}")
    print("-" * 89)
    for d in registry:
        timeout = f"{d.timeout_seconds}s"
        if d.deadline_seconds != d.timeout_seconds:
            timeout = f"{d.deadline_seconds}/{d.timeout_seconds}s"
        print(
            f"{d.inbound_path:<32} {d.capability_name:<28} {timeout:>8} "
            f"{d.max_body_bytes:>10,} {'yes' if d.streaming else 'no':>7}"
        )


def cmd_config_validate(args):
    """Validate the config file."""
    config = _load(args)
    errors = validate_config(config)
    if errors:
        print("Config errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    print("Config is valid.")


def cmd_decode_header(args):
    """Decode a capability header value and print it as JSON."""
    try:
        header = CapabilityHeader.decode(args.value)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(asdict(header), indent=2))


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="byoc-proxy",
        description="OpenAI-compatible gateway in front of a BYOC capability backend",
    )
    parser.add_argument("--config", "-c", help="Path to config file")

    subparsers = parser.add_subparsers(dest="command")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the HTTP gateway")
    serve_parser.add_argument("--host", default=None, help="Listen host (overrides config)")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Listen port")
    serve_parser.add_argument(
        "--backend", "-b", default=None,
        help="Backend base URL (e.g. http://gateway:9935); overrides GATEWAY_URL",
    )
    serve_parser.add_argument("--log-level", default="info")

    # routes
    subparsers.add_parser("routes", help="Show the effective route table")

    # decode-header
    decode_parser = subparsers.add_parser("decode-header", help="Decode a capability header")
    decode_parser.add_argument("value", help="Base64 header value")

    # config validate
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "routes":
        cmd_routes(args)
    elif args.command == "decode-header":
        cmd_decode_header(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: byoc-proxy config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()

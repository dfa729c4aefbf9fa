"""
Main entry point for Vault Bridge.

This module provides the main() function, the ``serve`` and ``token``
commands, and server assembly.
"""

import argparse
import asyncio
import signal
import sys
from functools import partial
from pathlib import Path

import structlog

from .auth import AuthGate, TokenHolder, ensure_token, generate_token, load_token, save_token, validate_token_format
from .cache import VaultCache
from .config import VERSION, Settings, settings as default_settings
from .logging import configure_logging
from .resolver import LinkResolver
from .routes import health_provider, register_routes
from .routing import RouteTable
from .server import BridgeServer, Dispatcher

logger = structlog.get_logger(__name__)


def create_server(settings: Settings, holder: TokenHolder, cache: VaultCache | None = None) -> BridgeServer:
    """Assemble cache, resolver, route table and dispatcher into a server."""
    if cache is None:
        cache = VaultCache(settings.vault_path, ttl=settings.cache_ttl, batch_size=settings.batch_size)
    resolver = LinkResolver(cache)

    table = RouteTable()
    register_routes(table, cache, resolver, settings)

    dispatcher = Dispatcher(
        table,
        AuthGate(holder),
        health_provider(cache),
        max_body_size=settings.max_body_size,
        request_timeout=settings.request_timeout,
        cors_origins=settings.cors_origins,
    )
    return BridgeServer(dispatcher, settings.host, settings.port, settings.shutdown_timeout)


def reload_token(token_path: Path, holder: TokenHolder) -> None:
    """Re-read the token file into the holder (SIGHUP)."""
    token = load_token(token_path)
    if token is None:
        logger.warning("auth_token_missing", path=str(token_path))
        return
    holder.rotate(token)


async def serve(settings: Settings) -> None:
    """Run the server until SIGINT or SIGTERM."""
    holder = TokenHolder(ensure_token(settings.token_path))
    cache = VaultCache(settings.vault_path, ttl=settings.cache_ttl, batch_size=settings.batch_size)
    await cache.refresh(force=True)

    server = create_server(settings, holder, cache)
    await server.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop_event.set)
        loop.add_signal_handler(signal.SIGTERM, stop_event.set)
        loop.add_signal_handler(signal.SIGHUP, partial(reload_token, settings.token_path, holder))
    except (NotImplementedError, AttributeError):
        # no loop signal handlers on Windows; Ctrl+C raises KeyboardInterrupt instead
        logger.debug("signal_handlers_unavailable")

    try:
        await stop_event.wait()
    finally:
        await server.stop()


def run_token_command(args: argparse.Namespace, settings: Settings) -> int:
    token_path = settings.token_path
    if args.regenerate:
        save_token(token_path, generate_token())
        print(f"New token written to {token_path}")
        print("Send SIGHUP to a running server to load it.")

    token = load_token(token_path)
    if token is None:
        print(f"No token at {token_path}", file=sys.stderr)
        return 1

    valid, message = validate_token_format(token)
    if args.show:
        print(token)
    else:
        print(f"Token at {token_path}: {message}")
    return 0 if valid else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vault-bridge", description="Local HTTP API over a notes vault")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server (default)")
    serve_parser.add_argument("--vault", type=Path, help="Vault directory")
    serve_parser.add_argument("--port", type=int, help="Listening port")
    serve_parser.add_argument("--log-level", help="Log level name")

    token_parser = subparsers.add_parser("token", help="Inspect or regenerate the auth token")
    token_parser.add_argument("--regenerate", action="store_true", help="Write a fresh token")
    token_parser.add_argument("--show", action="store_true", help="Print the token")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    settings = default_settings

    if args.command == "token":
        configure_logging(settings.log_level)
        return run_token_command(args, settings)

    overrides = {}
    if getattr(args, "vault", None):
        overrides["vault_path"] = args.vault.expanduser()
    if getattr(args, "port", None):
        overrides["port"] = args.port
    if getattr(args, "log_level", None):
        overrides["log_level"] = args.log_level
    if overrides:
        settings = settings.model_copy(update=overrides)

    configure_logging(settings.log_level)

    if not settings.vault_path.is_dir():
        logger.error("vault_not_found", path=str(settings.vault_path))
        return 1

    try:
        asyncio.run(serve(settings))
    except OSError:
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Command-line interface for ptyrelay.

Provides the main entry point for running the relay server, attaching
the local terminal to a relay session, or checking how a target resolves.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="ptyrelay",
        description="Interactive terminal relay over WebSockets",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/ptyrelay.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the relay server")
    serve_parser.add_argument("--host", type=str, default=None, help="Override server.host")
    serve_parser.add_argument("--port", type=int, default=None, help="Override server.port")

    attach_parser = subparsers.add_parser(
        "attach", help="Attach this terminal to a relay session (Ctrl+] detaches)"
    )
    attach_parser.add_argument("target", type=str, help="Target name, e.g. 'shell'")
    attach_parser.add_argument(
        "--url", type=str, default=None,
        help="Relay base URL (default: ws://<server.host>:<server.port>)",
    )

    resolve_parser = subparsers.add_parser("resolve", help="Show the command a target resolves to")
    resolve_parser.add_argument("target", type=str, help="Target name")

    return parser.parse_args(argv)


async def _attach(settings, args) -> int:
    """Run a local terminal session against the relay."""
    from ptyrelay.client.adapter import TerminalClientAdapter
    from ptyrelay.client.surface import LocalTerminalSurface

    url = args.url or f"ws://{settings.server.host}:{settings.server.port}"
    surface = LocalTerminalSurface()
    adapter = TerminalClientAdapter(url, args.target, surface)
    try:
        if not await adapter.activate():
            return 1
        run_task = asyncio.create_task(adapter.run())
        surface.on_detach(run_task.cancel)
        try:
            await run_task
        except asyncio.CancelledError:
            surface.writeln()
            surface.writeln("\x1b[90m[Detached]\x1b[0m")
    finally:
        await adapter.deactivate()
    return 0


async def _resolve(settings, args) -> int:
    """Resolve a target and print the result."""
    from ptyrelay.relay.server import build_resolver
    from ptyrelay.resolver.base import ResolutionError

    resolver = build_resolver(settings)
    try:
        spec = await resolver.resolve(args.target)
    except ResolutionError as e:
        print(f"{args.target}: {e}", file=sys.stderr)
        return 1
    print(f"Executable: {spec.executable}")
    print(f"Arguments:  {' '.join(spec.args) or '(none)'}")
    for key, value in sorted(spec.env.items()):
        print(f"Env:        {key}={value}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the ptyrelay CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from ptyrelay.config.settings import load_settings
    from ptyrelay.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    if args.command == "attach" and not settings.logging.file:
        # The terminal belongs to the remote process while attached
        settings.logging.level = "ERROR"

    setup_logging(settings.logging)

    if args.command == "serve":
        from ptyrelay.relay.server import create_app
        import uvicorn

        host = args.host or settings.server.host
        port = args.port or settings.server.port
        logger.info("Starting relay server on %s:%d", host, port)
        uvicorn.run(create_app(settings), host=host, port=port)

    elif args.command == "attach":
        sys.exit(asyncio.run(_attach(settings, args)))

    elif args.command == "resolve":
        sys.exit(asyncio.run(_resolve(settings, args)))


if __name__ == "__main__":
    main()

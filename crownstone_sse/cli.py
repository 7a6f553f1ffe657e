"""CLI entry point: ``crownstone-sse stream`` prints events as JSON lines.

Flag overrides are written to the environment before ``load_config()`` so
they win over .env files, then everything is read back through settings.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import signal
import sys
from typing import Any

import structlog

from crownstone_sse.errors import CrownstoneSSEError, NoCredentialsError

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crownstone-sse",
        description="Stream Crownstone cloud events to stdout",
    )
    sub = parser.add_subparsers(dest="command")

    stream_parser = sub.add_parser("stream", help="Log in and print events as JSON lines")
    stream_parser.add_argument("--email", help="Account email")
    stream_parser.add_argument("--password", help="Account password")
    stream_parser.add_argument("--hub-id", help="Hub id for hub login")
    stream_parser.add_argument("--hub-token", help="Hub token for hub login")
    stream_parser.add_argument("--access-token", help="Use an existing access token")
    stream_parser.add_argument("--sse-url", help="Event stream endpoint")
    stream_parser.add_argument("--project-name", help="Project name sent with the stream request")
    stream_parser.add_argument(
        "--no-auth", action="store_true", help="Connect without an access token"
    )
    stream_parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point (``crownstone-sse`` command)."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "stream":
        sys.exit(_run_stream(args))
    parser.print_help()
    sys.exit(1)


def _apply_overrides(args: argparse.Namespace) -> None:
    """Map CLI flags onto CROWNSTONE_SSE_* variables."""
    overrides = {
        "CROWNSTONE_SSE_EMAIL": args.email,
        "CROWNSTONE_SSE_PASSWORD": args.password,
        "CROWNSTONE_SSE_HUB_ID": args.hub_id,
        "CROWNSTONE_SSE_HUB_TOKEN": args.hub_token,
        "CROWNSTONE_SSE_ACCESS_TOKEN": args.access_token,
        "CROWNSTONE_SSE_SSE_URL": args.sse_url,
        "CROWNSTONE_SSE_PROJECT_NAME": args.project_name,
        "CROWNSTONE_SSE_LOG_LEVEL": args.log_level,
    }
    for key, value in overrides.items():
        if value:
            os.environ[key] = value
    if args.no_auth:
        os.environ["CROWNSTONE_SSE_REQUIRE_AUTHENTICATION"] = "0"


def _run_stream(args: argparse.Namespace) -> int:
    """Handle ``crownstone-sse stream``."""
    _apply_overrides(args)

    from crownstone_sse.config import load_config
    from crownstone_sse.logging import configure_logging

    loaded = load_config()
    configure_logging()
    for entry in loaded.rejected:
        logger.warning(
            "Ignoring config value",
            key=entry.key,
            reason=entry.reason,
            path=str(entry.path),
            line=entry.line,
        )
    return asyncio.run(_stream())


async def authenticate(sse: Any) -> None:
    """Obtain a token using whichever credentials the settings provide.

    Precedence: access token, then hub login, then user login.

    Raises:
        NoCredentialsError: Authentication is required but nothing is configured.
    """
    from crownstone_sse.settings import settings

    if settings.access_token():
        sse.set_access_token(settings.access_token())
    elif settings.hub_id() and settings.hub_token():
        await sse.hub_login(settings.hub_id(), settings.hub_token())
    elif settings.email() and settings.password():
        await sse.login(settings.email(), settings.password())
    elif sse.require_authentication:
        raise NoCredentialsError(
            "No credentials configured. Pass --access-token, --hub-id/--hub-token "
            "or --email/--password."
        )


def print_event(event: Any) -> None:
    sys.stdout.write(json.dumps(event, separators=(",", ":")) + "\n")
    sys.stdout.flush()


async def _stream() -> int:
    from crownstone_sse.session import CrownstoneSSE

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def shutdown_handler() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown_handler)

    async with CrownstoneSSE.from_settings() as sse:
        try:
            await authenticate(sse)
        except CrownstoneSSEError as exc:
            logger.error("Could not authenticate", error=exc.message, code=exc.code)
            return 1

        start_task = asyncio.create_task(sse.start(print_event))
        logger.info("Streaming events. Press Ctrl+C to stop.", sse_url=sse.sse_url)
        await stop_event.wait()
        sse.stop()
        await start_task
    logger.info("Stream stopped.")
    return 0


if __name__ == "__main__":
    main()

# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""webdigest CLI: fetch and serve commands.

Usage:
    webdigest fetch URL [--initial-wait MS] [--scroll-count N] [--scroll-wait MS] [--output FILE]
    webdigest serve [server options]
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import DEFAULT_INITIAL_WAIT_MS, DEFAULT_SCROLL_COUNT, DEFAULT_SCROLL_WAIT_MS, FetchRequest, validate_url
from .browser_session import BrowserSessionManager, RemoteBrowserConfig
from .fetcher import PageFetcher


async def _fetch_once(config: RemoteBrowserConfig, request: FetchRequest) -> str:
    """Run one fetch on a private session and disconnect afterwards."""
    sessions = BrowserSessionManager(config)
    try:
        result = await PageFetcher(sessions).fetch(request)
    finally:
        await sessions.release()
    return result.content


def cmd_fetch(args: argparse.Namespace) -> None:
    """Fetch a rendered page and print its HTML (or save it with --output)."""
    from .problem_details import from_validation

    config = RemoteBrowserConfig.from_env()
    if config is None:
        print("Error: BROWSERLESS_API_KEY environment variable is not set", file=sys.stderr)
        sys.exit(1)

    error = validate_url(args.url)
    if error:
        print(from_validation(error, field_name="url").to_cli_text(), file=sys.stderr)
        sys.exit(2)

    try:
        request = FetchRequest(
            url=args.url.strip(),
            initial_wait_ms=args.initial_wait,
            scroll_count=args.scroll_count,
            scroll_wait_ms=args.scroll_wait,
        )
    except ValueError as e:
        print(from_validation(str(e)).to_cli_text(), file=sys.stderr)
        sys.exit(2)

    content = asyncio.run(_fetch_once(config, request))

    if args.output:
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(content, encoding="utf-8")
        print(f"Saved {len(content)} characters to {out}", file=sys.stderr)
    else:
        sys.stdout.write(content)
        if not content.endswith("\n"):
            sys.stdout.write("\n")


def cmd_serve(args: argparse.Namespace) -> None:
    """Start MCP server, forwarding any extra args to the server."""
    from .server import main

    main(argv=getattr(args, "_server_argv", []))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="webdigest CLI", prog="webdigest")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_fetch = subparsers.add_parser(
        "fetch",
        help="Fetch the rendered HTML of a URL",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
examples:
  %(prog)s https://example.com                                Print rendered HTML
  %(prog)s https://example.com --scroll-count 5 -o page.html  Scroll 5 times, save to file""",
    )
    p_fetch.add_argument("url", metavar="URL", help="Page to fetch (http/https)")
    p_fetch.add_argument(
        "--initial-wait",
        type=int,
        default=DEFAULT_INITIAL_WAIT_MS,
        metavar="MS",
        help=f"Wait after page load before scrolling (default: {DEFAULT_INITIAL_WAIT_MS})",
    )
    p_fetch.add_argument(
        "--scroll-count",
        type=int,
        default=DEFAULT_SCROLL_COUNT,
        metavar="N",
        help=f"Number of scroll-to-bottom iterations (default: {DEFAULT_SCROLL_COUNT})",
    )
    p_fetch.add_argument(
        "--scroll-wait",
        type=int,
        default=DEFAULT_SCROLL_WAIT_MS,
        metavar="MS",
        help=f"Max wait for new content after each scroll (default: {DEFAULT_SCROLL_WAIT_MS})",
    )
    p_fetch.add_argument("-o", "--output", type=str, metavar="FILE", help="Write HTML to FILE instead of stdout")

    subparsers.add_parser(
        "serve",
        help="Start MCP server (extra args forwarded to server)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
examples:
  %(prog)s                                Start with stdio transport (default)
  %(prog)s --transport http --port 8000   Start HTTP server on port 8000
  %(prog)s --help                         Show server options""",
        add_help=False,
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args, remaining = parser.parse_known_args(argv)

    # Forward remaining args to server when using 'serve' command
    if args.command == "serve":
        args._server_argv = remaining
    elif remaining:
        parser.error(f"unrecognized arguments: {' '.join(remaining)}")

    load_dotenv()
    commands = {"fetch": cmd_fetch, "serve": cmd_serve}

    if args.command != "serve":
        from .logging_config import configure as configure_logging

        configure_logging(level="DEBUG" if args.verbose else "WARNING")

    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        from .problem_details import from_exception

        problem = from_exception(e)
        print(problem.to_cli_text(), file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

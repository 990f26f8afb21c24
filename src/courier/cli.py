"""Command-line interface for courier."""

import argparse
import asyncio
import json
import sys
from dataclasses import fields
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.table import Table

from . import __version__
from .client import Client
from .core.response import Response
from .errors import HTTPError, RequestError
from .models.config import ClientSettings

EXIT_OK = 0
EXIT_REQUEST_ERROR = 1
EXIT_USAGE_ERROR = 2


class UsageError(Exception):
    """Invalid combination of command-line arguments."""


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="courier",
        description="Send an HTTP request with retries, redirects and per-phase timeouts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fetch a page
  courier https://example.com

  # POST JSON and show response headers
  courier https://httpbin.org/post --json '{"name": "widget"}' -i

  # Custom headers, retries and a 10 second budget
  courier https://api.example.com/items -H "Accept: application/json" --retry 4 --timeout 10

  # Show where the time went
  courier https://example.com --timings -q
        """,
    )

    parser.add_argument("url", help="URL to request")

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    # Request
    request_group = parser.add_argument_group("request")
    request_group.add_argument(
        "--method",
        "-X",
        type=str,
        default=None,
        help="HTTP method (default: GET, or POST when a body is given)",
    )
    request_group.add_argument(
        "--header",
        "-H",
        action="append",
        default=[],
        metavar="'NAME: VALUE'",
        help="Request header, may be repeated",
    )
    request_group.add_argument(
        "--data",
        "-d",
        type=str,
        default=None,
        help="Request body",
    )
    request_group.add_argument(
        "--json",
        type=str,
        default=None,
        metavar="JSON",
        help="JSON request body",
    )
    request_group.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="FILE",
        help="YAML client settings",
    )

    # Network settings
    network_group = parser.add_argument_group("network settings")
    network_group.add_argument(
        "--timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Budget for the whole attempt",
    )
    network_group.add_argument(
        "--retry",
        type=int,
        default=None,
        metavar="N",
        help="Maximum retries (default: 2)",
    )
    network_group.add_argument(
        "--no-follow",
        action="store_true",
        help="Do not follow redirects",
    )
    network_group.add_argument(
        "--max-redirects",
        type=int,
        default=None,
        metavar="N",
        help="Maximum redirects to follow (default: 10)",
    )
    network_group.add_argument(
        "--no-decompress",
        action="store_true",
        help="Print the body as received, without decoding gzip/deflate/br",
    )

    # Output control
    output_group = parser.add_argument_group("output control")
    output_group.add_argument(
        "--include",
        "-i",
        action="store_true",
        help="Print the status line and response headers",
    )
    output_group.add_argument(
        "--timings",
        action="store_true",
        help="Print a table of timing phases",
    )
    output_group.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Verbose output",
    )
    output_group.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Do not print the response body",
    )

    return parser


def parse_header(value: str) -> tuple[str, str]:
    name, separator, header_value = value.partition(":")
    if not separator or not name.strip():
        raise UsageError(f"Invalid header {value!r}, expected 'Name: value'")
    return name.strip(), header_value.strip()


def build_request_options(args: argparse.Namespace) -> dict[str, Any]:
    """
    Translate parsed arguments into request options.

    Raises:
        UsageError: On malformed headers or body arguments
    """
    options: dict[str, Any] = {}

    if args.data is not None and args.json is not None:
        raise UsageError("--data and --json cannot be used together")
    if args.data is not None:
        options["body"] = args.data
    if args.json is not None:
        try:
            options["json"] = json.loads(args.json)
        except ValueError as e:
            raise UsageError(f"Invalid JSON body: {e}") from e

    if args.method:
        options["method"] = args.method.upper()
    elif "body" in options or "json" in options:
        options["method"] = "POST"

    if args.header:
        options["headers"] = dict(parse_header(value) for value in args.header)

    if args.timeout is not None:
        options["timeout"] = args.timeout
    if args.retry is not None:
        options["retry"] = args.retry
    if args.no_follow:
        options["follow_redirect"] = False
    if args.max_redirects is not None:
        options["max_redirects"] = args.max_redirects
    if args.no_decompress:
        options["decompress"] = False
        options["response_type"] = "buffer"

    return options


def load_settings(args: argparse.Namespace) -> ClientSettings:
    settings = ClientSettings.from_yaml_file(args.config) if args.config else ClientSettings()
    if args.verbose:
        settings = settings.model_copy(update={"log_level": "DEBUG"})
    elif args.quiet:
        settings = settings.model_copy(update={"log_level": "ERROR"})
    return settings


def timings_table(response: Response) -> Table:
    table = Table(title="Timings")
    table.add_column("Phase")
    table.add_column("Seconds", justify="right")
    if response.timings is not None:
        phases = response.timings.phases
        for phase in fields(phases):
            value = getattr(phases, phase.name)
            table.add_row(phase.name, "-" if value is None else f"{value:.4f}")
    return table


def print_response(console: Console, response: Response, args: argparse.Namespace) -> None:
    if args.include:
        console.print(f"HTTP {response.status_code} {response.reason or ''}".rstrip(), markup=False, highlight=False)
        for name, value in response.headers.items():
            console.print(f"{name}: {value}", markup=False, highlight=False)
        console.print()

    if not args.quiet:
        if isinstance(response.body, bytes):
            console.file.flush()
            sys.stdout.buffer.write(response.body)
            sys.stdout.buffer.flush()
        elif response.body:
            console.print(response.body, markup=False, highlight=False, soft_wrap=True)

    if args.timings:
        console.print(timings_table(response))


def run_request(args: argparse.Namespace) -> int:
    """Send the request described by ``args``."""
    console = Console()
    err_console = Console(stderr=True)

    try:
        options = build_request_options(args)
        settings = load_settings(args)
    except UsageError as e:
        err_console.print(f"[red]Usage error:[/red] {e}")
        return EXIT_USAGE_ERROR
    except Exception as e:
        err_console.print(f"[red]Configuration error:[/red] {e}")
        return EXIT_USAGE_ERROR

    settings.configure_logging(console=err_console)

    async def run() -> int:
        async with Client(settings=settings) as client:
            try:
                response = await client.request(args.url, **options)
            except HTTPError as e:
                print_response(console, e.response, args)
                err_console.print(f"[red]Error:[/red] {e}")
                return EXIT_REQUEST_ERROR
            except RequestError as e:
                err_console.print(f"[red]Error:[/red] {e} ({e.code})")
                return EXIT_REQUEST_ERROR
            except (TypeError, ValueError) as e:
                err_console.print(f"[red]Usage error:[/red] {e}")
                return EXIT_USAGE_ERROR
            print_response(console, response, args)
            return EXIT_OK

    try:
        return asyncio.run(run())
    except Exception as e:
        err_console.print(f"[red]Error:[/red] {e}")
        if args.verbose:
            import traceback

            traceback.print_exc()
        return EXIT_REQUEST_ERROR


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    return run_request(args)


if __name__ == "__main__":
    sys.exit(main())

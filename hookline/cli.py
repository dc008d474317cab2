#!/usr/bin/env python3
"""
hookline - send requests through the hook pipeline from the command line.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time

import httpx

from .config import HooklineConfig
from .errors import ConfigError, TransformParseError
from .system import HookSystem


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="hookline",
        description="Send HTTP requests through hookline's interception hooks",
    )
    parser.add_argument("--debug", "-d", action="store_true", help="Enable debug output")
    parser.add_argument("--config", "-c", help="Config file (default: ~/.config/hookline/config.yaml)")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # fetch
    fetch_p = subparsers.add_parser("fetch", help="Send a request through the pipeline")
    fetch_p.add_argument("url", help="Request URL")
    fetch_p.add_argument("--method", "-X", default="GET", help="HTTP method (default: GET)")
    fetch_p.add_argument("--header", "-H", action="append", default=[], help="Header as 'Name: value'")
    fetch_p.add_argument("--data", "-d", help="Request body")
    fetch_p.add_argument("--no-body", action="store_true", help="Do not print the response body")

    # requests
    requests_p = subparsers.add_parser("requests", help="List persisted requests")
    requests_p.add_argument("--limit", "-n", type=int, default=20, help="Number of entries (default: 20)")
    requests_p.add_argument("--json", action="store_true", help="Print raw JSON")

    # clear
    subparsers.add_parser("clear", help="Clear persisted requests")

    # config subcommands
    config_p = subparsers.add_parser("config", help="Config file management")
    config_sub = config_p.add_subparsers(dest="config_command")
    config_sub.add_parser("path", help="Show config file path")
    init_p = config_sub.add_parser("init", help="Create a starter config file")
    init_p.add_argument("--force", "-f", action="store_true", help="Overwrite existing file")

    args = parser.parse_args()

    if args.debug:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s: %(message)s")

    if args.command is None:
        parser.print_help()
        return 0

    # Dispatch
    if args.command == "fetch":
        return cmd_fetch(args)
    elif args.command == "requests":
        return cmd_requests(args)
    elif args.command == "clear":
        return cmd_clear(args)
    elif args.command == "config":
        return cmd_config(args)
    else:
        parser.print_help()
        return 1


def _load(args: argparse.Namespace) -> HooklineConfig | None:
    from .config import load_config

    try:
        return load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None


def build_system(config: HooklineConfig) -> HookSystem:
    """Create the HookSystem used by ``fetch``."""
    return HookSystem.from_config(config)


def _parse_headers(values: list[str]) -> dict[str, str] | None:
    headers = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            print(f"Error: Invalid header (expected 'Name: value'): {value}", file=sys.stderr)
            return None
        headers[name.strip()] = content.strip()
    return headers


def cmd_fetch(args: argparse.Namespace) -> int:
    """Handle fetch command."""
    config = _load(args)
    if config is None:
        return 1

    headers = _parse_headers(args.header)
    if headers is None:
        return 1

    async def run() -> None:
        async with build_system(config) as system:
            response = await system.fetch(
                args.url,
                method=args.method,
                headers=headers,
                content=args.data,
            )
            print(f"{response.status_code} {response.reason_phrase}")
            for record in system.get_requests().values():
                if record.request.url_replaced:
                    print(f"URL replaced: {record.request.url}")
                if record.response.body_transformed:
                    print("Body transformed")
            if not args.no_body and response.content:
                print(response.text)

    try:
        asyncio.run(run())
    except httpx.HTTPError as e:
        print(f"Error: Request failed: {e}", file=sys.stderr)
        return 1
    except httpx.InvalidURL as e:
        print(f"Error: Invalid URL: {e}", file=sys.stderr)
        return 1
    except TransformParseError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


def _persistence_store(config: HooklineConfig):
    from .state import JsonFileStore

    return JsonFileStore(config.persistence.path)


def cmd_requests(args: argparse.Namespace) -> int:
    """Handle requests command."""
    from .hooks.builtin import load_persisted_requests

    config = _load(args)
    if config is None:
        return 1

    try:
        entries = load_persisted_requests(_persistence_store(config))[: max(args.limit, 0)]
    except ValueError as e:
        print(f"Error: Persisted requests are corrupt: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(entries, indent=2))
        return 0

    if not entries:
        print("No persisted requests")
        return 0

    for entry in entries:
        when = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(entry.get("timestamp") or 0))
        print(f"{when}  {entry.get('status', '?'):>3}  {entry.get('method', '?'):<6} {entry.get('url', '')}")

    return 0


def cmd_clear(args: argparse.Namespace) -> int:
    """Handle clear command."""
    from .hooks.builtin import clear_persisted_requests

    config = _load(args)
    if config is None:
        return 1

    clear_persisted_requests(_persistence_store(config))
    print("Cleared persisted requests")
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Handle config subcommands."""
    from .config import ensure_config_template, get_config_file

    if args.config_command == "path":
        print(args.config or get_config_file())
        return 0

    if args.config_command == "init":
        path = get_config_file()
        existed = path.exists()
        ensure_config_template(force=args.force)
        if existed and not args.force:
            print(f"Config already exists: {path} (use --force to overwrite)", file=sys.stderr)
        else:
            print(f"Created config: {path}")
        return 0

    print("Usage: hookline config {path,init}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())

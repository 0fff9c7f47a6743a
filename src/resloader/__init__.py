"""Command line entry-point for the resource loader."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Sequence

from .cache import CacheError, MemoryResourceCache, ResourceCache
from .config import ConfigError, LoaderConfig, load_config
from .display import format_size
from .fetcher import (
    DownloadRequest,
    FetchError,
    Fetcher,
    OfflineError,
    RedirectError,
    TooManyRedirectsError,
)
from .keys import CacheKey
from .loader import RequestContext, ResourceLoader, StaticContext
from .trace import TraceHandler


def parse_key_value(value: str) -> tuple[str, str]:
    key, sep, val = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got {value!r}")
    return key, val


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Download web resources through a local, age-aware cache.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON configuration file (default: built-in settings)",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Directory where cached resources are stored (default: data/http_cache)",
    )
    parser.add_argument(
        "--user-agent",
        default=None,
        help="User-Agent header sent with every request.",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Never connect to the network; only serve cached resources.",
    )
    parser.add_argument(
        "--trace",
        action="count",
        default=0,
        help="Print trace messages to stderr (repeat for more detail).",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    fetch = commands.add_parser("fetch", help="Download a resource (through the cache by default).")
    fetch.add_argument("url", help="URL to open")
    fetch.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the content to this file instead of stdout.",
    )
    fetch.add_argument(
        "--no-cache",
        action="store_true",
        help="Bypass the cache (it is still used as a fallback when offline).",
    )
    fetch.add_argument(
        "--stable",
        action="store_true",
        help="The resource rarely changes; use the longer cache lifetime.",
    )
    fetch.add_argument(
        "--post",
        type=parse_key_value,
        action="append",
        metavar="KEY=VALUE",
        help="Form parameter to POST (repeatable).",
    )
    fetch.add_argument(
        "--get",
        type=parse_key_value,
        action="append",
        metavar="KEY=VALUE",
        help="GET parameter, takes priority over --post (repeatable).",
    )
    fetch.add_argument("--oauth", default=None, help="Authorization header value, e.g. 'Bearer XXX'.")

    check = commands.add_parser("check", help="Exit with 0 if a fresh copy of URL is cached.")
    check.add_argument("url", help="URL to look up")
    check.add_argument("--stable", action="store_true", help="Use the longer cache lifetime.")

    clean = commands.add_parser("clean", help="Remove old entries from the cache.")
    clean.add_argument("--all", action="store_true", help="Remove every cached entry, not only old ones.")
    return parser


def make_config(args: argparse.Namespace) -> LoaderConfig:
    config = load_config(args.config) if args.config is not None else LoaderConfig()
    return config.with_overrides(
        cache_dir=args.cache_dir,
        user_agent=args.user_agent,
        offline=True if args.offline else None,
    )


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        config = make_config(args)
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        raise SystemExit(2)

    tracer = TraceHandler(trace_level=args.trace)
    with ResourceLoader.from_config(config, tracer=tracer) as loader:
        if args.command == "fetch":
            _fetch(loader, args)
        elif args.command == "check":
            fresh = loader.check(args.url, args.stable)
            print(f"{args.url}: {'fresh' if fresh else 'missing or too old'}")
            if not fresh:
                raise SystemExit(1)
        else:
            removed = loader.clean_cache(only_old=not args.all)
            print(f"Removed {removed} cached item(s).")


def _fetch(loader: ResourceLoader, args: argparse.Namespace) -> None:
    post_params = dict(args.post) if args.post else None
    get_params = dict(args.get) if args.get else None
    try:
        if args.no_cache:
            stream = loader.open_no_cache(
                args.url, post_params=post_params, get_params=get_params, oauth=args.oauth
            )
        else:
            stream = loader.open(
                args.url,
                stable=args.stable,
                post_params=post_params,
                get_params=get_params,
                oauth=args.oauth,
            )
    except FetchError as exc:
        print(f"Failed to fetch {args.url}: {exc}", file=sys.stderr)
        raise SystemExit(1)

    with stream:
        payload = stream.read()

    if args.output is None:
        sys.stdout.buffer.write(payload)
        sys.stdout.buffer.flush()
        return
    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_bytes(payload)
    print(f"Saved {format_size(len(payload))} from {args.url} -> {args.output}")


__all__ = [
    "CacheError",
    "CacheKey",
    "ConfigError",
    "DownloadRequest",
    "FetchError",
    "Fetcher",
    "LoaderConfig",
    "MemoryResourceCache",
    "OfflineError",
    "RedirectError",
    "RequestContext",
    "ResourceCache",
    "ResourceLoader",
    "StaticContext",
    "TooManyRedirectsError",
    "TraceHandler",
    "build_parser",
    "main",
    "make_config",
    "parse_key_value",
]

"""Helper functions for presenting cache and download messages."""

from __future__ import annotations

from pathlib import Path


def display_path(path: Path, root: Path) -> str:
    try:
        return str(path.relative_to(root))
    except ValueError:
        return str(path)


def format_size(size: int | None) -> str:
    if size is None or size < 0:
        return "unknown size"
    return f"{size:,} bytes"


def describe_request(url: str, identity_url: str) -> str:
    if url == identity_url:
        return url
    return f"{url} (for {identity_url})"


__all__ = ["describe_request", "display_path", "format_size"]

"""Deterministic, filesystem-safe cache addresses."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import urlsplit

URL_KIND = "url"
ID_KIND = "id"
ID_SUBDIR = "_"
NO_PARENT = "+"


def allowed_chars(raw: str) -> str:
    """Replace the characters a path component cannot hold by ``_``."""

    return raw.replace("/", "_").replace(":", "_").replace("\\", "_")


@dataclass(frozen=True, slots=True)
class CacheKey:
    """Address of one cached resource, either a URL or an opaque ID."""

    kind: str
    value: str

    @classmethod
    def for_url(cls, url: str) -> "CacheKey":
        return cls(URL_KIND, url)

    @classmethod
    def for_id(cls, uid: str) -> "CacheKey":
        name = allowed_chars(uid)
        if name in ("", ".", ".."):
            raise ValueError(f"Invalid cache ID: {uid!r}")
        return cls(ID_KIND, uid)

    @property
    def is_url(self) -> bool:
        return self.kind == URL_KIND

    def relative_path(self) -> Path:
        """Return the location of this entry relative to the cache root."""

        if not self.is_url:
            return Path(ID_SUBDIR, allowed_chars(self.value))

        parts = urlsplit(self.value)
        host = parts.hostname
        if host:
            return Path(
                allowed_chars(host),
                "_" + allowed_chars(parts.path),
                allowed_chars("_" + parts.query),
            )

        # Local file: mirror the parent directory, name by the full file part
        file_part = parts.path
        if parts.query:
            file_part = f"{file_part}?{parts.query}"
        parent = str(PurePosixPath(file_part).parent) if file_part else "."
        subdir = NO_PARENT if parent == "." else allowed_chars(parent.replace("..", "__"))
        name = allowed_chars(file_part)
        if name in ("", ".", ".."):
            name = NO_PARENT
        return Path(subdir, name)

    def memory_key(self) -> str:
        prefix = "URL" if self.is_url else "ID"
        return f"{prefix}:{self.value}"

    def __str__(self) -> str:
        return self.value


__all__ = ["CacheKey", "allowed_chars"]

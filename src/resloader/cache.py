"""File-based and in-memory caches for downloaded resources."""

from __future__ import annotations

import io
import time
from pathlib import Path
from typing import BinaryIO, Protocol

from .display import display_path
from .keys import CacheKey
from .trace import TraceHandler, resolve_tracer

CLEANUP_LIMIT_ON_SAVE = 10
CHUNK_SIZE = 65536
MS_PER_HOUR = 1000 * 60 * 60


class CacheError(OSError):
    """Raised when the cache directory cannot be used."""


class CacheBackend(Protocol):
    """Operations shared by every cache implementation."""

    def check(self, key: CacheKey, allow_too_old: bool = False, stable: bool = False) -> bool: ...

    def load(
        self, key: CacheKey, allow_too_old: bool = False, stable: bool = False
    ) -> BinaryIO | None: ...

    def save(self, data: BinaryIO | bytes, key: CacheKey) -> int: ...

    def remove(self, key: CacheKey) -> bool: ...

    def clean(self, only_old: bool) -> int: ...

    def set_trace_handler(self, tracer: TraceHandler | None) -> None: ...


class ResourceCache:
    """Store downloaded resources on disk and expire them by age.

    Two thresholds are kept: one for resources that change often and one for
    resources that are expected to be stable. Callers pick one per access with
    the ``stable`` flag. A threshold of ``-1`` hours means "never too old".
    """

    def __init__(
        self,
        root: Path,
        hours_changing: int,
        hours_stable: int,
        *,
        tracer: TraceHandler | None = None,
    ) -> None:
        self.root = Path(root)
        self.too_old_changing = MS_PER_HOUR * hours_changing
        self.too_old_stable = MS_PER_HOUR * hours_stable
        self.tracer = resolve_tracer(tracer)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CacheError(f"Cannot create the cache directory: {self.root.absolute()}") from exc
        if not self.root.is_dir():
            raise CacheError(f"Cannot create the cache directory: {self.root.absolute()}")

    def set_trace_handler(self, tracer: TraceHandler | None) -> None:
        self.tracer = tracer if tracer is not None else TraceHandler.silent()

    def path_for(self, key: CacheKey) -> Path:
        return self.root / key.relative_path()

    def check(self, key: CacheKey, allow_too_old: bool = False, stable: bool = False) -> bool:
        """Return True if *key* is cached and fresh enough.

        A cached file that turns out to be too old is deleted.
        """

        path = self.path_for(key)
        if not path.is_file():
            return False
        if allow_too_old or not self._is_old(path, stable):
            return True
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            self.tracer.error(f"Cannot delete old cache file {path}: {exc}")
        return False

    def load(
        self, key: CacheKey, allow_too_old: bool = False, stable: bool = False
    ) -> BinaryIO | None:
        """Return a seekable stream over the cached bytes, or None."""

        if not self.check(key, allow_too_old, stable):
            return None
        path = self.path_for(key)
        try:
            return io.BytesIO(path.read_bytes())
        except FileNotFoundError:
            return None
        except OSError as exc:
            self.tracer.error(f"Cannot read cache file {path}: {exc}")
            return None

    def save(self, data: BinaryIO | bytes, key: CacheKey) -> int:
        """Write *data* under *key* and return the number of bytes written.

        A small cleanup pass runs first so that the cache cannot grow without
        bound when nobody calls :meth:`clean`.
        """

        target = self.path_for(key)
        self._clean(True, self.root, CLEANUP_LIMIT_ON_SAVE)
        # The cleanup may have pruned our own parent.
        target.parent.mkdir(parents=True, exist_ok=True)
        temp_path = target.with_name(target.name + ".part")
        written = 0
        try:
            with temp_path.open("wb") as handle:
                if isinstance(data, (bytes, bytearray, memoryview)):
                    written = handle.write(data)
                else:
                    for chunk in iter(lambda: data.read(CHUNK_SIZE), b""):
                        written += handle.write(chunk)
            temp_path.replace(target)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise
        self.tracer.trace(f"Cached {written} bytes as {display_path(target, self.root)}", 2)
        return written

    def remove(self, key: CacheKey) -> bool:
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            self.tracer.error(f"Cannot delete cache file {path}: {exc}")
            return False
        return True

    def clean(self, only_old: bool) -> int:
        """Delete cached items and return how many files were removed.

        With *only_old*, only the files that are too old even for a stable
        resource are removed.
        """

        started = time.monotonic()
        self.tracer.trace("Cleaning cache from old files...")
        removed = self._clean(only_old, self.root, -1)
        elapsed = int((time.monotonic() - started) * 1000)
        self.tracer.trace(f"{removed} cache items cleaned in {elapsed} ms")
        return removed

    def _clean(self, only_old: bool, directory: Path, limit: int) -> int:
        removed = 0
        try:
            entries = sorted(directory.iterdir())
        except FileNotFoundError:
            return 0
        except OSError as exc:
            self.tracer.error(f"Cannot list cache directory {directory}: {exc}")
            return 0

        for entry in entries:
            if limit >= 0 and removed >= limit:
                break
            if entry.is_dir() and not entry.is_symlink():
                remaining = limit - removed if limit >= 0 else -1
                removed += self._clean(only_old, entry, remaining)
                self._prune(entry)
                continue
            if only_old and not self._is_old(entry, True):
                continue
            try:
                entry.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                self.tracer.error(f"Cannot delete cache file {entry}: {exc}")
                continue
            removed += 1
        return removed

    def _prune(self, directory: Path) -> None:
        """Remove *directory* if nothing is left inside it."""

        try:
            if next(directory.iterdir(), None) is not None:
                return
            directory.rmdir()
        except FileNotFoundError:
            return
        except OSError as exc:
            self.tracer.error(f"Cannot remove cache directory {directory}: {exc}")

    def _is_old(self, path: Path, stable: bool) -> bool:
        threshold = self.too_old_stable if stable else self.too_old_changing
        if threshold < 0:
            return False
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return True
        age = int((time.time() - mtime) * 1000)
        if age < 0:
            self.tracer.error(f"Timestamp in the future for file: {path}")
        return age < 0 or age > threshold


class MemoryResourceCache:
    """Keep resources in memory only; entries never become too old."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    def set_trace_handler(self, tracer: TraceHandler | None) -> None:
        del tracer

    def check(self, key: CacheKey, allow_too_old: bool = False, stable: bool = False) -> bool:
        del allow_too_old, stable
        return key.memory_key() in self._data

    def load(
        self, key: CacheKey, allow_too_old: bool = False, stable: bool = False
    ) -> BinaryIO | None:
        del allow_too_old, stable
        payload = self._data.get(key.memory_key())
        if payload is None:
            return None
        return io.BytesIO(payload)

    def save(self, data: BinaryIO | bytes, key: CacheKey) -> int:
        if isinstance(data, (bytes, bytearray, memoryview)):
            payload = bytes(data)
        else:
            payload = data.read()
        self._data[key.memory_key()] = payload
        return len(payload)

    def remove(self, key: CacheKey) -> bool:
        return self._data.pop(key.memory_key(), None) is not None

    def clean(self, only_old: bool) -> int:
        if only_old:
            return 0
        cleaned = len(self._data)
        self._data.clear()
        return cleaned

    def __len__(self) -> int:
        return len(self._data)


__all__ = [
    "CLEANUP_LIMIT_ON_SAVE",
    "CacheBackend",
    "CacheError",
    "MemoryResourceCache",
    "ResourceCache",
]

"""Entry point combining the resource cache with a cached and a direct fetcher."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Mapping, Protocol

from requests import Session

from .cache import CacheBackend, CacheError, MemoryResourceCache, ResourceCache
from .config import LoaderConfig
from .fetcher import DEFAULT_MAX_REDIRECTS, DEFAULT_TIMEOUT, Fetcher
from .keys import CacheKey
from .trace import TraceHandler, resolve_tracer


class RequestContext(Protocol):
    """Per-site state a caller can attach to a request."""

    cookies: Mapping[str, str] | None
    referer: str | None
    oauth: str | None


@dataclass(slots=True)
class StaticContext:
    cookies: Mapping[str, str] | None = None
    referer: str | None = None
    oauth: str | None = None


class ResourceLoader:
    """Open resources through the cache, directly, or from the cache only.

    Two fetchers share one session and one cookie jar: the cached fetcher
    always reads and populates the cache, the direct one bypasses it while
    online. Offline, the direct fetcher falls back to cached content.

    When ``cache_dir`` is None or cannot be used, an in-memory cache takes
    its place.
    """

    def __init__(
        self,
        cache_dir: Path | None,
        user_agent: str,
        hours_changing: int,
        hours_stable: int,
        *,
        session: Session | None = None,
        timeout: float | tuple[float, float] | None = DEFAULT_TIMEOUT,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        tracer: TraceHandler | None = None,
    ) -> None:
        self.tracer = resolve_tracer(tracer)
        self.cache: CacheBackend = self._build_cache(cache_dir, hours_changing, hours_stable)
        self._offline = False
        self._session_owner = session is None
        self._session = session or Session()
        self.cached_fetcher = Fetcher(
            user_agent,
            self.cache,
            session=self._session,
            timeout=timeout,
            max_redirects=max_redirects,
            tracer=self.tracer,
        )
        self.direct_fetcher = Fetcher(
            user_agent,
            None,
            session=self._session,
            timeout=timeout,
            max_redirects=max_redirects,
            tracer=self.tracer,
        )

    @classmethod
    def from_config(
        cls,
        config: LoaderConfig,
        *,
        session: Session | None = None,
        tracer: TraceHandler | None = None,
    ) -> "ResourceLoader":
        loader = cls(
            config.cache_dir,
            config.user_agent,
            config.hours_changing,
            config.hours_stable,
            session=session,
            timeout=config.timeout,
            max_redirects=config.max_redirects,
            tracer=tracer,
        )
        if config.offline:
            loader.set_offline(True)
        return loader

    def __enter__(self) -> "ResourceLoader":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def close(self) -> None:
        if self._session_owner:
            self._session.close()

    def _build_cache(
        self, cache_dir: Path | None, hours_changing: int, hours_stable: int
    ) -> CacheBackend:
        if cache_dir is None:
            return MemoryResourceCache()
        try:
            return ResourceCache(cache_dir, hours_changing, hours_stable, tracer=self.tracer)
        except CacheError as exc:
            self.tracer.error(f"{exc}; using a memory-only cache instead")
            return MemoryResourceCache()

    @property
    def offline(self) -> bool:
        return self._offline

    def set_offline(self, offline: bool) -> None:
        self._offline = offline
        self.cached_fetcher.set_offline(offline)
        self.direct_fetcher.set_offline(offline)
        # Without it, no-cache callers would get nothing at all while offline
        self.direct_fetcher.cache = self.cache if offline else None

    def set_trace_handler(self, tracer: TraceHandler | None) -> None:
        self.tracer = tracer if tracer is not None else TraceHandler.silent()
        self.cached_fetcher.set_trace_handler(tracer)
        self.direct_fetcher.set_trace_handler(tracer)
        self.cache.set_trace_handler(tracer)

    def clear_cookies(self) -> None:
        self.cached_fetcher.clear_cookies()

    def open(
        self,
        url: str,
        identity_url: str | None = None,
        context: RequestContext | None = None,
        stable: bool = False,
        post_params: Mapping[str, str] | None = None,
        get_params: Mapping[str, str] | None = None,
        oauth: str | None = None,
    ) -> BinaryIO:
        """Open a resource, from the cache if fresh enough, else download it.

        The content is cached under *identity_url* (defaults to *url*).
        Raises :class:`~resloader.fetcher.FetchError` on failure.
        """

        cookies, referer, oauth = self._resolve_context(url, context, oauth)
        return self.cached_fetcher.open(
            url,
            identity_url=identity_url or url,
            referer=referer,
            cookies=cookies,
            post_params=post_params,
            get_params=get_params,
            oauth=oauth,
            stable=stable,
        )

    def open_no_cache(
        self,
        url: str,
        context: RequestContext | None = None,
        post_params: Mapping[str, str] | None = None,
        get_params: Mapping[str, str] | None = None,
        oauth: str | None = None,
    ) -> BinaryIO:
        cookies, referer, oauth = self._resolve_context(url, context, oauth)
        return self.direct_fetcher.open(
            url,
            referer=referer,
            cookies=cookies,
            post_params=post_params,
            get_params=get_params,
            oauth=oauth,
        )

    def refresh(self, url: str, context: RequestContext | None = None, stable: bool = False) -> None:
        """Download *url* into the cache unless a fresh copy is already there."""

        if self.check(url, stable):
            return
        with self.open(url, context=context, stable=stable):
            pass

    def check(self, url: str, stable: bool = False) -> bool:
        return self.cache.check(CacheKey.for_url(url), False, stable)

    def add_to_cache(self, data: BinaryIO | bytes, uid: str) -> int:
        return self.cache.save(data, CacheKey.for_id(uid))

    def get_from_cache(self, uid: str) -> BinaryIO | None:
        return self.cache.load(CacheKey.for_id(uid), True, True)

    def remove_from_cache(self, uid: str) -> bool:
        return self.cache.remove(CacheKey.for_id(uid))

    def clean_cache(self, only_old: bool) -> int:
        return self.cache.clean(only_old)

    def _resolve_context(
        self, url: str, context: RequestContext | None, oauth: str | None
    ) -> tuple[Mapping[str, str] | None, str | None, str | None]:
        if context is None:
            return None, url, oauth
        # Explicit arguments win over the context
        if oauth is None:
            oauth = context.oauth
        return context.cookies, context.referer, oauth


__all__ = ["RequestContext", "ResourceLoader", "StaticContext"]

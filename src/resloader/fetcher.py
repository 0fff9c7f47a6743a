"""Download resources over HTTP, with cookies, redirects and an optional cache."""

from __future__ import annotations

import gzip
import io
import zlib
from dataclasses import dataclass, replace
from http.client import IncompleteRead
from pathlib import Path
from typing import BinaryIO, Mapping
from urllib.parse import urlencode, urljoin, urlsplit
from urllib.request import url2pathname

from requests import Response, Session
from requests.cookies import RequestsCookieJar
from requests.exceptions import ChunkedEncodingError, ContentDecodingError, RequestException
from urllib3.exceptions import DecodeError, ProtocolError
from urllib3.exceptions import HTTPError as TransportError

from .cache import CacheBackend
from .display import describe_request, format_size
from .keys import CacheKey
from .trace import TraceHandler, resolve_tracer

DEFAULT_TIMEOUT = (15.0, 90.0)
DEFAULT_MAX_REDIRECTS = 10
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
# POST data is not replayed on these (browsers switch to GET)
POST_DROPPING_REDIRECTS = {302, 303}
STREAM_ERRORS = (
    ChunkedEncodingError,
    ContentDecodingError,
    DecodeError,
    ProtocolError,
    IncompleteRead,
    TransportError,
)


class FetchError(OSError):
    """Raised when a resource cannot be retrieved."""


class OfflineError(FetchError):
    """Raised when the network is needed while the fetcher is offline."""


class RedirectError(FetchError):
    """Raised on a redirect response that does not say where to go."""


class TooManyRedirectsError(FetchError):
    """Raised when a redirect chain is longer than allowed."""


@dataclass(frozen=True, slots=True)
class DownloadRequest:
    """One logical request, carried unchanged through redirects.

    ``identity_url`` is the address the result is cached under; it stays the
    originally requested URL while ``url`` follows redirects.
    """

    url: str
    identity_url: str
    referer: str | None = None
    cookies: Mapping[str, str] | None = None
    post_params: Mapping[str, str] | None = None
    get_params: Mapping[str, str] | None = None
    oauth: str | None = None
    stable: bool = False

    @property
    def method(self) -> str:
        if self.get_params is None and self.post_params is not None:
            return "POST"
        return "GET"

    def body(self) -> bytes | None:
        # GET parameters have priority over POST parameters
        params = self.get_params if self.get_params is not None else self.post_params
        if params is None:
            return None
        encoded = urlencode([(str(key), str(value)) for key, value in params.items()])
        return encoded.encode("utf-8")

    def redirected(self, location: str, status: int) -> "DownloadRequest":
        post_params = None if status in POST_DROPPING_REDIRECTS else self.post_params
        return replace(self, url=location, post_params=post_params)


class Fetcher:
    """Open URLs and return their content as a seekable byte stream.

    When a cache is attached, fresh cached content is returned without any
    network access and every download is stored into it.

    A *cookies* jar given together with an injected *session* becomes that
    session's ``cookies``, so the session sends and collects through it.
    """

    def __init__(
        self,
        user_agent: str,
        cache: CacheBackend | None = None,
        *,
        session: Session | None = None,
        cookies: RequestsCookieJar | None = None,
        timeout: float | tuple[float, float] | None = DEFAULT_TIMEOUT,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        tracer: TraceHandler | None = None,
    ) -> None:
        self.user_agent = user_agent
        self.cache = cache
        self.timeout = timeout
        self.max_redirects = max(0, max_redirects)
        self.tracer = resolve_tracer(tracer)
        self._offline = False
        self._session_owner = session is None
        self._session = session or Session()
        if cookies is not None:
            self._session.cookies = cookies
        self.cookies: RequestsCookieJar = self._session.cookies

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def close(self) -> None:
        if self._session_owner:
            self._session.close()

    @property
    def offline(self) -> bool:
        return self._offline

    def set_offline(self, offline: bool) -> None:
        """Forbid (or allow again) any network access; the cache is still used."""

        self._offline = offline

    def set_trace_handler(self, tracer: TraceHandler | None) -> None:
        self.tracer = tracer if tracer is not None else TraceHandler.silent()

    def clear_cookies(self) -> None:
        self.cookies.clear()

    def open(
        self,
        url: str,
        *,
        identity_url: str | None = None,
        referer: str | None = None,
        cookies: Mapping[str, str] | None = None,
        post_params: Mapping[str, str] | None = None,
        get_params: Mapping[str, str] | None = None,
        oauth: str | None = None,
        stable: bool = False,
    ) -> BinaryIO:
        """Open *url* and return its content.

        ``get_params`` take priority over ``post_params`` when both are
        given; ``oauth`` is sent as the ``Authorization`` header.

        Raises :class:`FetchError` (or a subclass) when the resource cannot
        be retrieved, including offline mode without a cached copy.
        """

        request = DownloadRequest(
            url=url,
            identity_url=identity_url or url,
            referer=referer,
            cookies=cookies,
            post_params=post_params,
            get_params=get_params,
            oauth=oauth,
            stable=stable,
        )
        return self.fetch(request)

    def fetch(self, request: DownloadRequest) -> BinaryIO:
        self.tracer.trace(f"Request: {request.url}")
        key = CacheKey.for_url(request.identity_url)

        if self.cache is not None:
            cached = self.cache.load(key, False, request.stable)
            if cached is not None:
                self.tracer.trace(f"Use the cache: {describe_request(request.url, request.identity_url)}")
                return cached

        if urlsplit(request.url).scheme.lower() == "file":
            payload = self._read_local(request)
        elif self._offline:
            self.tracer.error(f"Fetcher OFFLINE, cannot proceed to URL: {request.url}")
            raise OfflineError(f"Fetcher is currently offline, cannot download: {request.url}")
        else:
            payload = self._download(request)

        if self.cache is not None:
            self._store(self.cache, payload, key)
        return io.BytesIO(payload)

    def _download(self, request: DownloadRequest) -> bytes:
        current = request
        for _hop in range(self.max_redirects + 1):
            self.tracer.trace(f"Download: {current.url}")
            try:
                with self._session.request(
                    current.method,
                    current.url,
                    headers=self._request_headers(current),
                    data=current.body(),
                    allow_redirects=False,
                    stream=True,
                    timeout=self.timeout,
                ) as response:
                    self.cookies.update(response.cookies)
                    if 300 <= response.status_code < 400:
                        location = self._redirect_location(current, response)
                        self.tracer.trace(f"Redirect {response.status_code}: {current.url} -> {location}")
                        current = current.redirected(location, response.status_code)
                        continue
                    response.raise_for_status()
                    return self._read_body(current, response)
            except RequestException as exc:
                raise FetchError(
                    f"Cannot find {request.identity_url} (current URL: {current.url}): {exc}"
                ) from exc

        raise TooManyRedirectsError(
            f"Exceeded {self.max_redirects} redirects while opening {request.identity_url}"
            f" (last URL: {current.url})"
        )

    def _read_local(self, request: DownloadRequest) -> bytes:
        path = Path(url2pathname(urlsplit(request.url).path))
        try:
            return path.read_bytes()
        except OSError as exc:
            raise FetchError(f"Cannot find {request.identity_url} (current URL: {request.url})") from exc

    def _read_body(self, request: DownloadRequest, response: Response) -> bytes:
        try:
            payload = response.raw.read(decode_content=False)
        except STREAM_ERRORS as exc:
            raise FetchError(f"Stream error while reading {request.url}: {exc}") from exc

        expected = response.headers.get("Content-Length", "").strip()
        if expected.isdigit() and len(payload) < int(expected):
            raise FetchError(
                f"Incomplete body from {request.url}: {len(payload)} of {expected} bytes"
            )

        encoding = response.headers.get("Content-Encoding", "")
        if encoding.strip().lower() != "gzip":
            return payload
        try:
            with gzip.GzipFile(fileobj=io.BytesIO(payload)) as reader:
                return reader.read()
        except (OSError, EOFError, zlib.error) as exc:
            raise FetchError(f"Invalid gzip content from {request.url}: {exc}") from exc

    def _redirect_location(self, request: DownloadRequest, response: Response) -> str:
        location = (response.headers.get("Location") or "").strip()
        if not location:
            raise RedirectError(
                f"Redirect {response.status_code} from {request.url} without a Location header"
            )
        return urljoin(request.url, location)

    def _store(self, cache: CacheBackend, payload: bytes, key: CacheKey) -> None:
        self.tracer.trace(f"Save to cache ({format_size(len(payload))}): {key}")
        try:
            written = cache.save(payload, key)
        except OSError as exc:
            self.tracer.error(f"Cannot save URL to cache, will ignore cache: {key}: {exc}")
            return
        self.tracer.trace(f"Saved to cache: {format_size(written)}")

    def _request_headers(self, request: DownloadRequest) -> dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "*/*",
            "Accept-Encoding": "gzip",
        }
        cookie = self._cookie_header(request.cookies)
        if cookie:
            headers["Cookie"] = cookie
        if request.referer:
            headers["Referer"] = request.referer
            # Host names the server being asked, which changes across redirects
            host = urlsplit(request.url).netloc.rpartition("@")[2]
            if host:
                headers["Host"] = host
        if request.method == "POST":
            headers["Content-Type"] = FORM_CONTENT_TYPE
        if request.oauth is not None:
            headers["Authorization"] = request.oauth
        return headers

    def _cookie_header(self, overrides: Mapping[str, str] | None) -> str:
        pairs = [f"{cookie.name}={cookie.value}" for cookie in self.cookies]
        if overrides:
            pairs.extend(f"{name}={value}" for name, value in overrides.items())
        return "; ".join(pairs)


__all__ = [
    "DEFAULT_MAX_REDIRECTS",
    "DEFAULT_TIMEOUT",
    "DownloadRequest",
    "FetchError",
    "Fetcher",
    "OfflineError",
    "RedirectError",
    "TooManyRedirectsError",
]

"""ResourceLoader: cached and direct access, offline fallback and manual caching."""

from __future__ import annotations

import io
import tempfile
import unittest
from pathlib import Path
from typing import Any

from requests.cookies import RequestsCookieJar
from requests.structures import CaseInsensitiveDict

from resloader.cache import MemoryResourceCache, ResourceCache
from resloader.config import LoaderConfig
from resloader.fetcher import OfflineError
from resloader.loader import ResourceLoader, StaticContext
from resloader.trace import TraceHandler

URL = "https://example.com/story/1"


class _FakeRaw:
    def __init__(self, payload: bytes) -> None:
        self.payload = payload

    def read(self, amt: int | None = None, decode_content: bool | None = None) -> bytes:
        return self.payload


class _FakeResponse:
    def __init__(self, payload: bytes, status_code: int = 200) -> None:
        self.status_code = status_code
        self.headers = CaseInsensitiveDict()
        self.cookies: dict[str, str] = {}
        self.raw = _FakeRaw(payload)

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        return None

    def raise_for_status(self) -> None:
        return None


class _CountingSession:
    """Answer every request with a numbered payload."""

    def __init__(self) -> None:
        self.cookies = RequestsCookieJar()
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def request(self, method: str, url: str, **kwargs: Any) -> _FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        return _FakeResponse(f"{url}#{len(self.calls)}".encode("utf-8"))

    def close(self) -> None:
        self.closed = True


class RecordingTracer(TraceHandler):
    def __init__(self) -> None:
        super().__init__(show_errors=False)
        self.errors: list[str] = []

    def error(self, error: str | BaseException) -> None:
        self.errors.append(str(error))


class ResourceLoaderTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.session = _CountingSession()
        self.loader = ResourceLoader(
            self.root / "cache",
            "resloader-tests/1.0",
            1,
            24,
            session=self.session,
            tracer=TraceHandler.silent(),
        )

    def tearDown(self) -> None:
        self.loader.close()
        self._tmp.cleanup()

    def test_uses_disk_cache(self) -> None:
        self.assertIsInstance(self.loader.cache, ResourceCache)

    def test_open_caches_content(self) -> None:
        first = self.loader.open(URL).read()
        second = self.loader.open(URL).read()

        self.assertEqual(first, second)
        self.assertEqual(len(self.session.calls), 1)
        self.assertTrue(self.loader.check(URL))

    def test_open_no_cache_always_downloads(self) -> None:
        first = self.loader.open_no_cache(URL).read()
        second = self.loader.open_no_cache(URL).read()

        self.assertNotEqual(first, second)
        self.assertEqual(len(self.session.calls), 2)
        self.assertFalse(self.loader.check(URL))

    def test_identity_url_addresses_the_cache(self) -> None:
        self.loader.open("https://cdn.example.com/x.jpg", identity_url="https://example.com/cover")
        self.assertTrue(self.loader.check("https://example.com/cover"))
        self.assertFalse(self.loader.check("https://cdn.example.com/x.jpg"))

    def test_default_referer_is_the_url(self) -> None:
        self.loader.open(URL)
        headers = self.session.calls[0]["headers"]
        self.assertEqual(headers["Referer"], URL)
        self.assertEqual(headers["Host"], "example.com")

    def test_context_supplies_cookies_referer_and_oauth(self) -> None:
        context = StaticContext(
            cookies={"adult": "yes"},
            referer="https://ref.example.org/list",
            oauth="Bearer context",
        )
        self.loader.open(URL, context=context)
        self.loader.open_no_cache(URL, context=context, oauth="Bearer explicit")

        cached_headers = self.session.calls[0]["headers"]
        self.assertEqual(cached_headers["Cookie"], "adult=yes")
        self.assertEqual(cached_headers["Referer"], "https://ref.example.org/list")
        self.assertEqual(cached_headers["Host"], "example.com")
        self.assertEqual(cached_headers["Authorization"], "Bearer context")
        self.assertEqual(self.session.calls[1]["headers"]["Authorization"], "Bearer explicit")

    def test_refresh_only_when_needed(self) -> None:
        self.loader.refresh(URL)
        self.loader.refresh(URL)
        self.assertEqual(len(self.session.calls), 1)
        self.assertTrue(self.loader.check(URL))

    def test_offline_open_with_empty_cache_fails_without_network(self) -> None:
        self.loader.set_offline(True)

        self.assertTrue(self.loader.offline)
        with self.assertRaises(OfflineError):
            self.loader.open(URL)
        with self.assertRaises(OfflineError):
            self.loader.open_no_cache(URL)
        self.assertEqual(self.session.calls, [])

    def test_offline_no_cache_falls_back_to_cache(self) -> None:
        cached = self.loader.open(URL).read()
        self.loader.set_offline(True)

        self.assertIs(self.loader.direct_fetcher.cache, self.loader.cache)
        self.assertEqual(self.loader.open_no_cache(URL).read(), cached)
        self.assertEqual(len(self.session.calls), 1)

        self.loader.set_offline(False)
        self.assertIsNone(self.loader.direct_fetcher.cache)
        self.assertNotEqual(self.loader.open_no_cache(URL).read(), cached)
        self.assertEqual(len(self.session.calls), 2)

    def test_manual_cache_entries(self) -> None:
        self.assertEqual(self.loader.add_to_cache(io.BytesIO(b"hello"), "story-123"), 5)
        stream = self.loader.get_from_cache("story-123")
        assert stream is not None
        self.assertEqual(stream.read(), b"hello")

        self.assertTrue(self.loader.remove_from_cache("story-123"))
        self.assertIsNone(self.loader.get_from_cache("story-123"))

    def test_clean_cache(self) -> None:
        self.loader.open(URL)
        self.loader.add_to_cache(b"thumb", "thumb-1")
        self.assertEqual(self.loader.clean_cache(True), 0)
        self.assertEqual(self.loader.clean_cache(False), 2)
        self.assertFalse(self.loader.check(URL))

    def test_shared_cookie_jar(self) -> None:
        self.assertIs(self.loader.cached_fetcher.cookies, self.loader.direct_fetcher.cookies)
        self.loader.cached_fetcher.cookies.set("sid", "1")
        self.loader.open_no_cache(URL)
        self.assertEqual(self.session.calls[0]["headers"]["Cookie"], "sid=1")
        self.loader.clear_cookies()
        self.loader.open_no_cache(URL)
        self.assertNotIn("Cookie", self.session.calls[1]["headers"])

    def test_set_trace_handler_propagates(self) -> None:
        tracer = RecordingTracer()
        self.loader.set_trace_handler(tracer)
        self.assertIs(self.loader.cached_fetcher.tracer, tracer)
        self.assertIs(self.loader.direct_fetcher.tracer, tracer)
        assert isinstance(self.loader.cache, ResourceCache)
        self.assertIs(self.loader.cache.tracer, tracer)

    def test_injected_session_left_open(self) -> None:
        self.loader.close()
        self.assertFalse(self.session.closed)


class MemoryFallbackTest(unittest.TestCase):
    def test_no_directory_means_memory_cache(self) -> None:
        session = _CountingSession()
        with ResourceLoader(None, "ua", 1, 24, session=session) as loader:
            self.assertIsInstance(loader.cache, MemoryResourceCache)
            loader.open(URL)
            loader.open(URL)
        self.assertEqual(len(session.calls), 1)

    def test_unusable_directory_falls_back_to_memory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            blocker = Path(tmp) / "file"
            blocker.write_text("x", encoding="utf-8")
            tracer = RecordingTracer()
            with ResourceLoader(blocker, "ua", 1, 24, session=_CountingSession(), tracer=tracer) as loader:
                self.assertIsInstance(loader.cache, MemoryResourceCache)
                loader.add_to_cache(b"hello", "story-123")
                stream = loader.get_from_cache("story-123")
                assert stream is not None
                self.assertEqual(stream.read(), b"hello")
        self.assertEqual(len(tracer.errors), 1)
        self.assertIn("memory-only", tracer.errors[0])


class FromConfigTest(unittest.TestCase):
    def test_from_config(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config = LoaderConfig(
                cache_dir=Path(tmp) / "cache",
                user_agent="configured/2.0",
                timeout=(1.0, 2.0),
                max_redirects=2,
                offline=True,
            )
            session = _CountingSession()
            with ResourceLoader.from_config(config, session=session, tracer=TraceHandler.silent()) as loader:
                self.assertTrue(loader.offline)
                self.assertEqual(loader.cached_fetcher.user_agent, "configured/2.0")
                self.assertEqual(loader.cached_fetcher.timeout, (1.0, 2.0))
                self.assertEqual(loader.direct_fetcher.max_redirects, 2)
                with self.assertRaises(OfflineError):
                    loader.open(URL)
            self.assertEqual(session.calls, [])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

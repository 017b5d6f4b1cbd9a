import time
import urllib.error

import pytest

from feedstore.rss_fetch import (
    SourceUnavailable,
    classify_failure,
    fetch_feed,
    fetch_feed_with_retry,
)
from feedstore.error_codes import FETCH_PERMANENT, FETCH_TIMEOUT, FETCH_TRANSIENT, RATE_LIMITED

# ---------- helpers ----------

# Mimics urllib's HTTP response object
class FakeResponse:
    def __init__(self, *, status: int, body: bytes, chunk: int = 0):
        self.status = status
        self._body = body
        self._pos = 0
        # chunk > 0 hands the body out a few bytes per read
        self._chunk = chunk

    def read(self, size: int = -1) -> bytes:
        end = len(self._body)
        if size >= 0:
            end = min(end, self._pos + size)
        if self._chunk:
            end = min(end, self._pos + self._chunk)
        data = self._body[self._pos:end]
        self._pos = end
        return data

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


# ---------- fetch_feed ----------

def test_fetch_feed_returns_raw_bytes(monkeypatch):
    def fake_urlopen(req, timeout):
        return FakeResponse(status=200, body=b"<rss>ok</rss>")

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    assert fetch_feed("https://example.com/feed.xml") == b"<rss>ok</rss>"


def test_fetch_feed_sends_user_agent_and_timeout(monkeypatch):
    seen = {}

    def fake_urlopen(req, timeout):
        seen["ua"] = req.get_header("User-agent")
        seen["timeout"] = timeout
        return FakeResponse(status=200, body=b"<rss/>")

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    fetch_feed("https://example.com/feed.xml", timeout_s=10.0, user_agent="feedstore-test/1.0")

    assert seen == {"ua": "feedstore-test/1.0", "timeout": 10.0}


def test_fetch_feed_non_2xx_raises(monkeypatch):
    def fake_urlopen(req, timeout):
        return FakeResponse(status=500, body=b"error")

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    with pytest.raises(SourceUnavailable) as info:
        fetch_feed("https://example.com/feed.xml")
    assert info.value.status == 500


def test_fetch_feed_http_error_carries_status(monkeypatch):
    def fake_urlopen(req, timeout):
        raise urllib.error.HTTPError(req.full_url, 404, "Not Found", {}, None)

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    with pytest.raises(SourceUnavailable) as info:
        fetch_feed("https://example.com/missing.xml")
    assert info.value.status == 404
    assert "HTTP 404" in str(info.value)


def test_fetch_feed_timeout_is_source_unavailable(monkeypatch):
    def fake_urlopen(req, timeout):
        raise TimeoutError("timed out")

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    with pytest.raises(SourceUnavailable) as info:
        fetch_feed("https://example.com/slow.xml")
    assert info.value.timeout is True


def test_fetch_feed_connect_timeout_wrapped_in_urlerror(monkeypatch):
    def fake_urlopen(req, timeout):
        raise urllib.error.URLError(TimeoutError("timed out"))

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    with pytest.raises(SourceUnavailable) as info:
        fetch_feed("https://example.com/slow.xml")
    assert info.value.timeout is True


def test_fetch_feed_dns_failure(monkeypatch):
    def fake_urlopen(req, timeout):
        raise urllib.error.URLError("Name or service not known")

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    with pytest.raises(SourceUnavailable):
        fetch_feed("https://nope.invalid/feed.xml")


def test_fetch_feed_invalid_url():
    with pytest.raises(SourceUnavailable):
        fetch_feed("not a url")


@pytest.mark.parametrize("url", ["file:///etc/passwd", "ftp://example.com/feed.xml", "data:text/xml,<rss/>"])
def test_fetch_feed_rejects_non_http_schemes(monkeypatch, url):
    def fake_urlopen(req, timeout):
        raise AssertionError("urlopen must not be reached")

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    with pytest.raises(SourceUnavailable) as info:
        fetch_feed(url)
    assert "unsupported url scheme" in str(info.value)


def test_fetch_feed_reads_body_in_chunks(monkeypatch):
    body = b"<rss>" + b"x" * 200_000 + b"</rss>"

    def fake_urlopen(req, timeout):
        return FakeResponse(status=200, body=body, chunk=1000)

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)

    assert fetch_feed("https://example.com/big.xml") == body


def test_fetch_feed_trickling_body_hits_overall_deadline(monkeypatch):
    # Each read is fast, but together they outlast the timeout
    ticks = iter(range(0, 1000, 4))

    def fake_urlopen(req, timeout):
        return FakeResponse(status=200, body=b"<rss>" + b"x" * 100 + b"</rss>", chunk=5)

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    monkeypatch.setattr(time, "monotonic", lambda: next(ticks))

    with pytest.raises(SourceUnavailable) as info:
        fetch_feed("https://example.com/slow.xml", timeout_s=10.0)
    assert info.value.timeout is True
    assert classify_failure(info.value) == FETCH_TIMEOUT


# ---------- classification ----------

def test_classify_failure_codes():
    assert classify_failure(SourceUnavailable("x", timeout=True)) == FETCH_TIMEOUT
    assert classify_failure(SourceUnavailable("x", status=429)) == RATE_LIMITED
    assert classify_failure(SourceUnavailable("x", status=403)) == FETCH_PERMANENT
    assert classify_failure(SourceUnavailable("x", status=503)) == FETCH_TRANSIENT
    assert classify_failure(SourceUnavailable("x")) == FETCH_TRANSIENT


# ---------- fetch_feed_with_retry ----------

def test_fetch_feed_with_retry_default_is_single_attempt(monkeypatch):
    calls = {"n": 0}

    def fake_fetch(url, *, timeout_s, user_agent):
        calls["n"] += 1
        raise SourceUnavailable("HTTP 500", status=500)

    monkeypatch.setattr("feedstore.rss_fetch.fetch_feed", fake_fetch)

    result = fetch_feed_with_retry("https://example.com/feed.xml")

    assert result.ok is False
    assert result.error_code == FETCH_TRANSIENT
    assert calls["n"] == 1


def test_fetch_feed_with_retry_429_returns_rate_limited(monkeypatch):
    """429 returns RATE_LIMITED immediately (no retry)."""
    calls = {"n": 0}

    def fake_fetch(url, *, timeout_s, user_agent):
        calls["n"] += 1
        raise SourceUnavailable("HTTP 429", status=429)

    monkeypatch.setattr("feedstore.rss_fetch.fetch_feed", fake_fetch)

    result = fetch_feed_with_retry("https://example.com/feed.xml", attempts=3)

    assert result.ok is False
    assert result.error_code == RATE_LIMITED
    assert calls["n"] == 1


# Sleep time doubles on each retry
def test_fetch_feed_with_retry_backoff(monkeypatch):
    calls = {"n": 0}
    sleeps: list[float] = []

    def fake_fetch(url, *, timeout_s, user_agent):
        calls["n"] += 1
        if calls["n"] < 3:
            raise SourceUnavailable("HTTP 500", status=500)
        return b"<rss>ok</rss>"

    def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr("feedstore.rss_fetch.fetch_feed", fake_fetch)
    monkeypatch.setattr(time, "sleep", fake_sleep)

    result = fetch_feed_with_retry(
        "https://example.com/feed.xml",
        attempts=3,
        base_sleep_s=0.5,
    )

    assert result.ok is True
    assert result.content == b"<rss>ok</rss>"
    assert sleeps == [0.5, 1.0]


def test_fetch_feed_with_retry_timeout_exhausts(monkeypatch):
    def fake_fetch(url, *, timeout_s, user_agent):
        raise SourceUnavailable("timeout", timeout=True)

    monkeypatch.setattr("feedstore.rss_fetch.fetch_feed", fake_fetch)
    monkeypatch.setattr(time, "sleep", lambda s: None)

    result = fetch_feed_with_retry("https://example.com/feed.xml", attempts=2)

    assert result.ok is False
    assert result.error_code == FETCH_TIMEOUT

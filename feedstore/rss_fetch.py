# Enable type hint syntax from future Python versions (allows using | for union types)
from __future__ import annotations

import http.client
from dataclasses import dataclass

from feedstore.config import DEFAULT_USER_AGENT
from feedstore.error_codes import FETCH_TIMEOUT, FETCH_TRANSIENT, RATE_LIMITED, FETCH_PERMANENT

# Import time module for sleep/delay functionality
import time
# Import urllib modules for making HTTP requests
import urllib.request
import urllib.error
from urllib.parse import urlsplit


ALLOWED_SCHEMES = ("http", "https")
READ_CHUNK_BYTES = 64 * 1024


# Single failure condition for network errors, non-2xx statuses and timeouts
class SourceUnavailable(Exception):
    """Raised when a feed source cannot be fetched."""

    def __init__(self, message: str, *, status: int | None = None, timeout: bool = False):
        super().__init__(message)
        self.status = status
        self.timeout = timeout


@dataclass
class FetchResult:
    ok: bool
    content: bytes | None = None
    error_code: str | None = None
    error_message: str | None = None


# Fetch raw feed bytes from a URL - this is the base function without retries
def fetch_feed(url: str, *, timeout_s: float = 10.0, user_agent: str = DEFAULT_USER_AGENT) -> bytes:
    """
    Fetch a feed document and return the undecoded response body.

    Only http(s) URLs are fetched. timeout_s bounds the whole fetch: urllib's
    timeout applies per socket operation, so the body is read in chunks
    against a monotonic deadline.
    """
    # Decoding is left to the XML parser so the document's own encoding declaration wins
    deadline = time.monotonic() + timeout_s
    try:
        scheme = urlsplit(url).scheme.lower()
        if scheme not in ALLOWED_SCHEMES:
            raise SourceUnavailable(f"SOURCE_UNAVAILABLE: unsupported url scheme '{scheme}'")

        req = urllib.request.Request(
            url,
            headers={"User-Agent": user_agent},
        )

        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            # Fakes might not have a status attribute
            status = getattr(resp, "status", None)
            if status is not None and not 200 <= status < 300:
                raise SourceUnavailable(f"SOURCE_UNAVAILABLE: HTTP {status}", status=status)

            chunks = []
            while True:
                chunk = resp.read(READ_CHUNK_BYTES)
                if not chunk:
                    break
                chunks.append(chunk)
                # A server trickling bytes never trips the per-read timeout
                if time.monotonic() > deadline:
                    raise SourceUnavailable("SOURCE_UNAVAILABLE: timeout (deadline exceeded)", timeout=True)
            return b"".join(chunks)

    # HTTP-specific errors (404, 500, ...) carry the status code
    except urllib.error.HTTPError as exc:
        raise SourceUnavailable(f"SOURCE_UNAVAILABLE: HTTP {exc.code}", status=exc.code) from exc
    # Connection refused, DNS failure; a connect timeout also lands here wrapped in URLError
    except urllib.error.URLError as exc:
        if isinstance(exc.reason, TimeoutError):
            raise SourceUnavailable("SOURCE_UNAVAILABLE: timeout", timeout=True) from exc
        raise SourceUnavailable(f"SOURCE_UNAVAILABLE: URL error: {exc.reason}") from exc
    # Read timeout while streaming the body
    except TimeoutError as exc:
        raise SourceUnavailable("SOURCE_UNAVAILABLE: timeout", timeout=True) from exc
    # Connection reset, truncated body
    except (OSError, http.client.HTTPException) as exc:
        raise SourceUnavailable(f"SOURCE_UNAVAILABLE: {type(exc).__name__}: {exc}") from exc
    # urllib rejects malformed URLs with ValueError ("unknown url type")
    except ValueError as exc:
        raise SourceUnavailable(f"SOURCE_UNAVAILABLE: invalid url: {exc}") from exc


def classify_failure(exc: SourceUnavailable) -> str:
    """Map a SourceUnavailable to its stable fetch error code."""
    if exc.timeout:
        return FETCH_TIMEOUT
    if exc.status == 429:
        return RATE_LIMITED
    if exc.status is not None and 400 <= exc.status < 500:
        return FETCH_PERMANENT
    return FETCH_TRANSIENT


# Fetch with bounded retry and exponential backoff for transient failures
def fetch_feed_with_retry(
    url: str,
    *,
    attempts: int = 1,
    base_sleep_s: float = 0.5,
    timeout_s: float = 10.0,
    user_agent: str = DEFAULT_USER_AGENT,
) -> FetchResult:
    """Fetch a feed with retry/backoff for timeouts and 5xx. attempts=1 means no retry."""
    last_msg: str | None = None

    for i in range(attempts):
        try:
            content = fetch_feed(url, timeout_s=timeout_s, user_agent=user_agent)
            return FetchResult(ok=True, content=content)

        except SourceUnavailable as exc:
            last_msg = str(exc)
            code = classify_failure(exc)

            # 429 and other 4xx: retrying won't help, return immediately
            if code in (RATE_LIMITED, FETCH_PERMANENT):
                return FetchResult(ok=False, error_code=code, error_message=last_msg)

            # timeout or 5xx/network: retry if attempts remain
            if i >= attempts - 1:
                return FetchResult(ok=False, error_code=code, error_message=last_msg)

            # Backoff before retry
            time.sleep(base_sleep_s * (2 ** i))

    # Only reachable with attempts < 1
    return FetchResult(ok=False, error_code=FETCH_TRANSIENT, error_message=last_msg or "no attempts made")

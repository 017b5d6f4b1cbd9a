# feedstore/sync.py
"""
Per-source sync work: fetch -> parse -> normalize, fanned out across sources.

Nothing here touches the store. Each source yields a tagged SourceResult so
partial failures can be inspected by the caller; the single store write
happens afterwards in FeedService.sync().
"""
from __future__ import annotations

import concurrent.futures as _fut
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from feedstore.error_codes import PARSE_ERROR, SOURCE_UNAVAILABLE
from feedstore.logging_utils import log_event, log_warning
from feedstore.normalize import to_article
from feedstore.rss_fetch import SourceUnavailable
from feedstore.rss_parse import FeedParseError, parse_channel
from feedstore.schemas import Article


Fetcher = Callable[[str], bytes]


@dataclass
class SourceResult:
    source_url: str
    ok: bool
    articles: list[Article] = field(default_factory=list)
    error_code: str | None = None
    error_message: str | None = None


def process_source(source_url: str, *, fetch: Fetcher, now: datetime, run_id: str | None = None) -> SourceResult:
    """
    Run one source end to end. SourceUnavailable and FeedParseError are
    returned as a failed SourceResult (and logged), never raised.
    """
    try:
        raw = fetch(source_url)
    except SourceUnavailable as exc:
        log_warning(
            "feed_source_skipped",
            run_id=run_id,
            url=source_url,
            error_code=SOURCE_UNAVAILABLE,
            error_message=str(exc),
        )
        return SourceResult(source_url=source_url, ok=False, error_code=SOURCE_UNAVAILABLE, error_message=str(exc))

    try:
        channel = parse_channel(raw)
    except FeedParseError as exc:
        log_warning(
            "feed_source_skipped",
            run_id=run_id,
            url=source_url,
            error_code=PARSE_ERROR,
            error_message=str(exc),
        )
        return SourceResult(source_url=source_url, ok=False, error_code=PARSE_ERROR, error_message=str(exc))

    articles = [to_article(it, source_url=source_url, now=now) for it in channel.items]
    log_event("feed_fetch_ok", run_id=run_id, url=source_url, items=len(articles))
    return SourceResult(source_url=source_url, ok=True, articles=articles)


def run_sync(
    source_urls: list[str],
    *,
    fetch: Fetcher,
    now: datetime,
    max_workers: int = 4,
    run_id: str | None = None,
) -> list[SourceResult]:
    """
    Process every source independently and return results in registry order.
    All results are buffered; nothing is written here.
    """
    if not source_urls:
        return []

    def _one(url: str) -> SourceResult:
        return process_source(url, fetch=fetch, now=now, run_id=run_id)

    workers = max(1, min(int(max_workers), len(source_urls)))
    if workers == 1:
        return [_one(u) for u in source_urls]

    with _fut.ThreadPoolExecutor(max_workers=workers) as ex:
        futures = [ex.submit(_one, u) for u in source_urls]
        # result() re-raises anything unexpected (not a skip condition) in the caller
        return [fu.result() for fu in futures]

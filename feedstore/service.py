# feedstore/service.py
from __future__ import annotations

import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Callable

from feedstore.config import Settings
from feedstore.db import InvalidDbPathError, db_conn
from feedstore.error_codes import STORE_READ_ERROR, STORE_WRITE_ERROR
from feedstore.logging_utils import log_event, log_warning
from feedstore.normalize import merge_articles, to_article
from feedstore.repo import (
    StoreReadError,
    StoreWriteError,
    finish_run_error,
    finish_run_ok,
    get_articles_page,
    get_cached_feed,
    has_feed_source,
    list_feed_sources,
    replace_articles,
    start_run,
    store_cached_feed,
)
from feedstore.rss_fetch import SourceUnavailable, fetch_feed_with_retry
from feedstore.rss_parse import parse_channel
from feedstore.schemas import Article
from feedstore.sync import Fetcher, SourceResult, run_sync


DEFAULT_PAGE = 1
DEFAULT_LIMIT = 9


@dataclass
class SyncReport:
    run_id: str
    results: list[SourceResult] = field(default_factory=list)
    stored: int = 0
    store_replaced: bool = False

    @property
    def failed(self) -> dict[str, str]:
        """source url -> error code, for every skipped source."""
        return {r.source_url: r.error_code or "UNKNOWN" for r in self.results if not r.ok}


def make_fetcher(settings: Settings) -> Fetcher:
    """Fetcher bound to the configured timeout, attempts and user agent."""

    def fetch(url: str) -> bytes:
        result = fetch_feed_with_retry(
            url,
            attempts=settings.fetch_attempts,
            timeout_s=settings.fetch_timeout_s,
            user_agent=settings.user_agent,
        )
        if not result.ok:
            raise SourceUnavailable(f"{result.error_code}: {result.error_message}")
        return result.content

    return fetch


class FeedService:
    """
    Holds everything the sync and read paths need: settings, a fetch function
    and the store location. Constructed by the entrypoint, passed by reference.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        fetch: Fetcher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.fetch = fetch or make_fetcher(settings)
        self.clock = clock or partial(datetime.now, timezone.utc)

    def connect(self):
        return db_conn(self.settings.db_path)

    # -----------------------------------------------------------------
    # Sync (canonical full-replace path)
    # -----------------------------------------------------------------

    def sync(self) -> SyncReport:
        """
        One full resynchronization across every registered source.

        Per-source failures are skipped and reported in the SyncReport.
        When every source failed the previous generation is kept.

        Raises:
            StoreWriteError: the merged set could not be written (run marked error).
        """
        run_id = uuid.uuid4().hex
        t0 = time.perf_counter()
        now = self.clock()
        started_at = now.isoformat()

        with self.connect() as conn:
            sources = [s.url for s in list_feed_sources(conn)]
            start_run(conn, run_id, started_at, sources_total=len(sources))

        log_event("sync_started", run_id=run_id, sources=len(sources))

        # Fan out: no connection is held while sources are fetched
        results = run_sync(
            sources,
            fetch=self.fetch,
            now=now,
            max_workers=self.settings.sync_workers,
            run_id=run_id,
        )
        report = SyncReport(run_id=run_id, results=results)

        merged = merge_articles(r.articles for r in results if r.ok)
        log_event("sync_merged", run_id=run_id, articles=len(merged), failed=report.failed)

        all_failed = bool(results) and not any(r.ok for r in results)

        with self.connect() as conn:
            try:
                if all_failed:
                    log_warning("sync_store_kept", run_id=run_id, reason="all_sources_failed")
                else:
                    report.stored = replace_articles(
                        conn, merged, now=now, ttl_days=self.settings.article_ttl_days
                    )
                    report.store_replaced = True
            except StoreWriteError as exc:
                log_warning(
                    "store_write_failed",
                    run_id=run_id,
                    error_code=STORE_WRITE_ERROR,
                    error=str(exc),
                    articles=len(merged),
                    rolled_back=True,
                )
                finish_run_error(
                    conn,
                    run_id,
                    self.clock().isoformat(),
                    error_type=STORE_WRITE_ERROR,
                    error_message=str(exc),
                    failed_sources=report.failed,
                )
                log_event(
                    "run_end",
                    run_id=run_id,
                    status="error",
                    elapsed_ms=int((time.perf_counter() - t0) * 1000),
                    failures_by_source=report.failed,
                )
                raise

            finish_run_ok(
                conn,
                run_id,
                self.clock().isoformat(),
                stored=report.stored,
                failed_sources=report.failed,
            )

        log_event(
            "run_end",
            run_id=run_id,
            status="ok",
            elapsed_ms=int((time.perf_counter() - t0) * 1000),
            stored=report.stored,
            store_replaced=report.store_replaced,
            failures_by_source=report.failed,
        )
        return report

    # -----------------------------------------------------------------
    # Read path
    # -----------------------------------------------------------------

    def get_articles(self, page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT) -> list[Article]:
        """
        Paginated newest-first read. Store unavailability degrades to [].

        Raises:
            ValueError: page < 1 or limit < 1.
        """
        if page < 1 or limit < 1:
            raise ValueError(f"page and limit must be >= 1 (page={page}, limit={limit})")
        now = self.clock()
        try:
            with self.connect() as conn:
                return get_articles_page(conn, page=page, limit=limit, now=now)
        except (StoreReadError, sqlite3.Error, InvalidDbPathError) as exc:
            log_warning("store_read_failed", error_code=STORE_READ_ERROR, error=str(exc), page=page, limit=limit)
            return []

    # -----------------------------------------------------------------
    # Per-source cache (deprecated alternate path)
    # -----------------------------------------------------------------

    def is_registered(self, url: str) -> bool:
        """True when `url` is in the source registry."""
        with self.connect() as conn:
            return has_feed_source(conn, url)

    def get_feed_if_fresh(self, url: str) -> list[Article] | None:
        """
        Cached articles for one source, or None when absent or stale.
        An unreadable cache also reads as None so callers fall through to a live fetch.
        """
        try:
            with self.connect() as conn:
                return get_cached_feed(
                    conn,
                    url,
                    freshness_window_s=self.settings.freshness_window_s,
                    now=self.clock(),
                )
        except (StoreReadError, sqlite3.Error, InvalidDbPathError) as exc:
            log_warning("store_read_failed", error_code=STORE_READ_ERROR, error=str(exc), url=url)
            return None

    def fetch_and_store_feed(self, url: str) -> list[Article]:
        """
        Serve one source from the freshness-window cache, refetching when stale.

        Superseded by sync() + get_articles(); kept for single-feed callers.

        Raises:
            SourceUnavailable, FeedParseError: live fetch failed (cache untouched).
            StoreWriteError: the refreshed entry could not be written.
        """
        cached = self.get_feed_if_fresh(url)
        if cached is not None:
            log_event("feed_cache_hit", url=url, items=len(cached))
            return cached

        log_event("feed_cache_miss", url=url)
        now = self.clock()
        channel = parse_channel(self.fetch(url))
        articles = [to_article(it, source_url=url, now=now) for it in channel.items]

        try:
            with self.connect() as conn:
                store_cached_feed(conn, url, articles, now=now)
        except (sqlite3.Error, InvalidDbPathError) as exc:
            raise StoreWriteError(f"STORE_WRITE_ERROR: {type(exc).__name__}: {exc}") from exc

        return articles

from __future__ import annotations

from datetime import datetime, timezone
import sqlite3
import json


from feedstore.cache_utils import expiry_after, is_cache_expired
from feedstore.logging_utils import log_warning
from feedstore.schemas import Article, FeedSource


# Largest value SQLite binds as INTEGER
SQLITE_MAX_INT = 2**63 - 1


class StoreWriteError(Exception):
    """Raised when a store write fails; the transaction has been rolled back."""


class StoreReadError(Exception):
    """Raised when the store cannot be read."""


def _iso(dt: datetime) -> str:
    # Fixed precision keeps stored timestamps lexicographically sortable
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_stored_datetime(value, *, now: datetime | None) -> datetime | None:
    """Decode a stored timestamp; absent or invalid values resolve to `now`."""
    if not value or not isinstance(value, str):
        return now
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return now
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def decode_article(doc: dict, *, now: datetime) -> Article:
    """
    Build an Article from a stored row or cached document.
    Missing text fields become "", a missing/invalid pub_date becomes `now`.
    Legacy cache documents stored the article URL under "link".
    """
    url = doc.get("url")
    if url is None:
        url = doc.get("link")
    return Article(
        title=_as_text(doc.get("title")),
        url=_as_text(url),
        pub_date=parse_stored_datetime(doc.get("pub_date"), now=now),
        description=_as_text(doc.get("description")),
        image_url=_as_text(doc.get("image_url")),
        source_url=_as_text(doc.get("source_url")),
    )


def _as_text(value) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


# ---------------------------------------------------------------------
# Articles (full-replace store)
# ---------------------------------------------------------------------

def get_current_generation(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT current_generation FROM store_state WHERE id = 1;").fetchone()
    return int(row[0]) if row else 0


def replace_articles(conn: sqlite3.Connection, articles: list[Article], *, now: datetime, ttl_days: int = 90) -> int:
    """
    Replace the visible article set with `articles` in one transaction.

    The new rows are written under generation N+1, store_state is flipped to N+1
    and older generations are deleted before commit. Readers see either the
    previous set or the new one, never an empty or mixed store.

    Returns:
        Number of articles written.

    Raises:
        StoreWriteError: on any SQLite failure (nothing is committed).
    """
    created_at = _iso(now)
    written_at = int(now.timestamp())
    expires_at = int(expiry_after(now, days=ttl_days).timestamp())

    try:
        # IMMEDIATE takes the write lock before the generation number is read
        conn.execute("BEGIN IMMEDIATE")
        generation = get_current_generation(conn) + 1

        conn.executemany(
            """
            INSERT INTO articles
            (generation, source_url, title, url, pub_date, description, image_url, created_at, written_at, expires_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                (
                    generation,
                    a.source_url,
                    a.title,
                    a.url,
                    _iso(a.pub_date),
                    a.description,
                    a.image_url,
                    created_at,
                    written_at,
                    expires_at,
                )
                for a in articles
            ],
        )
        conn.execute(
            "UPDATE store_state SET current_generation = ?, updated_at = ? WHERE id = 1;",
            (generation, created_at),
        )
        conn.execute("DELETE FROM articles WHERE generation <> ?;", (generation,))
        conn.commit()
    except sqlite3.Error as exc:
        if conn.in_transaction:
            conn.rollback()
        raise StoreWriteError(f"STORE_WRITE_ERROR: {type(exc).__name__}: {exc}") from exc

    return len(articles)


def count_articles(conn: sqlite3.Connection, *, now: datetime) -> int:
    try:
        row = conn.execute(
            """
            SELECT COUNT(*)
            FROM articles
            WHERE generation = (SELECT current_generation FROM store_state WHERE id = 1)
              AND expires_at > ?;
            """,
            (int(now.timestamp()),),
        ).fetchone()
    except sqlite3.Error as exc:
        raise StoreReadError(f"STORE_READ_ERROR: {exc}") from exc
    return int(row[0])


def get_articles_page(conn: sqlite3.Connection, *, page: int, limit: int, now: datetime) -> list[Article]:
    """
    Read-only. One page of the current generation, newest first.

    skip = (page - 1) * limit. A skip past the end returns [] rather than an error.
    Ties on pub_date are ordered by source_url, title, url. Rows whose pub_date
    is missing or not an ISO timestamp decode to `now`, so they sort as `now`.
    """
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")

    skip = (page - 1) * limit
    if skip > SQLITE_MAX_INT:
        return []
    limit = min(limit, SQLITE_MAX_INT)

    try:
        rows = conn.execute(
            """
            SELECT title, url, pub_date, description, image_url, source_url
            FROM articles
            WHERE generation = (SELECT current_generation FROM store_state WHERE id = 1)
              AND expires_at > ?
            ORDER BY
                CASE WHEN pub_date GLOB '[0-9][0-9][0-9][0-9]-[0-9][0-9]-[0-9][0-9]T*'
                     THEN pub_date ELSE ? END DESC,
                source_url ASC, title ASC, url ASC
            LIMIT ? OFFSET ?;
            """,
            (int(now.timestamp()), _iso(now), limit, skip),
        ).fetchall()
    except sqlite3.Error as exc:
        raise StoreReadError(f"STORE_READ_ERROR: {exc}") from exc

    out: list[Article] = []
    for title, url, pub_date, description, image_url, source_url in rows:
        out.append(
            decode_article(
                {
                    "title": title,
                    "url": url,
                    "pub_date": pub_date,
                    "description": description,
                    "image_url": image_url,
                    "source_url": source_url,
                },
                now=now,
            )
        )
    return out


def purge_expired_articles(conn: sqlite3.Connection, *, now: datetime) -> int:
    cur = conn.execute("DELETE FROM articles WHERE expires_at <= ?;", (int(now.timestamp()),))
    conn.commit()
    return cur.rowcount


# ---------------------------------------------------------------------
# Feed source registry
# ---------------------------------------------------------------------

def list_feed_sources(conn: sqlite3.Connection) -> list[FeedSource]:
    rows = conn.execute("SELECT url FROM feed_sources ORDER BY id ASC;").fetchall()
    return [FeedSource(url=url) for (url,) in rows]


def add_feed_source(conn: sqlite3.Connection, url: str, *, now: datetime) -> bool:
    """Register a source. Returns False if the URL was already registered."""
    ts = _iso(now)
    cur = conn.execute(
        "INSERT OR IGNORE INTO feed_sources (url, created_at, updated_at) VALUES (?, ?, ?);",
        (url, ts, ts),
    )
    conn.commit()
    return cur.rowcount == 1


def has_feed_source(conn: sqlite3.Connection, url: str) -> bool:
    row = conn.execute("SELECT 1 FROM feed_sources WHERE url = ?;", (url,)).fetchone()
    return row is not None


def remove_feed_source(conn: sqlite3.Connection, url: str) -> bool:
    cur = conn.execute("DELETE FROM feed_sources WHERE url = ?;", (url,))
    conn.commit()
    return cur.rowcount == 1


# ---------------------------------------------------------------------
# Per-source feed cache (alternate freshness-window path)
# ---------------------------------------------------------------------

def get_cached_feed(conn: sqlite3.Connection, url: str, *, freshness_window_s: int, now: datetime) -> list[Article] | None:
    """
    Return cached articles for `url` only while now - timestamp < freshness_window_s.
    Stale, missing or undecodable entries all read as None.
    """
    try:
        row = conn.execute(
            "SELECT items_json, timestamp FROM feed_cache WHERE url = ?;",
            (url,),
        ).fetchone()
    except sqlite3.Error as exc:
        raise StoreReadError(f"STORE_READ_ERROR: {exc}") from exc

    if row is None:
        return None

    items_json, timestamp = row
    written_at = parse_stored_datetime(timestamp, now=None)
    if written_at is None or is_cache_expired(written_at, freshness_window_s, now):
        return None

    try:
        docs = json.loads(items_json)
    except (TypeError, json.JSONDecodeError) as exc:
        log_warning("feed_cache_corrupt", url=url, error=str(exc))
        return None
    if not isinstance(docs, list):
        log_warning("feed_cache_corrupt", url=url, error="items is not a list")
        return None

    return [decode_article(d, now=now) for d in docs if isinstance(d, dict)]


def store_cached_feed(conn: sqlite3.Connection, url: str, articles: list[Article], *, now: datetime) -> None:
    """Create or overwrite the cache entry for `url`."""
    docs = [
        {
            "title": a.title,
            "url": a.url,
            "pub_date": _iso(a.pub_date),
            "description": a.description,
            "image_url": a.image_url,
        }
        for a in articles
    ]
    try:
        conn.execute(
            """
            INSERT INTO feed_cache (url, items_json, timestamp)
            VALUES (?, ?, ?)
            ON CONFLICT(url) DO UPDATE SET
                items_json = excluded.items_json,
                timestamp = excluded.timestamp;
            """,
            (url, json.dumps(docs), _iso(now)),
        )
        conn.commit()
    except sqlite3.Error as exc:
        if conn.in_transaction:
            conn.rollback()
        raise StoreWriteError(f"STORE_WRITE_ERROR: {type(exc).__name__}: {exc}") from exc


# ---------------------------------------------------------------------
# Sync runs
# ---------------------------------------------------------------------

def start_run(conn: sqlite3.Connection, run_id: str, started_at: str, *, sources_total: int) -> None:
    conn.execute(
        """
        INSERT INTO sync_runs (run_id, started_at, status, sources_total)
        VALUES (?, ?, ?, ?);
        """,
        (run_id, started_at, "started", sources_total),
    )
    conn.commit()


def finish_run_ok(conn: sqlite3.Connection, run_id: str, finished_at: str, *, stored: int, failed_sources: dict[str, str]) -> None:
    conn.execute(
        """
        UPDATE sync_runs
        SET finished_at = ?, status = ?, stored = ?, sources_failed = ?, failed_sources = ?
        WHERE run_id = ?
        """,
        (finished_at, "ok", stored, len(failed_sources), json.dumps(failed_sources), run_id)
    )
    conn.commit()


def finish_run_error(conn: sqlite3.Connection, run_id: str, finished_at: str, *, error_type: str, error_message: str, failed_sources: dict[str, str]) -> None:
    conn.execute(
        """
        UPDATE sync_runs
        SET finished_at = ?, status = ?, error_type = ?, error_message = ?, sources_failed = ?, failed_sources = ?
        WHERE run_id = ?
        """,
        (finished_at, "error", error_type, error_message, len(failed_sources), json.dumps(failed_sources), run_id)
    )
    conn.commit()


def get_latest_run(conn: sqlite3.Connection) -> dict | None:
    row = conn.execute(
        """
        SELECT run_id, started_at, finished_at, status,
               sources_total, sources_failed, stored, failed_sources,
               error_type, error_message
        FROM sync_runs
        ORDER BY started_at DESC
        LIMIT 1;
        """
    ).fetchone()

    if row is None:
        return None

    return {
        "run_id": row[0],
        "started_at": row[1],
        "finished_at": row[2],
        "status": row[3],
        "sources_total": row[4],
        "sources_failed": row[5],
        "stored": row[6],
        "failed_sources": json.loads(row[7]) if row[7] else {},
        "error_type": row[8],
        "error_message": row[9],
    }

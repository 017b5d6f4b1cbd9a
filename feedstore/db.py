# feedstore/db.py
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path


class InvalidDbPathError(Exception):
    """Raised when the configured DB path points to an invalid location."""
    pass


@contextmanager
def db_conn(db_path: str):
    """
    Context manager for database connections.
    Opens connection, initializes schema, yields connection, closes on exit.

    Usage:
        with db_conn(settings.db_path) as conn:
            # use conn
    """
    conn = get_conn(db_path)
    try:
        init_db(conn)
        yield conn
    finally:
        conn.close()


def get_conn(db_path: str) -> sqlite3.Connection:
    """
    Open a SQLite connection to the DB path.
    ":memory:" is passed through untouched.
    """
    if db_path == ":memory:":
        return sqlite3.connect(db_path)

    path = Path(db_path)

    # Get the root of the path (e.g., "Z:\" on Windows, "/" on Unix)
    root = path.anchor or (path.parts[0] if path.parts else None)
    if root and not Path(root).exists():
        raise InvalidDbPathError(
            f"DB path is set to '{db_path}' but the root path '{root}' doesn't exist."
        )

    # Ensure parent directory exists (e.g., ./data/)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(path), timeout=10.0)
    # WAL lets readers keep serving the previous generation while a sync commits
    conn.execute("PRAGMA journal_mode=WAL;")
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    """
    Create required tables if they don't exist.
    """
    # articles - canonical articles, one generation visible at a time.
    # Text columns are nullable so legacy/partial rows still decode.
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS articles (
            id INTEGER PRIMARY KEY,
            generation INTEGER NOT NULL DEFAULT 0,
            source_url TEXT,
            title TEXT,
            url TEXT,
            pub_date TEXT,
            description TEXT,
            image_url TEXT,
            created_at TEXT NOT NULL,
            written_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s', 'now') AS INTEGER)),
            expires_at INTEGER NOT NULL
        );
        """
    )

    # Idempotent migration: written_at and the write-clock trigger (for existing DBs)
    cols = [row[1] for row in conn.execute("PRAGMA table_info(articles);").fetchall()]
    if "written_at" not in cols:
        conn.execute("ALTER TABLE articles ADD COLUMN written_at INTEGER NOT NULL DEFAULT 0;")
        conn.execute("DROP TRIGGER IF EXISTS trg_articles_expire;")
        conn.commit()

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_articles_order
        ON articles(generation, pub_date DESC, source_url, title, url)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_articles_expires
        ON articles(expires_at)
    """)

    # Storage-level TTL: every insert sweeps rows already expired at the new row's write time.
    # written_at and expires_at share the writer's clock
    conn.execute("""
        CREATE TRIGGER IF NOT EXISTS trg_articles_expire_on_write
        AFTER INSERT ON articles
        BEGIN
            DELETE FROM articles
            WHERE expires_at <= NEW.written_at;
        END
    """)

    # store_state - single row pointing at the generation readers should see
    conn.execute("""
        CREATE TABLE IF NOT EXISTS store_state (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            current_generation INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT
        )
    """)
    conn.execute("INSERT OR IGNORE INTO store_state (id, current_generation) VALUES (1, 0)")

    # feed_sources - the source registry consumed by sync
    conn.execute("""
        CREATE TABLE IF NOT EXISTS feed_sources (
            id INTEGER PRIMARY KEY,
            url TEXT NOT NULL UNIQUE,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    # feed_cache - per-source keyed cache (alternate freshness-window path)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS feed_cache (
            url TEXT PRIMARY KEY,
            items_json TEXT NOT NULL,
            timestamp TEXT NOT NULL
        )
    """)

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sync_runs (
            run_id TEXT PRIMARY KEY,
            started_at TEXT NOT NULL,
            finished_at TEXT,
            status TEXT NOT NULL,
            sources_total INTEGER NOT NULL DEFAULT 0,
            sources_failed INTEGER NOT NULL DEFAULT 0,
            stored INTEGER NOT NULL DEFAULT 0,
            failed_sources TEXT,
            error_type TEXT,
            error_message TEXT
        );
        """
    )

    conn.commit()

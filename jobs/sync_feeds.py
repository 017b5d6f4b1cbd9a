from __future__ import annotations

import argparse
from dataclasses import replace
from datetime import datetime, timezone


from feedstore.config import Settings
from feedstore.logging_utils import log_event
from feedstore.repo import StoreWriteError, add_feed_source, list_feed_sources, remove_feed_source
from feedstore.service import FeedService


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Resynchronize all registered RSS sources into the article store.")
    p.add_argument("--db-path", default=None, help="Override FEEDSTORE_DB_PATH")
    p.add_argument("--add-source", action="append", default=[], metavar="URL", help="Register a feed URL (repeatable)")
    p.add_argument("--remove-source", action="append", default=[], metavar="URL", help="Unregister a feed URL (repeatable)")
    p.add_argument("--list-sources", action="store_true", help="Print registered feed URLs and exit")
    args = p.parse_args(argv)

    settings = Settings.from_env()
    if args.db_path:
        settings = replace(settings, db_path=args.db_path)
    service = FeedService(settings)

    # Registry management: no sync is run
    if args.add_source or args.remove_source or args.list_sources:
        now = datetime.now(timezone.utc)
        with service.connect() as conn:
            for url in args.add_source:
                added = add_feed_source(conn, url, now=now)
                print(f"{'ADDED' if added else 'EXISTS'} {url}")
            for url in args.remove_source:
                removed = remove_feed_source(conn, url)
                print(f"{'REMOVED' if removed else 'MISSING'} {url}")
            if args.list_sources:
                for source in list_feed_sources(conn):
                    print(source.url)
        return 0

    try:
        report = service.sync()
    except StoreWriteError as exc:
        log_event("sync_failed", error=str(exc))
        print(f"ERROR store_write_failed error={exc}")
        return 1

    skipped = len(report.failed)
    print(
        f"OK run_id={report.run_id} sources={len(report.results)} "
        f"skipped={skipped} stored={report.stored} replaced={report.store_replaced}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

# feedstore/normalize.py
"""
Normalization of parsed feed items into canonical Article records.
Pure functions: no side effects, no database access.
"""
from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterable

from feedstore.images import resolve_image_url
from feedstore.rss_parse import ParsedItem
from feedstore.schemas import Article


def parse_pub_date(text: str | None, *, now: datetime) -> datetime:
    """
    RFC 2822 date text -> timezone-aware UTC datetime.
    Missing or unparseable text falls back to `now`.
    """
    if not text:
        return now
    try:
        parsed = parsedate_to_datetime(text)
        if parsed is None:
            return now
        # "-0000" parses as naive: the zone is unknown, take it as UTC
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        # Year 9999 with a negative offset overflows on the shift to UTC
        return parsed.astimezone(timezone.utc)
    except (TypeError, ValueError, IndexError, OverflowError):
        return now


def to_article(item: ParsedItem, *, source_url: str, now: datetime) -> Article:
    return Article(
        title=item.title,
        url=item.link,
        pub_date=parse_pub_date(item.pub_date, now=now),
        description=item.description,
        image_url=resolve_image_url(item),
        source_url=source_url,
    )


def article_sort_key(article: Article) -> tuple:
    """
    Ascending sort key for newest-first order.
    Ties on pub_date fall back to source_url, then title, then url (all ascending).
    """
    return (-article.pub_date.timestamp(), article.source_url, article.title, article.url)


def merge_articles(batches: Iterable[list[Article]]) -> list[Article]:
    """
    Concatenate per-source article lists into one newest-first list.
    sorted() is stable, so exact duplicates keep their input order.
    """
    merged: list[Article] = []
    for batch in batches:
        merged.extend(batch)
    return sorted(merged, key=article_sort_key)

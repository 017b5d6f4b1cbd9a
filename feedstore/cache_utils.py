"""Freshness helpers for the per-source feed cache.

The window is half-open: an entry written at T with window D is fresh for
T <= now < T + D and stale from T + D onward.
"""
from __future__ import annotations

from datetime import datetime, timedelta


def is_cache_expired(written_at: datetime, window_s: int, now: datetime) -> bool:
    """
    True once a feed_cache entry has left its freshness window.

    written_at is the entry's stored timestamp and window_s the configured
    RSS_CACHE_DURATION. The entry is stale from written_at + window_s onward,
    so a zero window is stale immediately.
    """
    return now - written_at >= timedelta(seconds=window_s)


def expiry_after(created_at: datetime, *, days: int) -> datetime:
    """Absolute expiry for a row created at `created_at` with a TTL in days."""
    return created_at + timedelta(days=days)

# feedstore/config.py
"""
Process configuration read from the environment (and a local .env file).

Settings are built once by the entrypoint (API app factory or sync job)
and passed to FeedService explicitly.
"""
from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


DEFAULT_DB_PATH = "./data/feedstore.db"
DEFAULT_USER_AGENT = "feedstore/0.1 (+rss sync)"


class ConfigError(ValueError):
    """Raised when an environment variable holds an unusable value."""


@dataclass(frozen=True)
class Settings:
    db_path: str = DEFAULT_DB_PATH
    freshness_window_s: int = 3600
    fetch_timeout_s: float = 10.0
    fetch_attempts: int = 1
    sync_workers: int = 4
    article_ttl_days: int = 90
    user_agent: str = DEFAULT_USER_AGENT

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "Settings":
        """
        Build Settings from environment variables.

        Args:
            env: mapping to read from; defaults to os.environ after load_dotenv()
        """
        if env is None:
            load_dotenv()
            env = dict(os.environ)

        return cls(
            db_path=env.get("FEEDSTORE_DB_PATH") or DEFAULT_DB_PATH,
            freshness_window_s=_int(env, "RSS_CACHE_DURATION", 3600, minimum=0),
            fetch_timeout_s=_float(env, "RSS_FETCH_TIMEOUT_S", 10.0),
            fetch_attempts=_int(env, "RSS_FETCH_ATTEMPTS", 1, minimum=1),
            sync_workers=_int(env, "RSS_SYNC_WORKERS", 4, minimum=1),
            article_ttl_days=_int(env, "ARTICLE_TTL_DAYS", 90, minimum=1),
            user_agent=env.get("RSS_USER_AGENT") or DEFAULT_USER_AGENT,
        )


def _int(env: dict[str, str], name: str, default: int, *, minimum: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float(env: dict[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be > 0, got {value}")
    return value

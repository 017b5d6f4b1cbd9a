import json
import logging
from datetime import datetime, timezone


logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("feedstore")


def _emit(level: int, event: str, fields: dict) -> None:
    # One JSON object per line; datetimes and exceptions fall back to str()
    payload = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "level": logging.getLevelName(level).lower(),
        "event": event,
        **fields,
    }
    logger.log(level, json.dumps(payload, default=str))


def log_event(event: str, **fields):
    _emit(logging.INFO, event, fields)


def log_warning(event: str, **fields):
    """Skipped sources, rolled-back writes and degraded reads."""
    _emit(logging.WARNING, event, fields)

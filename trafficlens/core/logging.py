"""Trafficlens — Structured JSON Logging.

Every module logs through ``get_logger``; one JSON object per line on stdout,
with ingestion context (user, date, event type, timing) lifted out of
``extra`` into top-level keys.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from trafficlens.config import settings

CONTEXT_FIELDS = ("user_id", "date", "event_type", "duration_ms", "status_code")
ROOT_NAMESPACE = "trafficlens"


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            {key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)}
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _level() -> int:
    # getLevelName maps unknown names to a "Level X" string
    level = logging.getLevelName(settings.log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """``get_logger("google.client")`` → logger ``trafficlens.google.client``."""
    logger = logging.getLogger(f"{ROOT_NAMESPACE}.{name}")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
        logger.setLevel(_level())
    return logger

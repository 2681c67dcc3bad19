"""JSON-lines logging for the narrative engine."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

ROOT_LOGGER_NAME = "narrative_engine"


class JSONFormatter(logging.Formatter):
    """Formats each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = repr(record.exc_info[1])
        return json.dumps(entry)


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Install a single JSON handler on the engine's root logger.

    Safe to call more than once; existing handlers are replaced.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    return logger

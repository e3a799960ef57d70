from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

ROOT_LOGGER = "pagetracker"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts_utc": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        # attach extra fields if present
        for key in ("context", "tracking_id", "visitor_id", "session_id", "event_type", "data"):
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        if record.exc_info:
            payload["error"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=str)


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """
    Module loggers ("pagetracker.features.x") propagate to the package logger,
    which owns the single stdout handler.
    """
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper())
    if name != ROOT_LOGGER and name.startswith(ROOT_LOGGER + "."):
        return logger

    if any(isinstance(h.formatter, JsonFormatter) for h in logger.handlers):
        return logger  # avoid double handlers in tests

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger

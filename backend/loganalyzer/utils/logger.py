"""
Structured JSON logging for the log analyzer.

Usage:
    from loganalyzer.utils.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Pipeline stage reached", extra={"stage": "query_generated", "backend": "sqlite"})

Only the keys in CONTEXT_KEYS are copied from ``extra=`` into the JSON line.
Anything that looks like a bearer credential is masked before it is written.
"""

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone

CONTEXT_KEYS = ("action", "stage", "backend", "component", "tool", "tokens", "duration_ms", "extra")

_CREDENTIAL = re.compile(r"(Bearer\s+|\bsk-)[A-Za-z0-9._\-]{4,}")


def redact(value):
    """Mask credential-looking substrings in strings, lists and dicts."""
    if isinstance(value, str):
        return _CREDENTIAL.sub(lambda m: m.group(1) + "****", value)
    if isinstance(value, dict):
        return {k: redact(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    return value


class JSONFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, message and context keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage()),
        }
        for key in CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = redact(value)
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = redact(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


def get_logger(name: str) -> logging.Logger:
    """Return a logger writing JSON lines to stdout at LOG_LEVEL (default INFO)."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO))
    logger.propagate = False
    return logger


def truncate(text: str | None, limit: int) -> str | None:
    """Shorten long prompt/response bodies before they go into a log line."""
    if text is None or len(text) <= limit:
        return text
    return text[:limit] + "..."

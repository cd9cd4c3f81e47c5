"""Logging setup for the topology sync engine.

Supports two output formats selected by ``settings.log_format``:
plain text for terminals and one-JSON-object-per-line for log shippers.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from toposync.config import settings

SERVICE_NAME = "toposync"

# Attributes present on every LogRecord; anything else was passed via extra=
_STANDARD_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime"}


def _record_extras(record: logging.LogRecord) -> dict:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class SyncJSONFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": SERVICE_NAME,
        }
        extras = _record_extras(record)
        if extras:
            payload["extra"] = extras
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class SyncTextFormatter(logging.Formatter):
    """Human-readable formatter."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger from settings.

    Args:
        level: Optional override for ``settings.log_level``
    """
    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())

    for handler in list(root.handlers):
        if getattr(handler, "_toposync_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler._toposync_handler = True  # type: ignore[attr-defined]
    if settings.log_format == "json":
        handler.setFormatter(SyncJSONFormatter())
    else:
        handler.setFormatter(SyncTextFormatter())
    root.addHandler(handler)

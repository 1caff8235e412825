"""Structured logging for the uam package.

Every module logs through ``logging.getLogger(__name__)``; this module only
decides how the ``uam`` hierarchy is rendered.
"""
from __future__ import annotations
import json, logging, os, sys, threading
from datetime import datetime, timezone
from typing import Any

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_JSON = os.getenv("LOG_JSON", "1") == "1"

_LOGGER_PREFIX = "uam"

_STDLIB_KEYS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # fields passed through `extra=`
        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            if hasattr(exc, "code"):
                payload["exc_code"] = exc.code
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


_configured = False
_lock = threading.Lock()


def configure_logging(*, level: str | int | None = None, handler: logging.Handler | None = None) -> None:
    """Attach a single handler to the ``uam`` logger (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level or LOG_LEVEL)

    h = handler or logging.StreamHandler(sys.stderr)
    if LOG_JSON:
        h.setFormatter(StructuredFormatter())
    else:
        h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(h)


def reset_logging() -> None:
    """Drop handlers so tests can reconfigure."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)

"""Logging setup for Daily Tally.

Every record leaving the root handler is stamped with the request id and
effective date of the task that produced it. Production output is one JSON
object per line; development output is a single readable line with the
context appended in brackets.
"""

import json
import logging
import sys
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_effective_date: ContextVar[Optional[str]] = ContextVar("effective_date", default=None)

# record attribute -> short label used by the console format
CONTEXT_FIELDS = (("request_id", "req"), ("effective_date", "day"))

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def set_log_context(request_id: Optional[str] = None, effective_date: Optional[str] = None):
    """Set the fields given; fields left as None keep their current value."""
    if request_id is not None:
        _request_id.set(request_id)
    if effective_date is not None:
        _effective_date.set(effective_date)


def clear_log_context():
    _request_id.set(None)
    _effective_date.set(None)


class LogContextFilter(logging.Filter):
    """Copy the current log context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        record.effective_date = _effective_date.get()
        return True


def _context_of(record: logging.LogRecord) -> Dict[str, str]:
    context = {}
    for attr, _ in CONTEXT_FIELDS:
        value = getattr(record, attr, None)
        if value:
            context[attr] = value
    return context


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context_of(record))
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


class ConsoleFormatter(logging.Formatter):
    """Plain text line with the log context appended."""

    def __init__(self):
        super().__init__(
            fmt="[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context_of(record)
        if not context:
            return line
        labels: List[str] = [f"{label}={context[attr]}" for attr, label in CONTEXT_FIELDS if attr in context]
        head, newline, rest = line.partition("\n")
        return f"{head} [{', '.join(labels)}]{newline}{rest}"


def build_handler(environment: str = "development", stream=None) -> logging.Handler:
    """Stream handler with the context filter and the formatter for ``environment``."""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.addFilter(LogContextFilter())
    handler.setFormatter(JsonFormatter() if environment == "production" else ConsoleFormatter())
    return handler


def configure_logging(environment: str = "development", log_level: str = "INFO"):
    """Replace the root handlers with a single context-aware stream handler.

    Args:
        environment: "production" for JSON lines, anything else for console text.
        log_level: Level name such as DEBUG or INFO; unknown names mean INFO.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(build_handler(environment))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

"""Logging setup for Droply.

Every record carries the request id and, once the caller is identified,
the user id, both taken from context variables that the request context
middleware sets. Output is one JSON object per line (``LOG_FORMAT=json``)
or a plain text line for local development.

ImageKit private keys and session tokens are masked before anything is
written, including inside ``extra`` values such as ``error``.
"""

import contextvars
import json
import logging
import logging.config
import re
from datetime import datetime, timezone
from typing import Any, Optional

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")
user_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("user_id", default="")

_REDACTED = "***REDACTED***"

_SECRET_PATTERNS = [
    re.compile(r"\bprivate_[A-Za-z0-9+/=]{16,}"),
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._\-]{20,}"),
    re.compile(r"(?i)((?:private_key|secret|password|token|signature|authorization)[=:]\s*)[^\s,'\"]{8,}"),
]

# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


def redact(text: str) -> str:
    """Mask ImageKit private keys, bearer tokens and ``secret=...`` pairs."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: (m.group(1) if m.groups() else "") + _REDACTED, text)
    return text


class RequestContextFilter(logging.Filter):
    """Stamp records with the current request and user ids and mask secrets."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        record.user_id = getattr(record, "user_id", None) or user_id_var.get()

        record.msg = redact(record.getMessage())
        record.args = None
        for key, value in list(record.__dict__.items()):
            if key not in _RECORD_ATTRS and isinstance(value, str):
                setattr(record, key, redact(value))
        if record.exc_info and not record.exc_text:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = redact(record.exc_text)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record; ``extra`` fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and value not in ("", None)
        )
        if record.exc_text:
            payload["exc_info"] = record.exc_text
        return json.dumps(payload, default=str)


def build_logging_config(level: str, fmt: str) -> dict:
    """``dictConfig`` schema for the given level and format."""
    formatter = (
        {"()": JsonFormatter}
        if fmt == "json"
        else {
            "format": "%(asctime)s %(levelname)-7s [%(request_id)s] %(name)s: %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        }
    )
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"context": {"()": RequestContextFilter}},
        "formatters": {"default": formatter},
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "filters": ["context"],
                "formatter": "default",
            },
        },
        "root": {"level": level, "handlers": ["stdout"]},
        "loggers": {
            "uvicorn.access": {"level": "WARNING"},
            "sqlalchemy.engine": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
        },
    }


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure the root logger. Safe to call more than once."""
    level = (log_level or "INFO").upper()
    fmt = (log_format or "json").lower()
    logging.config.dictConfig(build_logging_config(level, fmt))
    logging.getLogger(__name__).info("Logging configured", extra={"level": level, "format": fmt})

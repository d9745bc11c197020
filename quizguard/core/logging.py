"""Centralized logging configuration.

Provider API keys are registered with register_secret() and scrubbed from
every record that passes through the root handler.
"""

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import datetime, timezone
from typing import Any

from quizguard.core.config import settings
from quizguard.core.exceptions import redact_secret

_CONTEXT_FIELDS = ("request_id", "service", "session_id")


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for production."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_data["exception"] = self.formatException(record.exc_info)
        for name in _CONTEXT_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)
        return json.dumps(log_data, ensure_ascii=False)


class SecretRedactingFilter(logging.Filter):
    """Replaces registered secrets in the rendered message with [REDACTED]."""

    def __init__(self):
        super().__init__()
        self._secrets: set[str] = set()

    def add(self, secret: str) -> None:
        if secret:
            self._secrets.add(secret)

    def filter(self, record: logging.LogRecord) -> bool:
        if self._secrets:
            message = record.getMessage()
            redacted = redact_secret(message, *self._secrets)
            if redacted != message:
                record.msg, record.args = redacted, None
        return True


_redactor = SecretRedactingFilter()


def register_secret(secret: str) -> None:
    """Never let this value appear in a log line."""
    _redactor.add(secret)


class RequestLogger(logging.LoggerAdapter):
    """Attaches request_id / service to every record of one provider call."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def request_logger(logger: logging.Logger, request_id: str, service: str) -> RequestLogger:
    return RequestLogger(logger, {"request_id": request_id, "service": service})


def setup_logging() -> None:
    """Configure logging for the entire application."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(_redactor)

    if settings.log_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root.addHandler(handler)

    # httpx logs full request URLs at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from readhub.core.config import BaseAppSettings

# Attributes callers attach with ``extra=`` that belong in the JSON line
_CONTEXT_FIELDS = ("subscription_id", "reference", "user_id", "event", "source")

# Chatty third-party loggers; httpx logs every gateway URL at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "celery.redirected")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - formatting logic
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class SecretRedactionFilter(logging.Filter):
    """Mask configured secrets if they ever end up in a log message."""

    def __init__(self, secrets: list[str]):
        super().__init__()
        self.secrets = [s for s in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        redacted = message
        for secret in self.secrets:
            redacted = redacted.replace(secret, "***")
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def init_logging(settings: BaseAppSettings, level: int | None = None) -> None:
    """Install a single stdout handler on the root logger (idempotent)."""
    if logging.getLogger().handlers:
        return
    effective_level = level or getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    if settings.LOG_FORMAT.lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        fmt = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
        handler.setFormatter(logging.Formatter(fmt))
    handler.addFilter(SecretRedactionFilter([settings.PAYSTACK_SECRET or "", settings.JWT_SECRET]))
    root = logging.getLogger()
    root.setLevel(effective_level)
    root.addHandler(handler)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(effective_level, logging.WARNING))

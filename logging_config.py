"""
logging_config.py
─────────────────
Structured JSON logging for the prerender service.

Every log record is emitted as a single JSON line.  Loggers returned by
``get_logger`` accept context as keyword arguments; the fields travel in
``extra`` and are flattened into the payload next to the event name.

Usage
-----
    from logging_config import get_logger
    logger = get_logger(__name__)
    logger.info("cache_hit", url=url, backend="redis")
"""

import json
import logging
import time
from typing import Any


class _JSONFormatter(logging.Formatter):
    """Emit each record as a single compact JSON object."""

    RESERVED = frozenset(
        ("name", "msg", "args", "levelname", "levelno", "pathname",
         "filename", "module", "exc_info", "exc_text", "stack_info",
         "lineno", "funcName", "created", "msecs", "relativeCreated",
         "thread", "threadName", "processName", "process", "message",
         "asctime", "taskName")
    )

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        record.message = record.getMessage()
        payload: dict[str, Any] = {
            "ts":      time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level":   record.levelname,
            "logger":  record.name,
            "msg":     record.message,
            "module":  record.module,
            "line":    record.lineno,
        }
        for key, val in record.__dict__.items():
            if key not in self.RESERVED and not key.startswith("_"):
                payload[key] = val

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


class EventLogger(logging.LoggerAdapter):
    """``LoggerAdapter`` that moves keyword arguments into ``extra``."""

    _PASSTHROUGH = frozenset(("exc_info", "stack_info", "stacklevel", "extra"))

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        fields = {k: kwargs.pop(k) for k in list(kwargs) if k not in self._PASSTHROUGH}
        extra: dict[str, Any] = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        for key, val in fields.items():
            # LogRecord refuses to overwrite its own attributes
            extra[f"{key}_" if key in _JSONFormatter.RESERVED else key] = val
        kwargs["extra"] = extra
        return msg, kwargs


def configure_logging(level: str = "INFO") -> None:
    """
    Call once at application startup (main.py lifespan).
    Installs the JSON formatter on the root handler.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not root.handlers:
        handler = logging.StreamHandler()
    else:
        handler = root.handlers[0]

    handler.setFormatter(_JSONFormatter())
    if handler not in root.handlers:
        root.addHandler(handler)

    # Silence noisy third-party loggers
    for lib in ("httpx", "httpcore", "asyncio", "playwright", "uvicorn.access"):
        logging.getLogger(lib).setLevel(logging.WARNING)


def get_logger(name: str) -> EventLogger:
    """Return a named event logger."""
    return EventLogger(logging.getLogger(name), {})

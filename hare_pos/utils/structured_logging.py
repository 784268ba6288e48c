"""
Logging setup: one JSON object per line in production, a short colored line
per record in development. Session-scoped loggers stamp the org, user and
session onto every record they emit.

Usage:
    from hare_pos.utils.structured_logging import configure_logging, get_logger
    configure_logging()  # once, at startup
    log = get_logger(__name__).bind(org_id=ctx.org_id, session_id=sid)
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from hare_pos.utils.config import settings

# Record attributes carried into log output when present
CONTEXT_FIELDS = ("org_id", "user_id", "session_id", "order_id", "duration_ms")

# Libraries that log every request or job run at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "redis", "apscheduler", "uvicorn.access")

MAX_CONSOLE_MESSAGE = 500


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    return {field: getattr(record, field) for field in CONTEXT_FIELDS if getattr(record, field, None) is not None}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **record_context(record),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if len(msg) > MAX_CONSOLE_MESSAGE:
            msg = msg[:MAX_CONSOLE_MESSAGE - 3] + "..."

        context = record_context(record)
        tags = "".join(f"[{context[key]}]" for key in ("org_id", "session_id") if key in context)
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        color = self.LEVEL_COLORS.get(record.levelno, "")

        line = f"{color}{stamp} {record.levelname:<7} {record.name} {tags} {msg}{self.RESET}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(stream=None):
    """Install the formatter for the current environment on the root logger."""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.ENVIRONMENT == "production" else ConsoleFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, settings.LOG_LEVEL, logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info(f"Logging configured: env={settings.ENVIRONMENT}, level={settings.LOG_LEVEL}")


class SessionLogger(logging.LoggerAdapter):
    """Adapter that merges its bound context into each record's extras."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **context) -> "SessionLogger":
        return SessionLogger(self.logger, {**self.extra, **context})


def get_logger(name: str) -> SessionLogger:
    return SessionLogger(logging.getLogger(name), {})

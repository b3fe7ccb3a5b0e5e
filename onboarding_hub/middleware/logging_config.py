"""
Structured logging for the onboarding hub.

- Development / testing: one coloured line per record
- Production: one JSON object per record, ready for a log aggregator
- LOG_LEVEL env variable overrides the default level

Records logged while a request is being served pick up ``request_id`` and
``user_email`` automatically; gate and template events add ``event_type``,
``partner_id`` and ``template_id`` through ``extra=``.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

CONTEXT_KEYS = (
    "request_id",
    "user_email",
    "event_type",
    "partner_id",
    "template_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "redis")


class RequestContextFilter(logging.Filter):
    """Copy the current request id and user onto records that lack them."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = g.get("request_id")
            user = g.get("current_user")
            if getattr(record, "user_email", None) is None and user is not None:
                record.user_email = user.email
        return True


class JSONFormatter(logging.Formatter):
    """One JSON document per record; context keys only when set."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update({
            key: getattr(record, key)
            for key in CONTEXT_KEYS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line format for a developer terminal."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}"]

        request_id = getattr(record, "request_id", None)
        if request_id:
            parts.append(f"[{request_id}]")
        event = getattr(record, "event_type", None)
        if event:
            parts.append(f"<{event}>")
        parts.append(record.getMessage())

        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"({duration:.0f}ms)")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    JSON output outside debug and testing, readable output otherwise. Existing
    root handlers are replaced so repeated ``create_app`` calls stay quiet.
    """
    verbose = app.config.get("DEBUG", False) or app.config.get("TESTING", False)
    level_name = os.getenv("LOG_LEVEL", "DEBUG" if verbose else "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ReadableFormatter() if verbose else JSONFormatter())
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

"""
Structured logging configuration.

- Development: human-readable colored lines
- Production: one JSON object per line (log aggregator compatible)
- Level: LOG_LEVEL env var, then config, then DEBUG in dev / INFO in prod

Workflow services pass ``document_id`` / ``circuit_id`` /
``approval_request_id`` / ``event_type`` through ``extra={...}``.
RequestContextFilter stamps the current request id on every record emitted
while a request is being served, so service logs join up with access logs.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_app_context

_EXTRA_KEYS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "request_id",
    "document_id",
    "circuit_id",
    "approval_request_id",
    "event_type",
)

_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


class RequestContextFilter(logging.Filter):
    """Copy ``g.request_id`` onto records that do not carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None and has_app_context():
            request_id = g.get("request_id")
            if request_id:
                record.request_id = request_id
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update({
            key: getattr(record, key) for key in _EXTRA_KEYS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line formatter for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        tags = []
        for key, label in (("request_id", "req"), ("document_id", "doc"),
                           ("circuit_id", "circuit")):
            value = getattr(record, key, None)
            if value is not None:
                tags.append(f"{label}={value}")
        tag_str = f" [{' '.join(tags)}]" if tags else ""
        line = (
            f"{color}{datetime.now():%H:%M:%S} {record.levelname:<8}{self.RESET} "
            f"{record.name}{tag_str} {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for this app."""
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = (
        os.getenv("LOG_LEVEL") or app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")
    )
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    # create_app may run several times per process (tests)
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")

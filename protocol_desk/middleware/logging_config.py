"""
Logging setup for Protocol Desk.

One stderr handler on the root logger, formatted per environment:
    development / testing → ReadableFormatter (colored, one line, key=value context)
    production            → JSONFormatter (one JSON object per line)

LOG_LEVEL overrides the level (DEBUG outside production, INFO in it).
Context reaches the formatters through ``extra``, e.g.
    logger.info("Protocol created", extra={"protocol_code": code, "actor": actor})
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# ``extra`` keys the formatters know about, in output order
_EXTRA_FIELDS = (
    "protocol_code",
    "protocol_id",
    "action",
    "actor",
    "backend",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "request_id",
)

# Third-party loggers held at WARNING regardless of LOG_LEVEL
_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


def _context(record: logging.LogRecord) -> dict:
    return {key: getattr(record, key) for key in _EXTRA_FIELDS
            if getattr(record, key, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON document per record, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
            **_context(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``09:14:02.117 WARNING  protocol_desk.x | message  actor=Maria``"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__(datefmt="%H:%M:%S")
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<8}"
        if self.color:
            level = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level}{self.RESET}"
        stamp = f"{self.formatTime(record, self.datefmt)}.{int(record.msecs):03d}"
        line = f"{stamp} {level} {record.name} | {record.getMessage()}"

        context = _context(record)
        duration = context.pop("duration_ms", None)
        if context:
            line += "  " + " ".join(f"{k}={v}" for k, v in context.items())
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install the root handler for ``app``; safe to call once per app instance."""
    testing = app.config.get("TESTING", False)
    production = not (app.config.get("DEBUG", False) or testing)

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter(color=sys.stderr.isatty()))

    # replaces earlier handlers so repeated create_app calls do not double every line
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        logging.getLevelName(level), "json" if production else "readable")

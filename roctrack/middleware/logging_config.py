"""
Logging setup for the ROC engine.

Import and milestone services attach their context through ``extra=``:

    logger.warning("Row %d failed: %s", n, err,
                   extra={"project_id": 1, "job_id": 7, "row_num": n})

Two renderings of the same records:
    - JSONFormatter:      one JSON object per line; the context keys become
                          top-level fields (production, log shipping)
    - ReadableFormatter:  colored single line with a ``[job 7 · row 3]`` tag
                          (development, tests)

Level comes from ``LOG_LEVEL`` (env or app config).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Context keys lifted from ``extra=`` onto JSON records, in output order
CONTEXT_KEYS = (
    "project_id",
    "job_id",
    "row_num",
    "component_id",
    "import_status",
    "event_type",
    "duration_ms",
)

QUIET_LOGGERS = ("sqlalchemy.engine", "alembic", "werkzeug")


def record_context(record: logging.LogRecord) -> dict:
    """Context keys actually set on *record*, skipping ``None``."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_KEYS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
            **record_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored one-liner; import records are tagged with job and row."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _tag(record: logging.LogRecord) -> str:
        parts = []
        job_id = getattr(record, "job_id", None)
        row_num = getattr(record, "row_num", None)
        if job_id is not None:
            parts.append(f"job {job_id}")
        if row_num is not None:
            parts.append(f"row {row_num}")
        return f" [{' · '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = (f"{color}{stamp} {record.levelname:<8}{self.RESET} "
                f"{record.name}{self._tag(record)}: {record.getMessage()}")
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install one stderr handler on the root logger.

    Production (neither DEBUG nor TESTING) logs JSON at INFO by default;
    development and tests log readable lines at DEBUG.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = (os.getenv("LOG_LEVEL") or app.config.get("LOG_LEVEL")
                  or ("INFO" if production else "DEBUG")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if production else "readable")

"""
Logging setup for the pipeline service.

Production writes one JSON object per line; development and tests get a
compact coloured line. ``LOG_LEVEL`` overrides the level.

Pipeline code attaches context with ``extra=``::

    logger.info("Design run cached", extra={"session_id": sid, "run_id": run.id})

Context keys listed in ``CONTEXT_FIELDS`` are lifted into the JSON payload
and echoed as ``key=value`` pairs in the readable format.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# request timing fields first, then pipeline identifiers
REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")
PIPELINE_FIELDS = ("user_id", "session_id", "agent_type", "run_id", "future_state_id")
CONTEXT_FIELDS = REQUEST_FIELDS + PIPELINE_FIELDS

NOISY_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "httpx", "anthropic", "openai")


def record_context(record: logging.LogRecord, fields=CONTEXT_FIELDS) -> dict:
    """The subset of ``fields`` actually set on a record."""
    return {k: getattr(record, k) for k in fields if getattr(record, k, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(record_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line format for a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        pairs = record_context(record, PIPELINE_FIELDS)
        if pairs:
            line += " " + " ".join(f"{k}={v}" for k, v in pairs.items())
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    JSON when the app runs neither in debug nor in testing mode, readable
    otherwise. Default level is INFO for JSON output, DEBUG for readable.
    """
    testing = app.config.get("TESTING", False)
    as_json = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if as_json else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if as_json else ReadableFormatter())
    handler.setLevel(level)

    # replaced, not appended: test sessions build several apps
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if as_json else "readable")

"""
Structured logging configuration.

Service code logs with ``extra={"tenant_id": ..., "customer_id": ...}``.
Those ids are the context a line is searched by, so both formatters carry
them:

- Production: one JSON object per line, context ids as top-level keys
- Development / testing: ``HH:MM:SS LEVEL logger: message tenant=1 retainer=4``
- Log level: LOG_LEVEL env variable
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# ``extra=`` attribute → short label used in readable output
CONTEXT_KEYS = {
    "request_id": "req",
    "tenant_id": "tenant",
    "customer_id": "customer",
    "retainer_id": "retainer",
    "period_id": "period",
    "invoice_id": "invoice",
    "event_type": "event",
    "job_name": "job",
}

# Request-timing attributes, JSON output only
_REQUEST_KEYS = ("method", "path", "status", "duration_ms", "remote_addr")


def record_context(record: logging.LogRecord) -> dict:
    """Domain ids attached to *record*, in CONTEXT_KEYS order."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_KEYS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(record_context(record))
        for key in _REQUEST_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """One line per record with the domain ids appended as label=value."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        context = " ".join(f"{CONTEXT_KEYS[k]}={v}" for k, v in record_context(record).items())
        line = f"{ts} {record.levelname:<8} {record.name}: {record.getMessage()}"
        if context:
            line += f" {context}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Set up logging for the Flask app.

    Reads LOG_LEVEL from env (default: DEBUG in dev, INFO in prod).
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())

    root = logging.getLogger()
    # Tests call create_app repeatedly; never stack handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine", "alembic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    app.logger.setLevel(level)

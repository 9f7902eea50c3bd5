# flask_app/utils/logging_config.py

"""
Application logging: JSON or text records, console and rotating file handlers.

Engine code logs through ``current_app.logger`` with structured ``extra``
fields; the JSON formatter copies those fields onto each record.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from flask import has_request_context, request

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render a log record as one JSON object per line."""

    def format(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        if has_request_context():
            payload["request"] = {
                "method": request.method,
                "path": request.path,
                "remote_addr": request.remote_addr,
            }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


TEXT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _build_formatter(app):
    if str(app.config.get("LOG_FORMAT", "json")).lower() == "json":
        return JSONFormatter()
    return logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(app):
    """
    Configure ``app.logger`` from the monitoring settings.

    Safe to call repeatedly: handlers installed by a previous call are
    replaced rather than duplicated.
    """
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    formatter = _build_formatter(app)

    for handler in list(app.logger.handlers):
        if getattr(handler, "_vista_managed", False):
            app.logger.removeHandler(handler)
            handler.close()

    handlers = []
    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        handlers.append(logging.StreamHandler())

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                os.path.join(log_dir, "vista_reconcile.log"),
                maxBytes=app.config.get("LOG_FILE_MAX_BYTES", 10485760),
                backupCount=app.config.get("LOG_FILE_BACKUP_COUNT", 10),
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler._vista_managed = True  # type: ignore[attr-defined]
        app.logger.addHandler(handler)

    app.logger.setLevel(level)
    app.logger.debug("Logging configured", extra={"log_level": logging.getLevelName(level)})
    return app.logger

"""Centralized logging configuration for the claims backend.

Call ``setup_logging()`` once at application startup (from the app
lifespan in ``main.py``) to configure the root logger.

Individual modules should obtain their own logger with::

    import logging
    LOG = logging.getLogger(__name__)
"""
from __future__ import annotations

import json
import logging
import os
import sys


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Messages are escaped properly, so audit entries (which are JSON
    themselves) and provider errors with quotes stay parseable.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging() -> None:
    """Configure the root logger.

    • **LOG_FORMAT=json** (default in production): each record is a single
      JSON line suited for log aggregation tools.
    • **LOG_FORMAT=text**: human-friendly format for local development.

    The log level is controlled by the ``LOG_LEVEL`` env-var (default: INFO).
    """
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    log_format = os.getenv("LOG_FORMAT", "json").lower()
    datefmt = "%Y-%m-%dT%H:%M:%S"

    handler = logging.StreamHandler(sys.stdout)
    if log_format == "json":
        handler.setFormatter(JsonFormatter(datefmt=datefmt))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)-8s] %(name)s: %(message)s", datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Quiet noisy third-party loggers
    for name in ("httpcore", "httpx", "uvicorn.access", "pymongo", "google_genai"):
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["JsonFormatter", "setup_logging"]

"""
Central logging configuration: one line per record with timestamp, level,
logger name and message.
"""
from __future__ import annotations

import logging
import sys

from .configuration import LoggingConfig


class FlushingStreamHandler(logging.StreamHandler):
    """StreamHandler that flushes after each record so logs appear live under uvicorn."""

    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        self.flush()


def configure_logging(config: LoggingConfig) -> None:
    """Configure root and uvicorn loggers. Call once at startup."""
    level = getattr(logging, config.level, logging.INFO)

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler = FlushingStreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = []
    root.addHandler(handler)
    root.setLevel(level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        log = logging.getLogger(name)
        log.handlers = []
        log.addHandler(handler)
        log.setLevel(level)

    if not config.access_log:
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    if level > logging.DEBUG:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

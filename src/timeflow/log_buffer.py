"""Logging setup with an in-memory circular buffer served by the API."""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from typing import Deque

# Circular buffer of recent log entries (max 100)
log_buffer: Deque[dict] = deque(maxlen=100)


class LogBufferHandler(logging.Handler):
    """Logging handler that captures records into ``log_buffer``."""

    def emit(self, record: logging.LogRecord):
        try:
            log_buffer.append({
                "timestamp": datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
                "level": record.levelname,
                "logger": record.name,
                "message": self.format(record),
            })
        except Exception:
            self.handleError(record)


_buffer_handler: LogBufferHandler | None = None


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure the ``timeflow`` logger once: buffer handler plus stderr."""
    global _buffer_handler

    logger = logging.getLogger("timeflow")
    logger.setLevel(level)
    if _buffer_handler is None:
        _buffer_handler = LogBufferHandler()
        _buffer_handler.setLevel(logging.DEBUG)
        _buffer_handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(_buffer_handler)

        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(stream)

        # Also capture uvicorn logs
        logging.getLogger("uvicorn").addHandler(_buffer_handler)
    return logger


def recent_logs(limit: int = 50) -> list[dict]:
    return list(log_buffer)[-limit:]

"""Logging and telemetry configuration."""
from __future__ import annotations

import json
import logging
import logging.handlers
import queue
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..config import Settings

ROOT_LOGGER = "photo_sync"

_listener: Optional[logging.handlers.QueueListener] = None


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        if isinstance(record.msg, dict):
            payload: Dict[str, Any] = dict(record.msg)
        else:
            payload = {"message": record.getMessage()}
        payload.setdefault("level", record.levelname)
        payload.setdefault("logger", record.name)
        payload.setdefault("ts", datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat())
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(settings: Settings) -> logging.handlers.QueueListener:
    """Route engine logs through a queue so emitting never waits on the sink."""
    global _listener

    if _listener is not None:
        return _listener

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(settings.LOG_LEVEL.upper())
    logger.propagate = False

    queue_handler = logging.handlers.QueueHandler(queue.SimpleQueue())
    # QueueHandler.prepare() renders the record before enqueueing it, so the
    # structured formatter has to sit on this side of the queue.
    if settings.LOG_FORMAT == "json":
        queue_handler.setFormatter(StructuredFormatter())
    else:
        queue_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logger.addHandler(queue_handler)

    sink = logging.StreamHandler()
    sink.setFormatter(logging.Formatter("%(message)s"))
    _listener = logging.handlers.QueueListener(queue_handler.queue, sink, respect_handler_level=False)
    _listener.start()
    return _listener


def shutdown_logging() -> None:
    """Flush queued records and detach the queue handler."""
    global _listener

    if _listener is None:
        return
    _listener.stop()
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        if isinstance(handler, logging.handlers.QueueHandler):
            logger.removeHandler(handler)
    _listener = None


class SyncLogger:
    """Category based logging port handed to the engine components."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger(ROOT_LOGGER)

    def info(self, category: str, message: str, **details: Any) -> None:
        self._emit(logging.INFO, category, message, details)

    def warning(self, category: str, message: str, **details: Any) -> None:
        self._emit(logging.WARNING, category, message, details)

    def error(self, category: str, message: str, exc: Optional[BaseException] = None, **details: Any) -> None:
        if exc is not None:
            details.setdefault("error", str(exc))
        self._emit(logging.ERROR, category, message, details, exc_info=exc)

    def _emit(
        self,
        level: int,
        category: str,
        message: str,
        details: Dict[str, Any],
        exc_info: Optional[BaseException] = None,
    ) -> None:
        record = {"event": f"{category.lower()}.{logging.getLevelName(level).lower()}", "category": category, "message": message}
        record.update(details)
        self._logger.getChild(category.lower()).log(level, record, exc_info=exc_info)

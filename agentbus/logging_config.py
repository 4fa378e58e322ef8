"""JSON logging with per-cluster context.

Every record may carry a ``context`` object. It is built from two places:
fields bound for the running coroutine with ``bind_context()`` and an explicit
``extra={"context": {...}}`` on the call, the latter winning on conflicts.
"""

import contextlib
import contextvars
import json
import logging
import logging.config
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from .config import DEFAULT_LOG_PATH

# Libraries that are chatty at INFO
QUIET_LOGGERS = ("aiosqlite", "uvicorn.access")

_bound_context: contextvars.ContextVar[dict] = contextvars.ContextVar(
    "agentbus_log_context", default={}
)


@contextlib.contextmanager
def bind_context(**fields) -> Iterator[None]:
    """Attach ``fields`` to every record logged inside the block.

    Tasks created inside the block inherit the fields.
    """
    token = _bound_context.set({**_bound_context.get(), **fields})
    try:
        yield
    finally:
        _bound_context.reset(token)


class ContextFilter(logging.Filter):
    """Merges bound context into ``record.context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        bound = _bound_context.get()
        explicit = getattr(record, "context", None)
        if bound or explicit:
            record.context = {**bound, **(explicit or {})}
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        context = getattr(record, "context", None)
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    log_level: str | None = None,
    log_file: str | None = None,
    console: bool = True,
) -> None:
    """
    Configure the root logger.

    Args:
        log_level: Level name. Defaults to the LOG_LEVEL env var or INFO.
        log_file: Rotating JSON log. Defaults to logs/app.log.
        console: Also write JSON lines to stderr.
    """
    level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_file = log_file or str(DEFAULT_LOG_PATH)
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    handlers = {
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
            "formatter": "json",
            "filters": ["context"],
        },
    }
    if console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "formatter": "json",
            "filters": ["context"],
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"context": {"()": ContextFilter}},
            "formatters": {"json": {"()": JSONFormatter}},
            "handlers": handlers,
            "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
            "root": {"level": level, "handlers": list(handlers)},
        }
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

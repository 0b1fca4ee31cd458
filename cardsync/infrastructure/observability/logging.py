"""Logging setup for cardsync.

Every sync worker wraps its work in :func:`log_context` so each line carries
the operation id, source and target without passing them through each call.
Output is plain text by default or JSON lines when ``CARDSYNC_LOG_FORMAT=json``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_QUIET_LOGGERS = ("aiohttp", "urllib3", "asyncio", "uvicorn.access")


class ContextualFormatter(logging.Formatter):
    """Appends ``[key=value ...]`` for the active context.

    The record itself is left untouched so other handlers format it cleanly.
    """

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        ctx = _log_context.get()
        if not ctx:
            return line
        fields = " ".join(f"{k}={v}" for k, v in ctx.items())
        return f"{line} [{fields}]"


class JsonFormatter(logging.Formatter):
    """One JSON object per line with the context fields as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_log_context.get())
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Add fields to every log line emitted inside the block.

    Usage::

        with log_context(operation_id=op_id, target="23286"):
            logger.info("Fetching page %s", page)

    ``None`` values are dropped. Each asyncio task works on its own copy of
    the context, so concurrent target workers never see each other's fields.
    """
    merged = {**_log_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _log_context.set(merged)
    try:
        yield
    finally:
        _log_context.reset(token)


def current_log_context() -> dict[str, Any]:
    return dict(_log_context.get())


_configured = False


def configure_logging(
    level: int | str = logging.INFO,
    third_party_level: int | str = logging.WARNING,
    use_json: bool | None = None,
) -> None:
    """Install a single stderr handler on the root logger. Later calls are no-ops.

    Called from the CLI group and the FastAPI lifespan.
    """
    global _configured
    if _configured:
        return
    _configured = True

    if use_json is None:
        use_json = os.environ.get("CARDSYNC_LOG_FORMAT", "").lower() == "json"

    root = logging.getLogger()
    root.setLevel(level)
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if use_json else ContextualFormatter(_TEXT_FORMAT))
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)


def get_logger(name: str) -> logging.Logger:
    """``logging.getLogger`` that still prints when nothing configured logging."""
    logger = logging.getLogger(name)
    if not _configured and not logger.handlers and not logging.getLogger().handlers:
        fallback = logging.StreamHandler()
        fallback.setFormatter(ContextualFormatter(_TEXT_FORMAT))
        logger.addHandler(fallback)
        logger.setLevel(logging.INFO)
    return logger


def log_exception(
    logger: logging.Logger,
    message: str,
    exc: BaseException,
    **context: Any,
) -> None:
    """``logger.exception`` with extra context fields for this one line."""
    with log_context(**context):
        logger.exception("%s: %s", message, exc)

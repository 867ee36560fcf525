"""Logging setup.

Log lines go to stderr, since stdout carries the stdio protocol, and
optionally to a file. Every record is stamped with the request id and
principal of the tool call that produced it, or ``-`` outside a request.
"""

from __future__ import annotations

import logging
import sys
import threading
from collections.abc import Iterator
from pathlib import Path

from experience_mcp.auth.context import current_principal
from experience_mcp.config import load_settings

_LOG_FORMAT = (
    "%(asctime)s %(levelname)-7s [%(request_id)s %(principal)s] %(name)s: %(message)s"
)
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_logging_configured = False
_logging_lock = threading.Lock()

_logger = logging.getLogger(__name__)


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        ctx = current_principal()
        record.request_id = ctx.request_id if ctx else "-"
        record.principal = ctx.label if ctx else "-"
        return True


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _open_handlers(log_file: str | None) -> Iterator[logging.Handler]:
    yield logging.StreamHandler(sys.stderr)
    if not log_file:
        return
    try:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        yield logging.FileHandler(log_file)
    except OSError as exc:
        _logger.warning("Logging to stderr only, cannot open %s: %s", log_file, exc)


def configure_logging() -> None:
    global _logging_configured

    settings = load_settings().logging
    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT)
    request_filter = RequestIdFilter()
    handlers = []
    for handler in _open_handlers(settings.file):
        handler.setFormatter(formatter)
        handler.addFilter(request_filter)
        handlers.append(handler)

    logging.basicConfig(
        level=_level(settings.level),
        handlers=handlers,
        force=True,
    )
    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger, configuring logging on first use."""
    with _logging_lock:
        if not _logging_configured:
            configure_logging()
    return logging.getLogger(name)

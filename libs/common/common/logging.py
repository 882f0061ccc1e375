"""
Logging configuration for the harness.

Call ``setup_logging()`` once at startup.  ``LOG_FORMAT=json`` (default)
emits one JSON object per line for CI log collectors; ``text`` is meant
for a terminal.  Either way every record carries the correlation id of
the scenario that produced it.
"""

from __future__ import annotations

import logging
import sys

from pythonjsonlogger import jsonlogger

from common.config import LOG_FORMAT, LOG_LEVEL
from common.correlation import get_correlation_id

FORMATS = ("json", "text")

_JSON_FIELDS = "%(asctime)s %(levelname)s %(name)s %(correlation_id)s %(message)s"
_TEXT_FIELDS = "%(asctime)s [%(levelname)s] %(name)s (%(correlation_id)s) %(message)s"

# Chatty per-request loggers of the HTTP stack.
_QUIET = ("httpx", "httpcore", "asyncio")


class _CorrelationFilter(logging.Filter):
    """Inject correlation_id from contextvars into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"  # type: ignore[attr-defined]
        return True


def _formatter(fmt_name: str, service_name: str) -> logging.Formatter:
    if fmt_name == "json":
        return jsonlogger.JsonFormatter(
            fmt=_JSON_FIELDS,
            rename_fields={"asctime": "timestamp", "levelname": "level"},
            static_fields={"service": service_name},
        )
    if fmt_name == "text":
        return logging.Formatter(_TEXT_FIELDS)
    raise ValueError(f"unknown log format {fmt_name!r}, expected one of {', '.join(FORMATS)}")


def setup_logging(service_name: str = "media-qa", level: str | None = None, fmt_name: str | None = None) -> None:
    """Install a single stdout handler on the root logger.

    *level* and *fmt_name* override ``LOG_LEVEL`` / ``LOG_FORMAT``.
    """
    fmt_name = (fmt_name or LOG_FORMAT).lower()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_formatter(fmt_name, service_name))
    handler.addFilter(_CorrelationFilter())

    root = logging.getLogger()
    root.setLevel((level or LOG_LEVEL).upper())
    root.handlers.clear()
    root.addHandler(handler)

    for name in _QUIET:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(service_name).debug("Logging initialised format=%s level=%s", fmt_name, root.level)

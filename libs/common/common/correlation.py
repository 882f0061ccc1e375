"""
Correlation-ID context.

Each scenario run stores a fresh id in a context variable so that every
log line and every control API call issued on its behalf (including the
ones made from spawned tasks, which inherit the context) carry it.
"""

from __future__ import annotations

import contextvars
import uuid

HEADER_NAME = "X-Correlation-Id"

_correlation_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    return _correlation_id_ctx.get("")


def set_correlation_id(value: str) -> None:
    _correlation_id_ctx.set(value)


def new_correlation_id() -> str:
    cid = uuid.uuid4().hex[:8]
    set_correlation_id(cid)
    return cid

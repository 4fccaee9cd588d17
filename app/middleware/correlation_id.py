"""
Correlation ID middleware for request tracing.

Each inbound request gets an id (from X-Correlation-ID or a fresh UUID) that is
stamped on SystemEvents and on log records, so one SMS can be traced through
classification, CRM calls and the resulting transitions.
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

HEADER_CORRELATION_ID = "X-Correlation-ID"
MAX_CORRELATION_ID_LENGTH = 128

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id(request: Request | None = None) -> str | None:
    """Prefer request.state, then the contextvar. None outside a request."""
    if request is not None and getattr(request.state, "correlation_id", None):
        return request.state.correlation_id
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation id for work done outside the request cycle."""
    _correlation_id_var.set(correlation_id)


class CorrelationIdFilter(logging.Filter):
    """Adds `correlation_id` to every log record ("-" when none is set)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _correlation_id_var.get() or "-"
        return True


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        incoming = request.headers.get(HEADER_CORRELATION_ID)
        if incoming and len(incoming) <= MAX_CORRELATION_ID_LENGTH:
            cid = incoming.strip()
        else:
            cid = str(uuid.uuid4())
        request.state.correlation_id = cid
        token = _correlation_id_var.set(cid)
        try:
            response = await call_next(request)
        finally:
            _correlation_id_var.reset(token)
        response.headers[HEADER_CORRELATION_ID] = cid
        return response

"""Request correlation IDs.

Every API request carries a correlation ID (taken from the
``X-Correlation-ID`` header or generated). It is stored in a context
variable, added to log records by CorrelationIdFilter, echoed in the
response, and forwarded to the reference calculator so one evaluation
can be traced end to end.
"""

from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar, Token
from typing import Any, Callable, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"

LOG_FORMAT = "%(asctime)s [%(correlation_id)s] %(levelname)s %(name)s: %(message)s"

_correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    return _correlation_id_ctx.get()


def set_correlation_id(correlation_id: str) -> Token[Optional[str]]:
    return _correlation_id_ctx.set(correlation_id)


def reset_correlation_id(token: Token[Optional[str]]) -> None:
    _correlation_id_ctx.reset(token)


class correlation_id_context:
    """
    Bind a correlation ID outside a request, e.g. in a Celery task:

        with correlation_id_context(run_id):
            harness.execute_run(run_id)
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self._token: Optional[Token[Optional[str]]] = None

    def __enter__(self) -> str:
        self._token = set_correlation_id(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            reset_correlation_id(self._token)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Bind the request's correlation ID and echo it in the response."""

    def __init__(self, app, header_name: str = CORRELATION_ID_HEADER):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        correlation_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        token = set_correlation_id(correlation_id)
        try:
            request.state.correlation_id = correlation_id
            response = await call_next(request)
            response.headers[self.header_name] = correlation_id
            return response
        finally:
            reset_correlation_id(token)


class CorrelationIdFilter(logging.Filter):
    """Adds ``correlation_id`` to every log record ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        return True


def configure_logging(level: str = "INFO", log_format: str = LOG_FORMAT) -> None:
    """Install a correlation-aware stream handler on the root logger."""
    root = logging.getLogger()
    for handler in root.handlers:
        if any(isinstance(f, CorrelationIdFilter) for f in handler.filters):
            root.setLevel(level.upper())
            return

    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(logging.Formatter(log_format))
    root.addHandler(handler)
    root.setLevel(level.upper())


def propagate_correlation_headers(headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Headers for a downstream call, including the current correlation ID."""
    result = dict(headers) if headers else {}
    correlation_id = get_correlation_id()
    if correlation_id:
        result[CORRELATION_ID_HEADER] = correlation_id
    return result

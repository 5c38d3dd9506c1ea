"""
HTTP middleware: request correlation IDs and correlation-aware logging.
"""

from .correlation import (
    CORRELATION_ID_HEADER,
    CorrelationIdFilter,
    CorrelationIdMiddleware,
    configure_logging,
    correlation_id_context,
    get_correlation_id,
    propagate_correlation_headers,
)

__all__ = [
    "CORRELATION_ID_HEADER",
    "CorrelationIdFilter",
    "CorrelationIdMiddleware",
    "configure_logging",
    "correlation_id_context",
    "get_correlation_id",
    "propagate_correlation_headers",
]

"""Middleware module initialization."""

from ogrexport.middleware.request_logging import StructuredLoggingMiddleware

__all__ = [
    "StructuredLoggingMiddleware",
]

"""
Request Logging Middleware
Structured JSON log lines for every HTTP request, tagged with a correlation ID
"""

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for structured JSON logging with correlation IDs

    Export responses stream after this middleware returns, so the logged
    duration covers baking and queueing but not the body transfer.
    """

    def __init__(self, app, logger: logging.Logger):
        super().__init__(app)
        self.logger = logger

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        start_time = time.time()

        self.logger.info(json.dumps({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "correlation_id": correlation_id,
            "event": "http_request_start",
            "method": request.method,
            "path": request.url.path,
            "format": request.query_params.get("format"),
            "client_ip": request.client.host if request.client else None,
        }))

        try:
            response = await call_next(request)
        except Exception as exc:
            self.logger.error(json.dumps({
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "correlation_id": correlation_id,
                "event": "http_request_error",
                "method": request.method,
                "path": request.url.path,
                "error_type": type(exc).__name__,
                "error_message": str(exc),
            }))
            raise

        self.logger.info(json.dumps({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "correlation_id": correlation_id,
            "event": "http_request_complete",
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_seconds": time.time() - start_time,
        }))
        response.headers["X-Correlation-ID"] = correlation_id
        return response

# promo/middleware/logging.py
from __future__ import annotations

import time
from typing import Mapping

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from promo.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

_QUIET_PATHS = frozenset({"/health", "/health/live", "/health/ready", "/metrics"})
_SENSITIVE = ("authorization", "cookie", "x-api-key", "secret", "token", "password")


def filter_headers(headers: Mapping[str, str]) -> dict:
    """Copy of headers with credentials redacted."""
    return {
        key: "[REDACTED]" if any(s in key.lower() for s in _SENSITIVE) else value
        for key, value in headers.items()
    }


class LoggingMiddleware(BaseHTTPMiddleware):
    """Request/response logging; the request id comes from RequestIdMiddleware."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        quiet = request.url.path.rstrip("/").endswith(tuple(_QUIET_PATHS))

        if not quiet:
            logger.info(
                "request.received",
                method=request.method,
                path=request.url.path,
                query_params=dict(request.query_params) or None,
                client_ip=request.client.host if request.client else "unknown",
                headers=filter_headers(request.headers),
            )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request.exception",
                method=request.method,
                path=request.url.path,
                response_time_ms=(time.perf_counter() - start_time) * 1000,
                exception_type=type(e).__name__,
                exception_message=str(e),
            )
            raise

        response_time = time.perf_counter() - start_time
        response.headers["X-Response-Time"] = f"{response_time:.3f}"

        if not quiet:
            log = logger.warning if response.status_code >= 400 else logger.info
            log(
                "response.sent",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                response_time_ms=response_time * 1000,
                error_type=(
                    "server_error" if response.status_code >= 500
                    else "client_error" if response.status_code >= 400
                    else None
                ),
            )
        return response

# promo/middleware/request_id.py
from __future__ import annotations

import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from promo.core.logging import set_request_id


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id (and the calling merchant) to every log line of the request."""

    async def dispatch(self, request: Request, call_next):
        set_request_id(None)
        request_id = self._get_or_create_request_id(request)
        set_request_id(request_id)

        merchant_id = request.headers.get("X-Merchant-ID")
        if merchant_id:
            structlog.contextvars.bind_contextvars(merchant_id=merchant_id.strip())

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    def _get_or_create_request_id(self, request: Request) -> str:
        request_id = request.headers.get("X-Request-ID") or request.headers.get("X-Correlation-ID")
        if request_id:
            return request_id

        # W3C trace context: 00-<32 hex trace id>-<span id>-<flags>
        trace = request.headers.get("traceparent")
        if trace and trace.startswith("00-") and len(trace) >= 35:
            return trace[3:35]

        return str(uuid.uuid4())

"""Custom middleware for request tracking, tracing, and logging."""

import logging
import re
import time
import uuid
from typing import Callable, Optional

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .config import settings

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds a unique request ID to each request.

    The request ID is taken from the X-Request-ID header or generated. It is
    echoed on the response and bound into the structlog context so every log
    line emitted while serving the request carries it.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers[self.header_name] = request_id
        return response


class TraceContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that handles W3C Trace Context headers.

    https://www.w3.org/TR/trace-context/
    """

    TRACEPARENT = re.compile(r"^([0-9a-f]{2})-([0-9a-f]{32})-([0-9a-f]{16})-([0-9a-f]{2})$")

    def _parse_traceparent(self, traceparent: str) -> Optional[dict]:
        match = self.TRACEPARENT.match(traceparent)
        if not match:
            return None

        version, trace_id, parent_id, flags = match.groups()
        if version != "00" or trace_id == "0" * 32 or parent_id == "0" * 16:
            return None

        return {"trace_id": trace_id, "parent_id": parent_id, "flags": flags}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = request.headers.get("traceparent")
        tracestate = request.headers.get("tracestate")
        trace_context = self._parse_traceparent(incoming) if incoming else None

        if trace_context:
            trace_id = trace_context["trace_id"]
            parent_span_id = trace_context["parent_id"]
            flags = trace_context["flags"]
        else:
            trace_id = uuid.uuid4().hex
            parent_span_id = None
            flags = "01"

        span_id = uuid.uuid4().hex[:16]
        request.state.trace_context = {
            "trace_id": trace_id,
            "span_id": span_id,
            "parent_span_id": parent_span_id,
            "flags": flags,
        }

        response = await call_next(request)

        response.headers["traceparent"] = f"00-{trace_id}-{span_id}-{flags}"
        if tracestate:
            response.headers["tracestate"] = tracestate
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that logs HTTP requests and responses.

    Logs timing, status codes and correlation IDs. Health and metrics checks
    are skipped.
    """

    def __init__(self, app: ASGIApp, skip_paths: Optional[list] = None):
        super().__init__(app)
        self.skip_paths = skip_paths or ["/health", "/ready", "/metrics", "/favicon.ico"]

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        if request.client:
            return request.client.host
        return "unknown"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.skip_paths:
            return await call_next(request)

        start_time = time.perf_counter()
        trace_context = getattr(request.state, "trace_context", {})
        log_data = {
            "request_id": getattr(request.state, "request_id", "unknown"),
            "trace_id": trace_context.get("trace_id", "unknown"),
            "method": request.method,
            "path": request.url.path,
            "client_ip": self._get_client_ip(request),
            "idempotency_key": request.headers.get("Idempotency-Key"),
        }

        response = await call_next(request)

        log_data.update({
            "status_code": response.status_code,
            "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
            "replayed": response.headers.get("Idempotency-Replayed") == "true",
        })

        if response.status_code >= 500:
            logger.error("HTTP request completed with server error", extra=log_data)
        elif response.status_code >= 400:
            logger.warning("HTTP request completed with client error", extra=log_data)
        else:
            logger.info("HTTP request completed successfully", extra=log_data)

        return response


def setup_middleware(app, enable_logging: bool = True) -> None:
    """
    Setup all middleware on the FastAPI app.

    Args:
        app: FastAPI application instance
        enable_logging: Whether to enable request logging middleware
    """
    # Last added runs first
    if enable_logging:
        app.add_middleware(LoggingMiddleware)

    app.add_middleware(TraceContextMiddleware)
    app.add_middleware(RequestIDMiddleware)

    logger.debug("Middleware configured", extra={"environment": settings.environment})

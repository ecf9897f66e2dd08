from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
import time
import logging
import uuid

from .metrics import record_request_metrics

logger = logging.getLogger(__name__)

# Probe endpoints, logged at debug only
QUIET_PATHS = ("/health", "/metrics")
SLOW_REQUEST_SECONDS = 30.0


class LoggingMiddleware(BaseHTTPMiddleware):
    """Tag every request with an id and log planning calls with their duration"""

    async def dispatch(self, request: Request, call_next):
        # Reuse an upstream request id when present
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        log = logger.debug if request.url.path in QUIET_PATHS else logger.info

        started = time.perf_counter()
        log(f"Request {request_id}: {request.method} {request.url.path}")

        response = await call_next(request)

        elapsed = time.perf_counter() - started
        if elapsed > SLOW_REQUEST_SECONDS:
            logger.warning(f"Request {request_id}: {response.status_code} took {elapsed:.1f}s")
        else:
            log(f"Request {request_id}: {response.status_code} - {elapsed:.3f}s")

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        record_request_metrics(
            method=request.method,
            endpoint=request.url.path,
            status_code=response.status_code,
            duration=time.perf_counter() - started,
        )
        return response

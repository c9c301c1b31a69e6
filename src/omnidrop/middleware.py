import asyncio
import logging
import time
import traceback
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from omnidrop.errors import ErrorCode, error_response
from omnidrop.logging_config import RequestContext
from omnidrop.metrics import MetricsSink

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 60.0
UNMATCHED_ENDPOINT = "unmatched"


class RecoveryMiddleware(BaseHTTPMiddleware):
    """Turns any unhandled exception into a 500 internal_error envelope."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(
                f"Unhandled exception on {request.method} {request.url.path}: {e!r}",
                extra={
                    "request_id": RequestContext.get_request_id(),
                    "stack": traceback.format_exc(),
                },
            )
            return error_response(ErrorCode.INTERNAL_ERROR, "internal server error")


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Router-level deadline; handlers may use a stricter one of their own."""

    def __init__(self, app: ASGIApp, timeout: float = REQUEST_TIMEOUT_SECONDS):
        super().__init__(app)
        self.timeout = timeout

    async def dispatch(self, request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(
                f"Request exceeded {self.timeout:g}s: {request.method} {request.url.path}"
            )
            return error_response(ErrorCode.TIMEOUT_ERROR, "request timed out")


def route_template(request: Request) -> str:
    """
    The path template of the route the router matched, so metric labels stay
    bounded. Only known once the request has been routed.
    """
    route = request.scope.get("route")
    return getattr(route, "path", UNMATCHED_ENDPOINT)


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, metrics: MetricsSink):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._record(request, route_template(request), 500, start, response_size=0)
            raise
        self._record(
            request,
            route_template(request),
            response.status_code,
            start,
            response_size=_content_length(response.headers.get("content-length")),
        )
        return response

    def _record(
        self, request: Request, endpoint: str, status_code: int, start: float, response_size: int
    ) -> None:
        labels = {"method": request.method, "endpoint": endpoint}
        self.metrics.increment("http_requests", status=str(status_code), **labels)
        self.metrics.observe("http_request_duration_seconds", time.perf_counter() - start, **labels)
        self.metrics.observe(
            "http_request_size_bytes",
            _content_length(request.headers.get("content-length")),
            **labels,
        )
        self.metrics.observe("http_response_size_bytes", response_size, **labels)


def _content_length(value: Optional[str]) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from omnidrop.config import Settings

# Configure logger
logger = logging.getLogger("omnidrop")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

# Attributes every LogRecord carries; anything else came in through `extra`.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

_request_id: ContextVar[Optional[str]] = ContextVar("omnidrop_request_id", default=None)

UNLOGGED_PATHS = ("/health", "/metrics")


class RequestContext:
    """Request-scoped storage for values such as the request ID"""

    @classmethod
    def get_request_id(cls) -> Optional[str]:
        return _request_id.get()

    @classmethod
    def set_request_id(cls, request_id: str) -> None:
        _request_id.set(request_id)

    @classmethod
    def clear_request_id(cls) -> None:
        _request_id.set(None)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add request ID to each request"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        RequestContext.set_request_id(request_id)
        request.state.request_id = request_id
        try:
            response = await call_next(request)
        finally:
            RequestContext.clear_request_id()
        response.headers["X-Request-ID"] = request_id
        return response


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers"""

    def __init__(self, environment: str = ""):
        super().__init__()
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        log_record: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "environment": self.environment,
        }
        if request_id := RequestContext.get_request_id():
            log_record["request_id"] = request_id
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_record:
                log_record[key] = value
        return json.dumps(log_record, default=str)


def resolve_log_level(settings: Settings) -> int:
    """LOG_LEVEL wins; otherwise development is chatty and test is quiet."""
    if settings.LOG_LEVEL:
        return _LEVELS[settings.LOG_LEVEL]
    if settings.is_development():
        return logging.DEBUG
    if settings.is_testing():
        return logging.WARNING
    return logging.INFO


def setup_logging(settings: Settings) -> None:
    """Configure logging for the application"""
    log_level = resolve_log_level(settings)

    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    if settings.is_production():
        formatter: logging.Formatter = JsonFormatter(settings.environment_label)
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)
    root_logger.setLevel(log_level)

    logging.getLogger("omnidrop").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logger.info(
        f"Logging configured with level {logging.getLevelName(log_level)} "
        f"and {'JSON' if settings.is_production() else 'plain text'} format"
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log request and response information"""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in UNLOGGED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        request_id = RequestContext.get_request_id()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {e}", exc_info=True, extra={"request_id": request_id}
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "Request processed",
            extra={
                "request": {
                    "method": request.method,
                    "path": request.url.path,
                    "client_host": request.client.host if request.client else None,
                    "request_id": request_id,
                },
                "response": {
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                },
            },
        )
        return response

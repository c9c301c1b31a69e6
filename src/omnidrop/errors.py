import logging
import traceback
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

AUTH_REALM = "omnidrop"


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "validation_error"
    AUTHENTICATION_ERROR = "authentication_error"
    AUTHORIZATION_ERROR = "authorization_error"
    NOT_FOUND = "not_found"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    ALREADY_EXISTS = "already_exists"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    APPLESCRIPT_ERROR = "applescript_error"
    FILESYSTEM_ERROR = "filesystem_error"
    INTERNAL_ERROR = "internal_error"
    TIMEOUT_ERROR = "timeout_error"


HTTP_STATUS_BY_CODE: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.AUTHENTICATION_ERROR: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.AUTHORIZATION_ERROR: status.HTTP_403_FORBIDDEN,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.METHOD_NOT_ALLOWED: status.HTTP_405_METHOD_NOT_ALLOWED,
    ErrorCode.ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ErrorCode.RATE_LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.APPLESCRIPT_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.FILESYSTEM_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.TIMEOUT_ERROR: status.HTTP_504_GATEWAY_TIMEOUT,
}

_CODE_BY_HTTP_STATUS = {v: k for k, v in HTTP_STATUS_BY_CODE.items() if v < 500}


class DomainError(Exception):
    """
    An error that maps onto the public error envelope.

    Only `message` and `code` reach the client. The cause, context and the
    stack captured at construction time are for the logs.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        http_status: Optional[int] = None,
        cause: Optional[BaseException] = None,
        context: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status or HTTP_STATUS_BY_CODE[code]
        self.cause = cause
        self.context: Dict[str, Any] = dict(context or {})
        self.headers: Dict[str, str] = dict(headers or {})
        self.stack: List[str] = traceback.format_stack()[:-1]

    def with_cause(self, cause: BaseException) -> "DomainError":
        self.cause = cause
        return self

    def with_context(self, **context: Any) -> "DomainError":
        self.context.update(context)
        return self

    def to_dict(self) -> Dict[str, str]:
        return {"status": "error", "message": self.message, "code": self.code.value}

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.code.value}: {self.message}: {self.cause}"
        return f"{self.code.value}: {self.message}"


def validation_error(message: str) -> DomainError:
    return DomainError(ErrorCode.VALIDATION_ERROR, message)


def authentication_error(message: str = "Authentication required") -> DomainError:
    return DomainError(
        ErrorCode.AUTHENTICATION_ERROR,
        message,
        headers={"WWW-Authenticate": f'Bearer realm="{AUTH_REALM}"'},
    )


def authorization_error(message: str = "Insufficient permissions") -> DomainError:
    return DomainError(ErrorCode.AUTHORIZATION_ERROR, message)


def already_exists_error(message: str = "file already exists") -> DomainError:
    return DomainError(ErrorCode.ALREADY_EXISTS, message)


def applescript_error(message: str, cause: Optional[BaseException] = None) -> DomainError:
    return DomainError(ErrorCode.APPLESCRIPT_ERROR, message, cause=cause)


def filesystem_error(message: str, cause: Optional[BaseException] = None) -> DomainError:
    return DomainError(ErrorCode.FILESYSTEM_ERROR, message, cause=cause)


def error_response(
    code: ErrorCode,
    message: str,
    status_code: Optional[int] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> JSONResponse:
    """Renders the standard `{status, message, code}` error body."""
    return JSONResponse(
        status_code=status_code or HTTP_STATUS_BY_CODE[code],
        content={"status": "error", "message": message, "code": code.value},
        headers=dict(headers) if headers else None,
    )


def log_domain_error(request: Request, exc: DomainError) -> None:
    extra = {
        "error": {
            "code": exc.code.value,
            "status": exc.http_status,
            "cause": repr(exc.cause) if exc.cause is not None else None,
            "context": exc.context,
        },
        "path": request.url.path,
    }
    if exc.http_status >= 500:
        extra["stack"] = "".join(exc.stack[-8:])
        logger.error(f"Request failed: {exc}", extra=extra)
    else:
        logger.info(f"Request rejected: {exc}", extra=extra)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        log_domain_error(request, exc)
        return error_response(exc.code, exc.message, exc.http_status, exc.headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return error_response(ErrorCode.NOT_FOUND, "resource not found")
        if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
            return error_response(
                ErrorCode.METHOD_NOT_ALLOWED,
                "method not allowed",
                headers=exc.headers,
            )
        code = _CODE_BY_HTTP_STATUS.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
        logger.warning(f"HTTPException: {exc.status_code} {exc.detail}")
        return error_response(code, str(exc.detail), exc.status_code, exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.info(f"ValidationError: {exc.errors()}")
        return error_response(ErrorCode.VALIDATION_ERROR, "invalid request")

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request

from omnidrop.logging_config import RequestContext

# Get dedicated security audit logger
logger = logging.getLogger("omnidrop.security")

SENSITIVE_KEYS = (
    "secret",
    "token",
    "password",
    "authorization",
    "key",
)


def _sanitize_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Remove sensitive information from data before logging.
    """
    sanitized = data.copy()
    for key, value in list(sanitized.items()):
        if any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_data(value)
    return sanitized


def log_security_event(
    event_type: str,
    client_id: Optional[str] = None,
    request: Optional[Request] = None,
    additional_data: Optional[Dict[str, Any]] = None,
    status: str = "success",
    detail: Optional[str] = None,
) -> None:
    """
    Log an authentication or authorization event with structured data.

    Failures are logged at WARNING, everything else at INFO.

    Args:
        event_type: e.g. "token_issued", "token_validation"
        client_id: OAuth client involved, when known
        request: current request, for method/path/peer address
        additional_data: extra fields; secret-looking keys are redacted
        status: "success" or "failure"
        detail: optional human-readable reason
    """
    security_event: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type,
        "status": status,
    }
    if client_id:
        security_event["client_id"] = client_id

    request_id = RequestContext.get_request_id()
    if request_id:
        security_event["request_id"] = request_id

    if request is not None:
        if request.client:
            security_event["ip_address"] = request.client.host
        security_event["request"] = {
            "method": request.method,
            "path": request.url.path,
            "user_agent": request.headers.get("user-agent", "unknown"),
        }

    if additional_data:
        security_event["data"] = _sanitize_data(additional_data)
    if detail:
        security_event["detail"] = detail

    level = logging.WARNING if status == "failure" else logging.INFO
    logger.log(
        level,
        f"Security event: {event_type} - {status}",
        extra={"security_event": security_event},
    )

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException

from omnidrop.client_registry import ClientAuthenticationError, ClientRegistry
from omnidrop.config import Settings
from omnidrop.dependencies.app_deps import (
    get_client_registry,
    get_metrics,
    get_settings,
    get_token_manager,
)
from omnidrop.metrics import PrometheusMetrics
from omnidrop.schemas.oauth_schemas import (
    AccessTokenResponse,
    OAuthErrorResponse,
    TokenRequest,
)
from omnidrop.security import TokenManager
from omnidrop.security_audit import log_security_event

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/oauth",
    tags=["Token Acquisition"],
)

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def oauth_error(status_code: int, error: str, description: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "error_description": description},
        headers=NO_STORE_HEADERS,
    )


async def read_token_request(request: Request) -> Optional[TokenRequest]:
    """JSON when the Content-Type says so, a form body otherwise."""
    content_type = request.headers.get("content-type", "")
    try:
        if "application/json" in content_type:
            data: Any = json.loads(await request.body() or b"null")
            if not isinstance(data, dict):
                return None
        else:
            form = await request.form()
            data = {
                field: str(form[field])
                for field in TokenRequest.model_fields
                if field in form
            }
        return TokenRequest.model_validate(data)
    except (ValueError, ValidationError, HTTPException):
        # Starlette reports an unparsable multipart body as a 400 HTTPException.
        return None


@router.post(
    "/token",
    response_model=AccessTokenResponse,
    status_code=status.HTTP_200_OK,
    summary="Obtain an access token using client credentials",
    description="""
    Implements the OAuth 2.0 Client Credentials grant.

    Accepts `application/json` or `application/x-www-form-urlencoded` bodies.
    The issued token carries the client's scopes and is accepted as a bearer
    token by `/tasks` and `/files`.
    """,
    responses={
        status.HTTP_200_OK: {
            "description": "Successfully generated access token",
            "content": {
                "application/json": {
                    "example": {
                        "access_token": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...",
                        "token_type": "Bearer",
                        "expires_in": 86400,
                        "scope": "tasks:write files:write",
                    }
                }
            },
        },
        status.HTTP_400_BAD_REQUEST: {
            "description": "Malformed request or unsupported grant type",
            "model": OAuthErrorResponse,
        },
        status.HTTP_401_UNAUTHORIZED: {
            "description": "Client authentication failed",
            "model": OAuthErrorResponse,
        },
        status.HTTP_503_SERVICE_UNAVAILABLE: {
            "description": "Token signing is not configured",
            "model": OAuthErrorResponse,
        },
    },
)
async def issue_token(
    request: Request,
    settings: Settings = Depends(get_settings),
    registry: ClientRegistry = Depends(get_client_registry),
    token_manager: Optional[TokenManager] = Depends(get_token_manager),
    metrics: PrometheusMetrics = Depends(get_metrics),
) -> JSONResponse:
    token_request = await read_token_request(request)
    if token_request is None:
        logger.warning("Unparsable token request body")
        return oauth_error(
            status.HTTP_400_BAD_REQUEST, "invalid_request", "Invalid request body"
        )

    if token_request.grant_type != "client_credentials":
        logger.warning(f"Unsupported grant_type {token_request.grant_type!r}")
        return oauth_error(
            status.HTTP_400_BAD_REQUEST,
            "unsupported_grant_type",
            "Only client_credentials grant type is supported",
        )

    if not token_request.client_id or not token_request.client_secret:
        logger.warning("Token request without client_id or client_secret")
        return oauth_error(
            status.HTTP_400_BAD_REQUEST,
            "invalid_request",
            "Missing client_id or client_secret",
        )

    if token_manager is None:
        logger.error("Token requested but OMNIDROP_JWT_SECRET is not configured")
        return oauth_error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "temporarily_unavailable",
            "Token issuance is not configured",
        )

    await run_in_threadpool(registry.reload)
    try:
        client = await run_in_threadpool(
            registry.authenticate, token_request.client_id, token_request.client_secret
        )
    except ClientAuthenticationError as e:
        metrics.increment("oauth_token_validations", result="invalid")
        log_security_event(
            "client_authentication",
            client_id=token_request.client_id,
            request=request,
            additional_data=token_request.model_dump(exclude={"client_id"}),
            status="failure",
            detail=str(e),
        )
        return oauth_error(
            status.HTTP_401_UNAUTHORIZED, "invalid_client", "Client authentication failed"
        )

    access_token = token_manager.issue(client, settings.TOKEN_EXPIRY)
    metrics.increment("oauth_tokens_issued", client_id=client.client_id)
    log_security_event("token_issued", client_id=client.client_id, request=request)

    payload: Dict[str, Any] = AccessTokenResponse(
        access_token=access_token,
        token_type="Bearer",
        expires_in=settings.token_expiry_seconds,
        scope=" ".join(client.scopes),
    ).model_dump()
    return JSONResponse(status_code=status.HTTP_200_OK, content=payload, headers=NO_STORE_HEADERS)

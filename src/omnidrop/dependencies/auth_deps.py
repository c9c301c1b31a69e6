import hmac
import logging
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from omnidrop.config import Settings
from omnidrop.dependencies.app_deps import get_metrics, get_settings, get_token_manager
from omnidrop.errors import authentication_error, authorization_error
from omnidrop.metrics import PrometheusMetrics
from omnidrop.schemas.oauth_schemas import TokenClaims
from omnidrop.security import (
    TokenManager,
    TokenValidationError,
    has_scopes,
    legacy_claims,
)
from omnidrop.security_audit import log_security_event

logger = logging.getLogger(__name__)

# auto_error=False so a missing header becomes our own 401 envelope.
bearer_scheme = HTTPBearer(auto_error=False)


async def authenticate_request(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
    token_manager: Optional[TokenManager] = Depends(get_token_manager),
    metrics: PrometheusMetrics = Depends(get_metrics),
) -> TokenClaims:
    """
    Resolves the bearer token into claims and stores them on
    `request.state.claims`.

    Signed tokens are tried first. The legacy shared token is only a
    fallback and only when legacy mode is enabled.
    """
    if credentials is None or not credentials.credentials:
        logger.warning(f"Missing or malformed Authorization header on {request.url.path}")
        raise authentication_error("Missing or invalid Authorization header")

    token = credentials.credentials
    failure: Optional[TokenValidationError] = None

    if token_manager is not None:
        try:
            claims = token_manager.validate(token)
        except TokenValidationError as e:
            failure = e
        else:
            metrics.increment("oauth_token_validations", result="success")
            request.state.claims = claims
            return claims

    if settings.LEGACY_AUTH_ENABLED and hmac.compare_digest(
        token.encode(), settings.LEGACY_TOKEN.encode()
    ):
        claims = legacy_claims()
        request.state.claims = claims
        logger.debug("Request authenticated with legacy token")
        return claims

    result = failure.result if failure is not None else "invalid"
    metrics.increment("oauth_token_validations", result=result)
    log_security_event(
        "token_validation",
        request=request,
        status="failure",
        detail=str(failure) if failure is not None else "token rejected",
    )
    if result == "expired":
        raise authentication_error("Token has expired")
    raise authentication_error("Invalid or expired token")


def require_scopes(*scopes: str) -> Callable:
    """
    Dependency factory: the request must carry claims granting every scope in
    `scopes`, with `*` and `prefix:*` wildcards honoured.
    """
    required = list(scopes)

    async def _check(
        request: Request,
        claims: TokenClaims = Depends(authenticate_request),
        metrics: PrometheusMetrics = Depends(get_metrics),
    ) -> TokenClaims:
        if claims is None:
            raise authentication_error()
        if not has_scopes(claims.scopes, required):
            metrics.increment(
                "oauth_scope_validation_failures",
                client_id=claims.client_id,
                required_scope=",".join(required),
            )
            logger.warning(
                f"Insufficient scopes for client {claims.client_id!r}: "
                f"required {required}, granted {claims.scopes}"
            )
            raise authorization_error("Insufficient permissions")
        return claims

    return _check

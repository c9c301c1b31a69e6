import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError
from passlib.context import CryptContext

from omnidrop.models.oauth_client import OAuthClient
from omnidrop.schemas.oauth_schemas import TokenClaims

# It's recommended to create a CryptContext instance once and reuse it.
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

LEGACY_CLIENT_ID = "legacy"
LEGACY_SCOPES = ("tasks:write", "files:write")
# Legacy credentials carry no expiry; the claims cover one request.
LEGACY_CLAIMS_LIFETIME = timedelta(seconds=60)

Clock = Callable[[], datetime]


def generate_client_secret(n_bytes: int = 32) -> str:
    """
    Generates a cryptographically strong URL-safe text string for client secrets.
    Default length is 32 bytes, resulting in a ~43 character string.
    """
    return secrets.token_urlsafe(n_bytes)


def hash_secret(secret: str) -> str:
    return pwd_context.hash(secret)


def verify_client_secret(plain_secret: str, hashed_secret: str) -> bool:
    """
    Verifies a plain secret against a hashed secret.
    Returns True if the secret matches, False otherwise.
    """
    return pwd_context.verify(plain_secret, hashed_secret)


def burn_verification_time() -> None:
    """Spend as long as a real verification would, for unknown or disabled clients."""
    pwd_context.dummy_verify()


def match_scope(granted: str, required: str) -> bool:
    """
    `*` grants everything, `prefix:*` grants every scope under `prefix:`,
    anything else must match exactly.
    """
    if granted == "*" or granted == required:
        return True
    if granted.endswith(":*"):
        return required.startswith(granted[:-1])
    return False


def has_scopes(granted: Iterable[str], required: Iterable[str]) -> bool:
    granted = list(granted)
    return all(any(match_scope(g, r) for g in granted) for r in required)


def legacy_claims(now: Optional[datetime] = None) -> TokenClaims:
    now = now or datetime.now(timezone.utc)
    return TokenClaims(
        client_id=LEGACY_CLIENT_ID,
        scopes=list(LEGACY_SCOPES),
        subject=LEGACY_CLIENT_ID,
        issued_at=now,
        expires_at=now + LEGACY_CLAIMS_LIFETIME,
    )


class TokenValidationError(Exception):
    """Base class for bearer token rejections."""

    # Value of the `result` label on the validation counter.
    result = "invalid"


class MalformedTokenError(TokenValidationError):
    pass


class BadSignatureError(TokenValidationError):
    pass


class TokenExpiredError(TokenValidationError):
    result = "expired"


class BadIssuerError(TokenValidationError):
    pass


class TokenManager:
    """Issues and validates HS256 access tokens."""

    def __init__(
        self,
        secret: str,
        issuer: str = "omnidrop",
        algorithm: str = "HS256",
        clock: Optional[Clock] = None,
    ):
        self._secret = secret
        self.issuer = issuer
        self.algorithm = algorithm
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def issue(self, client: OAuthClient, ttl: timedelta) -> str:
        issued_at = int(self._clock().timestamp())
        to_encode: Dict[str, Any] = {
            "iss": self.issuer,
            "sub": client.client_id,
            "client_id": client.client_id,
            "scopes": list(client.scopes),
            "iat": issued_at,
            "exp": issued_at + int(ttl.total_seconds()),
            "jti": secrets.token_hex(16),
        }
        return jwt.encode(to_encode, self._secret, algorithm=self.algorithm)

    def validate(self, token: str) -> TokenClaims:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as e:
            raise MalformedTokenError(f"malformed token: {e}") from e
        if header.get("alg") != self.algorithm:
            raise BadSignatureError(f"unexpected signing algorithm {header.get('alg')!r}")

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={
                    "verify_signature": True,
                    "verify_iss": True,
                    "verify_aud": False,
                    # Expiry is checked below against the injected clock.
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                },
            )
        except JWTClaimsError as e:
            raise BadIssuerError(f"invalid token claims: {e}") from e
        except JWTError as e:
            raise BadSignatureError(f"invalid token: {e}") from e

        client_id = payload.get("client_id")
        scopes = payload.get("scopes", [])
        issued_at = payload.get("iat")
        expires_at = payload.get("exp")
        if not isinstance(client_id, str) or not client_id:
            raise MalformedTokenError("token has no client_id")
        if not isinstance(scopes, list) or not all(isinstance(s, str) for s in scopes):
            raise MalformedTokenError("token scopes must be a list of strings")
        if not _is_number(issued_at) or not _is_number(expires_at):
            raise MalformedTokenError("token has no iat/exp")
        if expires_at <= issued_at:
            raise MalformedTokenError("token expires before it was issued")

        if self._clock().timestamp() >= expires_at:
            raise TokenExpiredError("token has expired")

        return TokenClaims(
            client_id=client_id,
            scopes=scopes,
            issuer=payload.get("iss", ""),
            subject=payload.get("sub", ""),
            issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
            token_id=payload.get("jti", ""),
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)

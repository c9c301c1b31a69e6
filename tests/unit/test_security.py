"""
Unit tests for secret hashing, scope matching and the token manager.
"""
from datetime import timedelta

import pytest
from jose import jwt

from omnidrop.models.oauth_client import OAuthClient
from omnidrop.security import (
    BadIssuerError,
    BadSignatureError,
    MalformedTokenError,
    TokenExpiredError,
    TokenManager,
    generate_client_secret,
    has_scopes,
    hash_secret,
    legacy_claims,
    match_scope,
    verify_client_secret,
)
from tests.fixtures.helpers import TEST_JWT_SECRET, FixedClock, fast_hash


def make_client(client_id="svc-a", scopes=("tasks:write",)) -> OAuthClient:
    return OAuthClient(
        client_id=client_id,
        name=client_id,
        client_secret_hash=fast_hash("irrelevant"),
        scopes=list(scopes),
    )


class TestClientSecretSecurity:
    """Tests for client secret generation and verification."""

    def test_generate_client_secret(self):
        secret = generate_client_secret()

        assert isinstance(secret, str)
        assert len(secret) > 30
        assert secret != generate_client_secret()

    def test_hash_secret_is_secure(self):
        """Test that secret hashing produces bcrypt hashes, not plaintext."""
        hashed = hash_secret("SecureSecret123")

        assert hashed != "SecureSecret123"
        assert hashed.startswith("$2")

    def test_verify_client_secret(self):
        hashed = fast_hash("SecureSecret123")

        assert verify_client_secret("SecureSecret123", hashed) is True
        assert verify_client_secret("WrongSecret456", hashed) is False


class TestScopeMatching:
    @pytest.mark.parametrize(
        "granted, required, expected",
        [
            ("tasks:write", "tasks:write", True),
            ("tasks:write", "tasks:read", False),
            ("tasks:write", "files:write", False),
            ("tasks:*", "tasks:write", True),
            ("tasks:*", "tasks:read", True),
            ("tasks:*", "files:write", False),
            ("tasks:*", "tasksx:write", False),
            ("*", "tasks:write", True),
            ("*", "anything", True),
            ("tasks", "tasks:write", False),
            ("", "tasks:write", False),
        ],
    )
    def test_match_scope(self, granted, required, expected):
        """Test exact, prefix wildcard and global wildcard matching."""
        assert match_scope(granted, required) is expected

    @pytest.mark.parametrize(
        "granted, required, expected",
        [
            (["tasks:write"], ["tasks:write"], True),
            (["tasks:write"], ["tasks:write", "files:write"], False),
            (["tasks:write", "files:*"], ["tasks:write", "files:write"], True),
            (["*"], ["tasks:write", "files:write"], True),
            ([], ["tasks:write"], False),
            ([], [], True),
            (["files:write"], ["tasks:write"], False),
        ],
    )
    def test_has_scopes(self, granted, required, expected):
        """Test that every required scope needs some matching granted scope."""
        assert has_scopes(granted, required) is expected

    def test_legacy_claims(self):
        claims = legacy_claims()

        assert claims.client_id == "legacy"
        assert claims.scopes == ["tasks:write", "files:write"]
        assert claims.expires_at > claims.issued_at


class TestTokenManager:
    def setup_method(self):
        self.clock = FixedClock()
        self.manager = TokenManager(TEST_JWT_SECRET, clock=self.clock)

    def test_issue_contains_required_claims(self):
        """Test that issued tokens carry identity, scopes and a random jti."""
        token = self.manager.issue(make_client(scopes=["tasks:write", "files:*"]), timedelta(hours=1))

        payload = jwt.get_unverified_claims(token)
        assert token.count(".") == 2
        assert jwt.get_unverified_header(token)["alg"] == "HS256"
        assert payload["iss"] == "omnidrop"
        assert payload["sub"] == "svc-a"
        assert payload["client_id"] == "svc-a"
        assert payload["scopes"] == ["tasks:write", "files:*"]
        assert payload["exp"] - payload["iat"] == 3600
        assert len(payload["jti"]) == 32
        int(payload["jti"], 16)

    def test_jti_is_unique(self):
        client = make_client()
        first = jwt.get_unverified_claims(self.manager.issue(client, timedelta(hours=1)))
        second = jwt.get_unverified_claims(self.manager.issue(client, timedelta(hours=1)))

        assert first["jti"] != second["jti"]

    @pytest.mark.parametrize("elapsed", [0, 1, 1800, 3599])
    def test_validate_within_lifetime(self, elapsed):
        """Test that a token validates anywhere in [iat, exp)."""
        token = self.manager.issue(make_client(scopes=["files:write"]), timedelta(hours=1))
        self.clock.advance(seconds=elapsed)

        claims = self.manager.validate(token)

        assert claims.client_id == "svc-a"
        assert claims.scopes == ["files:write"]
        assert claims.issuer == "omnidrop"
        assert claims.subject == "svc-a"
        assert claims.expires_at > claims.issued_at

    @pytest.mark.parametrize("elapsed", [3600, 3601, 86400])
    def test_validate_expired(self, elapsed):
        """Test that a token is expired at exp and after."""
        token = self.manager.issue(make_client(), timedelta(hours=1))
        self.clock.advance(seconds=elapsed)

        with pytest.raises(TokenExpiredError):
            self.manager.validate(token)

    def test_expired_error_result_label(self):
        assert TokenExpiredError.result == "expired"
        assert BadSignatureError.result == "invalid"

    def test_wrong_secret(self):
        other = TokenManager("another-signing-secret-which-is-long-enough!!", clock=self.clock)
        token = other.issue(make_client(), timedelta(hours=1))

        with pytest.raises(BadSignatureError):
            self.manager.validate(token)

    def test_tampered_payload(self):
        token = self.manager.issue(make_client(scopes=["tasks:write"]), timedelta(hours=1))
        header, _, signature = token.split(".")
        forged_payload = jwt.encode({"client_id": "svc-a", "scopes": ["*"]}, "x").split(".")[1]

        with pytest.raises(BadSignatureError):
            self.manager.validate(f"{header}.{forged_payload}.{signature}")

    def test_wrong_issuer(self):
        other = TokenManager(TEST_JWT_SECRET, issuer="someone-else", clock=self.clock)
        token = other.issue(make_client(), timedelta(hours=1))

        with pytest.raises(BadIssuerError):
            self.manager.validate(token)

    @pytest.mark.parametrize("token", ["", "not-a-token", "a.b", "legacy-shared-token"])
    def test_malformed(self, token):
        with pytest.raises(MalformedTokenError):
            self.manager.validate(token)

    def test_missing_client_id_is_malformed(self):
        now = int(self.clock().timestamp())
        token = jwt.encode(
            {"iss": "omnidrop", "sub": "x", "iat": now, "exp": now + 60},
            TEST_JWT_SECRET,
            algorithm="HS256",
        )

        with pytest.raises(MalformedTokenError):
            self.manager.validate(token)

    def test_other_algorithm_rejected(self):
        now = int(self.clock().timestamp())
        token = jwt.encode(
            {"iss": "omnidrop", "client_id": "svc-a", "iat": now, "exp": now + 60},
            TEST_JWT_SECRET,
            algorithm="HS512",
        )

        with pytest.raises(BadSignatureError):
            self.manager.validate(token)

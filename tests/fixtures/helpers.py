"""
Helpers shared by unit and integration tests: settings, registry files,
fake task bridge executors and a controllable clock.
"""
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import yaml
from passlib.hash import bcrypt

from omnidrop.config import Settings

TEST_JWT_SECRET = "test-signing-secret-that-is-long-enough-0123456789"
TEST_LEGACY_TOKEN = "legacy-shared-token"
TEST_PORT = 8788

# Cheap bcrypt rounds; verification through pwd_context works for any cost.
_fast_bcrypt = bcrypt.using(rounds=4)


def fast_hash(secret: str) -> str:
    return _fast_bcrypt.hash(secret)


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    """Build Settings for tests without reading .env or the real script location."""
    script = tmp_path / "bridge.applescript"
    if not script.exists():
        script.write_text('return "success"\n')
    values: Dict[str, Any] = {
        "PORT": TEST_PORT,
        "OMNIDROP_ENV": "test",
        "OMNIDROP_JWT_SECRET": TEST_JWT_SECRET,
        "OMNIDROP_TOKEN_EXPIRY": "24h",
        "OMNIDROP_FILES_DIR": str(tmp_path / "files"),
        "OMNIDROP_OAUTH_CLIENTS_FILE": str(tmp_path / "oauth-clients.yaml"),
        "OMNIDROP_SCRIPT": str(script),
        "OMNIDROP_LEGACY_AUTH_ENABLED": "false",
        "TOKEN": "",
        "LOG_LEVEL": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def client_entry(
    client_id: str,
    secret: str,
    scopes: Sequence[str],
    name: Optional[str] = None,
    disabled: bool = False,
) -> Dict[str, Any]:
    return {
        "client_id": client_id,
        "name": name or client_id,
        "client_secret_hash": fast_hash(secret),
        "scopes": list(scopes),
        "created_at": "2025-01-01T00:00:00Z",
        "disabled": disabled,
    }


def write_registry(path: Path, entries: Iterable[Dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump({"clients": list(entries)}, sort_keys=False))


class FakeExecutor:
    """Stands in for osascript; records every argument list it receives."""

    def __init__(self, output: str = "success", error: Optional[Exception] = None):
        self.output = output
        self.error = error
        self.calls: List[List[str]] = []
        self.scripts: List[Path] = []

    async def run(self, script: Path, args: Sequence[str], timeout: float) -> str:
        self.scripts.append(script)
        self.calls.append(list(args))
        if self.error is not None:
            raise self.error
        return self.output


class FixedClock:
    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)

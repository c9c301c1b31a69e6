import re
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PRODUCTION_PORT = 8787
TEST_PORT_RANGE = (8788, 8799)
MIN_JWT_SECRET_LENGTH = 32
DEFAULT_TOKEN_EXPIRY = timedelta(hours=24)

DATA_DIR = Path("~/.local/share/omnidrop")
PRODUCTION_SCRIPT_PATH = DATA_DIR / "omnidrop.applescript"
DEVELOPMENT_SCRIPT_PATH = Path("omnidrop.applescript")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


class Environment(str, Enum):
    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


class ScriptResolutionError(Exception):
    """Raised when the task bridge script cannot be located."""


def parse_duration(value: str) -> timedelta:
    """
    Parses a duration literal such as "24h", "1h30m", "90s" or "250ms".

    Raises ValueError when the literal is not understood.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return timedelta(0)

    seconds = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            raise ValueError(f"invalid duration {value!r}")
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position == 0 or position != len(text):
        raise ValueError(f"invalid duration {value!r}")

    return timedelta(seconds=sign * seconds)


class Settings(BaseSettings):
    # Server
    PORT: int = Field(PRODUCTION_PORT, alias="PORT")
    ENVIRONMENT: Optional[Environment] = Field(None, alias="OMNIDROP_ENV")
    LOG_LEVEL: Optional[str] = Field(None, alias="LOG_LEVEL")

    # Legacy bearer authentication
    LEGACY_TOKEN: str = Field("", alias="TOKEN")
    LEGACY_AUTH_ENABLED: bool = Field(False, alias="OMNIDROP_LEGACY_AUTH_ENABLED")

    # OAuth / JWT
    JWT_SECRET: Optional[str] = Field(None, alias="OMNIDROP_JWT_SECRET")
    JWT_ISSUER: str = "omnidrop"
    JWT_ALGORITHM: str = "HS256"
    TOKEN_EXPIRY: timedelta = Field(DEFAULT_TOKEN_EXPIRY, alias="OMNIDROP_TOKEN_EXPIRY")
    OAUTH_CLIENTS_FILE: Path = Field(
        DATA_DIR / "oauth-clients.yaml", alias="OMNIDROP_OAUTH_CLIENTS_FILE"
    )

    # Task bridge and file drops
    SCRIPT_PATH: Optional[Path] = Field(None, alias="OMNIDROP_SCRIPT")
    FILES_DIR: Path = Field(DATA_DIR / "files", alias="OMNIDROP_FILES_DIR")

    @field_validator("ENVIRONMENT", "JWT_SECRET", "SCRIPT_PATH", "LOG_LEVEL", mode="before")
    @classmethod
    def empty_as_unset(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("ENVIRONMENT", mode="before")
    @classmethod
    def unknown_environment_as_unset(cls, v: Any) -> Any:
        if isinstance(v, str) and v not in {env.value for env in Environment}:
            return None
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        level = v.strip().lower()
        if level == "warning":
            level = "warn"
        return level if level in ("debug", "info", "warn", "error") else None

    @field_validator("LEGACY_AUTH_ENABLED", mode="before")
    @classmethod
    def parse_legacy_flag(cls, v: Any) -> bool:
        # Only the literal "true" turns the legacy path on.
        if isinstance(v, bool):
            return v
        return str(v).strip() == "true"

    @field_validator("TOKEN_EXPIRY", mode="before")
    @classmethod
    def parse_token_expiry(cls, v: Any) -> Any:
        if isinstance(v, timedelta):
            expiry = v
        else:
            try:
                expiry = parse_duration(str(v))
            except ValueError:
                return DEFAULT_TOKEN_EXPIRY
        return expiry if expiry > timedelta(0) else DEFAULT_TOKEN_EXPIRY

    @field_validator("OAUTH_CLIENTS_FILE", "FILES_DIR", "SCRIPT_PATH")
    @classmethod
    def expand_home(cls, v: Optional[Path]) -> Optional[Path]:
        return v.expanduser() if v is not None else None

    @model_validator(mode="after")
    def check_invariants(self) -> "Settings":
        if self.LEGACY_AUTH_ENABLED and not self.LEGACY_TOKEN:
            raise ValueError(
                "TOKEN is required when OMNIDROP_LEGACY_AUTH_ENABLED is true"
            )

        if self.JWT_SECRET is not None and len(self.JWT_SECRET.encode()) < MIN_JWT_SECRET_LENGTH:
            raise ValueError(
                f"OMNIDROP_JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} bytes"
            )
        if not self.LEGACY_AUTH_ENABLED and self.JWT_SECRET is None:
            raise ValueError(
                "OMNIDROP_JWT_SECRET is required when legacy authentication is disabled"
            )

        if self.PORT == PRODUCTION_PORT and not self.is_production():
            raise ValueError(
                f"port {PRODUCTION_PORT} is reserved for OMNIDROP_ENV=production "
                f"(current: {self.environment_label!r})"
            )
        if self.is_testing():
            low, high = TEST_PORT_RANGE
            if not low <= self.PORT <= high:
                raise ValueError(
                    f"OMNIDROP_ENV=test requires a port between {low} and {high}, got {self.PORT}"
                )

        if not self.is_production() and self.SCRIPT_PATH is not None:
            if _same_path(self.SCRIPT_PATH, PRODUCTION_SCRIPT_PATH.expanduser()):
                raise ValueError(
                    "OMNIDROP_SCRIPT must not point at the production script "
                    "outside OMNIDROP_ENV=production"
                )
        return self

    @property
    def environment_label(self) -> str:
        return self.ENVIRONMENT.value if self.ENVIRONMENT else ""

    @property
    def jwt_enabled(self) -> bool:
        return self.JWT_SECRET is not None

    @property
    def token_expiry_seconds(self) -> int:
        return int(self.TOKEN_EXPIRY.total_seconds())

    def is_production(self) -> bool:
        return self.ENVIRONMENT == Environment.PRODUCTION

    def is_development(self) -> bool:
        return self.ENVIRONMENT == Environment.DEVELOPMENT

    def is_testing(self) -> bool:
        return self.ENVIRONMENT == Environment.TEST

    def resolve_script_path(self) -> Path:
        """
        Locates the task bridge script for the current environment.

        OMNIDROP_SCRIPT always wins. Otherwise production uses the installed
        copy, development uses the working directory copy, test demands an
        explicit override and an unset environment takes whichever exists.
        """
        production_path = PRODUCTION_SCRIPT_PATH.expanduser()

        if self.SCRIPT_PATH is not None:
            candidates = [self.SCRIPT_PATH]
        elif self.is_production():
            candidates = [production_path]
        elif self.is_development():
            candidates = [DEVELOPMENT_SCRIPT_PATH.absolute()]
        elif self.is_testing():
            raise ScriptResolutionError(
                "OMNIDROP_SCRIPT must be set when OMNIDROP_ENV=test"
            )
        else:
            candidates = [DEVELOPMENT_SCRIPT_PATH.absolute(), production_path]

        for candidate in candidates:
            if candidate.is_file():
                return candidate

        searched = ", ".join(str(c) for c in candidates)
        raise ScriptResolutionError(f"AppleScript file not found (searched: {searched})")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )


def _same_path(a: Path, b: Path) -> bool:
    return a.expanduser().resolve(strict=False) == b.resolve(strict=False)

import hashlib
import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load .env for local development (no-op if the file doesn't exist or in prod
# where vars are injected directly into the environment by the platform).
load_dotenv()

# Runtime environment: "development" | "production"
APP_ENV: str = os.getenv("APP_ENV", "development")

IS_PROD: bool = APP_ENV == "production"

# Used for signing session cookies. Must be set to a strong random value in
# production (e.g. `python -c "import secrets; print(secrets.token_hex(32))"`)
SECRET_KEY: str = os.getenv("SECRET_KEY", "change-me-in-production")

DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./data/kidscode.db")

# ── CSRF ──────────────────────────────────────────────────────────────────────

# HMAC key for CSRF tokens. Required in production; derived from SECRET_KEY
# in development so a fresh checkout works without any .env file.
CSRF_SECRET: str = os.getenv("CSRF_SECRET", "")

CSRF_COOKIE_NAME: str = os.getenv("CSRF_COOKIE_NAME", "csrf-token")
CSRF_HEADER_NAME: str = os.getenv("CSRF_HEADER_NAME", "x-csrf-token")
CSRF_FORM_FIELD = "csrf_token"

CSRF_MAX_AGE_MS: int = int(os.getenv("CSRF_MAX_AGE_MS", str(60 * 60 * 1000)))  # 1 hour
CSRF_REFRESH_BUFFER_MS: int = int(os.getenv("CSRF_REFRESH_BUFFER_MS", str(5 * 60 * 1000)))
CSRF_TOKEN_BYTES: int = int(os.getenv("CSRF_TOKEN_BYTES", "32"))

_MIN_TOKEN_BYTES = 16


class ConfigError(ValueError):
    """Operator-level misconfiguration, raised at startup."""


@dataclass(frozen=True)
class CSRFConfig:
    secret: bytes
    cookie_name: str = CSRF_COOKIE_NAME
    header_name: str = CSRF_HEADER_NAME
    max_age_millis: int = CSRF_MAX_AGE_MS
    refresh_buffer_millis: int = CSRF_REFRESH_BUFFER_MS
    token_byte_length: int = CSRF_TOKEN_BYTES
    secure_cookie: bool = IS_PROD

    def __post_init__(self) -> None:
        if self.token_byte_length < _MIN_TOKEN_BYTES:
            raise ConfigError(
                f"token_byte_length must be at least {_MIN_TOKEN_BYTES}, got {self.token_byte_length}"
            )
        if self.max_age_millis < 1000:
            # the cookie Max-Age is whole seconds; 0 would delete it on arrival
            raise ConfigError("max_age_millis must be at least 1000")
        if not 0 <= self.refresh_buffer_millis < self.max_age_millis:
            raise ConfigError("refresh_buffer_millis must be in [0, max_age_millis)")

    @property
    def max_age_seconds(self) -> int:
        return self.max_age_millis // 1000


def load_csrf_config() -> CSRFConfig:
    """Build the CSRF configuration from the environment.

    Raises ConfigError in production when CSRF_SECRET is unset.
    """
    if CSRF_SECRET:
        secret = CSRF_SECRET.encode()
    elif IS_PROD:
        raise ConfigError("CSRF_SECRET must be set when APP_ENV=production")
    else:
        secret = hashlib.sha256(f"{SECRET_KEY}:csrf".encode()).hexdigest().encode()
    return CSRFConfig(secret=secret)

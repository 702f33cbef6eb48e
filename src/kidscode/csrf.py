"""
CSRF protection for KidsCode.

Strategy: stateless signed tokens sent in a header (double channel).
  - GET/POST /api/csrf mints a token and returns it both in the JSON body
    and in a JavaScript-readable ``csrf-token`` cookie (SameSite=Strict).
  - Clients copy the token into the ``x-csrf-token`` header on every
    POST/PUT/PATCH/DELETE. Form submissions that cannot set headers send
    it as the ``csrf_token`` form field instead.
  - The require_csrf FastAPI dependency validates the token on every
    state-changing request; GET/HEAD/OPTIONS pass through untouched.

Token wire format::

    <random hex>.<issued-at ms>.<hex HMAC-SHA256(secret, "<random hex>.<issued-at ms>")>

There is no server-side registry of issued tokens. A token is valid as long
as its signature checks out and it is younger than ``max_age_millis``.
Parsing and validation never raise on client input; they return sentinel
values instead.
"""

import enum
import hashlib
import hmac
import logging
import secrets
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import NamedTuple

from fastapi import Depends, Request

from src.kidscode.config import CSRF_FORM_FIELD, CSRFConfig, load_csrf_config

logger = logging.getLogger(__name__)

_SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")
_MAX_TIMESTAMP_DIGITS = 15


@lru_cache(maxsize=1)
def get_csrf_config() -> CSRFConfig:
    """Process-wide CSRF config. FastAPI dependency; override it in tests."""
    return load_csrf_config()


def _now_millis() -> int:
    """Current wall-clock time in ms. Monkeypatchable in tests."""
    return time.time_ns() // 1_000_000


def _prefix(token: str) -> str:
    return token[:8] + "..."


# ── Codec ─────────────────────────────────────────────────────────────────────


class TokenIssuanceError(RuntimeError):
    """The server could not generate or sign a token."""


class ParsedToken(NamedTuple):
    random_value: str
    timestamp: str
    signature: str

    @property
    def issued_at_millis(self) -> int:
        return int(self.timestamp)


def _sign(secret: bytes, random_value: str, timestamp: str) -> str:
    payload = f"{random_value}.{timestamp}".encode()
    return hmac.new(secret, payload, hashlib.sha256).hexdigest()


def issue_token(config: CSRFConfig, now_ms: int | None = None) -> str:
    """Return a fresh serialized CSRF token.

    Raises TokenIssuanceError when the secret is missing or the random
    source / HMAC fails. No partial token is ever returned.
    """
    if not config.secret:
        raise TokenIssuanceError("CSRF secret is not configured")
    try:
        random_value = secrets.token_bytes(config.token_byte_length).hex()
        timestamp = str(_now_millis() if now_ms is None else now_ms)
        signature = _sign(config.secret, random_value, timestamp)
    except (OSError, TypeError, ValueError) as exc:
        raise TokenIssuanceError(f"could not generate CSRF token: {exc}") from exc

    logger.debug("csrf_token_issued token=%s issued_at=%s", _prefix(random_value), timestamp)
    return f"{random_value}.{timestamp}.{signature}"


def parse_token(token: object) -> ParsedToken | None:
    """Split *token* into its three segments, or return None if malformed."""
    if not isinstance(token, str) or not token.isascii():
        return None
    parts = token.split(".")
    if len(parts) != 3:
        return None
    random_value, timestamp, signature = parts
    # int() would also accept "+5", " 5" and "1_000", and refuses strings past
    # 4300 digits; issue_token only ever emits a short run of plain digits.
    if not timestamp.isdigit() or len(timestamp) > _MAX_TIMESTAMP_DIGITS:
        return None
    return ParsedToken(random_value, timestamp, signature)


# ── Validator ─────────────────────────────────────────────────────────────────


class TokenStatus(str, enum.Enum):
    VALID = "valid"
    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"


def check_token(token: object, config: CSRFConfig, now_ms: int | None = None) -> TokenStatus:
    """Classify *token*. The detailed status is for logs only."""
    parsed = parse_token(token)
    if parsed is None:
        return TokenStatus.MALFORMED

    if not config.secret:
        return TokenStatus.BAD_SIGNATURE
    expected = _sign(config.secret, parsed.random_value, parsed.timestamp)
    if not hmac.compare_digest(expected, parsed.signature):
        return TokenStatus.BAD_SIGNATURE

    now = _now_millis() if now_ms is None else now_ms
    if now - parsed.issued_at_millis > config.max_age_millis:
        return TokenStatus.EXPIRED

    return TokenStatus.VALID


def validate_token(token: object, config: CSRFConfig, now_ms: int | None = None) -> bool:
    """True iff *token* is well-formed, correctly signed and not expired."""
    return check_token(token, config, now_ms) is TokenStatus.VALID


# ── Request-boundary enforcement ──────────────────────────────────────────────


class CSRFReason(str, enum.Enum):
    MISSING = "CSRF_MISSING"
    INVALID = "CSRF_INVALID"

    @property
    def message(self) -> str:
        if self is CSRFReason.MISSING:
            return "CSRF token is required"
        return "Invalid CSRF token"


@dataclass(frozen=True)
class CSRFVerdict:
    accepted: bool
    reason: CSRFReason | None = None
    status: TokenStatus | None = None


class CSRFRejected(Exception):
    """Raised by require_csrf; the app turns it into a 403 JSON response."""

    def __init__(self, reason: CSRFReason):
        super().__init__(reason.message)
        self.reason = reason

    @property
    def code(self) -> str:
        return self.reason.value

    @property
    def message(self) -> str:
        return self.reason.message


async def _form_token(request: Request) -> str | None:
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith(_FORM_CONTENT_TYPES):
        return None
    form = await request.form()
    value = form.get(CSRF_FORM_FIELD)
    return value if isinstance(value, str) and value else None


async def extract_token(request: Request, config: CSRFConfig) -> str | None:
    """Return the presented token: header first, then form field, then cookie."""
    return (
        request.headers.get(config.header_name)
        or await _form_token(request)
        or request.cookies.get(config.cookie_name)
        or None
    )


def enforce(token: str | None, config: CSRFConfig, now_ms: int | None = None) -> CSRFVerdict:
    """Turn a presented token (or its absence) into an accept/reject verdict."""
    if not token:
        return CSRFVerdict(accepted=False, reason=CSRFReason.MISSING)
    status = check_token(token, config, now_ms)
    if status is not TokenStatus.VALID:
        return CSRFVerdict(accepted=False, reason=CSRFReason.INVALID, status=status)
    return CSRFVerdict(accepted=True, status=status)


async def require_csrf(
    request: Request,
    config: CSRFConfig = Depends(get_csrf_config),
) -> None:
    """
    FastAPI dependency for state-changing routes.

    Looks for the token in the ``x-csrf-token`` header, then the
    ``csrf_token`` form field, then the ``csrf-token`` cookie, and raises
    CSRFRejected if it is missing or invalid. Safe methods pass through, so
    the dependency can be attached to a whole router.
    """
    if request.method in _SAFE_METHODS:
        return

    token = await extract_token(request, config)
    verdict = enforce(token, config)
    if not verdict.accepted:
        logger.warning(
            "csrf_rejected reason=%s status=%s method=%s path=%s",
            verdict.reason.value,
            verdict.status.value if verdict.status else "none",
            request.method,
            request.url.path,
        )
        raise CSRFRejected(verdict.reason)


def set_csrf_cookie(response, token: str, config: CSRFConfig) -> None:
    """Attach the CSRF cookie. Readable by JavaScript so it can be echoed in a header."""
    response.set_cookie(
        key=config.cookie_name,
        value=token,
        max_age=config.max_age_seconds,
        path="/",
        httponly=False,
        secure=config.secure_cookie,
        samesite="strict",
    )

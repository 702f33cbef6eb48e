"""
Authentication for KidsCode.

Sessions are an itsdangerous-signed ``{"user_id", "role"}`` payload in an
HttpOnly cookie. The signature carries a timestamp, so a session older than
SESSION_MAX_AGE is refused server-side even if the browser kept the cookie.

Role guards (require_student / require_teacher) are plain FastAPI
dependencies built on get_current_user: 401 without a valid session, 403 for
the wrong role.
"""

import threading
import time
from collections import defaultdict, deque

import bcrypt
from fastapi import Cookie, Depends, HTTPException
from itsdangerous import BadSignature, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from src.kidscode.config import IS_PROD, SECRET_KEY
from src.kidscode.database import get_db
from src.kidscode.models import Role, User

SESSION_COOKIE = "session"
SESSION_MAX_AGE = 7 * 24 * 60 * 60  # seconds

_serializer = URLSafeTimedSerializer(SECRET_KEY, salt="kidscode-session")


# ── Passwords ─────────────────────────────────────────────────────────────────


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode(), hashed.encode())


# ── Session cookie ────────────────────────────────────────────────────────────


def create_session_token(user: User) -> str:
    return _serializer.dumps({"user_id": user.id, "role": user.role.value})


def decode_session_token(token: str) -> dict | None:
    """Return the session payload, or None if tampered with or too old."""
    try:
        return _serializer.loads(token, max_age=SESSION_MAX_AGE)
    except BadSignature:  # SignatureExpired is a subclass
        return None


def start_session(response, user: User) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=create_session_token(user),
        max_age=SESSION_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=IS_PROD,
    )


def end_session(response) -> None:
    response.delete_cookie(key=SESSION_COOKIE, httponly=True, samesite="lax", secure=IS_PROD)


# ── Dependencies ──────────────────────────────────────────────────────────────


def get_current_user(
    session: str | None = Cookie(default=None, alias=SESSION_COOKIE),
    db: Session = Depends(get_db),
) -> User:
    """Return the signed-in User or raise 401."""
    data = decode_session_token(session) if session else None
    user = db.get(User, data["user_id"]) if data else None
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def _role_guard(role: Role):
    def guard(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role != role:
            raise HTTPException(
                status_code=403, detail=f"{role.value.capitalize()} access required"
            )
        return current_user

    guard.__name__ = f"require_{role.value}"
    return guard


require_student = _role_guard(Role.student)
require_teacher = _role_guard(Role.teacher)


# ── Login throttling ──────────────────────────────────────────────────────────

LOGIN_WINDOW_SECONDS = 60.0
LOGIN_MAX_ATTEMPTS = 5

_attempts: defaultdict[str, deque[float]] = defaultdict(deque)
_attempts_lock = threading.Lock()


def check_login_rate_limit(ip: str) -> None:
    """Record a login attempt from *ip*; raise 429 past LOGIN_MAX_ATTEMPTS per window."""
    now = time.monotonic()
    with _attempts_lock:
        window = _attempts[ip]
        while window and now - window[0] >= LOGIN_WINDOW_SECONDS:
            window.popleft()
        window.append(now)
        too_many = len(window) > LOGIN_MAX_ATTEMPTS
    if too_many:
        raise HTTPException(
            status_code=429, detail="Too many login attempts. Please wait a minute."
        )


def _reset_rate_limits() -> None:
    with _attempts_lock:
        _attempts.clear()

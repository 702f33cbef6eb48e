"""
Auth routes for KidsCode.

API (JSON):
    POST /api/auth/register – create account, set session cookie
    POST /api/auth/login    – authenticate, set session cookie
    POST /api/auth/logout   – clear session cookie            (CSRF-protected)
    GET  /api/me            – return current user

Register and login run before the browser holds a session, so they are not
CSRF-protected. Logout changes session state and requires a token.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.kidscode.auth import (
    check_login_rate_limit,
    end_session,
    get_current_user,
    hash_password,
    start_session,
    verify_password,
)
from src.kidscode.csrf import require_csrf
from src.kidscode.database import get_db
from src.kidscode.models import Role, User

router = APIRouter()
logger = logging.getLogger(__name__)


# ── Pydantic request schemas ──────────────────────────────────────────────────


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _email_normalise(cls, v: str) -> str:
        return v.strip().lower()


class RegisterRequest(LoginRequest):
    password: str = Field(min_length=8)
    name: str
    role: Role = Role.student
    student_number: str | None = None

    @field_validator("name")
    @classmethod
    def _name_present(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be empty")
        return v


def _user_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role.value,
        "student_number": user.student_number,
    }


# ── API endpoints ──────────────────────────────────────────────────────────────


@router.post("/api/auth/register", status_code=201)
def api_register(
    body: RegisterRequest,
    response: Response,
    db: Session = Depends(get_db),
) -> dict:
    """Create a new account and return a signed session cookie."""
    existing = db.query(User).filter(User.email == body.email).first()
    if existing:
        raise HTTPException(status_code=409, detail="Email already registered")

    user = User(
        email=body.email,
        name=body.name,
        password_hash=hash_password(body.password),
        role=body.role,
        student_number=body.student_number if body.role is Role.student else None,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Email already registered")
    db.refresh(user)

    logger.info("auth_register user_id=%d role=%s", user.id, user.role.value)
    start_session(response, user)
    return {"success": True, "message": "Registration successful", "user": _user_dict(user)}


@router.post("/api/auth/login")
def api_login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> dict:
    """Authenticate and return a signed session cookie."""
    client_ip = request.client.host if request.client else "unknown"
    check_login_rate_limit(client_ip)

    user = db.query(User).filter(User.email == body.email).first()
    if not user or not verify_password(body.password, user.password_hash):
        logger.warning("auth_login_failure email=%s ip=%s", body.email, client_ip)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    logger.info(
        "auth_login_success user_id=%d email=%s role=%s",
        user.id, user.email, user.role.value,
    )
    start_session(response, user)
    return {"success": True, "user": _user_dict(user)}


@router.post("/api/auth/logout", dependencies=[Depends(require_csrf)])
def api_logout(response: Response) -> dict:
    end_session(response)
    return {"success": True}


@router.get("/api/me")
def api_me(current_user: User = Depends(get_current_user)) -> dict:
    """Return the currently authenticated user."""
    return _user_dict(current_user)

"""
Server-rendered pages.

    GET /               – landing page
    GET /security-demo  – form that posts to /api/csrf-test with the token in
                          a hidden ``csrf_token`` field; also sets the cookie

Every page gets ``signed_in_role(request)`` in its template context so the
nav can show who is signed in without a database hit.
"""

import pathlib

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from src.kidscode.auth import SESSION_COOKIE, decode_session_token
from src.kidscode.config import CSRF_FORM_FIELD, CSRFConfig
from src.kidscode.csrf import get_csrf_config, issue_token, set_csrf_cookie

router = APIRouter()

templates = Jinja2Templates(directory=str(pathlib.Path(__file__).parent.parent / "templates"))


def signed_in_role(request: Request) -> str | None:
    """'student', 'teacher', or None, read from the signed session cookie."""
    session = request.cookies.get(SESSION_COOKIE)
    data = decode_session_token(session) if session else None
    return data.get("role") if data else None


templates.env.globals["signed_in_role"] = signed_in_role


@router.get("/", response_class=HTMLResponse)
def landing(request: Request):
    return templates.TemplateResponse(request, "index.html")


@router.get("/security-demo", response_class=HTMLResponse)
def security_demo(request: Request, config: CSRFConfig = Depends(get_csrf_config)):
    token = issue_token(config)
    response = templates.TemplateResponse(
        request,
        "security_demo.html",
        {
            "csrf_token": token,
            "csrf_field": CSRF_FORM_FIELD,
            "csrf_header": config.header_name,
        },
    )
    set_csrf_cookie(response, token, config)
    return response

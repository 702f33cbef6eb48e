"""
CSRF token routes.

    GET  /api/csrf       – mint a token; body + cookie
    POST /api/csrf       – alias of GET, used by clients to refresh
    GET  /api/csrf-test  – always succeeds (safe method, no token needed)
    POST /api/csrf-test  – succeeds only with a valid token; lets the client
                           check its setup without touching real data
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.kidscode.config import CSRFConfig
from src.kidscode.csrf import (
    TokenIssuanceError,
    get_csrf_config,
    issue_token,
    require_csrf,
    set_csrf_cookie,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _issue_response(config: CSRFConfig) -> JSONResponse:
    try:
        token = issue_token(config)
    except TokenIssuanceError:
        logger.exception("csrf_issue_failure")
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Failed to generate CSRF token"},
        )

    response = JSONResponse(
        content={
            "success": True,
            "csrfToken": token,
            "message": "CSRF token generated successfully",
        },
        headers={"Cache-Control": "no-store"},
    )
    set_csrf_cookie(response, token, config)
    logger.info("csrf_token_provided token=%s...", token[:8])
    return response


@router.get("/api/csrf")
def get_csrf_token(config: CSRFConfig = Depends(get_csrf_config)) -> JSONResponse:
    return _issue_response(config)


@router.post("/api/csrf")
def refresh_csrf_token(config: CSRFConfig = Depends(get_csrf_config)) -> JSONResponse:
    return _issue_response(config)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/api/csrf-test")
def csrf_test_get() -> dict:
    return {
        "success": True,
        "message": "GET request successful (no CSRF needed)",
        "test": "passed",
        "timestamp": _now_iso(),
    }


@router.post("/api/csrf-test", dependencies=[Depends(require_csrf)])
def csrf_test_post() -> dict:
    logger.info("csrf_test_passed")
    return {
        "success": True,
        "message": "CSRF protection working correctly",
        "test": "passed",
        "timestamp": _now_iso(),
    }

"""
Structured logging and the catch-all error handler.

Covers:
- auth_login_success / auth_login_failure log events
- submission_created / submission_reviewed log events
- csrf_issue_failure is logged when a token cannot be generated
- Unhandled exceptions return {"error": {"code": ..., "message": ...}} JSON (not stack trace)
"""

import logging

from fastapi.testclient import TestClient

from src.kidscode.config import CSRFConfig
from src.kidscode.csrf import get_csrf_config
from src.kidscode.database import get_db
from src.kidscode.main import app


# ── Helpers ───────────────────────────────────────────────────────────────────


def _register(client, email, role="student"):
    client.post(
        "/api/auth/register",
        json={"email": email, "password": "pass12345", "name": "Log Test", "role": role},
    )


def _login(client, email, password):
    client.post("/api/auth/login", json={"email": email, "password": password})


def _token(client) -> str:
    return client.get("/api/csrf").json()["csrfToken"]


# ── Login logging ─────────────────────────────────────────────────────────────


def test_login_success_is_logged_with_email(client, caplog):
    _register(client, "user@example.com")
    client.cookies.clear()

    with caplog.at_level(logging.INFO, logger="src.kidscode.routers.auth"):
        _login(client, "user@example.com", "pass12345")

    messages = " ".join(r.message for r in caplog.records)
    assert "auth_login_success" in messages
    assert "user@example.com" in messages


def test_login_failure_is_logged_with_email(client, caplog):
    with caplog.at_level(logging.WARNING, logger="src.kidscode.routers.auth"):
        r = client.post(
            "/api/auth/login",
            json={"email": "missing@example.com", "password": "wrongpass"},
        )

    assert r.status_code == 401
    messages = " ".join(r.message for r in caplog.records)
    assert "auth_login_failure" in messages
    assert "missing@example.com" in messages


# ── Submission logging ────────────────────────────────────────────────────────


def test_submission_created_is_logged(client, caplog):
    _register(client, "kid@example.com")

    with caplog.at_level(logging.INFO, logger="src.kidscode.routers.submissions"):
        r = client.post(
            "/api/submissions",
            json={"lesson_id": 7, "html_code": "<p>x</p>"},
            headers={"x-csrf-token": _token(client)},
        )

    assert r.status_code == 201
    messages = " ".join(r.message for r in caplog.records)
    assert "submission_created" in messages
    assert f"submission_id={r.json()['submission_id']}" in messages
    assert "lesson_id=7" in messages


def test_submission_review_is_logged(client, caplog):
    _register(client, "kid2@example.com")
    sub_id = client.post(
        "/api/submissions",
        json={"lesson_id": 1},
        headers={"x-csrf-token": _token(client)},
    ).json()["submission_id"]

    client.cookies.clear()
    _register(client, "teach@example.com", role="teacher")
    with caplog.at_level(logging.INFO, logger="src.kidscode.routers.submissions"):
        client.put(
            f"/api/submissions/{sub_id}",
            json={"grade": 88},
            headers={"x-csrf-token": _token(client)},
        )

    messages = " ".join(r.message for r in caplog.records)
    assert "submission_reviewed" in messages
    assert "grade=88" in messages


# ── CSRF issuance logging ─────────────────────────────────────────────────────


def test_issuance_failure_is_logged(client, caplog):
    app.dependency_overrides[get_csrf_config] = lambda: CSRFConfig(secret=b"")

    with caplog.at_level(logging.ERROR, logger="src.kidscode.routers.csrf"):
        r = client.get("/api/csrf")

    assert r.status_code == 500
    assert any("csrf_issue_failure" in rec.message for rec in caplog.records)


# ── Error handler ─────────────────────────────────────────────────────────────


def _crashing_client_post(message):
    def _bad_db():
        raise RuntimeError(message)
        yield  # unreachable, makes this a generator as FastAPI Depends expects

    app.dependency_overrides[get_db] = _bad_db
    try:
        with TestClient(app, raise_server_exceptions=False) as c:
            return c.post(
                "/api/auth/register",
                json={
                    "email": "crash@example.com",
                    "password": "pass12345",
                    "name": "Crash",
                    "role": "student",
                },
            )
    finally:
        app.dependency_overrides.clear()


def test_unhandled_exception_returns_json_500():
    """RuntimeError from a dependency must return clean JSON, not a stack trace."""
    r = _crashing_client_post("Simulated database crash")

    assert r.status_code == 500
    data = r.json()
    assert data["error"]["code"] == "internal_error"
    assert "message" in data["error"]


def test_unhandled_exception_body_has_no_traceback():
    r = _crashing_client_post("Traceback check")

    assert "Traceback" not in r.text
    assert "RuntimeError" not in r.text
    assert "Traceback check" not in r.text


def test_unhandled_exception_keeps_security_headers():
    r = _crashing_client_post("headers check")
    assert r.headers["x-frame-options"] == "DENY"
    assert r.headers["x-content-type-options"] == "nosniff"

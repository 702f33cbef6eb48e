"""
Shared pytest fixtures for KidsCode tests.

Provides:
- db_engine    – in-memory SQLite engine with all tables created
- client       – FastAPI TestClient with get_db overridden to use in-memory DB
- csrf_config  – the CSRF config the app is running with
- csrf_token   – a freshly issued, valid CSRF token
"""

import os

# Keep the app's own engine in memory so tests never create data/kidscode.db.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CSRF_SECRET", "test-csrf-secret")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import src.kidscode.models  # registers all models with Base.metadata  # noqa: E402,F401
from src.kidscode.auth import _reset_rate_limits  # noqa: E402
from src.kidscode.csrf import get_csrf_config, issue_token  # noqa: E402
from src.kidscode.database import Base, get_db  # noqa: E402
from src.kidscode.main import app  # noqa: E402


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Reset the in-memory login-attempt counter before every test."""
    _reset_rate_limits()
    yield


@pytest.fixture()
def db_engine():
    # StaticPool ensures all connections from this engine share the SAME
    # in-memory database (critical for SQLite :memory:).
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture()
def client(session_factory):
    def _override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def csrf_config():
    return get_csrf_config()


@pytest.fixture()
def csrf_token(csrf_config):
    return issue_token(csrf_config)


@pytest.fixture()
def anyio_backend():
    return "asyncio"

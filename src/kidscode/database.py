import pathlib

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from src.kidscode.config import DATABASE_URL

# Ensure the data directory exists when using the default SQLite path so the
# app can create the file without an explicit `mkdir`.
if DATABASE_URL.startswith("sqlite:///"):
    _db_path = pathlib.Path(DATABASE_URL[len("sqlite:///"):])
    _db_path.parent.mkdir(parents=True, exist_ok=True)

engine = create_engine(
    DATABASE_URL,
    # Required for SQLite: allow the same connection across threads
    # (FastAPI may handle a request on a different thread than the one that
    # opened the connection).
    connect_args={"check_same_thread": False},
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Declarative base class shared by all ORM models."""


def get_db():
    """FastAPI dependency: one Session per request, always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

"""
ORM models for KidsCode.

Tables (2):
    User        – students and teachers; role is mutually exclusive
    Submission  – a student's HTML/CSS/JS answer to a lesson, plus the
                  teacher's grade and feedback once reviewed

Lessons are referenced by id only; the lesson catalogue lives outside this
schema.
"""

import enum
from datetime import datetime, timezone


def _utcnow() -> datetime:
    """Return the current UTC time as a naive datetime (timezone info stripped)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.kidscode.database import Base


# ── Enums ─────────────────────────────────────────────────────────────────────


class Role(str, enum.Enum):
    student = "student"
    teacher = "teacher"


# ── Models ────────────────────────────────────────────────────────────────────


class User(Base):
    """Auth identity for both students and teachers."""

    __tablename__ = "user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Role] = mapped_column(Enum(Role), nullable=False, index=True)
    student_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=_utcnow
    )

    submissions: Mapped[list["Submission"]] = relationship(back_populates="student")


class Submission(Base):
    """Code submitted by a student for one lesson."""

    __tablename__ = "submission"
    __table_args__ = (
        Index("ix_submission_lesson_id", "lesson_id"),
        Index("ix_submission_submitted_at", "submitted_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user.id"), nullable=False, index=True
    )
    lesson_id: Mapped[int] = mapped_column(Integer, nullable=False)
    html_code: Mapped[str] = mapped_column(Text, nullable=False, default="")
    css_code: Mapped[str] = mapped_column(Text, nullable=False, default="")
    javascript_code: Mapped[str] = mapped_column(Text, nullable=False, default="")
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=_utcnow
    )

    # Review (all null until a teacher grades the submission)
    grade: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    student: Mapped["User"] = relationship(back_populates="submissions")

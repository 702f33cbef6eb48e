"""
Submission routes for KidsCode.

API (JSON):
    POST /api/submissions          – student submits HTML/CSS/JS for a lesson
    GET  /api/submissions          – every submission, newest first (teacher only)
    GET  /api/submissions/student  – the caller's own submissions (student only)
    PUT  /api/submissions/{id}     – grade + feedback                (teacher only)

Every write on this router goes through require_csrf (attached at router
level; safe methods pass through it untouched).
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy import select
from sqlalchemy.orm import Session

from src.kidscode.auth import require_student, require_teacher
from src.kidscode.csrf import require_csrf
from src.kidscode.database import get_db
from src.kidscode.models import Submission, User

router = APIRouter(prefix="/api/submissions", dependencies=[Depends(require_csrf)])
logger = logging.getLogger(__name__)

_MAX_GRADE = 100


# ── Pydantic request schemas ──────────────────────────────────────────────────


class SubmissionCreate(BaseModel):
    lesson_id: int
    html_code: str = ""
    css_code: str = ""
    javascript_code: str = ""

    @field_validator("lesson_id")
    @classmethod
    def _lesson_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("lesson_id must be a positive integer")
        return v


class SubmissionReview(BaseModel):
    grade: int | None = None
    feedback: str | None = None

    @field_validator("grade")
    @classmethod
    def _grade_range(cls, v: int | None) -> int | None:
        if v is not None and not 0 <= v <= _MAX_GRADE:
            raise ValueError(f"grade must be between 0 and {_MAX_GRADE}")
        return v


def _submission_dict(sub: Submission) -> dict:
    return {
        "id": sub.id,
        "student_id": sub.student_id,
        "student_name": sub.student.name,
        "lesson_id": sub.lesson_id,
        "html_code": sub.html_code,
        "css_code": sub.css_code,
        "javascript_code": sub.javascript_code,
        "submitted_at": sub.submitted_at.isoformat(),
        "grade": sub.grade,
        "feedback": sub.feedback,
        "reviewed_by": sub.reviewed_by,
        "reviewed_at": sub.reviewed_at.isoformat() if sub.reviewed_at else None,
    }


# ── API endpoints ──────────────────────────────────────────────────────────────


@router.post("", status_code=201)
def create_submission(
    body: SubmissionCreate,
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
) -> dict:
    sub = Submission(
        student_id=current_user.id,
        lesson_id=body.lesson_id,
        html_code=body.html_code,
        css_code=body.css_code,
        javascript_code=body.javascript_code,
    )
    db.add(sub)
    db.commit()
    db.refresh(sub)

    logger.info(
        "submission_created submission_id=%d student_id=%d lesson_id=%d",
        sub.id, current_user.id, sub.lesson_id,
    )
    return {
        "success": True,
        "message": "Submission created successfully",
        "submission_id": sub.id,
    }


@router.get("")
def list_submissions(
    current_user: User = Depends(require_teacher),
    db: Session = Depends(get_db),
) -> dict:
    rows = db.scalars(
        select(Submission).order_by(Submission.submitted_at.desc(), Submission.id.desc())
    ).all()
    return {"success": True, "submissions": [_submission_dict(s) for s in rows]}


@router.get("/student")
def list_own_submissions(
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
) -> dict:
    rows = db.scalars(
        select(Submission)
        .where(Submission.student_id == current_user.id)
        .order_by(Submission.submitted_at.desc(), Submission.id.desc())
    ).all()
    return {"success": True, "submissions": [_submission_dict(s) for s in rows]}


@router.put("/{submission_id}")
def review_submission(
    submission_id: int,
    body: SubmissionReview,
    current_user: User = Depends(require_teacher),
    db: Session = Depends(get_db),
) -> dict:
    sub = db.get(Submission, submission_id)
    if sub is None:
        raise HTTPException(status_code=404, detail="Submission not found")

    sub.grade = body.grade
    sub.feedback = body.feedback
    sub.reviewed_by = current_user.name
    sub.reviewed_at = datetime.now(timezone.utc).replace(tzinfo=None)
    db.commit()

    logger.info(
        "submission_reviewed submission_id=%d grade=%s reviewer_id=%d",
        sub.id, sub.grade, current_user.id,
    )
    return {"success": True, "message": "Submission reviewed successfully"}

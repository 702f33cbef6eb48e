"""
Demo seed script: creates one demo teacher and one demo student.

Usage:
    python -m src.kidscode.scripts.seed

Demo credentials:
    Teacher  →  demo.teacher@kidscode.dev  /  Demo1234!
    Student  →  demo.student@kidscode.dev  /  Demo1234!

Idempotency:
    If the teacher demo account already exists the script prints a warning
    and exits without inserting duplicate rows. Safe to run multiple times.
"""

from sqlalchemy.orm import Session

import src.kidscode.models  # registers all models with Base.metadata  # noqa: F401
from src.kidscode.auth import hash_password
from src.kidscode.database import Base, SessionLocal, engine
from src.kidscode.models import Role, User

# ── Demo credentials ──────────────────────────────────────────────────────────

TEACHER_EMAIL = "demo.teacher@kidscode.dev"
STUDENT_EMAIL = "demo.student@kidscode.dev"
DEMO_PASSWORD = "Demo1234!"


# ── Seed logic ────────────────────────────────────────────────────────────────


def run(db: Session) -> bool:
    """Insert demo data. Return True if rows were created, False if already seeded."""
    if db.query(User).filter(User.email == TEACHER_EMAIL).first():
        print(f"[seed] {TEACHER_EMAIL} already exists, skipping.")
        return False

    teacher = User(
        email=TEACHER_EMAIL,
        name="Demo Teacher",
        password_hash=hash_password(DEMO_PASSWORD),
        role=Role.teacher,
    )
    student = User(
        email=STUDENT_EMAIL,
        name="Demo Student",
        password_hash=hash_password(DEMO_PASSWORD),
        role=Role.student,
        student_number="S-0001",
    )
    db.add_all([teacher, student])
    db.commit()

    print("[seed] Demo data created successfully.")
    print(f"  Teacher  →  {TEACHER_EMAIL}  /  {DEMO_PASSWORD}")
    print(f"  Student  →  {STUDENT_EMAIL}  /  {DEMO_PASSWORD}")
    print()
    print("  Start the app:  uvicorn src.kidscode.main:app --reload")
    print("  Then open:      http://127.0.0.1:8000/security-demo")
    return True


def main() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        run(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()

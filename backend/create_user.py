# create_user.py
import os

from classtrack.db import Base, SessionLocal, engine
from classtrack.models import SubmissionType, SubmissionTypeCode, User, UserRole
from classtrack.core.security import get_password_hash

# --- Configuration ---
# Override with environment variables for the account you want to create
USER_NAME = os.getenv("BOOTSTRAP_NAME", "Class Teacher")
USER_EMAIL = os.getenv("BOOTSTRAP_EMAIL", "classteacher@example.com")
USER_PASSWORD = os.getenv("BOOTSTRAP_PASSWORD", "teacher123")
USER_ROLE = os.getenv("BOOTSTRAP_ROLE", UserRole.class_teacher.value)
USER_CLASS_ID = os.getenv("BOOTSTRAP_CLASS_ID")

SUBMISSION_TYPE_NAMES = {
    SubmissionTypeCode.TA: "TA",
    SubmissionTypeCode.CIE: "CIE",
    SubmissionTypeCode.DEFAULTER: "Defaulter work",
}


def seed_submission_types(db):
    """Ensures one submission_types row exists per stable code."""
    existing = {t.code for t in db.query(SubmissionType).all()}
    for code, name in SUBMISSION_TYPE_NAMES.items():
        if code not in existing:
            print(f"Adding submission type '{name}' ({code.value})")
            db.add(SubmissionType(name=name, code=code))
    db.commit()


def create_first_user():
    print("Connecting to the database...")
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    try:
        seed_submission_types(db)

        existing_user = db.query(User).filter(User.email == USER_EMAIL).first()
        if existing_user:
            print(f"User with email '{USER_EMAIL}' already exists. Aborting.")
            return

        print(f"Creating new {USER_ROLE} user...")
        db.add(User(
            name=USER_NAME,
            email=USER_EMAIL,
            hashed_password=get_password_hash(USER_PASSWORD),
            role=UserRole(USER_ROLE),
            class_id=int(USER_CLASS_ID) if USER_CLASS_ID else None,
        ))
        db.commit()

        print(f"User '{USER_EMAIL}' created successfully!")
    finally:
        db.close()


if __name__ == "__main__":
    create_first_user()

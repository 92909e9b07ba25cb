import io
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from classtrack import models
from classtrack.core.security import create_access_token
from classtrack.db import Base
from classtrack.dependencies import get_db
from classtrack.main import app


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user: models.User) -> dict:
        token = create_access_token(data={"sub": user.email})
        return {"Authorization": f"Bearer {token}"}
    return _headers


def build_workbook(header, rows) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    if header:
        sheet.append(header)
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def xlsx():
    return build_workbook


class Factory:
    """Small helpers that insert and commit one row each."""

    def __init__(self, db):
        self.db = db
        self._counter = 0

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    def department(self, name=None):
        return self._save(models.Department(name=name or f"Department {self._next()}"))

    def school_class(self, name="A", year="SY", department=None):
        department = department or self.department()
        return self._save(models.SchoolClass(name=name, year=year, department_id=department.id))

    def user(self, role=models.UserRole.faculty, name=None, email=None, school_class=None,
             hashed_password="not-a-real-hash"):
        n = self._next()
        return self._save(models.User(
            name=name or f"User {n}",
            email=email or f"user{n}@example.com",
            hashed_password=hashed_password,
            role=role,
            class_id=school_class.id if school_class else None,
        ))

    def batch(self, school_class, name="B1", roll_start="1", roll_end="10", faculty=None):
        return self._save(models.Batch(
            name=name,
            roll_start=roll_start,
            roll_end=roll_end,
            faculty_id=faculty.id if faculty else None,
            class_id=school_class.id,
        ))

    def student(self, school_class, roll_no, name=None, defaulter=False, batch=None,
                hall_ticket_number=None, attendance_percent=80.0):
        return self._save(models.Student(
            roll_no=str(roll_no),
            name=name or f"Student {roll_no}",
            hall_ticket_number=hall_ticket_number or f"HT{school_class.id}{roll_no}",
            attendance_percent=attendance_percent,
            defaulter=defaulter,
            class_id=school_class.id,
            batch_id=batch.id if batch else None,
        ))

    def subject(self, name, type="theory", school_class=None, code=None, department_id=None):
        return self._save(models.Subject(
            name=name,
            subject_code=code or f"SUB{self._next()}",
            type=type,
            department_id=department_id or (school_class.department_id if school_class else None),
            class_id=school_class.id if school_class else None,
        ))

    def submission_types(self, codes=tuple(models.SubmissionTypeCode)):
        names = {
            models.SubmissionTypeCode.TA: "TA",
            models.SubmissionTypeCode.CIE: "CIE",
            models.SubmissionTypeCode.DEFAULTER: "Defaulter work",
        }
        return {
            code: self._save(models.SubmissionType(name=names[code], code=code))
            for code in codes
        }

    def submission(self, student, subject, submission_type, status="completed"):
        return self._save(models.StudentSubmission(
            student_id=student.id,
            subject_id=subject.id,
            submission_type_id=submission_type.id,
            status=status,
        ))

    def selection(self, student, locked=False, **slots):
        return self._save(models.ElectiveSelection(
            student_id=student.id, selections_locked=locked, **slots
        ))

    def faculty_subject(self, faculty, subject, school_class, batch=None):
        return self._save(models.FacultySubject(
            faculty_id=faculty.id,
            subject_id=subject.id if subject else None,
            batch_id=batch.id if batch else None,
            class_id=school_class.id,
        ))

    def offering(self, subject, year="SY", faculty_ids=(), department_id=None, is_active=True):
        return self._save(models.DepartmentOfferedSubject(
            subject_id=subject.id,
            department_id=department_id,
            year=year,
            faculty_ids=list(faculty_ids),
            is_active=is_active,
        ))


@pytest.fixture
def factory(db_session):
    return Factory(db_session)

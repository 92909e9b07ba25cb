from sqlalchemy import (
    Column, Integer, String, Enum as SQLAlchemyEnum, ForeignKey,
    Float, DateTime, Boolean, JSON
)
from sqlalchemy.orm import relationship
import enum
from datetime import datetime

from classtrack.db import Base

# --- ENUMS for consistent data types ---

class UserRole(str, enum.Enum):
    class_teacher = "class_teacher"
    faculty = "faculty"
    hod = "hod"
    director = "director"


class SubjectType(str, enum.Enum):
    THEORY = "theory"
    PRACTICAL = "practical"
    MDM = "mdm"
    OE = "oe"
    PE = "pe"


class SubmissionTypeCode(str, enum.Enum):
    """Stable identifiers for the submission categories the aggregator counts."""
    TA = "TA"
    CIE = "CIE"
    DEFAULTER = "DEFAULTER"


# --- Core Academic Structure Models ---

class Department(Base):
    __tablename__ = "departments"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)

    classes = relationship("SchoolClass", back_populates="department")


class SchoolClass(Base):
    """A division within a year; class teachers own exactly one."""
    __tablename__ = "classes"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    year = Column(String, nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)

    department = relationship("Department", back_populates="classes")
    students = relationship("Student", back_populates="school_class")
    batches = relationship("Batch", back_populates="school_class")


class User(Base):
    """Staff account used for authentication (class teachers, faculty, HODs, directors)."""
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(SQLAlchemyEnum(UserRole), nullable=False)
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=True)

    school_class = relationship("SchoolClass")


class Batch(Base):
    __tablename__ = "batches"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    roll_start = Column(String, nullable=False)
    roll_end = Column(String, nullable=False)
    faculty_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=False)

    school_class = relationship("SchoolClass", back_populates="batches")
    students = relationship("Student", back_populates="batch")


class Student(Base):
    __tablename__ = "students"
    id = Column(Integer, primary_key=True, index=True)
    roll_no = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    mobile = Column(String, nullable=True)
    attendance_percent = Column(Float, default=0.0)
    hall_ticket_number = Column(String, nullable=True)
    defaulter = Column(Boolean, default=False, nullable=False)
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=False)
    batch_id = Column(Integer, ForeignKey("batches.id"), nullable=True)
    password = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    school_class = relationship("SchoolClass", back_populates="students")
    batch = relationship("Batch", back_populates="students")
    submissions = relationship("StudentSubmission", back_populates="student")
    elective_selection = relationship("ElectiveSelection", back_populates="student", uselist=False)


# --- Subject and Assignment Models ---

class Subject(Base):
    __tablename__ = "subjects"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    subject_code = Column(String, nullable=False, index=True)
    # Free-form in storage; compared against SubjectType values case-insensitively.
    type = Column(String, nullable=False, default=SubjectType.THEORY.value)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)
    # Null for department-offered electives that belong to no single class.
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=True)

    faculty_assignments = relationship("FacultySubject", back_populates="subject")


class FacultySubject(Base):
    """Links a faculty to a subject in a class, optionally scoped to one batch."""
    __tablename__ = "faculty_subjects"
    id = Column(Integer, primary_key=True, index=True)
    faculty_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=True)
    batch_id = Column(Integer, ForeignKey("batches.id"), nullable=True)
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=False)

    subject = relationship("Subject", back_populates="faculty_assignments")
    batch = relationship("Batch")


class DepartmentOfferedSubject(Base):
    __tablename__ = "department_offered_subjects"
    id = Column(Integer, primary_key=True, index=True)
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)
    year = Column(String, nullable=False)
    faculty_ids = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True)

    subject = relationship("Subject")


class ElectiveSelection(Base):
    """A student's MDM/OE/PE choices; each slot carries its own grading faculty."""
    __tablename__ = "student_subject_selection"
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), unique=True, nullable=False)

    mdm_id = Column(Integer, ForeignKey("subjects.id"), nullable=True)
    oe_id = Column(Integer, ForeignKey("subjects.id"), nullable=True)
    pe_id = Column(Integer, ForeignKey("subjects.id"), nullable=True)
    mdm_faculty_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    oe_faculty_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    pe_faculty_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    selections_locked = Column(Boolean, default=False)

    student = relationship("Student", back_populates="elective_selection")


# --- Submission Tracking Models ---

class SubmissionType(Base):
    __tablename__ = "submission_types"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    code = Column(SQLAlchemyEnum(SubmissionTypeCode), unique=True, nullable=True)


class StudentSubmission(Base):
    __tablename__ = "student_submissions"
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False)
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=False)
    submission_type_id = Column(Integer, ForeignKey("submission_types.id"), nullable=False)
    status = Column(String, nullable=False, default="pending")
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student = relationship("Student", back_populates="submissions")
    subject = relationship("Subject")
    submission_type = relationship("SubmissionType")


class FacultyAvailability(Base):
    __tablename__ = "faculty_availability"
    id = Column(Integer, primary_key=True, index=True)
    faculty_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=False)
    is_available = Column(Boolean, default=False)
    updated_at = Column(DateTime, default=datetime.utcnow)

    subject = relationship("Subject")

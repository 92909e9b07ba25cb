import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from classtrack import models, schemas
from classtrack.core.security import default_student_password_hash, verify_password
from classtrack.utils.submission_utils import (
    SubmissionIndex,
    SubmissionTypeIds,
    faculty_elective_ids,
    index_submissions,
    resolve_submission_types,
    selected_elective_ids,
)

logger = logging.getLogger(__name__)

DEFAULTER_THRESHOLD = 75.0


def is_defaulter(attendance_percent: Optional[float]) -> bool:
    return attendance_percent is not None and attendance_percent < DEFAULTER_THRESHOLD


def roll_value(roll_no) -> tuple:
    """Numeric roll numbers compare by value (so "01" == "1") and before alphanumeric ones."""
    text = str(roll_no).strip() if roll_no is not None else ""
    if text.isdigit():
        return (0, int(text))
    return (1, text)


def roll_sort_key(roll_no) -> tuple:
    # Same order as roll_value, with the raw text as a tie-breaker for a stable roster
    return roll_value(roll_no) + (str(roll_no or ""),)


# --- User CRUD ---

def get_user_by_email(db: Session, email: str) -> models.User | None:
    return db.query(models.User).filter(models.User.email == email).first()


def authenticate_user(db: Session, email: str, password: str) -> models.User | None:
    """
    Authenticates a staff account by email and password.
    Returns the user object on success, None on failure.
    """
    user = get_user_by_email(db, email=email)
    if not user:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


def list_staff(db: Session) -> List[models.User]:
    """All users except directors, ordered by name."""
    return (
        db.query(models.User)
        .filter(models.User.role != models.UserRole.director)
        .order_by(models.User.name.asc())
        .all()
    )


def get_users_by_ids(db: Session, user_ids: Iterable[int]) -> List[models.User]:
    user_ids = list(user_ids)
    if not user_ids:
        return []
    return db.query(models.User).filter(models.User.id.in_(user_ids)).all()


# --- Class and Batch CRUD ---

def get_class(db: Session, class_id: int) -> models.SchoolClass | None:
    return db.query(models.SchoolClass).filter(models.SchoolClass.id == class_id).first()


def list_batches(db: Session, class_id: int) -> List[models.Batch]:
    return (
        db.query(models.Batch)
        .filter(models.Batch.class_id == class_id)
        .order_by(models.Batch.name.asc())
        .all()
    )


def create_batch(
    db: Session, class_id: int, batch_data: schemas.BatchCreate
) -> Tuple[models.Batch, int]:
    """
    Creates a batch, moves every student of the class whose roll number falls
    inside [roll_start, roll_end] into it, and links the faculty to the batch.
    Everything is committed together. Returns the batch and the number of
    students moved.
    """
    db_batch = models.Batch(
        name=batch_data.name,
        roll_start=batch_data.roll_start,
        roll_end=batch_data.roll_end,
        faculty_id=batch_data.faculty_id,
        class_id=class_id,
    )
    db.add(db_batch)
    db.flush()  # Use flush to get the db_batch.id before the final commit

    low, high = roll_value(batch_data.roll_start), roll_value(batch_data.roll_end)
    moved = 0
    for student in db.query(models.Student).filter(models.Student.class_id == class_id).all():
        if low <= roll_value(student.roll_no) <= high:
            student.batch_id = db_batch.id
            moved += 1

    db.add(models.FacultySubject(
        faculty_id=batch_data.faculty_id,
        class_id=class_id,
        batch_id=db_batch.id,
    ))

    db.commit()
    db.refresh(db_batch)
    return db_batch, moved


# --- Student CRUD ---

def _students_query(db: Session):
    return db.query(models.Student).options(joinedload(models.Student.batch))


def _sorted_by_roll(students: List[models.Student]) -> List[models.Student]:
    return sorted(students, key=lambda s: roll_sort_key(s.roll_no))


def get_student(db: Session, student_id: int) -> models.Student | None:
    return db.query(models.Student).filter(models.Student.id == student_id).first()


def get_students_for_class(db: Session, class_id: int) -> List[models.Student]:
    return _sorted_by_roll(
        _students_query(db).filter(models.Student.class_id == class_id).all()
    )


def get_students_for_classes(db: Session, class_ids: Iterable[int]) -> List[models.Student]:
    class_ids = list(class_ids)
    if not class_ids:
        return []
    return _sorted_by_roll(
        _students_query(db).filter(models.Student.class_id.in_(class_ids)).all()
    )


def get_students_by_ids(db: Session, student_ids: Iterable[int]) -> List[models.Student]:
    student_ids = list(student_ids)
    if not student_ids:
        return []
    return _sorted_by_roll(
        _students_query(db).filter(models.Student.id.in_(student_ids)).all()
    )


def update_student(
    db: Session, student: models.Student, update_data: schemas.StudentUpdate
) -> models.Student:
    """
    Applies a partial update. An explicit ``defaulter`` wins; otherwise a new
    attendance figure recomputes it. Elective selections, when present, are
    upserted in the same commit.
    """
    fields = update_data.model_dump(exclude_unset=True, exclude={"electiveSelections"})

    if fields.get("defaulter") is None:
        fields.pop("defaulter", None)
        if "attendance_percent" in fields:
            fields["defaulter"] = is_defaulter(fields["attendance_percent"])

    for key, value in fields.items():
        setattr(student, key, value)

    if update_data.electiveSelections is not None:
        selection_fields = {
            key: value or None
            for key, value in update_data.electiveSelections.model_dump().items()
        }
        existing = get_selection_for_student(db, student.id)
        if existing:
            for key, value in selection_fields.items():
                setattr(existing, key, value)
        else:
            db.add(models.ElectiveSelection(
                student_id=student.id, selections_locked=False, **selection_fields
            ))

    db.commit()
    db.refresh(student)
    return student


def delete_student(db: Session, student: models.Student) -> None:
    """Deletes a student along with their submissions and elective selection."""
    student_id = student.id
    removed = db.query(models.StudentSubmission).filter(
        models.StudentSubmission.student_id == student_id
    ).delete()

    db.query(models.ElectiveSelection).filter(
        models.ElectiveSelection.student_id == student_id
    ).delete()

    db.delete(student)
    db.commit()
    logger.debug(f"Removed {removed} submission records of student {student_id}")


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _attendance(value) -> float:
    try:
        attendance = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if math.isnan(attendance) else attendance


def import_students(db: Session, class_id: int, rows: List[dict]) -> dict:
    """
    Inserts spreadsheet rows as students of ``class_id``.

    A row is skipped when its roll number or hall ticket number already exists
    in the class (or earlier in the same file), or when either is blank. The
    default password is the bcrypt hash of the hall ticket number.
    """
    existing = db.query(
        models.Student.roll_no, models.Student.hall_ticket_number
    ).filter(models.Student.class_id == class_id).all()

    existing_rolls = {_cell_text(roll) for roll, _ in existing}
    existing_hall_tickets = {_cell_text(hall) for _, hall in existing if hall}

    new_students = []
    skipped = 0
    for row in rows:
        roll = _cell_text(row.get("roll_no"))
        hall_ticket = _cell_text(row.get("hall_ticket_number"))

        if not roll or not hall_ticket or roll in existing_rolls or hall_ticket in existing_hall_tickets:
            skipped += 1
            continue

        attendance = _attendance(row.get("attendance_percent"))
        new_students.append(models.Student(
            roll_no=roll,
            name=_cell_text(row.get("name")),
            hall_ticket_number=hall_ticket,
            attendance_percent=attendance,
            defaulter=is_defaulter(attendance),
            class_id=class_id,
            batch_id=None,
            password=default_student_password_hash(hall_ticket),
        ))
        existing_rolls.add(roll)
        existing_hall_tickets.add(hall_ticket)

    if new_students:
        db.add_all(new_students)
        db.commit()

    return {"imported": len(new_students), "skipped": skipped}


# --- Elective Selection CRUD ---

def get_selection_for_student(db: Session, student_id: int) -> models.ElectiveSelection | None:
    return db.query(models.ElectiveSelection).filter(
        models.ElectiveSelection.student_id == student_id
    ).first()


def get_selections_for_students(db: Session, student_ids: Iterable[int]) -> List[models.ElectiveSelection]:
    student_ids = list(student_ids)
    if not student_ids:
        return []
    return db.query(models.ElectiveSelection).filter(
        models.ElectiveSelection.student_id.in_(student_ids)
    ).all()


def get_selections_for_faculty(db: Session, faculty_id: int) -> List[models.ElectiveSelection]:
    """Selections where this faculty grades at least one slot."""
    return db.query(models.ElectiveSelection).filter(
        or_(
            models.ElectiveSelection.mdm_faculty_id == faculty_id,
            models.ElectiveSelection.oe_faculty_id == faculty_id,
            models.ElectiveSelection.pe_faculty_id == faculty_id,
        )
    ).all()


def unlock_selections(db: Session, student_id: int) -> None:
    db.query(models.ElectiveSelection).filter(
        models.ElectiveSelection.student_id == student_id
    ).update({models.ElectiveSelection.selections_locked: False})
    db.commit()


# --- Subject CRUD ---

def get_subject(db: Session, subject_id: int) -> models.Subject | None:
    return db.query(models.Subject).filter(models.Subject.id == subject_id).first()


def get_class_subjects(db: Session, class_id: int) -> List[models.Subject]:
    return (
        db.query(models.Subject)
        .filter(models.Subject.class_id == class_id)
        .order_by(models.Subject.name.asc())
        .all()
    )


def get_subjects_by_ids(db: Session, subject_ids: Iterable[int]) -> List[models.Subject]:
    subject_ids = list(subject_ids)
    if not subject_ids:
        return []
    return (
        db.query(models.Subject)
        .filter(models.Subject.id.in_(subject_ids))
        .order_by(models.Subject.name.asc())
        .all()
    )


def get_subjects_by_codes(db: Session, codes: Iterable[str]) -> List[models.Subject]:
    codes = list(codes)
    if not codes:
        return []
    return db.query(models.Subject).filter(models.Subject.subject_code.in_(codes)).all()


def create_subject_with_assignments(
    db: Session,
    request: schemas.SubjectAssignRequest,
    subject_type: str,
    department_id: Optional[int],
    assignments: List[Tuple[int, Optional[int]]],
) -> Tuple[models.Subject, List[models.FacultySubject]]:
    """
    Creates a subject and its (faculty_id, batch_id) assignments in a single
    commit, so a failure leaves neither behind.
    """
    db_subject = models.Subject(
        name=request.subject_name,
        subject_code=request.subject_code,
        type=subject_type,
        department_id=department_id,
        class_id=request.class_id,
    )
    db.add(db_subject)
    db.flush()

    db_assignments = [
        models.FacultySubject(
            faculty_id=faculty_id,
            subject_id=db_subject.id,
            batch_id=batch_id,
            class_id=request.class_id,
        )
        for faculty_id, batch_id in assignments
    ]
    db.add_all(db_assignments)

    db.commit()
    db.refresh(db_subject)
    for assignment in db_assignments:
        db.refresh(assignment)
    return db_subject, db_assignments


def delete_subject(db: Session, subject: models.Subject) -> None:
    """Removes a subject and the faculty assignments that point at it."""
    db.query(models.FacultySubject).filter(
        models.FacultySubject.subject_id == subject.id
    ).delete()
    db.delete(subject)
    db.commit()


def get_faculty_assignments(db: Session, faculty_id: int) -> List[models.FacultySubject]:
    return (
        db.query(models.FacultySubject)
        .options(joinedload(models.FacultySubject.subject))
        .filter(models.FacultySubject.faculty_id == faculty_id)
        .order_by(models.FacultySubject.id.asc())
        .all()
    )


def get_offerings_for_faculty(db: Session, faculty_id: int) -> List[models.DepartmentOfferedSubject]:
    """Department offerings whose faculty_ids list contains ``faculty_id``."""
    offerings = (
        db.query(models.DepartmentOfferedSubject)
        .options(joinedload(models.DepartmentOfferedSubject.subject))
        .order_by(models.DepartmentOfferedSubject.id.asc())
        .all()
    )
    return [o for o in offerings if faculty_id in (o.faculty_ids or [])]


def get_active_offerings_for_year(db: Session, year: str) -> List[models.DepartmentOfferedSubject]:
    return (
        db.query(models.DepartmentOfferedSubject)
        .options(joinedload(models.DepartmentOfferedSubject.subject))
        .filter(
            models.DepartmentOfferedSubject.year == year,
            models.DepartmentOfferedSubject.is_active.is_(True),
        )
        .order_by(models.DepartmentOfferedSubject.id.asc())
        .all()
    )


def get_subjects_taught_by_faculty(db: Session, faculty_id: int) -> List[models.Subject]:
    """
    Union of the subjects a faculty is linked to, deduplicated by id in this
    order: faculty_subjects assignments, department offerings listing the
    faculty, and elective slots the faculty grades.
    """
    subjects = []
    seen = set()

    def _add(subject):
        if subject is not None and subject.id not in seen:
            seen.add(subject.id)
            subjects.append(subject)

    for assignment in get_faculty_assignments(db, faculty_id):
        _add(assignment.subject)

    for offering in get_offerings_for_faculty(db, faculty_id):
        _add(offering.subject)

    elective_ids = set()
    for selection in get_selections_for_faculty(db, faculty_id):
        elective_ids.update(faculty_elective_ids(selection, faculty_id))

    for subject in get_subjects_by_ids(db, elective_ids - seen):
        _add(subject)

    return subjects


# --- Submission CRUD ---

def get_submission_types(db: Session) -> List[models.SubmissionType]:
    return db.query(models.SubmissionType).all()


def get_submissions_for_students(db: Session, student_ids: Iterable[int]) -> List[models.StudentSubmission]:
    student_ids = list(student_ids)
    if not student_ids:
        return []
    return (
        db.query(models.StudentSubmission)
        .filter(models.StudentSubmission.student_id.in_(student_ids))
        .order_by(models.StudentSubmission.id.asc())
        .all()
    )


# --- Availability CRUD ---

def get_latest_availability(db: Session, faculty_id: int) -> models.FacultyAvailability | None:
    return (
        db.query(models.FacultyAvailability)
        .filter(models.FacultyAvailability.faculty_id == faculty_id)
        .order_by(models.FacultyAvailability.updated_at.desc())
        .first()
    )


def clear_availability(db: Session, faculty_id: int) -> None:
    db.query(models.FacultyAvailability).filter(
        models.FacultyAvailability.faculty_id == faculty_id
    ).delete()


def replace_availability(db: Session, faculty_id: int, subjects: List[models.Subject]) -> None:
    """Drops every availability record of the faculty and writes one per subject."""
    clear_availability(db, faculty_id)
    now = datetime.utcnow()
    db.add_all([
        models.FacultyAvailability(
            faculty_id=faculty_id,
            subject_id=subject.id,
            is_available=True,
            updated_at=now,
        )
        for subject in subjects
    ])
    db.commit()


def get_available_subject_codes(db: Session, faculty_id: int) -> List[str]:
    records = (
        db.query(models.FacultyAvailability)
        .options(joinedload(models.FacultyAvailability.subject))
        .filter(
            models.FacultyAvailability.faculty_id == faculty_id,
            models.FacultyAvailability.is_available.is_(True),
        )
        .all()
    )
    return [r.subject.subject_code for r in records if r.subject]


# --- Snapshots for the aggregation views ---

@dataclass
class ClassSnapshot:
    students: List[models.Student]
    class_subjects: List[models.Subject]
    elective_subjects: List[models.Subject]
    selections_by_student: dict
    index: SubmissionIndex
    type_ids: SubmissionTypeIds


def load_submission_type_ids(db: Session) -> SubmissionTypeIds:
    return resolve_submission_types(get_submission_types(db))


def load_class_snapshot(db: Session, class_id: int) -> ClassSnapshot:
    """
    Fetches everything the class roster and export views need: students,
    core subjects, the electives those students picked, their submissions
    and the resolved submission types.
    """
    students = get_students_for_class(db, class_id)
    student_ids = [s.id for s in students]

    selections = get_selections_for_students(db, student_ids)
    elective_ids = set()
    for selection in selections:
        elective_ids.update(selected_elective_ids(selection))

    return ClassSnapshot(
        students=students,
        class_subjects=get_class_subjects(db, class_id),
        elective_subjects=get_subjects_by_ids(db, elective_ids),
        selections_by_student={s.student_id: s for s in selections},
        index=index_submissions(get_submissions_for_students(db, student_ids)),
        type_ids=load_submission_type_ids(db),
    )

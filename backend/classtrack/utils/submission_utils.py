"""
Submission completion rules and the roster views built on top of them.

Every function here works on already-fetched rows (ORM objects or anything
exposing the same attributes) and never touches the database. Missing
submission records and unresolved submission types degrade to ``pending``
instead of raising.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from classtrack.models import SubjectType, SubmissionTypeCode

logger = logging.getLogger(__name__)

COMPLETED = "completed"
PENDING = "pending"
NOT_APPLICABLE = "N/A"
NOT_REQUIRED = "-"

ELECTIVE_SLOTS = ("mdm", "oe", "pe")

SubmissionIndex = Dict[Tuple[int, int, int], str]


# ==========================================================
# Submission type resolution
# ==========================================================

@dataclass(frozen=True)
class SubmissionTypeIds:
    ta: Optional[int] = None
    cie: Optional[int] = None
    defaulter: Optional[int] = None

    def for_code(self, code: SubmissionTypeCode) -> Optional[int]:
        if code == SubmissionTypeCode.TA:
            return self.ta
        if code == SubmissionTypeCode.CIE:
            return self.cie
        return self.defaulter


def resolve_submission_types(rows: Iterable) -> SubmissionTypeIds:
    """
    Maps each SubmissionTypeCode to the id of the row carrying it.

    A code with no row resolves to None. A None id never matches a record,
    so every item of that kind is reported as pending.
    """
    by_code: Dict[SubmissionTypeCode, int] = {}
    for row in rows:
        if row.code is None:
            continue
        by_code.setdefault(SubmissionTypeCode(row.code), row.id)

    missing = [code.value for code in SubmissionTypeCode if code not in by_code]
    if missing:
        logger.warning(
            "Submission types %s are not configured; those items will count as pending",
            missing,
        )

    return SubmissionTypeIds(
        ta=by_code.get(SubmissionTypeCode.TA),
        cie=by_code.get(SubmissionTypeCode.CIE),
        defaulter=by_code.get(SubmissionTypeCode.DEFAULTER),
    )


def index_submissions(rows: Iterable) -> SubmissionIndex:
    """Keys statuses by (student_id, subject_id, submission_type_id); the first record wins."""
    index: SubmissionIndex = {}
    for row in rows:
        index.setdefault((row.student_id, row.subject_id, row.submission_type_id), row.status)
    return index


# ==========================================================
# Per-subject rules
# ==========================================================

def is_practical(subject_type: Optional[str]) -> bool:
    return (subject_type or "").lower() == SubjectType.PRACTICAL.value


def required_items(subject_type: Optional[str], is_defaulter: bool) -> List[SubmissionTypeCode]:
    """Practical: TA. Theory and electives: TA + CIE, plus defaulter work for defaulters."""
    if is_practical(subject_type):
        return [SubmissionTypeCode.TA]

    items = [SubmissionTypeCode.TA, SubmissionTypeCode.CIE]
    if is_defaulter:
        items.append(SubmissionTypeCode.DEFAULTER)
    return items


def submission_percentage(completed: int, total: int) -> int:
    """round(100 * completed / total), halves rounded up; 0 when nothing is required."""
    if total <= 0:
        return 0
    return (200 * completed + total) // (2 * total)


@dataclass
class SubjectProgress:
    subject_type: Optional[str]
    is_defaulter: bool
    ta: str
    cie: str
    defaulter: str
    completed: int
    total: int

    @property
    def percentage(self) -> int:
        return submission_percentage(self.completed, self.total)

    def display(self) -> dict:
        """Statuses as exported: CIE is N/A on practicals, defaulter work '-' where not required."""
        practical = is_practical(self.subject_type)
        return {
            "cie": NOT_APPLICABLE if practical else self.cie,
            "ta": self.ta,
            "defaulter": self.defaulter if self.is_defaulter and not practical else NOT_REQUIRED,
        }


@dataclass
class StudentProgress:
    completed: int = 0
    total: int = 0

    @property
    def percentage(self) -> int:
        return submission_percentage(self.completed, self.total)


def _status(index: SubmissionIndex, student_id: int, subject_id: int, type_id: Optional[int]) -> str:
    if type_id is None:
        return PENDING
    return index.get((student_id, subject_id, type_id)) or PENDING


def evaluate_subject(student, subject, index: SubmissionIndex, type_ids: SubmissionTypeIds) -> SubjectProgress:
    is_defaulter = bool(student.defaulter)
    statuses = {
        code: _status(index, student.id, subject.id, type_ids.for_code(code))
        for code in SubmissionTypeCode
    }
    required = required_items(subject.type, is_defaulter)

    return SubjectProgress(
        subject_type=subject.type,
        is_defaulter=is_defaulter,
        ta=statuses[SubmissionTypeCode.TA],
        cie=statuses[SubmissionTypeCode.CIE],
        defaulter=statuses[SubmissionTypeCode.DEFAULTER],
        completed=sum(1 for code in required if statuses[code] == COMPLETED),
        total=len(required),
    )


def evaluate_student(student, subjects: Iterable, index: SubmissionIndex, type_ids: SubmissionTypeIds) -> StudentProgress:
    progress = StudentProgress()
    for subject in subjects:
        result = evaluate_subject(student, subject, index, type_ids)
        progress.completed += result.completed
        progress.total += result.total
    return progress


# ==========================================================
# Subject applicability
# ==========================================================

def selected_elective_ids(selection) -> List[int]:
    if selection is None:
        return []
    return [
        getattr(selection, f"{slot}_id")
        for slot in ELECTIVE_SLOTS
        if getattr(selection, f"{slot}_id")
    ]


def faculty_elective_ids(selection, faculty_id: int) -> List[int]:
    """Elective subjects in this selection whose slot is graded by ``faculty_id``."""
    if selection is None:
        return []
    return [
        getattr(selection, f"{slot}_id")
        for slot in ELECTIVE_SLOTS
        if getattr(selection, f"{slot}_id") and getattr(selection, f"{slot}_faculty_id") == faculty_id
    ]


def applicable_subjects(core_subjects: Iterable, elective_subjects: Iterable, selection) -> list:
    chosen = set(selected_elective_ids(selection))
    return list(core_subjects) + [s for s in elective_subjects if s.id in chosen]


def assignment_applies(assignment, student) -> bool:
    """A null batch on the assignment covers every batch of its class."""
    return assignment.class_id == student.class_id and (
        assignment.batch_id is None or assignment.batch_id == student.batch_id
    )


# ==========================================================
# Roster views
# ==========================================================

def student_summary(student) -> dict:
    return {
        "id": student.id,
        "roll_no": student.roll_no,
        "name": student.name,
        "email": student.email,
        "mobile": student.mobile,
        "attendance_percent": student.attendance_percent,
        "hall_ticket_number": student.hall_ticket_number,
        "defaulter": bool(student.defaulter),
        "class_id": student.class_id,
        "batch_id": student.batch_id,
        "created_at": student.created_at,
        "batch_name": student.batch.name if student.batch else None,
    }


def build_class_roster(
    students: Iterable,
    class_subjects: list,
    elective_subjects: list,
    selections_by_student: dict,
    index: SubmissionIndex,
    type_ids: SubmissionTypeIds,
) -> List[dict]:
    """One row per student with the percentage over core subjects and their chosen electives."""
    rows = []
    for student in students:
        subjects = applicable_subjects(
            class_subjects, elective_subjects, selections_by_student.get(student.id)
        )
        progress = evaluate_student(student, subjects, index, type_ids)

        row = student_summary(student)
        row["submission_percentage"] = progress.percentage
        rows.append(row)
    return rows


def _faculty_row(student, subject, index: SubmissionIndex, type_ids: SubmissionTypeIds) -> dict:
    progress = evaluate_subject(student, subject, index, type_ids)
    row = student_summary(student)
    row.update({
        "subject_id": subject.id,
        "subject_name": subject.name,
        "subject_code": subject.subject_code,
        "subject_type": subject.type,
        "ta_status": progress.ta,
        "cie_status": progress.cie,
        "defaulter_status": progress.defaulter,
        "submission_percentage": progress.percentage,
        "total_submissions": progress.total,
        "completed_submissions": progress.completed,
    })
    return row


def build_faculty_rows(
    faculty_id: int,
    assignments: Iterable,
    class_students: Iterable,
    elective_selections: Iterable,
    elective_students: Iterable,
    electives_by_id: dict,
    index: SubmissionIndex,
    type_ids: SubmissionTypeIds,
) -> List[dict]:
    """
    One row per (student, subject) pair this faculty teaches.

    Core rows come from faculty_subjects assignments (batch-scoped where a
    batch is set); elective rows come from selection slots graded by this
    faculty. A student repeats once per such subject.
    """
    assignments = [a for a in assignments if a.subject is not None]
    rows = []

    for student in class_students:
        for assignment in assignments:
            if assignment_applies(assignment, student):
                rows.append(_faculty_row(student, assignment.subject, index, type_ids))

    selection_by_student = {}
    for selection in elective_selections:
        selection_by_student.setdefault(selection.student_id, selection)

    for student in elective_students:
        selection = selection_by_student.get(student.id)
        for subject_id in faculty_elective_ids(selection, faculty_id):
            subject = electives_by_id.get(subject_id)
            if subject is not None:
                rows.append(_faculty_row(student, subject, index, type_ids))

    return rows


def subject_listing(subject, **extra) -> dict:
    listing = {
        "id": subject.id,
        "name": subject.name,
        "code": subject.subject_code,
        "type": subject.type,
    }
    listing.update(extra)
    return listing


def build_class_export(
    school_class,
    students: Iterable,
    class_subjects: list,
    elective_subjects: list,
    selections_by_student: dict,
    index: SubmissionIndex,
    type_ids: SubmissionTypeIds,
) -> dict:
    exported_students = []
    for student in students:
        subjects = applicable_subjects(
            class_subjects, elective_subjects, selections_by_student.get(student.id)
        )

        submissions = {}
        for subject in subjects:
            progress = evaluate_subject(student, subject, index, type_ids)
            submissions[subject.id] = {
                "subject_name": subject.name,
                "subject_code": subject.subject_code,
                "subject_type": subject.type,
                **progress.display(),
            }

        exported_students.append({
            "roll_no": student.roll_no,
            "name": student.name,
            "batch": student.batch.name if student.batch else NOT_REQUIRED,
            "defaulter": bool(student.defaulter),
            "submissions": submissions,
        })

    return {
        "classInfo": {"name": school_class.name, "year": school_class.year},
        "students": exported_students,
        "subjects": [subject_listing(s) for s in class_subjects]
        + [subject_listing(s, isElective=True) for s in elective_subjects],
    }

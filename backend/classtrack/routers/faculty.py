import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from classtrack import crud, models, schemas
from classtrack.dependencies import get_db, require_roles
from classtrack.utils import submission_utils

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/faculty", tags=["Faculty"])


@router.get(
    "/subjects",
    response_model=schemas.SubjectListResponse,
    summary="Subjects taught by the faculty (assigned, offered and elective slots)",
)
def get_faculty_subjects(
    db: Session = Depends(get_db),
    current_faculty: models.User = Depends(require_roles(models.UserRole.faculty)),
):
    subjects = crud.get_subjects_taught_by_faculty(db, current_faculty.id)
    return {
        "success": True,
        "subjects": [submission_utils.subject_listing(s) for s in subjects],
    }


@router.get(
    "/students",
    response_model=schemas.FacultyStudentsResponse,
    summary="Student/subject rows with submission status for the faculty",
)
def get_faculty_students(
    db: Session = Depends(get_db),
    current_faculty: models.User = Depends(require_roles(models.UserRole.faculty)),
):
    """
    Returns one row per (student, subject) the faculty teaches. Core subjects
    come from faculty_subjects (a batch-scoped assignment only covers that
    batch); electives come from the MDM/OE/PE slots this faculty grades.
    """
    faculty_id = current_faculty.id

    # 1. Core subjects through class/batch assignments
    assignments = crud.get_faculty_assignments(db, faculty_id)
    class_ids = {a.class_id for a in assignments if a.class_id}
    class_students = crud.get_students_for_classes(db, class_ids)

    # 2. Electives through selection slots graded by this faculty
    elective_selections = crud.get_selections_for_faculty(db, faculty_id)
    elective_students = crud.get_students_by_ids(db, {s.student_id for s in elective_selections})

    elective_ids = set()
    for selection in elective_selections:
        elective_ids.update(submission_utils.faculty_elective_ids(selection, faculty_id))
    electives_by_id = {s.id: s for s in crud.get_subjects_by_ids(db, elective_ids)}

    # 3. Submissions for everyone involved
    student_ids = {s.id for s in class_students} | {s.id for s in elective_students}
    submissions = crud.get_submissions_for_students(db, student_ids)
    type_ids = crud.load_submission_type_ids(db)

    rows = submission_utils.build_faculty_rows(
        faculty_id,
        assignments,
        class_students,
        elective_selections,
        elective_students,
        electives_by_id,
        submission_utils.index_submissions(submissions),
        type_ids,
    )

    logger.info(
        f"Faculty {faculty_id}: {len(rows)} student-subject rows "
        f"({len(class_students)} class students, {len(elective_students)} elective students)"
    )
    return {"success": True, "students": rows}

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from classtrack import crud, models, schemas
from classtrack.dependencies import get_db, require_class_id, require_roles
from classtrack.utils import submission_utils
from classtrack.utils.file_utils import SpreadsheetError, read_spreadsheet_rows

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/class-teacher", tags=["Class Teacher"])

CLASS_TEACHER = models.UserRole.class_teacher
FACULTY = models.UserRole.faculty
HOD = models.UserRole.hod

IMPORT_REQUIRED_COLUMNS = ["roll_no", "name", "hall_ticket_number", "attendance_percent"]


def _get_owned_student(db: Session, student_id: int, class_id: Optional[int], action: str) -> models.Student:
    """Loads a student and checks it belongs to the caller's class (404, then 403)."""
    student = crud.get_student(db, student_id)
    if not student:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    if student.class_id != class_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unauthorized to {action} this student",
        )
    return student


def _split_by_kind(subjects, include_type: bool = True) -> dict:
    """
    Practical subjects go to 'practical'; theory and every elective type go to 'theory'.
    Without include_type the listing carries no type (the route drops None fields).
    """
    grouped = {"theory": [], "practical": []}
    for subject in subjects:
        listing = submission_utils.subject_listing(subject)
        if not include_type:
            listing["type"] = None
        kind = "practical" if submission_utils.is_practical(subject.type) else "theory"
        grouped[kind].append(listing)
    return grouped


# ===================================================================
# Class, Staff and Batch Endpoints
# ===================================================================

@router.get(
    "/class-info",
    response_model=schemas.ClassInfoResponse,
    summary="Get the class assigned to this class teacher",
)
def get_class_info(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER)),
):
    class_id = require_class_id(current_user)

    school_class = crud.get_class(db, class_id)
    if not school_class:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class not found")

    return {
        "success": True,
        "class": {
            "id": school_class.id,
            "name": school_class.name,
            "division": school_class.name,  # Division is the class name
            "year": school_class.year,
            "department_id": school_class.department_id,
        },
    }


@router.get(
    "/faculties",
    response_model=schemas.FacultyListResponse,
    summary="List all staff except directors",
)
def list_faculties(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER, FACULTY)),
):
    return {"success": True, "faculties": crud.list_staff(db)}


@router.get(
    "/batches",
    response_model=schemas.BatchListResponse,
    summary="List the batches of the caller's class",
)
def list_batches(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER, FACULTY)),
):
    class_id = require_class_id(current_user)
    return {"success": True, "batches": crud.list_batches(db, class_id)}


@router.post(
    "/create-batch",
    response_model=schemas.BatchCreateResponse,
    summary="Create a batch and assign students by roll number range",
)
def create_batch(
    batch_data: schemas.BatchCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER, HOD)),
):
    class_id = require_class_id(current_user, status_code=status.HTTP_403_FORBIDDEN)

    if not all([batch_data.name, batch_data.roll_start, batch_data.roll_end, batch_data.faculty_id]):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="All fields are required")

    batch, moved = crud.create_batch(db, class_id=class_id, batch_data=batch_data)
    logger.info(f"Batch {batch.name} created for class {class_id}; {moved} students assigned")

    return {
        "success": True,
        "message": "Batch created and faculty linked successfully",
        "batch": batch,
    }


# ===================================================================
# Student Endpoints
# ===================================================================

@router.get(
    "/students",
    response_model=schemas.RosterResponse,
    summary="Class roster with each student's submission percentage",
)
def list_students(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER, FACULTY)),
):
    """
    Every student in the caller's class, with a percentage computed over the
    class's core subjects plus the electives that student has selected.
    """
    class_id = require_class_id(current_user)
    snapshot = crud.load_class_snapshot(db, class_id)

    students = submission_utils.build_class_roster(
        snapshot.students,
        snapshot.class_subjects,
        snapshot.elective_subjects,
        snapshot.selections_by_student,
        snapshot.index,
        snapshot.type_ids,
    )
    return {"success": True, "students": students}


@router.put(
    "/student/{student_id}",
    response_model=schemas.StudentUpdateResponse,
    summary="Update a student's details and elective selections",
)
def update_student(
    student_id: int,
    update_data: schemas.StudentUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER, FACULTY)),
):
    if not current_user.class_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing student ID or class ID")

    student = _get_owned_student(db, student_id, current_user.class_id, "edit")
    updated = crud.update_student(db, student, update_data)

    return {"success": True, "message": "Student updated successfully", "student": updated}


@router.delete(
    "/student/{student_id}",
    response_model=schemas.MessageResponse,
    summary="Delete a student from the caller's class",
)
def delete_student(
    student_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER, FACULTY)),
):
    if not current_user.class_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing student ID or class ID")

    student = _get_owned_student(db, student_id, current_user.class_id, "delete")
    crud.delete_student(db, student)
    logger.info(f"Student {student_id} deleted by user {current_user.id}")

    return {"success": True, "message": "Student deleted successfully"}


@router.post(
    "/import-students",
    response_model=schemas.ImportResponse,
    summary="Bulk import students from an .xlsx sheet",
)
async def import_students(
    file: Optional[UploadFile] = File(None),
    class_id: Optional[int] = Form(None),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER, FACULTY)),
):
    """
    Reads the first sheet of the upload. Rows whose roll number or hall ticket
    number already exists in the class are skipped, not rejected.
    """
    if file is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")

    try:
        rows = await run_in_threadpool(read_spreadsheet_rows, await file.read())
    except SpreadsheetError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not rows:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Excel sheet is empty")

    missing = [c for c in IMPORT_REQUIRED_COLUMNS if c not in rows[0]]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Missing required columns: {', '.join(missing)}",
        )

    target_class_id = current_user.class_id or class_id
    if not target_class_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="class_id missing")

    # bcrypt and the inserts are blocking calls
    result = await run_in_threadpool(crud.import_students, db, class_id=target_class_id, rows=rows)
    logger.info(
        f"Import into class {target_class_id}: {result['imported']} added, {result['skipped']} skipped"
    )

    if not result["imported"]:
        message = "No new students to import (all duplicates skipped)."
    else:
        message = f"Import completed. {result['imported']} new students added."

    return {"success": True, "message": message, **result}


# ===================================================================
# Subject Endpoints
# ===================================================================

@router.post(
    "/subjects/assign",
    response_model=schemas.SubjectAssignResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a subject and assign faculty to it",
)
def assign_subject(
    request: schemas.SubjectAssignRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER, FACULTY)),
):
    """
    Theory subjects take one faculty for the whole class. Practical subjects
    take one faculty per batch via ``faculty_assignments``.
    """
    if not all([request.class_id, request.subject_code, request.subject_name, request.type]):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required fields.")

    if current_user.role == CLASS_TEACHER and request.class_id != current_user.class_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Class teachers can only add subjects to their own class",
        )

    school_class = crud.get_class(db, request.class_id)
    if not school_class:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid class_id or class not found.")

    subject_type = request.type.lower()
    assignments = []

    if subject_type == models.SubjectType.PRACTICAL.value:
        if request.faculty_assignments is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="faculty_assignments array required for practical subjects.",
            )
        for fa in request.faculty_assignments:
            if not fa.batch_id or not fa.faculty_id:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Each batch assignment must have batch_id and faculty_id.",
                )
            assignments.append((fa.faculty_id, fa.batch_id))
        message = "Practical subject created and assigned to all batches successfully."
    else:
        if subject_type == models.SubjectType.THEORY.value and not request.faculty_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Faculty ID required for theory subject.",
            )
        if request.faculty_id:
            assignments.append((request.faculty_id, None))
        message = "Theory subject created and assigned successfully."

    subject, db_assignments = crud.create_subject_with_assignments(
        db,
        request,
        subject_type=subject_type,
        department_id=school_class.department_id,
        assignments=assignments,
    )
    logger.info(f"Subject {subject.subject_code} created for class {subject.class_id}")

    return {
        "success": True,
        "message": message,
        "subject": subject,
        "assignments": db_assignments,
    }


@router.get(
    "/subjects",
    response_model=schemas.SubjectsByKindResponse,
    response_model_exclude_none=True,
    summary="Subjects for the caller, split into theory and practical",
)
def list_subjects(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER, FACULTY)),
):
    """
    Faculty see every subject they teach (assigned, offered or elective
    slots). Class teachers see their class's subjects.
    """
    if current_user.role == FACULTY:
        subjects = crud.get_subjects_taught_by_faculty(db, current_user.id)
        return {"success": True, "subjects": _split_by_kind(subjects)}

    class_id = require_class_id(current_user)
    subjects = crud.get_class_subjects(db, class_id)
    return {"success": True, "subjects": _split_by_kind(subjects, include_type=False)}


@router.delete(
    "/subjects/{subject_id}",
    response_model=schemas.MessageResponse,
    summary="Delete a subject of the caller's class",
)
def delete_subject(
    subject_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER)),
):
    class_id = require_class_id(current_user)

    subject = crud.get_subject(db, subject_id)
    if not subject:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subject not found")
    if subject.class_id != class_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized to delete this subject")

    crud.delete_subject(db, subject)
    logger.info(f"Subject {subject_id} deleted from class {class_id}")

    return {"success": True, "message": "Subject deleted successfully"}


# ===================================================================
# Availability Endpoints
# ===================================================================

@router.get(
    "/availability",
    response_model=schemas.AvailabilityStatusResponse,
    summary="Get the caller's current availability flag",
)
def get_availability(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER, FACULTY)),
):
    record = crud.get_latest_availability(db, current_user.id)
    return {"success": True, "isAvailable": bool(record and record.is_available)}


@router.put(
    "/availability",
    response_model=schemas.AvailabilityResponse,
    summary="Replace the caller's availability for the selected subjects",
)
def update_availability(
    update: schemas.AvailabilityUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER, FACULTY)),
):
    """``selectedSubjects`` holds subject codes; an empty list or isAvailable=false clears availability."""
    if not isinstance(update.selectedSubjects, list):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="selectedSubjects must be an array")

    codes = [str(code) for code in update.selectedSubjects]

    if update.isAvailable and codes:
        subjects = crud.get_subjects_by_codes(db, codes)
        if not subjects:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid subject codes")
        crud.replace_availability(db, current_user.id, subjects)
    else:
        crud.replace_availability(db, current_user.id, [])

    return {"success": True, "isAvailable": update.isAvailable, "selectedSubjects": codes}


@router.get(
    "/available-subjects",
    response_model=schemas.AvailabilityResponse,
    summary="Subject codes the caller is currently available for",
)
def get_available_subjects(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER, FACULTY)),
):
    codes = crud.get_available_subject_codes(db, current_user.id)
    return {"success": True, "isAvailable": len(codes) > 0, "selectedSubjects": codes}


# ===================================================================
# Elective Selection Endpoints
# ===================================================================

def _elective_group(offering, subject, class_department_id) -> Optional[str]:
    subject_type = (subject.type or "").lower()
    subject_name = (subject.name or "").lower()

    if subject_type == models.SubjectType.MDM.value or "multidisciplinary" in subject_name:
        return "mdm"
    if subject_type == models.SubjectType.OE.value or "open elective" in subject_name:
        return "oe"
    if subject_type == models.SubjectType.PE.value or "professional elective" in subject_name:
        # Professional electives are only offered within the class's own department
        if offering.department_id == class_department_id:
            return "pe"
    return None


@router.get(
    "/elective-subjects/{student_id}",
    response_model=schemas.ElectiveSubjectsResponse,
    summary="Offered electives and a student's current selections",
)
def get_elective_subjects(
    student_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER, FACULTY)),
):
    student = _get_owned_student(db, student_id, current_user.class_id, "view")

    school_class = crud.get_class(db, student.class_id)
    if not school_class:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class not found")

    offerings = crud.get_active_offerings_for_year(db, school_class.year)

    faculty_ids = {fid for o in offerings for fid in (o.faculty_ids or [])}
    faculty_names = {u.id: u.name for u in crud.get_users_by_ids(db, faculty_ids)}

    electives = {"mdm": [], "oe": [], "pe": []}
    for offering in offerings:
        subject = offering.subject
        if not subject:
            continue

        group = _elective_group(offering, subject, school_class.department_id)
        if group is None:
            continue

        electives[group].append({
            "id": subject.id,
            "code": subject.subject_code,
            "name": subject.name,
            "faculties": [
                {"id": fid, "name": faculty_names.get(fid, "Unknown Faculty")}
                for fid in (offering.faculty_ids or [])
            ],
        })

    return {
        "success": True,
        "electives": electives,
        "currentSelections": crud.get_selection_for_student(db, student_id),
    }


@router.put(
    "/unlock-student-selections/{student_id}",
    response_model=schemas.MessageResponse,
    summary="Unlock a student's elective selections",
)
def unlock_student_selections(
    student_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(CLASS_TEACHER, FACULTY)),
):
    _get_owned_student(db, student_id, current_user.class_id, "unlock selections for")
    crud.unlock_selections(db, student_id)

    return {"success": True, "message": "Student's elective selections have been unlocked"}

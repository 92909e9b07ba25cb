import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from classtrack import crud, models, schemas
from classtrack.dependencies import get_db, require_class_id, require_roles
from classtrack.utils import submission_utils

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/export", tags=["Export"])


@router.get(
    "/class-data",
    response_model=schemas.ClassExportResponse,
    summary="Export the class roster, subjects and submission matrix",
)
def export_class_data(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles(models.UserRole.class_teacher)),
):
    """
    Each student's ``submissions`` is keyed by subject id and covers the
    class's core subjects plus the electives that student selected.
    """
    class_id = require_class_id(current_user)

    school_class = crud.get_class(db, class_id)
    if not school_class:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class not found")

    snapshot = crud.load_class_snapshot(db, class_id)
    data = submission_utils.build_class_export(
        school_class,
        snapshot.students,
        snapshot.class_subjects,
        snapshot.elective_subjects,
        snapshot.selections_by_student,
        snapshot.index,
        snapshot.type_ids,
    )

    logger.info(f"Export prepared for class {class_id}: {len(data['students'])} students")
    return {"success": True, "data": data}

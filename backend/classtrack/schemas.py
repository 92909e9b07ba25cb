from pydantic import BaseModel, EmailStr, Field, field_validator
from enum import Enum
from datetime import datetime
from typing import Any, Dict, Optional, List

# --- ENUMS (Consistent with models.py) ---

class UserRole(str, Enum):
    class_teacher = "class_teacher"
    faculty = "faculty"
    hod = "hod"
    director = "director"


# --- 1. Authentication Schemas ---

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class Token(BaseModel):
    access_token: str
    token_type: str

class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role: UserRole
    class_id: Optional[int] = None
    class Config:
        from_attributes = True


# --- 2. Class and Staff Schemas ---

class ClassInfoOut(BaseModel):
    id: int
    name: str
    division: str
    year: str
    department_id: Optional[int] = None

class ClassInfoResponse(BaseModel):
    success: bool = True
    class_: ClassInfoOut = Field(..., alias="class")

    model_config = {"populate_by_name": True}

class FacultyOut(BaseModel):
    id: int
    name: str
    email: str
    role: UserRole
    class Config:
        from_attributes = True

class FacultyListResponse(BaseModel):
    success: bool = True
    faculties: List[FacultyOut]

class BatchOut(BaseModel):
    id: int
    name: str
    roll_start: str
    roll_end: str
    faculty_id: Optional[int] = None
    class_id: int
    class Config:
        from_attributes = True

class BatchListResponse(BaseModel):
    success: bool = True
    batches: List[BatchOut]

class BatchCreate(BaseModel):
    name: Optional[str] = None
    roll_start: Optional[str] = None
    roll_end: Optional[str] = None
    faculty_id: Optional[int] = None

class BatchCreateResponse(BaseModel):
    success: bool = True
    message: str
    batch: BatchOut


# --- 3. Student Schemas ---

class StudentOut(BaseModel):
    id: int
    roll_no: str
    name: str
    email: Optional[str] = None
    mobile: Optional[str] = None
    attendance_percent: Optional[float] = None
    hall_ticket_number: Optional[str] = None
    defaulter: bool
    class_id: int
    batch_id: Optional[int] = None
    created_at: Optional[datetime] = None
    class Config:
        from_attributes = True

class RosterStudentOut(StudentOut):
    batch_name: Optional[str] = None
    submission_percentage: int

class RosterResponse(BaseModel):
    success: bool = True
    students: List[RosterStudentOut]

class FacultyStudentRowOut(RosterStudentOut):
    subject_id: int
    subject_name: str
    subject_code: str
    subject_type: str
    ta_status: str
    cie_status: str
    defaulter_status: str
    total_submissions: int
    completed_submissions: int

class FacultyStudentsResponse(BaseModel):
    success: bool = True
    students: List[FacultyStudentRowOut]

class ElectiveSelectionsIn(BaseModel):
    mdm_id: Optional[int] = None
    oe_id: Optional[int] = None
    pe_id: Optional[int] = None
    mdm_faculty_id: Optional[int] = None
    oe_faculty_id: Optional[int] = None
    pe_faculty_id: Optional[int] = None

class StudentUpdate(BaseModel):
    """Partial update; only the fields present in the request body are written."""
    name: Optional[str] = None
    roll_no: Optional[str] = None
    email: Optional[str] = None
    mobile: Optional[str] = None
    attendance_percent: Optional[float] = None
    hall_ticket_number: Optional[str] = None
    batch_id: Optional[int] = None
    defaulter: Optional[bool] = None
    electiveSelections: Optional[ElectiveSelectionsIn] = None

    @field_validator("name", "roll_no")
    @classmethod
    def not_null(cls, v):
        # May be left out, but a student always keeps a name and a roll number
        if v is None:
            raise ValueError("cannot be null")
        return v

class StudentUpdateResponse(BaseModel):
    success: bool = True
    message: str
    student: StudentOut

class ImportResponse(BaseModel):
    success: bool = True
    message: str
    imported: int
    skipped: int


# --- 4. Subject Schemas ---

class FacultyBatchAssignment(BaseModel):
    batch_id: Optional[int] = None
    faculty_id: Optional[int] = None

class SubjectAssignRequest(BaseModel):
    class_id: Optional[int] = None
    subject_code: Optional[str] = None
    subject_name: Optional[str] = None
    type: Optional[str] = None
    faculty_id: Optional[int] = None
    faculty_assignments: Optional[List[FacultyBatchAssignment]] = None

class SubjectRecordOut(BaseModel):
    id: int
    name: str
    subject_code: str
    type: str
    department_id: Optional[int] = None
    class_id: Optional[int] = None
    class Config:
        from_attributes = True

class FacultySubjectOut(BaseModel):
    id: int
    faculty_id: int
    subject_id: Optional[int] = None
    batch_id: Optional[int] = None
    class_id: int
    class Config:
        from_attributes = True

class SubjectAssignResponse(BaseModel):
    success: bool = True
    message: str
    subject: SubjectRecordOut
    assignments: List[FacultySubjectOut]

class SubjectListing(BaseModel):
    id: int
    name: str
    code: str
    type: Optional[str] = None

class SubjectListResponse(BaseModel):
    success: bool = True
    subjects: List[SubjectListing]

class SubjectsByKind(BaseModel):
    theory: List[SubjectListing] = []
    practical: List[SubjectListing] = []

class SubjectsByKindResponse(BaseModel):
    success: bool = True
    subjects: SubjectsByKind


# --- 5. Availability Schemas ---

class AvailabilityStatusResponse(BaseModel):
    success: bool = True
    isAvailable: bool

class AvailabilityUpdate(BaseModel):
    isAvailable: bool = False
    selectedSubjects: Any = None

class AvailabilityResponse(BaseModel):
    success: bool = True
    isAvailable: bool
    selectedSubjects: List[str]


# --- 6. Elective Schemas ---

class FacultyOption(BaseModel):
    id: int
    name: str

class ElectiveSubjectOut(BaseModel):
    id: int
    code: str
    name: str
    faculties: List[FacultyOption]

class ElectiveGroups(BaseModel):
    mdm: List[ElectiveSubjectOut] = []
    oe: List[ElectiveSubjectOut] = []
    pe: List[ElectiveSubjectOut] = []

class ElectiveSelectionOut(ElectiveSelectionsIn):
    id: int
    student_id: int
    selections_locked: bool
    class Config:
        from_attributes = True

class ElectiveSubjectsResponse(BaseModel):
    success: bool = True
    electives: ElectiveGroups
    currentSelections: Optional[ElectiveSelectionOut] = None


# --- 7. Export Schemas ---

class ClassExportResponse(BaseModel):
    success: bool = True
    data: Dict[str, Any]


# --- 8. Generic Responses ---

class MessageResponse(BaseModel):
    success: bool = True
    message: str

class ErrorResponse(BaseModel):
    """A standardized schema for API error responses."""
    success: bool = False
    error: str

import asyncio
import threading

import httpx
import pytest

from classtrack import crud, models
from classtrack.main import app
from classtrack.core.security import verify_password

TA = models.SubmissionTypeCode.TA
CIE = models.SubmissionTypeCode.CIE
DEFAULTER = models.SubmissionTypeCode.DEFAULTER

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
IMPORT_HEADER = ["roll_no", "name", "hall_ticket_number", "attendance_percent"]


@pytest.fixture
def school_class(factory):
    return factory.school_class(name="A", year="SY")


@pytest.fixture
def teacher(factory, school_class):
    return factory.user(models.UserRole.class_teacher, name="Class Teacher", school_class=school_class)


@pytest.fixture
def headers(auth_headers, teacher):
    return auth_headers(teacher)


# --- Class, staff and batches ---

def test_class_info(client, headers, school_class):
    response = client.get("/class-teacher/class-info", headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["class"]["id"] == school_class.id
    assert body["class"]["division"] == "A"
    assert body["class"]["year"] == "SY"


def test_class_info_without_class(client, factory, auth_headers):
    teacher = factory.user(models.UserRole.class_teacher)
    response = client.get("/class-teacher/class-info", headers=auth_headers(teacher))
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_faculties_exclude_directors(client, factory, headers):
    factory.user(models.UserRole.faculty, name="Zara")
    factory.user(models.UserRole.hod, name="Asha")
    factory.user(models.UserRole.director, name="Boss")

    response = client.get("/class-teacher/faculties", headers=headers)
    names = [f["name"] for f in response.json()["faculties"]]
    assert names == ["Asha", "Class Teacher", "Zara"]


def test_create_batch_assigns_roll_range_numerically(client, factory, db_session, headers, school_class):
    faculty = factory.user(models.UserRole.faculty)
    students = {roll: factory.student(school_class, roll) for roll in range(1, 13)}

    response = client.post(
        "/class-teacher/create-batch",
        json={"name": "B1", "roll_start": "1", "roll_end": "9", "faculty_id": faculty.id},
        headers=headers,
    )
    assert response.status_code == 200
    batch_id = response.json()["batch"]["id"]

    for roll, student in students.items():
        db_session.refresh(student)
        assert (student.batch_id == batch_id) == (roll <= 9)

    link = db_session.query(models.FacultySubject).filter_by(batch_id=batch_id).one()
    assert link.faculty_id == faculty.id
    assert link.subject_id is None

    listed = client.get("/class-teacher/batches", headers=headers).json()["batches"]
    assert [b["name"] for b in listed] == ["B1"]


def test_create_batch_compares_zero_padded_rolls_by_value(client, factory, db_session, headers, school_class):
    faculty = factory.user(models.UserRole.faculty)
    padded = factory.student(school_class, "01")
    plain = factory.student(school_class, "3")
    outside = factory.student(school_class, "06")

    response = client.post(
        "/class-teacher/create-batch",
        json={"name": "B1", "roll_start": "1", "roll_end": "5", "faculty_id": faculty.id},
        headers=headers,
    )
    batch_id = response.json()["batch"]["id"]

    for student in (padded, plain, outside):
        db_session.refresh(student)
    assert padded.batch_id == batch_id
    assert plain.batch_id == batch_id
    assert outside.batch_id is None


def test_create_batch_requires_all_fields(client, headers):
    response = client.post("/class-teacher/create-batch", json={"name": "B1"}, headers=headers)
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "All fields are required"}


# --- Roster ---

def test_roster_percentages(client, factory, headers, school_class):
    types = factory.submission_types()
    theory = factory.subject("Maths", school_class=school_class)
    practical = factory.subject("Maths Lab", type="practical", school_class=school_class)
    elective = factory.subject("Design Thinking", type="oe")

    complete = factory.student(school_class, 1)
    factory.submission(complete, theory, types[TA])
    factory.submission(complete, theory, types[CIE])
    factory.submission(complete, practical, types[TA])

    defaulter = factory.student(school_class, 2, defaulter=True)
    factory.submission(defaulter, theory, types[TA])
    factory.submission(defaulter, theory, types[CIE])

    with_elective = factory.student(school_class, 3)
    factory.selection(with_elective, oe_id=elective.id)
    factory.submission(with_elective, elective, types[TA])

    response = client.get("/class-teacher/students", headers=headers)
    assert response.status_code == 200
    rows = {s["roll_no"]: s for s in response.json()["students"]}

    assert rows["1"]["submission_percentage"] == 100
    # theory needs TA, CIE and defaulter work; practical needs TA
    assert rows["2"]["submission_percentage"] == 50
    # theory (2) + practical (1) + elective (2), only the elective TA done
    assert rows["3"]["submission_percentage"] == 20


def test_roster_is_ordered_by_roll_number(client, factory, headers, school_class):
    for roll in ("10", "2", "1"):
        factory.student(school_class, roll)

    rolls = [s["roll_no"] for s in client.get("/class-teacher/students", headers=headers).json()["students"]]
    assert rolls == ["1", "2", "10"]


def test_roster_without_submission_types_is_all_pending(client, factory, headers, school_class):
    factory.subject("Maths", school_class=school_class)
    factory.student(school_class, 1)

    response = client.get("/class-teacher/students", headers=headers)
    assert response.status_code == 200
    assert response.json()["students"][0]["submission_percentage"] == 0


# --- Student updates and deletes ---

def test_update_student_recomputes_defaulter_and_upserts_selection(client, factory, db_session, headers, school_class):
    student = factory.student(school_class, 1)
    elective = factory.subject("Robotics", type="mdm")
    faculty = factory.user(models.UserRole.faculty)

    response = client.put(
        f"/class-teacher/student/{student.id}",
        json={
            "attendance_percent": 60,
            "electiveSelections": {"mdm_id": elective.id, "mdm_faculty_id": faculty.id},
        },
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["student"]["defaulter"] is True

    selection = db_session.query(models.ElectiveSelection).filter_by(student_id=student.id).one()
    assert selection.mdm_id == elective.id
    assert selection.mdm_faculty_id == faculty.id
    assert selection.selections_locked is False

    response = client.put(
        f"/class-teacher/student/{student.id}",
        json={"electiveSelections": {"oe_id": elective.id}},
        headers=headers,
    )
    assert response.status_code == 200
    assert db_session.query(models.ElectiveSelection).filter_by(student_id=student.id).count() == 1


def test_explicit_defaulter_flag_wins(client, factory, headers, school_class):
    student = factory.student(school_class, 1)
    response = client.put(
        f"/class-teacher/student/{student.id}",
        json={"attendance_percent": 50, "defaulter": False},
        headers=headers,
    )
    assert response.json()["student"]["defaulter"] is False


@pytest.mark.parametrize("field", ["name", "roll_no"])
def test_update_student_rejects_null_required_fields(client, factory, db_session, headers, school_class, field):
    student = factory.student(school_class, 1, name="Asha")
    response = client.put(f"/class-teacher/student/{student.id}", json={field: None}, headers=headers)

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert field in response.json()["error"]
    db_session.refresh(student)
    assert (student.name, student.roll_no) == ("Asha", "1")


def test_cannot_update_student_of_another_class(client, factory, db_session, headers):
    other = factory.student(factory.school_class(name="B"), 1, name="Original")
    response = client.put(f"/class-teacher/student/{other.id}", json={"name": "Changed"}, headers=headers)

    assert response.status_code == 403
    assert response.json() == {"success": False, "error": "Unauthorized to edit this student"}
    db_session.refresh(other)
    assert other.name == "Original"


def test_delete_student_removes_submissions(client, factory, db_session, headers, school_class):
    types = factory.submission_types()
    subject = factory.subject("Maths", school_class=school_class)
    student = factory.student(school_class, 1)
    factory.submission(student, subject, types[TA])
    factory.selection(student, oe_id=subject.id)
    student_id = student.id

    response = client.delete(f"/class-teacher/student/{student_id}", headers=headers)
    assert response.status_code == 200
    assert db_session.get(models.Student, student_id) is None
    assert db_session.query(models.StudentSubmission).filter_by(student_id=student_id).count() == 0
    assert db_session.query(models.ElectiveSelection).filter_by(student_id=student_id).count() == 0


def test_delete_student_of_another_class_is_forbidden(client, factory, db_session, headers):
    other = factory.student(factory.school_class(name="B"), 1)
    response = client.delete(f"/class-teacher/student/{other.id}", headers=headers)
    assert response.status_code == 403
    assert db_session.get(models.Student, other.id) is not None


def test_delete_unknown_student(client, headers):
    response = client.delete("/class-teacher/student/999", headers=headers)
    assert response.status_code == 404


# --- Import ---

def test_import_skips_duplicates(client, factory, db_session, headers, school_class, xlsx):
    factory.student(school_class, 1)
    content = xlsx(IMPORT_HEADER, [
        [1, "Already There", "HT-NEW-1", 90],
        [2, "New Student", "HT-2", 70],
        [2, "Same Roll Again", "HT-3", 80],
    ])

    response = client.post(
        "/class-teacher/import-students",
        files={"file": ("students.xlsx", content, XLSX)},
        headers=headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert (body["imported"], body["skipped"]) == (1, 2)
    assert body["message"] == "Import completed. 1 new students added."

    created = db_session.query(models.Student).filter_by(class_id=school_class.id, roll_no="2").one()
    assert created.defaulter is True
    assert created.batch_id is None
    assert verify_password("HT-2", created.password)


def test_import_reports_when_everything_is_a_duplicate(client, factory, headers, school_class, xlsx):
    factory.student(school_class, 1, hall_ticket_number="HT-1")
    content = xlsx(IMPORT_HEADER, [[5, "Other Roll", "HT-1", 90]])

    response = client.post(
        "/class-teacher/import-students",
        files={"file": ("students.xlsx", content, XLSX)},
        headers=headers,
    )
    body = response.json()
    assert (body["imported"], body["skipped"]) == (0, 1)
    assert body["message"] == "No new students to import (all duplicates skipped)."


def test_import_rejects_missing_columns(client, headers, xlsx):
    content = xlsx(["roll_no", "name"], [[1, "Someone"]])
    response = client.post(
        "/class-teacher/import-students",
        files={"file": ("students.xlsx", content, XLSX)},
        headers=headers,
    )
    assert response.status_code == 400
    assert "hall_ticket_number" in response.json()["error"]


def test_import_rejects_empty_sheet(client, headers, xlsx):
    content = xlsx(IMPORT_HEADER, [])
    response = client.post(
        "/class-teacher/import-students",
        files={"file": ("students.xlsx", content, XLSX)},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Excel sheet is empty"


def test_import_rejects_unreadable_file(client, headers):
    response = client.post(
        "/class-teacher/import-students",
        files={"file": ("students.xlsx", b"not a workbook", XLSX)},
        headers=headers,
    )
    assert response.status_code == 400


def test_import_without_file(client, headers):
    response = client.post("/class-teacher/import-students", headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "No file uploaded"


def test_import_work_runs_off_the_event_loop(client, headers, monkeypatch, xlsx):
    seen = {}

    def recording_import(db, class_id, rows):
        try:
            asyncio.get_running_loop()
            seen["on_loop"] = True
        except RuntimeError:
            seen["on_loop"] = False
        return {"imported": len(rows), "skipped": 0}

    monkeypatch.setattr(crud, "import_students", recording_import)
    content = xlsx(IMPORT_HEADER, [[1, "Asha", "HT-1", 90]])

    response = client.post(
        "/class-teacher/import-students",
        files={"file": ("students.xlsx", content, XLSX)},
        headers=headers,
    )
    assert response.status_code == 200
    assert seen == {"on_loop": False}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.mark.anyio
async def test_other_requests_are_served_during_an_import(client, headers, monkeypatch, xlsx):
    health_served = threading.Event()

    def slow_import(db, class_id, rows):
        # Only finishes once a concurrent request got through
        if not health_served.wait(timeout=5):
            return {"imported": 0, "skipped": len(rows)}
        return {"imported": len(rows), "skipped": 0}

    monkeypatch.setattr(crud, "import_students", slow_import)
    content = xlsx(IMPORT_HEADER, [[1, "Asha", "HT-1", 90]])

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as async_client:
        async def ping():
            await asyncio.sleep(0.05)
            response = await async_client.get("/")
            health_served.set()
            return response

        import_response, ping_response = await asyncio.gather(
            async_client.post(
                "/class-teacher/import-students",
                files={"file": ("students.xlsx", content, XLSX)},
                headers=headers,
            ),
            ping(),
        )

    assert ping_response.status_code == 200
    assert import_response.status_code == 200
    assert import_response.json()["imported"] == 1


# --- Subjects ---

def test_assign_theory_subject(client, factory, db_session, headers, school_class):
    faculty = factory.user(models.UserRole.faculty)
    response = client.post(
        "/class-teacher/subjects/assign",
        json={
            "class_id": school_class.id,
            "subject_code": "CS201",
            "subject_name": "Data Structures",
            "type": "Theory",
            "faculty_id": faculty.id,
        },
        headers=headers,
    )
    assert response.status_code == 201
    body = response.json()
    assert body["subject"]["type"] == "theory"
    assert len(body["assignments"]) == 1
    assert body["assignments"][0]["batch_id"] is None
    assert body["assignments"][0]["faculty_id"] == faculty.id


def test_assign_practical_subject_per_batch(client, factory, db_session, headers, school_class):
    first, second = factory.user(models.UserRole.faculty), factory.user(models.UserRole.faculty)
    b1 = factory.batch(school_class, "B1", "1", "10")
    b2 = factory.batch(school_class, "B2", "11", "20")

    response = client.post(
        "/class-teacher/subjects/assign",
        json={
            "class_id": school_class.id,
            "subject_code": "CS201L",
            "subject_name": "Data Structures Lab",
            "type": "practical",
            "faculty_assignments": [
                {"batch_id": b1.id, "faculty_id": first.id},
                {"batch_id": b2.id, "faculty_id": second.id},
            ],
        },
        headers=headers,
    )
    assert response.status_code == 201
    pairs = {(a["batch_id"], a["faculty_id"]) for a in response.json()["assignments"]}
    assert pairs == {(b1.id, first.id), (b2.id, second.id)}


@pytest.mark.parametrize("payload,error", [
    ({"subject_code": "X", "subject_name": "X", "type": "theory"}, "Missing required fields."),
    ({"subject_code": "X", "subject_name": "X", "type": "theory"}, "Faculty ID required for theory subject."),
    ({"subject_code": "X", "subject_name": "X", "type": "practical"},
     "faculty_assignments array required for practical subjects."),
    ({"subject_code": "X", "subject_name": "X", "type": "practical", "faculty_assignments": [{"batch_id": 1}]},
     "Each batch assignment must have batch_id and faculty_id."),
])
def test_assign_subject_validation(client, db_session, headers, school_class, payload, error):
    if error != "Missing required fields.":
        payload = {**payload, "class_id": school_class.id}

    response = client.post("/class-teacher/subjects/assign", json=payload, headers=headers)
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": error}
    assert db_session.query(models.Subject).count() == 0


def test_assign_subject_to_another_class_is_forbidden(client, factory, headers):
    other = factory.school_class(name="B")
    faculty = factory.user(models.UserRole.faculty)
    response = client.post(
        "/class-teacher/subjects/assign",
        json={
            "class_id": other.id, "subject_code": "X", "subject_name": "X",
            "type": "theory", "faculty_id": faculty.id,
        },
        headers=headers,
    )
    assert response.status_code == 403


def test_list_subjects_for_class_teacher(client, factory, headers, school_class):
    factory.subject("Maths", school_class=school_class)
    factory.subject("Maths Lab", type="practical", school_class=school_class)
    factory.subject("Elsewhere", school_class=factory.school_class(name="B"))

    subjects = client.get("/class-teacher/subjects", headers=headers).json()["subjects"]
    assert [s["name"] for s in subjects["theory"]] == ["Maths"]
    assert [s["name"] for s in subjects["practical"]] == ["Maths Lab"]
    assert "type" not in subjects["theory"][0]
    assert "type" not in subjects["practical"][0]


def test_list_subjects_for_faculty(client, factory, auth_headers, school_class):
    faculty = factory.user(models.UserRole.faculty)
    theory = factory.subject("Maths", school_class=school_class)
    lab = factory.subject("Maths Lab", type="practical", school_class=school_class)
    elective = factory.subject("Robotics", type="mdm")
    factory.faculty_subject(faculty, theory, school_class)
    factory.faculty_subject(faculty, lab, school_class)
    factory.offering(elective, faculty_ids=[faculty.id])

    subjects = client.get("/class-teacher/subjects", headers=auth_headers(faculty)).json()["subjects"]
    assert [s["name"] for s in subjects["theory"]] == ["Maths", "Robotics"]
    assert [s["type"] for s in subjects["theory"]] == ["theory", "mdm"]
    assert [s["name"] for s in subjects["practical"]] == ["Maths Lab"]


def test_delete_subject_removes_assignments(client, factory, db_session, headers, school_class):
    faculty = factory.user(models.UserRole.faculty)
    subject = factory.subject("Maths", school_class=school_class)
    factory.faculty_subject(faculty, subject, school_class)
    subject_id = subject.id

    response = client.delete(f"/class-teacher/subjects/{subject_id}", headers=headers)
    assert response.status_code == 200
    assert db_session.get(models.Subject, subject_id) is None
    assert db_session.query(models.FacultySubject).filter_by(subject_id=subject_id).count() == 0


def test_delete_subject_of_another_class_is_forbidden(client, factory, headers):
    subject = factory.subject("Elsewhere", school_class=factory.school_class(name="B"))
    response = client.delete(f"/class-teacher/subjects/{subject.id}", headers=headers)
    assert response.status_code == 403


# --- Availability ---

def test_availability_round_trip(client, factory, headers, school_class):
    factory.subject("Maths", school_class=school_class, code="MA101")
    factory.subject("Physics", school_class=school_class, code="PH101")

    assert client.get("/class-teacher/availability", headers=headers).json()["isAvailable"] is False

    response = client.put(
        "/class-teacher/availability",
        json={"isAvailable": True, "selectedSubjects": ["MA101", "PH101"]},
        headers=headers,
    )
    assert response.status_code == 200
    assert client.get("/class-teacher/availability", headers=headers).json()["isAvailable"] is True

    available = client.get("/class-teacher/available-subjects", headers=headers).json()
    assert available["isAvailable"] is True
    assert sorted(available["selectedSubjects"]) == ["MA101", "PH101"]

    client.put(
        "/class-teacher/availability",
        json={"isAvailable": False, "selectedSubjects": []},
        headers=headers,
    )
    available = client.get("/class-teacher/available-subjects", headers=headers).json()
    assert available == {"success": True, "isAvailable": False, "selectedSubjects": []}


def test_availability_rejects_bad_input(client, headers):
    response = client.put(
        "/class-teacher/availability",
        json={"isAvailable": True, "selectedSubjects": "MA101"},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "selectedSubjects must be an array"

    response = client.put(
        "/class-teacher/availability",
        json={"isAvailable": True, "selectedSubjects": ["NOPE"]},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid subject codes"


# --- Electives ---

def test_elective_subjects_grouped_by_slot(client, factory, headers, school_class):
    student = factory.student(school_class, 1)
    faculty = factory.user(models.UserRole.faculty, name="Prof Rao")
    other_department = factory.department()

    mdm = factory.subject("Robotics", type="mdm")
    oe = factory.subject("Open Elective: Finance", type="theory")
    own_pe = factory.subject("Cloud", type="pe")
    foreign_pe = factory.subject("Biotech", type="pe")
    factory.subject("Final Year Only", type="mdm")

    factory.offering(mdm, year="SY", faculty_ids=[faculty.id, 9999])
    factory.offering(oe, year="SY")
    factory.offering(own_pe, year="SY", department_id=school_class.department_id)
    factory.offering(foreign_pe, year="SY", department_id=other_department.id)
    factory.offering(factory.subject("Inactive", type="oe"), year="SY", is_active=False)

    body = client.get(f"/class-teacher/elective-subjects/{student.id}", headers=headers).json()
    electives = body["electives"]

    assert [e["name"] for e in electives["mdm"]] == ["Robotics"]
    assert electives["mdm"][0]["faculties"] == [
        {"id": faculty.id, "name": "Prof Rao"},
        {"id": 9999, "name": "Unknown Faculty"},
    ]
    assert [e["name"] for e in electives["oe"]] == ["Open Elective: Finance"]
    assert [e["name"] for e in electives["pe"]] == ["Cloud"]
    assert body["currentSelections"] is None


def test_unlock_student_selections(client, factory, db_session, headers, school_class):
    student = factory.student(school_class, 1)
    selection = factory.selection(student, locked=True)

    response = client.put(f"/class-teacher/unlock-student-selections/{student.id}", headers=headers)
    assert response.status_code == 200
    db_session.refresh(selection)
    assert selection.selections_locked is False

    current = client.get(f"/class-teacher/elective-subjects/{student.id}", headers=headers).json()
    assert current["currentSelections"]["selections_locked"] is False

from sqlalchemy.exc import SQLAlchemyError

from classtrack import crud, models
from classtrack.core.security import get_password_hash


def test_login_and_profile(client, factory):
    factory.user(
        models.UserRole.class_teacher,
        email="teacher@example.com",
        hashed_password=get_password_hash("secret123"),
    )

    response = client.post("/token", json={"email": "teacher@example.com", "password": "secret123"})
    assert response.status_code == 200
    token = response.json()["access_token"]
    assert response.json()["token_type"] == "bearer"

    me = client.get("/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "teacher@example.com"
    assert me.json()["role"] == "class_teacher"


def test_login_with_wrong_password(client, factory):
    factory.user(email="faculty@example.com", hashed_password=get_password_hash("right"))
    response = client.post("/token", json={"email": "faculty@example.com", "password": "wrong"})
    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Incorrect email or password"}


def test_login_with_malformed_body(client):
    response = client.post("/token", json={"email": "not-an-email"})
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_missing_token(client):
    response = client.get("/class-teacher/students")
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_invalid_token(client):
    response = client.get("/me", headers={"Authorization": "Bearer nonsense"})
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid authentication credentials"


def test_token_for_removed_user(client, factory, auth_headers, db_session):
    user = factory.user()
    headers = auth_headers(user)
    db_session.delete(user)
    db_session.commit()

    response = client.get("/me", headers=headers)
    assert response.status_code == 401


def test_datastore_errors_use_error_envelope(client, factory, auth_headers, monkeypatch):
    def broken(db):
        raise SQLAlchemyError("connection lost")

    monkeypatch.setattr(crud, "list_staff", broken)
    user = factory.user(models.UserRole.faculty)

    response = client.get("/class-teacher/faculties", headers=auth_headers(user))
    assert response.status_code == 500
    assert response.json()["success"] is False
    assert "connection lost" in response.json()["error"]


def test_health(client):
    assert client.get("/").json()["success"] is True

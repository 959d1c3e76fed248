from datetime import datetime, timedelta, timezone

from jose import jwt

from armory.config import settings
from armory.database import utcnow
from armory.models import AuditLog, Role, User
from armory.utils.security import create_access_token, decode_access_token

PASSWORD = "password123"


def login(client, email, password=PASSWORD):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def test_login_returns_token_and_user(client, users):
    response = login(client, "cmdfort@military.gov")

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["expires_in"] == settings.access_token_expire_minutes * 60
    assert body["user"]["role"] == "BASE_COMMANDER"
    assert body["user"]["base"]["code"] == "FL001"
    assert decode_access_token(body["access_token"]) == users["cmd_fort"].id


def test_login_is_audited(client, users, db):
    login(client, "logfort@military.gov")

    entry = db.query(AuditLog).filter(AuditLog.action == "LOGIN").one()
    assert entry.user_id == users["log_fort"].id
    assert entry.entity == "User"
    assert entry.new_values["email"] == "logfort@military.gov"


def test_wrong_password_rejected(client, users):
    response = login(client, "admin@military.gov", "not-the-password")

    assert response.status_code == 401
    assert response.json() == {"detail": "Invalid email or password", "code": "not_authenticated"}


def test_unknown_email_rejected(client, users):
    assert login(client, "ghost@military.gov").status_code == 401


def test_inactive_user_cannot_login(client, users):
    response = login(client, "retired@military.gov")

    assert response.status_code == 401
    assert response.json()["detail"] == "Account is deactivated"


def test_me_returns_current_user(client, auth):
    response = client.get("/api/auth/me", headers=auth("log_camp"))

    assert response.status_code == 200
    assert response.json()["username"] == "logcamp"
    assert "hashed_password" not in response.json()


def test_missing_token_rejected(client, users):
    response = client.get("/api/auth/me")

    assert response.status_code == 401
    assert response.json()["code"] == "not_authenticated"


def test_garbage_token_rejected(client, users):
    response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401


def test_expired_token_rejected(client, users):
    token = create_access_token({"sub": str(users["admin"].id)}, expires_delta=timedelta(minutes=-5))

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_token_of_deactivated_user_rejected(client, auth, users, db):
    users["cmd_camp"].is_active = False
    db.commit()

    assert client.get("/api/auth/me", headers=auth("cmd_camp")).status_code == 401


def test_logout(client, auth):
    response = client.post("/api/auth/logout", headers=auth("admin"))

    assert response.status_code == 200
    assert response.json()["message"] == "Logged out successfully"


def test_registration_disabled_by_default(client, bases):
    response = client.post(
        "/api/auth/register",
        json={
            "email": "new.recruit@military.gov",
            "username": "recruit",
            "password": "basictraining",
            "first_name": "Sam",
            "last_name": "Recruit",
            "role": "LOGISTICS_OFFICER",
            "base_id": bases["fort"].id,
        },
    )

    assert response.status_code == 403


def test_registration_when_enabled(client, bases, db, monkeypatch):
    monkeypatch.setattr(settings, "allow_registration", True)
    payload = {
        "email": "new.recruit@military.gov",
        "username": "recruit",
        "password": "basictraining",
        "first_name": "Sam",
        "last_name": "Recruit",
        "role": "LOGISTICS_OFFICER",
        "base_id": bases["fort"].id,
    }

    created = client.post("/api/auth/register", json=payload)
    admin = client.post(
        "/api/auth/register",
        json={**payload, "email": "boss@military.gov", "username": "boss", "role": "ADMIN", "base_id": None},
    )

    assert created.status_code == 201, created.text
    assert db.query(User).filter(User.username == "recruit").one().role == Role.LOGISTICS_OFFICER
    assert admin.status_code == 403
    assert login(client, "new.recruit@military.gov", "basictraining").status_code == 200


def test_protected_routes_require_token(client, bases):
    for path in ("/api/assets", "/api/transfers", "/api/dashboard/metrics", "/api/audit-logs"):
        assert client.get(path).status_code == 401, path


def test_health_is_public(client):
    assert client.get("/api/health").json()["status"] == "healthy"


def test_token_expiry_is_utc():
    token = create_access_token({"sub": "1"})

    claims = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    expected = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    assert abs(claims["exp"] - expected.timestamp()) < 60


def test_utcnow_is_naive_utc():
    now = utcnow()

    assert now.tzinfo is None
    assert abs(now - datetime.now(timezone.utc).replace(tzinfo=None)) < timedelta(seconds=5)

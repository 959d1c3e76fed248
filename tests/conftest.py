import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from armory.database import Base, build_engine, get_db, get_session_factory
from armory.main import app
from armory.models import Asset, AssetStatus, EquipmentType, MilitaryBase, Role, User
from armory.services.audit import AuditTrail
from armory.utils.rate_limiter import limiter
from armory.utils.security import create_access_token, get_password_hash

PASSWORD = "password123"


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'armory_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    limiter.enabled = False
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def bases(db):
    fort = MilitaryBase(name="Fort Liberty", code="FL001", location="North Carolina, USA")
    camp = MilitaryBase(name="Camp Pendleton", code="CP002", location="California, USA")
    lewis = MilitaryBase(name="Joint Base Lewis-McChord", code="JBLM003", location="Washington, USA")
    db.add_all([fort, camp, lewis])
    db.commit()
    return {"fort": fort, "camp": camp, "lewis": lewis}


def _user(db, username, role, base=None, is_active=True):
    user = User(
        email=f"{username}@military.gov",
        username=username,
        hashed_password=get_password_hash(PASSWORD),
        first_name=username.capitalize(),
        last_name="Tester",
        role=role,
        base_id=base.id if base else None,
        is_active=is_active,
    )
    db.add(user)
    return user


@pytest.fixture
def users(db, bases):
    created = {
        "admin": _user(db, "admin", Role.ADMIN),
        "cmd_fort": _user(db, "cmdfort", Role.BASE_COMMANDER, bases["fort"]),
        "cmd_camp": _user(db, "cmdcamp", Role.BASE_COMMANDER, bases["camp"]),
        "log_fort": _user(db, "logfort", Role.LOGISTICS_OFFICER, bases["fort"]),
        "log_camp": _user(db, "logcamp", Role.LOGISTICS_OFFICER, bases["camp"]),
        "inactive_fort": _user(db, "retired", Role.LOGISTICS_OFFICER, bases["fort"], is_active=False),
    }
    db.commit()
    return created


@pytest.fixture
def auth(users):
    """auth("admin") -> Authorization header for that fixture user"""
    def headers(name):
        token = create_access_token({"sub": str(users[name].id)})
        return {"Authorization": f"Bearer {token}"}
    return headers


@pytest.fixture
def make_asset(db):
    counter = {"n": 0}

    def make(base, serial_number=None, status=AssetStatus.AVAILABLE, equipment_type=EquipmentType.WEAPON, name="M4A1 Carbine"):
        counter["n"] += 1
        asset = Asset(
            serial_number=serial_number or f"SN-{counter['n']:04d}",
            name=name,
            equipment_type=equipment_type,
            status=status,
            base_id=base.id,
        )
        db.add(asset)
        db.commit()
        return asset
    return make


@pytest.fixture
def trail():
    """Audit trail that records nothing, for direct service calls"""
    def make(user):
        return AuditTrail(user_id=user.id, session_factory=None)
    return make


@pytest.fixture
def reload(db):
    """Re-read a row after the API changed it through another session"""
    def fetch(model, obj_id):
        db.expire_all()
        return db.get(model, obj_id)
    return fetch

from armory.models import Asset, MilitaryBase, Purchase, User
from armory.utils.demo_seed import DEMO_PASSWORD, seed


def test_seed_creates_demo_data(db, client):
    seed(db)

    assert db.query(MilitaryBase).count() == 3
    assert db.query(User).count() == 5
    assert db.query(Purchase).count() == 2
    assert db.query(Asset).count() == 6

    login = client.post("/api/auth/login", json={"email": "commander.fl@military.gov", "password": DEMO_PASSWORD})
    assert login.status_code == 200
    assert login.json()["user"]["base"]["code"] == "FL001"


def test_seed_skips_populated_database(db, bases):
    seed(db)

    assert db.query(MilitaryBase).count() == 3
    assert db.query(User).count() == 0

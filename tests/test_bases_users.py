from armory.models import MilitaryBase, User
from armory.services.users import user_reference_counts


def test_admin_creates_base_with_uppercased_code(client, auth, users):
    response = client.post(
        "/api/bases",
        json={"name": "Fort Bragg North", "code": "fb004", "location": "North Carolina, USA"},
        headers=auth("admin"),
    )

    assert response.status_code == 201, response.text
    assert response.json()["code"] == "FB004"
    assert response.json()["is_active"] is True


def test_base_name_and_code_are_unique(client, auth, bases):
    same_code = client.post(
        "/api/bases", json={"name": "Another Fort", "code": "fl001", "location": "Texas, USA"}, headers=auth("admin"),
    )
    same_name = client.post(
        "/api/bases", json={"name": "Fort Liberty", "code": "FL009", "location": "Texas, USA"}, headers=auth("admin"),
    )

    assert same_code.status_code == 409
    assert same_name.status_code == 409


def test_non_admin_cannot_manage_bases(client, auth, bases):
    payload = {"name": "Rogue Outpost", "code": "RO001", "location": "Nowhere"}

    assert client.post("/api/bases", json=payload, headers=auth("cmd_fort")).status_code == 403
    assert client.delete(f"/api/bases/{bases['lewis'].id}", headers=auth("cmd_fort")).status_code == 403


def test_scoped_users_see_only_their_base(client, auth, bases):
    listing = client.get("/api/bases", headers=auth("log_fort")).json()

    assert [b["code"] for b in listing["items"]] == ["FL001"]
    assert client.get(f"/api/bases/{bases['camp'].id}", headers=auth("log_fort")).status_code == 404
    assert client.get("/api/bases", headers=auth("admin")).json()["pagination"]["total"] == 3


def test_base_detail_counts(client, auth, bases, make_asset):
    make_asset(bases["fort"])
    make_asset(bases["fort"])

    body = client.get(f"/api/bases/{bases['fort'].id}", headers=auth("cmd_fort")).json()

    assert body["code"] == "FL001"
    assert body["counts"]["assets"] == 2
    assert body["counts"]["users"] == 3


def test_unreferenced_base_is_deleted(client, auth, bases, reload):
    response = client.delete(f"/api/bases/{bases['lewis'].id}", headers=auth("admin"))

    assert response.status_code == 200
    assert response.json() == {"message": "Base deleted successfully", "deactivated": False, "base": None}
    assert reload(MilitaryBase, bases["lewis"].id) is None


def test_referenced_base_is_deactivated(client, auth, bases, reload):
    response = client.delete(f"/api/bases/{bases['fort'].id}", headers=auth("admin"))

    assert response.status_code == 200
    assert response.json()["deactivated"] is True
    assert response.json()["base"]["is_active"] is False
    assert reload(MilitaryBase, bases["fort"].id).is_active is False


def user_payload(base, **overrides):
    payload = {
        "email": "sgt.miller@military.gov",
        "username": "sgtmiller",
        "password": "securepass1",
        "first_name": "Dana",
        "last_name": "Miller",
        "role": "LOGISTICS_OFFICER",
        "base_id": base.id,
    }
    payload.update(overrides)
    return payload


def test_admin_creates_user(client, auth, bases):
    response = client.post("/api/users", json=user_payload(bases["camp"]), headers=auth("admin"))

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["base"]["code"] == "CP002"
    assert "hashed_password" not in body
    assert "password" not in body


def test_scoped_role_requires_base(client, auth, bases):
    response = client.post(
        "/api/users", json=user_payload(bases["camp"], base_id=None, role="BASE_COMMANDER"), headers=auth("admin"),
    )

    assert response.status_code == 422


def test_duplicate_email_conflicts(client, auth, bases):
    response = client.post(
        "/api/users", json=user_payload(bases["camp"], email="logfort@military.gov"), headers=auth("admin"),
    )

    assert response.status_code == 409
    assert response.json()["detail"] == "User with this email already exists"


def test_users_endpoints_are_admin_only(client, auth, bases):
    assert client.get("/api/users", headers=auth("cmd_fort")).status_code == 403
    assert client.post("/api/users", json=user_payload(bases["fort"]), headers=auth("cmd_fort")).status_code == 403


def test_update_user_changes_password(client, auth, users):
    response = client.put(
        f"/api/users/{users['log_camp'].id}",
        json={"password": "rotated-pass-2024", "first_name": "Jordan"},
        headers=auth("admin"),
    )
    login = client.post(
        "/api/auth/login", json={"email": "logcamp@military.gov", "password": "rotated-pass-2024"},
    )

    assert response.status_code == 200
    assert response.json()["first_name"] == "Jordan"
    assert login.status_code == 200


def test_update_cannot_strip_base_from_scoped_role(client, auth, users):
    response = client.put(f"/api/users/{users['log_camp'].id}", json={"base_id": None}, headers=auth("admin"))

    assert response.status_code == 422


def test_admin_cannot_delete_self(client, auth, users, reload):
    response = client.delete(f"/api/users/{users['admin'].id}", headers=auth("admin"))

    assert response.status_code == 409
    assert response.json()["detail"] == "Cannot delete your own account"
    assert reload(User, users["admin"].id) is not None


def test_user_without_records_is_deleted(client, auth, users, reload):
    response = client.delete(f"/api/users/{users['log_camp'].id}", headers=auth("admin"))

    assert response.status_code == 200
    assert response.json()["deactivated"] is False
    assert reload(User, users["log_camp"].id) is None


def test_user_with_records_is_deactivated(client, auth, bases, users, make_asset, reload):
    asset = make_asset(bases["fort"])
    client.post(
        "/api/assignments",
        json={
            "asset_id": asset.id,
            "assigned_to_id": users["log_fort"].id,
            "base_id": bases["fort"].id,
            "purpose": "Convoy escort",
        },
        headers=auth("admin"),
    )

    response = client.delete(f"/api/users/{users['log_fort'].id}", headers=auth("admin"))

    assert response.status_code == 200
    assert response.json()["deactivated"] is True
    assert reload(User, users["log_fort"].id).is_active is False


def test_transfer_approver_is_deactivated_not_deleted(client, auth, bases, users, make_asset, reload, db):
    asset = make_asset(bases["fort"])
    transfer = client.post(
        "/api/transfers",
        json={
            "from_base_id": bases["fort"].id,
            "to_base_id": bases["camp"].id,
            "reason": "Operational redeployment",
            "assets": [{"asset_id": asset.id}],
        },
        headers=auth("admin"),
    ).json()
    approval = client.put(f"/api/transfers/{transfer['id']}/approve", headers=auth("cmd_camp"))
    assert approval.status_code == 200, approval.text
    assert user_reference_counts(db, users["cmd_camp"].id)["approved_transfers"] == 1

    response = client.delete(f"/api/users/{users['cmd_camp'].id}", headers=auth("admin"))

    assert response.status_code == 200, response.text
    assert response.json()["deactivated"] is True
    assert reload(User, users["cmd_camp"].id).is_active is False

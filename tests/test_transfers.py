import re

from armory.models import Asset, AssetStatus, Transfer, TransferItem, TransferStatus
from armory.services.transfers import generate_transfer_code


def transfer_payload(from_base, to_base, *assets, reason="Operational redeployment"):
    return {
        "from_base_id": from_base.id,
        "to_base_id": to_base.id,
        "reason": reason,
        "assets": [{"asset_id": asset.id} for asset in assets],
    }


def create_transfer(client, auth, payload, user="admin"):
    response = client.post("/api/transfers", json=payload, headers=auth(user))
    assert response.status_code == 201, response.text
    return response.json()


def test_transfer_code_format():
    code = generate_transfer_code()
    assert re.fullmatch(r"TRF-[0-9A-Z]+-[0-9A-Z]{5}", code)
    assert generate_transfer_code() != code


def test_create_transfer_claims_assets(client, auth, bases, users, make_asset, reload):
    rifle = make_asset(bases["fort"])
    radio = make_asset(bases["fort"])

    body = create_transfer(client, auth, transfer_payload(bases["fort"], bases["camp"], rifle, radio))

    assert body["status"] == "PENDING"
    assert body["transfer_code"].startswith("TRF-")
    assert body["created_by"]["id"] == users["admin"].id
    assert sorted(item["asset_id"] for item in body["items"]) == sorted([rifle.id, radio.id])
    for asset_id in (rifle.id, radio.id):
        asset = reload(Asset, asset_id)
        assert asset.status == AssetStatus.IN_TRANSIT
        assert asset.base_id == bases["fort"].id


def test_round_trip_moves_assets_to_destination(client, auth, bases, users, make_asset, reload):
    a = make_asset(bases["fort"])
    b = make_asset(bases["fort"])
    transfer = create_transfer(client, auth, transfer_payload(bases["fort"], bases["camp"], a, b), user="log_fort")

    approved = client.put(
        f"/api/transfers/{transfer['id']}/approve",
        json={"notes": "Approved for Q3 rotation"},
        headers=auth("cmd_camp"),
    )
    assert approved.status_code == 200, approved.text
    assert approved.json()["status"] == "APPROVED"
    assert approved.json()["approved_by"]["id"] == users["cmd_camp"].id
    assert approved.json()["approved_at"] is not None

    completed = client.put(f"/api/transfers/{transfer['id']}/complete", headers=auth("cmd_camp"))
    assert completed.status_code == 200, completed.text
    assert completed.json()["status"] == "COMPLETED"
    assert completed.json()["completed_at"] is not None

    for asset_id in (a.id, b.id):
        asset = reload(Asset, asset_id)
        assert asset.base_id == bases["camp"].id
        assert asset.status == AssetStatus.AVAILABLE


def test_cancel_restores_assets_at_source(client, auth, bases, make_asset, reload):
    a = make_asset(bases["fort"])
    transfer = create_transfer(client, auth, transfer_payload(bases["fort"], bases["camp"], a))

    response = client.put(
        f"/api/transfers/{transfer['id']}/cancel",
        json={"reason": "Mission postponed"},
        headers=auth("cmd_fort"),
    )

    assert response.status_code == 200, response.text
    assert response.json()["status"] == "CANCELLED"
    assert "Cancellation reason: Mission postponed" in response.json()["notes"]
    asset = reload(Asset, a.id)
    assert asset.base_id == bases["fort"].id
    assert asset.status == AssetStatus.AVAILABLE


def test_cancel_after_approval_is_allowed(client, auth, bases, make_asset, reload):
    a = make_asset(bases["fort"])
    transfer = create_transfer(client, auth, transfer_payload(bases["fort"], bases["camp"], a))
    client.put(f"/api/transfers/{transfer['id']}/approve", headers=auth("admin"))

    response = client.put(f"/api/transfers/{transfer['id']}/cancel", headers=auth("cmd_fort"))

    assert response.status_code == 200, response.text
    assert response.json()["status"] == "CANCELLED"
    assert reload(Asset, a.id).status == AssetStatus.AVAILABLE


def test_complete_requires_approval(client, auth, bases, make_asset, reload):
    a = make_asset(bases["fort"])
    transfer = create_transfer(client, auth, transfer_payload(bases["fort"], bases["camp"], a))

    response = client.put(f"/api/transfers/{transfer['id']}/complete", headers=auth("admin"))

    assert response.status_code == 409
    assert response.json() == {"detail": "Transfer must be approved before completion", "code": "conflict"}
    assert reload(Asset, a.id).status == AssetStatus.IN_TRANSIT
    assert reload(Transfer, transfer["id"]).status == TransferStatus.PENDING


def test_terminal_transfers_reject_further_transitions(client, auth, bases, make_asset):
    a = make_asset(bases["fort"])
    transfer = create_transfer(client, auth, transfer_payload(bases["fort"], bases["camp"], a))
    client.put(f"/api/transfers/{transfer['id']}/approve", headers=auth("admin"))
    client.put(f"/api/transfers/{transfer['id']}/complete", headers=auth("admin"))

    for action in ("approve", "complete", "cancel"):
        response = client.put(f"/api/transfers/{transfer['id']}/{action}", headers=auth("admin"))
        assert response.status_code == 409, action


def test_approve_twice_conflicts(client, auth, bases, make_asset):
    a = make_asset(bases["fort"])
    transfer = create_transfer(client, auth, transfer_payload(bases["fort"], bases["camp"], a))
    assert client.put(f"/api/transfers/{transfer['id']}/approve", headers=auth("admin")).status_code == 200

    response = client.put(f"/api/transfers/{transfer['id']}/approve", headers=auth("admin"))

    assert response.status_code == 409
    assert response.json()["detail"] == "Transfer is not in pending status"


def test_asset_cannot_join_two_open_transfers(client, auth, bases, make_asset, db):
    a = make_asset(bases["fort"])
    first = create_transfer(client, auth, transfer_payload(bases["fort"], bases["camp"], a))

    response = client.post(
        "/api/transfers", json=transfer_payload(bases["fort"], bases["lewis"], a), headers=auth("admin"),
    )

    assert response.status_code == 409
    assert first["transfer_code"] in response.json()["detail"]
    assert db.query(TransferItem).filter(TransferItem.asset_id == a.id).count() == 1


def test_asset_must_be_at_source_base(client, auth, bases, make_asset):
    a = make_asset(bases["camp"])

    response = client.post(
        "/api/transfers", json=transfer_payload(bases["fort"], bases["lewis"], a), headers=auth("admin"),
    )

    assert response.status_code == 409
    assert "not at the source base" in response.json()["detail"]


def test_failed_create_leaves_no_partial_state(client, auth, bases, make_asset, reload, db):
    ready = make_asset(bases["fort"])
    busy = make_asset(bases["fort"], status=AssetStatus.MAINTENANCE)

    response = client.post(
        "/api/transfers",
        json=transfer_payload(bases["fort"], bases["camp"], ready, busy),
        headers=auth("admin"),
    )

    assert response.status_code == 409
    assert reload(Asset, ready.id).status == AssetStatus.AVAILABLE
    assert db.query(Transfer).count() == 0
    assert db.query(TransferItem).count() == 0


def test_same_source_and_destination_rejected(client, auth, bases, make_asset):
    a = make_asset(bases["fort"])

    response = client.post(
        "/api/transfers", json=transfer_payload(bases["fort"], bases["fort"], a), headers=auth("admin"),
    )

    assert response.status_code == 422


def test_duplicate_asset_in_request_rejected(client, auth, bases, make_asset):
    a = make_asset(bases["fort"])

    response = client.post(
        "/api/transfers", json=transfer_payload(bases["fort"], bases["camp"], a, a), headers=auth("admin"),
    )

    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


def test_short_reason_rejected(client, auth, bases, make_asset):
    a = make_asset(bases["fort"])

    response = client.post(
        "/api/transfers",
        json=transfer_payload(bases["fort"], bases["camp"], a, reason="go"),
        headers=auth("admin"),
    )

    assert response.status_code == 422


def test_unknown_asset_is_not_found(client, auth, bases):
    payload = {
        "from_base_id": bases["fort"].id,
        "to_base_id": bases["camp"].id,
        "reason": "Operational redeployment",
        "assets": [{"asset_id": 9999}],
    }

    response = client.post("/api/transfers", json=payload, headers=auth("admin"))

    assert response.status_code == 404
    assert response.json() == {"detail": "Asset not found", "code": "not_found"}


def test_scoped_user_transfers_only_from_own_base(client, auth, bases, make_asset):
    a = make_asset(bases["camp"])

    response = client.post(
        "/api/transfers", json=transfer_payload(bases["camp"], bases["fort"], a), headers=auth("log_fort"),
    )

    assert response.status_code == 403


def test_only_destination_commander_approves(client, auth, bases, make_asset):
    a = make_asset(bases["fort"])
    transfer = create_transfer(client, auth, transfer_payload(bases["fort"], bases["camp"], a))

    source_commander = client.put(f"/api/transfers/{transfer['id']}/approve", headers=auth("cmd_fort"))
    logistics = client.put(f"/api/transfers/{transfer['id']}/approve", headers=auth("log_camp"))

    assert source_commander.status_code == 403
    assert logistics.status_code == 403


def test_uninvolved_base_cannot_see_transfer(client, auth, bases, make_asset):
    a = make_asset(bases["fort"])
    transfer = create_transfer(client, auth, transfer_payload(bases["fort"], bases["lewis"], a))

    assert client.get(f"/api/transfers/{transfer['id']}", headers=auth("cmd_camp")).status_code == 404
    assert client.put(f"/api/transfers/{transfer['id']}/approve", headers=auth("cmd_camp")).status_code == 404
    assert client.get(f"/api/transfers/{transfer['id']}", headers=auth("cmd_fort")).status_code == 200


def test_list_is_scoped_and_filterable(client, auth, bases, make_asset):
    to_camp = create_transfer(client, auth, transfer_payload(bases["fort"], bases["camp"], make_asset(bases["fort"])))
    create_transfer(client, auth, transfer_payload(bases["fort"], bases["lewis"], make_asset(bases["fort"])))

    camp_view = client.get("/api/transfers", headers=auth("cmd_camp")).json()
    assert [t["id"] for t in camp_view["items"]] == [to_camp["id"]]
    assert camp_view["pagination"]["total"] == 1

    admin_view = client.get(
        "/api/transfers", params={"to_base_id": bases["lewis"].id, "status": "PENDING"}, headers=auth("admin"),
    ).json()
    assert admin_view["pagination"]["total"] == 1
    assert admin_view["items"][0]["to_base"]["code"] == "JBLM003"

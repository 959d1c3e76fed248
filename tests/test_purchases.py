from armory.models import Asset, AssetStatus, Purchase


def purchase_payload(base, purchase_order="PO-2024-001", serials=("VH-001", "VH-002"), **overrides):
    payload = {
        "purchase_order": purchase_order,
        "vendor": "Defense Contractors Inc.",
        "total_amount": 450000.00,
        "purchase_date": "2024-01-15",
        "base_id": base.id,
        "assets": [
            {"serial_number": serial, "name": "HMMWV M1151", "equipment_type": "VEHICLE", "value": 225000.00}
            for serial in serials
        ],
    }
    payload.update(overrides)
    return payload


def test_purchase_creates_assets_at_base(client, auth, bases, users, db):
    response = client.post("/api/purchases", json=purchase_payload(bases["fort"]), headers=auth("log_fort"))

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["base"]["code"] == "FL001"
    assert body["created_by"]["id"] == users["log_fort"].id
    assert sorted(a["serial_number"] for a in body["assets"]) == ["VH-001", "VH-002"]

    assets = db.query(Asset).filter(Asset.purchase_id == body["id"]).all()
    assert len(assets) == 2
    for asset in assets:
        assert asset.base_id == bases["fort"].id
        assert asset.status == AssetStatus.AVAILABLE
        assert asset.acquisition_date.isoformat() == "2024-01-15"


def test_duplicate_purchase_order_conflicts(client, auth, bases, db):
    client.post("/api/purchases", json=purchase_payload(bases["fort"]), headers=auth("admin"))

    response = client.post(
        "/api/purchases",
        json=purchase_payload(bases["fort"], serials=("VH-003",)),
        headers=auth("admin"),
    )

    assert response.status_code == 409
    assert db.query(Asset).count() == 2


def test_existing_serial_rejects_whole_purchase(client, auth, bases, make_asset, db):
    make_asset(bases["camp"], serial_number="VH-002")

    response = client.post("/api/purchases", json=purchase_payload(bases["fort"]), headers=auth("admin"))

    assert response.status_code == 409
    assert response.json()["detail"] == "Serial numbers already exist: VH-002"
    assert db.query(Purchase).count() == 0
    assert db.query(Asset).count() == 1


def test_duplicate_serial_inside_request_rejected(client, auth, bases, db):
    response = client.post(
        "/api/purchases",
        json=purchase_payload(bases["fort"], serials=("VH-001", "VH-001")),
        headers=auth("admin"),
    )

    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"
    assert db.query(Purchase).count() == 0


def test_purchase_needs_at_least_one_asset(client, auth, bases):
    response = client.post(
        "/api/purchases", json=purchase_payload(bases["fort"], serials=()), headers=auth("admin"),
    )

    assert response.status_code == 422


def test_scoped_user_purchases_only_for_own_base(client, auth, bases):
    response = client.post("/api/purchases", json=purchase_payload(bases["camp"]), headers=auth("log_fort"))

    assert response.status_code == 403


def test_purchases_are_scoped(client, auth, bases):
    fort = client.post("/api/purchases", json=purchase_payload(bases["fort"]), headers=auth("admin")).json()
    client.post(
        "/api/purchases",
        json=purchase_payload(bases["camp"], purchase_order="PO-2024-002", serials=("RD-001",)),
        headers=auth("admin"),
    )

    fort_view = client.get("/api/purchases", headers=auth("cmd_fort")).json()
    by_vendor = client.get("/api/purchases", params={"vendor": "contractors"}, headers=auth("admin")).json()

    assert [p["id"] for p in fort_view["items"]] == [fort["id"]]
    assert by_vendor["pagination"]["total"] == 2
    assert client.get(f"/api/purchases/{fort['id']}", headers=auth("log_camp")).status_code == 404

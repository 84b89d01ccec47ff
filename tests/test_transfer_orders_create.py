from decimal import Decimal

from app.transit.db.models import AssignmentLine, AuditEvent, TransferOrder
from tests.transit_helpers import (
    Operator,
    blueprint_order,
    create_blueprint,
    create_loadout,
    create_lot,
    create_order,
    create_product,
    new_location,
    reload_lot,
)


def test_create_blueprint_order_builds_lines_in_declared_order(client, db_session):
    operator = Operator(suffix="create-1")
    gauze = create_product(db_session, operator, sku="GAUZE")
    tape = create_product(db_session, operator, sku="TAPE")
    blueprint, bp_lines = create_blueprint(
        db_session,
        operator,
        [(gauze, "1", "4", "6"), (tape, "2", None, "3")],
    )

    order = blueprint_order(client, operator, blueprint, origin=new_location(), destination=new_location())

    assert order["status"] == "Pending"
    assert order["priority"] == "Medium"
    assert order["order_number"] == "TO-0001"
    assert order["blueprint_id"] == str(blueprint.id)
    assert [line["blueprint_line_id"] for line in order["lines"]] == [str(line.id) for line in bp_lines]
    assert [Decimal(line["required_quantity"]) for line in order["lines"]] == [Decimal("4"), Decimal("2")]
    assert all(Decimal(line["remaining_quantity"]) == Decimal(line["required_quantity"]) for line in order["lines"])
    assert order["lines"][0]["sku"] == "GAUZE"
    assert Decimal(order["progress"]["remaining_quantity"]) == Decimal("6")
    assert order["progress"]["ratio"] == 0.0
    assert order["created_by_user_id"] == operator.user_id


def test_order_numbers_are_sequential_per_tenant(client, db_session):
    operator = Operator(suffix="create-2")
    other = Operator(suffix="create-2b")
    product = create_product(db_session, operator, sku="SPLINT")
    blueprint, _ = create_blueprint(db_session, operator, [(product, "1", "1", "1")])
    other_product = create_product(db_session, other, sku="SPLINT")
    other_blueprint, _ = create_blueprint(db_session, other, [(other_product, "1", "1", "1")])

    first = blueprint_order(client, operator, blueprint, origin=new_location(), destination=new_location())
    second = blueprint_order(client, operator, blueprint, origin=new_location(), destination=new_location())
    foreign = blueprint_order(client, other, other_blueprint, origin=new_location(), destination=new_location())

    assert first["order_number"] == "TO-0001"
    assert second["order_number"] == "TO-0002"
    assert foreign["order_number"] == "TO-0001"


def test_quantity_overrides_are_clamped_only_when_blueprint_allows(client, db_session):
    operator = Operator(suffix="create-3")
    product = create_product(db_session, operator, sku="IV-SET")
    flexible, flexible_lines = create_blueprint(
        db_session, operator, [(product, "1", "2", "5")], allow_quantity_override=True
    )
    fixed, fixed_lines = create_blueprint(db_session, operator, [(product, "1", "2", "5")])

    clamped = blueprint_order(
        client,
        operator,
        flexible,
        origin=new_location(),
        destination=new_location(),
        quantity_overrides={str(flexible_lines[0].id): "9"},
    )
    ignored = blueprint_order(
        client,
        operator,
        fixed,
        origin=new_location(),
        destination=new_location(),
        quantity_overrides={str(fixed_lines[0].id): "4"},
    )

    assert Decimal(clamped["lines"][0]["required_quantity"]) == Decimal("5")
    assert Decimal(ignored["lines"][0]["required_quantity"]) == Decimal("2")


def test_override_for_line_outside_blueprint_is_rejected(client, db_session):
    operator = Operator(suffix="create-4")
    product = create_product(db_session, operator, sku="MASK")
    blueprint, _ = create_blueprint(db_session, operator, [(product, "1", "2", "5")], allow_quantity_override=True)

    response = client.post(
        "/transit/transfer-orders",
        headers=operator.headers(idempotency_key="override-unknown"),
        json={
            "origin_location_id": new_location(),
            "destination_location_id": new_location(),
            "blueprint_id": str(blueprint.id),
            "quantity_overrides": {new_location(): "3"},
        },
    )

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"
    assert db_session.query(TransferOrder).count() == 0


def test_create_rejects_same_origin_and_destination(client, db_session):
    operator = Operator(suffix="create-5")
    location = new_location()

    response = client.post(
        "/transit/transfer-orders",
        headers=operator.headers(idempotency_key="same-location"),
        json={"origin_location_id": location, "destination_location_id": location, "blueprint_id": new_location()},
    )

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_create_requires_blueprint_or_manual_lines(client):
    operator = Operator(suffix="create-6")

    response = client.post(
        "/transit/transfer-orders",
        headers=operator.headers(idempotency_key="empty-order"),
        json={"origin_location_id": new_location(), "destination_location_id": new_location()},
    )

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_loadout_restock_requires_loadout_at_destination(client, db_session):
    operator = Operator(suffix="create-7")
    product = create_product(db_session, operator, sku="BVM")
    blueprint, _ = create_blueprint(db_session, operator, [(product, "1", "1", "1")])
    destination = new_location()
    loadout = create_loadout(db_session, operator, blueprint, location_id=new_location())

    missing = client.post(
        "/transit/transfer-orders",
        headers=operator.headers(idempotency_key="restock-missing"),
        json={
            "origin_location_id": new_location(),
            "destination_location_id": destination,
            "destination_mode": "loadout_restock",
        },
    )
    elsewhere = client.post(
        "/transit/transfer-orders",
        headers=operator.headers(idempotency_key="restock-elsewhere"),
        json={
            "origin_location_id": new_location(),
            "destination_location_id": destination,
            "destination_mode": "loadout_restock",
            "destination_loadout_id": str(loadout.id),
        },
    )

    assert missing.status_code == 422
    assert elsewhere.status_code == 422
    assert elsewhere.json()["details"]["loadout_id"] == str(loadout.id)


def test_loadout_restock_takes_blueprint_from_loadout(client, db_session):
    operator = Operator(suffix="create-8")
    product = create_product(db_session, operator, sku="OPA")
    blueprint, _ = create_blueprint(db_session, operator, [(product, "2", "3", "4")])
    destination = new_location()
    loadout = create_loadout(db_session, operator, blueprint, location_id=destination)

    order = create_order(
        client,
        operator,
        origin_location_id=new_location(),
        destination_location_id=destination,
        destination_mode="loadout_restock",
        destination_loadout_id=str(loadout.id),
    )

    assert order["destination_loadout_id"] == str(loadout.id)
    assert order["blueprint_id"] == str(blueprint.id)
    assert len(order["lines"]) == 1


def test_manual_lines_commit_their_lot_on_create(client, db_session):
    operator = Operator(suffix="create-9")
    origin = new_location()
    product = create_product(db_session, operator, sku="SALINE")
    lot = create_lot(db_session, operator, product, location_id=origin, lot_number="S-1", available="10")

    order = create_order(
        client,
        operator,
        origin_location_id=origin,
        destination_location_id=new_location(),
        manual_lines=[{"inventory_lot_id": str(lot.id), "quantity": "3", "notes": "urgent"}],
    )

    line = order["lines"][0]
    assert line["line_kind"] == "manual"
    assert line["inventory_lot_id"] == str(lot.id)
    assert Decimal(line["required_quantity"]) == Decimal("3")
    assert Decimal(line["remaining_quantity"]) == Decimal("0")
    assert line["assignments"][0]["lot_number"] == "S-1"
    assert line["assignments"][0]["aisle"] == "A1"

    refreshed = reload_lot(db_session, lot.id)
    assert refreshed.quantity_available == Decimal("7")
    assert refreshed.quantity_reserved == Decimal("3")


def test_manual_line_over_availability_writes_nothing(client, db_session):
    operator = Operator(suffix="create-10")
    origin = new_location()
    product = create_product(db_session, operator, sku="SALINE")
    lot = create_lot(db_session, operator, product, location_id=origin, lot_number="S-2", available="2")

    response = client.post(
        "/transit/transfer-orders",
        headers=operator.headers(idempotency_key="manual-too-much"),
        json={
            "origin_location_id": origin,
            "destination_location_id": new_location(),
            "manual_lines": [{"inventory_lot_id": str(lot.id), "quantity": "5"}],
        },
    )

    assert response.status_code == 409
    assert response.json()["code"] == "INSUFFICIENT_AVAILABILITY"
    assert db_session.query(TransferOrder).count() == 0
    assert db_session.query(AssignmentLine).count() == 0
    assert reload_lot(db_session, lot.id).quantity_available == Decimal("2")


def test_create_requires_idempotency_key(client):
    operator = Operator(suffix="create-11")

    response = client.post(
        "/transit/transfer-orders",
        headers=operator.headers(),
        json={"origin_location_id": new_location(), "destination_location_id": new_location()},
    )

    assert response.status_code == 400
    assert response.json()["code"] == "IDEMPOTENCY_KEY_REQUIRED"


def test_create_replays_with_same_key(client, db_session):
    operator = Operator(suffix="create-12")
    product = create_product(db_session, operator, sku="ETT")
    blueprint, _ = create_blueprint(db_session, operator, [(product, "1", "1", "1")])
    payload = {
        "origin_location_id": new_location(),
        "destination_location_id": new_location(),
        "blueprint_id": str(blueprint.id),
    }
    headers = operator.headers(idempotency_key="create-replay")

    first = client.post("/transit/transfer-orders", headers=headers, json=payload)
    replay = client.post("/transit/transfer-orders", headers=headers, json=payload)
    conflict = client.post(
        "/transit/transfer-orders",
        headers=headers,
        json={**payload, "priority": "High"},
    )

    assert first.status_code == 201
    assert replay.status_code == 201
    assert replay.json() == first.json()
    assert replay.headers.get("X-Idempotency-Result") == "IDEMPOTENCY_REPLAY"
    assert conflict.status_code == 409
    assert conflict.json()["code"] == "IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD"
    assert db_session.query(TransferOrder).count() == 1


def test_create_writes_audit_event(client, db_session):
    operator = Operator(suffix="create-13")
    product = create_product(db_session, operator, sku="ETT")
    blueprint, _ = create_blueprint(db_session, operator, [(product, "1", "1", "1")])

    order = blueprint_order(client, operator, blueprint, origin=new_location(), destination=new_location())

    event = db_session.query(AuditEvent).filter(AuditEvent.action == "transfer_order.create").first()
    assert event is not None
    assert event.entity_id == order["id"]
    assert event.actor == operator.username
    assert event.result == "success"


def test_requests_without_valid_token_are_rejected(client):
    missing = client.get("/transit/transfer-orders")
    invalid = client.get("/transit/transfer-orders", headers={"Authorization": "Bearer not-a-token"})

    assert missing.status_code == 401
    assert invalid.status_code == 401
    assert invalid.json()["code"] == "INVALID_TOKEN"

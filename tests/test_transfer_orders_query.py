from decimal import Decimal

from app.transit.db.models import AuditEvent
from tests.transit_helpers import (
    Operator,
    advance,
    blueprint_order,
    create_blueprint,
    create_product,
    new_location,
)


def _blueprint(db_session, operator):
    product = create_product(db_session, operator, sku="NPA")
    blueprint, _ = create_blueprint(db_session, operator, [(product, "1", "1", "1")])
    return blueprint


def test_list_filters_by_status_and_origin(client, db_session):
    operator = Operator(suffix="query-1")
    blueprint = _blueprint(db_session, operator)
    origin = new_location()
    pending = blueprint_order(client, operator, blueprint, origin=origin, destination=new_location())
    approved = blueprint_order(client, operator, blueprint, origin=origin, destination=new_location(), priority="High")
    blueprint_order(client, operator, blueprint, origin=new_location(), destination=new_location())
    advance(client, operator, approved["id"], "Approved")

    by_origin = client.get("/transit/transfer-orders", headers=operator.headers(), params={"origin_location_id": origin})
    by_status = client.get("/transit/transfer-orders", headers=operator.headers(), params={"status": "Pending"})
    by_priority = client.get("/transit/transfer-orders", headers=operator.headers(), params={"priority": "High"})

    assert by_origin.json()["total"] == 2
    assert {row["id"] for row in by_status.json()["rows"]} >= {pending["id"]}
    assert by_status.json()["total"] == 2
    assert [row["id"] for row in by_priority.json()["rows"]] == [approved["id"]]


def test_list_is_tenant_scoped_and_paginated(client, db_session):
    operator = Operator(suffix="query-2")
    stranger = Operator(suffix="query-2b")
    blueprint = _blueprint(db_session, operator)
    for _ in range(3):
        blueprint_order(client, operator, blueprint, origin=new_location(), destination=new_location())

    page = client.get("/transit/transfer-orders", headers=operator.headers(), params={"limit": 2, "offset": 0})
    capped = client.get("/transit/transfer-orders", headers=operator.headers(), params={"limit": 5000})
    foreign = client.get("/transit/transfer-orders", headers=stranger.headers())

    assert page.status_code == 200
    assert len(page.json()["rows"]) == 2
    assert page.json()["total"] == 3
    assert capped.json()["limit"] == 250
    assert foreign.json()["total"] == 0


def test_other_tenant_cannot_read_order(client, db_session):
    operator = Operator(suffix="query-3")
    stranger = Operator(suffix="query-3b")
    blueprint = _blueprint(db_session, operator)
    order = blueprint_order(client, operator, blueprint, origin=new_location(), destination=new_location())

    response = client.get(f"/transit/transfer-orders/{order['id']}", headers=stranger.headers())

    assert response.status_code == 404
    assert response.json()["code"] == "TRANSFER_ORDER_NOT_FOUND"


def test_patch_updates_editable_fields(client, db_session):
    operator = Operator(suffix="query-4")
    blueprint = _blueprint(db_session, operator)
    order = blueprint_order(client, operator, blueprint, origin=new_location(), destination=new_location())

    response = client.patch(
        f"/transit/transfer-orders/{order['id']}",
        headers=operator.headers(),
        json={"priority": "High", "notes": "  call on arrival  ", "transfer_reason": ""},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["priority"] == "High"
    assert body["notes"] == "call on arrival"
    assert body["transfer_reason"] is None
    assert body["version"] == order["version"] + 1


def test_patch_rejects_immutable_and_cleared_fields(client, db_session):
    operator = Operator(suffix="query-5")
    blueprint = _blueprint(db_session, operator)
    order = blueprint_order(client, operator, blueprint, origin=new_location(), destination=new_location())

    immutable = client.patch(
        f"/transit/transfer-orders/{order['id']}",
        headers=operator.headers(),
        json={"origin_location_id": new_location()},
    )
    cleared = client.patch(
        f"/transit/transfer-orders/{order['id']}",
        headers=operator.headers(),
        json={"priority": None},
    )

    assert immutable.status_code == 422
    assert cleared.status_code == 422
    assert cleared.json()["code"] == "VALIDATION_ERROR"


def test_patch_freight_metadata_and_audits_previous_values(client, db_session):
    operator = Operator(suffix="query-6")
    blueprint = _blueprint(db_session, operator)
    order = blueprint_order(
        client,
        operator,
        blueprint,
        origin=new_location(),
        destination=new_location(),
        freight_cost="12.50",
    )
    assert Decimal(order["freight_cost"]) == Decimal("12.50")
    assert order["temperature_control_required"] is False

    response = client.patch(
        f"/transit/transfer-orders/{order['id']}",
        headers=operator.headers(),
        json={"freight_cost": "40.00", "temperature_control_required": True, "requested_date": "2024-05-01T08:00:00"},
    )
    cleared = client.patch(
        f"/transit/transfer-orders/{order['id']}",
        headers=operator.headers(),
        json={"temperature_control_required": None},
    )
    negative = client.patch(
        f"/transit/transfer-orders/{order['id']}",
        headers=operator.headers(),
        json={"freight_cost": "-1"},
    )

    assert response.status_code == 200
    assert Decimal(response.json()["freight_cost"]) == Decimal("40.00")
    assert response.json()["temperature_control_required"] is True
    assert cleared.status_code == 422
    assert negative.status_code == 422
    event = db_session.query(AuditEvent).filter(AuditEvent.action == "transfer_order.update").one()
    assert Decimal(event.before_payload["freight_cost"]) == Decimal("12.50")
    assert event.before_payload["temperature_control_required"] is False
    assert event.before_payload["requested_date"] is None

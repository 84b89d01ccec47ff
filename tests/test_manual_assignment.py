import uuid
from decimal import Decimal

from app.transit.core.metrics import metrics
from app.transit.db.models import AssignmentLine
from app.transit.repos.inventory import SqlInventoryLedger
from tests.transit_helpers import (
    Operator,
    advance,
    auto_assign,
    blueprint_order,
    create_blueprint,
    create_lot,
    create_order,
    create_product,
    new_location,
    reload_lot,
)


def _assign(client, operator, order_id, line_id, lot_id, quantity):
    return client.post(
        f"/transit/transfer-orders/{order_id}/lines/{line_id}/assignments",
        headers=operator.headers(),
        json={"inventory_lot_id": str(lot_id), "quantity": quantity},
    )


def _single_line_order(client, db_session, operator, *, required="5", available="10"):
    origin = new_location()
    product = create_product(db_session, operator, sku="SUTURE")
    blueprint, _ = create_blueprint(db_session, operator, [(product, "1", required, required)])
    lot = create_lot(db_session, operator, product, location_id=origin, lot_number="SU-1", available=available)
    order = blueprint_order(client, operator, blueprint, origin=origin, destination=new_location())
    return order, order["lines"][0]["id"], lot, product, origin


def test_manual_assignment_cannot_exceed_remaining_demand(client, db_session):
    operator = Operator(suffix="manual-1")
    order, line_id, lot, _product, _origin = _single_line_order(client, db_session, operator)

    too_much = _assign(client, operator, order["id"], line_id, lot.id, "6")
    first = _assign(client, operator, order["id"], line_id, lot.id, "3")
    second = _assign(client, operator, order["id"], line_id, lot.id, "3")

    assert too_much.status_code == 409
    assert too_much.json()["code"] == "ASSIGNMENT_EXCEEDS_DEMAND"
    assert Decimal(too_much.json()["details"]["remaining_quantity"]) == Decimal("5")
    assert first.status_code == 201
    assert Decimal(first.json()["lines"][0]["remaining_quantity"]) == Decimal("2")
    assert second.status_code == 409
    assert second.json()["code"] == "ASSIGNMENT_EXCEEDS_DEMAND"
    assert db_session.query(AssignmentLine).count() == 1
    assert reload_lot(db_session, lot.id).quantity_available == Decimal("7")
    if metrics.enabled:
        content = metrics.render().content.decode("utf-8")
        assert 'invariants_violation_total{check_id="assignment_exceeds_demand"}' in content


def test_manual_assignment_cannot_exceed_lot_availability(client, db_session):
    operator = Operator(suffix="manual-2")
    order, line_id, lot, _product, _origin = _single_line_order(client, db_session, operator, available="1")

    response = _assign(client, operator, order["id"], line_id, lot.id, "2")

    assert response.status_code == 409
    assert response.json()["code"] == "INSUFFICIENT_AVAILABILITY"
    assert Decimal(response.json()["details"]["available_quantity"]) == Decimal("1")
    assert db_session.query(AssignmentLine).count() == 0


def test_manual_assignment_checks_lot_product_and_location(client, db_session):
    operator = Operator(suffix="manual-3")
    order, line_id, _lot, product, _origin = _single_line_order(client, db_session, operator)
    other_product = create_product(db_session, operator, sku="OTHER")
    wrong_product = create_lot(
        db_session, operator, other_product, location_id=order["origin_location_id"], lot_number="O-1", available="9"
    )
    wrong_place = create_lot(db_session, operator, product, location_id=new_location(), lot_number="SU-9", available="9")

    by_product = _assign(client, operator, order["id"], line_id, wrong_product.id, "1")
    by_place = _assign(client, operator, order["id"], line_id, wrong_place.id, "1")
    missing = _assign(client, operator, order["id"], line_id, uuid.uuid4(), "1")

    assert by_product.status_code == 422
    assert by_place.status_code == 422
    assert missing.status_code == 404
    assert missing.json()["code"] == "INVENTORY_LOT_NOT_FOUND"


def test_unassign_releases_lot_availability(client, db_session):
    operator = Operator(suffix="manual-4")
    order, line_id, lot, _product, _origin = _single_line_order(client, db_session, operator, required="4")
    report = auto_assign(client, operator, order["id"])
    assignment_id = report["created"][0]
    assert reload_lot(db_session, lot.id).quantity_available == Decimal("6")

    response = client.delete(
        f"/transit/transfer-orders/{order['id']}/assignments/{assignment_id}",
        headers=operator.headers(),
    )
    again = client.delete(
        f"/transit/transfer-orders/{order['id']}/assignments/{assignment_id}",
        headers=operator.headers(),
    )

    assert response.status_code == 200
    assert Decimal(response.json()["lines"][0]["remaining_quantity"]) == Decimal("4")
    refreshed = reload_lot(db_session, lot.id)
    assert refreshed.quantity_available == Decimal("10")
    assert refreshed.quantity_reserved == Decimal("0")
    assert again.status_code == 404
    assert again.json()["code"] == "ASSIGNMENT_NOT_FOUND"


def test_manual_lines_keep_their_lot(client, db_session):
    operator = Operator(suffix="manual-5")
    origin = new_location()
    product = create_product(db_session, operator, sku="CHEST-SEAL")
    lot = create_lot(db_session, operator, product, location_id=origin, lot_number="CS-1", available="10")
    order = create_order(
        client,
        operator,
        origin_location_id=origin,
        destination_location_id=new_location(),
        manual_lines=[{"inventory_lot_id": str(lot.id), "quantity": "2"}],
    )
    line = order["lines"][0]

    unassign = client.delete(
        f"/transit/transfer-orders/{order['id']}/assignments/{line['assignments'][0]['id']}",
        headers=operator.headers(),
    )
    assign = _assign(client, operator, order["id"], line["id"], lot.id, "1")

    assert unassign.status_code == 422
    assert assign.status_code == 422
    assert reload_lot(db_session, lot.id).quantity_available == Decimal("8")


def test_assignments_are_frozen_after_approval(client, db_session):
    operator = Operator(suffix="manual-6")
    order, line_id, lot, _product, _origin = _single_line_order(client, db_session, operator)
    advance(client, operator, order["id"], "Approved", "Picked")

    response = _assign(client, operator, order["id"], line_id, lot.id, "1")
    auto = client.post(f"/transit/transfer-orders/{order['id']}/auto-assign", headers=operator.headers())

    assert response.status_code == 409
    assert response.json()["code"] == "ILLEGAL_TRANSITION"
    assert response.json()["details"]["current_status"] == "Picked"
    assert auto.status_code == 409


def test_compare_and_commit_rejects_stale_availability(client, db_session, second_session):
    operator = Operator(suffix="manual-7")
    product = create_product(db_session, operator, sku="TQ")
    lot = create_lot(db_session, operator, product, location_id=new_location(), lot_number="TQ-1", available="5")
    lot_id = str(lot.id)
    first = SqlInventoryLedger(db_session)
    second = SqlInventoryLedger(second_session)

    seen_by_second = second.get_lot(tenant_id=operator.tenant_id, lot_id=lot_id)
    assert first.commit(tenant_id=operator.tenant_id, lot_id=lot_id, quantity=Decimal("4")) is True
    db_session.commit()
    lost = second.commit(tenant_id=operator.tenant_id, lot_id=lot_id, quantity=seen_by_second.quantity_available - 1)
    second_session.rollback()

    assert seen_by_second.quantity_available == Decimal("5")
    assert lost is False
    refreshed = reload_lot(db_session, lot.id)
    assert refreshed.quantity_available == Decimal("1")
    assert refreshed.quantity_reserved == Decimal("4")

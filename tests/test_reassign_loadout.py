from decimal import Decimal

from tests.transit_helpers import (
    Operator,
    advance,
    auto_assign,
    blueprint_order,
    create_blueprint,
    create_loadout,
    create_lot,
    create_order,
    create_product,
    new_location,
    reload_lot,
)


def _reassign(client, operator, order_id, **payload):
    return client.post(
        f"/transit/transfer-orders/{order_id}/reassign-loadout",
        headers=operator.headers(),
        json=payload,
    )


def _two_loadouts(client, db_session, operator):
    origin = new_location()
    destination = new_location()
    cuff = create_product(db_session, operator, sku="BP-CUFF")
    strip = create_product(db_session, operator, sku="GLUCOSE-STRIP")
    first_blueprint, _ = create_blueprint(db_session, operator, [(cuff, "1", "2", "2")])
    second_blueprint, _ = create_blueprint(db_session, operator, [(strip, "1", "3", "3")])
    first = create_loadout(db_session, operator, first_blueprint, location_id=destination)
    second = create_loadout(db_session, operator, second_blueprint, location_id=destination)
    cuff_lot = create_lot(db_session, operator, cuff, location_id=origin, lot_number="C-1", available="10")
    order = create_order(
        client,
        operator,
        origin_location_id=origin,
        destination_location_id=destination,
        destination_mode="loadout_restock",
        destination_loadout_id=str(first.id),
    )
    return order, first, second, second_blueprint, cuff_lot, strip


def test_reassign_discards_previous_assignments_and_rebuilds_demand(client, db_session):
    operator = Operator(suffix="reassign-1")
    order, _first, second, second_blueprint, cuff_lot, strip = _two_loadouts(client, db_session, operator)
    auto_assign(client, operator, order["id"])
    assert reload_lot(db_session, cuff_lot.id).quantity_available == Decimal("8")

    response = _reassign(client, operator, order["id"], destination_loadout_id=str(second.id))

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "Pending"
    assert body["destination_loadout_id"] == str(second.id)
    assert body["blueprint_id"] == str(second_blueprint.id)
    assert [line["product_id"] for line in body["lines"]] == [str(strip.id)]
    assert Decimal(body["lines"][0]["remaining_quantity"]) == Decimal("3")
    assert Decimal(body["progress"]["assigned_quantity"]) == Decimal("0")
    refreshed = reload_lot(db_session, cuff_lot.id)
    assert refreshed.quantity_available == Decimal("10")
    assert refreshed.quantity_reserved == Decimal("0")


def test_reassign_only_before_picking(client, db_session):
    operator = Operator(suffix="reassign-2")
    order, _first, second, _blueprint, _lot, _strip = _two_loadouts(client, db_session, operator)
    advance(client, operator, order["id"], "Approved", "Picked")

    response = _reassign(client, operator, order["id"], destination_loadout_id=str(second.id))

    assert response.status_code == 409
    assert response.json()["details"]["current_status"] == "Picked"


def test_reassign_validates_loadout_location_and_blueprint(client, db_session):
    operator = Operator(suffix="reassign-3")
    order, first, second, _blueprint, _lot, strip = _two_loadouts(client, db_session, operator)
    elsewhere_blueprint, _ = create_blueprint(db_session, operator, [(strip, "1", "1", "1")])
    elsewhere = create_loadout(db_session, operator, elsewhere_blueprint, location_id=new_location())

    wrong_place = _reassign(client, operator, order["id"], destination_loadout_id=str(elsewhere.id))
    wrong_blueprint = _reassign(
        client,
        operator,
        order["id"],
        destination_loadout_id=str(second.id),
        blueprint_id=str(first.blueprint_id),
    )

    assert wrong_place.status_code == 422
    assert wrong_blueprint.status_code == 422
    current = client.get(f"/transit/transfer-orders/{order['id']}", headers=operator.headers()).json()
    assert current["destination_loadout_id"] == str(first.id)


def test_general_delivery_order_switches_blueprint_without_loadout(client, db_session):
    operator = Operator(suffix="reassign-4")
    origin = new_location()
    collar = create_product(db_session, operator, sku="C-COLLAR")
    board = create_product(db_session, operator, sku="SPINE-BOARD")
    first_blueprint, _ = create_blueprint(db_session, operator, [(collar, "1", "2", "2")])
    second_blueprint, _ = create_blueprint(db_session, operator, [(board, "1", "1", "1")])
    collar_lot = create_lot(db_session, operator, collar, location_id=origin, lot_number="CC-1", available="5")
    order = blueprint_order(client, operator, first_blueprint, origin=origin, destination=new_location())
    auto_assign(client, operator, order["id"])

    response = _reassign(client, operator, order["id"], blueprint_id=str(second_blueprint.id))

    assert response.status_code == 200
    body = response.json()
    assert body["destination_mode"] == "general_delivery"
    assert body["destination_loadout_id"] is None
    assert body["blueprint_id"] == str(second_blueprint.id)
    assert [line["product_id"] for line in body["lines"]] == [str(board.id)]
    assert reload_lot(db_session, collar_lot.id).quantity_available == Decimal("5")


def test_reassign_needs_a_loadout_or_blueprint(client, db_session):
    operator = Operator(suffix="reassign-5")
    order, _first, _second, second_blueprint, _lot, _strip = _two_loadouts(client, db_session, operator)

    empty = _reassign(client, operator, order["id"])
    restock_without_loadout = _reassign(client, operator, order["id"], blueprint_id=str(second_blueprint.id))

    assert empty.status_code == 422
    assert empty.json()["code"] == "VALIDATION_ERROR"
    assert restock_without_loadout.status_code == 422
    assert restock_without_loadout.json()["code"] == "VALIDATION_ERROR"

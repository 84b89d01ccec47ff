import uuid

from app.transit.db.models import ScanSession
from tests.transit_helpers import (
    Operator,
    advance,
    auto_assign,
    blueprint_order,
    create_blueprint,
    create_lot,
    create_product,
    new_location,
    transition,
)


def _session_url(order_id: str, stage: str) -> str:
    return f"/transit/transfer-orders/{order_id}/scan-sessions/{stage}"


def _scan(client, operator, order_id, stage, token):
    response = client.post(f"{_session_url(order_id, stage)}/scans", headers=operator.headers(), json={"token": token})
    assert response.status_code == 200, response.json()
    return response.json()


def _approved_kit(client, db_session, operator):
    origin = new_location()
    airway = create_product(db_session, operator, sku="SKU-AIRWAY", gtin="0700000000011")
    dressing = create_product(db_session, operator, sku="SKU-DRESSING")
    blueprint, _ = create_blueprint(db_session, operator, [(airway, "1", "1", "1"), (dressing, "1", "2", "2")])
    create_lot(db_session, operator, airway, location_id=origin, lot_number="AW-7", available="5")
    create_lot(db_session, operator, dressing, location_id=origin, lot_number="DR-3", available="5")
    order = blueprint_order(client, operator, blueprint, origin=origin, destination=new_location())
    auto_assign(client, operator, order["id"])
    advance(client, operator, order["id"], "Approved")
    return order, [line["id"] for line in order["lines"]]


def test_session_lists_expected_lines_before_it_starts(client, db_session):
    operator = Operator(suffix="scan-1")
    order, line_ids = _approved_kit(client, db_session, operator)

    response = client.get(_session_url(order["id"], "picking"), headers=operator.headers())

    assert response.status_code == 200
    state = response.json()
    assert state["started"] is False
    assert state["confirmed"] == []
    assert state["unconfirmed"] == line_ids
    assert state["focus_line_id"] == line_ids[0]
    assert state["expected"][0]["lot_numbers"] == ["AW-7"]
    assert state["complete"] is False
    assert db_session.query(ScanSession).count() == 0


def test_stage_must_match_order_status(client, db_session):
    operator = Operator(suffix="scan-2")
    order, _line_ids = _approved_kit(client, db_session, operator)

    packing = client.post(_session_url(order["id"], "packing"), headers=operator.headers())
    unknown = client.get(_session_url(order["id"], "receiving"), headers=operator.headers())

    assert packing.status_code == 409
    assert packing.json()["details"]["current_status"] == "Approved"
    assert packing.json()["details"]["expected_stage"] == "picking"
    assert unknown.status_code == 422


def test_scanning_confirms_focused_line_and_completes_stage(client, db_session):
    operator = Operator(suffix="scan-3")
    order, line_ids = _approved_kit(client, db_session, operator)
    opened = client.post(_session_url(order["id"], "picking"), headers=operator.headers())
    assert opened.json()["started"] is True

    by_gtin = _scan(client, operator, order["id"], "picking", "0700000000011")
    by_lot = _scan(client, operator, order["id"], "picking", "DR-3")

    assert by_gtin["matched"] is True
    assert by_gtin["line_id"] == line_ids[0]
    assert by_gtin["session"]["focus_line_id"] == line_ids[1]
    assert by_lot["matched"] is True
    assert by_lot["session"]["unconfirmed"] == []
    assert by_lot["session"]["complete"] is True
    assert by_lot["session"]["ready_to_transition"] is True

    picked = transition(client, operator, order["id"], "Picked", via_scan=True)
    assert picked.status_code == 200
    assert picked.json()["via_scan"] is True
    assert db_session.query(ScanSession).filter(ScanSession.stage == "picking").count() == 0


def test_mismatched_scan_changes_nothing(client, db_session):
    operator = Operator(suffix="scan-4")
    order, line_ids = _approved_kit(client, db_session, operator)

    miss = _scan(client, operator, order["id"], "picking", "SKU-DRESSING")

    assert miss["matched"] is False
    assert miss["line_id"] == line_ids[0]
    assert "SKU-DRESSING" in miss["message"]
    assert miss["session"]["confirmed"] == []
    assert miss["session"]["focus_line_id"] == line_ids[0]
    session = db_session.query(ScanSession).one()
    assert session.confirmed == {}


def test_progress_survives_an_interrupted_session(client, db_session):
    operator = Operator(suffix="scan-5")
    order, line_ids = _approved_kit(client, db_session, operator)
    _scan(client, operator, order["id"], "picking", "SKU-AIRWAY")

    resumed = client.post(_session_url(order["id"], "picking"), headers=operator.headers()).json()

    assert resumed["confirmed"] == [line_ids[0]]
    assert resumed["unconfirmed"] == [line_ids[1]]
    assert resumed["focus_line_id"] == line_ids[1]


def test_focus_can_be_moved_and_wraps_to_remaining_lines(client, db_session):
    operator = Operator(suffix="scan-6")
    order, line_ids = _approved_kit(client, db_session, operator)

    moved = client.patch(
        _session_url(order["id"], "picking"),
        headers=operator.headers(),
        json={"focus_line_id": line_ids[1]},
    )
    confirmed = _scan(client, operator, order["id"], "picking", "SKU-DRESSING")
    bad_focus = client.patch(
        _session_url(order["id"], "picking"),
        headers=operator.headers(),
        json={"focus_line_id": str(uuid.uuid4())},
    )

    assert moved.status_code == 200
    assert moved.json()["focus_line_id"] == line_ids[1]
    assert confirmed["matched"] is True
    assert confirmed["session"]["focus_line_id"] == line_ids[0]
    assert bad_focus.status_code == 404


def test_operator_override_skips_scanning(client, db_session):
    operator = Operator(suffix="scan-7")
    order, _line_ids = _approved_kit(client, db_session, operator)
    _scan(client, operator, order["id"], "picking", "SKU-AIRWAY")

    picked = transition(client, operator, order["id"], "Picked")

    assert picked.status_code == 200
    assert picked.json()["via_scan"] is False
    assert db_session.query(ScanSession).count() == 0


def test_shipping_session_captures_carrier(client, db_session):
    operator = Operator(suffix="scan-8")
    order, _line_ids = _approved_kit(client, db_session, operator)
    advance(client, operator, order["id"], "Picked", "Packed")

    early_capture = client.patch(
        _session_url(order["id"], "shipping"),
        headers=operator.headers(),
        json={"carrier": "UPS"},
    )
    _scan(client, operator, order["id"], "shipping", "SKU-AIRWAY")
    complete = _scan(client, operator, order["id"], "shipping", "SKU-DRESSING")
    captured = client.patch(
        _session_url(order["id"], "shipping"),
        headers=operator.headers(),
        json={"carrier": "UPS", "tracking_number": "1Z999"},
    )
    shipped = transition(client, operator, order["id"], "Shipped", via_scan=True)

    assert early_capture.status_code == 200
    assert complete["session"]["complete"] is True
    assert complete["session"]["ready_to_transition"] is True
    assert captured.json()["carrier"] == "UPS"
    assert shipped.status_code == 200
    assert shipped.json()["order"]["carrier"] == "UPS"
    assert shipped.json()["order"]["tracking_number"] == "1Z999"


def test_carrier_is_only_captured_while_shipping(client, db_session):
    operator = Operator(suffix="scan-9")
    order, _line_ids = _approved_kit(client, db_session, operator)

    response = client.patch(
        _session_url(order["id"], "picking"),
        headers=operator.headers(),
        json={"carrier": "UPS"},
    )

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_shipping_session_needs_carrier_to_be_ready(client, db_session):
    operator = Operator(suffix="scan-10")
    order, _line_ids = _approved_kit(client, db_session, operator)
    advance(client, operator, order["id"], "Picked", "Packed")

    _scan(client, operator, order["id"], "shipping", "SKU-AIRWAY")
    state = _scan(client, operator, order["id"], "shipping", "DR-3")["session"]
    shipped = transition(client, operator, order["id"], "Shipped", via_scan=True)

    assert state["complete"] is True
    assert state["ready_to_transition"] is False
    assert shipped.status_code == 409
    assert shipped.json()["details"]["reason"] == "carrier_required"

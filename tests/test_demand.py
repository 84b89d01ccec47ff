from datetime import date
from decimal import Decimal

import pytest

from app.transit.repos.catalog import BlueprintLineRecord, ReservedLot
from app.transit.repos.inventory import LotRecord
from app.transit.services.demand import LineProgress, OrderProgress, remaining, required_quantity
from app.transit.services.lot_matcher import rank_candidates


def _line(minimum="1", default="3", maximum="5") -> BlueprintLineRecord:
    return BlueprintLineRecord(
        id="line-1",
        blueprint_id="bp-1",
        product_id="p-1",
        position=0,
        minimum_quantity=Decimal(minimum),
        default_quantity=Decimal(default) if default is not None else None,
        maximum_quantity=Decimal(maximum),
    )


def _lot(lot_id: str, lot_number: str, available: str, expiration: date | None = None) -> LotRecord:
    return LotRecord(
        lot_id=lot_id,
        product_id="p-1",
        location_id="loc-1",
        lot_number=lot_number,
        expiration_date=expiration,
        quantity_on_hand=Decimal(available),
        quantity_available=Decimal(available),
        quantity_reserved=Decimal("0"),
    )


@pytest.mark.parametrize(
    ("override", "allowed", "expected"),
    [
        (None, True, "3"),
        ("4", True, "4"),
        ("0", True, "1"),
        ("50", True, "5"),
        ("4", False, "3"),
    ],
)
def test_required_quantity_honours_override_bounds(override, allowed, expected):
    value = Decimal(override) if override is not None else None
    assert required_quantity(_line(), value, allow_override=allowed) == Decimal(expected)


def test_required_quantity_without_default_falls_back_to_minimum_then_one():
    assert required_quantity(_line(minimum="2", default=None), allow_override=False) == Decimal("2")
    assert required_quantity(_line(minimum="0", default=None), allow_override=False) == Decimal("1")


def test_remaining_never_goes_negative():
    assert remaining(Decimal("5"), Decimal("2")) == Decimal("3")
    assert remaining(Decimal("5"), Decimal("7")) == Decimal("0")


def test_progress_totals_and_ratio():
    progress = OrderProgress(
        lines=[
            LineProgress(line_id="a", required=Decimal("4"), assigned=Decimal("4"), remaining=Decimal("0")),
            LineProgress(line_id="b", required=Decimal("6"), assigned=Decimal("1"), remaining=Decimal("5")),
        ]
    )

    assert progress.required_total == Decimal("10")
    assert progress.remaining_total == Decimal("5")
    assert progress.ratio == 0.5
    assert progress.for_line("a").ratio == 1.0
    assert progress.for_line("missing") is None
    assert OrderProgress(lines=[]).ratio == 1.0


def test_rank_candidates_orders_declared_live_then_unconfirmed():
    live = [
        _lot("lot-b", "B", "5"),
        _lot("lot-a", "A", "5", expiration=date(2030, 6, 1)),
        _lot("lot-c", "C", "2"),
        _lot("lot-empty", "E", "0"),
    ]
    reserved = [
        ReservedLot(product_id="p-1", lot_id=None, lot_number="C", quantity=Decimal("2")),
        ReservedLot(product_id="p-1", lot_id="lot-gone", lot_number="G", quantity=Decimal("1")),
    ]

    ranked = rank_candidates(live, reserved)

    assert [candidate.lot_number for candidate in ranked] == ["C", "A", "B", "G"]
    assert ranked[0].reserved_quantity == Decimal("2")
    assert ranked[-1].confirmed_at_source is False
    assert ranked[-1].quantity_available == Decimal("0")

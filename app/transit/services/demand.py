from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from app.transit.db.models import TransferOrder, TransferOrderLine
from app.transit.repos.assignments import QUANTITY_STEP, AssignmentRepository, to_quantity
from app.transit.repos.catalog import BlueprintLineRecord
from app.transit.repos.transfer_orders import TransferOrderRepository

ZERO = Decimal("0.00")


def required_quantity(
    blueprint_line: BlueprintLineRecord,
    override: Decimal | None = None,
    *,
    allow_override: bool,
) -> Decimal:
    """Quantity an order line must reach, fixed when the line is created.

    An override is honoured only when the blueprint allows per-order
    overrides and is clamped to the line's minimum/maximum. Otherwise the
    template default applies, falling back to a positive minimum and then 1.
    """
    minimum = to_quantity(blueprint_line.minimum_quantity)
    maximum = to_quantity(blueprint_line.maximum_quantity)
    if allow_override and override is not None:
        return min(max(to_quantity(override), minimum), maximum)
    if blueprint_line.default_quantity is not None:
        return to_quantity(blueprint_line.default_quantity)
    if minimum > 0:
        return minimum
    return Decimal("1").quantize(QUANTITY_STEP)


def remaining(required: Decimal, assigned: Decimal) -> Decimal:
    return max(to_quantity(required) - to_quantity(assigned), ZERO)


@dataclass(frozen=True)
class LineProgress:
    line_id: str
    required: Decimal
    assigned: Decimal
    remaining: Decimal

    @property
    def ratio(self) -> float:
        if self.required <= 0:
            return 1.0
        return float(min(self.assigned / self.required, Decimal(1)))


@dataclass(frozen=True)
class OrderProgress:
    lines: list[LineProgress]

    @property
    def required_total(self) -> Decimal:
        return sum((line.required for line in self.lines), ZERO)

    @property
    def assigned_total(self) -> Decimal:
        return sum((line.assigned for line in self.lines), ZERO)

    @property
    def remaining_total(self) -> Decimal:
        return sum((line.remaining for line in self.lines), ZERO)

    @property
    def ratio(self) -> float:
        if self.required_total <= 0:
            return 1.0
        return float(min(self.assigned_total / self.required_total, Decimal(1)))

    def for_line(self, line_id: str) -> LineProgress | None:
        return next((line for line in self.lines if line.line_id == line_id), None)


class DemandResolver:
    """Read-only view of outstanding demand; never writes."""

    def __init__(self, db):
        self.assignments = AssignmentRepository(db)
        self.orders = TransferOrderRepository(db)

    def remaining(self, order_line: TransferOrderLine) -> Decimal:
        return remaining(order_line.required_quantity, self.assignments.assigned_quantity(str(order_line.id)))

    def line_progress(self, order_line: TransferOrderLine, assigned: Decimal | None = None) -> LineProgress:
        if assigned is None:
            assigned = self.assignments.assigned_quantity(str(order_line.id))
        required = to_quantity(order_line.required_quantity)
        return LineProgress(
            line_id=str(order_line.id),
            required=required,
            assigned=to_quantity(assigned),
            remaining=remaining(required, assigned),
        )

    def progress(self, order: TransferOrder, lines: list[TransferOrderLine] | None = None) -> OrderProgress:
        if lines is None:
            lines = self.orders.get_lines(str(order.id))
        assigned = self.assignments.assigned_by_line(str(order.id))
        return OrderProgress(
            lines=[self.line_progress(line, assigned.get(str(line.id), ZERO)) for line in lines]
        )

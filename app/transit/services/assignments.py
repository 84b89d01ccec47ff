from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from app.transit.core.error_catalog import AppError, ErrorCatalog, InvariantViolation
from app.transit.core.logging import log_json
from app.transit.core.metrics import metrics
from app.transit.db.models import AssignmentLine, TransferOrder, TransferOrderLine
from app.transit.repos.assignments import AssignmentRepository, to_quantity
from app.transit.repos.inventory import InventoryLedger, LotRecord
from app.transit.services.demand import remaining
from app.transit.services.lifecycle import LineKind, ensure_assignment_window

logger = logging.getLogger(__name__)


def exceeds_demand(line: TransferOrderLine, *, requested: Decimal, remaining_quantity: Decimal) -> InvariantViolation:
    metrics.increment_invariant_violation("assignment_exceeds_demand")
    return InvariantViolation(
        ErrorCatalog.ASSIGNMENT_EXCEEDS_DEMAND,
        details={
            "line_id": str(line.id),
            "requested_quantity": requested,
            "remaining_quantity": remaining_quantity,
        },
    )


def insufficient_availability(lot_id: str, *, requested: Decimal, available: Decimal | None) -> InvariantViolation:
    metrics.increment_invariant_violation("insufficient_availability")
    return InvariantViolation(
        ErrorCatalog.INSUFFICIENT_AVAILABILITY,
        details={"lot_id": lot_id, "requested_quantity": requested, "available_quantity": available},
    )


class AssignmentLedger:
    """Durable lot-to-line bindings paired with ledger commitments.

    Every insert is preceded by a compare-and-commit on the lot row and every
    delete releases the quantity it held. Rows are never edited.
    """

    def __init__(self, db, ledger: InventoryLedger):
        self.db = db
        self.ledger = ledger
        self.repo = AssignmentRepository(db)

    def record(
        self,
        order: TransferOrder,
        line: TransferOrderLine,
        lot: LotRecord,
        quantity: Decimal,
        *,
        source: str,
        actor_id: str | None,
        strict: bool = True,
    ) -> AssignmentLine | None:
        """Commit `quantity` of `lot` to `line`.

        A lost compare-and-commit raises InsufficientAvailability when
        `strict`, otherwise returns None so batch callers can cap and move on.
        """
        quantity = to_quantity(quantity)
        outstanding = remaining(line.required_quantity, self.repo.assigned_quantity(str(line.id)))
        if quantity <= 0 or quantity > outstanding:
            raise exceeds_demand(line, requested=quantity, remaining_quantity=outstanding)

        if not self.ledger.commit(tenant_id=str(order.tenant_id), lot_id=lot.lot_id, quantity=quantity):
            if strict:
                raise insufficient_availability(lot.lot_id, requested=quantity, available=lot.quantity_available)
            log_json(
                logger,
                {
                    "event": "lot_commit_lost",
                    "order_id": str(order.id),
                    "line_id": str(line.id),
                    "lot_id": lot.lot_id,
                    "quantity": quantity,
                },
                level=logging.WARNING,
            )
            return None

        return self.repo.add(
            AssignmentLine(
                tenant_id=order.tenant_id,
                transfer_order_id=order.id,
                order_line_id=line.id,
                inventory_lot_id=lot.lot_id,
                product_id=line.product_id,
                lot_number=lot.lot_number,
                quantity=quantity,
                location_id=lot.location_id,
                aisle=lot.aisle,
                rack=lot.rack,
                shelf=lot.shelf,
                bin=lot.bin,
                zone=lot.zone,
                source=source,
                created_by_user_id=actor_id,
                created_at=datetime.utcnow(),
            )
        )

    def unassign(self, order: TransferOrder, assignment_id: str) -> AssignmentLine:
        ensure_assignment_window(order, operation="unassign")
        assignment = self.repo.get(str(order.id), assignment_id)
        if assignment is None:
            raise AppError(ErrorCatalog.ASSIGNMENT_NOT_FOUND, details={"assignment_id": assignment_id})
        line = self.db.get(TransferOrderLine, assignment.order_line_id)
        if line is not None and line.line_kind == LineKind.MANUAL:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "manual lines keep their lot for the life of the order", "line_id": str(line.id)},
            )
        self.ledger.release(
            tenant_id=str(order.tenant_id),
            lot_id=str(assignment.inventory_lot_id),
            quantity=to_quantity(assignment.quantity),
        )
        self.repo.delete(assignment)
        return assignment

    def release_all(self, order: TransferOrder) -> int:
        """Return every committed quantity of the order to the ledger; rows stay."""
        released = 0
        for assignment in self.repo.list_for_order(str(order.id)):
            self.ledger.release(
                tenant_id=str(order.tenant_id),
                lot_id=str(assignment.inventory_lot_id),
                quantity=to_quantity(assignment.quantity),
            )
            released += 1
        return released

    def discard_for_lines(self, order: TransferOrder, lines: list[TransferOrderLine]) -> int:
        """Release and delete the assignments of `lines`."""
        line_ids = [str(line.id) for line in lines]
        discarded = 0
        for line_id in line_ids:
            for assignment in self.repo.list_for_line(line_id):
                self.ledger.release(
                    tenant_id=str(order.tenant_id),
                    lot_id=str(assignment.inventory_lot_id),
                    quantity=to_quantity(assignment.quantity),
                )
                discarded += 1
        self.repo.delete_for_lines(line_ids)
        return discarded

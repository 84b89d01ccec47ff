from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from app.transit.core.error_catalog import IllegalTransition
from app.transit.core.logging import log_json
from app.transit.core.metrics import metrics
from app.transit.db.models import TransferMovement, TransferOrder
from app.transit.repos.assignments import AssignmentRepository, to_quantity
from app.transit.repos.catalog import BlueprintCatalog
from app.transit.repos.inventory import InventoryLedger
from app.transit.repos.transfer_orders import TransferOrderRepository
from app.transit.services.assignments import AssignmentLedger
from app.transit.services.lifecycle import ALLOWED_TRANSITIONS, STAGE_FOR_TARGET, OrderStatus
from app.transit.services.scan_reconciliation import ScanReconciliation

logger = logging.getLogger(__name__)

_STAMP_COLUMNS = {
    OrderStatus.APPROVED: ("approved_at", "approved_by_user_id"),
    OrderStatus.PICKED: ("picked_at", "picked_by_user_id"),
    OrderStatus.PACKED: ("packed_at", "packed_by_user_id"),
    OrderStatus.SHIPPED: ("shipped_at", "shipped_by_user_id"),
    OrderStatus.RECEIVED: ("received_at", "received_by_user_id"),
    OrderStatus.COMPLETED: ("completed_at", "completed_by_user_id"),
    OrderStatus.CANCELLED: ("cancelled_at", "cancelled_by_user_id"),
}

_MOVEMENT_FOR_TARGET = {
    OrderStatus.PICKED: "PICK",
    OrderStatus.SHIPPED: "SHIP",
    OrderStatus.RECEIVED: "RECEIVE",
}


@dataclass(frozen=True)
class TransitionResult:
    from_status: str
    to_status: str
    via_scan: bool
    movements: int
    released: int


def _first_present(*values: str | None) -> str | None:
    for value in values:
        if value and value.strip():
            return value.strip()
    return None


class OrderStateMachine:
    """Single entry point for status changes.

    Scan-confirmed and operator-override paths share `transition`; the
    `via_scan` flag only adds the stage-completion precondition.
    """

    def __init__(self, db, ledger: InventoryLedger, catalog: BlueprintCatalog):
        self.db = db
        self.orders = TransferOrderRepository(db)
        self.assignments = AssignmentRepository(db)
        self.assignment_ledger = AssignmentLedger(db, ledger)
        self.scans = ScanReconciliation(db, catalog)

    def transition(
        self,
        order: TransferOrder,
        target: str,
        *,
        via_scan: bool = False,
        actor_id: str | None = None,
        carrier: str | None = None,
        tracking_number: str | None = None,
    ) -> TransitionResult:
        current = order.status
        if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
            raise IllegalTransition(current, {"target": target})

        stage = STAGE_FOR_TARGET.get(target)
        session = self.orders.get_scan_session(str(order.id), stage) if stage else None

        if target == OrderStatus.SHIPPED:
            resolved_carrier = _first_present(carrier, session.carrier if session else None, order.carrier)
            if not resolved_carrier:
                raise IllegalTransition(current, {"target": target, "reason": "carrier_required"})
            order.carrier = resolved_carrier
            order.tracking_number = _first_present(
                tracking_number,
                session.tracking_number if session else None,
                order.tracking_number,
            )

        if via_scan and stage:
            state = self.scans.state_for(order, stage, session)
            if not state.complete:
                raise IllegalTransition(
                    current,
                    {"target": target, "reason": "scan_incomplete", "unconfirmed": state.unconfirmed},
                )

        released = 0
        if target == OrderStatus.CANCELLED:
            released = self.assignment_ledger.release_all(order)
            self.orders.delete_scan_sessions(str(order.id))
        elif stage:
            self.orders.delete_scan_sessions(str(order.id), stage=stage)

        movements = self._write_movements(order, target, actor_id)

        now = datetime.utcnow()
        stamp_at, stamp_by = _STAMP_COLUMNS[target]
        setattr(order, stamp_at, now)
        setattr(order, stamp_by, actor_id)
        order.status = target
        order.updated_at = now
        order.updated_by_user_id = actor_id
        self.db.flush()

        metrics.record_transition(target, via_scan=via_scan)
        log_json(
            logger,
            {
                "event": "transfer_order_transition",
                "order_id": str(order.id),
                "from_status": current,
                "to_status": target,
                "via_scan": via_scan,
                "movements": movements,
                "released": released,
            },
        )
        return TransitionResult(
            from_status=current,
            to_status=target,
            via_scan=via_scan,
            movements=movements,
            released=released,
        )

    def _write_movements(self, order: TransferOrder, target: str, actor_id: str | None) -> int:
        action = _MOVEMENT_FOR_TARGET.get(target)
        if action is None:
            return 0
        from_location, to_location = {
            "PICK": (order.origin_location_id, None),
            "SHIP": (order.origin_location_id, order.destination_location_id),
            "RECEIVE": (None, order.destination_location_id),
        }[action]
        rows = [
            TransferMovement(
                tenant_id=order.tenant_id,
                transfer_order_id=order.id,
                order_line_id=assignment.order_line_id,
                assignment_line_id=assignment.id,
                inventory_lot_id=assignment.inventory_lot_id,
                action=action,
                quantity=to_quantity(assignment.quantity),
                from_location_id=from_location,
                to_location_id=to_location,
                created_by_user_id=actor_id,
                created_at=datetime.utcnow(),
            )
            for assignment in self.assignments.list_for_order(str(order.id))
        ]
        self.db.add_all(rows)
        return len(rows)

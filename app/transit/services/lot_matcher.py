from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from app.transit.core.config import settings
from app.transit.core.error_catalog import AppError, ErrorCatalog, TransientLookupFailure
from app.transit.core.logging import log_json
from app.transit.core.metrics import metrics
from app.transit.db.models import AssignmentLine, TransferOrder, TransferOrderLine
from app.transit.repos.assignments import AssignmentRepository, to_quantity
from app.transit.repos.catalog import BlueprintCatalog, ReservedLot
from app.transit.repos.inventory import InventoryLedger, LotRecord
from app.transit.repos.transfer_orders import TransferOrderRepository
from app.transit.services.assignments import AssignmentLedger, exceeds_demand, insufficient_availability
from app.transit.services.demand import ZERO, remaining
from app.transit.services.lifecycle import LineKind, ensure_assignment_window

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    lot_id: str | None
    lot_number: str | None
    product_id: str
    location_id: str | None
    quantity_available: Decimal
    expiration_date: date | None
    reserved_quantity: Decimal | None
    confirmed_at_source: bool
    aisle: str | None = None
    rack: str | None = None
    shelf: str | None = None
    bin: str | None = None
    zone: str | None = None


@dataclass(frozen=True)
class StaleMatch:
    line_id: str
    product_id: str
    lot_id: str | None
    lot_number: str | None
    declared_quantity: Decimal


@dataclass(frozen=True)
class SkippedLine:
    line_id: str
    product_id: str
    source: str
    reason: str


@dataclass(frozen=True)
class LineOutcome:
    line_id: str
    product_id: str
    required: Decimal
    assigned: Decimal
    remaining: Decimal
    outcome: str


@dataclass
class AutoAssignReport:
    created: list[str] = field(default_factory=list)
    lines: list[LineOutcome] = field(default_factory=list)
    skipped: list[SkippedLine] = field(default_factory=list)
    stale_matches: list[StaleMatch] = field(default_factory=list)
    truncated: bool = False


def _reservation_matches(reservation: ReservedLot, lot: LotRecord) -> bool:
    if reservation.lot_id and reservation.lot_id == lot.lot_id:
        return True
    return bool(reservation.lot_number) and reservation.lot_number == lot.lot_number


def _sort_live(lots: list[LotRecord]) -> list[LotRecord]:
    return sorted(
        lots,
        key=lambda lot: (lot.expiration_date is None, lot.expiration_date or date.max, lot.lot_number or ""),
    )


def _from_lot(lot: LotRecord, *, reserved_quantity: Decimal | None) -> Candidate:
    return Candidate(
        lot_id=lot.lot_id,
        lot_number=lot.lot_number,
        product_id=lot.product_id,
        location_id=lot.location_id,
        quantity_available=to_quantity(lot.quantity_available),
        expiration_date=lot.expiration_date,
        reserved_quantity=reserved_quantity,
        confirmed_at_source=True,
        aisle=lot.aisle,
        rack=lot.rack,
        shelf=lot.shelf,
        bin=lot.bin,
        zone=lot.zone,
    )


def rank_candidates(live: list[LotRecord], reserved: list[ReservedLot]) -> list[Candidate]:
    """Order live and reserved lots for one product.

    Reserved lots that are live come first, then the remaining live lots by
    expiration (undated last) and lot number, then reserved lots the live
    query did not return, flagged as not confirmed at source.
    """
    live = _sort_live([lot for lot in live if lot.quantity_available > 0])
    preferred: list[Candidate] = []
    others: list[Candidate] = []
    for lot in live:
        declared = [reservation for reservation in reserved if _reservation_matches(reservation, lot)]
        if declared:
            reserved_quantity = sum((to_quantity(item.quantity) for item in declared), ZERO)
            preferred.append(_from_lot(lot, reserved_quantity=reserved_quantity))
        else:
            others.append(_from_lot(lot, reserved_quantity=None))

    unconfirmed: list[Candidate] = []
    for reservation in reserved:
        if any(_reservation_matches(reservation, lot) for lot in live):
            continue
        unconfirmed.append(
            Candidate(
                lot_id=reservation.lot_id,
                lot_number=reservation.lot_number,
                product_id=reservation.product_id,
                location_id=None,
                quantity_available=ZERO,
                expiration_date=None,
                reserved_quantity=to_quantity(reservation.quantity),
                confirmed_at_source=False,
            )
        )
    return preferred + others + unconfirmed


class LotMatcher:
    def __init__(
        self,
        db,
        ledger: InventoryLedger,
        catalog: BlueprintCatalog,
        *,
        max_commits: int | None = None,
    ):
        self.db = db
        self.ledger = ledger
        self.catalog = catalog
        self.assignments = AssignmentLedger(db, ledger)
        self.assignment_repo = AssignmentRepository(db)
        self.orders = TransferOrderRepository(db)
        self.max_commits = max_commits if max_commits is not None else settings.AUTO_ASSIGN_MAX_COMMITS

    def _reserved_for(self, order: TransferOrder, product_id: str) -> list[ReservedLot]:
        if not order.destination_loadout_id:
            return []
        reserved = self.catalog.get_loadout_reserved_lots(
            tenant_id=str(order.tenant_id),
            loadout_id=str(order.destination_loadout_id),
        )
        return [reservation for reservation in reserved if reservation.product_id == product_id]

    def _live_for(self, order: TransferOrder, product_id: str) -> list[LotRecord]:
        return self.ledger.list_available_lots(
            tenant_id=str(order.tenant_id),
            product_id=product_id,
            location_id=str(order.origin_location_id),
        )

    def _lookup(self, order: TransferOrder, product_id: str) -> tuple[list[ReservedLot], list[LotRecord]]:
        # A failed statement only rolls back its savepoint, so later lines keep a usable transaction.
        with self.db.begin_nested():
            reserved = self._reserved_for(order, product_id)
            live = self._live_for(order, product_id)
        return reserved, live

    def candidates(self, order: TransferOrder, line: TransferOrderLine) -> list[Candidate]:
        product_id = str(line.product_id)
        try:
            reserved, live = self._lookup(order, product_id)
        except TransientLookupFailure as exc:
            raise AppError(
                ErrorCatalog.INVENTORY_LOOKUP_UNAVAILABLE,
                details={"source": exc.source, "reason": exc.reason, "product_id": product_id},
            ) from exc
        return rank_candidates(live, reserved)

    def assign(
        self,
        order: TransferOrder,
        line: TransferOrderLine,
        *,
        lot_id: str,
        quantity: Decimal,
        actor_id: str | None,
    ) -> AssignmentLine:
        ensure_assignment_window(order, operation="assign")
        if line.line_kind == LineKind.MANUAL:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "manual lines are not subject to matching", "line_id": str(line.id)},
            )
        quantity = to_quantity(quantity)
        outstanding = remaining(line.required_quantity, self.assignment_repo.assigned_quantity(str(line.id)))
        if quantity <= 0 or quantity > outstanding:
            raise exceeds_demand(line, requested=quantity, remaining_quantity=outstanding)

        lot = self.ledger.get_lot(tenant_id=str(order.tenant_id), lot_id=lot_id, for_update=True)
        if lot is None:
            raise AppError(ErrorCatalog.INVENTORY_LOT_NOT_FOUND, details={"lot_id": lot_id})
        if lot.product_id != str(line.product_id):
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "lot belongs to a different product", "lot_id": lot_id},
            )
        if lot.location_id != str(order.origin_location_id):
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "lot is not stored at the origin location", "lot_id": lot_id},
            )
        if quantity > lot.quantity_available:
            raise insufficient_availability(lot_id, requested=quantity, available=lot.quantity_available)

        assignment = self.assignments.record(order, line, lot, quantity, source="manual", actor_id=actor_id)
        order.updated_at = datetime.utcnow()
        order.updated_by_user_id = actor_id
        self.db.flush()
        return assignment

    def auto_assign(
        self,
        order: TransferOrder,
        *,
        actor_id: str | None,
        line_id: str | None = None,
    ) -> AutoAssignReport:
        ensure_assignment_window(order, operation="auto_assign")
        lines = [line for line in self.orders.get_lines(str(order.id)) if line.line_kind == LineKind.BLUEPRINT]
        if line_id is not None:
            lines = [line for line in lines if str(line.id) == line_id]
            if not lines:
                raise AppError(ErrorCatalog.ORDER_LINE_NOT_FOUND, details={"line_id": line_id})

        report = AutoAssignReport()
        budget = self.max_commits
        for line in lines:
            assigned = self.assignment_repo.assigned_quantity(str(line.id))
            required = to_quantity(line.required_quantity)
            outstanding = remaining(required, assigned)
            if assigned > 0 or outstanding <= 0:
                outcome = "already_assigned" if assigned > 0 else "satisfied"
                report.lines.append(self._outcome(line, required, assigned, outcome))
                continue
            if budget <= 0:
                report.truncated = True
                report.lines.append(self._outcome(line, required, assigned, "truncated"))
                continue

            product_id = str(line.product_id)
            try:
                reserved, live = self._lookup(order, product_id)
                live = _sort_live(live)
            except TransientLookupFailure as exc:
                log_json(
                    logger,
                    {
                        "event": "auto_assign_line_skipped",
                        "order_id": str(order.id),
                        "line_id": str(line.id),
                        "product_id": product_id,
                        "source": exc.source,
                        "reason": exc.reason,
                    },
                    level=logging.WARNING,
                )
                report.skipped.append(
                    SkippedLine(line_id=str(line.id), product_id=product_id, source=exc.source, reason=exc.reason)
                )
                report.lines.append(self._outcome(line, required, assigned, "skipped"))
                metrics.record_auto_assign_line("skipped")
                continue

            created, budget = self._fill_line(order, line, outstanding, reserved, live, budget, actor_id, report)
            report.created.extend(str(assignment.id) for assignment in created)
            assigned = to_quantity(sum((to_quantity(item.quantity) for item in created), ZERO))
            left = remaining(required, assigned)
            if left <= 0:
                outcome = "satisfied"
            elif assigned > 0:
                outcome = "partial"
            else:
                outcome = "unmatched"
            if left > 0 and budget <= 0:
                report.truncated = True
            report.lines.append(self._outcome(line, required, assigned, outcome))
            metrics.record_auto_assign_line(outcome)

        if report.created:
            order.updated_at = datetime.utcnow()
            order.updated_by_user_id = actor_id
            self.db.flush()
        log_json(
            logger,
            {
                "event": "auto_assign",
                "order_id": str(order.id),
                "created": len(report.created),
                "skipped": len(report.skipped),
                "stale_matches": len(report.stale_matches),
                "truncated": report.truncated,
            },
        )
        return report

    def _fill_line(
        self,
        order: TransferOrder,
        line: TransferOrderLine,
        outstanding: Decimal,
        reserved: list[ReservedLot],
        live: list[LotRecord],
        budget: int,
        actor_id: str | None,
        report: AutoAssignReport,
    ) -> tuple[list[AssignmentLine], int]:
        available = {lot.lot_id: to_quantity(lot.quantity_available) for lot in live}
        created: list[AssignmentLine] = []

        def commit(lot: LotRecord, quantity: Decimal, source: str) -> None:
            nonlocal outstanding, budget
            assignment = self.assignments.record(
                order, line, lot, quantity, source=source, actor_id=actor_id, strict=False
            )
            budget -= 1
            if assignment is None:
                available[lot.lot_id] = ZERO
                return
            created.append(assignment)
            available[lot.lot_id] -= quantity
            outstanding -= quantity

        for reservation in reserved:
            if outstanding <= 0 or budget <= 0:
                break
            match = next((lot for lot in live if _reservation_matches(reservation, lot)), None)
            if match is None:
                stale = StaleMatch(
                    line_id=str(line.id),
                    product_id=str(line.product_id),
                    lot_id=reservation.lot_id,
                    lot_number=reservation.lot_number,
                    declared_quantity=to_quantity(reservation.quantity),
                )
                report.stale_matches.append(stale)
                log_json(logger, {"event": "stale_match", "order_id": str(order.id), **stale.__dict__})
                continue
            quantity = min(outstanding, to_quantity(reservation.quantity), available[match.lot_id])
            if quantity > 0:
                commit(match, quantity, "reserved")

        if outstanding > 0 and budget > 0:
            fallback = next((lot for lot in live if available[lot.lot_id] > 0), None)
            if fallback is not None:
                commit(fallback, min(outstanding, available[fallback.lot_id]), "fallback")

        return created, budget

    @staticmethod
    def _outcome(line: TransferOrderLine, required: Decimal, assigned: Decimal, outcome: str) -> LineOutcome:
        return LineOutcome(
            line_id=str(line.id),
            product_id=str(line.product_id),
            required=required,
            assigned=assigned,
            remaining=remaining(required, assigned),
            outcome=outcome,
        )

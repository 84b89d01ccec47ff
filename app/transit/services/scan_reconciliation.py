from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from app.transit.core.error_catalog import AppError, ErrorCatalog
from app.transit.core.metrics import metrics
from app.transit.db.models import ScanSession, TransferOrder
from app.transit.repos.assignments import AssignmentRepository
from app.transit.repos.catalog import BlueprintCatalog
from app.transit.repos.transfer_orders import TransferOrderRepository
from app.transit.services.lifecycle import ScanStage, ensure_stage_matches_status


@dataclass(frozen=True)
class ExpectedLine:
    line_id: str
    line_kind: str
    product_id: str
    product_name: str | None
    sku: str | None
    gtin: str | None
    lot_numbers: tuple[str, ...]

    def matches(self, token: str) -> bool:
        return token in {value for value in (self.sku, self.gtin, *self.lot_numbers) if value}


@dataclass(frozen=True)
class ScanState:
    order_id: str
    stage: str
    started: bool
    expected: list[ExpectedLine]
    confirmed: list[str]
    unconfirmed: list[str]
    focus_line_id: str | None
    carrier: str | None
    tracking_number: str | None

    @property
    def complete(self) -> bool:
        return not self.unconfirmed

    @property
    def ready_to_transition(self) -> bool:
        if self.stage == ScanStage.SHIPPING:
            return self.complete and bool(self.carrier)
        return self.complete


@dataclass(frozen=True)
class ScanResult:
    matched: bool
    line_id: str | None
    message: str
    state: ScanState


class ScanReconciliation:
    """Per-order, per-stage confirmation of expected lines against scans.

    Progress lives in `scan_sessions` so an interrupted workflow resumes where
    it stopped. A session row is removed when its stage completes.
    """

    def __init__(self, db, catalog: BlueprintCatalog):
        self.db = db
        self.catalog = catalog
        self.orders = TransferOrderRepository(db)
        self.assignments = AssignmentRepository(db)

    def expected_lines(self, order: TransferOrder) -> list[ExpectedLine]:
        lot_numbers: dict[str, list[str]] = {}
        for assignment in self.assignments.list_for_order(str(order.id)):
            if assignment.lot_number:
                lot_numbers.setdefault(str(assignment.order_line_id), []).append(assignment.lot_number)

        products = {}
        expected = []
        for line in self.orders.get_lines(str(order.id)):
            product_id = str(line.product_id)
            if product_id not in products:
                products[product_id] = self.catalog.get_product(tenant_id=str(order.tenant_id), product_id=product_id)
            product = products[product_id]
            expected.append(
                ExpectedLine(
                    line_id=str(line.id),
                    line_kind=line.line_kind,
                    product_id=product_id,
                    product_name=product.name if product else None,
                    sku=product.sku if product else None,
                    gtin=product.gtin if product else None,
                    lot_numbers=tuple(lot_numbers.get(str(line.id), ())),
                )
            )
        return expected

    def state_for(self, order: TransferOrder, stage: str, session: ScanSession | None) -> ScanState:
        expected = self.expected_lines(order)
        confirmed_map = dict(session.confirmed or {}) if session else {}
        confirmed = [line.line_id for line in expected if confirmed_map.get(line.line_id)]
        unconfirmed = [line.line_id for line in expected if not confirmed_map.get(line.line_id)]
        focus = str(session.focus_line_id) if session and session.focus_line_id else None
        if focus not in unconfirmed:
            focus = unconfirmed[0] if unconfirmed else None
        return ScanState(
            order_id=str(order.id),
            stage=stage,
            started=session is not None,
            expected=expected,
            confirmed=confirmed,
            unconfirmed=unconfirmed,
            focus_line_id=focus,
            carrier=session.carrier if session else None,
            tracking_number=session.tracking_number if session else None,
        )

    def _session(self, order: TransferOrder, stage: str) -> ScanSession | None:
        return self.orders.get_scan_session(str(order.id), stage)

    def _require_session(self, order: TransferOrder, stage: str) -> ScanSession:
        ensure_stage_matches_status(order, stage)
        session = self._session(order, stage)
        if session is None:
            session = self._create(order, stage)
        return session

    def _create(self, order: TransferOrder, stage: str) -> ScanSession:
        session = ScanSession(
            tenant_id=order.tenant_id,
            transfer_order_id=order.id,
            stage=stage,
            confirmed={},
            carrier=order.carrier if stage == ScanStage.SHIPPING else None,
            tracking_number=order.tracking_number if stage == ScanStage.SHIPPING else None,
            created_at=datetime.utcnow(),
        )
        self.db.add(session)
        self.db.flush()
        return session

    def get(self, order: TransferOrder, stage: str) -> ScanState:
        ensure_stage_matches_status(order, stage)
        return self.state_for(order, stage, self._session(order, stage))

    def open(self, order: TransferOrder, stage: str) -> ScanState:
        session = self._require_session(order, stage)
        return self.state_for(order, stage, session)

    def scan(self, order: TransferOrder, stage: str, token: str) -> ScanResult:
        session = self._require_session(order, stage)
        state = self.state_for(order, stage, session)
        token = token.strip()
        focused = next((line for line in state.expected if line.line_id == state.focus_line_id), None)

        if focused is None:
            metrics.record_scan(stage, matched=False)
            return ScanResult(matched=False, line_id=None, message="All lines are already confirmed", state=state)
        if not token or not focused.matches(token):
            metrics.record_scan(stage, matched=False)
            return ScanResult(
                matched=False,
                line_id=focused.line_id,
                message=f"Scanned code '{token}' does not match the expected item",
                state=state,
            )

        confirmed = dict(session.confirmed or {})
        confirmed[focused.line_id] = True
        session.confirmed = confirmed
        session.focus_line_id = self._next_unconfirmed(state, focused.line_id, confirmed)
        session.updated_at = datetime.utcnow()
        self.db.flush()
        metrics.record_scan(stage, matched=True)
        return ScanResult(
            matched=True,
            line_id=focused.line_id,
            message="Item confirmed",
            state=self.state_for(order, stage, session),
        )

    @staticmethod
    def _next_unconfirmed(state: ScanState, current_line_id: str, confirmed: dict) -> str | None:
        line_ids = [line.line_id for line in state.expected]
        start = line_ids.index(current_line_id)
        for line_id in line_ids[start + 1 :] + line_ids[:start]:
            if not confirmed.get(line_id):
                return line_id
        return None

    def update(
        self,
        order: TransferOrder,
        stage: str,
        *,
        focus_line_id: str | None = None,
        carrier: str | None = None,
        tracking_number: str | None = None,
    ) -> ScanState:
        session = self._require_session(order, stage)
        if focus_line_id is not None:
            expected_ids = {line.line_id for line in self.expected_lines(order)}
            if focus_line_id not in expected_ids:
                raise AppError(ErrorCatalog.ORDER_LINE_NOT_FOUND, details={"line_id": focus_line_id})
            session.focus_line_id = focus_line_id
        if carrier is not None or tracking_number is not None:
            if stage != ScanStage.SHIPPING:
                raise AppError(
                    ErrorCatalog.VALIDATION_ERROR,
                    details={"message": "carrier and tracking number are captured during shipping", "stage": stage},
                )
            if carrier is not None:
                session.carrier = carrier.strip() or None
            if tracking_number is not None:
                session.tracking_number = tracking_number.strip() or None
        session.updated_at = datetime.utcnow()
        self.db.flush()
        return self.state_for(order, stage, session)

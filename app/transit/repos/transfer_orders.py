from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, func, select

from app.transit.db.models import ScanSession, TransferMovement, TransferOrder, TransferOrderLine


@dataclass(frozen=True)
class TransferOrderQueryFilters:
    tenant_id: str
    status: str | None = None
    origin_location_id: str | None = None
    destination_location_id: str | None = None
    priority: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None


class TransferOrderRepository:
    def __init__(self, db):
        self.db = db

    def list_orders(
        self, filters: TransferOrderQueryFilters, *, limit: int, offset: int
    ) -> tuple[list[TransferOrder], int]:
        query = self._apply_filters(filters)
        total = self.db.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        rows = (
            self.db.execute(
                query.order_by(TransferOrder.created_at.desc(), TransferOrder.order_number.desc())
                .offset(offset)
                .limit(limit)
            )
            .scalars()
            .all()
        )
        return rows, int(total or 0)

    def _apply_filters(self, filters: TransferOrderQueryFilters):
        query = select(TransferOrder).where(TransferOrder.tenant_id == filters.tenant_id)
        if filters.status:
            query = query.where(TransferOrder.status == filters.status)
        if filters.origin_location_id:
            query = query.where(TransferOrder.origin_location_id == filters.origin_location_id)
        if filters.destination_location_id:
            query = query.where(TransferOrder.destination_location_id == filters.destination_location_id)
        if filters.priority:
            query = query.where(TransferOrder.priority == filters.priority)
        if filters.created_from:
            query = query.where(TransferOrder.created_at >= filters.created_from)
        if filters.created_to:
            query = query.where(TransferOrder.created_at <= filters.created_to)
        return query

    def get_order(self, order_id: str, tenant_id: str, *, for_update: bool = False) -> TransferOrder | None:
        query = select(TransferOrder).where(TransferOrder.id == order_id, TransferOrder.tenant_id == tenant_id)
        if for_update:
            query = query.with_for_update()
        return self.db.execute(query).scalars().first()

    def next_order_number(self, tenant_id: str, prefix: str) -> str:
        numbers = (
            self.db.execute(
                select(TransferOrder.order_number).where(
                    TransferOrder.tenant_id == tenant_id,
                    TransferOrder.order_number.like(f"{prefix}-%"),
                )
            )
            .scalars()
            .all()
        )
        highest = 0
        for number in numbers:
            suffix = number.split("-", 1)[1]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return f"{prefix}-{highest + 1:04d}"

    def get_lines(self, order_id: str) -> list[TransferOrderLine]:
        return (
            self.db.execute(
                select(TransferOrderLine)
                .where(TransferOrderLine.transfer_order_id == order_id)
                .order_by(TransferOrderLine.position, TransferOrderLine.created_at)
            )
            .scalars()
            .all()
        )

    def get_line(self, order_id: str, line_id: str) -> TransferOrderLine | None:
        return (
            self.db.execute(
                select(TransferOrderLine).where(
                    TransferOrderLine.id == line_id,
                    TransferOrderLine.transfer_order_id == order_id,
                )
            )
            .scalars()
            .first()
        )

    def delete_lines(self, order_id: str, *, line_kind: str) -> None:
        self.db.execute(
            delete(TransferOrderLine)
            .where(
                TransferOrderLine.transfer_order_id == order_id,
                TransferOrderLine.line_kind == line_kind,
            )
            .execution_options(synchronize_session="fetch")
        )

    def get_movements(self, order_id: str) -> list[TransferMovement]:
        return (
            self.db.execute(
                select(TransferMovement)
                .where(TransferMovement.transfer_order_id == order_id)
                .order_by(TransferMovement.created_at)
            )
            .scalars()
            .all()
        )

    def get_scan_session(self, order_id: str, stage: str) -> ScanSession | None:
        return (
            self.db.execute(
                select(ScanSession).where(ScanSession.transfer_order_id == order_id, ScanSession.stage == stage)
            )
            .scalars()
            .first()
        )

    def delete_scan_sessions(self, order_id: str, *, stage: str | None = None) -> None:
        stmt = delete(ScanSession).where(ScanSession.transfer_order_id == order_id)
        if stage is not None:
            stmt = stmt.where(ScanSession.stage == stage)
        self.db.execute(stmt.execution_options(synchronize_session="fetch"))

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import delete, func, select

from app.transit.db.models import AssignmentLine

QUANTITY_STEP = Decimal("0.01")


def to_quantity(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(QUANTITY_STEP)


class AssignmentRepository:
    """Append/delete access to `assignment_lines`; rows are never updated."""

    def __init__(self, db):
        self.db = db

    def list_for_order(self, order_id: str) -> list[AssignmentLine]:
        return (
            self.db.execute(
                select(AssignmentLine)
                .where(AssignmentLine.transfer_order_id == order_id)
                .order_by(AssignmentLine.created_at, AssignmentLine.id)
            )
            .scalars()
            .all()
        )

    def list_for_line(self, line_id: str) -> list[AssignmentLine]:
        return (
            self.db.execute(
                select(AssignmentLine)
                .where(AssignmentLine.order_line_id == line_id)
                .order_by(AssignmentLine.created_at, AssignmentLine.id)
            )
            .scalars()
            .all()
        )

    def get(self, order_id: str, assignment_id: str) -> AssignmentLine | None:
        return (
            self.db.execute(
                select(AssignmentLine).where(
                    AssignmentLine.id == assignment_id,
                    AssignmentLine.transfer_order_id == order_id,
                )
            )
            .scalars()
            .first()
        )

    def assigned_quantity(self, line_id: str) -> Decimal:
        total = self.db.execute(
            select(func.coalesce(func.sum(AssignmentLine.quantity), 0)).where(AssignmentLine.order_line_id == line_id)
        ).scalar_one()
        return to_quantity(total)

    def assigned_by_line(self, order_id: str) -> dict[str, Decimal]:
        rows = self.db.execute(
            select(AssignmentLine.order_line_id, func.sum(AssignmentLine.quantity))
            .where(AssignmentLine.transfer_order_id == order_id)
            .group_by(AssignmentLine.order_line_id)
        ).all()
        return {str(line_id): to_quantity(total) for line_id, total in rows}

    def add(self, assignment: AssignmentLine) -> AssignmentLine:
        self.db.add(assignment)
        self.db.flush()
        return assignment

    def delete(self, assignment: AssignmentLine) -> None:
        self.db.delete(assignment)
        self.db.flush()

    def delete_for_lines(self, line_ids: list[str]) -> None:
        if not line_ids:
            return
        self.db.execute(
            delete(AssignmentLine)
            .where(AssignmentLine.order_line_id.in_(line_ids))
            .execution_options(synchronize_session="fetch")
        )

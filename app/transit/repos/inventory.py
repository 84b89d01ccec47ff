from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from app.transit.core.error_catalog import TransientLookupFailure
from app.transit.db.models import InventoryLot


@dataclass(frozen=True)
class LotRecord:
    lot_id: str
    product_id: str
    location_id: str
    lot_number: str | None
    expiration_date: date | None
    quantity_on_hand: Decimal
    quantity_available: Decimal
    quantity_reserved: Decimal
    aisle: str | None = None
    rack: str | None = None
    shelf: str | None = None
    bin: str | None = None
    zone: str | None = None
    is_active: bool = True


class LedgerUnavailable(TransientLookupFailure):
    def __init__(self, reason: str):
        super().__init__("inventory_ledger", reason)


class InventoryLedger(Protocol):
    def list_available_lots(self, *, tenant_id: str, product_id: str, location_id: str) -> list[LotRecord]: ...

    def get_lot(self, *, tenant_id: str, lot_id: str, for_update: bool = False) -> LotRecord | None: ...

    def commit(self, *, tenant_id: str, lot_id: str, quantity: Decimal) -> bool: ...

    def release(self, *, tenant_id: str, lot_id: str, quantity: Decimal) -> None: ...


def _to_record(lot: InventoryLot) -> LotRecord:
    return LotRecord(
        lot_id=str(lot.id),
        product_id=str(lot.product_id),
        location_id=str(lot.location_id),
        lot_number=lot.lot_number,
        expiration_date=lot.expiration_date,
        quantity_on_hand=Decimal(lot.quantity_on_hand),
        quantity_available=Decimal(lot.quantity_available),
        quantity_reserved=Decimal(lot.quantity_reserved),
        aisle=lot.aisle,
        rack=lot.rack,
        shelf=lot.shelf,
        bin=lot.bin,
        zone=lot.zone,
        is_active=lot.is_active,
    )


class SqlInventoryLedger:
    """Inventory ledger backed by the `inventory_lots` table.

    Reads always go to the database (`populate_existing`) so quantities
    committed earlier in the same transaction are visible to the next read.
    """

    def __init__(self, db):
        self.db = db

    def list_available_lots(self, *, tenant_id: str, product_id: str, location_id: str) -> list[LotRecord]:
        query = (
            select(InventoryLot)
            .where(
                InventoryLot.tenant_id == tenant_id,
                InventoryLot.product_id == product_id,
                InventoryLot.location_id == location_id,
                InventoryLot.is_active.is_(True),
                InventoryLot.quantity_available > 0,
            )
            .order_by(InventoryLot.expiration_date.is_(None), InventoryLot.expiration_date, InventoryLot.lot_number)
            .execution_options(populate_existing=True)
        )
        try:
            rows = self.db.execute(query).scalars().all()
        except OperationalError as exc:
            raise LedgerUnavailable(str(exc.orig or exc)) from exc
        return [_to_record(row) for row in rows]

    def get_lot(self, *, tenant_id: str, lot_id: str, for_update: bool = False) -> LotRecord | None:
        query = (
            select(InventoryLot)
            .where(
                InventoryLot.id == lot_id,
                InventoryLot.tenant_id == tenant_id,
                InventoryLot.is_active.is_(True),
            )
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        lot = self.db.execute(query).scalars().first()
        return _to_record(lot) if lot is not None else None

    def commit(self, *, tenant_id: str, lot_id: str, quantity: Decimal) -> bool:
        result = self.db.execute(
            update(InventoryLot)
            .where(
                InventoryLot.id == lot_id,
                InventoryLot.tenant_id == tenant_id,
                InventoryLot.is_active.is_(True),
                InventoryLot.quantity_available >= quantity,
            )
            .values(
                quantity_available=InventoryLot.quantity_available - quantity,
                quantity_reserved=InventoryLot.quantity_reserved + quantity,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def release(self, *, tenant_id: str, lot_id: str, quantity: Decimal) -> None:
        self.db.execute(
            update(InventoryLot)
            .where(InventoryLot.id == lot_id, InventoryLot.tenant_id == tenant_id)
            .values(
                quantity_available=InventoryLot.quantity_available + quantity,
                quantity_reserved=InventoryLot.quantity_reserved - quantity,
            )
            .execution_options(synchronize_session=False)
        )

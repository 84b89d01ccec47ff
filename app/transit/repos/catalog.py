from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.transit.core.error_catalog import TransientLookupFailure
from app.transit.db.models import Blueprint, BlueprintLine, Loadout, LoadoutLot, Product


@dataclass(frozen=True)
class BlueprintRecord:
    id: str
    name: str
    allow_quantity_override: bool
    is_active: bool


@dataclass(frozen=True)
class BlueprintLineRecord:
    id: str
    blueprint_id: str
    product_id: str
    position: int
    minimum_quantity: Decimal
    default_quantity: Decimal | None
    maximum_quantity: Decimal
    usage_notes: str | None = None


@dataclass(frozen=True)
class LoadoutRecord:
    id: str
    blueprint_id: str
    location_id: str
    serial_suffix: str | None
    is_active: bool


@dataclass(frozen=True)
class ReservedLot:
    product_id: str
    lot_id: str | None
    lot_number: str | None
    quantity: Decimal


@dataclass(frozen=True)
class ProductRecord:
    id: str
    name: str
    sku: str | None
    gtin: str | None
    unit_of_measure: str


class CatalogUnavailable(TransientLookupFailure):
    def __init__(self, reason: str):
        super().__init__("blueprint_catalog", reason)


class BlueprintCatalog(Protocol):
    def get_blueprint(self, *, tenant_id: str, blueprint_id: str) -> BlueprintRecord | None: ...

    def get_blueprint_lines(self, *, tenant_id: str, blueprint_id: str) -> list[BlueprintLineRecord]: ...

    def get_loadout(self, *, tenant_id: str, loadout_id: str) -> LoadoutRecord | None: ...

    def get_loadout_reserved_lots(self, *, tenant_id: str, loadout_id: str) -> list[ReservedLot]: ...

    def get_product(self, *, tenant_id: str, product_id: str) -> ProductRecord | None: ...


class SqlBlueprintCatalog:
    def __init__(self, db):
        self.db = db

    def get_blueprint(self, *, tenant_id: str, blueprint_id: str) -> BlueprintRecord | None:
        row = (
            self.db.execute(select(Blueprint).where(Blueprint.id == blueprint_id, Blueprint.tenant_id == tenant_id))
            .scalars()
            .first()
        )
        if row is None:
            return None
        return BlueprintRecord(
            id=str(row.id),
            name=row.name,
            allow_quantity_override=row.allow_quantity_override,
            is_active=row.is_active,
        )

    def get_blueprint_lines(self, *, tenant_id: str, blueprint_id: str) -> list[BlueprintLineRecord]:
        rows = (
            self.db.execute(
                select(BlueprintLine)
                .where(BlueprintLine.blueprint_id == blueprint_id, BlueprintLine.tenant_id == tenant_id)
                .order_by(BlueprintLine.position, BlueprintLine.id)
            )
            .scalars()
            .all()
        )
        return [
            BlueprintLineRecord(
                id=str(row.id),
                blueprint_id=str(row.blueprint_id),
                product_id=str(row.product_id),
                position=row.position,
                minimum_quantity=Decimal(row.minimum_quantity),
                default_quantity=Decimal(row.default_quantity) if row.default_quantity is not None else None,
                maximum_quantity=Decimal(row.maximum_quantity),
                usage_notes=row.usage_notes,
            )
            for row in rows
        ]

    def get_loadout(self, *, tenant_id: str, loadout_id: str) -> LoadoutRecord | None:
        row = (
            self.db.execute(select(Loadout).where(Loadout.id == loadout_id, Loadout.tenant_id == tenant_id))
            .scalars()
            .first()
        )
        if row is None:
            return None
        return LoadoutRecord(
            id=str(row.id),
            blueprint_id=str(row.blueprint_id),
            location_id=str(row.location_id),
            serial_suffix=row.serial_suffix,
            is_active=row.is_active,
        )

    def get_loadout_reserved_lots(self, *, tenant_id: str, loadout_id: str) -> list[ReservedLot]:
        try:
            rows = (
                self.db.execute(
                    select(LoadoutLot)
                    .where(LoadoutLot.loadout_id == loadout_id, LoadoutLot.tenant_id == tenant_id)
                    .order_by(LoadoutLot.created_at, LoadoutLot.id)
                )
                .scalars()
                .all()
            )
        except OperationalError as exc:
            raise CatalogUnavailable(str(exc.orig or exc)) from exc
        return [
            ReservedLot(
                product_id=str(row.product_id),
                lot_id=str(row.inventory_lot_id) if row.inventory_lot_id else None,
                lot_number=row.lot_number,
                quantity=Decimal(row.quantity),
            )
            for row in rows
        ]

    def get_product(self, *, tenant_id: str, product_id: str) -> ProductRecord | None:
        row = (
            self.db.execute(select(Product).where(Product.id == product_id, Product.tenant_id == tenant_id))
            .scalars()
            .first()
        )
        if row is None:
            return None
        return ProductRecord(
            id=str(row.id),
            name=row.name,
            sku=row.sku,
            gtin=row.gtin,
            unit_of_measure=row.unit_of_measure,
        )

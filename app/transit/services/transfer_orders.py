from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from app.transit.core.config import settings
from app.transit.core.error_catalog import AppError, ErrorCatalog, IllegalTransition
from app.transit.core.logging import log_json
from app.transit.db.models import TransferOrder, TransferOrderLine
from app.transit.repos.catalog import BlueprintCatalog, BlueprintRecord, LoadoutRecord
from app.transit.repos.inventory import InventoryLedger
from app.transit.repos.transfer_orders import TransferOrderRepository
from app.transit.schemas.transfer_orders import (
    ManualLineCreate,
    ReassignLoadoutRequest,
    TransferOrderCreateRequest,
    TransferOrderPatchRequest,
)
from app.transit.services.assignments import AssignmentLedger, insufficient_availability
from app.transit.services.demand import required_quantity
from app.transit.services.lifecycle import (
    DestinationMode,
    LineKind,
    OrderStatus,
    ensure_assignment_window,
)
from app.transit.services.lot_matcher import AutoAssignReport, LotMatcher

logger = logging.getLogger(__name__)

_PATCHABLE_FIELDS = (
    "priority",
    "notes",
    "transfer_reason",
    "requested_date",
    "expected_arrival_date",
    "carrier",
    "tracking_number",
    "freight_cost",
    "temperature_control_required",
)
_REQUIRED_FIELDS = ("priority", "temperature_control_required")


def _audit_value(value):
    if isinstance(value, (datetime, Decimal)):
        return str(value)
    return value


class TransferOrderService:
    """Order lifecycle outside of status transitions: create, patch, reassign."""

    def __init__(self, db, ledger: InventoryLedger, catalog: BlueprintCatalog):
        self.db = db
        self.ledger = ledger
        self.catalog = catalog
        self.orders = TransferOrderRepository(db)
        self.assignment_ledger = AssignmentLedger(db, ledger)

    def lock(self, order_id: str, tenant_id: str) -> TransferOrder:
        order = self.orders.get_order(order_id, tenant_id, for_update=True)
        if order is None:
            raise AppError(ErrorCatalog.TRANSFER_ORDER_NOT_FOUND, details={"order_id": order_id})
        return order

    def get(self, order_id: str, tenant_id: str) -> TransferOrder:
        order = self.orders.get_order(order_id, tenant_id)
        if order is None:
            raise AppError(ErrorCatalog.TRANSFER_ORDER_NOT_FOUND, details={"order_id": order_id})
        return order

    def get_line(self, order: TransferOrder, line_id: str) -> TransferOrderLine:
        line = self.orders.get_line(str(order.id), line_id)
        if line is None:
            raise AppError(ErrorCatalog.ORDER_LINE_NOT_FOUND, details={"line_id": line_id})
        return line

    def _load_loadout(self, tenant_id: str, loadout_id: str) -> LoadoutRecord:
        loadout = self.catalog.get_loadout(tenant_id=tenant_id, loadout_id=loadout_id)
        if loadout is None or not loadout.is_active:
            raise AppError(ErrorCatalog.LOADOUT_NOT_FOUND, details={"loadout_id": loadout_id})
        return loadout

    def _load_blueprint(self, tenant_id: str, blueprint_id: str) -> BlueprintRecord:
        blueprint = self.catalog.get_blueprint(tenant_id=tenant_id, blueprint_id=blueprint_id)
        if blueprint is None or not blueprint.is_active:
            raise AppError(ErrorCatalog.BLUEPRINT_NOT_FOUND, details={"blueprint_id": blueprint_id})
        return blueprint

    def _resolve_binding(
        self,
        tenant_id: str,
        *,
        destination_mode: str,
        destination_location_id: str,
        loadout_id: str | None,
        blueprint_id: str | None,
    ) -> tuple[LoadoutRecord | None, BlueprintRecord | None]:
        loadout = self._load_loadout(tenant_id, loadout_id) if loadout_id else None
        if destination_mode == DestinationMode.LOADOUT_RESTOCK:
            if loadout is None:
                raise AppError(
                    ErrorCatalog.VALIDATION_ERROR,
                    details={"message": "destination_loadout_id is required for loadout_restock"},
                )
            if loadout.location_id != destination_location_id:
                raise AppError(
                    ErrorCatalog.VALIDATION_ERROR,
                    details={
                        "message": "loadout is not located at the destination location",
                        "loadout_id": loadout.id,
                        "loadout_location_id": loadout.location_id,
                    },
                )
        if loadout is not None:
            if blueprint_id and blueprint_id != loadout.blueprint_id:
                raise AppError(
                    ErrorCatalog.VALIDATION_ERROR,
                    details={
                        "message": "loadout was built from a different blueprint",
                        "loadout_blueprint_id": loadout.blueprint_id,
                        "blueprint_id": blueprint_id,
                    },
                )
            blueprint_id = loadout.blueprint_id
        blueprint = self._load_blueprint(tenant_id, blueprint_id) if blueprint_id else None
        return loadout, blueprint

    def _create_blueprint_lines(
        self,
        order: TransferOrder,
        blueprint: BlueprintRecord,
        overrides: dict[UUID, Decimal],
    ) -> list[TransferOrderLine]:
        blueprint_lines = self.catalog.get_blueprint_lines(tenant_id=str(order.tenant_id), blueprint_id=blueprint.id)
        known = {line.id for line in blueprint_lines}
        unknown = [str(key) for key in overrides if str(key) not in known]
        if unknown:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "quantity override for a line outside the blueprint", "line_ids": unknown},
            )
        overrides_by_id = {str(key): value for key, value in overrides.items()}
        lines = [
            TransferOrderLine(
                tenant_id=order.tenant_id,
                transfer_order_id=order.id,
                line_kind=LineKind.BLUEPRINT,
                blueprint_line_id=blueprint_line.id,
                product_id=blueprint_line.product_id,
                required_quantity=required_quantity(
                    blueprint_line,
                    overrides_by_id.get(blueprint_line.id),
                    allow_override=blueprint.allow_quantity_override,
                ),
                position=blueprint_line.position,
                notes=blueprint_line.usage_notes,
                created_at=datetime.utcnow(),
            )
            for blueprint_line in blueprint_lines
        ]
        self.db.add_all(lines)
        self.db.flush()
        return lines

    def _create_manual_line(
        self,
        order: TransferOrder,
        manual: ManualLineCreate,
        position: int,
        actor_id: str | None,
    ) -> TransferOrderLine:
        lot_id = str(manual.inventory_lot_id)
        lot = self.ledger.get_lot(tenant_id=str(order.tenant_id), lot_id=lot_id, for_update=True)
        if lot is None:
            raise AppError(ErrorCatalog.INVENTORY_LOT_NOT_FOUND, details={"lot_id": lot_id})
        if lot.location_id != str(order.origin_location_id):
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "lot is not stored at the origin location", "lot_id": lot_id},
            )
        if manual.quantity > lot.quantity_available:
            raise insufficient_availability(lot_id, requested=manual.quantity, available=lot.quantity_available)
        line = TransferOrderLine(
            tenant_id=order.tenant_id,
            transfer_order_id=order.id,
            line_kind=LineKind.MANUAL,
            product_id=lot.product_id,
            inventory_lot_id=lot.lot_id,
            required_quantity=manual.quantity,
            position=position,
            notes=manual.notes,
            created_at=datetime.utcnow(),
        )
        self.db.add(line)
        self.db.flush()
        self.assignment_ledger.record(order, line, lot, manual.quantity, source="manual", actor_id=actor_id)
        return line

    def create(
        self,
        payload: TransferOrderCreateRequest,
        *,
        tenant_id: str,
        actor_id: str | None,
    ) -> tuple[TransferOrder, AutoAssignReport | None]:
        loadout, blueprint = self._resolve_binding(
            tenant_id,
            destination_mode=payload.destination_mode,
            destination_location_id=str(payload.destination_location_id),
            loadout_id=str(payload.destination_loadout_id) if payload.destination_loadout_id else None,
            blueprint_id=str(payload.blueprint_id) if payload.blueprint_id else None,
        )
        if blueprint is None and not payload.manual_lines:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "order requires a blueprint or at least one manual line"},
            )

        now = datetime.utcnow()
        order = TransferOrder(
            tenant_id=tenant_id,
            order_number=self.orders.next_order_number(tenant_id, settings.TRANSFER_ORDER_NUMBER_PREFIX),
            origin_location_id=payload.origin_location_id,
            destination_location_id=payload.destination_location_id,
            destination_mode=payload.destination_mode,
            destination_loadout_id=loadout.id if loadout else None,
            blueprint_id=blueprint.id if blueprint else None,
            priority=payload.priority,
            status=OrderStatus.PENDING,
            requested_date=payload.requested_date,
            expected_arrival_date=payload.expected_arrival_date,
            transfer_reason=payload.transfer_reason,
            notes=payload.notes,
            freight_cost=payload.freight_cost,
            temperature_control_required=payload.temperature_control_required,
            created_by_user_id=actor_id,
            updated_by_user_id=actor_id,
            created_at=now,
            updated_at=now,
        )
        self.db.add(order)
        self.db.flush()

        next_position = 0
        if blueprint is not None:
            lines = self._create_blueprint_lines(order, blueprint, payload.quantity_overrides)
            next_position = max((line.position for line in lines), default=-1) + 1
        for offset, manual in enumerate(payload.manual_lines):
            self._create_manual_line(order, manual, next_position + offset, actor_id)

        report = None
        if payload.auto_assign and blueprint is not None:
            report = LotMatcher(self.db, self.ledger, self.catalog).auto_assign(order, actor_id=actor_id)

        log_json(
            logger,
            {
                "event": "transfer_order_created",
                "order_id": str(order.id),
                "order_number": order.order_number,
                "tenant_id": tenant_id,
                "blueprint_id": order.blueprint_id,
                "manual_lines": len(payload.manual_lines),
            },
        )
        return order, report

    def patch(self, order: TransferOrder, payload: TransferOrderPatchRequest, *, actor_id: str | None) -> dict:
        if order.status in OrderStatus.TERMINAL:
            raise IllegalTransition(order.status, {"operation": "patch"})
        changes = payload.model_dump(exclude_unset=True)
        before = {}
        for field_name in _PATCHABLE_FIELDS:
            if field_name not in changes:
                continue
            value = changes[field_name]
            if field_name in _REQUIRED_FIELDS and value is None:
                raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": f"{field_name} cannot be cleared"})
            if isinstance(value, str):
                value = value.strip() or None
            before[field_name] = _audit_value(getattr(order, field_name))
            setattr(order, field_name, value)
        if before:
            order.updated_at = datetime.utcnow()
            order.updated_by_user_id = actor_id
            self.db.flush()
        return before

    def reassign_loadout(
        self,
        order: TransferOrder,
        payload: ReassignLoadoutRequest,
        *,
        actor_id: str | None,
    ) -> int:
        """Bind the order to another loadout or blueprint and rebuild its blueprint demand.

        General delivery orders may switch blueprint without a loadout.
        Returns the number of assignment rows discarded.
        """
        ensure_assignment_window(order, operation="reassign_loadout")
        tenant_id = str(order.tenant_id)
        loadout, blueprint = self._resolve_binding(
            tenant_id,
            destination_mode=order.destination_mode,
            destination_location_id=str(order.destination_location_id),
            loadout_id=str(payload.destination_loadout_id) if payload.destination_loadout_id else None,
            blueprint_id=str(payload.blueprint_id) if payload.blueprint_id else None,
        )
        if blueprint is None:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "reassignment requires a blueprint or a loadout"},
            )

        previous_lines = [
            line for line in self.orders.get_lines(str(order.id)) if line.line_kind == LineKind.BLUEPRINT
        ]
        discarded = self.assignment_ledger.discard_for_lines(order, previous_lines)
        self.orders.delete_lines(str(order.id), line_kind=LineKind.BLUEPRINT)
        self.orders.delete_scan_sessions(str(order.id))

        order.destination_loadout_id = loadout.id if loadout else None
        order.blueprint_id = blueprint.id
        order.updated_at = datetime.utcnow()
        order.updated_by_user_id = actor_id
        self.db.flush()
        self._create_blueprint_lines(order, blueprint, payload.quantity_overrides)

        log_json(
            logger,
            {
                "event": "transfer_order_loadout_reassigned",
                "order_id": str(order.id),
                "loadout_id": loadout.id if loadout else None,
                "blueprint_id": blueprint.id,
                "discarded_assignments": discarded,
            },
        )
        return discarded

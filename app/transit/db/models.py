import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator, CHAR


class GUID(TypeDecorator):
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import UUID

            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return str(value)
        return str(uuid.UUID(value))

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


Quantity = Numeric(12, 2)


class Base(DeclarativeBase):
    pass


# Catalog and ledger tables. The engine reads them through the contracts in
# repos/catalog.py and repos/inventory.py and never edits catalog rows.


class Product(Base):
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    gtin: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    unit_of_measure: Mapped[str] = mapped_column(String(50), default="EA", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class Blueprint(Base):
    __tablename__ = "blueprints"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    serial_number_prefix: Mapped[str | None] = mapped_column(String(50), nullable=True)
    allow_quantity_override: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class BlueprintLine(Base):
    __tablename__ = "blueprint_lines"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    blueprint_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("blueprints.id"), index=True, nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("products.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    minimum_quantity: Mapped[Decimal] = mapped_column(Quantity, default=0, nullable=False)
    default_quantity: Mapped[Decimal | None] = mapped_column(Quantity, nullable=True)
    maximum_quantity: Mapped[Decimal] = mapped_column(Quantity, default=1, nullable=False)
    usage_notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class Loadout(Base):
    __tablename__ = "loadouts"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    blueprint_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("blueprints.id"), nullable=False)
    location_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    serial_suffix: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class LoadoutLot(Base):
    __tablename__ = "loadout_lots"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    loadout_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("loadouts.id"), index=True, nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("products.id"), nullable=False)
    inventory_lot_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class InventoryLot(Base):
    __tablename__ = "inventory_lots"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("products.id"), nullable=False)
    location_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    quantity_on_hand: Mapped[Decimal] = mapped_column(Quantity, default=0, nullable=False)
    quantity_available: Mapped[Decimal] = mapped_column(Quantity, default=0, nullable=False)
    quantity_reserved: Mapped[Decimal] = mapped_column(Quantity, default=0, nullable=False)
    aisle: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rack: Mapped[str | None] = mapped_column(String(50), nullable=True)
    shelf: Mapped[str | None] = mapped_column(String(50), nullable=True)
    bin: Mapped[str | None] = mapped_column(String(50), nullable=True)
    zone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


# Engine-owned tables.


class TransferOrder(Base):
    __tablename__ = "transfer_orders"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    order_number: Mapped[str] = mapped_column(String(100), nullable=False)
    origin_location_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    destination_location_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    destination_mode: Mapped[str] = mapped_column(String(50), default="general_delivery", nullable=False)
    destination_loadout_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    blueprint_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    priority: Mapped[str] = mapped_column(String(20), default="Medium", nullable=False)
    status: Mapped[str] = mapped_column(String(50), default="Pending", nullable=False)
    requested_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    expected_arrival_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    transfer_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    carrier: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    freight_cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    temperature_control_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_by_user_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    updated_by_user_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    approved_by_user_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    picked_by_user_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    packed_by_user_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    shipped_by_user_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    received_by_user_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    completed_by_user_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    cancelled_by_user_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    picked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    packed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (UniqueConstraint("tenant_id", "order_number", name="uq_transfer_order_number"),)


class TransferOrderLine(Base):
    __tablename__ = "transfer_order_lines"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    transfer_order_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("transfer_orders.id"), index=True, nullable=False
    )
    line_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    blueprint_line_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    product_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    inventory_lot_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    required_quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class AssignmentLine(Base):
    __tablename__ = "assignment_lines"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    transfer_order_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    order_line_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("transfer_order_lines.id"), index=True, nullable=False
    )
    inventory_lot_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    location_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    aisle: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rack: Mapped[str | None] = mapped_column(String(50), nullable=True)
    shelf: Mapped[str | None] = mapped_column(String(50), nullable=True)
    bin: Mapped[str | None] = mapped_column(String(50), nullable=True)
    zone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    created_by_user_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class ScanSession(Base):
    __tablename__ = "scan_sessions"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    transfer_order_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    stage: Mapped[str] = mapped_column(String(20), nullable=False)
    confirmed: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    focus_line_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    carrier: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (UniqueConstraint("transfer_order_id", "stage", name="uq_scan_session_stage"),)


class TransferMovement(Base):
    __tablename__ = "transfer_movements"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    transfer_order_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    order_line_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    assignment_line_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    inventory_lot_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    from_location_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    to_location_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    created_by_user_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    status_code: Mapped[int | None] = mapped_column(nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "endpoint", "method", "idempotency_key", name="uq_idempotency"),
    )


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    user_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), index=True, nullable=True)
    trace_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    event_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    result: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


Index("ix_inventory_lots_product_location", InventoryLot.product_id, InventoryLot.location_id)
Index("ix_assignment_lines_order_line", AssignmentLine.transfer_order_id, AssignmentLine.order_line_id)

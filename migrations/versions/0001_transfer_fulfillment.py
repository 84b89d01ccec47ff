"""transfer fulfillment engine

Revision ID: 0001_transfer_fulfillment
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_transfer_fulfillment"
down_revision = None
branch_labels = None
depends_on = None


class GUID(sa.TypeDecorator):
    impl = sa.CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import UUID

            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(sa.CHAR(36))


def _quantity(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 2), **kwargs)


def _bin_columns() -> list[sa.Column]:
    return [sa.Column(name, sa.String(length=50), nullable=True) for name in ("aisle", "rack", "shelf", "bin", "zone")]


def upgrade() -> None:
    op.create_table(
        "products",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("sku", sa.String(length=100), nullable=True, index=True),
        sa.Column("gtin", sa.String(length=50), nullable=True, index=True),
        sa.Column("unit_of_measure", sa.String(length=50), nullable=False, server_default="EA"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "blueprints",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("serial_number_prefix", sa.String(length=50), nullable=True),
        sa.Column("allow_quantity_override", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "blueprint_lines",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("blueprint_id", GUID(), sa.ForeignKey("blueprints.id"), nullable=False, index=True),
        sa.Column("product_id", GUID(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        _quantity("minimum_quantity", nullable=False, server_default="0"),
        _quantity("default_quantity", nullable=True),
        _quantity("maximum_quantity", nullable=False, server_default="1"),
        sa.Column("usage_notes", sa.Text(), nullable=True),
    )
    op.create_table(
        "loadouts",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("blueprint_id", GUID(), sa.ForeignKey("blueprints.id"), nullable=False),
        sa.Column("location_id", GUID(), nullable=False, index=True),
        sa.Column("serial_suffix", sa.String(length=50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "loadout_lots",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("loadout_id", GUID(), sa.ForeignKey("loadouts.id"), nullable=False, index=True),
        sa.Column("product_id", GUID(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("inventory_lot_id", GUID(), nullable=True),
        sa.Column("lot_number", sa.String(length=100), nullable=True),
        _quantity("quantity", nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "inventory_lots",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("product_id", GUID(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("location_id", GUID(), nullable=False),
        sa.Column("lot_number", sa.String(length=100), nullable=True),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        _quantity("quantity_on_hand", nullable=False, server_default="0"),
        _quantity("quantity_available", nullable=False, server_default="0"),
        _quantity("quantity_reserved", nullable=False, server_default="0"),
        *_bin_columns(),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_inventory_lots_product_location", "inventory_lots", ["product_id", "location_id"])

    op.create_table(
        "transfer_orders",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("order_number", sa.String(length=100), nullable=False),
        sa.Column("origin_location_id", GUID(), nullable=False, index=True),
        sa.Column("destination_location_id", GUID(), nullable=False, index=True),
        sa.Column("destination_mode", sa.String(length=50), nullable=False, server_default="general_delivery"),
        sa.Column("destination_loadout_id", GUID(), nullable=True),
        sa.Column("blueprint_id", GUID(), nullable=True),
        sa.Column("priority", sa.String(length=20), nullable=False, server_default="Medium"),
        sa.Column("status", sa.String(length=50), nullable=False, server_default="Pending"),
        sa.Column("requested_date", sa.DateTime(), nullable=True),
        sa.Column("expected_arrival_date", sa.DateTime(), nullable=True),
        sa.Column("transfer_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("carrier", sa.String(length=100), nullable=True),
        sa.Column("tracking_number", sa.String(length=100), nullable=True),
        sa.Column("freight_cost", sa.Numeric(10, 2), nullable=True),
        sa.Column("temperature_control_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        *[
            sa.Column(f"{stage}_by_user_id", GUID(), nullable=True)
            for stage in (
                "created",
                "updated",
                "approved",
                "picked",
                "packed",
                "shipped",
                "received",
                "completed",
                "cancelled",
            )
        ],
        *[
            sa.Column(f"{stage}_at", sa.DateTime(), nullable=True)
            for stage in ("approved", "picked", "packed", "shipped", "received", "completed", "cancelled")
        ],
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("tenant_id", "order_number", name="uq_transfer_order_number"),
    )
    op.create_table(
        "transfer_order_lines",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("transfer_order_id", GUID(), sa.ForeignKey("transfer_orders.id"), nullable=False, index=True),
        sa.Column("line_kind", sa.String(length=20), nullable=False),
        sa.Column("blueprint_line_id", GUID(), nullable=True),
        sa.Column("product_id", GUID(), nullable=False),
        sa.Column("inventory_lot_id", GUID(), nullable=True),
        _quantity("required_quantity", nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "assignment_lines",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("transfer_order_id", GUID(), nullable=False, index=True),
        sa.Column(
            "order_line_id", GUID(), sa.ForeignKey("transfer_order_lines.id"), nullable=False, index=True
        ),
        sa.Column("inventory_lot_id", GUID(), nullable=False, index=True),
        sa.Column("product_id", GUID(), nullable=False),
        sa.Column("lot_number", sa.String(length=100), nullable=True),
        _quantity("quantity", nullable=False),
        sa.Column("location_id", GUID(), nullable=False),
        *_bin_columns(),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("created_by_user_id", GUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_assignment_lines_order_line", "assignment_lines", ["transfer_order_id", "order_line_id"])
    op.create_table(
        "scan_sessions",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("transfer_order_id", GUID(), nullable=False, index=True),
        sa.Column("stage", sa.String(length=20), nullable=False),
        sa.Column("confirmed", sa.JSON(), nullable=False),
        sa.Column("focus_line_id", GUID(), nullable=True),
        sa.Column("carrier", sa.String(length=100), nullable=True),
        sa.Column("tracking_number", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("transfer_order_id", "stage", name="uq_scan_session_stage"),
    )
    op.create_table(
        "transfer_movements",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("transfer_order_id", GUID(), nullable=False, index=True),
        sa.Column("order_line_id", GUID(), nullable=False),
        sa.Column("assignment_line_id", GUID(), nullable=False),
        sa.Column("inventory_lot_id", GUID(), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        _quantity("quantity", nullable=False),
        sa.Column("from_location_id", GUID(), nullable=True),
        sa.Column("to_location_id", GUID(), nullable=True),
        sa.Column("created_by_user_id", GUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "idempotency_records",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("method", sa.String(length=10), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("tenant_id", "endpoint", "method", "idempotency_key", name="uq_idempotency"),
    )
    op.create_table(
        "audit_events",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("user_id", GUID(), nullable=True, index=True),
        sa.Column("trace_id", sa.String(length=100), nullable=True),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("before_payload", sa.JSON(), nullable=True),
        sa.Column("after_payload", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("result", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    for table in (
        "audit_events",
        "idempotency_records",
        "transfer_movements",
        "scan_sessions",
        "assignment_lines",
        "transfer_order_lines",
        "transfer_orders",
        "inventory_lots",
        "loadout_lots",
        "loadouts",
        "blueprint_lines",
        "blueprints",
        "products",
    ):
        op.drop_table(table)

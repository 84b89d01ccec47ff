from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


Priority = Literal["Low", "Medium", "High"]
DestinationMode = Literal["general_delivery", "loadout_restock"]
TransferStatus = Literal["Pending", "Approved", "Picked", "Packed", "Shipped", "Received", "Completed", "Cancelled"]
TransitionTarget = Literal["Approved", "Picked", "Packed", "Shipped", "Received", "Completed", "Cancelled"]


_CREATE_EXAMPLE = {
    "origin_location_id": "4a4f3e0c-4a53-4a8b-8f39-2c1b8d4c9a11",
    "destination_location_id": "b3f0f7c1-1fd4-4a0e-9c55-02d1e3b2a7aa",
    "destination_mode": "loadout_restock",
    "destination_loadout_id": "0b7b59a2-7d25-4c1e-9d3c-9e0f8a3b6c21",
    "priority": "High",
    "transfer_reason": "Restock ambulance kit",
    "auto_assign": True,
}


class ManualLineCreate(BaseModel):
    inventory_lot_id: UUID
    quantity: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    notes: str | None = None


class TransferOrderCreateRequest(BaseModel):
    origin_location_id: UUID
    destination_location_id: UUID
    destination_mode: DestinationMode = "general_delivery"
    destination_loadout_id: UUID | None = None
    blueprint_id: UUID | None = None
    priority: Priority = "Medium"
    requested_date: datetime | None = None
    expected_arrival_date: datetime | None = None
    transfer_reason: str | None = None
    notes: str | None = None
    freight_cost: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    temperature_control_required: bool = False
    quantity_overrides: dict[UUID, Decimal] = Field(default_factory=dict)
    manual_lines: list[ManualLineCreate] = Field(default_factory=list)
    auto_assign: bool = False

    model_config = ConfigDict(json_schema_extra={"example": _CREATE_EXAMPLE})

    @model_validator(mode="after")
    def _check_locations(self):
        if self.origin_location_id == self.destination_location_id:
            raise ValueError("origin_location_id and destination_location_id must differ")
        if self.destination_mode == "loadout_restock" and self.destination_loadout_id is None:
            raise ValueError("destination_loadout_id is required for loadout_restock")
        return self


class TransferOrderPatchRequest(BaseModel):
    priority: Priority | None = None
    notes: str | None = None
    transfer_reason: str | None = None
    requested_date: datetime | None = None
    expected_arrival_date: datetime | None = None
    carrier: str | None = None
    tracking_number: str | None = None
    freight_cost: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    temperature_control_required: bool | None = None

    model_config = ConfigDict(extra="forbid")


class AutoAssignRequest(BaseModel):
    line_id: UUID | None = None


class ManualAssignRequest(BaseModel):
    inventory_lot_id: UUID
    quantity: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


class TransitionRequest(BaseModel):
    target: TransitionTarget
    via_scan: bool = False
    carrier: str | None = None
    tracking_number: str | None = None


class ReassignLoadoutRequest(BaseModel):
    destination_loadout_id: UUID | None = None
    blueprint_id: UUID | None = None
    quantity_overrides: dict[UUID, Decimal] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_target(self):
        if self.destination_loadout_id is None and self.blueprint_id is None:
            raise ValueError("destination_loadout_id or blueprint_id is required")
        return self


class AssignmentResponse(BaseModel):
    id: str
    order_line_id: str
    inventory_lot_id: str
    lot_number: str | None
    quantity: Decimal
    location_id: str
    aisle: str | None
    rack: str | None
    shelf: str | None
    bin: str | None
    zone: str | None
    source: str
    created_by_user_id: str | None
    created_at: datetime


class OrderLineResponse(BaseModel):
    id: str
    line_kind: str
    position: int
    blueprint_line_id: str | None
    product_id: str
    product_name: str | None
    sku: str | None
    gtin: str | None
    inventory_lot_id: str | None
    required_quantity: Decimal
    assigned_quantity: Decimal
    remaining_quantity: Decimal
    progress_ratio: float
    notes: str | None
    assignments: list[AssignmentResponse]


class ProgressResponse(BaseModel):
    required_quantity: Decimal
    assigned_quantity: Decimal
    remaining_quantity: Decimal
    ratio: float


class TransferOrderSummary(BaseModel):
    id: str
    order_number: str
    status: str
    priority: str
    origin_location_id: str
    destination_location_id: str
    destination_mode: str
    destination_loadout_id: str | None
    blueprint_id: str | None
    requested_date: datetime | None
    expected_arrival_date: datetime | None
    transfer_reason: str | None
    notes: str | None
    carrier: str | None
    tracking_number: str | None
    freight_cost: Decimal | None
    temperature_control_required: bool
    created_by_user_id: str | None
    approved_by_user_id: str | None
    picked_by_user_id: str | None
    packed_by_user_id: str | None
    shipped_by_user_id: str | None
    received_by_user_id: str | None
    completed_by_user_id: str | None
    cancelled_by_user_id: str | None
    approved_at: datetime | None
    picked_at: datetime | None
    packed_at: datetime | None
    shipped_at: datetime | None
    received_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    version: int
    created_at: datetime
    updated_at: datetime | None


class TransferOrderResponse(TransferOrderSummary):
    lines: list[OrderLineResponse]
    progress: ProgressResponse


class TransferOrderListResponse(BaseModel):
    rows: list[TransferOrderSummary]
    total: int
    limit: int
    offset: int


class CandidateResponse(BaseModel):
    lot_id: str | None
    lot_number: str | None
    product_id: str
    location_id: str | None
    quantity_available: Decimal
    expiration_date: date | None
    reserved_quantity: Decimal | None
    confirmed_at_source: bool
    aisle: str | None
    rack: str | None
    shelf: str | None
    bin: str | None
    zone: str | None


class CandidateListResponse(BaseModel):
    line_id: str
    remaining_quantity: Decimal
    rows: list[CandidateResponse]


class LineOutcomeResponse(BaseModel):
    line_id: str
    product_id: str
    required_quantity: Decimal
    assigned_quantity: Decimal
    remaining_quantity: Decimal
    outcome: str


class SkippedLineResponse(BaseModel):
    line_id: str
    product_id: str
    source: str
    reason: str


class StaleMatchResponse(BaseModel):
    line_id: str
    product_id: str
    lot_id: str | None
    lot_number: str | None
    declared_quantity: Decimal


class AutoAssignResponse(BaseModel):
    created: list[str]
    lines: list[LineOutcomeResponse]
    skipped: list[SkippedLineResponse]
    stale_matches: list[StaleMatchResponse]
    truncated: bool
    order: TransferOrderResponse


class TransitionResponse(BaseModel):
    from_status: str
    to_status: str
    via_scan: bool
    movements: int
    released: int
    order: TransferOrderResponse

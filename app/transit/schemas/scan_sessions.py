from __future__ import annotations

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


ScanStageName = Literal["picking", "packing", "shipping"]


class ScanRequest(BaseModel):
    token: str = Field(min_length=1, max_length=255)


class ScanSessionPatchRequest(BaseModel):
    focus_line_id: UUID | None = None
    carrier: str | None = None
    tracking_number: str | None = None

    model_config = ConfigDict(extra="forbid")


class ExpectedLineResponse(BaseModel):
    line_id: str
    line_kind: str
    product_id: str
    product_name: str | None
    sku: str | None
    gtin: str | None
    lot_numbers: list[str]
    confirmed: bool


class ScanSessionResponse(BaseModel):
    order_id: str
    stage: str
    started: bool
    expected: list[ExpectedLineResponse]
    confirmed: list[str]
    unconfirmed: list[str]
    focus_line_id: str | None
    carrier: str | None
    tracking_number: str | None
    complete: bool
    ready_to_transition: bool


class ScanResultResponse(BaseModel):
    matched: bool
    line_id: str | None
    message: str
    session: ScanSessionResponse

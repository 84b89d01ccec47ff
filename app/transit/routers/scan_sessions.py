from uuid import UUID

from fastapi import APIRouter, Depends

from app.transit.core.context import RequestContext
from app.transit.core.deps import get_blueprint_catalog, get_inventory_ledger, require_request_context
from app.transit.db.session import get_db
from app.transit.repos.catalog import BlueprintCatalog
from app.transit.repos.inventory import InventoryLedger
from app.transit.schemas.scan_sessions import (
    ExpectedLineResponse,
    ScanRequest,
    ScanResultResponse,
    ScanSessionPatchRequest,
    ScanSessionResponse,
    ScanStageName,
)
from app.transit.services.scan_reconciliation import ScanReconciliation, ScanState
from app.transit.services.transfer_orders import TransferOrderService


router = APIRouter()


def _session_response(state: ScanState) -> ScanSessionResponse:
    confirmed = set(state.confirmed)
    return ScanSessionResponse(
        order_id=state.order_id,
        stage=state.stage,
        started=state.started,
        expected=[
            ExpectedLineResponse(
                line_id=line.line_id,
                line_kind=line.line_kind,
                product_id=line.product_id,
                product_name=line.product_name,
                sku=line.sku,
                gtin=line.gtin,
                lot_numbers=list(line.lot_numbers),
                confirmed=line.line_id in confirmed,
            )
            for line in state.expected
        ],
        confirmed=state.confirmed,
        unconfirmed=state.unconfirmed,
        focus_line_id=state.focus_line_id,
        carrier=state.carrier,
        tracking_number=state.tracking_number,
        complete=state.complete,
        ready_to_transition=state.ready_to_transition,
    )


@router.get("/transit/transfer-orders/{order_id}/scan-sessions/{stage}", response_model=ScanSessionResponse)
def get_scan_session(
    order_id: UUID,
    stage: ScanStageName,
    context: RequestContext = Depends(require_request_context),
    db=Depends(get_db),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    catalog: BlueprintCatalog = Depends(get_blueprint_catalog),
):
    order = TransferOrderService(db, ledger, catalog).get(str(order_id), context.tenant_id)
    return _session_response(ScanReconciliation(db, catalog).get(order, stage))


@router.post("/transit/transfer-orders/{order_id}/scan-sessions/{stage}", response_model=ScanSessionResponse)
def open_scan_session(
    order_id: UUID,
    stage: ScanStageName,
    context: RequestContext = Depends(require_request_context),
    db=Depends(get_db),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    catalog: BlueprintCatalog = Depends(get_blueprint_catalog),
):
    order = TransferOrderService(db, ledger, catalog).lock(str(order_id), context.tenant_id)
    state = ScanReconciliation(db, catalog).open(order, stage)
    db.commit()
    return _session_response(state)


@router.post(
    "/transit/transfer-orders/{order_id}/scan-sessions/{stage}/scans",
    response_model=ScanResultResponse,
)
def scan_token(
    order_id: UUID,
    stage: ScanStageName,
    payload: ScanRequest,
    context: RequestContext = Depends(require_request_context),
    db=Depends(get_db),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    catalog: BlueprintCatalog = Depends(get_blueprint_catalog),
):
    order = TransferOrderService(db, ledger, catalog).lock(str(order_id), context.tenant_id)
    result = ScanReconciliation(db, catalog).scan(order, stage, payload.token)
    db.commit()
    return ScanResultResponse(
        matched=result.matched,
        line_id=result.line_id,
        message=result.message,
        session=_session_response(result.state),
    )


@router.patch("/transit/transfer-orders/{order_id}/scan-sessions/{stage}", response_model=ScanSessionResponse)
def update_scan_session(
    order_id: UUID,
    stage: ScanStageName,
    payload: ScanSessionPatchRequest,
    context: RequestContext = Depends(require_request_context),
    db=Depends(get_db),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    catalog: BlueprintCatalog = Depends(get_blueprint_catalog),
):
    order = TransferOrderService(db, ledger, catalog).lock(str(order_id), context.tenant_id)
    state = ScanReconciliation(db, catalog).update(
        order,
        stage,
        focus_line_id=str(payload.focus_line_id) if payload.focus_line_id else None,
        carrier=payload.carrier,
        tracking_number=payload.tracking_number,
    )
    db.commit()
    return _session_response(state)

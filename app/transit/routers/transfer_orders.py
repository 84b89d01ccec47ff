from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from app.transit.core.config import settings
from app.transit.core.context import RequestContext
from app.transit.core.deps import get_blueprint_catalog, get_inventory_ledger, require_request_context
from app.transit.core.error_catalog import ErrorCatalog
from app.transit.db.models import AssignmentLine, TransferOrder
from app.transit.db.session import get_db
from app.transit.repos.assignments import AssignmentRepository, to_quantity
from app.transit.repos.catalog import BlueprintCatalog
from app.transit.repos.inventory import InventoryLedger
from app.transit.repos.transfer_orders import TransferOrderQueryFilters, TransferOrderRepository
from app.transit.schemas.transfer_orders import (
    AssignmentResponse,
    AutoAssignRequest,
    AutoAssignResponse,
    CandidateListResponse,
    CandidateResponse,
    LineOutcomeResponse,
    ManualAssignRequest,
    OrderLineResponse,
    Priority,
    ProgressResponse,
    ReassignLoadoutRequest,
    SkippedLineResponse,
    StaleMatchResponse,
    TransferOrderCreateRequest,
    TransferOrderListResponse,
    TransferOrderPatchRequest,
    TransferOrderResponse,
    TransferOrderSummary,
    TransferStatus,
    TransitionRequest,
    TransitionResponse,
)
from app.transit.services.audit import AuditService, transfer_order_event
from app.transit.services.demand import DemandResolver
from app.transit.services.idempotency import IdempotencyService, extract_idempotency_key
from app.transit.services.lot_matcher import AutoAssignReport, LotMatcher
from app.transit.services.order_state import OrderStateMachine
from app.transit.services.transfer_orders import TransferOrderService


router = APIRouter()


def _id(value) -> str | None:
    return str(value) if value is not None else None


def _summary(order: TransferOrder) -> TransferOrderSummary:
    return TransferOrderSummary(
        id=str(order.id),
        order_number=order.order_number,
        status=order.status,
        priority=order.priority,
        origin_location_id=str(order.origin_location_id),
        destination_location_id=str(order.destination_location_id),
        destination_mode=order.destination_mode,
        destination_loadout_id=_id(order.destination_loadout_id),
        blueprint_id=_id(order.blueprint_id),
        requested_date=order.requested_date,
        expected_arrival_date=order.expected_arrival_date,
        transfer_reason=order.transfer_reason,
        notes=order.notes,
        carrier=order.carrier,
        tracking_number=order.tracking_number,
        freight_cost=order.freight_cost,
        temperature_control_required=bool(order.temperature_control_required),
        created_by_user_id=_id(order.created_by_user_id),
        approved_by_user_id=_id(order.approved_by_user_id),
        picked_by_user_id=_id(order.picked_by_user_id),
        packed_by_user_id=_id(order.packed_by_user_id),
        shipped_by_user_id=_id(order.shipped_by_user_id),
        received_by_user_id=_id(order.received_by_user_id),
        completed_by_user_id=_id(order.completed_by_user_id),
        cancelled_by_user_id=_id(order.cancelled_by_user_id),
        approved_at=order.approved_at,
        picked_at=order.picked_at,
        packed_at=order.packed_at,
        shipped_at=order.shipped_at,
        received_at=order.received_at,
        completed_at=order.completed_at,
        cancelled_at=order.cancelled_at,
        version=order.version,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def _assignment_response(assignment: AssignmentLine) -> AssignmentResponse:
    return AssignmentResponse(
        id=str(assignment.id),
        order_line_id=str(assignment.order_line_id),
        inventory_lot_id=str(assignment.inventory_lot_id),
        lot_number=assignment.lot_number,
        quantity=to_quantity(assignment.quantity),
        location_id=str(assignment.location_id),
        aisle=assignment.aisle,
        rack=assignment.rack,
        shelf=assignment.shelf,
        bin=assignment.bin,
        zone=assignment.zone,
        source=assignment.source,
        created_by_user_id=_id(assignment.created_by_user_id),
        created_at=assignment.created_at,
    )


def _order_response(db, catalog: BlueprintCatalog, order: TransferOrder) -> TransferOrderResponse:
    lines = TransferOrderRepository(db).get_lines(str(order.id))
    progress = DemandResolver(db).progress(order, lines)
    assignments: dict[str, list[AssignmentLine]] = {}
    for assignment in AssignmentRepository(db).list_for_order(str(order.id)):
        assignments.setdefault(str(assignment.order_line_id), []).append(assignment)

    products = {}
    line_rows = []
    for line in lines:
        product_id = str(line.product_id)
        if product_id not in products:
            products[product_id] = catalog.get_product(tenant_id=str(order.tenant_id), product_id=product_id)
        product = products[product_id]
        line_progress = progress.for_line(str(line.id))
        line_rows.append(
            OrderLineResponse(
                id=str(line.id),
                line_kind=line.line_kind,
                position=line.position,
                blueprint_line_id=_id(line.blueprint_line_id),
                product_id=product_id,
                product_name=product.name if product else None,
                sku=product.sku if product else None,
                gtin=product.gtin if product else None,
                inventory_lot_id=_id(line.inventory_lot_id),
                required_quantity=line_progress.required,
                assigned_quantity=line_progress.assigned,
                remaining_quantity=line_progress.remaining,
                progress_ratio=line_progress.ratio,
                notes=line.notes,
                assignments=[_assignment_response(item) for item in assignments.get(str(line.id), [])],
            )
        )
    return TransferOrderResponse(
        **_summary(order).model_dump(),
        lines=line_rows,
        progress=ProgressResponse(
            required_quantity=progress.required_total,
            assigned_quantity=progress.assigned_total,
            remaining_quantity=progress.remaining_total,
            ratio=progress.ratio,
        ),
    )


def _report_payload(report: AutoAssignReport) -> dict:
    return {
        "created": report.created,
        "lines": [
            LineOutcomeResponse(
                line_id=item.line_id,
                product_id=item.product_id,
                required_quantity=item.required,
                assigned_quantity=item.assigned,
                remaining_quantity=item.remaining,
                outcome=item.outcome,
            )
            for item in report.lines
        ],
        "skipped": [SkippedLineResponse(**item.__dict__) for item in report.skipped],
        "stale_matches": [StaleMatchResponse(**item.__dict__) for item in report.stale_matches],
        "truncated": report.truncated,
    }


def _audit(db, context: RequestContext, *, action: str, order: TransferOrder, after: dict, **kwargs) -> None:
    AuditService(db).record_event(
        transfer_order_event(context, action=action, order_id=str(order.id), after=after, **kwargs)
    )


@router.get("/transit/transfer-orders", response_model=TransferOrderListResponse)
def list_transfer_orders(
    status: TransferStatus | None = None,
    origin_location_id: UUID | None = None,
    destination_location_id: UUID | None = None,
    priority: Priority | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    context: RequestContext = Depends(require_request_context),
    db=Depends(get_db),
):
    limit = min(limit, settings.TRANSFER_LIST_MAX_LIMIT)
    filters = TransferOrderQueryFilters(
        tenant_id=context.tenant_id,
        status=status,
        origin_location_id=_id(origin_location_id),
        destination_location_id=_id(destination_location_id),
        priority=priority,
        created_from=created_from,
        created_to=created_to,
    )
    rows, total = TransferOrderRepository(db).list_orders(filters, limit=limit, offset=offset)
    return TransferOrderListResponse(rows=[_summary(row) for row in rows], total=total, limit=limit, offset=offset)


@router.post("/transit/transfer-orders", response_model=TransferOrderResponse, status_code=201)
def create_transfer_order(
    request: Request,
    payload: TransferOrderCreateRequest,
    context: RequestContext = Depends(require_request_context),
    db=Depends(get_db),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    catalog: BlueprintCatalog = Depends(get_blueprint_catalog),
):
    idempotency_key = extract_idempotency_key(request.headers, required=True)
    request_hash = IdempotencyService.fingerprint(payload.model_dump(mode="json"))
    idempotency, replay = IdempotencyService(db).start(
        tenant_id=context.tenant_id,
        endpoint=str(request.url.path),
        method=request.method,
        idempotency_key=idempotency_key,
        request_hash=request_hash,
    )
    if replay:
        return JSONResponse(
            status_code=replay.status_code,
            content=replay.response_body,
            headers={"X-Idempotency-Result": ErrorCatalog.IDEMPOTENCY_REPLAY.code},
        )
    request.state.idempotency = idempotency

    order, report = TransferOrderService(db, ledger, catalog).create(
        payload, tenant_id=context.tenant_id, actor_id=context.user_id
    )
    db.commit()

    response = _order_response(db, catalog, order)
    idempotency.record_success(status_code=201, response_body=response.model_dump(mode="json"))
    _audit(
        db,
        context,
        action="transfer_order.create",
        order=order,
        after=response.model_dump(mode="json"),
        metadata={"auto_assigned": len(report.created) if report else 0},
    )
    return response


@router.get("/transit/transfer-orders/{order_id}", response_model=TransferOrderResponse)
def get_transfer_order(
    order_id: UUID,
    context: RequestContext = Depends(require_request_context),
    db=Depends(get_db),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    catalog: BlueprintCatalog = Depends(get_blueprint_catalog),
):
    order = TransferOrderService(db, ledger, catalog).get(str(order_id), context.tenant_id)
    return _order_response(db, catalog, order)


@router.patch("/transit/transfer-orders/{order_id}", response_model=TransferOrderResponse)
def patch_transfer_order(
    order_id: UUID,
    payload: TransferOrderPatchRequest,
    context: RequestContext = Depends(require_request_context),
    db=Depends(get_db),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    catalog: BlueprintCatalog = Depends(get_blueprint_catalog),
):
    service = TransferOrderService(db, ledger, catalog)
    order = service.lock(str(order_id), context.tenant_id)
    before = service.patch(order, payload, actor_id=context.user_id)
    db.commit()

    response = _order_response(db, catalog, order)
    if before:
        _audit(
            db,
            context,
            action="transfer_order.update",
            order=order,
            before=before,
            after=payload.model_dump(mode="json", exclude_unset=True),
        )
    return response


@router.post("/transit/transfer-orders/{order_id}/auto-assign", response_model=AutoAssignResponse)
def auto_assign_transfer_order(
    order_id: UUID,
    payload: AutoAssignRequest | None = None,
    context: RequestContext = Depends(require_request_context),
    db=Depends(get_db),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    catalog: BlueprintCatalog = Depends(get_blueprint_catalog),
):
    order = TransferOrderService(db, ledger, catalog).lock(str(order_id), context.tenant_id)
    line_id = _id(payload.line_id) if payload else None
    report = LotMatcher(db, ledger, catalog).auto_assign(order, actor_id=context.user_id, line_id=line_id)
    db.commit()

    response = AutoAssignResponse(**_report_payload(report), order=_order_response(db, catalog, order))
    if report.created:
        _audit(
            db,
            context,
            action="transfer_order.auto_assign",
            order=order,
            after={"created": report.created},
            metadata={
                "line_id": line_id,
                "skipped": len(report.skipped),
                "stale_matches": len(report.stale_matches),
                "truncated": report.truncated,
            },
        )
    return response


@router.get(
    "/transit/transfer-orders/{order_id}/lines/{line_id}/candidates",
    response_model=CandidateListResponse,
)
def list_line_candidates(
    order_id: UUID,
    line_id: UUID,
    context: RequestContext = Depends(require_request_context),
    db=Depends(get_db),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    catalog: BlueprintCatalog = Depends(get_blueprint_catalog),
):
    service = TransferOrderService(db, ledger, catalog)
    order = service.get(str(order_id), context.tenant_id)
    line = service.get_line(order, str(line_id))
    candidates = LotMatcher(db, ledger, catalog).candidates(order, line)
    return CandidateListResponse(
        line_id=str(line.id),
        remaining_quantity=DemandResolver(db).remaining(line),
        rows=[CandidateResponse(**candidate.__dict__) for candidate in candidates],
    )


@router.post(
    "/transit/transfer-orders/{order_id}/lines/{line_id}/assignments",
    response_model=TransferOrderResponse,
    status_code=201,
)
def assign_lot(
    order_id: UUID,
    line_id: UUID,
    payload: ManualAssignRequest,
    context: RequestContext = Depends(require_request_context),
    db=Depends(get_db),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    catalog: BlueprintCatalog = Depends(get_blueprint_catalog),
):
    service = TransferOrderService(db, ledger, catalog)
    order = service.lock(str(order_id), context.tenant_id)
    line = service.get_line(order, str(line_id))
    assignment = LotMatcher(db, ledger, catalog).assign(
        order,
        line,
        lot_id=str(payload.inventory_lot_id),
        quantity=payload.quantity,
        actor_id=context.user_id,
    )
    db.commit()

    response = _order_response(db, catalog, order)
    _audit(
        db,
        context,
        action="transfer_order.assign",
        order=order,
        after=_assignment_response(assignment).model_dump(mode="json"),
    )
    return response


@router.delete(
    "/transit/transfer-orders/{order_id}/assignments/{assignment_id}",
    response_model=TransferOrderResponse,
)
def unassign_lot(
    order_id: UUID,
    assignment_id: UUID,
    context: RequestContext = Depends(require_request_context),
    db=Depends(get_db),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    catalog: BlueprintCatalog = Depends(get_blueprint_catalog),
):
    service = TransferOrderService(db, ledger, catalog)
    order = service.lock(str(order_id), context.tenant_id)
    removed = service.assignment_ledger.unassign(order, str(assignment_id))
    before = _assignment_response(removed).model_dump(mode="json")
    order.updated_at = datetime.utcnow()
    order.updated_by_user_id = context.user_id
    db.commit()

    response = _order_response(db, catalog, order)
    _audit(db, context, action="transfer_order.unassign", order=order, before=before, after=None)
    return response


@router.post("/transit/transfer-orders/{order_id}/actions", response_model=TransitionResponse)
def transition_transfer_order(
    order_id: UUID,
    payload: TransitionRequest,
    context: RequestContext = Depends(require_request_context),
    db=Depends(get_db),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    catalog: BlueprintCatalog = Depends(get_blueprint_catalog),
):
    order = TransferOrderService(db, ledger, catalog).lock(str(order_id), context.tenant_id)
    result = OrderStateMachine(db, ledger, catalog).transition(
        order,
        payload.target,
        via_scan=payload.via_scan,
        actor_id=context.user_id,
        carrier=payload.carrier,
        tracking_number=payload.tracking_number,
    )
    db.commit()

    response = TransitionResponse(
        from_status=result.from_status,
        to_status=result.to_status,
        via_scan=result.via_scan,
        movements=result.movements,
        released=result.released,
        order=_order_response(db, catalog, order),
    )
    _audit(
        db,
        context,
        action=f"transfer_order.{result.to_status.lower()}",
        order=order,
        before={"status": result.from_status},
        after={"status": result.to_status},
        metadata={"via_scan": result.via_scan, "movements": result.movements},
    )
    return response


@router.post("/transit/transfer-orders/{order_id}/reassign-loadout", response_model=TransferOrderResponse)
def reassign_loadout(
    order_id: UUID,
    payload: ReassignLoadoutRequest,
    context: RequestContext = Depends(require_request_context),
    db=Depends(get_db),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    catalog: BlueprintCatalog = Depends(get_blueprint_catalog),
):
    service = TransferOrderService(db, ledger, catalog)
    order = service.lock(str(order_id), context.tenant_id)
    before = {"destination_loadout_id": _id(order.destination_loadout_id), "blueprint_id": _id(order.blueprint_id)}
    discarded = service.reassign_loadout(order, payload, actor_id=context.user_id)
    db.commit()

    response = _order_response(db, catalog, order)
    _audit(
        db,
        context,
        action="transfer_order.reassign_loadout",
        order=order,
        before=before,
        after={"destination_loadout_id": response.destination_loadout_id, "blueprint_id": response.blueprint_id},
        metadata={"discarded_assignments": discarded},
    )
    return response

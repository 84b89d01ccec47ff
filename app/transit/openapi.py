from copy import deepcopy

from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi

from app.transit.schemas.errors import (
    ApiErrorResponse,
    ApiValidationErrorResponse,
    IllegalTransitionResponse,
)

ERROR_REF = "#/components/schemas/ApiErrorResponse"
VALIDATION_ERROR_REF = "#/components/schemas/ApiValidationErrorResponse"
CONFLICT_ERROR_REF = "#/components/schemas/IllegalTransitionResponse"

TAG_METADATA = [
    {
        "name": "transfer-orders",
        "description": "Transfer order lifecycle: creation, demand, lot assignment and status transitions.",
    },
    {
        "name": "scan-sessions",
        "description": "Resumable per-stage barcode confirmation for picking, packing and shipping.",
    },
    {"name": "ops", "description": "Operational endpoints."},
]

_OPERATION_SUMMARIES: dict[tuple[str, str], str] = {
    ("/transit/transfer-orders", "get"): "List transfer orders",
    ("/transit/transfer-orders", "post"): "Create transfer order",
    ("/transit/transfer-orders/{order_id}", "get"): "Get transfer order",
    ("/transit/transfer-orders/{order_id}", "patch"): "Update transfer order fields",
    ("/transit/transfer-orders/{order_id}/auto-assign", "post"): "Auto-assign lots to blueprint lines",
    ("/transit/transfer-orders/{order_id}/lines/{line_id}/candidates", "get"): "Rank candidate lots for a line",
    ("/transit/transfer-orders/{order_id}/lines/{line_id}/assignments", "post"): "Assign a lot to a line",
    ("/transit/transfer-orders/{order_id}/assignments/{assignment_id}", "delete"): "Remove an assignment",
    ("/transit/transfer-orders/{order_id}/actions", "post"): "Transition order status",
    ("/transit/transfer-orders/{order_id}/reassign-loadout", "post"): "Reassign destination loadout",
}


def _operation_id(method: str, path: str) -> str:
    normalized = path.strip("/").replace("/", "_").replace("-", "_").replace("{", "").replace("}", "")
    return f"{method}_{normalized}"


def _error_content(ref: str, example: dict) -> dict:
    return {"application/json": {"schema": {"$ref": ref}, "example": example}}


def _apply_error_responses(path: str, method: str, operation: dict) -> None:
    if not path.startswith("/transit/transfer-orders"):
        return
    responses = operation.setdefault("responses", {})
    responses["422"] = {
        "description": "Validation error",
        "content": _error_content(
            VALIDATION_ERROR_REF,
            {"code": "VALIDATION_ERROR", "message": "Validation error", "details": {"errors": []}, "trace_id": "trace-123"},
        ),
    }
    if "{order_id}" in path:
        responses["404"] = {
            "description": "Transfer order, line, assignment or lot not found",
            "content": _error_content(
                ERROR_REF,
                {
                    "code": "TRANSFER_ORDER_NOT_FOUND",
                    "message": "Transfer order not found",
                    "details": None,
                    "trace_id": "trace-123",
                },
            ),
        }
    if method in {"post", "patch", "delete"}:
        responses["409"] = {
            "description": "Invariant violation, illegal transition or concurrent update",
            "content": _error_content(
                CONFLICT_ERROR_REF,
                {
                    "code": "ILLEGAL_TRANSITION",
                    "message": "Operation not permitted in the current order status",
                    "details": {"current_status": "Completed", "target": "Cancelled"},
                    "trace_id": "trace-123",
                },
            ),
        }


def harden_openapi_schema(app: FastAPI):
    if app.openapi_schema:
        return app.openapi_schema

    schema = get_openapi(title=app.title, version="1.0.0", routes=app.routes)
    schema["tags"] = TAG_METADATA
    components = schema.setdefault("components", {}).setdefault("schemas", {})
    for model in (ApiErrorResponse, ApiValidationErrorResponse, IllegalTransitionResponse):
        model_schema = deepcopy(model.model_json_schema(ref_template="#/components/schemas/{model}"))
        components.update(model_schema.pop("$defs", {}))
        components[model.__name__] = model_schema

    for path, path_item in schema.get("paths", {}).items():
        for method, operation in path_item.items():
            if method not in {"get", "post", "put", "patch", "delete"}:
                continue
            operation["operationId"] = _operation_id(method, path)
            summary = _OPERATION_SUMMARIES.get((path, method))
            if summary:
                operation["summary"] = summary
            _apply_error_responses(path, method, operation)

    app.openapi_schema = schema
    return app.openapi_schema

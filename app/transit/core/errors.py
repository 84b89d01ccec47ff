from decimal import Decimal
from uuid import UUID

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.transit.core.error_catalog import AppError, ErrorCatalog, ErrorDefinition
from app.transit.core.metrics import metrics

_LOCK_TIMEOUT_MARKERS = (
    "lock timeout",
    "deadlock detected",
    "database is locked",
    "could not obtain lock",
    "could not serialize access",
)

_HTTP_CODES = {401: "UNAUTHORIZED", 404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}


def _is_lock_timeout(exc: Exception) -> bool:
    if not isinstance(exc, OperationalError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in _LOCK_TIMEOUT_MARKERS)


def _json_safe(value):
    if isinstance(value, (Exception, UUID)):
        return str(value)
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return value


def _validation_error_details(exc: RequestValidationError) -> dict:
    errors = []
    for error in exc.errors():
        loc = list(error.get("loc", []))
        errors.append(
            {
                "field": ".".join(str(item) for item in loc if item not in {"body", "query", "path", "header"}) or None,
                "message": error.get("msg", "Invalid value"),
                "type": error.get("type", "validation_error"),
                "loc": loc,
                "input": _json_safe(error.get("input")),
            }
        )
    return {"errors": errors}


def error_response(code: str, message: str, details: object, trace_id: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"code": code, "message": message, "details": details, "trace_id": trace_id},
    )


def _fail(
    request: Request,
    exc: Exception,
    *,
    code: str,
    message: str,
    status_code: int,
    details: object = None,
) -> JSONResponse:
    """Render the error envelope, tag the request log and settle a pending idempotency record."""
    request.state.error_code = code
    request.state.error_class = exc.__class__.__name__
    body = {
        "code": code,
        "message": message,
        "details": _json_safe(details),
        "trace_id": getattr(request.state, "trace_id", ""),
    }
    idempotency = getattr(request.state, "idempotency", None)
    if idempotency is not None:
        idempotency.record_failure(status_code=status_code, response_body=body)
    return JSONResponse(status_code=status_code, content=body)


def _fail_with(request: Request, exc: Exception, definition: ErrorDefinition, details: object = None) -> JSONResponse:
    return _fail(
        request,
        exc,
        code=definition.code,
        message=definition.message,
        status_code=definition.status_code,
        details=details,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return _fail_with(request, exc, exc.error, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _fail_with(request, exc, ErrorCatalog.VALIDATION_ERROR, _validation_error_details(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        response = _fail(
            request,
            exc,
            code=_HTTP_CODES.get(exc.status_code, "HTTP_ERROR"),
            message=str(exc.detail),
            status_code=exc.status_code,
        )
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(StaleDataError)
    async def stale_data_handler(request: Request, exc: StaleDataError):
        metrics.increment_lock_wait_timeout()
        return _fail_with(request, exc, ErrorCatalog.CONCURRENT_UPDATE, {"type": exc.__class__.__name__})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        if _is_lock_timeout(exc):
            metrics.increment_lock_wait_timeout()
            return _fail_with(request, exc, ErrorCatalog.LOCK_TIMEOUT, {"type": exc.__class__.__name__})
        return _fail_with(request, exc, ErrorCatalog.INTERNAL_ERROR, {"type": exc.__class__.__name__})

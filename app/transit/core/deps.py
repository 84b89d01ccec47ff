from fastapi import Depends, Request
from jose import JWTError
from pydantic import ValidationError

from app.transit.core.context import RequestContext, build_request_context, get_request_context
from app.transit.core.error_catalog import AppError, ErrorCatalog
from app.transit.core.security import TokenData, decode_token, oauth2_scheme
from app.transit.db.session import get_db
from app.transit.repos.catalog import SqlBlueprintCatalog
from app.transit.repos.inventory import SqlInventoryLedger


def get_current_token_data(token: str = Depends(oauth2_scheme)) -> TokenData:
    try:
        payload = decode_token(token)
        return TokenData(**payload)
    except (JWTError, ValidationError, TypeError) as exc:
        raise AppError(ErrorCatalog.INVALID_TOKEN) from exc


def require_request_context(
    request: Request,
    token_data: TokenData = Depends(get_current_token_data),
) -> RequestContext:
    if not token_data.tenant_id:
        raise AppError(ErrorCatalog.TENANT_SCOPE_REQUIRED)
    context = build_request_context(
        user_id=token_data.sub,
        tenant_id=token_data.tenant_id,
        username=token_data.username,
        trace_id=getattr(request.state, "trace_id", ""),
    )
    request.state.context = context
    return context


def get_inventory_ledger(db=Depends(get_db)):
    return SqlInventoryLedger(db)


def get_blueprint_catalog(db=Depends(get_db)):
    return SqlBlueprintCatalog(db)


__all__ = [
    "get_current_token_data",
    "require_request_context",
    "get_request_context",
    "get_inventory_ledger",
    "get_blueprint_catalog",
]

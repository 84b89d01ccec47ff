from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.transit.core.context import build_request_context
from app.transit.core.security import decode_token


class ActorContextMiddleware(BaseHTTPMiddleware):
    """Attach tenant and acting user from the bearer token, when one decodes.

    Invalid tokens are left for `get_current_token_data` to reject so the
    request log still carries the trace id.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.tenant_id = None
        request.state.user_id = None
        request.state.username = None

        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.lower().startswith("bearer "):
            token = auth_header.split(" ", 1)[1]
            try:
                payload = decode_token(token)
            except JWTError:
                payload = {}
            request.state.tenant_id = payload.get("tenant_id")
            request.state.user_id = payload.get("sub")
            request.state.username = payload.get("username")

        request.state.context = build_request_context(
            user_id=request.state.user_id,
            tenant_id=request.state.tenant_id,
            username=request.state.username,
            trace_id=getattr(request.state, "trace_id", ""),
        )

        return await call_next(request)

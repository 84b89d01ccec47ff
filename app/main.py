from fastapi import FastAPI

from app.transit.api import api_router
from app.transit.core.config import settings
from app.transit.core.errors import setup_exception_handlers
from app.transit.core.logging import configure_logging
from app.transit.middleware.actor import ActorContextMiddleware
from app.transit.middleware.observability import ObservabilityMiddleware
from app.transit.middleware.trace import TraceIdMiddleware
from app.transit.openapi import harden_openapi_schema


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=settings.APP_NAME)
    app.add_middleware(ActorContextMiddleware)
    app.add_middleware(TraceIdMiddleware)
    app.add_middleware(ObservabilityMiddleware)
    setup_exception_handlers(app)
    app.include_router(api_router)
    app.openapi = lambda: harden_openapi_schema(app)
    return app


app = create_app()

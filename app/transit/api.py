from fastapi import APIRouter

from app.transit.core.config import settings
from app.transit.routers.health import router as health_router
from app.transit.routers.metrics import router as metrics_router
from app.transit.routers.scan_sessions import router as scan_sessions_router
from app.transit.routers.transfer_orders import router as transfer_orders_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(transfer_orders_router, tags=["transfer-orders"])
api_router.include_router(scan_sessions_router, tags=["scan-sessions"])
if settings.METRICS_ENABLED:
    api_router.include_router(metrics_router, tags=["ops"])

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from app.transit.core.context import RequestContext
from app.transit.db.models import AuditEvent
from app.transit.repos.audit import AuditRepository

logger = logging.getLogger(__name__)


@dataclass
class AuditEventPayload:
    tenant_id: str
    user_id: str | None
    trace_id: str | None
    actor: str
    action: str
    entity_type: str
    entity_id: str | None
    before: dict | None
    after: dict | None
    metadata: dict | None
    result: str = "success"


def transfer_order_event(
    context: RequestContext,
    *,
    action: str,
    order_id: str,
    before: dict | None = None,
    after: dict | None = None,
    metadata: dict | None = None,
) -> AuditEventPayload:
    return AuditEventPayload(
        tenant_id=context.tenant_id,
        user_id=context.user_id,
        trace_id=context.trace_id or None,
        actor=context.username or context.user_id or "unknown",
        action=action,
        entity_type="transfer_order",
        entity_id=order_id,
        before=before,
        after=after,
        metadata=metadata,
    )


class AuditService:
    """Best-effort audit logging.

    Runs after the business transaction has committed; a failed write is
    logged and rolled back without affecting the response.
    """

    def __init__(self, db):
        self.repo = AuditRepository(db)

    def record_event(self, payload: AuditEventPayload) -> None:
        try:
            self.repo.create(
                AuditEvent(
                    tenant_id=payload.tenant_id,
                    user_id=payload.user_id,
                    trace_id=payload.trace_id,
                    actor=payload.actor,
                    action=payload.action,
                    entity_type=payload.entity_type,
                    entity_id=payload.entity_id,
                    before_payload=payload.before,
                    after_payload=payload.after,
                    event_metadata=payload.metadata,
                    result=payload.result,
                    created_at=datetime.utcnow(),
                )
            )
        except SQLAlchemyError:
            self.repo.db.rollback()
            logger.exception(
                "Failed to write audit event",
                extra={
                    "action": payload.action,
                    "trace_id": payload.trace_id,
                    "tenant_id": payload.tenant_id,
                    "entity_id": payload.entity_id,
                },
            )

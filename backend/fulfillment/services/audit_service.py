# Overview: Append-only business audit trail.

from __future__ import annotations

from typing import Any

from ..extensions import db
from ..models import AuditEvent
from fulfillment.time_utils import utcnow


def record_audit(
    *,
    entity_type: str,
    entity_id: int,
    action: str,
    actor_user_id: int | None,
    details: dict[str, Any] | None = None,
) -> AuditEvent:
    """
    Add an audit row to the current transaction.

    Does not commit: the audit row lands together with the change it
    describes, or not at all.
    """
    event = AuditEvent(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_user_id=actor_user_id,
        details=details or {},
        occurred_at=utcnow(),
    )
    db.session.add(event)
    return event


def list_audit_events(entity_type: str, entity_id: int) -> list[AuditEvent]:
    return (
        db.session.query(AuditEvent)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(AuditEvent.occurred_at.asc(), AuditEvent.id.asc())
        .all()
    )

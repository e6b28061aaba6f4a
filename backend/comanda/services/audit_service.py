# Overview: Service-layer operations for audit; append-only record of who changed what, when and from where.

from __future__ import annotations

import json
from dataclasses import dataclass

from ..extensions import db
from ..models import AuditEvent
from comanda.time_utils import utcnow


@dataclass(frozen=True)
class AuditContext:
    """Actor metadata forwarded by the HTTP layer with every financial mutation."""
    user_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None


def log(
    tenant_id: int,
    action: str,
    entity_type: str,
    entity_id,
    context: AuditContext | None = None,
    details: dict | None = None,
) -> AuditEvent:
    """
    Append an audit row inside the caller's transaction.

    Never commits: if the audited change rolls back, so does its audit row.
    """
    context = context or AuditContext()
    event = AuditEvent(
        tenant_id=tenant_id,
        user_id=context.user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        ip_address=context.ip_address,
        user_agent=(context.user_agent or "")[:512] or None,
        payload=json.dumps(details, default=str) if details else None,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    return event


def get_events(tenant_id: int, *, entity_type: str | None = None, entity_id=None, limit: int = 100) -> list[AuditEvent]:
    query = db.session.query(AuditEvent).filter(AuditEvent.tenant_id == tenant_id)
    if entity_type:
        query = query.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditEvent.entity_id == str(entity_id))
    return query.order_by(AuditEvent.id.desc()).limit(limit).all()

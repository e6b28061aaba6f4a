from __future__ import annotations

import json

from ..extensions import db
from comanda.time_utils import to_utc_z, utcnow


class AuditEvent(db.Model):
    """
    Append-only audit trail for financial corrections and sensitive actions.

    WHY: Voids, transfers, discounts and shift closes must answer who, when,
    why and from where. Rows are written in the same transaction as the
    change they describe and are never updated or deleted.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_tenant_occurred", "tenant_id", "occurred_at"),
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    action = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)

    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    payload = db.Column(db.Text, nullable=True)  # JSON

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def details(self) -> dict:
        return json.loads(self.payload) if self.payload else {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "details": self.details,
            "occurred_at": to_utc_z(self.occurred_at),
        }

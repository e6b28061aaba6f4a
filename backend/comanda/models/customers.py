from __future__ import annotations

from ..extensions import db
from comanda.time_utils import to_utc_z


class Client(db.Model):
    """Guest that an order can be linked to (delivery, tabs, loyalty lookups)."""
    __tablename__ = "clients"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(64), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "phone": self.phone,
            "created_at": to_utc_z(self.created_at),
        }

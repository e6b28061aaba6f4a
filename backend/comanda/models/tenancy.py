from __future__ import annotations

from ..extensions import db
from comanda.time_utils import to_utc_z


class Tenant(db.Model):
    """
    Multi-tenant root: every restaurant account is a Tenant.

    WHY: Shared-database multi-tenancy with strict isolation. Orders,
    shifts, catalog, stock and users all carry tenant_id and every query
    that touches them filters on it. No data may cross tenant boundaries.
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)  # Short code for lookups

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }

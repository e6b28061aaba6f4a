from __future__ import annotations

from ..extensions import db
from comanda.time_utils import to_utc_z, utcnow


class CashShift(db.Model):
    """
    Cashier shift and cash accountability.

    LIFECYCLE:
    - OPEN: cash payments taken by this user are attributed here
    - CLOSED: counted cash recorded, expected and difference frozen

    At most one OPEN shift per (tenant, user), enforced by shift_service.
    The difference is stored even when zero; it is never hidden.
    """
    __tablename__ = "cash_shifts"
    __table_args__ = (
        db.Index("ix_cash_shifts_tenant_user_status", "tenant_id", "user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    business_date = db.Column(db.Date, nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)  # OPEN, CLOSED

    # Cash tracking (all amounts in cents)
    start_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    end_amount_cents = db.Column(db.Integer, nullable=True)  # counted at close
    expected_cash_cents = db.Column(db.Integer, nullable=True)
    difference_cents = db.Column(db.Integer, nullable=True)  # counted - expected

    start_time = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", foreign_keys=[user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "closed_by_user_id": self.closed_by_user_id,
            "business_date": self.business_date.isoformat() if self.business_date else None,
            "status": self.status,
            "start_amount_cents": self.start_amount_cents,
            "end_amount_cents": self.end_amount_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "difference_cents": self.difference_cents,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "notes": self.notes,
            "version_id": self.version_id,
        }

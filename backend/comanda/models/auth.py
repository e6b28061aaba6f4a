from __future__ import annotations

from ..extensions import db
from comanda.time_utils import to_utc_z


class User(db.Model):
    """
    Staff accounts for authentication and attribution.

    MULTI-TENANT: Users belong to exactly one tenant. Usernames are unique
    within a tenant, not globally.

    ROLES: ADMIN, MANAGER, CASHIER, WAITER, KITCHEN. The role is resolved
    to a capability map by comanda.permissions.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "username", name="uq_users_tenant_username"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    username = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(16), nullable=False, default="WAITER")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    tenant = db.relationship("Tenant", backref=db.backref("users", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "username": self.username,
            "name": self.name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at),
        }


class SessionToken(db.Model):
    """
    Opaque bearer session with tenant context.

    SECURITY NOTES:
    - Tokens stored hashed (SHA-256), plaintext only ever sent to the client
    - Absolute and idle timeouts
    - Tenant context is captured at login and immutable for the session
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))
    tenant = db.relationship("Tenant")

# Overview: Service-layer operations for session; opaque bearer tokens with tenant context.

"""
Session Token Management Service

WHY: Terminals stay logged in for a whole service, but a stolen token must
die quickly. Tokens are random, stored hashed, time-limited and revocable.

MULTI-TENANT: Sessions capture tenant_id at creation time. Every
authenticated request takes its tenant context from the session, never
from client input.

SECURITY FEATURES:
- 32 bytes of randomness per token
- SHA-256 hash at rest
- Absolute timeout (SESSION_ABSOLUTE_TIMEOUT) and idle timeout
  (SESSION_IDLE_TIMEOUT)
- Revocable on logout, deactivation of the user or the tenant
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..errors import NotFoundError
from ..extensions import db
from ..models import SessionToken, Tenant, User
from comanda.time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=16)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


@dataclass
class SessionContext:
    """User identity plus the tenant context frozen at login."""
    user: User
    session: SessionToken
    tenant_id: int


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    SHA-256 of the token.

    WHY not bcrypt: tokens are already high-entropy, a fast hash is enough
    and keeps per-request validation cheap.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Create a session for user.

    Returns (session_record, plaintext_token). Only the hash is stored.
    """
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError("User")

    tenant = db.session.get(Tenant, user.tenant_id)
    if tenant is None or not tenant.is_active:
        raise NotFoundError("Tenant")

    plaintext_token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user.id,
        tenant_id=user.tenant_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=(user_agent or "")[:512] or None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """
    Return SessionContext for a live token, None otherwise.

    Idle sessions and sessions of deactivated users or tenants are revoked
    on sight. last_used_at is refreshed on success.
    """
    if not token:
        return None

    now = utcnow()
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return None

    if session.expires_at < now:
        return None

    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(session, "Idle timeout", now)
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, "User account deactivated", now)
        return None

    tenant = db.session.get(Tenant, session.tenant_id)
    if not tenant or not tenant.is_active:
        _revoke(session, "Tenant deactivated", now)
        return None

    session.last_used_at = now
    db.session.commit()
    return SessionContext(user=user, session=session, tenant_id=session.tenant_id)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Returns True if a live session was revoked."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return False
    _revoke(session, reason, utcnow())
    return True


def _revoke(session: SessionToken, reason: str, now) -> None:
    session.is_revoked = True
    session.revoked_at = now
    session.revoked_reason = reason
    db.session.commit()

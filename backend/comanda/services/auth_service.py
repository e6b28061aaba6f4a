# Overview: Service-layer operations for auth; password hashing, login and staff account creation.

"""
Authentication Service with Multi-Tenant Support

WHY: Every order, payment and void must be attributable to a person.
Uses bcrypt for password hashing and validates password strength.

MULTI-TENANT: Users belong to exactly one tenant. Username uniqueness is
tenant-scoped, and login is always scoped to a tenant.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special character
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Tenant, User
from ..permissions import ROLES
from comanda.time_utils import utcnow


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")
    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str, rounds: int = 12) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison. Malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    tenant_id: int,
    username: str,
    password: str,
    role: str,
    name: str | None = None,
    bcrypt_rounds: int = 12,
) -> User:
    """
    Create a staff account.

    Raises:
        NotFoundError: tenant missing or inactive
        ValidationError: bad role or weak password
        ConflictError: username taken within the tenant
    """
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None or not tenant.is_active:
        raise NotFoundError("Tenant")

    username = (username or "").strip()
    if not username:
        raise ValidationError("username is required")

    role = (role or "").strip().upper()
    if role not in ROLES:
        raise ValidationError("Invalid role", details={"allowed": list(ROLES)})

    existing = db.session.query(User).filter_by(tenant_id=tenant_id, username=username).first()
    if existing:
        raise ConflictError("Username already exists in this tenant")

    user = User(
        tenant_id=tenant_id,
        username=username,
        name=name,
        password_hash=hash_password(password, rounds=bcrypt_rounds),
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str, tenant_id: int) -> User | None:
    """
    Authenticate user with username and password within a tenant.

    Returns User if credentials valid and both user and tenant are active,
    None otherwise. Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        User.tenant_id == tenant_id,
        User.username == username,
        User.is_active.is_(True),
    ).first()
    if not user:
        return None

    tenant = db.session.get(Tenant, user.tenant_id)
    if not tenant or not tenant.is_active:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None

# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from . import permissions
from .services import session_service
from .services.audit_service import AuditContext


def _is_authenticated() -> bool:
    return hasattr(g, "current_user") and hasattr(g, "tenant_id")


def require_auth(f):
    """
    Require authentication and establish tenant context.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.tenant_id: Tenant captured by the session at login
    - g.session_context: The full SessionContext object

    Returns 401 for a missing, invalid, expired or revoked token.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": {"code": "UNAUTHORIZED", "message": "Authentication required"}}), 401

        token = auth_header.split(" ", 1)[1].strip()
        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": {"code": "UNAUTHORIZED", "message": "Invalid or expired token"}}), 401

        g.current_user = context.user
        g.tenant_id = context.tenant_id
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_permission(resource: str, action: str):
    """
    Require resource:action from the role capability map.

    Must be stacked below @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": {"code": "UNAUTHORIZED", "message": "Authentication required"}}), 401

            if not permissions.authorize(g.current_user, resource, action):
                return jsonify({"error": {
                    "code": "FORBIDDEN",
                    "message": "Permission denied",
                    "details": {"required_permission": f"{resource}:{action}"},
                }}), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def current_audit_context() -> AuditContext:
    """Actor, IP and user agent of the current request."""
    user = getattr(g, "current_user", None)
    return AuditContext(
        user_id=user.id if user is not None else None,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )

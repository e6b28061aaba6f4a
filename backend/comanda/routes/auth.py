# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

Login is tenant-scoped: the same username can exist in two restaurants.
The tenant is named by tenant_code (or tenant_id) in the login body.
"""

from flask import Blueprint, current_app, g, jsonify, request

from .. import permissions
from ..decorators import require_auth
from ..errors import ApiError, UnauthorizedError, ValidationError
from ..extensions import db
from ..models import Tenant
from ..services import auth_service, session_service
from . import error_response, get_json_body, internal_error_response


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create a session token.

    Request body:
    {
        "tenant_code": "DEMO",   (or "tenant_id": 1)
        "username": "cashier",
        "password": "..."
    }

    Token must be sent as "Authorization: Bearer <token>" afterwards.
    """
    try:
        data = get_json_body()
        username = data.get("username")
        password = data.get("password")
        if not username or not password:
            raise ValidationError("username and password required")

        tenant = _resolve_tenant(data)
        user = auth_service.authenticate(username, password, tenant.id) if tenant else None
        if not user:
            current_app.logger.info("Failed login for username=%r tenant=%r", username, tenant.id if tenant else None)
            raise UnauthorizedError("Invalid credentials")

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": session.expires_at.isoformat() + "Z",
            "permissions": permissions.to_permission_list(user.role),
        }), 200

    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Login failed")


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        token = request.headers["Authorization"].split(" ", 1)[1].strip()
        session_service.revoke_session(token, reason="User logout")
        return jsonify({"message": "Logged out"}), 200
    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Logout failed")


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "tenant_id": g.tenant_id,
        "permissions": permissions.to_permission_list(user.role),
    }), 200


def _resolve_tenant(data: dict) -> Tenant | None:
    code = data.get("tenant_code")
    if code:
        tenant = db.session.query(Tenant).filter_by(code=str(code).strip().upper()).first()
    else:
        tenant_id = data.get("tenant_id")
        if isinstance(tenant_id, bool) or not isinstance(tenant_id, int):
            raise ValidationError("tenant_code or tenant_id required")
        tenant = db.session.get(Tenant, tenant_id)
    if tenant is None or not tenant.is_active:
        return None
    return tenant

# Overview: Flask API routes for cash shift operations; parses input and returns JSON responses.

"""
Cash Shift API Routes

DESIGN:
- Shift lifecycle: open -> close (immutable once closed)
- A cashier closes their own shift; shifts:close_any lets a manager close
  someone else's
- The close response always carries the cash difference, zero or not
"""

from flask import Blueprint, g, jsonify, request

from .. import permissions
from ..decorators import current_audit_context, require_auth, require_permission
from ..errors import ApiError
from ..services import shift_service
from . import error_response, get_json_body, internal_error_response


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


@shifts_bp.post("/open")
@require_auth
@require_permission("shifts", "open")
def open_shift_route():
    """Request body: {"start_amount_cents": 10000}"""
    try:
        data = get_json_body()
        shift = shift_service.open_shift(
            tenant_id=g.tenant_id,
            user_id=g.current_user.id,
            start_amount_cents=data.get("start_amount_cents"),
            audit_context=current_audit_context(),
        )
        return jsonify({"shift": shift.to_dict()}), 201

    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to open shift")


@shifts_bp.post("/<int:shift_id>/close")
@require_auth
@require_permission("shifts", "close")
def close_shift_route(shift_id: int):
    """
    Close a shift with the counted drawer amount.

    Request body:
    {
        "counted_cash_cents": 35500,
        "notes": "..."   (optional)
    }
    """
    try:
        data = get_json_body()
        result = shift_service.close_shift(
            shift_id,
            data.get("counted_cash_cents"),
            tenant_id=g.tenant_id,
            user_id=g.current_user.id,
            notes=data.get("notes"),
            manager_override=permissions.authorize(g.current_user, "shifts", "close_any"),
            audit_context=current_audit_context(),
        )
        return jsonify(result.to_dict()), 200

    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to close shift")


@shifts_bp.get("/current")
@require_auth
@require_permission("shifts", "read")
def current_shift_route():
    try:
        shift = shift_service.get_open_shift(g.tenant_id, g.current_user.id)
        if shift is None:
            return jsonify({"shift": None}), 200
        return jsonify({
            "shift": shift.to_dict(),
            "expected_cash_cents": shift_service.calculate_expected_cash(shift),
        }), 200

    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to get current shift")


@shifts_bp.get("")
@shifts_bp.get("/")
@require_auth
@require_permission("shifts", "read")
def shift_history_route():
    """Recent shifts; managers may filter by user_id, others only see their own."""
    try:
        user_id = request.args.get("user_id", type=int)
        if not permissions.authorize(g.current_user, "shifts", "report"):
            user_id = g.current_user.id
        limit = min(request.args.get("limit", default=20, type=int) or 20, 100)

        shifts = shift_service.get_shift_history(g.tenant_id, user_id=user_id, limit=limit)
        return jsonify({"shifts": [shift.to_dict() for shift in shifts]}), 200

    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to list shifts")


@shifts_bp.get("/<int:shift_id>/report")
@require_auth
@require_permission("shifts", "report")
def shift_report_route(shift_id: int):
    try:
        return jsonify(shift_service.get_shift_report(shift_id, g.tenant_id)), 200
    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to build shift report")

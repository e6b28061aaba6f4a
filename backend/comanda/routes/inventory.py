# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import current_audit_context, require_auth, require_permission
from ..errors import ApiError
from ..services import purchase_service, stock_service
from . import error_response, get_json_body, internal_error_response


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/low-stock")
@require_auth
@require_permission("inventory", "read")
def low_stock_route():
    """Ingredients at or below min_stock, most depleted first."""
    try:
        report = stock_service.low_stock_report(g.tenant_id)
        return jsonify({"ingredients": report, "count": len(report)}), 200
    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to build low stock report")


@inventory_bp.get("/movements")
@require_auth
@require_permission("inventory", "read")
def movements_route():
    try:
        ingredient_id = request.args.get("ingredient_id", type=int)
        limit = min(request.args.get("limit", default=50, type=int) or 50, 500)
        movements = stock_service.get_movements(g.tenant_id, ingredient_id=ingredient_id, limit=limit)
        return jsonify({"movements": [movement.to_dict() for movement in movements]}), 200
    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to list stock movements")


@inventory_bp.post("/adjustments")
@require_auth
@require_permission("inventory", "adjust")
def adjust_stock_route():
    """
    Manual stock correction.

    Request body:
    {
        "ingredient_id": 3,
        "delta": "-1.250",
        "type": "ADJUSTMENT" | "WASTE",   (optional, default ADJUSTMENT)
        "reason": "Dropped tray"          (optional)
    }
    """
    try:
        data = get_json_body()
        movement = stock_service.adjust_stock(
            g.tenant_id,
            data.get("ingredient_id"),
            data.get("delta"),
            reason=data.get("reason"),
            user_id=g.current_user.id,
            movement_type=(data.get("type") or stock_service.MOVEMENT_ADJUSTMENT).upper(),
        )
        return jsonify({"movement": movement.to_dict()}), 201
    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to adjust stock")


@inventory_bp.post("/purchase-orders")
@require_auth
@require_permission("inventory", "purchase")
def create_purchase_order_route():
    """
    Request body:
    {
        "supplier_id": 1,
        "lines": [{"ingredient_id": 3, "quantity": "5.000", "unit_cost_cents": 900}],
        "notes": "..."   (optional)
    }
    """
    try:
        data = get_json_body()
        purchase = purchase_service.create_purchase_order(
            g.tenant_id,
            data.get("supplier_id"),
            data.get("lines"),
            user_id=g.current_user.id,
            notes=data.get("notes"),
            audit_context=current_audit_context(),
        )
        return jsonify({"purchase_order": purchase.to_dict()}), 201
    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to create purchase order")


@inventory_bp.post("/purchase-orders/<int:purchase_id>/receive")
@require_auth
@require_permission("inventory", "receive")
def receive_purchase_order_route(purchase_id: int):
    try:
        purchase = purchase_service.receive_purchase_order(
            purchase_id,
            g.tenant_id,
            user_id=g.current_user.id,
            audit_context=current_audit_context(),
        )
        return jsonify({"purchase_order": purchase.to_dict()}), 200
    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to receive purchase order")


@inventory_bp.get("/purchase-orders/<int:purchase_id>")
@require_auth
@require_permission("inventory", "read")
def get_purchase_order_route(purchase_id: int):
    try:
        purchase = purchase_service.get_purchase_order(purchase_id, g.tenant_id)
        return jsonify({"purchase_order": purchase.to_dict()}), 200
    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to get purchase order")

# Overview: Flask API routes for orders operations; parses input and returns JSON responses.

"""
Order API Routes

WHY: Thin HTTP layer over the order, payment and correction services.
Routes parse input, resolve the tenant from the session and map typed
errors to status codes. No business rules live here.

SECURITY:
- Every route requires a session; tenant_id always comes from it
- orders:void is separate from orders:update_item_status (managers only)
- Order create and payment add honour X-Idempotency-Key
"""

from flask import Blueprint, g, jsonify, request

from .. import permissions
from ..decorators import current_audit_context, require_auth, require_permission
from ..errors import ApiError, ValidationError
from ..idempotency import idempotent
from ..services import audit_service, correction_service, order_service, payment_service
from comanda.time_utils import parse_iso_date
from . import error_response, get_json_body, internal_error_response


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


# =============================================================================
# ORDER CREATION AND QUERIES
# =============================================================================

@orders_bp.post("")
@orders_bp.post("/")
@require_auth
@require_permission("orders", "create")
@idempotent
def create_order_route():
    """
    Create an order (optionally with discount and inline payments).

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2, "modifiers": [3], "removed_ingredient_ids": [4], "notes": "..."}],
        "table_id": 5,            (optional)
        "channel": "DINE_IN",     (optional)
        "client_id": 7,           (optional)
        "discount": {"type": "PERCENTAGE", "value": 10, "reason": "VIP_CUSTOMER"},  (optional)
        "payments": [{"method": "CASH", "amount_cents": 2500}],                     (optional)
        "close_order": true       (optional)
    }
    """
    try:
        data = get_json_body()

        payments = data.get("payments")
        if payments:
            permissions.require(g.current_user, "payments", "create")

        discount = data.get("discount")
        if isinstance(discount, dict):
            discount = dict(discount)
            discount.setdefault("authorized_by_user_id", g.current_user.id)

        order = order_service.create_order(
            tenant_id=g.tenant_id,
            server_id=g.current_user.id,
            items=data.get("items"),
            channel=data.get("channel"),
            table_id=data.get("table_id"),
            client_id=data.get("client_id"),
            payments=payments,
            discount=discount,
            close_order=bool(data.get("close_order", False)),
            audit_context=current_audit_context(),
        )
        return jsonify({"order": order.to_dict()}), 201

    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to create order")


@orders_bp.get("")
@orders_bp.get("/")
@require_auth
@require_permission("orders", "read")
def list_orders_route():
    """Active orders of the tenant, optionally for one business_date (YYYY-MM-DD)."""
    try:
        try:
            business_date = parse_iso_date(request.args.get("business_date"))
        except ValueError:
            raise ValidationError("business_date must be YYYY-MM-DD")

        orders = order_service.list_active_orders(g.tenant_id, business_date=business_date)
        return jsonify({
            "orders": [order.to_dict(include_payments=False) for order in orders],
            "count": len(orders),
        }), 200

    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to list orders")


@orders_bp.get("/void-reasons")
@require_auth
@require_permission("orders", "read")
def void_reasons_route():
    return jsonify({"reasons": correction_service.list_void_reasons()}), 200


@orders_bp.get("/<order_id>")
@require_auth
@require_permission("orders", "read")
def get_order_route(order_id: str):
    try:
        order = order_service.get_order(order_id, g.tenant_id)
        return jsonify({"order": order.to_dict()}), 200
    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to get order")


@orders_bp.get("/<order_id>/audit")
@require_auth
@require_permission("audit", "read")
def order_audit_route(order_id: str):
    """Order-level audit trail, newest first (item voids are listed under the item)."""
    try:
        order = order_service.get_order(order_id, g.tenant_id)
        events = audit_service.get_events(g.tenant_id, entity_type="order", entity_id=order.id)
        return jsonify({"events": [event.to_dict() for event in events]}), 200
    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to get order audit trail")


@orders_bp.post("/<order_id>/items")
@require_auth
@require_permission("orders", "update")
def add_items_route(order_id: str):
    """Request body: {"items": [...]} (same item shape as order creation)."""
    try:
        data = get_json_body()
        order = order_service.add_items_to_order(
            order_id,
            data.get("items"),
            user_id=g.current_user.id,
            tenant_id=g.tenant_id,
            audit_context=current_audit_context(),
        )
        return jsonify({"order": order.to_dict()}), 200

    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to add items to order")


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

@orders_bp.patch("/<order_id>/status")
@require_auth
@require_permission("orders", "update_status")
def update_status_route(order_id: str):
    """Request body: {"status": "CLOSED" | "CANCELLED"}"""
    try:
        data = get_json_body()
        order = order_service.update_status(
            order_id,
            data.get("status"),
            tenant_id=g.tenant_id,
            user_id=g.current_user.id,
            audit_context=current_audit_context(),
        )
        return jsonify({"order": order.to_dict()}), 200

    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to update order status")


@orders_bp.patch("/items/<int:item_id>/status")
@require_auth
@require_permission("orders", "update_item_status")
def update_item_status_route(item_id: int):
    """Request body: {"status": "COOKING" | "READY" | "SERVED"}"""
    try:
        data = get_json_body()
        item = order_service.update_item_status(
            item_id,
            data.get("status"),
            tenant_id=g.tenant_id,
            user_id=g.current_user.id,
        )
        return jsonify({"item": item.to_dict()}), 200

    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to update item status")


# =============================================================================
# CORRECTIONS
# =============================================================================

@orders_bp.post("/items/<int:item_id>/void")
@require_auth
@require_permission("orders", "void")
def void_item_route(item_id: int):
    """
    Void an order item.

    Requires: orders:void (managers)

    Request body:
    {
        "reason": "KITCHEN_ERROR",
        "notes": "Burnt"   (optional)
    }
    """
    try:
        data = get_json_body()
        result = correction_service.void_item(
            item_id,
            data.get("reason"),
            data.get("notes"),
            tenant_id=g.tenant_id,
            audit_context=current_audit_context(),
        )
        return jsonify(result.to_dict()), 200

    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to void order item")


@orders_bp.post("/transfer")
@require_auth
@require_permission("orders", "transfer")
def transfer_items_route():
    """Request body: {"item_ids": [1, 2], "from_table_id": 3, "to_table_id": 4}"""
    try:
        data = get_json_body()
        result = correction_service.transfer_items(
            data.get("item_ids"),
            data.get("from_table_id"),
            data.get("to_table_id"),
            tenant_id=g.tenant_id,
            audit_context=current_audit_context(),
        )
        return jsonify(result.to_dict()), 200

    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to transfer items")


@orders_bp.post("/<order_id>/discount")
@require_auth
@require_permission("orders", "discount")
def apply_discount_route(order_id: str):
    """Request body: {"type": "AMOUNT" | "PERCENTAGE", "value": 500, "reason": "PROMOTION", "notes": "..."}"""
    try:
        data = get_json_body()
        order = order_service.apply_discount(
            order_id,
            data,
            tenant_id=g.tenant_id,
            user_id=g.current_user.id,
            audit_context=current_audit_context(),
        )
        return jsonify({"order": order.to_dict()}), 200

    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to apply discount")


# =============================================================================
# PAYMENTS
# =============================================================================

@orders_bp.post("/<order_id>/payments")
@require_auth
@require_permission("payments", "create")
@idempotent
def add_payments_route(order_id: str):
    """
    Post one or more payments against an order.

    Request body:
    {
        "payments": [{"method": "CASH", "amount_cents": 1500}, {"method": "CARD", "amount_cents": 1000}],
        "close_order": true   (optional)
    }
    A single {"method", "amount_cents"} object is accepted as a batch of one.
    """
    try:
        data = get_json_body()
        payments = data.get("payments")
        if payments is None and "amount_cents" in data:
            payments = [{"method": data.get("method"), "amount_cents": data.get("amount_cents")}]

        result = payment_service.add_payments(
            order_id,
            payments,
            tenant_id=g.tenant_id,
            user_id=g.current_user.id,
            close_order=bool(data.get("close_order", False)),
            audit_context=current_audit_context(),
        )
        return jsonify(result.to_dict()), 201

    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to add payments")


@orders_bp.get("/<order_id>/payments")
@require_auth
@require_permission("payments", "read")
def payment_summary_route(order_id: str):
    try:
        return jsonify(payment_service.get_payment_summary(order_id, g.tenant_id)), 200
    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to get payment summary")


@orders_bp.post("/payments/<int:payment_id>/void")
@require_auth
@require_permission("payments", "void")
def void_payment_route(payment_id: int):
    """Request body: {"reason": "Charged twice"}"""
    try:
        data = get_json_body()
        payment = payment_service.void_payment(
            payment_id,
            tenant_id=g.tenant_id,
            user_id=g.current_user.id,
            reason=data.get("reason"),
            audit_context=current_audit_context(),
        )
        return jsonify({"payment": payment.to_dict()}), 200

    except ApiError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to void payment")

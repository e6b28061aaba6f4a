# Overview: Service-layer operations for purchase orders; supplier purchases and their receipt into stock.

"""
Purchase Order Service

WHY: Stock only comes back up through purchases. Receiving a purchase
order is the one place where PURCHASE movements are posted.

LIFECYCLE:
1. PENDING: Created, lines recorded
2. ORDERED: Sent to the supplier
3. RECEIVED: Goods counted in; stock increased (exactly once)
4. CANCELLED: Abandoned before receipt

IMMUTABLE: Once RECEIVED or CANCELLED, a purchase order cannot change.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import Ingredient, PurchaseOrder, PurchaseOrderLine, Supplier
from comanda.time_utils import utcnow
from . import audit_service, stock_service
from .audit_service import AuditContext
from .concurrency import run_in_transaction
from .tenant_service import get_scoped


STATUS_PENDING = "PENDING"
STATUS_ORDERED = "ORDERED"
STATUS_RECEIVED = "RECEIVED"
STATUS_CANCELLED = "CANCELLED"

MAX_LINES_PER_PURCHASE = 200


def create_purchase_order(
    tenant_id: int,
    supplier_id: int,
    lines: list,
    user_id: int | None = None,
    notes: str | None = None,
    audit_context: AuditContext | None = None,
) -> PurchaseOrder:
    """
    Create a PENDING purchase order.

    Args:
        lines: [{"ingredient_id", "quantity", "unit_cost_cents"?}]

    purchase_number is max + 1 within the tenant; a concurrent collision
    on the unique key is retried by run_in_transaction.
    """
    parsed = _parse_lines(lines)

    def _op() -> PurchaseOrder:
        supplier = get_scoped(Supplier, supplier_id, tenant_id, label="Supplier")
        for entry in parsed:
            get_scoped(Ingredient, entry["ingredient_id"], tenant_id, label="Ingredient")

        last_number = db.session.query(func.max(PurchaseOrder.purchase_number)).filter(
            PurchaseOrder.tenant_id == tenant_id
        ).scalar()

        purchase = PurchaseOrder(
            tenant_id=tenant_id,
            supplier_id=supplier.id,
            purchase_number=(last_number or 0) + 1,
            status=STATUS_PENDING,
            notes=notes,
            created_by_user_id=user_id,
            created_at=utcnow(),
        )
        total = Decimal("0")
        for entry in parsed:
            purchase.lines.append(PurchaseOrderLine(
                ingredient_id=entry["ingredient_id"],
                quantity=entry["quantity"],
                unit_cost_cents=entry["unit_cost_cents"],
            ))
            total += entry["quantity"] * entry["unit_cost_cents"]
        purchase.total_cents = int(total.to_integral_value())

        db.session.add(purchase)
        db.session.flush()

        audit_service.log(
            tenant_id,
            "PURCHASE_ORDER_CREATED",
            "purchase_order",
            purchase.id,
            audit_context or AuditContext(user_id=user_id),
            {"purchase_number": purchase.purchase_number, "lines": len(parsed), "total_cents": purchase.total_cents},
        )
        return purchase

    return run_in_transaction(_op, immediate=True)


def receive_purchase_order(
    purchase_id: int,
    tenant_id: int,
    user_id: int | None = None,
    audit_context: AuditContext | None = None,
) -> PurchaseOrder:
    """
    Receive a purchase order into stock.

    Posts one PURCHASE movement per line and refreshes each ingredient's
    cost to the latest unit cost paid.
    """
    def _op() -> PurchaseOrder:
        purchase = get_scoped(PurchaseOrder, purchase_id, tenant_id, label="Purchase order", lock=True)
        if purchase.status in (STATUS_RECEIVED, STATUS_CANCELLED):
            raise ConflictError(f"Purchase order is already {purchase.status}")

        stock_service.receive_for_purchase(tenant_id, purchase.lines, purchase.id, user_id=user_id)

        for line in purchase.lines:
            if line.unit_cost_cents:
                line.ingredient.cost_cents = line.unit_cost_cents

        purchase.status = STATUS_RECEIVED
        purchase.received_at = utcnow()

        audit_service.log(
            tenant_id,
            "PURCHASE_ORDER_RECEIVED",
            "purchase_order",
            purchase.id,
            audit_context or AuditContext(user_id=user_id),
            {"purchase_number": purchase.purchase_number, "lines": len(purchase.lines)},
        )
        return purchase

    purchase = run_in_transaction(_op, immediate=True)
    current_app.logger.info(
        "Purchase order received tenant_id=%s purchase_id=%s lines=%s",
        tenant_id, purchase.id, len(purchase.lines),
    )
    return purchase


def mark_ordered(purchase_id: int, tenant_id: int, user_id: int | None = None) -> PurchaseOrder:
    def _op() -> PurchaseOrder:
        purchase = get_scoped(PurchaseOrder, purchase_id, tenant_id, label="Purchase order", lock=True)
        if purchase.status != STATUS_PENDING:
            raise ConflictError(f"Cannot mark a {purchase.status} purchase order as ordered")
        purchase.status = STATUS_ORDERED
        audit_service.log(tenant_id, "PURCHASE_ORDER_ORDERED", "purchase_order", purchase.id, AuditContext(user_id=user_id))
        return purchase

    return run_in_transaction(_op)


def cancel_purchase_order(purchase_id: int, tenant_id: int, user_id: int | None = None) -> PurchaseOrder:
    def _op() -> PurchaseOrder:
        purchase = get_scoped(PurchaseOrder, purchase_id, tenant_id, label="Purchase order", lock=True)
        if purchase.status in (STATUS_RECEIVED, STATUS_CANCELLED):
            raise ConflictError(f"Purchase order is already {purchase.status}")
        purchase.status = STATUS_CANCELLED
        audit_service.log(tenant_id, "PURCHASE_ORDER_CANCELLED", "purchase_order", purchase.id, AuditContext(user_id=user_id))
        return purchase

    return run_in_transaction(_op)


def get_purchase_order(purchase_id: int, tenant_id: int) -> PurchaseOrder:
    return get_scoped(PurchaseOrder, purchase_id, tenant_id, label="Purchase order")


def _parse_lines(lines) -> list[dict]:
    if not isinstance(lines, list) or not lines:
        raise ValidationError("At least one line is required")
    if len(lines) > MAX_LINES_PER_PURCHASE:
        raise ValidationError(f"At most {MAX_LINES_PER_PURCHASE} lines per purchase order")

    parsed = []
    for index, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{index}] must be an object")
        ingredient_id = raw.get("ingredient_id")
        if isinstance(ingredient_id, bool) or not isinstance(ingredient_id, int) or ingredient_id <= 0:
            raise ValidationError(f"lines[{index}].ingredient_id must be a positive integer")

        quantity = raw.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, (int, float, str)):
            raise ValidationError(f"lines[{index}].quantity must be a number")
        try:
            quantity = Decimal(str(quantity)).quantize(stock_service.QUANTITY_SCALE)
        except ArithmeticError:
            raise ValidationError(f"lines[{index}].quantity must be a number")
        if not quantity.is_finite() or quantity <= 0:
            raise ValidationError(f"lines[{index}].quantity must be positive")

        cost = raw.get("unit_cost_cents", 0)
        if isinstance(cost, bool) or not isinstance(cost, int) or cost < 0:
            raise ValidationError(f"lines[{index}].unit_cost_cents must be a non-negative integer")

        parsed.append({"ingredient_id": ingredient_id, "quantity": quantity, "unit_cost_cents": cost})
    return parsed

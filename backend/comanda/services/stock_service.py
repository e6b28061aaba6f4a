# Overview: Service-layer operations for stock; recipe deduction, exact void reversal and the movement ledger.

"""
Stock Deduction Engine

WHY: Selling a burger consumes bread, beef and cheese. Stock must follow
every sale, void and purchase so the kitchen knows what to reorder.

DESIGN PRINCIPLES:
- Recipe = base ingredients - removed ingredients + modifier ingredients,
  multiplied by the item quantity
- Stock is decremented with an atomic UPDATE ... SET stock = stock - q,
  never read-then-write, because popular ingredients are shared by
  concurrent orders
- Stock may go negative: sales are never blocked on inventory data entry
  lag. Negative stock surfaces in low_stock_report() instead
- What was actually deducted is stored per item (OrderItemConsumption);
  a void restores exactly that, even if the recipe has changed since
- Every change appends a StockMovement row; the ledger is append-only

deduct_for_sale / reverse_for_void / receive_for_purchase run inside the
caller's transaction and never commit. adjust_stock is a standalone
operation with its own transaction.
"""

from __future__ import annotations

from collections import OrderedDict
from decimal import Decimal

from flask import current_app
from sqlalchemy import update

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    Ingredient,
    ModifierOption,
    OrderItemConsumption,
    Product,
    StockMovement,
)
from comanda.time_utils import utcnow
from .concurrency import run_in_transaction


class StockError(ValidationError):
    """Raised for invalid stock operations."""


# =============================================================================
# MOVEMENT TYPES (CONSTANTS)
# =============================================================================

MOVEMENT_SALE = "SALE"
MOVEMENT_VOID = "VOID"
MOVEMENT_PURCHASE = "PURCHASE"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_WASTE = "WASTE"

MOVEMENT_TYPES = (MOVEMENT_SALE, MOVEMENT_VOID, MOVEMENT_PURCHASE, MOVEMENT_ADJUSTMENT, MOVEMENT_WASTE)

QUANTITY_SCALE = Decimal("0.001")


# =============================================================================
# SALES AND VOIDS
# =============================================================================

def resolve_consumption(item) -> "OrderedDict[int, Decimal]":
    """
    Ingredient quantities one order item consumes, keyed by ingredient id.

    Base recipe applies only to stockable products; ingredients the guest
    asked to remove are skipped. Modifier-linked ingredients are added on
    top. Quantities are per-unit recipe values times item.quantity.
    """
    usage: "OrderedDict[int, Decimal]" = OrderedDict()
    removed = set(item.removed_ingredient_ids or [])

    product = db.session.get(Product, item.product_id)
    if product is not None and product.is_stockable:
        for line in product.ingredients:
            if line.ingredient_id in removed:
                continue
            _accumulate(usage, line.ingredient_id, Decimal(line.quantity) * item.quantity)

    for chosen in item.modifiers:
        option = db.session.get(ModifierOption, chosen.modifier_option_id)
        if option is None or option.ingredient_id is None or not option.quantity_used:
            continue
        _accumulate(usage, option.ingredient_id, Decimal(option.quantity_used) * item.quantity)

    return usage


def deduct_for_sale(tenant_id: int, order_items, user_id: int | None = None) -> list[StockMovement]:
    """
    Deduct recipe consumption for freshly created order items.

    Items must already be flushed (they need ids). Records one
    OrderItemConsumption and one SALE movement per (item, ingredient).
    """
    movements = []
    for item in order_items:
        usage = resolve_consumption(item)
        for ingredient_id, quantity in usage.items():
            if quantity == 0:
                continue
            _apply_delta(tenant_id, ingredient_id, -quantity)
            consumption = OrderItemConsumption(
                order_item_id=item.id,
                ingredient_id=ingredient_id,
                quantity=quantity,
            )
            db.session.add(consumption)
            item.consumptions.append(consumption)
            movements.append(_record_movement(
                tenant_id=tenant_id,
                ingredient_id=ingredient_id,
                movement_type=MOVEMENT_SALE,
                quantity=-quantity,
                reason=f"Order item #{item.id}",
                order_item_id=item.id,
                user_id=user_id,
            ))
    return movements


def reverse_for_void(item, user_id: int | None = None, reason: str | None = None) -> list[StockMovement]:
    """
    Restore exactly what was deducted for this item.

    IDEMPOTENT: stock_reversed_at is stamped on the item; a second call
    for the same item restores nothing.
    """
    if item.stock_reversed_at is not None:
        current_app.logger.info("Stock for order item %s already reversed; skipping", item.id)
        return []

    movements = []
    for consumption in item.consumptions:
        quantity = Decimal(consumption.quantity)
        if quantity == 0:
            continue
        _apply_delta(item.tenant_id, consumption.ingredient_id, quantity)
        note = f"Void order item #{item.id}"
        if reason:
            note = f"{note} - {reason}"
        movements.append(_record_movement(
            tenant_id=item.tenant_id,
            ingredient_id=consumption.ingredient_id,
            movement_type=MOVEMENT_VOID,
            quantity=quantity,
            reason=note,
            order_item_id=item.id,
            user_id=user_id,
        ))

    item.stock_reversed_at = utcnow()
    return movements


# =============================================================================
# PURCHASES AND ADJUSTMENTS
# =============================================================================

def receive_for_purchase(tenant_id: int, lines, purchase_order_id: int | None, user_id: int | None = None) -> list[StockMovement]:
    """
    Add received quantities to stock.

    Args:
        lines: iterable of objects with ingredient_id and quantity (> 0)
    """
    movements = []
    for line in lines:
        quantity = _to_quantity(line.quantity, "quantity")
        if quantity <= 0:
            raise StockError("Received quantity must be positive")
        _apply_delta(tenant_id, line.ingredient_id, quantity)
        movements.append(_record_movement(
            tenant_id=tenant_id,
            ingredient_id=line.ingredient_id,
            movement_type=MOVEMENT_PURCHASE,
            quantity=quantity,
            reason=f"Purchase order #{purchase_order_id}" if purchase_order_id else "Purchase",
            purchase_order_id=purchase_order_id,
            user_id=user_id,
        ))
    return movements


def adjust_stock(
    tenant_id: int,
    ingredient_id: int,
    delta,
    reason: str | None = None,
    user_id: int | None = None,
    movement_type: str = MOVEMENT_ADJUSTMENT,
) -> StockMovement:
    """
    Manual correction (ADJUSTMENT, either sign) or loss (WASTE, must reduce stock).
    """
    def _op():
        if movement_type not in (MOVEMENT_ADJUSTMENT, MOVEMENT_WASTE):
            raise StockError(f"Manual movements must be {MOVEMENT_ADJUSTMENT} or {MOVEMENT_WASTE}")

        quantity = _to_quantity(delta, "delta")
        if quantity == 0:
            raise StockError("delta must be non-zero")
        if movement_type == MOVEMENT_WASTE and quantity > 0:
            quantity = -quantity

        _apply_delta(tenant_id, ingredient_id, quantity)
        return _record_movement(
            tenant_id=tenant_id,
            ingredient_id=ingredient_id,
            movement_type=movement_type,
            quantity=quantity,
            reason=reason,
            user_id=user_id,
        )

    return run_in_transaction(_op)


# =============================================================================
# QUERIES
# =============================================================================

def low_stock_report(tenant_id: int) -> list[dict]:
    """
    Active ingredients at or below their reorder threshold.

    severity is "critical" when stock is zero or negative (sold ahead of
    purchases), "low" otherwise.
    """
    ingredients = (
        db.session.query(Ingredient)
        .filter(
            Ingredient.tenant_id == tenant_id,
            Ingredient.is_active.is_(True),
            Ingredient.stock <= Ingredient.min_stock,
        )
        .order_by(Ingredient.stock.asc(), Ingredient.name.asc())
        .populate_existing()
        .all()
    )
    report = []
    for ingredient in ingredients:
        stock = Decimal(ingredient.stock)
        report.append({
            **ingredient.to_dict(),
            "severity": "critical" if stock <= 0 else "low",
            "shortfall": str(Decimal(ingredient.min_stock) - stock),
        })
    return report


def get_movements(tenant_id: int, ingredient_id: int | None = None, limit: int = 50) -> list[StockMovement]:
    query = db.session.query(StockMovement).filter(StockMovement.tenant_id == tenant_id)
    if ingredient_id is not None:
        query = query.filter(StockMovement.ingredient_id == ingredient_id)
    return query.order_by(StockMovement.id.desc()).limit(limit).all()


def get_stock(tenant_id: int, ingredient_id: int) -> Decimal:
    """Fresh stock value straight from the database."""
    value = db.session.query(Ingredient.stock).filter(
        Ingredient.id == ingredient_id,
        Ingredient.tenant_id == tenant_id,
    ).scalar()
    if value is None:
        raise NotFoundError("Ingredient")
    return Decimal(value).quantize(QUANTITY_SCALE)


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _accumulate(usage, ingredient_id: int, quantity: Decimal) -> None:
    usage[ingredient_id] = (usage.get(ingredient_id, Decimal("0")) + quantity).quantize(QUANTITY_SCALE)


def _to_quantity(value, field: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise StockError(f"{field} must be a number")
    try:
        quantity = Decimal(str(value))
    except ArithmeticError:
        raise StockError(f"{field} must be a number")
    if not quantity.is_finite():
        raise StockError(f"{field} must be finite")
    return quantity.quantize(QUANTITY_SCALE)


def _apply_delta(tenant_id: int, ingredient_id: int, delta: Decimal) -> None:
    """Atomic signed stock change, scoped to the tenant."""
    result = db.session.execute(
        update(Ingredient)
        .where(Ingredient.id == ingredient_id, Ingredient.tenant_id == tenant_id)
        .values(stock=Ingredient.stock + delta)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        raise NotFoundError("Ingredient")


def _record_movement(
    *,
    tenant_id: int,
    ingredient_id: int,
    movement_type: str,
    quantity: Decimal,
    reason: str | None = None,
    order_item_id: int | None = None,
    purchase_order_id: int | None = None,
    user_id: int | None = None,
) -> StockMovement:
    movement = StockMovement(
        tenant_id=tenant_id,
        ingredient_id=ingredient_id,
        type=movement_type,
        quantity=quantity,
        reason=reason,
        order_item_id=order_item_id,
        purchase_order_id=purchase_order_id,
        user_id=user_id,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    return movement

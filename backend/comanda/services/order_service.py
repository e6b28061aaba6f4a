# Overview: Service-layer operations for orders; validation, pricing, state machines and totals recomputation.

"""
Order Aggregate Builder

WHY: An order is created in one shot by a POS terminal: items, modifiers,
"no onions" removals, table, guest, optional discount and optional
immediate payment. Either all of it lands, or none of it does.

DESIGN PRINCIPLES:
- Prices come from the catalog, never from the client, and are
  snapshotted on the item so catalog edits never rewrite history
- Line total = (unit price + modifier prices) x quantity
- Order total = sum(non-void line totals) - discount, floored at zero,
  and only ever written by recompute_totals()
- One transaction: validate -> allocate number -> insert order and items
  -> deduct stock -> occupy table -> payments -> audit

TWO ORTHOGONAL STATE MACHINES:
- Financial (order.status): OPEN -> PARTIALLY_PAID -> PAID -> CLOSED,
  OPEN / PARTIALLY_PAID -> CANCELLED. CLOSED and CANCELLED are terminal.
  A fully paid order cannot be cancelled, only corrected via item void.
- Kitchen (item.status): PENDING -> COOKING -> READY -> SERVED, forward
  only. VOID is reachable only through correction_service.
  order.kitchen_status is the least advanced non-void item.
"""

from __future__ import annotations

from datetime import date, datetime

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    Client,
    DiningTable,
    Ingredient,
    ModifierOption,
    Order,
    OrderItem,
    OrderItemModifier,
    Product,
    User,
)
from ..models.orders import (
    ACTIVE_ORDER_STATUSES,
    CHANNELS,
    ITEM_STATUS_PENDING,
    ITEM_STATUS_VOID,
    KITCHEN_FLOW,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_CLOSED,
    ORDER_STATUS_OPEN,
    ORDER_STATUS_PAID,
    ORDER_STATUS_PARTIALLY_PAID,
    TABLE_STATUS_FREE,
    TABLE_STATUS_OCCUPIED,
    TERMINAL_ORDER_STATUSES,
)
from .. import permissions
from comanda.time_utils import utcnow
from . import audit_service, order_number_service, stock_service
from .audit_service import AuditContext
from .concurrency import lock_for_update, run_in_transaction
from .tenant_service import find_scoped, get_scoped


MAX_ITEMS_PER_REQUEST = 100
MAX_ITEM_QUANTITY = 999
MAX_NOTES_LENGTH = 500

DISCOUNT_TYPE_AMOUNT = "AMOUNT"
DISCOUNT_TYPE_PERCENTAGE = "PERCENTAGE"
DISCOUNT_TYPE_ALIASES = {"FIXED": DISCOUNT_TYPE_AMOUNT, "AMOUNT": DISCOUNT_TYPE_AMOUNT, "PERCENTAGE": DISCOUNT_TYPE_PERCENTAGE}
DISCOUNT_REASONS = (
    "EMPLOYEE",
    "VIP_CUSTOMER",
    "PROMOTION",
    "COMPLAINT",
    "MANAGER_COURTESY",
    "LOYALTY",
    "OTHER",
)


# =============================================================================
# ORDER CREATION
# =============================================================================

def create_order(
    tenant_id: int,
    server_id: int,
    items: list,
    channel: str | None = None,
    table_id: int | None = None,
    client_id: int | None = None,
    payments: list | None = None,
    discount: dict | None = None,
    close_order: bool = False,
    audit_context: AuditContext | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Create an order with its items as one unit of work.

    Args:
        tenant_id: Tenant of the caller
        server_id: Staff member taking the order (also the cashier for inline payments)
        items: [{"product_id", "quantity", "notes"?, "modifiers"?, "removed_ingredient_ids"?}]
        channel: DINE_IN, TAKEAWAY, DELIVERY, ONLINE (default DINE_IN with a table, else TAKEAWAY)
        table_id: Table to seat the order at (must be free of open orders)
        client_id: Guest to link
        payments: Optional [{"method", "amount_cents"}] posted in the same transaction
        discount: Optional {"type", "value", "reason"?, "notes"?, "authorized_by_user_id"?}
        close_order: Close immediately if the inline payments cover the total
        now: Creation moment, drives the business date (defaults to wall clock)

    Raises:
        ValidationError, NotFoundError, ConflictError, RetryableError
    """
    from .payment_service import _add_payments_locked

    if table_id is not None:
        _positive_int(table_id, "table_id")
    if client_id is not None:
        _positive_int(client_id, "client_id")

    business_date = order_number_service.current_business_date(now)

    def _op() -> Order:
        server = _require_active_user(server_id, tenant_id, label="Server")
        order_channel = _normalize_channel(channel, table_id)

        table = None
        if table_id is not None:
            table = get_scoped(DiningTable, table_id, tenant_id, label="Table", lock=True)
            if get_open_order_for_table(table, tenant_id) is not None:
                raise ConflictError(
                    "Table already has an open order",
                    details={"table_id": table.id, "order_id": table.current_order_id},
                )

        if client_id is not None:
            get_scoped(Client, client_id, tenant_id, label="Client")

        new_items = build_items(tenant_id, items)

        identifier = order_number_service.allocate(tenant_id, business_date=business_date)
        order = Order(
            id=identifier.id,
            tenant_id=tenant_id,
            order_number=identifier.order_number,
            business_date=identifier.business_date,
            channel=order_channel,
            status=ORDER_STATUS_OPEN,
            kitchen_status=ITEM_STATUS_PENDING,
            table_id=table.id if table else None,
            client_id=client_id,
            server_id=server.id,
            created_at=utcnow(),
        )
        db.session.add(order)
        for item in new_items:
            order.items.append(item)
        db.session.flush()

        stock_service.deduct_for_sale(tenant_id, new_items, user_id=server.id)

        if discount:
            _set_discount(order, discount, tenant_id)

        recompute_totals(order)

        if table is not None:
            _occupy_table(table, order)

        db.session.flush()

        audit_service.log(
            tenant_id,
            "ORDER_CREATED",
            "order",
            order.id,
            audit_context or AuditContext(user_id=server.id),
            {
                "order_number": order.order_number,
                "business_date": order.business_date.isoformat(),
                "item_count": len(new_items),
                "total_cents": order.total_cents,
            },
        )

        if payments:
            _add_payments_locked(
                order,
                payments,
                tenant_id=tenant_id,
                user_id=server.id,
                close_order=close_order,
                audit_context=audit_context,
            )

        return order

    order = run_in_transaction(_op, immediate=True)
    current_app.logger.info(
        "Order created tenant_id=%s order_id=%s order_number=%s total_cents=%s",
        tenant_id, order.id, order.order_number, order.total_cents,
    )
    return order


def add_items_to_order(
    order_id: str,
    items: list,
    user_id: int,
    tenant_id: int,
    audit_context: AuditContext | None = None,
) -> Order:
    """
    Append items to an existing order while it is not CLOSED/CANCELLED.

    A PAID order that receives new items goes back to PARTIALLY_PAID.
    """
    def _op() -> Order:
        order = get_scoped(Order, order_id, tenant_id, label="Order", lock=True)
        if order.status in TERMINAL_ORDER_STATUSES:
            raise ConflictError(f"Cannot add items to a {order.status} order")

        new_items = build_items(tenant_id, items)
        for item in new_items:
            order.items.append(item)
        db.session.flush()

        stock_service.deduct_for_sale(tenant_id, new_items, user_id=user_id)
        recompute_totals(order)

        audit_service.log(
            tenant_id,
            "ORDER_ITEMS_ADDED",
            "order",
            order.id,
            audit_context or AuditContext(user_id=user_id),
            {
                "item_ids": [item.id for item in new_items],
                "total_cents": order.total_cents,
            },
        )
        return order

    return run_in_transaction(_op, immediate=True)


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def update_status(
    order_id: str,
    status: str,
    tenant_id: int,
    user_id: int | None = None,
    audit_context: AuditContext | None = None,
) -> Order:
    """
    Operator-requested financial transition.

    Only CLOSED and CANCELLED can be requested; OPEN, PARTIALLY_PAID and
    PAID follow from payments and are never set by hand.

    - CLOSED: requires payments covering the total
    - CANCELLED: requires the order not to be fully paid; restores stock
      for every non-void item and frees the table
    """
    target = (status or "").strip().upper()
    if target not in (ORDER_STATUS_CLOSED, ORDER_STATUS_CANCELLED):
        raise ValidationError(
            "status must be CLOSED or CANCELLED",
            details={"allowed": [ORDER_STATUS_CLOSED, ORDER_STATUS_CANCELLED]},
        )

    def _op() -> Order:
        order = get_scoped(Order, order_id, tenant_id, label="Order", lock=True)
        if order.status in TERMINAL_ORDER_STATUSES:
            raise ConflictError(f"Order is already {order.status}")

        previous = order.status
        if target == ORDER_STATUS_CLOSED:
            if order.paid_cents < order.total_cents:
                raise ConflictError(
                    "Order has a balance due",
                    details={"balance_due_cents": order.balance_due_cents},
                )
            close(order)
        else:
            if order.is_fully_paid:
                raise ConflictError("A fully paid order cannot be cancelled; void its items instead")
            for item in order.items:
                if item.status != ITEM_STATUS_VOID:
                    stock_service.reverse_for_void(item, user_id=user_id, reason="Order cancelled")
            order.status = ORDER_STATUS_CANCELLED
            order.cancelled_at = utcnow()
            order.cancelled_by_user_id = user_id
            release_table(order)

        audit_service.log(
            tenant_id,
            f"ORDER_{target}",
            "order",
            order.id,
            audit_context or AuditContext(user_id=user_id),
            {"from": previous, "to": target, "total_cents": order.total_cents, "paid_cents": order.paid_cents},
        )
        return order

    return run_in_transaction(_op, immediate=True)


def update_item_status(item_id: int, status: str, tenant_id: int, user_id: int | None = None) -> OrderItem:
    """
    Advance an item through the kitchen flow (forward only, skipping allowed).
    Requesting the current status is a no-op.
    """
    target = (status or "").strip().upper()
    if target == ITEM_STATUS_VOID:
        raise ValidationError("Items are voided through the void operation, with a reason")
    if target not in KITCHEN_FLOW:
        raise ValidationError("Invalid item status", details={"allowed": list(KITCHEN_FLOW)})

    def _op() -> OrderItem:
        item = get_scoped(OrderItem, item_id, tenant_id, label="Order item", lock=True)
        if item.status == ITEM_STATUS_VOID:
            raise ConflictError("Item is void")
        if item.order.status == ORDER_STATUS_CANCELLED:
            raise ConflictError("Order is cancelled")
        if item.status == target:
            return item
        if KITCHEN_FLOW.index(target) < KITCHEN_FLOW.index(item.status):
            raise ConflictError(f"Cannot move item from {item.status} back to {target}")

        item.status = target
        _refresh_kitchen_status(item.order)
        return item

    return run_in_transaction(_op)


# =============================================================================
# DISCOUNTS
# =============================================================================

def apply_discount(
    order_id: str,
    discount: dict,
    tenant_id: int,
    user_id: int | None = None,
    audit_context: AuditContext | None = None,
) -> Order:
    """
    Apply (or replace) an order-level discount.

    Not allowed once the order is fully paid, closed or cancelled. The
    authorizing user must hold orders:discount.
    """
    def _op() -> Order:
        order = get_scoped(Order, order_id, tenant_id, label="Order", lock=True)
        if order.status in TERMINAL_ORDER_STATUSES:
            raise ConflictError(f"Cannot discount a {order.status} order")
        if order.is_fully_paid:
            raise ConflictError("Cannot discount a fully paid order")

        payload = dict(discount or {})
        payload.setdefault("authorized_by_user_id", user_id)
        _set_discount(order, payload, tenant_id)
        recompute_totals(order)

        audit_service.log(
            tenant_id,
            "ORDER_DISCOUNT_APPLIED",
            "order",
            order.id,
            audit_context or AuditContext(user_id=user_id),
            {
                "type": order.discount_type,
                "value": order.discount_value,
                "reason": order.discount_reason,
                "discount_cents": order.discount_cents,
                "authorized_by_user_id": order.discount_authorized_by_user_id,
            },
        )
        return order

    return run_in_transaction(_op, immediate=True)


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: str, tenant_id: int) -> Order:
    return get_scoped(Order, order_id, tenant_id, label="Order")


def get_open_order_for_table(table, tenant_id: int) -> Order | None:
    """Active (not CLOSED/CANCELLED) order seated at table, if any."""
    if table is None or not table.current_order_id:
        return None
    order = find_scoped(Order, table.current_order_id, tenant_id)
    if order is None or order.status not in ACTIVE_ORDER_STATUSES:
        return None
    return order


def list_active_orders(tenant_id: int, business_date: date | None = None) -> list[Order]:
    query = db.session.query(Order).filter(
        Order.tenant_id == tenant_id,
        Order.status.in_(ACTIVE_ORDER_STATUSES),
    )
    if business_date is not None:
        query = query.filter(Order.business_date == business_date)
    return query.order_by(Order.business_date.asc(), Order.order_number.asc()).all()


# =============================================================================
# TOTALS AND STATUS (shared with payment and correction services)
# =============================================================================

def recompute_totals(order: Order) -> Order:
    """Re-derive subtotal, discount, total, kitchen status and payment status."""
    subtotal = sum(item.line_total_cents for item in order.items if item.status != ITEM_STATUS_VOID)
    discount_cents = _discount_amount(order.discount_type, order.discount_value, subtotal)

    order.subtotal_cents = subtotal
    order.discount_cents = discount_cents
    order.total_cents = max(subtotal - discount_cents, 0)

    _refresh_kitchen_status(order)
    refresh_payment_status(order)
    return order


def refresh_payment_status(order: Order) -> Order:
    """
    paid_cents = sum of COMPLETED payments; status follows unless terminal.
    """
    order.paid_cents = sum(p.amount_cents for p in order.payments if p.status == "COMPLETED")

    if order.status in TERMINAL_ORDER_STATUSES:
        return order

    if order.paid_cents <= 0:
        order.status = ORDER_STATUS_OPEN
    elif order.paid_cents >= order.total_cents:
        order.status = ORDER_STATUS_PAID
    else:
        order.status = ORDER_STATUS_PARTIALLY_PAID
    return order


def close(order: Order) -> Order:
    order.status = ORDER_STATUS_CLOSED
    order.closed_at = utcnow()
    release_table(order)
    return order


def release_table(order: Order) -> None:
    """Free the order's table if it is still the one seated there."""
    if order.table_id is None:
        return
    table = lock_for_update(
        db.session.query(DiningTable).filter_by(id=order.table_id, tenant_id=order.tenant_id)
    ).first()
    if table is not None and table.current_order_id == order.id:
        table.status = TABLE_STATUS_FREE
        table.current_order_id = None
        table.server_id = None


def _occupy_table(table: DiningTable, order: Order) -> None:
    table.status = TABLE_STATUS_OCCUPIED
    table.current_order_id = order.id
    table.server_id = order.server_id


def _refresh_kitchen_status(order: Order) -> None:
    live = [item.status for item in order.items if item.status != ITEM_STATUS_VOID]
    if live:
        order.kitchen_status = min(live, key=KITCHEN_FLOW.index)


# =============================================================================
# ITEM BUILDING
# =============================================================================

def build_items(tenant_id: int, items) -> list[OrderItem]:
    """
    Validate item input and build priced, unsaved OrderItem rows.

    Everything the client sends is an id; prices, names and recipes are
    read from the tenant's catalog.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required")
    if len(items) > MAX_ITEMS_PER_REQUEST:
        raise ValidationError(f"At most {MAX_ITEMS_PER_REQUEST} items per request")

    parsed = [_parse_item(raw, index) for index, raw in enumerate(items)]

    product_ids = {entry["product_id"] for entry in parsed}
    products = {
        p.id: p
        for p in db.session.query(Product).filter(
            Product.id.in_(product_ids),
            Product.tenant_id == tenant_id,
            Product.is_active.is_(True),
        )
    }
    missing = sorted(product_ids - set(products))
    if missing:
        raise ValidationError("Product not found or inactive", details={"product_ids": missing})

    modifier_ids = {mid for entry in parsed for mid in entry["modifier_ids"]}
    options = {}
    if modifier_ids:
        options = {
            o.id: o
            for o in db.session.query(ModifierOption).filter(
                ModifierOption.id.in_(modifier_ids),
                ModifierOption.tenant_id == tenant_id,
                ModifierOption.is_active.is_(True),
            )
        }

    built = []
    for entry in parsed:
        product = products[entry["product_id"]]
        chosen = _resolve_modifiers(product, entry["modifier_ids"], options)
        removed = _resolve_removed_ingredients(product, entry["removed_ingredient_ids"])

        item = OrderItem(
            tenant_id=tenant_id,
            product_id=product.id,
            product_name=product.name,
            quantity=entry["quantity"],
            unit_price_cents=product.price_cents,
            modifiers_cents=sum(option.price_cents for option in chosen),
            notes=_build_notes(entry["notes"], removed),
            removed_ingredient_ids=[ingredient.id for ingredient in removed] or None,
            status=ITEM_STATUS_PENDING,
            created_at=utcnow(),
        )
        for option in chosen:
            item.modifiers.append(OrderItemModifier(
                modifier_option_id=option.id,
                name=option.name,
                price_cents=option.price_cents,
            ))
        built.append(item)

    return built


def _parse_item(raw, index: int) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object")

    product_id = _positive_int(raw.get("product_id"), f"items[{index}].product_id")
    quantity = _positive_int(raw.get("quantity"), f"items[{index}].quantity")
    if quantity > MAX_ITEM_QUANTITY:
        raise ValidationError(f"items[{index}].quantity cannot exceed {MAX_ITEM_QUANTITY}")

    notes = raw.get("notes")
    if notes is not None:
        if not isinstance(notes, str):
            raise ValidationError(f"items[{index}].notes must be a string")
        notes = notes.strip()[:MAX_NOTES_LENGTH] or None

    modifier_ids = []
    for position, modifier in enumerate(raw.get("modifiers") or raw.get("modifier_ids") or []):
        value = modifier.get("id") if isinstance(modifier, dict) else modifier
        modifier_ids.append(_positive_int(value, f"items[{index}].modifiers[{position}]"))

    removed_ids = [
        _positive_int(value, f"items[{index}].removed_ingredient_ids[{position}]")
        for position, value in enumerate(raw.get("removed_ingredient_ids") or [])
    ]

    return {
        "product_id": product_id,
        "quantity": quantity,
        "notes": notes,
        "modifier_ids": modifier_ids,
        "removed_ingredient_ids": removed_ids,
    }


def _resolve_modifiers(product: Product, modifier_ids: list[int], options: dict) -> list[ModifierOption]:
    allowed_groups = {group.id for group in product.modifier_groups if group.is_active}
    chosen = []
    for modifier_id in modifier_ids:
        option = options.get(modifier_id)
        if option is None or option.modifier_group_id not in allowed_groups:
            raise ValidationError(
                "Modifier is not available for this product",
                details={"product_id": product.id, "modifier_id": modifier_id},
            )
        chosen.append(option)
    return chosen


def _resolve_removed_ingredients(product: Product, removed_ids: list[int]) -> list[Ingredient]:
    recipe = {line.ingredient_id: line.ingredient for line in product.ingredients}
    removed = []
    for ingredient_id in dict.fromkeys(removed_ids):
        if ingredient_id not in recipe:
            raise ValidationError(
                "Removed ingredient is not part of this product's recipe",
                details={"product_id": product.id, "ingredient_id": ingredient_id},
            )
        removed.append(recipe[ingredient_id])
    return removed


def _build_notes(notes: str | None, removed: list[Ingredient]) -> str | None:
    if not removed:
        return notes
    without = f"(WITHOUT: {', '.join(ingredient.name for ingredient in removed)})"
    return f"{notes} {without}" if notes else without


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _positive_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be a positive integer")
    if value <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return value


def _normalize_channel(channel: str | None, table_id: int | None) -> str:
    if channel is None or channel == "":
        return "DINE_IN" if table_id is not None else "TAKEAWAY"
    value = str(channel).strip().upper()
    if value not in CHANNELS:
        raise ValidationError("Invalid channel", details={"allowed": list(CHANNELS)})
    return value


def _require_active_user(user_id: int | None, tenant_id: int, *, label: str = "User") -> User:
    user = get_scoped(User, user_id, tenant_id, label=label)
    if not user.is_active:
        raise NotFoundError(label)
    return user


def _set_discount(order: Order, discount: dict, tenant_id: int) -> None:
    if not isinstance(discount, dict):
        raise ValidationError("discount must be an object")

    discount_type = DISCOUNT_TYPE_ALIASES.get(str(discount.get("type") or "").strip().upper())
    if discount_type is None:
        raise ValidationError("discount.type must be AMOUNT or PERCENTAGE")

    value = discount.get("value")
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError("discount.value must be a positive integer")
    if discount_type == DISCOUNT_TYPE_PERCENTAGE and value > 100:
        raise ValidationError("discount.value cannot exceed 100 percent")

    reason = str(discount.get("reason") or "OTHER").strip().upper()
    if reason not in DISCOUNT_REASONS:
        raise ValidationError("Invalid discount reason", details={"allowed": list(DISCOUNT_REASONS)})

    authorizer_id = discount.get("authorized_by_user_id")
    if authorizer_id is not None:
        authorizer = _require_active_user(authorizer_id, tenant_id, label="Authorizing user")
        permissions.require(authorizer, "orders", "discount")

    notes = discount.get("notes")
    order.discount_type = discount_type
    order.discount_value = value
    order.discount_reason = reason
    order.discount_notes = str(notes).strip()[:255] if notes else None
    order.discount_authorized_by_user_id = authorizer_id


def _discount_amount(discount_type: str | None, value: int | None, subtotal: int) -> int:
    if not discount_type or not value or subtotal <= 0:
        return 0
    if discount_type == DISCOUNT_TYPE_PERCENTAGE:
        amount = (subtotal * value + 50) // 100
    else:
        amount = value
    return min(amount, subtotal)

from __future__ import annotations

from ..extensions import db
from comanda.time_utils import to_utc_z, utcnow


# Financial lifecycle of an order
ORDER_STATUS_OPEN = "OPEN"
ORDER_STATUS_PARTIALLY_PAID = "PARTIALLY_PAID"
ORDER_STATUS_PAID = "PAID"
ORDER_STATUS_CLOSED = "CLOSED"
ORDER_STATUS_CANCELLED = "CANCELLED"

ACTIVE_ORDER_STATUSES = (ORDER_STATUS_OPEN, ORDER_STATUS_PARTIALLY_PAID, ORDER_STATUS_PAID)
TERMINAL_ORDER_STATUSES = (ORDER_STATUS_CLOSED, ORDER_STATUS_CANCELLED)

# Kitchen flow, tracked per item
ITEM_STATUS_PENDING = "PENDING"
ITEM_STATUS_COOKING = "COOKING"
ITEM_STATUS_READY = "READY"
ITEM_STATUS_SERVED = "SERVED"
ITEM_STATUS_VOID = "VOID"

KITCHEN_FLOW = (ITEM_STATUS_PENDING, ITEM_STATUS_COOKING, ITEM_STATUS_READY, ITEM_STATUS_SERVED)

CHANNELS = ("DINE_IN", "TAKEAWAY", "DELIVERY", "ONLINE")

TABLE_STATUS_FREE = "FREE"
TABLE_STATUS_OCCUPIED = "OCCUPIED"


class DiningTable(db.Model):
    """
    Physical table on the floor.

    current_order_id points at the open order seated there (if any). It is
    a plain reference, not a foreign key, to keep the orders/tables schema
    acyclic.
    """
    __tablename__ = "dining_tables"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_dining_tables_tenant_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=TABLE_STATUS_FREE, index=True)
    current_order_id = db.Column(db.String(36), nullable=True, index=True)
    server_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "status": self.status,
            "current_order_id": self.current_order_id,
            "server_id": self.server_id,
        }


class OrderSequence(db.Model):
    """
    Per-(tenant, business_date) order counter.

    CONCURRENCY: Only ever mutated by a single atomic upsert-increment
    statement. The unique constraint is the conflict target of that upsert
    and also the last line of defence against duplicate numbers.
    """
    __tablename__ = "order_sequences"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "business_date", name="uq_order_sequences_tenant_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    business_date = db.Column(db.Date, nullable=False)
    current_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)


class Order(db.Model):
    """
    Order aggregate root.

    IDENTITY: id is an opaque UUID; order_number is the human-facing
    counter, unique within (tenant_id, business_date). The two are
    allocated independently.

    TOTALS: subtotal_cents and total_cents are derived from non-void items
    and the discount. They are only ever written by recomputation, never
    set directly from client input.

    LIFECYCLE (financial):
    - OPEN -> PARTIALLY_PAID -> PAID -> CLOSED
    - OPEN / PARTIALLY_PAID -> CANCELLED
    Orders are never deleted.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "business_date", "order_number", name="uq_orders_tenant_date_number"),
        db.Index("ix_orders_tenant_status", "tenant_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_number = db.Column(db.Integer, nullable=False)
    business_date = db.Column(db.Date, nullable=False, index=True)

    channel = db.Column(db.String(16), nullable=False, default="DINE_IN")
    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_OPEN)
    kitchen_status = db.Column(db.String(16), nullable=False, default=ITEM_STATUS_PENDING)

    table_id = db.Column(db.Integer, db.ForeignKey("dining_tables.id"), nullable=True, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True, index=True)
    server_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Money (cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)

    # Discount definition (re-applied on every recomputation)
    discount_type = db.Column(db.String(16), nullable=True)  # AMOUNT, PERCENTAGE
    discount_value = db.Column(db.Integer, nullable=True)  # cents for AMOUNT, whole percent for PERCENTAGE
    discount_reason = db.Column(db.String(32), nullable=True)
    discount_notes = db.Column(db.String(255), nullable=True)
    discount_authorized_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
    )
    payments = db.relationship(
        "Payment",
        backref="order",
        lazy=True,
        order_by="Payment.id",
    )
    table = db.relationship("DiningTable", foreign_keys=[table_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_due_cents(self) -> int:
        return self.total_cents - self.paid_cents

    @property
    def is_fully_paid(self) -> bool:
        """Money received covers the total (an untouched zero-total order is not 'paid')."""
        return self.paid_cents > 0 and self.paid_cents >= self.total_cents

    def to_dict(self, include_items: bool = True, include_payments: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "order_number": self.order_number,
            "business_date": self.business_date.isoformat() if self.business_date else None,
            "channel": self.channel,
            "status": self.status,
            "kitchen_status": self.kitchen_status,
            "table_id": self.table_id,
            "client_id": self.client_id,
            "server_id": self.server_id,
            "subtotal_cents": self.subtotal_cents,
            "discount": {
                "type": self.discount_type,
                "value": self.discount_value,
                "amount_cents": self.discount_cents,
                "reason": self.discount_reason,
                "notes": self.discount_notes,
                "authorized_by_user_id": self.discount_authorized_by_user_id,
            } if self.discount_type else None,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "balance_due_cents": self.balance_due_cents,
            "created_at": to_utc_z(self.created_at),
            "closed_at": to_utc_z(self.closed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_payments:
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class OrderItem(db.Model):
    """
    One line of an order.

    SNAPSHOT: unit_price_cents and modifiers_cents are copied from the
    catalog when the line is created and never change afterwards.

    VOID: status VOID freezes the line. Its stock consumption is reversed
    exactly once (stock_reversed_at is stamped when that happens) and it
    no longer counts towards the order total.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)  # as sold

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    modifiers_cents = db.Column(db.Integer, nullable=False, default=0)  # per unit
    notes = db.Column(db.String(500), nullable=True)
    removed_ingredient_ids = db.Column(db.JSON, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ITEM_STATUS_PENDING, index=True)

    void_reason = db.Column(db.String(32), nullable=True)
    void_notes = db.Column(db.String(500), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    stock_reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product")
    modifiers = db.relationship("OrderItemModifier", backref="order_item", lazy=True)
    consumptions = db.relationship("OrderItemConsumption", backref="order_item", lazy=True)

    @property
    def line_total_cents(self) -> int:
        return (self.unit_price_cents + (self.modifiers_cents or 0)) * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "modifiers_cents": self.modifiers_cents,
            "line_total_cents": self.line_total_cents,
            "notes": self.notes,
            "removed_ingredient_ids": self.removed_ingredient_ids or [],
            "modifiers": [m.to_dict() for m in self.modifiers],
            "status": self.status,
            "void_reason": self.void_reason,
            "void_notes": self.void_notes,
            "voided_at": to_utc_z(self.voided_at),
            "voided_by_user_id": self.voided_by_user_id,
        }


class OrderItemModifier(db.Model):
    """Modifier chosen for an item, with the price charged at the time."""
    __tablename__ = "order_item_modifiers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    modifier_option_id = db.Column(db.Integer, db.ForeignKey("modifier_options.id"), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "modifier_option_id": self.modifier_option_id,
            "name": self.name,
            "price_cents": self.price_cents,
        }


class OrderItemConsumption(db.Model):
    """
    Ingredient quantity actually deducted for one order item.

    WHY: Voids restore these rows verbatim. Recomputing from the current
    recipe would be wrong once the recipe has been edited.
    """
    __tablename__ = "order_item_consumptions"
    __table_args__ = (
        db.UniqueConstraint("order_item_id", "ingredient_id", name="uq_item_consumptions_item_ingredient"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    ingredient_id = db.Column(db.Integer, db.ForeignKey("ingredients.id"), nullable=False)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)


class Payment(db.Model):
    """
    Money received against an order.

    method is the tender code exactly as the terminal sent it (tenants
    define their own); method_group is the canonical bucket used for
    reporting and cash reconciliation.

    shift_id is resolved server-side from the cashier's open shift for
    CASH payments, never accepted from the client.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_shift_group", "shift_id", "method_group"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    method = db.Column(db.String(32), nullable=False)
    method_group = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)  # COMPLETED, VOIDED

    shift_id = db.Column(db.Integer, db.ForeignKey("cash_shifts.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    voided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "method": self.method,
            "method_group": self.method_group,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "shift_id": self.shift_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "voided_at": to_utc_z(self.voided_at),
            "void_reason": self.void_reason,
        }

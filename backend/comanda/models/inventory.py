from __future__ import annotations

from ..extensions import db
from comanda.time_utils import to_utc_z, utcnow


class Ingredient(db.Model):
    """
    Raw material tracked in stock.

    POLICY: stock is signed. Sales are never blocked on inventory, so a
    negative value means "sold before the purchase was entered" and shows
    up in the low-stock report instead of failing the order.
    """
    __tablename__ = "ingredients"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_ingredients_tenant_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    name = db.Column(db.String(128), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="unit")  # kg, l, unit...
    stock = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    min_stock = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "unit": self.unit,
            "stock": str(self.stock),
            "min_stock": str(self.min_stock),
            "cost_cents": self.cost_cents,
            "is_active": self.is_active,
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger.

    TYPES:
    - SALE: recipe consumption when an order item is created (negative)
    - VOID: exact reversal of a SALE when the item is voided (positive)
    - PURCHASE: purchase order receipt (positive)
    - ADJUSTMENT: manual correction (either sign)
    - WASTE: spoilage or breakage (negative)

    quantity is the signed delta applied to Ingredient.stock.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_ingredient_occurred", "ingredient_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    ingredient_id = db.Column(db.Integer, db.ForeignKey("ingredients.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=True, index=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    ingredient = db.relationship("Ingredient", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ingredient_id": self.ingredient_id,
            "type": self.type,
            "quantity": str(self.quantity),
            "reason": self.reason,
            "order_item_id": self.order_item_id,
            "purchase_order_id": self.purchase_order_id,
            "user_id": self.user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "phone": self.phone, "is_active": self.is_active}


class PurchaseOrder(db.Model):
    """
    Purchase from a supplier.

    LIFECYCLE: PENDING -> ORDERED -> RECEIVED, or CANCELLED before receipt.
    Receiving posts PURCHASE stock movements exactly once.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "purchase_number", name="uq_purchase_orders_tenant_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    purchase_number = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    notes = db.Column(db.Text, nullable=True)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    supplier = db.relationship("Supplier")
    lines = db.relationship("PurchaseOrderLine", backref="purchase_order", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "supplier_id": self.supplier_id,
            "purchase_number": self.purchase_number,
            "status": self.status,
            "notes": self.notes,
            "total_cents": self.total_cents,
            "created_at": to_utc_z(self.created_at),
            "received_at": to_utc_z(self.received_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class PurchaseOrderLine(db.Model):
    __tablename__ = "purchase_order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    ingredient_id = db.Column(db.Integer, db.ForeignKey("ingredients.id"), nullable=False)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    ingredient = db.relationship("Ingredient")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ingredient_id": self.ingredient_id,
            "quantity": str(self.quantity),
            "unit_cost_cents": self.unit_cost_cents,
        }

from __future__ import annotations

from ..extensions import db
from comanda.time_utils import to_utc_z


product_modifier_groups = db.Table(
    "product_modifier_groups",
    db.Column("product_id", db.Integer, db.ForeignKey("products.id"), primary_key=True),
    db.Column("modifier_group_id", db.Integer, db.ForeignKey("modifier_groups.id"), primary_key=True),
)


class Product(db.Model):
    """
    Sellable menu item.

    WHY: Orders snapshot price_cents at add time, so editing a price here
    never rewrites historical orders.

    STOCK: When is_stockable is set, each unit sold consumes the recipe in
    product_ingredients.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_products_tenant_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    is_stockable = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    ingredients = db.relationship(
        "ProductIngredient",
        backref="product",
        lazy=True,
        cascade="all, delete-orphan",
    )
    modifier_groups = db.relationship(
        "ModifierGroup",
        secondary=product_modifier_groups,
        backref=db.backref("products", lazy=True),
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "is_stockable": self.is_stockable,
            "created_at": to_utc_z(self.created_at),
        }


class ProductIngredient(db.Model):
    """Recipe line: quantity of one ingredient consumed per unit of product."""
    __tablename__ = "product_ingredients"
    __table_args__ = (
        db.UniqueConstraint("product_id", "ingredient_id", name="uq_product_ingredients_product_ingredient"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    ingredient_id = db.Column(db.Integer, db.ForeignKey("ingredients.id"), nullable=False, index=True)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)

    ingredient = db.relationship("Ingredient")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "ingredient_id": self.ingredient_id,
            "quantity": str(self.quantity),
        }


class ModifierGroup(db.Model):
    """Named set of options ("Extras", "Cooking point") linked to products."""
    __tablename__ = "modifier_groups"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    options = db.relationship("ModifierOption", backref="group", lazy=True)


class ModifierOption(db.Model):
    """
    Priced option within a modifier group.

    STOCK: An option may consume an ingredient of its own ("extra cheese"),
    deducted on top of the product recipe.
    """
    __tablename__ = "modifier_options"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    modifier_group_id = db.Column(db.Integer, db.ForeignKey("modifier_groups.id"), nullable=False, index=True)

    name = db.Column(db.String(128), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    ingredient_id = db.Column(db.Integer, db.ForeignKey("ingredients.id"), nullable=True)
    quantity_used = db.Column(db.Numeric(12, 3), nullable=True)

    ingredient = db.relationship("Ingredient")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "modifier_group_id": self.modifier_group_id,
            "name": self.name,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "ingredient_id": self.ingredient_id,
            "quantity_used": str(self.quantity_used) if self.quantity_used is not None else None,
        }

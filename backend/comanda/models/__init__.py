from .tenancy import Tenant
from .auth import User, SessionToken
from .catalog import Product, ProductIngredient, ModifierGroup, ModifierOption, product_modifier_groups
from .inventory import Ingredient, StockMovement, Supplier, PurchaseOrder, PurchaseOrderLine
from .customers import Client
from .orders import (
    DiningTable, OrderSequence, Order, OrderItem, OrderItemModifier, OrderItemConsumption, Payment,
)
from .registers import CashShift
from .audit import AuditEvent

__all__ = [
    'Tenant',
    'User', 'SessionToken',
    'Product', 'ProductIngredient', 'ModifierGroup', 'ModifierOption', 'product_modifier_groups',
    'Ingredient', 'StockMovement', 'Supplier', 'PurchaseOrder', 'PurchaseOrderLine',
    'Client',
    'DiningTable', 'OrderSequence', 'Order', 'OrderItem', 'OrderItemModifier', 'OrderItemConsumption',
    'Payment',
    'CashShift',
    'AuditEvent',
]

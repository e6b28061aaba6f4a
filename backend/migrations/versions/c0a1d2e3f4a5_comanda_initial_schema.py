"""comanda initial schema

Revision ID: c0a1d2e3f4a5
Revises:
Create Date: 2026-10-01 00:00:00.000000

Creates the restaurant POS schema from scratch:
- tenants, users, session_tokens: multi-tenant identity
- products, ingredients, recipes, modifiers: catalog and stock
- dining_tables, order_sequences, orders, order_items, payments: order lifecycle
- cash_shifts: cashier accountability
- suppliers, purchase_orders: stock replenishment
- stock_movements, audit_events: append-only ledgers
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c0a1d2e3f4a5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # tenants / users / session_tokens
    # ============================================================================
    op.create_table(
        'tenants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tenants_code', 'tenants', ['code'], unique=True)
    op.create_index('ix_tenants_is_active', 'tenants', ['is_active'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'username', name='uq_users_tenant_username'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_tenant_id', 'users', ['tenant_id'])
    op.create_index('ix_users_username', 'users', ['username'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_tenant_id', 'session_tokens', ['tenant_id'])
    op.create_index('ix_session_tokens_expires_at', 'session_tokens', ['expires_at'])
    op.create_index('ix_session_tokens_is_revoked', 'session_tokens', ['is_revoked'])
    op.create_index('ix_session_tokens_user_active', 'session_tokens', ['user_id', 'is_revoked'])

    # ============================================================================
    # catalog and stock
    # ============================================================================
    # WHY Numeric(12, 3): recipes consume fractions of a kilo or litre
    op.create_table(
        'ingredients',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=False),
        sa.Column('stock', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('min_stock', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'name', name='uq_ingredients_tenant_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_ingredients_tenant_id', 'ingredients', ['tenant_id'])

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('is_stockable', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'name', name='uq_products_tenant_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_tenant_id', 'products', ['tenant_id'])
    op.create_index('ix_products_is_active', 'products', ['is_active'])

    op.create_table(
        'product_ingredients',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('ingredient_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.ForeignKeyConstraint(['ingredient_id'], ['ingredients.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'ingredient_id', name='uq_product_ingredients_product_ingredient'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_ingredients_product_id', 'product_ingredients', ['product_id'])
    op.create_index('ix_product_ingredients_ingredient_id', 'product_ingredients', ['ingredient_id'])

    op.create_table(
        'modifier_groups',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_modifier_groups_tenant_id', 'modifier_groups', ['tenant_id'])

    op.create_table(
        'product_modifier_groups',
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('modifier_group_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['modifier_group_id'], ['modifier_groups.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('product_id', 'modifier_group_id')
    )

    op.create_table(
        'modifier_options',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('modifier_group_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('ingredient_id', sa.Integer(), nullable=True),
        sa.Column('quantity_used', sa.Numeric(12, 3), nullable=True),
        sa.ForeignKeyConstraint(['ingredient_id'], ['ingredients.id'], ),
        sa.ForeignKeyConstraint(['modifier_group_id'], ['modifier_groups.id'], ),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_modifier_options_tenant_id', 'modifier_options', ['tenant_id'])
    op.create_index('ix_modifier_options_modifier_group_id', 'modifier_options', ['modifier_group_id'])

    op.create_table(
        'suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_suppliers_tenant_id', 'suppliers', ['tenant_id'])

    op.create_table(
        'clients',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_clients_tenant_id', 'clients', ['tenant_id'])
    op.create_index('ix_clients_phone', 'clients', ['phone'])

    # ============================================================================
    # floor, sequences and shifts
    # ============================================================================
    # WHY no FK on current_order_id: orders already reference dining_tables
    op.create_table(
        'dining_tables',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='FREE'),
        sa.Column('current_order_id', sa.String(length=36), nullable=True),
        sa.Column('server_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['server_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'name', name='uq_dining_tables_tenant_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_dining_tables_tenant_id', 'dining_tables', ['tenant_id'])
    op.create_index('ix_dining_tables_status', 'dining_tables', ['status'])
    op.create_index('ix_dining_tables_current_order_id', 'dining_tables', ['current_order_id'])

    # Conflict target of the atomic upsert-increment
    op.create_table(
        'order_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('current_value', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'business_date', name='uq_order_sequences_tenant_date'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'cash_shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('closed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('start_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('end_amount_cents', sa.Integer(), nullable=True),
        sa.Column('expected_cash_cents', sa.Integer(), nullable=True),
        sa.Column('difference_cents', sa.Integer(), nullable=True),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['closed_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_shifts_tenant_id', 'cash_shifts', ['tenant_id'])
    op.create_index('ix_cash_shifts_user_id', 'cash_shifts', ['user_id'])
    op.create_index('ix_cash_shifts_business_date', 'cash_shifts', ['business_date'])
    op.create_index('ix_cash_shifts_status', 'cash_shifts', ['status'])
    op.create_index('ix_cash_shifts_tenant_user_status', 'cash_shifts', ['tenant_id', 'user_id', 'status'])

    # ============================================================================
    # orders
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.Integer(), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('channel', sa.String(length=16), nullable=False, server_default='DINE_IN'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('kitchen_status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('table_id', sa.Integer(), nullable=True),
        sa.Column('client_id', sa.Integer(), nullable=True),
        sa.Column('server_id', sa.Integer(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_type', sa.String(length=16), nullable=True),
        sa.Column('discount_value', sa.Integer(), nullable=True),
        sa.Column('discount_reason', sa.String(length=32), nullable=True),
        sa.Column('discount_notes', sa.String(length=255), nullable=True),
        sa.Column('discount_authorized_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['cancelled_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ),
        sa.ForeignKeyConstraint(['discount_authorized_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['server_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['table_id'], ['dining_tables.id'], ),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'business_date', 'order_number', name='uq_orders_tenant_date_number')
    )
    op.create_index('ix_orders_tenant_id', 'orders', ['tenant_id'])
    op.create_index('ix_orders_business_date', 'orders', ['business_date'])
    op.create_index('ix_orders_table_id', 'orders', ['table_id'])
    op.create_index('ix_orders_client_id', 'orders', ['client_id'])
    op.create_index('ix_orders_server_id', 'orders', ['server_id'])
    op.create_index('ix_orders_tenant_status', 'orders', ['tenant_id', 'status'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('modifiers_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('removed_ingredient_ids', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('void_reason', sa.String(length=32), nullable=True),
        sa.Column('void_notes', sa.String(length=500), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voided_by_user_id', sa.Integer(), nullable=True),
        sa.Column('stock_reversed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.ForeignKeyConstraint(['voided_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_tenant_id', 'order_items', ['tenant_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])
    op.create_index('ix_order_items_status', 'order_items', ['status'])

    op.create_table(
        'order_item_modifiers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_item_id', sa.Integer(), nullable=False),
        sa.Column('modifier_option_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['modifier_option_id'], ['modifier_options.id'], ),
        sa.ForeignKeyConstraint(['order_item_id'], ['order_items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_item_modifiers_order_item_id', 'order_item_modifiers', ['order_item_id'])

    # WHY: voids restore these rows verbatim, independent of later recipe edits
    op.create_table(
        'order_item_consumptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_item_id', sa.Integer(), nullable=False),
        sa.Column('ingredient_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.ForeignKeyConstraint(['ingredient_id'], ['ingredients.id'], ),
        sa.ForeignKeyConstraint(['order_item_id'], ['order_items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_item_id', 'ingredient_id', name='uq_item_consumptions_item_ingredient'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_item_consumptions_order_item_id', 'order_item_consumptions', ['order_item_id'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('method_group', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='COMPLETED'),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('voided_by_user_id', sa.Integer(), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('void_reason', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['cash_shifts.id'], ),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.ForeignKeyConstraint(['voided_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])
    op.create_index('ix_payments_tenant_id', 'payments', ['tenant_id'])
    op.create_index('ix_payments_method_group', 'payments', ['method_group'])
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_shift_id', 'payments', ['shift_id'])
    op.create_index('ix_payments_shift_group', 'payments', ['shift_id', 'method_group'])

    # ============================================================================
    # purchasing and ledgers
    # ============================================================================
    op.create_table(
        'purchase_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=False),
        sa.Column('purchase_number', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'purchase_number', name='uq_purchase_orders_tenant_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_purchase_orders_tenant_id', 'purchase_orders', ['tenant_id'])
    op.create_index('ix_purchase_orders_supplier_id', 'purchase_orders', ['supplier_id'])
    op.create_index('ix_purchase_orders_status', 'purchase_orders', ['status'])

    op.create_table(
        'purchase_order_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purchase_order_id', sa.Integer(), nullable=False),
        sa.Column('ingredient_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['ingredient_id'], ['ingredients.id'], ),
        sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_purchase_order_lines_purchase_order_id', 'purchase_order_lines', ['purchase_order_id'])

    # Append-only: quantity is the signed delta applied to ingredients.stock
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('ingredient_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('order_item_id', sa.Integer(), nullable=True),
        sa.Column('purchase_order_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['ingredient_id'], ['ingredients.id'], ),
        sa.ForeignKeyConstraint(['order_item_id'], ['order_items.id'], ),
        sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'], ),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_tenant_id', 'stock_movements', ['tenant_id'])
    op.create_index('ix_stock_movements_ingredient_id', 'stock_movements', ['ingredient_id'])
    op.create_index('ix_stock_movements_type', 'stock_movements', ['type'])
    op.create_index('ix_stock_movements_order_item_id', 'stock_movements', ['order_item_id'])
    op.create_index('ix_stock_movements_purchase_order_id', 'stock_movements', ['purchase_order_id'])
    op.create_index('ix_stock_movements_ingredient_occurred', 'stock_movements', ['ingredient_id', 'occurred_at'])

    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=False),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_events_user_id', 'audit_events', ['user_id'])
    op.create_index('ix_audit_events_action', 'audit_events', ['action'])
    op.create_index('ix_audit_events_tenant_occurred', 'audit_events', ['tenant_id', 'occurred_at'])
    op.create_index('ix_audit_events_entity', 'audit_events', ['entity_type', 'entity_id'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('audit_events')
    op.drop_table('stock_movements')
    op.drop_table('purchase_order_lines')
    op.drop_table('purchase_orders')
    op.drop_table('payments')
    op.drop_table('order_item_consumptions')
    op.drop_table('order_item_modifiers')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('cash_shifts')
    op.drop_table('order_sequences')
    op.drop_table('dining_tables')
    op.drop_table('clients')
    op.drop_table('suppliers')
    op.drop_table('modifier_options')
    op.drop_table('product_modifier_groups')
    op.drop_table('modifier_groups')
    op.drop_table('product_ingredients')
    op.drop_table('products')
    op.drop_table('ingredients')
    op.drop_table('session_tokens')
    op.drop_table('users')
    op.drop_table('tenants')

"""initial till schema

Revision ID: t0001_initial
Revises:
Create Date: 2026-03-14 00:00:00.000000

This migration creates the complete tillcore schema from scratch:
- companies, stores: tenancy roots
- users, session_tokens: staff and bearer sessions
- customers, products, product_variants, inventory: catalog and stock
- cash_shifts: drawer accountability (one OPEN shift per user/store)
- orders, order_items, order_sequences: sales, returns, voids, numbering
- payments: tenders against orders, with refund fields
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 't0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # Tenancy
    # ============================================================================
    op.create_table(
        'companies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_companies_is_active', 'companies', ['is_active'])

    op.create_table(
        'stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=False, server_default='UTC'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'name', name='uq_stores_company_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stores_company_id', 'stores', ['company_id'])

    # ============================================================================
    # Staff & sessions
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=True),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False, server_default='CASHIER'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_company_id', 'users', ['company_id'])
    op.create_index('ix_users_store_id', 'users', ['store_id'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=True),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_company_id', 'session_tokens', ['company_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)

    # ============================================================================
    # Customers & catalog
    # ============================================================================
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_customers_company_id', 'customers', ['company_id'])

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('tax_percent', sa.Numeric(6, 3), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_company_id', 'products', ['company_id'])
    op.create_index('ix_products_is_active', 'products', ['is_active'])

    op.create_table(
        'product_variants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('retail_price', sa.Numeric(14, 3), nullable=False),
        sa.Column('wholesale_price', sa.Numeric(14, 3), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'sku', name='uq_variants_product_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'])
    op.create_index('ix_product_variants_barcode', 'product_variants', ['barcode'])
    op.create_index('ix_product_variants_is_active', 'product_variants', ['is_active'])

    op.create_table(
        'inventory',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reorder_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('variant_id', 'store_id', name='uq_inventory_variant_store'),
        sa.CheckConstraint('quantity >= 0', name='ck_inventory_quantity_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_variant_id', 'inventory', ['variant_id'])
    op.create_index('ix_inventory_store_id', 'inventory', ['store_id'])

    # ============================================================================
    # Cash shifts
    # ============================================================================
    op.create_table(
        'cash_shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('opening_cash', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('closing_cash', sa.Numeric(14, 3), nullable=True),
        sa.Column('expected_cash', sa.Numeric(14, 3), nullable=True),
        sa.Column('difference', sa.Numeric(14, 3), nullable=True),
        sa.Column('opening_notes', sa.Text(), nullable=True),
        sa.Column('closing_notes', sa.Text(), nullable=True),
        sa.Column('closed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['closed_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_shifts_user_id', 'cash_shifts', ['user_id'])
    op.create_index('ix_cash_shifts_company_id', 'cash_shifts', ['company_id'])
    op.create_index('ix_cash_shifts_store_id', 'cash_shifts', ['store_id'])
    op.create_index('ix_cash_shifts_status', 'cash_shifts', ['status'])
    op.create_index('ix_cash_shifts_opened_at', 'cash_shifts', ['opened_at'])
    # At most one OPEN shift per (user, store); concurrent opens lose here
    op.create_index(
        'uq_cash_shifts_one_open_per_user_store',
        'cash_shifts',
        ['user_id', 'store_id'],
        unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    # ============================================================================
    # Orders
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('cashier_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('parent_order_id', sa.Integer(), nullable=True),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False, server_default='SALE'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('customer_type', sa.String(length=16), nullable=False, server_default='RETAIL'),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('subtotal', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('cancel_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('inventory_applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['cashier_id'], ['users.id']),
        sa.ForeignKeyConstraint(['shift_id'], ['cash_shifts.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['parent_order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['cancelled_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'order_number', name='uq_orders_store_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_company_id', 'orders', ['company_id'])
    op.create_index('ix_orders_store_id', 'orders', ['store_id'])
    op.create_index('ix_orders_cashier_id', 'orders', ['cashier_id'])
    op.create_index('ix_orders_shift_id', 'orders', ['shift_id'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_parent_order_id', 'orders', ['parent_order_id'])
    op.create_index('ix_orders_type', 'orders', ['type'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_store_status_created', 'orders', ['store_id', 'status', 'created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=False),
        sa.Column('original_item_id', sa.Integer(), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('variant_name', sa.String(length=255), nullable=True),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('unit_price', sa.Numeric(14, 3), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('tax_rate', sa.Numeric(6, 3), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('subtotal', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id']),
        sa.ForeignKeyConstraint(['original_item_id'], ['order_items.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_variant_id', 'order_items', ['variant_id'])
    op.create_index('ix_order_items_original_item_id', 'order_items', ['original_item_id'])

    op.create_table(
        'order_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('last_value', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'business_date', name='uq_order_sequences_store_date'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_sequences_store_id', 'order_sequences', ['store_id'])

    # ============================================================================
    # Payments
    # ============================================================================
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(14, 3), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='BHD'),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('provider', sa.String(length=16), nullable=False, server_default='INTERNAL'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='INITIATED'),
        sa.Column('provider_ref', sa.String(length=128), nullable=True),
        sa.Column('provider_data', sa.JSON(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('refund_amount', sa.Numeric(14, 3), nullable=True),
        sa.Column('refund_reason', sa.Text(), nullable=True),
        sa.Column('refund_ref', sa.String(length=128), nullable=True),
        sa.Column('refunded_by_user_id', sa.Integer(), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('succeeded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['shift_id'], ['cash_shifts.id']),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['refunded_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])
    op.create_index('ix_payments_company_id', 'payments', ['company_id'])
    op.create_index('ix_payments_store_id', 'payments', ['store_id'])
    op.create_index('ix_payments_shift_id', 'payments', ['shift_id'])
    op.create_index('ix_payments_created_by_user_id', 'payments', ['created_by_user_id'])
    op.create_index('ix_payments_method', 'payments', ['method'])
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_provider_ref', 'payments', ['provider_ref'])
    op.create_index('ix_payments_created_at', 'payments', ['created_at'])
    op.create_index('ix_payments_order_status', 'payments', ['order_id', 'status'])


def downgrade():
    op.drop_table('payments')
    op.drop_table('order_sequences')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_index('uq_cash_shifts_one_open_per_user_store', table_name='cash_shifts')
    op.drop_table('cash_shifts')
    op.drop_table('inventory')
    op.drop_table('product_variants')
    op.drop_table('products')
    op.drop_table('customers')
    op.drop_table('session_tokens')
    op.drop_table('users')
    op.drop_table('stores')
    op.drop_table('companies')

"""initial orders and cashback schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the order lifecycle and cashback ledger schema from scratch:
- customers / sellers: parties; customers carry the cached cashback balance
- products / cart_items: catalogue with stock counter, customer carts
- orders / order_items / discount_reasons / order_discounts: order aggregate
- cashback_transactions: append-only FIFO ledger (EARNED / USED / EXPIRED)

Every table carries the unified lifecycle columns (created/updated/deleted
timestamps plus actor ids); write-contended rows carry version_id.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def _lifecycle_columns():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('(CURRENT_TIMESTAMP)')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('(CURRENT_TIMESTAMP)')),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('updated_by', sa.Integer(), nullable=True),
        sa.Column('deleted_by', sa.Integer(), nullable=True),
    ]


def upgrade():
    # ============================================================================
    # customers / sellers
    # ============================================================================
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('first_name', sa.String(128), nullable=False),
        sa.Column('last_name', sa.String(128), nullable=False, server_default=''),
        sa.Column('phone', sa.String(32), nullable=False),
        sa.Column('address', sa.String(512), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('cashback_balance_cents', sa.BigInteger(), nullable=False, server_default=sa.text('0')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default=sa.text('1')),
        *_lifecycle_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('phone', name='uq_customers_phone'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('customers', schema=None) as batch_op:
        batch_op.create_index('ix_customers_active', ['is_active'], unique=False)
        batch_op.create_index('ix_customers_deleted_at', ['deleted_at'], unique=False)

    op.create_table(
        'sellers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(32), nullable=True),
        sa.Column('role', sa.String(16), nullable=False, server_default='SELLER'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_lifecycle_columns(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('sellers', schema=None) as batch_op:
        batch_op.create_index('ix_sellers_deleted_at', ['deleted_at'], unique=False)

    # ============================================================================
    # products / cart_items
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price_cents', sa.BigInteger(), nullable=False),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default=sa.text('1')),
        *_lifecycle_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_products_stock_non_negative'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_active_name', ['is_active', 'name'], unique=False)
        batch_op.create_index('ix_products_deleted_at', ['deleted_at'], unique=False)

    op.create_table(
        'cart_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.Column('added_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('(CURRENT_TIMESTAMP)')),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('cart_items', schema=None) as batch_op:
        batch_op.create_index('ix_cart_items_customer_id', ['customer_id'], unique=False)
        batch_op.create_index('ix_cart_items_customer_active', ['customer_id', 'deleted_at'], unique=False)
        batch_op.create_index('ix_cart_items_deleted_at', ['deleted_at'], unique=False)

    # ============================================================================
    # orders / order_items
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(64), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('seller_id', sa.Integer(), nullable=True),
        sa.Column('ordered_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='PENDING'),
        sa.Column('gross_total_cents', sa.BigInteger(), nullable=False, server_default=sa.text('0')),
        sa.Column('discount_total_cents', sa.BigInteger(), nullable=False, server_default=sa.text('0')),
        sa.Column('cashback_used_cents', sa.BigInteger(), nullable=False, server_default=sa.text('0')),
        sa.Column('delivery_fee_cents', sa.BigInteger(), nullable=False, server_default=sa.text('0')),
        sa.Column('final_price_cents', sa.BigInteger(), nullable=False, server_default=sa.text('0')),
        sa.Column('payment_method', sa.String(16), nullable=False, server_default='CASH'),
        sa.Column('payment_reference', sa.String(128), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivery_type', sa.String(16), nullable=False, server_default='PICKUP'),
        sa.Column('delivery_address', sa.String(512), nullable=True),
        sa.Column('customer_notes', sa.String(1000), nullable=True),
        sa.Column('seller_notes', sa.String(1000), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.String(255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default=sa.text('1')),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['seller_id'], ['sellers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index('ix_orders_customer_id', ['customer_id'], unique=False)
        batch_op.create_index('ix_orders_seller_id', ['seller_id'], unique=False)
        batch_op.create_index('ix_orders_status', ['status'], unique=False)
        batch_op.create_index('ix_orders_customer_status', ['customer_id', 'status'], unique=False)
        batch_op.create_index('ix_orders_status_ordered', ['status', 'ordered_at'], unique=False)
        batch_op.create_index('ix_orders_deleted_at', ['deleted_at'], unique=False)

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('discount_cents', sa.BigInteger(), nullable=False, server_default=sa.text('0')),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('discount_cents >= 0', name='ck_order_items_discount_non_negative'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('order_items', schema=None) as batch_op:
        batch_op.create_index('ix_order_items_order_id', ['order_id'], unique=False)
        batch_op.create_index('ix_order_items_deleted_at', ['deleted_at'], unique=False)

    # ============================================================================
    # discount_reasons / order_discounts
    # ============================================================================
    op.create_table(
        'discount_reasons',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(128), nullable=False),
        sa.Column('description', sa.String(512), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('max_discount_bps', sa.Integer(), nullable=True),
        sa.Column('max_discount_cents', sa.BigInteger(), nullable=True),
        sa.Column('is_seller_only', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        *_lifecycle_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_discount_reasons_name'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('discount_reasons', schema=None) as batch_op:
        batch_op.create_index('ix_discount_reasons_deleted_at', ['deleted_at'], unique=False)

    op.create_table(
        'order_discounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('discount_reason_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('applied_by_seller_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(512), nullable=True),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('(CURRENT_TIMESTAMP)')),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['discount_reason_id'], ['discount_reasons.id']),
        sa.ForeignKeyConstraint(['applied_by_seller_id'], ['sellers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount_cents > 0', name='ck_order_discounts_amount_positive'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('order_discounts', schema=None) as batch_op:
        batch_op.create_index('ix_order_discounts_order_id', ['order_id'], unique=False)
        batch_op.create_index('ix_order_discounts_discount_reason_id', ['discount_reason_id'], unique=False)
        batch_op.create_index('ix_order_discounts_deleted_at', ['deleted_at'], unique=False)

    # ============================================================================
    # cashback_transactions: append-only FIFO ledger
    # ============================================================================
    op.create_table(
        'cashback_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_number', sa.String(64), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('source_transaction_id', sa.Integer(), nullable=True),
        sa.Column('kind', sa.String(16), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('remaining_cents', sa.BigInteger(), nullable=False, server_default=sa.text('0')),
        sa.Column('earned_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('description', sa.String(255), nullable=True),
        sa.Column('idempotency_key', sa.String(128), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default=sa.text('1')),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['source_transaction_id'], ['cashback_transactions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_number', name='uq_cashback_txn_number'),
        sa.UniqueConstraint('idempotency_key', name='uq_cashback_txn_idempotency_key'),
        sa.CheckConstraint('remaining_cents >= 0', name='ck_cashback_transactions_remaining_non_negative'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('cashback_transactions', schema=None) as batch_op:
        batch_op.create_index('ix_cashback_txn_customer_kind_expires', ['customer_id', 'kind', 'expires_at'], unique=False)
        batch_op.create_index('ix_cashback_transactions_customer_id', ['customer_id'], unique=False)
        batch_op.create_index('ix_cashback_transactions_order_id', ['order_id'], unique=False)
        batch_op.create_index('ix_cashback_transactions_source_transaction_id', ['source_transaction_id'], unique=False)
        batch_op.create_index('ix_cashback_transactions_kind', ['kind'], unique=False)
        batch_op.create_index('ix_cashback_transactions_expires_at', ['expires_at'], unique=False)
        batch_op.create_index('ix_cashback_transactions_deleted_at', ['deleted_at'], unique=False)


def downgrade():
    op.drop_table('cashback_transactions')
    op.drop_table('order_discounts')
    op.drop_table('discount_reasons')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('cart_items')
    op.drop_table('products')
    op.drop_table('sellers')
    op.drop_table('customers')

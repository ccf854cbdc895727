"""Initial schema: catalog, users, sessions, sales and stock ledger audit tables

Revision ID: 20251017_initial
Revises:
Create Date: 2025-10-17

This migration creates:
1. categories, products (current_stock + optimistic version_id)
2. users, session_tokens
3. sales, sale_lines (previous/new stock per line)
4. stock_adjustments (signed quantity_delta), stock_counts (previous_stock)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20251017_initial'
down_revision = None
branch_labels = None
depends_on = None

QTY = sa.Numeric(precision=14, scale=3)
MONEY = sa.Numeric(precision=14, scale=2)


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=nullable)


def upgrade():
    # ==========================================================================
    # 1. CATALOG
    # ==========================================================================
    op.create_table('categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('unit', sa.String(length=32), nullable=False),
        sa.Column('cost_price', MONEY, nullable=False),
        sa.Column('selling_price', MONEY, nullable=False),
        sa.Column('current_stock', QTY, nullable=False),
        sa.Column('reorder_level', QTY, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_name', ['name'], unique=False)
        batch_op.create_index('ix_products_active', ['is_active'], unique=False)
        batch_op.create_index(batch_op.f('ix_products_barcode'), ['barcode'], unique=False)
        batch_op.create_index(batch_op.f('ix_products_category_id'), ['category_id'], unique=False)

    # ==========================================================================
    # 2. USERS AND SESSIONS
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_users_email'), ['email'], unique=True)

    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        _timestamp('created_at'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('session_tokens', schema=None) as batch_op:
        batch_op.create_index('ix_session_tokens_user_active', ['user_id', 'is_revoked'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_token_hash'), ['token_hash'], unique=True)
        batch_op.create_index(batch_op.f('ix_session_tokens_expires_at'), ['expires_at'], unique=False)

    # ==========================================================================
    # 3. SALES
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_number', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('subtotal', MONEY, nullable=False),
        sa.Column('tax_rate', sa.Numeric(precision=6, scale=4), nullable=False),
        sa.Column('tax', MONEY, nullable=False),
        sa.Column('discount', MONEY, nullable=False),
        sa.Column('total', MONEY, nullable=False),
        sa.Column('amount_paid', MONEY, nullable=False),
        sa.Column('change', MONEY, nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.create_index('ix_sales_created', ['created_at'], unique=False)
        batch_op.create_index('ix_sales_payment_created', ['payment_method', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_user_id'), ['user_id'], unique=False)

    op.create_table('sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', QTY, nullable=False),
        sa.Column('unit_price', MONEY, nullable=False),
        sa.Column('subtotal', MONEY, nullable=False),
        sa.Column('previous_stock', QTY, nullable=False),
        sa.Column('new_stock', QTY, nullable=False),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sale_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sale_lines_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sale_lines_product_id'), ['product_id'], unique=False)

    # ==========================================================================
    # 4. STOCK AUDIT
    # ==========================================================================
    op.create_table('stock_adjustments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('quantity', QTY, nullable=False),
        sa.Column('quantity_delta', QTY, nullable=False),
        sa.Column('previous_stock', QTY, nullable=False),
        sa.Column('new_stock', QTY, nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_adjustments', schema=None) as batch_op:
        batch_op.create_index('ix_adjustments_product_created', ['product_id', 'created_at'], unique=False)
        batch_op.create_index('ix_adjustments_type_created', ['type', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_adjustments_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_adjustments_user_id'), ['user_id'], unique=False)

    op.create_table('stock_counts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('expected_qty', QTY, nullable=False),
        sa.Column('actual_qty', QTY, nullable=False),
        sa.Column('variance', QTY, nullable=False),
        sa.Column('previous_stock', QTY, nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('count_date', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_counts', schema=None) as batch_op:
        batch_op.create_index('ix_stock_counts_product_date', ['product_id', 'count_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_counts_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_counts_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_counts_count_date'), ['count_date'], unique=False)


def downgrade():
    op.drop_table('stock_counts')
    op.drop_table('stock_adjustments')
    op.drop_table('sale_lines')
    op.drop_table('sales')
    op.drop_table('session_tokens')
    op.drop_table('users')
    op.drop_table('products')
    op.drop_table('categories')

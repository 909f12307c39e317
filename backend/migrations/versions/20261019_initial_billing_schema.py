"""Initial billing schema: shops, products, stock ledger, invoices, held carts

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

Creates:
1. shops (tenants)
2. products (catalog snapshot + stock, stock_quantity >= 0)
3. stock_movements (append-only ledger journal)
4. document_sequences (per shop/type/day invoice numbering)
5. invoices, invoice_lines, invoice_edit_audits
6. held_carts (typed, versioned snapshots)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. SHOPS
    # ==========================================================================
    op.create_table('shops',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('shops', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_shops_code'), ['code'], unique=True)
        batch_op.create_index(batch_op.f('ix_shops_is_active'), ['is_active'], unique=False)

    # ==========================================================================
    # 2. PRODUCTS
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=False, server_default='pcs'),
        sa.Column('selling_price', sa.Numeric(precision=14, scale=4), nullable=False, server_default='0'),
        sa.Column('tax_rate', sa.Numeric(precision=5, scale=2), nullable=False, server_default='0'),
        sa.Column('stock_quantity', sa.Numeric(precision=14, scale=3), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_products_stock_non_negative'),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shop_id', 'sku', name='uq_products_shop_sku'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_products_shop_id'), ['shop_id'], unique=False)
        batch_op.create_index('ix_products_shop_active', ['shop_id', 'is_active'], unique=False)

    # ==========================================================================
    # 3. STOCK MOVEMENTS
    # ==========================================================================
    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('quantity_delta', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('quantity_before', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('quantity_after', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_movements_shop_id'), ['shop_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_movement_type'), ['movement_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_occurred_at'), ['occurred_at'], unique=False)
        batch_op.create_index('ix_stock_movements_product_occurred', ['product_id', 'occurred_at'], unique=False)
        batch_op.create_index('ix_stock_movements_reference', ['reference_type', 'reference_id'], unique=False)

    # ==========================================================================
    # 4. DOCUMENT SEQUENCES
    # ==========================================================================
    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('period', sa.String(length=16), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shop_id', 'document_type', 'period', name='uq_document_sequences_scope'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('document_sequences', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_document_sequences_shop_id'), ['shop_id'], unique=False)

    # ==========================================================================
    # 5. INVOICES
    # ==========================================================================
    op.create_table('invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_tax_id', sa.String(length=32), nullable=True),
        sa.Column('billing_address', sa.Text(), nullable=True),
        sa.Column('shipping_address', sa.Text(), nullable=True),
        sa.Column('payment_mode', sa.String(length=32), nullable=False),
        sa.Column('payment_details', sa.JSON(), nullable=True),
        sa.Column('include_tax', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('discount_kind', sa.String(length=16), nullable=True),
        sa.Column('discount_percent', sa.Numeric(precision=7, scale=2), nullable=True),
        sa.Column('subtotal', sa.Numeric(precision=14, scale=4), nullable=False),
        sa.Column('line_discount_total', sa.Numeric(precision=14, scale=4), nullable=False, server_default='0'),
        sa.Column('bill_discount_amount', sa.Numeric(precision=14, scale=4), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(precision=14, scale=4), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(precision=14, scale=4), nullable=False, server_default='0'),
        sa.Column('round_off', sa.Numeric(precision=14, scale=4), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(precision=14, scale=4), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('edit_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_edited_at', sa.DateTime(), nullable=True),
        sa.Column('last_edited_by_user_id', sa.Integer(), nullable=True),
        sa.Column('is_locked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('locked_reason', sa.String(length=255), nullable=True),
        sa.Column('locked_at', sa.DateTime(), nullable=True),
        sa.Column('locked_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shop_id', 'invoice_number', name='uq_invoices_shop_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('invoices', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_invoices_shop_id'), ['shop_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_invoices_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_invoices_payment_mode'), ['payment_mode'], unique=False)
        batch_op.create_index(batch_op.f('ix_invoices_created_at'), ['created_at'], unique=False)
        batch_op.create_index('ix_invoices_shop_status_created', ['shop_id', 'status', 'created_at'], unique=False)

    op.create_table('invoice_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=14, scale=4), nullable=False),
        sa.Column('discount_amount', sa.Numeric(precision=14, scale=4), nullable=False, server_default='0'),
        sa.Column('tax_rate', sa.Numeric(precision=5, scale=2), nullable=False, server_default='0'),
        sa.Column('line_subtotal', sa.Numeric(precision=14, scale=4), nullable=False),
        sa.Column('taxable_amount', sa.Numeric(precision=14, scale=4), nullable=False),
        sa.Column('tax_amount', sa.Numeric(precision=14, scale=4), nullable=False),
        sa.Column('line_total', sa.Numeric(precision=14, scale=4), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_invoice_lines_quantity_positive'),
        sa.CheckConstraint('unit_price >= 0', name='ck_invoice_lines_unit_price_non_negative'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('invoice_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_invoice_lines_invoice_id'), ['invoice_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_invoice_lines_product_id'), ['product_id'], unique=False)

    op.create_table('invoice_edit_audits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('edit_number', sa.Integer(), nullable=False),
        sa.Column('edited_by_user_id', sa.Integer(), nullable=False),
        sa.Column('edit_reason', sa.Text(), nullable=False),
        sa.Column('edited_at', sa.DateTime(), nullable=False),
        sa.Column('returns_override', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('changes_summary', sa.JSON(), nullable=False),
        sa.Column('original_data', sa.JSON(), nullable=False),
        sa.Column('new_data', sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_id', 'edit_number', name='uq_invoice_edit_audits_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('invoice_edit_audits', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_invoice_edit_audits_shop_id'), ['shop_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_invoice_edit_audits_invoice_id'), ['invoice_id'], unique=False)

    # ==========================================================================
    # 6. HELD CARTS
    # ==========================================================================
    op.create_table('held_carts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('label', sa.String(length=120), nullable=True),
        sa.Column('schema_version', sa.Integer(), nullable=False),
        sa.Column('snapshot', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('held_carts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_held_carts_shop_id'), ['shop_id'], unique=False)
        batch_op.create_index('ix_held_carts_shop_user', ['shop_id', 'created_by_user_id'], unique=False)


def downgrade():
    op.drop_table('held_carts')
    op.drop_table('invoice_edit_audits')
    op.drop_table('invoice_lines')
    op.drop_table('invoices')
    op.drop_table('document_sequences')
    op.drop_table('stock_movements')
    op.drop_table('products')
    op.drop_table('shops')

"""initial stockbook schema

Revision ID: sb0001initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the complete schema:
- products: catalog with opening_stock and cached current_stock
- customers: registered parties for invoices
- stock_ledger: append-only stock movements
- invoices / invoice_items: invoice header and lines
- invoice_sequences: counter rows behind invoice numbering
- invoice_operations: intent records for invoice workflows
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'sb0001initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # products: catalog + cached stock counter
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=120), nullable=False, server_default='General'),
        sa.Column('hsn_code', sa.String(length=32), nullable=True),
        sa.Column('unit', sa.String(length=32), nullable=False, server_default='pcs'),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('opening_stock', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('current_stock', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('min_stock', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_products'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_category_name', 'products', ['category', 'name'])
    op.create_index('ix_products_status', 'products', ['status'])

    # ============================================================================
    # customers
    # ============================================================================
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('gstin', sa.String(length=15), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_customers'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_customers_name', 'customers', ['name'])

    # ============================================================================
    # stock_ledger: append-only movements
    # ============================================================================
    op.create_table(
        'stock_ledger',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('quantity_delta', sa.Numeric(14, 3), nullable=False),
        sa.Column('unit_cost', sa.Numeric(12, 2), nullable=True),
        sa.Column('reference_no', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'],
                                name='fk_stock_ledger_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_stock_ledger'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_ledger_product_id', 'stock_ledger', ['product_id'])
    op.create_index('ix_stock_ledger_reference_no', 'stock_ledger', ['reference_no'])
    op.create_index('ix_stock_ledger_product_created', 'stock_ledger', ['product_id', 'created_at', 'id'])
    op.create_index('ix_stock_ledger_type_created', 'stock_ledger', ['transaction_type', 'created_at'])

    # ============================================================================
    # invoices / invoice_items
    # ============================================================================
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('number_source', sa.String(length=16), nullable=False, server_default='sequence'),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('guest_name', sa.String(length=255), nullable=True),
        sa.Column('guest_email', sa.String(length=255), nullable=True),
        sa.Column('guest_phone', sa.String(length=32), nullable=True),
        sa.Column('guest_address', sa.Text(), nullable=True),
        sa.Column('guest_gstin', sa.String(length=15), nullable=True),
        sa.Column('invoice_date', sa.Date(), nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'],
                                name='fk_invoices_customer_id_customers'),
        sa.PrimaryKeyConstraint('id', name='pk_invoices'),
        sa.UniqueConstraint('invoice_number', name='uq_invoices_invoice_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoices_customer_id', 'invoices', ['customer_id'])
    op.create_index('ix_invoices_created', 'invoices', ['created_at', 'id'])
    op.create_index('ix_invoices_customer_date', 'invoices', ['customer_id', 'invoice_date'])

    op.create_table(
        'invoice_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('taxable_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='CASCADE',
                                name='fk_invoice_items_invoice_id_invoices'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'],
                                name='fk_invoice_items_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_invoice_items'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoice_items_invoice_id', 'invoice_items', ['invoice_id'])
    op.create_index('ix_invoice_items_product_id', 'invoice_items', ['product_id'])

    # ============================================================================
    # invoice_sequences / invoice_operations
    # ============================================================================
    op.create_table(
        'invoice_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('prefix', sa.String(length=16), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_invoice_sequences'),
        sa.UniqueConstraint('prefix', name='uq_invoice_sequences_prefix'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'invoice_operations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('operation', sa.String(length=16), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('invoice_number', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='started'),
        sa.Column('completed_steps', sa.Text(), nullable=False, server_default=''),
        sa.Column('failed_step', sa.String(length=32), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_invoice_operations'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoice_operations_invoice_number', 'invoice_operations', ['invoice_number'])
    op.create_index('ix_invoice_operations_status_created', 'invoice_operations', ['status', 'created_at'])


def downgrade():
    op.drop_table('invoice_operations')
    op.drop_table('invoice_sequences')
    op.drop_table('invoice_items')
    op.drop_table('invoices')
    op.drop_table('stock_ledger')
    op.drop_table('customers')
    op.drop_table('products')

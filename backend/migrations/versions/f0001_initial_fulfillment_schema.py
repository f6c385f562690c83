"""Initial fulfillment schema: catalog, batches, orders, packages, transports, returns

Revision ID: f0001_initial
Revises:
Create Date: 2026-10-18

This migration adds:
1. Catalog (products, warehouses, partners)
2. Document sequences and the fulfillment event log
3. Batches with quantity check constraints
4. Orders, order lines and packages (one package per order)
5. Allocation records (package x batch)
6. Transports and their status history
7. Returns and return lines
8. Batch movements (append-only quantity history)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'f0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. CATALOG
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('threshold_limit', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('shelf_life_days', sa.Integer(), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('weight_grams', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_name', ['name'], unique=False)

    op.create_table('warehouses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True
    )

    op.create_table('partners',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('company_name', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('partners', schema=None) as batch_op:
        batch_op.create_index('ix_partners_kind_active', ['kind', 'is_active'], unique=False)

    # ==========================================================================
    # 2. DOCUMENT SEQUENCES AND EVENT LOG
    # ==========================================================================
    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type'),
        sqlite_autoincrement=True
    )

    op.create_table('fulfillment_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('fulfillment_events', schema=None) as batch_op:
        batch_op.create_index('ix_fulfillment_events_entity', ['entity_type', 'entity_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_fulfillment_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_fulfillment_events_actor_user_id'), ['actor_user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_fulfillment_events_occurred_at'), ['occurred_at'], unique=False)

    # ==========================================================================
    # 3. BATCHES
    # ==========================================================================
    op.create_table('batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_number', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=False),
        sa.Column('original_quantity', sa.Integer(), nullable=False),
        sa.Column('current_quantity', sa.Integer(), nullable=False),
        sa.Column('damaged_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('allocated_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('mfg_date', sa.Date(), nullable=False),
        sa.Column('exp_date', sa.Date(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=True),
        sa.Column('received_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('current_quantity >= 0', name='ck_batches_current_nonneg'),
        sa.CheckConstraint('damaged_quantity >= 0', name='ck_batches_damaged_nonneg'),
        sa.CheckConstraint('allocated_quantity >= 0', name='ck_batches_allocated_nonneg'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ),
        sa.ForeignKeyConstraint(['supplier_id'], ['partners.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('batch_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('batches', schema=None) as batch_op:
        batch_op.create_index('ix_batches_product_exp_number', ['product_id', 'exp_date', 'batch_number'], unique=False)
        batch_op.create_index(batch_op.f('ix_batches_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_batches_warehouse_id'), ['warehouse_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_batches_supplier_id'), ['supplier_id'], unique=False)

    # ==========================================================================
    # 4. ORDERS, ORDER LINES, PACKAGES
    # ==========================================================================
    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=64), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('idempotency_key', sa.String(length=128), nullable=True),
        sa.Column('processing_key', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('cancel_reason', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('processed_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('packed_at', sa.DateTime(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('returned_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['customer_id'], ['partners.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number'),
        sa.UniqueConstraint('idempotency_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index('ix_orders_status_created', ['status', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_customer_id'), ['customer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_created_at'), ['created_at'], unique=False)

    op.create_table('order_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('quantity > 0', name='ck_order_lines_quantity_pos'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'product_id', name='uq_order_lines_order_product'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('order_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_order_lines_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_order_lines_product_id'), ['product_id'], unique=False)

    op.create_table('packages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('package_code', sa.String(length=64), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False, server_default='pending'),
        sa.Column('total_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_weight_grams', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('dimensions', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('packed_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('package_code'),
        sa.UniqueConstraint('order_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('packages', schema=None) as batch_op:
        batch_op.create_index('ix_packages_status_created', ['status', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_packages_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_packages_created_at'), ['created_at'], unique=False)

    # ==========================================================================
    # 5. ALLOCATION RECORDS
    # ==========================================================================
    op.create_table('allocation_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('package_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_allocation_quantity_pos'),
        sa.ForeignKeyConstraint(['package_id'], ['packages.id'], ),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('package_id', 'batch_id', name='uq_allocation_package_batch'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('allocation_records', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_allocation_records_package_id'), ['package_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_allocation_records_batch_id'), ['batch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_allocation_records_product_id'), ['product_id'], unique=False)

    # ==========================================================================
    # 6. TRANSPORTS
    # ==========================================================================
    op.create_table('transports',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('package_id', sa.Integer(), nullable=False),
        sa.Column('transporter_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False, server_default='forward'),
        sa.Column('tracking_number', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='dispatched'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('assigned_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('dispatched_at', sa.DateTime(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['package_id'], ['packages.id'], ),
        sa.ForeignKeyConstraint(['transporter_id'], ['partners.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tracking_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('transports', schema=None) as batch_op:
        batch_op.create_index('ix_transports_package_kind', ['package_id', 'kind'], unique=False)
        batch_op.create_index('ix_transports_status_created', ['status', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_transports_package_id'), ['package_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_transports_transporter_id'), ['transporter_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_transports_status'), ['status'], unique=False)

    op.create_table('transport_status_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transport_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('updated_by', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['transport_id'], ['transports.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('transport_status_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_transport_status_events_transport_id'), ['transport_id'], unique=False)

    # ==========================================================================
    # 7. RETURNS
    # ==========================================================================
    op.create_table('returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_number', sa.String(length=64), nullable=False),
        sa.Column('package_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False, server_default='initiated'),
        sa.Column('return_reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('warehouse_id', sa.Integer(), nullable=True),
        sa.Column('transporter_id', sa.Integer(), nullable=True),
        sa.Column('transport_id', sa.Integer(), nullable=True),
        sa.Column('initiated_by', sa.Integer(), nullable=True),
        sa.Column('processed_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('pickup_scheduled_at', sa.DateTime(), nullable=True),
        sa.Column('picked_up_at', sa.DateTime(), nullable=True),
        sa.Column('received_at', sa.DateTime(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['package_id'], ['packages.id'], ),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ),
        sa.ForeignKeyConstraint(['transporter_id'], ['partners.id'], ),
        sa.ForeignKeyConstraint(['transport_id'], ['transports.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('return_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('returns', schema=None) as batch_op:
        batch_op.create_index('ix_returns_package_status', ['package_id', 'status'], unique=False)
        batch_op.create_index(batch_op.f('ix_returns_package_id'), ['package_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_returns_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_returns_created_at'), ['created_at'], unique=False)

    op.create_table('return_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_return_lines_quantity_pos'),
        sa.ForeignKeyConstraint(['return_id'], ['returns.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('return_id', 'batch_id', name='uq_return_lines_return_batch'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('return_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_return_lines_return_id'), ['return_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_return_lines_batch_id'), ['batch_id'], unique=False)

    # ==========================================================================
    # 8. BATCH MOVEMENTS
    # ==========================================================================
    op.create_table('batch_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('package_id', sa.Integer(), nullable=True),
        sa.Column('return_id', sa.Integer(), nullable=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ),
        sa.ForeignKeyConstraint(['package_id'], ['packages.id'], ),
        sa.ForeignKeyConstraint(['return_id'], ['returns.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('batch_movements', schema=None) as batch_op:
        batch_op.create_index('ix_batch_movements_batch_type', ['batch_id', 'movement_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_batch_movements_batch_id'), ['batch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_batch_movements_package_id'), ['package_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_batch_movements_return_id'), ['return_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_batch_movements_occurred_at'), ['occurred_at'], unique=False)

    # Seed numbering rows so lifecycle transactions never insert them
    sequences = sa.table('document_sequences',
        sa.column('document_type', sa.String),
        sa.column('next_number', sa.Integer),
    )
    op.bulk_insert(sequences, [
        {'document_type': 'ORDER', 'next_number': 1},
        {'document_type': 'PACKAGE', 'next_number': 1},
        {'document_type': 'RETURN', 'next_number': 1},
    ])


def downgrade():
    op.drop_table('batch_movements')
    op.drop_table('return_lines')
    op.drop_table('returns')
    op.drop_table('transport_status_events')
    op.drop_table('transports')
    op.drop_table('allocation_records')
    op.drop_table('packages')
    op.drop_table('order_lines')
    op.drop_table('orders')
    op.drop_table('batches')
    op.drop_table('fulfillment_events')
    op.drop_table('document_sequences')
    op.drop_table('partners')
    op.drop_table('warehouses')
    op.drop_table('products')

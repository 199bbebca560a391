"""initial repair workflow schema

Revision ID: r1a0b1c2d3e4
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete repairdesk schema:
- locations / document_sequences: branches and per-branch document numbers
- repair_orders / quality_checklist_items / status_history_entries
- cost_estimates / cost_estimate_history: versioned estimates (KVA)
- parts / part_usage_reservations / stock_movements: stock and its ledger
- inventory_sessions / inventory_counts: physical counts

status_history_entries, cost_estimate_history and stock_movements are
append-only; the ORM rejects updates and deletes on them.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'r1a0b1c2d3e4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # locations
    # ============================================================================
    op.create_table(
        'locations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_locations_code'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'document_type', name='uq_doc_sequences_location_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_document_sequences_location_id', 'document_sequences', ['location_id'])
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])

    # ============================================================================
    # repair_orders
    # ============================================================================
    op.create_table(
        'repair_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('is_b2b', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('device_manufacturer', sa.String(length=128), nullable=True),
        sa.Column('device_model', sa.String(length=128), nullable=True),
        sa.Column('error_description', sa.Text(), nullable=True),
        sa.Column('assigned_technician_id', sa.String(length=64), nullable=True),
        sa.Column('requires_estimate', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('estimate_approval', sa.Boolean(), nullable=True),
        sa.Column('estimate_decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('estimated_price_cents', sa.Integer(), nullable=True),
        sa.Column('estimate_fee_due_cents', sa.Integer(), nullable=True),
        sa.Column('disposal_option', sa.String(length=32), nullable=True),
        sa.Column('final_price_cents', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number', name='uq_repair_orders_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_repair_orders_location_id', 'repair_orders', ['location_id'])
    op.create_index('ix_repair_orders_status', 'repair_orders', ['status'])
    op.create_index('ix_repair_orders_assigned_technician_id', 'repair_orders', ['assigned_technician_id'])
    op.create_index('ix_repair_orders_created_at', 'repair_orders', ['created_at'])
    op.create_index('ix_repair_orders_location_status', 'repair_orders', ['location_id', 'status'])

    op.create_table(
        'quality_checklist_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('label', sa.String(length=255), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('checked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('checked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('checked_by', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['repair_orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'label', name='uq_checklist_order_label'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_quality_checklist_items_order_id', 'quality_checklist_items', ['order_id'])

    # Append-only
    op.create_table(
        'status_history_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('old_status', sa.String(length=32), nullable=True),
        sa.Column('new_status', sa.String(length=32), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['order_id'], ['repair_orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_status_history_entries_order_id', 'status_history_entries', ['order_id'])
    op.create_index('ix_status_history_order_created', 'status_history_entries', ['order_id', 'created_at'])

    # ============================================================================
    # cost_estimates: one row per version, exactly one current per order
    # ============================================================================
    op.create_table(
        'cost_estimates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('parent_id', sa.Integer(), nullable=True),
        sa.Column('is_current', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('estimate_type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False),
        sa.Column('labor_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('parts_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_cents', sa.Integer(), nullable=True),
        sa.Column('max_cents', sa.Integer(), nullable=True),
        sa.Column('internal_price_cents', sa.Integer(), nullable=True),
        sa.Column('end_customer_price_cents', sa.Integer(), nullable=True),
        sa.Column('end_customer_price_released', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('diagnosis', sa.Text(), nullable=True),
        sa.Column('repair_description', sa.Text(), nullable=True),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_via', sa.String(length=32), nullable=True),
        sa.Column('reminder_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expired_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('customer_question', sa.Text(), nullable=True),
        sa.Column('staff_answer', sa.Text(), nullable=True),
        sa.Column('decision', sa.String(length=16), nullable=True),
        sa.Column('decision_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('decision_by_customer', sa.Boolean(), nullable=True),
        sa.Column('decision_channel', sa.String(length=32), nullable=True),
        sa.Column('decision_note', sa.Text(), nullable=True),
        sa.Column('decision_actor_id', sa.String(length=64), nullable=True),
        sa.Column('disposal_option', sa.String(length=32), nullable=True),
        sa.Column('fee_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('fee_waived', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('fee_waiver_reason', sa.Text(), nullable=True),
        sa.Column('fee_waived_by', sa.String(length=64), nullable=True),
        sa.Column('fee_waived_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['order_id'], ['repair_orders.id'], ),
        sa.ForeignKeyConstraint(['parent_id'], ['cost_estimates.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'version_number', name='uq_cost_estimates_order_version'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cost_estimates_order_id', 'cost_estimates', ['order_id'])
    op.create_index('ix_cost_estimates_status', 'cost_estimates', ['status'])
    op.create_index('ix_cost_estimates_status_valid', 'cost_estimates', ['status', 'valid_until'])
    op.create_index(
        'uq_cost_estimates_one_current',
        'cost_estimates',
        ['order_id'],
        unique=True,
        sqlite_where=sa.text('is_current = 1'),
        postgresql_where=sa.text('is_current'),
    )

    # Append-only
    op.create_table(
        'cost_estimate_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('estimate_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['estimate_id'], ['cost_estimates.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cost_estimate_history_estimate_id', 'cost_estimate_history', ['estimate_id'])
    op.create_index('ix_cost_estimate_history_action', 'cost_estimate_history', ['action'])

    # ============================================================================
    # parts and part usage
    # ============================================================================
    op.create_table(
        'parts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('manufacturer', sa.String(length=128), nullable=True),
        sa.Column('device_model', sa.String(length=128), nullable=True),
        sa.Column('on_hand', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('purchase_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sale_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_parts_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_parts_location_id', 'parts', ['location_id'])
    op.create_index('ix_parts_scope', 'parts', ['manufacturer', 'device_model'])
    op.create_index('ix_parts_location_active', 'parts', ['location_id', 'is_active'])

    op.create_table(
        'part_usage_reservations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('part_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_purchase_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_sale_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('booked_by', sa.String(length=64), nullable=False),
        sa.Column('booked_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('decided_by', sa.String(length=64), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('removed_by', sa.String(length=64), nullable=True),
        sa.Column('removed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['order_id'], ['repair_orders.id'], ),
        sa.ForeignKeyConstraint(['part_id'], ['parts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_part_usage_reservations_order_id', 'part_usage_reservations', ['order_id'])
    op.create_index('ix_part_usage_reservations_part_id', 'part_usage_reservations', ['part_id'])
    op.create_index('ix_part_usage_reservations_status', 'part_usage_reservations', ['status'])
    op.create_index('ix_part_usage_order_status', 'part_usage_reservations', ['order_id', 'status'])

    # ============================================================================
    # inventory_sessions (before stock_movements, which references it)
    # ============================================================================
    op.create_table(
        'inventory_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('session_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False, server_default='IN_PROGRESS'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('submitted_by', sa.String(length=64), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('decided_by', sa.String(length=64), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('total_items_counted', sa.Integer(), nullable=True),
        sa.Column('total_discrepancies', sa.Integer(), nullable=True),
        sa.Column('total_value_difference_cents', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'session_number', name='uq_inventory_sessions_location_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_sessions_location_id', 'inventory_sessions', ['location_id'])
    op.create_index('ix_inventory_sessions_status', 'inventory_sessions', ['status'])
    op.create_index('ix_inventory_sessions_location_status', 'inventory_sessions', ['location_id', 'status'])

    # ============================================================================
    # stock_movements: append-only ledger; on_hand == sum(quantity_delta)
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('part_id', sa.Integer(), nullable=False),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('reason_text', sa.Text(), nullable=True),
        sa.Column('stock_before', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('reservation_id', sa.Integer(), nullable=True),
        sa.Column('inventory_session_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['part_id'], ['parts.id'], ),
        sa.ForeignKeyConstraint(['order_id'], ['repair_orders.id'], ),
        sa.ForeignKeyConstraint(['reservation_id'], ['part_usage_reservations.id'], ),
        sa.ForeignKeyConstraint(['inventory_session_id'], ['inventory_sessions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_part_id', 'stock_movements', ['part_id'])
    op.create_index('ix_stock_movements_reason', 'stock_movements', ['reason'])
    op.create_index('ix_stock_movements_order_id', 'stock_movements', ['order_id'])
    op.create_index('ix_stock_movements_reservation_id', 'stock_movements', ['reservation_id'])
    op.create_index('ix_stock_movements_inventory_session_id', 'stock_movements', ['inventory_session_id'])
    op.create_index('ix_stock_movements_created_at', 'stock_movements', ['created_at'])
    op.create_index('ix_stock_movements_part_created', 'stock_movements', ['part_id', 'created_at'])

    op.create_table(
        'inventory_counts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('part_id', sa.Integer(), nullable=False),
        sa.Column('expected_quantity', sa.Integer(), nullable=False),
        sa.Column('counted_quantity', sa.Integer(), nullable=False),
        sa.Column('unit_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discrepancy_reason', sa.Text(), nullable=True),
        sa.Column('counted_by', sa.String(length=64), nullable=True),
        sa.Column('counted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('movement_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['inventory_sessions.id'], ),
        sa.ForeignKeyConstraint(['part_id'], ['parts.id'], ),
        sa.ForeignKeyConstraint(['movement_id'], ['stock_movements.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'part_id', name='uq_inventory_counts_session_part'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_counts_session_id', 'inventory_counts', ['session_id'])
    op.create_index('ix_inventory_counts_part_id', 'inventory_counts', ['part_id'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('inventory_counts')
    op.drop_table('stock_movements')
    op.drop_table('inventory_sessions')
    op.drop_table('part_usage_reservations')
    op.drop_table('parts')
    op.drop_table('cost_estimate_history')
    op.drop_index('uq_cost_estimates_one_current', table_name='cost_estimates')
    op.drop_table('cost_estimates')
    op.drop_table('status_history_entries')
    op.drop_table('quality_checklist_items')
    op.drop_table('repair_orders')
    op.drop_table('document_sequences')
    op.drop_table('locations')

"""initial fulfillment schema

Revision ID: f0a1b2c3d4e5
Revises:
Create Date: 2026-10-01 00:00:00.000000

Creates the complete fulfillment schema from scratch:
- users, roles, permissions, sessions: staff authentication and RBAC
- security_events, audit_events: append-only security and business trail
- products, carriers: ERP catalog mirror and shipping carriers
- orders, order_items, wallet_validations: order workflow
- packaging_verifications, barcode_scan_events: packing progress
- delivery_tracking, cash_ledger_entries, handover_acts, handover_details:
  courier deliveries and cash reconciliation
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'f0a1b2c3d4e5'
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    # ============================================================================
    # Authentication and RBAC
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username', name='uq_users_username'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_username', 'users', ['username'])

    op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_roles_name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'user_roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'role_id', name='uq_user_roles'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_user_roles_user_id', 'user_roles', ['user_id'])
    op.create_index('ix_user_roles_role_id', 'user_roles', ['role_id'])

    op.create_table(
        'permissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_permissions_code', 'permissions', ['code'], unique=True)
    op.create_index('ix_permissions_category', 'permissions', ['category'])

    op.create_table(
        'role_permissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('permission_id', sa.Integer(), nullable=False),
        sa.Column('granted_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id']),
        sa.ForeignKeyConstraint(['permission_id'], ['permissions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('role_id', 'permission_id', name='uq_role_permissions'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_role_permissions_role_id', 'role_permissions', ['role_id'])
    op.create_index('ix_role_permissions_permission_id', 'role_permissions', ['permission_id'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        _created_at(),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_expires_at', 'session_tokens', ['expires_at'])
    op.create_index('ix_session_tokens_is_revoked', 'session_tokens', ['is_revoked'])
    op.create_index('ix_session_tokens_user_active', 'session_tokens', ['user_id', 'is_revoked'])

    # ============================================================================
    # Security and audit trail (append-only)
    # ============================================================================
    op.create_table(
        'security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('resource', sa.String(length=128), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_security_events_user_id', 'security_events', ['user_id'])
    op.create_index('ix_security_events_event_type', 'security_events', ['event_type'])
    op.create_index('ix_security_events_success', 'security_events', ['success'])
    op.create_index('ix_security_events_occurred_at', 'security_events', ['occurred_at'])
    op.create_index('ix_security_events_user_type', 'security_events', ['user_id', 'event_type'])

    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_events_action', 'audit_events', ['action'])
    op.create_index('ix_audit_events_actor_user_id', 'audit_events', ['actor_user_id'])
    op.create_index('ix_audit_events_occurred_at', 'audit_events', ['occurred_at'])
    op.create_index('ix_audit_events_entity', 'audit_events', ['entity_type', 'entity_id'])

    # ============================================================================
    # Catalog
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('internal_code', sa.String(length=64), nullable=True),
        sa.Column('category', sa.String(length=128), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('barcode'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_barcode', 'products', ['barcode'])
    op.create_index('ix_products_internal_code', 'products', ['internal_code'])

    op.create_table(
        'carriers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_carriers_code'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # Orders
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=64), nullable=False),
        sa.Column('invoice_code', sa.String(length=64), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_phone', sa.String(length=32), nullable=False),
        sa.Column('customer_address', sa.String(length=255), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_department', sa.String(length=128), nullable=False),
        sa.Column('customer_city', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('delivery_method', sa.String(length=32), nullable=False),
        sa.Column('shipping_payment_method', sa.String(length=32), nullable=True),
        sa.Column('carrier_id', sa.Integer(), nullable=True),
        sa.Column('tracking_number', sa.String(length=64), nullable=True),
        sa.Column('total_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('delivery_fee_cents', sa.BigInteger(), nullable=False),
        sa.Column('delivery_fee_exempt', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('logistics_notes', sa.Text(), nullable=True),
        sa.Column('delivery_date', sa.Date(), nullable=True),
        sa.Column('shipping_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assigned_messenger_id', sa.Integer(), nullable=True),
        sa.Column('messenger_status', sa.String(length=16), nullable=True),
        sa.Column('validation_status', sa.String(length=16), nullable=True),
        sa.Column('validation_notes', sa.Text(), nullable=True),
        sa.Column('siigo_invoice_id', sa.String(length=64), nullable=True),
        sa.Column('siigo_invoice_number', sa.String(length=64), nullable=True),
        sa.Column('siigo_invoice_created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['carrier_id'], ['carriers.id']),
        sa.ForeignKeyConstraint(['assigned_messenger_id'], ['users.id']),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['deleted_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_siigo_invoice_id', 'orders', ['siigo_invoice_id'])
    op.create_index('ix_orders_deleted_at', 'orders', ['deleted_at'])
    op.create_index('ix_orders_status_deleted', 'orders', ['status', 'deleted_at'])
    op.create_index('ix_orders_messenger_status', 'orders', ['assigned_messenger_id', 'status'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        _created_at(),
        sa.Column('replaced_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_order_active', 'order_items', ['order_id', 'replaced_at'])

    op.create_table(
        'wallet_validations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('validation_type', sa.String(length=16), nullable=False),
        sa.Column('payment_reference', sa.String(length=128), nullable=True),
        sa.Column('payment_amount_cents', sa.BigInteger(), nullable=True),
        sa.Column('payment_date', sa.Date(), nullable=True),
        sa.Column('bank_name', sa.String(length=128), nullable=True),
        sa.Column('validation_notes', sa.Text(), nullable=True),
        sa.Column('validated_by_user_id', sa.Integer(), nullable=False),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['validated_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_wallet_validations_order_id', 'wallet_validations', ['order_id'])

    # ============================================================================
    # Packaging
    # ============================================================================
    op.create_table(
        'packaging_verifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('scanned_count', sa.Integer(), nullable=False),
        sa.Column('required_scans', sa.Integer(), nullable=False),
        sa.Column('is_verified', sa.Boolean(), nullable=False),
        sa.Column('packed_quantity', sa.Integer(), nullable=True),
        sa.Column('packed_weight', sa.String(length=64), nullable=True),
        sa.Column('packed_flavor', sa.String(length=64), nullable=True),
        sa.Column('packed_size', sa.String(length=64), nullable=True),
        sa.Column('verification_notes', sa.Text(), nullable=True),
        sa.Column('verification_method', sa.String(length=16), nullable=True),
        sa.Column('verified_by_user_id', sa.Integer(), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('scanned_count >= 0', name='ck_packaging_scanned_nonneg'),
        sa.CheckConstraint('scanned_count <= required_scans', name='ck_packaging_scanned_bounded'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['item_id'], ['order_items.id']),
        sa.ForeignKeyConstraint(['verified_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('item_id', name='uq_packaging_verifications_item'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_packaging_verifications_order_id', 'packaging_verifications', ['order_id'])

    op.create_table(
        'barcode_scan_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('barcode', sa.String(length=64), nullable=False),
        sa.Column('scan_number', sa.Integer(), nullable=False),
        sa.Column('scanned_by_user_id', sa.Integer(), nullable=True),
        sa.Column('scanned_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['item_id'], ['order_items.id']),
        sa.ForeignKeyConstraint(['scanned_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('item_id', 'scan_number', name='uq_barcode_scan_events_item_seq'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_barcode_scan_events_order_id', 'barcode_scan_events', ['order_id'])
    op.create_index('ix_barcode_scan_events_item_id', 'barcode_scan_events', ['item_id'])

    # ============================================================================
    # Deliveries and cash reconciliation
    # ============================================================================
    op.create_table(
        'delivery_tracking',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('messenger_id', sa.Integer(), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('started_delivery_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('payment_collected_cents', sa.BigInteger(), nullable=False),
        sa.Column('delivery_fee_collected_cents', sa.BigInteger(), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('delivery_fee_payment_method', sa.String(length=32), nullable=True),
        sa.Column('delivery_notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['messenger_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'messenger_id', name='uq_delivery_tracking_order_messenger'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_delivery_tracking_order_id', 'delivery_tracking', ['order_id'])
    op.create_index('ix_delivery_tracking_messenger_id', 'delivery_tracking', ['messenger_id'])
    op.create_index('ix_delivery_tracking_delivered', 'delivery_tracking', ['delivered_at'])

    op.create_table(
        'cash_ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('accepted_amount_cents', sa.BigInteger(), nullable=True),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('delivery_method', sa.String(length=32), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('registered_by_user_id', sa.Integer(), nullable=True),
        sa.Column('accepted_by_user_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['registered_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['accepted_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'source', name='uq_cash_ledger_order_source'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_ledger_entries_order_id', 'cash_ledger_entries', ['order_id'])
    op.create_index('ix_cash_ledger_status_created', 'cash_ledger_entries', ['status', 'created_at'])
    op.create_index('ix_cash_ledger_accepted', 'cash_ledger_entries', ['accepted_at'])

    op.create_table(
        'handover_acts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('messenger_id', sa.Integer(), nullable=False),
        sa.Column('closing_date', sa.Date(), nullable=False),
        sa.Column('expected_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('declared_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('difference_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('approved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['messenger_id'], ['users.id']),
        sa.ForeignKeyConstraint(['approved_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('messenger_id', 'closing_date', name='uq_handover_acts_messenger_date'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_handover_acts_messenger_id', 'handover_acts', ['messenger_id'])
    op.create_index('ix_handover_acts_status', 'handover_acts', ['status'])
    op.create_index('ix_handover_acts_closing_date', 'handover_acts', ['closing_date'])

    op.create_table(
        'handover_details',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('act_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('expected_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('declared_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('collection_status', sa.String(length=16), nullable=False),
        sa.Column('collected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('accepted_by_user_id', sa.Integer(), nullable=True),
        sa.Column('collection_notes', sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['act_id'], ['handover_acts.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['accepted_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('act_id', 'order_id', name='uq_handover_details_act_order'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_handover_details_act_id', 'handover_details', ['act_id'])
    op.create_index('ix_handover_details_order_id', 'handover_details', ['order_id'])


def downgrade():
    for table in (
        'handover_details',
        'handover_acts',
        'cash_ledger_entries',
        'delivery_tracking',
        'barcode_scan_events',
        'packaging_verifications',
        'wallet_validations',
        'order_items',
        'orders',
        'carriers',
        'products',
        'audit_events',
        'security_events',
        'session_tokens',
        'role_permissions',
        'permissions',
        'user_roles',
        'roles',
        'users',
    ):
        op.drop_table(table)

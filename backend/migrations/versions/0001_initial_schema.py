"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the complete QRPark schema from scratch:
- access_roles / access_permissions: role-based access control
- users: identity, base role tag and AccessRole binding
- credit_accounts / credit_logs: cached balance plus append-only ledger
- serial_counters / qr_codes: gap-free serial allocation and QR lifecycle
- security_events: audit trail for denials and administrative actions
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """
    Create all tables.

    WHY: access_roles precedes users because users.access_role_id points at
    it; credit and QR tables follow users for their owner references.
    """

    # ============================================================================
    # access_roles: Named permission bundles
    # ============================================================================
    op.create_table(
        'access_roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_system', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_access_roles_name', 'access_roles', ['name'], unique=True)
    op.create_index('ix_access_roles_is_system', 'access_roles', ['is_system'])

    # ============================================================================
    # access_permissions: One (resource, actions) grant per role per resource
    # ============================================================================
    op.create_table(
        'access_permissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('resource', sa.String(length=64), nullable=False),
        sa.Column('actions', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('granted_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['role_id'], ['access_roles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('role_id', 'resource', name='uq_access_permissions_role_resource'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_access_permissions_role_id', 'access_permissions', ['role_id'])

    # ============================================================================
    # users: Identity and role binding (no credentials)
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('base_role', sa.String(length=32), nullable=False, server_default='RETAILER'),
        sa.Column('access_role_id', sa.Integer(), nullable=True),
        sa.Column('parent_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['access_role_id'], ['access_roles.id']),
        sa.ForeignKeyConstraint(['parent_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_base_role', 'users', ['base_role'])
    op.create_index('ix_users_access_role_id', 'users', ['access_role_id'])
    op.create_index('ix_users_parent_id', 'users', ['parent_id'])
    op.create_index('ix_users_base_role_access_role', 'users', ['base_role', 'access_role_id'])

    # ============================================================================
    # credit_accounts: Cached running balance per user
    # ============================================================================
    op.create_table(
        'credit_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lifetime_credited', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lifetime_debited', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', name='uq_credit_accounts_user'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_credit_accounts_user_id', 'credit_accounts', ['user_id'])

    # ============================================================================
    # credit_logs: Append-only signed ledger
    # ============================================================================
    op.create_table(
        'credit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('log_type', sa.String(length=32), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('related_user_id', sa.Integer(), nullable=True),
        sa.Column('reverses_log_id', sa.Integer(), nullable=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['related_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['reverses_log_id'], ['credit_logs.id']),
        sa.CheckConstraint('amount <> 0', name='ck_credit_logs_amount_nonzero'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reverses_log_id', name='uq_credit_logs_reverses_log_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_credit_logs_user_id', 'credit_logs', ['user_id'])
    op.create_index('ix_credit_logs_log_type', 'credit_logs', ['log_type'])
    op.create_index('ix_credit_logs_created_at', 'credit_logs', ['created_at'])
    op.create_index('ix_credit_logs_user_created', 'credit_logs', ['user_id', 'created_at', 'id'])

    # ============================================================================
    # serial_counters: One authoritative row per sequence
    # ============================================================================
    op.create_table(
        'serial_counters',
        sa.Column('name', sa.String(length=32), nullable=False),
        sa.Column('last_value', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('name')
    )

    # ============================================================================
    # qr_codes: Printed parking codes and their lifecycle
    # ============================================================================
    op.create_table(
        'qr_codes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('serial_number', sa.String(length=32), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='UNUSED'),
        sa.Column('generated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('owner_user_id', sa.Integer(), nullable=True),
        sa.Column('owner_name', sa.String(length=128), nullable=True),
        sa.Column('vehicle_number', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['generated_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['owner_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sequence', name='uq_qr_codes_sequence'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_qr_codes_serial_number', 'qr_codes', ['serial_number'], unique=True)
    op.create_index('ix_qr_codes_code', 'qr_codes', ['code'], unique=True)
    op.create_index('ix_qr_codes_status', 'qr_codes', ['status'])
    op.create_index('ix_qr_codes_owner_user_id', 'qr_codes', ['owner_user_id'])
    op.create_index('ix_qr_codes_status_sequence', 'qr_codes', ['status', 'sequence'])

    # ============================================================================
    # security_events: Audit trail (user_id is deliberately not a FK)
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
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_security_events_user_id', 'security_events', ['user_id'])
    op.create_index('ix_security_events_event_type', 'security_events', ['event_type'])
    op.create_index('ix_security_events_success', 'security_events', ['success'])
    op.create_index('ix_security_events_occurred_at', 'security_events', ['occurred_at'])
    op.create_index('ix_security_events_user_type', 'security_events', ['user_id', 'event_type'])


def downgrade():
    """Drop all tables in reverse dependency order."""
    op.drop_table('security_events')
    op.drop_table('qr_codes')
    op.drop_table('serial_counters')
    op.drop_table('credit_logs')
    op.drop_table('credit_accounts')
    op.drop_table('users')
    op.drop_table('access_permissions')
    op.drop_table('access_roles')

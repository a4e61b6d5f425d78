"""create security tables

Revision ID: 001
Revises:
Create Date: 2026-10-17

Creates the tables behind authentication and two-factor security:
- users: account profile with role
- user_security_settings: encrypted TOTP secret, backup codes, lockout state
- two_factor_sessions: short-lived 2FA challenges
- audit_logs: append-only security event trail
- vendor_products: vendor catalogue (delete is 2FA protected)
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create security tables"""

    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('hashed_password', sa.String(255), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('last_login', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'user_security_settings',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column('two_factor_enabled', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('two_factor_secret_encrypted', sa.Text(), nullable=True),
        sa.Column('two_factor_backup_codes', JSONB, nullable=True),
        sa.Column('two_factor_enabled_at', sa.DateTime(), nullable=True),
        sa.Column('two_factor_last_used', sa.DateTime(), nullable=True),
        sa.Column('pending_secret_encrypted', sa.Text(), nullable=True),
        sa.Column('pending_secret_created_at', sa.DateTime(), nullable=True),
        sa.Column('failed_2fa_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('locked_until', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE')
    )

    op.create_table(
        'two_factor_sessions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('session_token', sa.String(64), nullable=False),
        sa.Column('purpose', sa.String(20), nullable=False),
        sa.Column('action_type', sa.String(32), nullable=True),
        sa.Column('action_context', JSONB, nullable=True),
        sa.Column('verified', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.CheckConstraint("purpose IN ('login', 'critical_action')", name='ck_two_factor_sessions_purpose')
    )
    op.create_index('ix_two_factor_sessions_session_token', 'two_factor_sessions', ['session_token'], unique=True)
    op.create_index('ix_two_factor_sessions_user_id', 'two_factor_sessions', ['user_id'])
    op.create_index('ix_two_factor_sessions_expires_at', 'two_factor_sessions', ['expires_at'])

    op.create_table(
        'audit_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('category', sa.String(30), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('target_type', sa.String(50), nullable=True),
        sa.Column('target_id', sa.String(100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('details', JSONB, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL')
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_category', 'audit_logs', ['category'])
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_target_type', 'audit_logs', ['target_type'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])

    # Composite indexes for common queries
    op.create_index('ix_audit_logs_user_created', 'audit_logs', ['user_id', 'created_at'])
    op.create_index('ix_audit_logs_action_created', 'audit_logs', ['action', 'created_at'])

    op.create_table(
        'vendor_products',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('vendor_id', UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['vendor_id'], ['users.id'], ondelete='CASCADE')
    )
    op.create_index('ix_vendor_products_vendor_id', 'vendor_products', ['vendor_id'])


def downgrade() -> None:
    """Drop security tables"""

    op.drop_table('vendor_products')
    op.drop_table('audit_logs')
    op.drop_table('two_factor_sessions')
    op.drop_table('user_security_settings')
    op.drop_table('users')

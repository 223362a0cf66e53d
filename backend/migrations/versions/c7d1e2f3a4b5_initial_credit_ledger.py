"""initial credit ledger

Revision ID: c7d1e2f3a4b5
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the credit subsystem schema:
- users: External identity mapping, role, cached credit balance
- credit_transactions: Append-only credit ledger

Invariants carried by the schema:
- users.external_id is unique (first-sight reconciliation race)
- users.credits >= 0
- one CREDIT_PURCHASE row per (user_id, package_id, allocation_period)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c7d1e2f3a4b5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # users: Application-side identity and cached balance
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('credits', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id', name='uq_users_external_id'),
        sa.CheckConstraint('credits >= 0', name='ck_users_credits_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_role', 'users', ['role'])

    # ============================================================================
    # credit_transactions: Append-only ledger
    # ============================================================================
    op.create_table(
        'credit_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=32), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('package_id', sa.String(length=32), nullable=True),
        sa.Column('allocation_period', sa.String(length=7), nullable=True),
        sa.Column('counterparty_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['counterparty_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'package_id', 'allocation_period',
                            name='uq_credit_txns_user_package_period'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_credit_transactions_user_id', 'credit_transactions', ['user_id'])
    op.create_index('ix_credit_txns_user_type_created', 'credit_transactions',
                    ['user_id', 'transaction_type', 'created_at'])


def downgrade():
    op.drop_index('ix_credit_txns_user_type_created', table_name='credit_transactions')
    op.drop_index('ix_credit_transactions_user_id', table_name='credit_transactions')
    op.drop_table('credit_transactions')
    op.drop_index('ix_users_role', table_name='users')
    op.drop_table('users')

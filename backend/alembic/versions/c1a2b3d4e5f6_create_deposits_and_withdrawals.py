"""create deposits and withdrawals tables

Revision ID: c1a2b3d4e5f6
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = 'c1a2b3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'deposits',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tx_hash', sa.String(length=66), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=True),
        sa.Column('user_ref', sa.String(length=255), nullable=False),
        sa.Column('from_address', sa.String(length=42), nullable=False),
        sa.Column('asset', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Numeric(precision=36, scale=18), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('confirmations', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='confirmed'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_deposits_tx_hash', 'deposits', ['tx_hash'], unique=True)
    op.create_index('ix_deposits_status', 'deposits', ['status'])
    op.create_index('idx_deposits_user_status', 'deposits', ['user_ref', 'status'])

    op.create_table(
        'withdrawals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('requester', sa.String(length=255), nullable=False),
        sa.Column('asset', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Numeric(precision=36, scale=18), nullable=False),
        sa.Column('to_address', sa.String(length=42), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('tx_hash', sa.String(length=66), nullable=True),
        sa.Column('failure_reason', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_withdrawals_requester', 'withdrawals', ['requester'])
    op.create_index('idx_withdrawals_status_created', 'withdrawals', ['status', 'created_at'])


def downgrade() -> None:
    op.drop_table('withdrawals')
    op.drop_table('deposits')

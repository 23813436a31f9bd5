"""Initial migration - create rentals, rental_events and credit ledger tables

Revision ID: 001
Revises: 
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create rentals table
    op.create_table(
        'rentals',
        sa.Column('rental_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('film_id', sa.Integer(), nullable=False),
        sa.Column('access_token', sa.String(length=64), nullable=True),
        sa.Column('tier', sa.Enum('RECENT', 'STANDARD', 'CLASSIC', name='rental_tier'), nullable=False),
        sa.Column('rented_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('viewing_mode', sa.Enum('UNSET', 'IN_STORE', 'TAKE_AWAY', name='viewing_mode'), nullable=False),
        sa.Column('watch_progress_percent', sa.Integer(), nullable=False),
        sa.Column('watch_completed_at', sa.DateTime(), nullable=True),
        sa.Column('rewind_claimed', sa.Boolean(), nullable=False),
        sa.Column('return_requested', sa.Boolean(), nullable=False),
        sa.Column('extension_used', sa.Boolean(), nullable=False),
        sa.Column('returned_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('rental_id'),
        sa.UniqueConstraint('access_token'),
    )

    # Single active holder per film
    op.create_index(
        'uq_rentals_active_film', 'rentals', ['film_id'],
        unique=True, postgresql_where=sa.text('is_active'),
    )
    op.create_index('idx_rentals_active_expires', 'rentals', ['is_active', 'expires_at'])
    op.create_index('idx_rentals_user_active', 'rentals', ['user_id', 'is_active'])
    op.create_index(op.f('ix_rentals_film_id'), 'rentals', ['film_id'])
    op.create_index(op.f('ix_rentals_user_id'), 'rentals', ['user_id'])

    # Create rental_events table
    op.create_table(
        'rental_events',
        sa.Column('event_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('rental_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('ts', sa.DateTime(), nullable=False),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('event_id'),
    )
    op.create_index(op.f('ix_rental_events_rental_id'), 'rental_events', ['rental_id'])
    op.create_index(op.f('ix_rental_events_ts'), 'rental_events', ['ts'])

    # Create credit ledger tables
    op.create_table(
        'credit_accounts',
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('balance', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('user_id'),
        sa.CheckConstraint('balance >= 0', name='ck_credit_accounts_balance_non_negative'),
    )
    op.create_table(
        'credit_ledger_entries',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('rental_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('ts', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_ledger_reason_rental', 'credit_ledger_entries', ['reason', 'rental_id'])
    op.create_index(
        'uq_ledger_refund_rental', 'credit_ledger_entries', ['rental_id'],
        unique=True, postgresql_where=sa.text("reason = 'refund'"),
    )
    op.create_index(op.f('ix_credit_ledger_entries_rental_id'), 'credit_ledger_entries', ['rental_id'])
    op.create_index(op.f('ix_credit_ledger_entries_user_id'), 'credit_ledger_entries', ['user_id'])


def downgrade() -> None:
    op.drop_index(op.f('ix_credit_ledger_entries_user_id'), table_name='credit_ledger_entries')
    op.drop_index(op.f('ix_credit_ledger_entries_rental_id'), table_name='credit_ledger_entries')
    op.drop_index('uq_ledger_refund_rental', table_name='credit_ledger_entries')
    op.drop_index('idx_ledger_reason_rental', table_name='credit_ledger_entries')
    op.drop_table('credit_ledger_entries')
    op.drop_table('credit_accounts')

    op.drop_index(op.f('ix_rental_events_ts'), table_name='rental_events')
    op.drop_index(op.f('ix_rental_events_rental_id'), table_name='rental_events')
    op.drop_table('rental_events')

    op.drop_index(op.f('ix_rentals_user_id'), table_name='rentals')
    op.drop_index(op.f('ix_rentals_film_id'), table_name='rentals')
    op.drop_index('idx_rentals_user_active', table_name='rentals')
    op.drop_index('idx_rentals_active_expires', table_name='rentals')
    op.drop_index('uq_rentals_active_film', table_name='rentals')
    op.drop_table('rentals')

    sa.Enum(name='viewing_mode').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='rental_tier').drop(op.get_bind(), checkfirst=True)

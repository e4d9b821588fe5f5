"""webhook delivery schema - endpoints, events, jobs, delivery logs

Revision ID: 001
Revises: 
Create Date: 2026-10-17 09:00:00.000000

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
    # Create webhook_endpoints table (owned by the endpoint registry)
    op.create_table(
        'webhook_endpoints',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('producer_id', sa.String(36), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('secret', sa.String(255), nullable=False),
        sa.Column('event_types', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('product_id', sa.String(36), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, index=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_webhook_endpoints_producer_active', 'webhook_endpoints', ['producer_id', 'is_active'])

    # Create transaction_events table (append-only)
    op.create_table(
        'transaction_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('producer_id', sa.String(36), nullable=False, index=True),
        sa.Column('sale_id', sa.String(36), nullable=True, index=True),
        sa.Column('product_id', sa.String(36), nullable=True),
        sa.Column('event_type', sa.String(64), nullable=False),
        sa.Column('metadata', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(), nullable=False, index=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_transaction_events_type_created', 'transaction_events', ['event_type', 'created_at'])

    # Create webhook_delivery_jobs table (status as VARCHAR)
    op.create_table(
        'webhook_delivery_jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('webhook_endpoint_id', sa.String(36), sa.ForeignKey('webhook_endpoints.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('transaction_event_id', sa.String(36), sa.ForeignKey('transaction_events.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('event_type', sa.String(64), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('next_attempt_at', sa.DateTime(), nullable=False),
        sa.Column('is_replay', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('last_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, index=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('attempts >= 0', name='ck_webhook_delivery_jobs_attempts_nonnegative'),
        sa.CheckConstraint('max_attempts >= 1', name='ck_webhook_delivery_jobs_max_attempts_positive'),
        sa.CheckConstraint('attempts <= max_attempts', name='ck_webhook_delivery_jobs_attempts_bounded'),
    )
    op.create_index('ix_webhook_delivery_jobs_due', 'webhook_delivery_jobs', ['status', 'next_attempt_at'])
    # At most one open organic job per (endpoint, event) pair
    op.create_index(
        'uq_webhook_delivery_jobs_open_pair',
        'webhook_delivery_jobs',
        ['webhook_endpoint_id', 'transaction_event_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'delivering') AND NOT is_replay"),
    )

    # Create webhook_event_logs table (one row per attempt)
    op.create_table(
        'webhook_event_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('endpoint_id', sa.String(36), nullable=False, index=True),
        sa.Column('job_id', sa.String(36), nullable=True, index=True),
        sa.Column('event_type', sa.String(64), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('attempt_number', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('response_status', sa.Integer(), nullable=True),
        sa.Column('response_body', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_webhook_event_logs_endpoint_created', 'webhook_event_logs', ['endpoint_id', 'created_at'])


def downgrade() -> None:
    op.drop_table('webhook_event_logs')
    op.drop_table('webhook_delivery_jobs')
    op.drop_table('transaction_events')
    op.drop_table('webhook_endpoints')

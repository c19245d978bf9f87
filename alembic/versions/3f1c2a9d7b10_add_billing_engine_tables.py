"""add_billing_engine_tables

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-19 09:12:44.118203

Creates the billing engine schema.

Tables:
- subscriptions: one row per account, mirrors the Stripe subscription
- usage_records: append-only usage ledger (high volume)
- invoices: Stripe invoices, upserted by external id
- billing_events: webhook audit log; unique external_event_id makes delivery idempotent
- billing_notifications: notifications for downstream delivery
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add billing tables with indexes and uniqueness constraints."""

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('account_id', sa.String(255), nullable=False),

        # Plan
        sa.Column('plan_id', sa.String(50), nullable=False),
        sa.Column('billing_cycle', sa.String(20), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),

        # External platform IDs
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),

        # Billing period
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),

        # Lifecycle timestamps
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_processor_event_at', sa.DateTime(timezone=True), nullable=True),

        # Standard timestamps
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id', name='pk_subscriptions'),
    )
    op.create_index('ix_subscriptions_id', 'subscriptions', ['id'])
    op.create_index('ix_subscriptions_account_id', 'subscriptions', ['account_id'], unique=True)
    op.create_index('ix_subscriptions_plan_id', 'subscriptions', ['plan_id'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_stripe_subscription_id', 'subscriptions', ['stripe_subscription_id'], unique=True)
    op.create_index('ix_subscriptions_stripe_customer_id', 'subscriptions', ['stripe_customer_id'])
    op.create_index('idx_subscription_status_plan', 'subscriptions', ['status', 'plan_id'])
    op.create_index('idx_subscription_period_end', 'subscriptions', ['current_period_end'])

    # Usage ledger (high volume, optimized for writes)
    op.create_table(
        'usage_records',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('account_id', sa.String(255), nullable=False),
        sa.Column('subscription_id', sa.BigInteger(), nullable=False),

        sa.Column('resource_type', sa.String(50), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('metadata', postgresql.JSON(astext_type=sa.Text()), nullable=False, server_default='{}'),
        sa.Column('idempotency_key', sa.String(255), nullable=True),

        sa.Column('billing_period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id', name='pk_usage_records'),
        sa.ForeignKeyConstraint(
            ['subscription_id'], ['subscriptions.id'],
            name='fk_usage_records_subscription_id_subscriptions', ondelete='CASCADE',
        ),
        sa.UniqueConstraint('account_id', 'idempotency_key', name='uq_usage_records_account_id'),
    )
    op.create_index('ix_usage_records_id', 'usage_records', ['id'])
    op.create_index('ix_usage_records_account_id', 'usage_records', ['account_id'])
    op.create_index('ix_usage_records_subscription_id', 'usage_records', ['subscription_id'])
    op.create_index('ix_usage_records_recorded_at', 'usage_records', ['recorded_at'])
    op.create_index('idx_usage_account_resource_period', 'usage_records', ['account_id', 'resource_type', 'billing_period_start'])
    op.create_index('idx_usage_account_resource_recorded', 'usage_records', ['account_id', 'resource_type', 'recorded_at'])

    # BRIN index for retention pruning range scans
    op.execute('CREATE INDEX idx_usage_records_recorded_at_brin ON usage_records USING BRIN (recorded_at)')

    op.create_table(
        'invoices',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('account_id', sa.String(255), nullable=False),
        sa.Column('subscription_id', sa.BigInteger(), nullable=True),
        sa.Column('external_invoice_id', sa.String(255), nullable=False),

        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(10), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('line_items', postgresql.JSON(astext_type=sa.Text()), nullable=False, server_default='[]'),
        sa.Column('hosted_invoice_url', sa.String(1024), nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id', name='pk_invoices'),
        sa.ForeignKeyConstraint(
            ['subscription_id'], ['subscriptions.id'],
            name='fk_invoices_subscription_id_subscriptions', ondelete='SET NULL',
        ),
    )
    op.create_index('ix_invoices_id', 'invoices', ['id'])
    op.create_index('ix_invoices_account_id', 'invoices', ['account_id'])
    op.create_index('ix_invoices_external_invoice_id', 'invoices', ['external_invoice_id'], unique=True)
    op.create_index('ix_invoices_created_at', 'invoices', ['created_at'])
    op.create_index('idx_invoice_account_status', 'invoices', ['account_id', 'status'])

    op.create_table(
        'billing_events',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('external_event_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('account_id', sa.String(255), nullable=True),
        sa.Column('payload', postgresql.JSON(astext_type=sa.Text()), nullable=False, server_default='{}'),

        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id', name='pk_billing_events'),
    )
    op.create_index('ix_billing_events_id', 'billing_events', ['id'])
    # Serialisation point for concurrent webhook deliveries
    op.create_index('ix_billing_events_external_event_id', 'billing_events', ['external_event_id'], unique=True)
    op.create_index('ix_billing_events_event_type', 'billing_events', ['event_type'])
    op.create_index('ix_billing_events_account_id', 'billing_events', ['account_id'])

    op.create_table(
        'billing_notifications',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('account_id', sa.String(255), nullable=False),
        sa.Column('notification_type', sa.String(50), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('data', postgresql.JSON(astext_type=sa.Text()), nullable=False, server_default='{}'),

        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id', name='pk_billing_notifications'),
    )
    op.create_index('ix_billing_notifications_id', 'billing_notifications', ['id'])
    op.create_index('ix_billing_notifications_account_id', 'billing_notifications', ['account_id'])


def downgrade() -> None:
    """Remove billing tables."""
    op.drop_table('billing_notifications')
    op.drop_table('billing_events')
    op.drop_table('invoices')
    op.execute('DROP INDEX IF EXISTS idx_usage_records_recorded_at_brin')
    op.drop_table('usage_records')
    op.drop_table('subscriptions')

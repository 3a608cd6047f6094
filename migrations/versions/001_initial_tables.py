"""Create billing tables

Revision ID: 001
Revises:
Create Date: 2026-10-17 10:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create billing tables"""

    # 1. Create users table
    op.create_table('users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('stripe_customer_id'),
    )

    # 2. Create plans table
    op.create_table('plans',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='usd'),
        sa.Column('billing_cycle', sa.String(20), nullable=False, server_default='monthly'),
        sa.Column('trial_period_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('stripe_price_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sa.CheckConstraint("billing_cycle IN ('weekly', 'monthly', 'quarterly', 'yearly')", name='ck_plans_billing_cycle'),
        sa.CheckConstraint('price >= 0', name='ck_plans_price'),
        sa.CheckConstraint('trial_period_days >= 0', name='ck_plans_trial_period_days'),
    )

    # 3. Create subscriptions table
    op.create_table('subscriptions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('plan_id', sa.Uuid(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('billing_cycle', sa.String(20), nullable=False, server_default='monthly'),
        sa.Column('is_auto_renew', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('trial_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_billing_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('grace_period_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('renewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('plan_changed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('renewal_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subscribed_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('failed_payment_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('external_subscription_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id']),
        sa.UniqueConstraint('external_subscription_id'),
        sa.CheckConstraint(
            "status IN ('pending', 'trial', 'active', 'past_due', 'suspended', 'cancelled', 'expired')",
            name='ck_subscriptions_status'
        ),
        sa.CheckConstraint('end_date > start_date', name='ck_subscriptions_period'),
        sa.CheckConstraint('renewal_count >= 0', name='ck_subscriptions_renewal_count'),
    )

    op.create_index('ix_subscriptions_user_status', 'subscriptions', ['user_id', 'status'])
    op.create_index('ix_subscriptions_status_end_date', 'subscriptions', ['status', 'end_date'])
    # At most one active/trial subscription per user
    op.create_index(
        'uq_subscriptions_user_current',
        'subscriptions',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('active', 'trial')"),
    )

    # 4. Create subscription_renewals table
    op.create_table('subscription_renewals',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('subscription_id', sa.Uuid(), nullable=False),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('renewal_number', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(20), nullable=False, server_default='api'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('subscription_id', 'period_end', name='uq_subscription_renewals_period'),
    )

    # 5. Create idempotency_keys table
    op.create_table('idempotency_keys',
        sa.Column('key', sa.String(36), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('method', sa.String(10), nullable=False),
        sa.Column('path', sa.String(500), nullable=False),
        sa.Column('state', sa.String(20), nullable=False, server_default='in_progress'),
        sa.Column('status_code', sa.Integer(), nullable=True),
        sa.Column('response_body', sa.LargeBinary(), nullable=True),
        sa.Column('content_type', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),

        sa.PrimaryKeyConstraint('key'),
        sa.CheckConstraint("state IN ('in_progress', 'completed')", name='ck_idempotency_keys_state'),
    )

    op.create_index('idx_idempotency_keys_expires_at', 'idempotency_keys', ['expires_at'])

    # 6. Create payments table
    op.create_table('payments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('stripe_payment_intent_id', sa.String(255), nullable=False),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='usd'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('type', sa.String(20), nullable=False, server_default='one_time'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('stripe_payment_intent_id'),
        sa.CheckConstraint('amount > 0', name='ck_payments_amount'),
    )

    op.create_index('ix_payments_stripe_customer_id', 'payments', ['stripe_customer_id'])
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])

    # 7. Create billing_records table
    op.create_table('billing_records',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('stripe_invoice_id', sa.String(255), nullable=False),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('amount_paid', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='usd'),
        sa.Column('status', sa.String(20), nullable=False, server_default='paid'),
        sa.Column('invoice_number', sa.String(100), nullable=True),
        sa.Column('hosted_invoice_url', sa.Text(), nullable=True),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('stripe_invoice_id'),
    )

    op.create_index('ix_billing_records_stripe_customer_id', 'billing_records', ['stripe_customer_id'])
    op.create_index('idx_billing_records_customer_created', 'billing_records', ['stripe_customer_id', 'created_at'])

    # 8. Create payment_failures table
    op.create_table('payment_failures',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('stripe_invoice_id', sa.String(255), nullable=False),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('amount_due', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='usd'),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('next_payment_attempt', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('stripe_invoice_id', 'attempt_count', name='uq_payment_failures_invoice_attempt'),
    )

    op.create_index('ix_payment_failures_stripe_customer_id', 'payment_failures', ['stripe_customer_id'])

    # 9. Create webhook_events table
    op.create_table('webhook_events',
        sa.Column('id', sa.String(255), nullable=False),
        sa.Column('type', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='processing'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),

        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("status IN ('processing', 'processed', 'failed')", name='ck_webhook_events_status'),
    )


def downgrade() -> None:
    """Drop billing tables"""
    op.drop_table('webhook_events')
    op.drop_table('payment_failures')
    op.drop_table('billing_records')
    op.drop_table('payments')
    op.drop_table('idempotency_keys')
    op.drop_table('subscription_renewals')
    op.drop_index('uq_subscriptions_user_current', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_table('plans')
    op.drop_table('users')

# 📄 File: billing_engine/modules/payments/infrastructure/database/models.py
# 🧭 Purpose (Layman Explanation):
# Defines how payments, paid invoices, failed payment attempts and the list of already-handled
# processor notifications are stored in the database.
#
# 🧪 Purpose (Technical Summary):
# SQLAlchemy ORM models for the payments module. Unique constraints carry the idempotency of
# webhook handling: one billing record per invoice, one failure row per (invoice, attempt),
# one ledger row per processor event id.
#
# 🔗 Dependencies:
# - SQLAlchemy ORM
# - billing_engine.shared.infrastructure.database (Base, UTCDateTime)
#
# 🔄 Connected Modules / Calls From:
# - payment_repository_impl.py, billing_repository_impl.py, webhook_event_repository_impl.py
# - migrations/versions/001_initial_tables.py

from uuid import uuid4

from sqlalchemy import JSON, Column, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid

from billing_engine.shared.infrastructure.database.connection import Base
from billing_engine.shared.infrastructure.database.types import UTCDateTime, utcnow


class PaymentModel(Base):
    """Local mirror of a processor payment intent."""
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid4)
    stripe_payment_intent_id = Column(String(255), nullable=False, unique=True, comment="Processor payment intent id")
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    amount = Column(Integer, nullable=False, comment="Minor currency units")
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(20), nullable=False, default="pending")
    type = Column(String(20), nullable=False, default="one_time")
    description = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    payment_metadata = Column("metadata", JSON, nullable=True)
    processed_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<PaymentModel(id={self.id}, intent={self.stripe_payment_intent_id}, status={self.status})>"


class BillingRecordModel(Base):
    """Receipt ledger, one row per paid invoice."""
    __tablename__ = "billing_records"

    id = Column(Uuid, primary_key=True, default=uuid4)
    stripe_invoice_id = Column(String(255), nullable=False, unique=True)
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    amount_paid = Column(Integer, nullable=False, default=0, comment="Minor currency units")
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(20), nullable=False, default="paid")
    invoice_number = Column(String(100), nullable=True)
    hosted_invoice_url = Column(Text, nullable=True)
    period_start = Column(UTCDateTime, nullable=True)
    period_end = Column(UTCDateTime, nullable=True)
    paid_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_billing_records_customer_created", "stripe_customer_id", "created_at"),
    )


class PaymentFailureModel(Base):
    """Failed collection attempts, one row per invoice attempt."""
    __tablename__ = "payment_failures"

    id = Column(Uuid, primary_key=True, default=uuid4)
    stripe_invoice_id = Column(String(255), nullable=False)
    attempt_count = Column(Integer, nullable=False, default=0)
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    amount_due = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="usd")
    failure_reason = Column(Text, nullable=True)
    next_payment_attempt = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("stripe_invoice_id", "attempt_count", name="uq_payment_failures_invoice_attempt"),
    )


class WebhookEventModel(Base):
    """Processed webhook event ledger."""
    __tablename__ = "webhook_events"

    id = Column(String(255), primary_key=True, comment="Processor event id")
    type = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default="processing")
    error = Column(Text, nullable=True)
    received_at = Column(UTCDateTime, nullable=False, default=utcnow)
    processed_at = Column(UTCDateTime, nullable=True)

# 📄 File: billing_engine/modules/subscriptions/infrastructure/database/models.py
# 🧭 Purpose (Layman Explanation):
# Defines how users, plans, subscriptions and the renewal history are stored in the database.
#
# 🧪 Purpose (Technical Summary):
# SQLAlchemy ORM models for the subscription module, mapping the domain models to tables
# with the constraints the lifecycle relies on (unique plan names, one renewal row per period).
#
# 🔗 Dependencies:
# - SQLAlchemy ORM
# - billing_engine.shared.infrastructure.database.connection (shared Base)
# - billing_engine.shared.infrastructure.database.types (UTCDateTime)
#
# 🔄 Connected Modules / Calls From:
# - subscription_repository_impl.py, plan_repository_impl.py, user_repository_impl.py
# - migrations/versions/001_initial_tables.py

"""
SQLAlchemy Models for Subscriptions

Models:
- UserModel: user directory entry with the processor customer id
- PlanModel: plan catalog entry (price, billing cycle, trial length)
- SubscriptionModel: subscription lifecycle state
- SubscriptionRenewalModel: one row per completed renewal period
"""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)

from billing_engine.shared.infrastructure.database.connection import Base
from billing_engine.shared.infrastructure.database.types import UTCDateTime, utcnow


# =============================================================================
# USER MODEL
# =============================================================================

class UserModel(Base):
    """User directory entry."""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid4, comment="Unique user identifier")
    email = Column(String(255), nullable=False, unique=True, comment="User email address")
    name = Column(String(255), nullable=True, comment="Display name")
    stripe_customer_id = Column(
        String(255),
        nullable=True,
        unique=True,
        comment="Payment processor customer reference"
    )
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<UserModel(id={self.id}, email={self.email})>"


# =============================================================================
# PLAN MODEL
# =============================================================================

class PlanModel(Base):
    """Plan catalog entry."""
    __tablename__ = "plans"

    id = Column(Uuid, primary_key=True, default=uuid4, comment="Unique plan identifier")
    name = Column(String(100), nullable=False, unique=True, comment="Plan name, unique")
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False, comment="Price per billing cycle")
    currency = Column(String(3), nullable=False, default="usd")
    billing_cycle = Column(
        String(20),
        nullable=False,
        default="monthly",
        comment="weekly/monthly/quarterly/yearly"
    )
    trial_period_days = Column(Integer, nullable=False, default=0, comment="0 means no trial")
    is_active = Column(Boolean, nullable=False, default=True)
    stripe_price_id = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<PlanModel(id={self.id}, name={self.name}, price={self.price})>"


# =============================================================================
# SUBSCRIPTION MODEL
# =============================================================================

class SubscriptionModel(Base):
    """
    SQLAlchemy model for subscription lifecycle state.

    Status transitions are enforced by the domain model; the table only
    stores the outcome.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_user_status", "user_id", "status"),
        Index("ix_subscriptions_status_end_date", "status", "end_date"),
        # At most one active/trial subscription per user
        Index(
            "uq_subscriptions_user_current",
            "user_id",
            unique=True,
            postgresql_where=text("status IN ('active', 'trial')"),
            sqlite_where=text("status IN ('active', 'trial')"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid4, comment="Unique subscription identifier")
    user_id = Column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owning user"
    )
    plan_id = Column(
        Uuid,
        ForeignKey("plans.id"),
        nullable=False,
        comment="Subscribed plan"
    )

    status = Column(
        String(20),
        nullable=False,
        default="pending",
        comment="pending/trial/active/past_due/suspended/cancelled/expired"
    )
    billing_cycle = Column(String(20), nullable=False, default="monthly")
    is_auto_renew = Column(Boolean, nullable=False, default=True)

    # Billing period
    start_date = Column(UTCDateTime, nullable=False)
    end_date = Column(UTCDateTime, nullable=False)
    trial_end_date = Column(UTCDateTime, nullable=True)
    next_billing_date = Column(UTCDateTime, nullable=True)
    grace_period_end_date = Column(UTCDateTime, nullable=True, comment="Suspend after this if unpaid")

    # Lifecycle stamps
    renewed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    plan_changed_at = Column(UTCDateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Metrics
    renewal_count = Column(Integer, nullable=False, default=0)
    subscribed_price = Column(Numeric(10, 2), nullable=False, comment="Plan price at subscribe time")
    failed_payment_attempts = Column(Integer, nullable=False, default=0)

    external_subscription_id = Column(
        String(255),
        nullable=True,
        unique=True,
        comment="Payment processor subscription reference"
    )

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<SubscriptionModel(id={self.id}, user_id={self.user_id}, status={self.status})>"


# =============================================================================
# RENEWAL LEDGER
# =============================================================================

class SubscriptionRenewalModel(Base):
    """
    One row per renewed billing period.

    The unique constraint makes a second renewal for the same target period
    fail at the storage layer, whichever process attempts it.
    """
    __tablename__ = "subscription_renewals"
    __table_args__ = (
        UniqueConstraint("subscription_id", "period_end", name="uq_subscription_renewals_period"),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    subscription_id = Column(
        Uuid,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
    )
    period_start = Column(UTCDateTime, nullable=False)
    period_end = Column(UTCDateTime, nullable=False)
    renewal_number = Column(Integer, nullable=False)
    source = Column(String(20), nullable=False, default="api", comment="api/scheduler")
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

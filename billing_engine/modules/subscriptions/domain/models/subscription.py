# 📄 File: billing_engine/modules/subscriptions/domain/models/subscription.py
# 🧭 Purpose (Layman Explanation):
# Describes a customer's subscription to a plan: when it started, when it ends, whether it is
# in trial, paid up, behind on payment or cancelled, and the rules for moving between those states.
# 🧪 Purpose (Technical Summary):
# Domain model for the Subscription entity implementing the lifecycle state machine
# (pending, trial, active, past_due, suspended, cancelled, expired), billing-cycle period
# arithmetic and the create/renew/cancel/change-plan business operations.
# 🔗 Dependencies:
# pydantic, python-dateutil (relativedelta), datetime, decimal, uuid, enum
# 🔄 Connected Modules / Calls From:
# subscription_service.py, webhook_reconciler.py, billing_service.py, scheduler jobs, repository impls

import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Optional

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict, Field, model_validator

from billing_engine.shared.core.exceptions import (
    BusinessRuleViolationError,
    ConflictError,
    InvalidStateTransitionError,
    ValidationError,
)

from .plan import BillingCycle, Plan

logger = logging.getLogger(__name__)


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states"""
    PENDING = "pending"
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"      # Payment failed, inside grace period
    SUSPENDED = "suspended"    # Grace period elapsed without payment
    CANCELLED = "cancelled"    # Terminal
    EXPIRED = "expired"


# States a user may hold at most one of at a time
CURRENT_STATUSES: FrozenSet[SubscriptionStatus] = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIAL,
})

ALLOWED_TRANSITIONS: Dict[SubscriptionStatus, FrozenSet[SubscriptionStatus]] = {
    SubscriptionStatus.PENDING: frozenset({
        SubscriptionStatus.TRIAL,
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.TRIAL: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.ACTIVE: frozenset({
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.SUSPENDED,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.PAST_DUE: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.SUSPENDED,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.SUSPENDED: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.EXPIRED: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
    }),
    SubscriptionStatus.CANCELLED: frozenset(),
}

BILLING_PERIODS: Dict[BillingCycle, relativedelta] = {
    BillingCycle.WEEKLY: relativedelta(days=7),
    BillingCycle.MONTHLY: relativedelta(months=1),
    BillingCycle.QUARTERLY: relativedelta(months=3),
    BillingCycle.YEARLY: relativedelta(years=1),
}


def add_billing_period(start: datetime, billing_cycle: str) -> datetime:
    """
    Advance ``start`` by one billing period.

    Calendar arithmetic: month ends clamp (Jan 31 + 1 month = Feb 28/29).
    Unknown cycle values fall back to monthly.
    """
    try:
        cycle = BillingCycle(billing_cycle)
    except ValueError:
        logger.warning(f"Unknown billing cycle '{billing_cycle}', defaulting to monthly")
        cycle = BillingCycle.MONTHLY
    return start + BILLING_PERIODS[cycle]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscription(BaseModel):
    """
    Subscription domain model.

    Invariants kept by the methods below:
    - end_date >= start_date
    - renewal_count only ever grows, by one per renewal
    - a cancelled subscription never moves to another status
    """

    model_config = ConfigDict(
        use_enum_values=True,
        validate_assignment=True,
        from_attributes=True,
    )

    # Identity and references (by-id lookups)
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    user_id: uuid.UUID
    plan_id: uuid.UUID

    status: SubscriptionStatus = SubscriptionStatus.PENDING
    billing_cycle: str = BillingCycle.MONTHLY.value
    is_auto_renew: bool = True

    # Billing period
    start_date: datetime
    end_date: datetime
    trial_end_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    grace_period_end_date: Optional[datetime] = None

    # Lifecycle stamps
    renewed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    plan_changed_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    # Metrics
    renewal_count: int = Field(default=0, ge=0)
    subscribed_price: Decimal = Field(default=Decimal("0"), ge=0)
    failed_payment_attempts: int = Field(default=0, ge=0)

    # External payment processor data
    external_subscription_id: Optional[str] = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def validate_period(self) -> "Subscription":
        if self.end_date < self.start_date:
            raise ValueError("Subscription end date must not be before its start date")
        return self

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def create_for_plan(
        cls,
        user_id: uuid.UUID,
        plan: Plan,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        status: Optional[SubscriptionStatus] = None,
        is_auto_renew: bool = True,
        now: Optional[datetime] = None,
    ) -> "Subscription":
        """
        Build a new subscription for ``plan``.

        Plans with a trial period start in ``trial``; others start ``active``
        unless an explicit status is given. The plan price is snapshotted.
        """
        now = now or _utcnow()
        start = start_date or now
        end = end_date or add_billing_period(start, plan.billing_cycle)
        if end < start:
            raise ValidationError(
                message="End date must not be before start date",
                field="end_date",
                value=end.isoformat(),
            )

        trial_end_date = None
        if plan.has_trial:
            initial_status = SubscriptionStatus.TRIAL
            trial_end_date = start + timedelta(days=plan.trial_period_days)
        else:
            initial_status = SubscriptionStatus.ACTIVE

        subscription = cls(
            user_id=user_id,
            plan_id=plan.id,
            status=status or initial_status,
            billing_cycle=plan.billing_cycle,
            is_auto_renew=is_auto_renew,
            start_date=start,
            end_date=end,
            trial_end_date=trial_end_date,
            next_billing_date=trial_end_date or end,
            subscribed_price=plan.price,
            created_at=now,
            updated_at=now,
        )
        if subscription.status == SubscriptionStatus.CANCELLED:
            subscription.cancelled_at = now
            subscription.is_auto_renew = False
        return subscription

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    @property
    def current_status(self) -> SubscriptionStatus:
        return SubscriptionStatus(self.status)

    def can_transition_to(self, new_status: SubscriptionStatus) -> bool:
        new_status = SubscriptionStatus(new_status)
        if new_status == self.current_status:
            return self.current_status != SubscriptionStatus.CANCELLED
        return new_status in ALLOWED_TRANSITIONS[self.current_status]

    def transition_to(self, new_status: SubscriptionStatus, now: Optional[datetime] = None) -> None:
        """
        Move to ``new_status`` if the lifecycle allows it.

        Raises:
            InvalidStateTransitionError: For any move out of cancelled or
                between incompatible states
        """
        new_status = SubscriptionStatus(new_status)
        if not self.can_transition_to(new_status):
            raise InvalidStateTransitionError(str(self.id), self.current_status.value, new_status.value)

        now = now or _utcnow()
        if new_status == SubscriptionStatus.CANCELLED:
            self.cancelled_at = now
            self.is_auto_renew = False
        self.status = new_status
        self.updated_at = now

    # ------------------------------------------------------------------
    # Business operations
    # ------------------------------------------------------------------

    def renew(self, custom_end_date: Optional[datetime] = None, now: Optional[datetime] = None) -> None:
        """
        Roll the subscription forward one billing period.

        The new period starts at the previous end date, not at ``now``, so
        late renewals do not lose time.
        """
        if self.current_status == SubscriptionStatus.CANCELLED:
            raise InvalidStateTransitionError(str(self.id), self.current_status.value, SubscriptionStatus.ACTIVE.value)

        now = now or _utcnow()
        new_end_date = custom_end_date or add_billing_period(self.end_date, self.billing_cycle)
        if new_end_date < self.end_date:
            raise ValidationError(
                message="Renewal end date must not be before the current end date",
                field="end_date",
                value=new_end_date.isoformat(),
            )

        self.transition_to(SubscriptionStatus.ACTIVE, now)
        self.end_date = new_end_date
        self.next_billing_date = new_end_date
        self.renewal_count += 1
        self.renewed_at = now
        self.grace_period_end_date = None
        self.failed_payment_attempts = 0

    def cancel(self, reason: Optional[str] = None, now: Optional[datetime] = None) -> None:
        if self.current_status == SubscriptionStatus.CANCELLED:
            raise ConflictError(
                message="Subscription is already cancelled",
                resource_type="subscription",
                conflict_field="status",
                existing_value=self.current_status.value,
            )
        self.transition_to(SubscriptionStatus.CANCELLED, now)
        self.cancellation_reason = reason

    def change_plan(self, new_plan: Plan, now: Optional[datetime] = None) -> None:
        """
        Switch to ``new_plan`` with immediate effect.

        The end date is recalculated from now with the new plan's cycle and
        the new price is snapshotted.
        """
        if new_plan.id == self.plan_id:
            raise BusinessRuleViolationError(
                message="New plan is the same as the current plan",
                rule="plan_change_requires_different_plan",
                context={"plan_id": str(new_plan.id)},
            )
        if self.current_status == SubscriptionStatus.CANCELLED:
            raise ConflictError(
                message="Cannot change the plan of a cancelled subscription",
                resource_type="subscription",
                conflict_field="status",
                existing_value=self.current_status.value,
            )

        now = now or _utcnow()
        period_start = max(now, self.start_date)
        self.plan_id = new_plan.id
        self.billing_cycle = new_plan.billing_cycle
        self.subscribed_price = new_plan.price
        self.end_date = add_billing_period(period_start, new_plan.billing_cycle)
        self.next_billing_date = self.end_date
        self.plan_changed_at = now
        self.updated_at = now

    def expire(self, now: Optional[datetime] = None) -> None:
        self.transition_to(SubscriptionStatus.EXPIRED, now)

    def mark_past_due(self, grace_period_days: int, now: Optional[datetime] = None) -> bool:
        """
        Record a failed payment and open the grace period.

        Returns False (and changes nothing) when the status does not allow it.
        A repeated failure keeps the original grace deadline.
        """
        if not self.can_transition_to(SubscriptionStatus.PAST_DUE):
            return False

        now = now or _utcnow()
        if self.grace_period_end_date is None or self.current_status != SubscriptionStatus.PAST_DUE:
            self.grace_period_end_date = now + timedelta(days=grace_period_days)
        self.failed_payment_attempts += 1
        self.transition_to(SubscriptionStatus.PAST_DUE, now)
        return True

    def restore_after_payment(self, now: Optional[datetime] = None) -> bool:
        """Return a past-due or suspended subscription to active once paid."""
        if self.current_status not in (SubscriptionStatus.PAST_DUE, SubscriptionStatus.SUSPENDED):
            return False
        self.transition_to(SubscriptionStatus.ACTIVE, now)
        self.grace_period_end_date = None
        self.failed_payment_attempts = 0
        return True

    def suspend(self, now: Optional[datetime] = None) -> None:
        self.transition_to(SubscriptionStatus.SUSPENDED, now)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.end_date <= (now or _utcnow())

    def is_in_trial(self, now: Optional[datetime] = None) -> bool:
        return (
            self.current_status == SubscriptionStatus.TRIAL
            and self.trial_end_date is not None
            and self.trial_end_date > (now or _utcnow())
        )

    def days_until_expiry(self, now: Optional[datetime] = None) -> int:
        remaining = self.end_date - (now or _utcnow())
        return max(0, remaining.days)

    def grace_period_elapsed(self, now: Optional[datetime] = None) -> bool:
        return (
            self.current_status == SubscriptionStatus.PAST_DUE
            and self.grace_period_end_date is not None
            and self.grace_period_end_date <= (now or _utcnow())
        )

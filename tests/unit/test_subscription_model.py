"""Tests for the Subscription domain model and billing period arithmetic."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from billing_engine.modules.subscriptions.domain.models.plan import BillingCycle, Plan
from billing_engine.modules.subscriptions.domain.models.subscription import (
    ALLOWED_TRANSITIONS,
    Subscription,
    SubscriptionStatus,
    add_billing_period,
)
from billing_engine.shared.core.exceptions import (
    BusinessRuleViolationError,
    ConflictError,
    InvalidStateTransitionError,
    ValidationError,
)

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_plan(**overrides) -> Plan:
    data = {"name": "Basic", "price": Decimal("10.00"), "billing_cycle": BillingCycle.MONTHLY.value}
    data.update(overrides)
    return Plan(**data)


def make_subscription(status=SubscriptionStatus.ACTIVE, plan=None, **overrides) -> Subscription:
    subscription = Subscription.create_for_plan(
        user_id=uuid.uuid4(),
        plan=plan or make_plan(),
        start_date=NOW,
        status=status,
        now=NOW,
    )
    for field, value in overrides.items():
        setattr(subscription, field, value)
    return subscription


class TestBillingPeriods:

    @pytest.mark.parametrize("cycle, expected", [
        ("weekly", datetime(2024, 1, 8, tzinfo=timezone.utc)),
        ("monthly", datetime(2024, 2, 1, tzinfo=timezone.utc)),
        ("quarterly", datetime(2024, 4, 1, tzinfo=timezone.utc)),
        ("yearly", datetime(2025, 1, 1, tzinfo=timezone.utc)),
    ])
    def test_one_period_per_cycle(self, cycle, expected):
        assert add_billing_period(datetime(2024, 1, 1, tzinfo=timezone.utc), cycle) == expected

    def test_month_end_clamps(self):
        jan_31 = datetime(2024, 1, 31, tzinfo=timezone.utc)

        assert add_billing_period(jan_31, "monthly") == datetime(2024, 2, 29, tzinfo=timezone.utc)
        assert add_billing_period(datetime(2023, 1, 31, tzinfo=timezone.utc), "monthly") == datetime(
            2023, 2, 28, tzinfo=timezone.utc
        )

    def test_unknown_cycle_falls_back_to_monthly(self):
        start = datetime(2024, 1, 15, tzinfo=timezone.utc)

        assert add_billing_period(start, "fortnightly") == datetime(2024, 2, 15, tzinfo=timezone.utc)


class TestCreateForPlan:

    def test_plan_without_trial_starts_active(self):
        subscription = Subscription.create_for_plan(uuid.uuid4(), make_plan(), start_date=NOW, now=NOW)

        assert subscription.status == SubscriptionStatus.ACTIVE.value
        assert subscription.end_date == datetime(2024, 4, 10, 12, 0, tzinfo=timezone.utc)
        assert subscription.trial_end_date is None
        assert subscription.subscribed_price == Decimal("10.00")

    def test_plan_with_trial_starts_in_trial(self):
        plan = make_plan(trial_period_days=14)

        subscription = Subscription.create_for_plan(uuid.uuid4(), plan, start_date=NOW, now=NOW)

        assert subscription.status == SubscriptionStatus.TRIAL.value
        assert subscription.trial_end_date == NOW + timedelta(days=14)
        assert subscription.next_billing_date == subscription.trial_end_date
        assert subscription.is_in_trial(NOW)

    def test_end_before_start_is_rejected(self):
        with pytest.raises(ValidationError):
            Subscription.create_for_plan(
                uuid.uuid4(), make_plan(), start_date=NOW, end_date=NOW - timedelta(days=1), now=NOW
            )

    def test_created_cancelled_is_stamped(self):
        subscription = make_subscription(status=SubscriptionStatus.CANCELLED)

        assert subscription.cancelled_at == NOW
        assert subscription.is_auto_renew is False


class TestTransitions:

    @pytest.mark.parametrize("target", list(SubscriptionStatus))
    def test_cancelled_is_terminal(self, target):
        subscription = make_subscription(status=SubscriptionStatus.CANCELLED)

        with pytest.raises(InvalidStateTransitionError):
            subscription.transition_to(target)

        assert subscription.status == SubscriptionStatus.CANCELLED.value

    def test_every_state_can_be_cancelled_except_cancelled(self):
        for status, targets in ALLOWED_TRANSITIONS.items():
            if status == SubscriptionStatus.CANCELLED:
                assert not targets
            else:
                assert SubscriptionStatus.CANCELLED in targets

    def test_illegal_transition_raises_conflict(self):
        subscription = make_subscription(status=SubscriptionStatus.PENDING)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            subscription.transition_to(SubscriptionStatus.SUSPENDED)

        assert exc_info.value.status_code == 409

    def test_cancel_stamps_and_disables_auto_renew(self):
        subscription = make_subscription()

        subscription.cancel(reason="Too expensive", now=NOW)

        assert subscription.status == SubscriptionStatus.CANCELLED.value
        assert subscription.cancelled_at == NOW
        assert subscription.cancellation_reason == "Too expensive"
        assert subscription.is_auto_renew is False

    def test_cancel_twice_is_a_conflict(self):
        subscription = make_subscription()
        subscription.cancel()

        with pytest.raises(ConflictError):
            subscription.cancel()


class TestRenew:

    def test_renew_extends_from_previous_end(self):
        subscription = make_subscription()
        previous_end = subscription.end_date

        subscription.renew(now=previous_end + timedelta(days=3))

        assert subscription.end_date == add_billing_period(previous_end, "monthly")
        assert subscription.renewal_count == 1
        assert subscription.renewed_at == previous_end + timedelta(days=3)

    def test_renew_moves_trial_to_active(self):
        subscription = make_subscription(status=SubscriptionStatus.TRIAL)

        subscription.renew(now=NOW)

        assert subscription.status == SubscriptionStatus.ACTIVE.value

    def test_renew_clears_grace_period(self):
        subscription = make_subscription()
        subscription.mark_past_due(7, now=NOW)

        subscription.renew(now=NOW)

        assert subscription.status == SubscriptionStatus.ACTIVE.value
        assert subscription.grace_period_end_date is None
        assert subscription.failed_payment_attempts == 0

    def test_renew_with_custom_end_date(self):
        subscription = make_subscription()
        custom_end = subscription.end_date + timedelta(days=10)

        subscription.renew(custom_end_date=custom_end, now=NOW)

        assert subscription.end_date == custom_end

    def test_renew_custom_end_before_current_end_is_rejected(self):
        subscription = make_subscription()

        with pytest.raises(ValidationError):
            subscription.renew(custom_end_date=subscription.end_date - timedelta(days=1))

        assert subscription.renewal_count == 0

    def test_cancelled_subscription_cannot_renew(self):
        subscription = make_subscription()
        subscription.cancel()

        with pytest.raises(InvalidStateTransitionError):
            subscription.renew()

        assert subscription.renewal_count == 0


class TestChangePlan:

    def test_change_plan_recomputes_end_from_now(self):
        subscription = make_subscription()
        yearly = make_plan(name="Yearly", price=Decimal("100.00"), billing_cycle="yearly")
        later = NOW + timedelta(days=5)

        subscription.change_plan(yearly, now=later)

        assert subscription.plan_id == yearly.id
        assert subscription.billing_cycle == "yearly"
        assert subscription.subscribed_price == Decimal("100.00")
        assert subscription.end_date == datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)
        assert subscription.plan_changed_at == later

    def test_change_to_same_plan_is_rejected(self):
        plan = make_plan()
        subscription = make_subscription(plan=plan)

        with pytest.raises(BusinessRuleViolationError):
            subscription.change_plan(plan)

    def test_cancelled_subscription_cannot_change_plan(self):
        subscription = make_subscription()
        subscription.cancel()

        with pytest.raises(ConflictError):
            subscription.change_plan(make_plan(name="Other"))


class TestPaymentOutcomes:

    def test_mark_past_due_opens_grace_period(self):
        subscription = make_subscription()

        assert subscription.mark_past_due(7, now=NOW) is True

        assert subscription.status == SubscriptionStatus.PAST_DUE.value
        assert subscription.grace_period_end_date == NOW + timedelta(days=7)
        assert subscription.failed_payment_attempts == 1

    def test_repeated_failure_keeps_grace_deadline(self):
        subscription = make_subscription()
        subscription.mark_past_due(7, now=NOW)

        subscription.mark_past_due(7, now=NOW + timedelta(days=2))

        assert subscription.grace_period_end_date == NOW + timedelta(days=7)
        assert subscription.failed_payment_attempts == 2

    def test_cancelled_subscription_ignores_payment_failure(self):
        subscription = make_subscription()
        subscription.cancel()

        assert subscription.mark_past_due(7) is False
        assert subscription.status == SubscriptionStatus.CANCELLED.value

    def test_grace_period_elapsed(self):
        subscription = make_subscription()
        subscription.mark_past_due(7, now=NOW)

        assert not subscription.grace_period_elapsed(NOW + timedelta(days=6))
        assert subscription.grace_period_elapsed(NOW + timedelta(days=7))

    def test_restore_after_payment(self):
        subscription = make_subscription()
        subscription.mark_past_due(7, now=NOW)
        subscription.suspend(NOW + timedelta(days=8))

        assert subscription.restore_after_payment() is True

        assert subscription.status == SubscriptionStatus.ACTIVE.value
        assert subscription.grace_period_end_date is None

    def test_restore_is_a_no_op_when_active(self):
        assert make_subscription().restore_after_payment() is False


class TestQueries:

    def test_days_until_expiry(self):
        subscription = make_subscription()

        assert subscription.days_until_expiry(subscription.end_date - timedelta(days=3, hours=2)) == 3
        assert subscription.days_until_expiry(subscription.end_date + timedelta(days=1)) == 0

    def test_is_expired(self):
        subscription = make_subscription()

        assert not subscription.is_expired(subscription.end_date - timedelta(seconds=1))
        assert subscription.is_expired(subscription.end_date)

"""Subscription lifecycle against a real (SQLite) database.

Tests cover:
- At most one active or trial subscription per user
- Renewal ledger preventing double renewal of a period
- Cancelled subscriptions staying cancelled
- Expiry, auto-renewal and grace period sweeps
"""

from datetime import datetime, timedelta, timezone

import pytest

from billing_engine.modules.subscriptions.domain.models.subscription import SubscriptionStatus
from billing_engine.modules.subscriptions.presentation.dependencies import build_subscription_service
from billing_engine.shared.core.exceptions import (
    BusinessRuleViolationError,
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
)
from billing_engine.shared.infrastructure.database.session import database_session


async def create_subscription(user, plan, **kwargs):
    async with database_session() as db:
        return await build_subscription_service(db).create_subscription(user.id, plan.id, **kwargs)


async def load(subscription_id):
    async with database_session() as db:
        return await build_subscription_service(db).get_subscription(subscription_id)


class TestCreateSubscription:

    @pytest.mark.asyncio
    async def test_create_for_plan_without_trial(self, user, monthly_plan):
        subscription = await create_subscription(user, monthly_plan)

        stored = await load(subscription.id)
        assert stored.status == SubscriptionStatus.ACTIVE.value
        assert stored.subscribed_price == monthly_plan.price
        assert stored.end_date > stored.start_date

    @pytest.mark.asyncio
    async def test_create_for_trial_plan(self, user, trial_plan):
        subscription = await create_subscription(user, trial_plan)

        assert subscription.status == SubscriptionStatus.TRIAL.value
        assert subscription.trial_end_date == subscription.start_date + timedelta(days=14)

    @pytest.mark.asyncio
    async def test_second_current_subscription_is_rejected(self, user, monthly_plan, yearly_plan):
        await create_subscription(user, monthly_plan)

        with pytest.raises(ConflictError):
            await create_subscription(user, yearly_plan)

    @pytest.mark.asyncio
    async def test_new_subscription_allowed_after_cancel(self, user, monthly_plan, yearly_plan):
        first = await create_subscription(user, monthly_plan)
        async with database_session() as db:
            await build_subscription_service(db).cancel(first.id)

        second = await create_subscription(user, yearly_plan)

        assert second.status == SubscriptionStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_other_users_are_independent(self, user, other_user, monthly_plan):
        await create_subscription(user, monthly_plan)

        subscription = await create_subscription(other_user, monthly_plan)

        assert subscription.user_id == other_user.id

    @pytest.mark.asyncio
    async def test_unknown_user_or_plan(self, user, monthly_plan):
        async with database_session() as db:
            service = build_subscription_service(db)
            with pytest.raises(NotFoundError):
                await service.create_subscription(monthly_plan.id, monthly_plan.id)
            with pytest.raises(NotFoundError):
                await service.create_subscription(user.id, user.id)

    @pytest.mark.asyncio
    async def test_reactivating_second_subscription_is_rejected(self, user, monthly_plan, yearly_plan):
        first = await create_subscription(user, monthly_plan)
        async with database_session() as db:
            await build_subscription_service(db).update_subscription(first.id, {"status": "suspended"})
        second = await create_subscription(user, yearly_plan)

        async with database_session() as db:
            with pytest.raises(ConflictError):
                await build_subscription_service(db).update_subscription(first.id, {"status": "active"})

        assert (await load(first.id)).status == SubscriptionStatus.SUSPENDED.value
        assert (await load(second.id)).status == SubscriptionStatus.ACTIVE.value


class TestRenewal:

    @pytest.mark.asyncio
    async def test_renew_extends_one_period(self, user, monthly_plan):
        subscription = await create_subscription(user, monthly_plan)

        async with database_session() as db:
            renewed = await build_subscription_service(db).renew(subscription.id)

        assert renewed.renewal_count == 1
        assert renewed.end_date > subscription.end_date
        assert renewed.start_date == subscription.start_date

    @pytest.mark.asyncio
    async def test_same_period_cannot_be_renewed_twice(self, user, monthly_plan):
        subscription = await create_subscription(user, monthly_plan)
        custom_end = subscription.end_date + timedelta(days=30)
        async with database_session() as db:
            await build_subscription_service(db).renew(subscription.id, custom_end_date=custom_end)

        # A stale copy renewing from the old end date lands on the same period
        async with database_session() as db:
            service = build_subscription_service(db)
            stale = await service.get_subscription(subscription.id)
            stale.end_date = subscription.end_date
            await service.subscription_repository.save(stale)
        with pytest.raises(ConflictError):
            async with database_session() as db:
                await build_subscription_service(db).renew(subscription.id, custom_end_date=custom_end)

    @pytest.mark.asyncio
    async def test_cancelled_subscription_cannot_renew(self, user, monthly_plan):
        subscription = await create_subscription(user, monthly_plan)
        async with database_session() as db:
            await build_subscription_service(db).cancel(subscription.id, reason="moving on")

        with pytest.raises(InvalidStateTransitionError):
            async with database_session() as db:
                await build_subscription_service(db).renew(subscription.id)

        stored = await load(subscription.id)
        assert stored.status == SubscriptionStatus.CANCELLED.value
        assert stored.renewal_count == 0


class TestCancelledSafety:

    @pytest.mark.asyncio
    async def test_cancelled_cannot_be_reactivated_by_update(self, user, monthly_plan):
        subscription = await create_subscription(user, monthly_plan)
        async with database_session() as db:
            await build_subscription_service(db).cancel(subscription.id)

        with pytest.raises(InvalidStateTransitionError):
            async with database_session() as db:
                await build_subscription_service(db).update_subscription(subscription.id, {"status": "active"})

        assert (await load(subscription.id)).status == SubscriptionStatus.CANCELLED.value

    @pytest.mark.asyncio
    async def test_processor_update_cannot_reactivate(self, user, monthly_plan):
        subscription = await create_subscription(user, monthly_plan)
        async with database_session() as db:
            await build_subscription_service(db).cancel(subscription.id)

        async with database_session() as db:
            service = build_subscription_service(db)
            cancelled = await service.get_subscription(subscription.id)
            await service.apply_processor_update(cancelled, processor_status="active", cancel_at_period_end=False)

        stored = await load(subscription.id)
        assert stored.status == SubscriptionStatus.CANCELLED.value
        assert stored.is_auto_renew is False

    @pytest.mark.asyncio
    async def test_cancel_twice_is_a_conflict(self, user, monthly_plan):
        subscription = await create_subscription(user, monthly_plan)
        async with database_session() as db:
            await build_subscription_service(db).cancel(subscription.id)

        with pytest.raises(ConflictError):
            async with database_session() as db:
                await build_subscription_service(db).cancel(subscription.id)


class TestChangePlan:

    @pytest.mark.asyncio
    async def test_change_plan(self, user, monthly_plan, yearly_plan):
        subscription = await create_subscription(user, monthly_plan)

        async with database_session() as db:
            changed = await build_subscription_service(db).change_plan(subscription.id, yearly_plan.id)

        assert changed.plan_id == yearly_plan.id
        assert changed.billing_cycle == "yearly"
        assert changed.end_date - changed.start_date >= timedelta(days=365)

    @pytest.mark.asyncio
    async def test_change_to_same_plan(self, user, monthly_plan):
        subscription = await create_subscription(user, monthly_plan)

        with pytest.raises(BusinessRuleViolationError):
            async with database_session() as db:
                await build_subscription_service(db).change_plan(subscription.id, monthly_plan.id)


class TestSweeps:

    @pytest.mark.asyncio
    async def test_expiry_sweep(self, user, other_user, monthly_plan):
        start = datetime.now(timezone.utc) - timedelta(days=40)
        lapsed = await create_subscription(user, monthly_plan, start_date=start, is_auto_renew=False)
        auto_renewing = await create_subscription(other_user, monthly_plan, start_date=start)

        async with database_session() as db:
            result = await build_subscription_service(db).process_expired_subscriptions()

        assert result == {"processed": 1, "expired": 1, "failed": 0}
        assert (await load(lapsed.id)).status == SubscriptionStatus.EXPIRED.value
        assert (await load(auto_renewing.id)).status == SubscriptionStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_auto_renewal_sweep(self, user, other_user, monthly_plan):
        now = datetime.now(timezone.utc)
        due = await create_subscription(user, monthly_plan, start_date=now - timedelta(days=30), end_date=now + timedelta(hours=6))
        not_due = await create_subscription(other_user, monthly_plan, start_date=now)

        async with database_session() as db:
            result = await build_subscription_service(db).process_auto_renewals(now)

        assert result == {"processed": 1, "renewed": 1, "skipped": 0, "failed": 0}
        renewed = await load(due.id)
        assert renewed.renewal_count == 1
        assert renewed.end_date > now + timedelta(days=27)
        assert (await load(not_due.id)).renewal_count == 0

    @pytest.mark.asyncio
    async def test_grace_period_sweep(self, user, monthly_plan):
        subscription = await create_subscription(user, monthly_plan)
        async with database_session() as db:
            service = build_subscription_service(db)
            await service.mark_payment_failed(await service.get_subscription(subscription.id))
        suspended_ids = []

        async def on_suspended(suspended):
            suspended_ids.append(suspended.id)

        async with database_session() as db:
            service = build_subscription_service(db)
            early = await service.process_grace_periods(datetime.now(timezone.utc) + timedelta(days=6))
            late = await service.process_grace_periods(
                datetime.now(timezone.utc) + timedelta(days=8), on_suspended=on_suspended
            )

        assert early == {"processed": 0, "suspended": 0, "failed": 0}
        assert late == {"processed": 1, "suspended": 1, "failed": 0}
        assert suspended_ids == [subscription.id]
        assert (await load(subscription.id)).status == SubscriptionStatus.SUSPENDED.value


class TestStats:

    @pytest.mark.asyncio
    async def test_counts_by_status(self, user, other_user, monthly_plan):
        await create_subscription(user, monthly_plan)
        cancelled = await create_subscription(other_user, monthly_plan)
        async with database_session() as db:
            await build_subscription_service(db).cancel(cancelled.id)

        async with database_session() as db:
            stats = await build_subscription_service(db).get_stats()

        assert stats["total"] == 2
        assert stats["active"] == 1
        assert stats["cancelled"] == 1
        assert stats["past_due"] == 0

"""Scheduled sweeps running against the database."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from billing_engine.background_jobs.scheduler import BillingScheduler
from billing_engine.modules.subscriptions.domain.models.subscription import SubscriptionStatus
from billing_engine.modules.subscriptions.presentation.dependencies import build_subscription_service
from billing_engine.shared.infrastructure.database.session import database_session


async def create_subscription(user, plan, **kwargs):
    async with database_session() as db:
        return await build_subscription_service(db).create_subscription(user.id, plan.id, **kwargs)


async def load(subscription_id):
    async with database_session() as db:
        return await build_subscription_service(db).get_subscription(subscription_id)


@pytest.fixture
def scheduler(database, gateway, notification_service):
    return BillingScheduler(gateway=gateway, notification_service=notification_service, stripe_gateway=MagicMock())


class TestSubscriptionSweeps:

    @pytest.mark.asyncio
    async def test_grace_period_sweep_suspends_and_notifies(self, scheduler, user, monthly_plan, notification_task):
        subscription = await create_subscription(user, monthly_plan)
        async with database_session() as db:
            service = build_subscription_service(db)
            await service.mark_payment_failed(await service.get_subscription(subscription.id))

        result = await scheduler.process_grace_periods(datetime.now(timezone.utc) + timedelta(days=8))

        assert result == {"processed": 1, "suspended": 1, "failed": 0}
        assert (await load(subscription.id)).status == SubscriptionStatus.SUSPENDED.value
        notification_task.delay.assert_called_once_with(
            "subscription_suspended",
            "ada@example.com",
            {"subscription_id": str(subscription.id)},
        )

    @pytest.mark.asyncio
    async def test_expiry_sweep(self, scheduler, user, monthly_plan):
        start = datetime.now(timezone.utc) - timedelta(days=40)
        subscription = await create_subscription(user, monthly_plan, start_date=start, is_auto_renew=False)

        result = await scheduler.process_expired_subscriptions()

        assert result["expired"] == 1
        assert (await load(subscription.id)).status == SubscriptionStatus.EXPIRED.value

    @pytest.mark.asyncio
    async def test_running_a_sweep_twice_changes_nothing_more(self, scheduler, user, monthly_plan):
        now = datetime.now(timezone.utc)
        subscription = await create_subscription(
            user, monthly_plan, start_date=now - timedelta(days=30), end_date=now + timedelta(hours=6)
        )

        first = await scheduler.process_auto_renewals(now)
        second = await scheduler.process_auto_renewals(now)

        assert first["renewed"] == 1
        assert second["renewed"] == 0
        assert (await load(subscription.id)).renewal_count == 1


class TestRenewalReminders:

    @pytest.mark.asyncio
    async def test_reminder_sent_for_subscription_ending_in_window(
        self, scheduler, user, other_user, monthly_plan, notification_task
    ):
        now = datetime.now(timezone.utc)
        await create_subscription(
            user, monthly_plan, start_date=now - timedelta(days=20), end_date=now + timedelta(days=3, hours=12)
        )
        await create_subscription(other_user, monthly_plan, start_date=now)

        result = await scheduler.check_upcoming_renewals(now)

        assert result == {"processed": 1, "sent": 1, "failed": 0}
        kind, recipient, _ = notification_task.delay.call_args.args
        assert (kind, recipient) == ("renewal_reminder", "ada@example.com")


class TestIdempotencyPurge:

    @pytest.mark.asyncio
    async def test_purge_with_nothing_stored(self, scheduler):
        assert await scheduler.purge_idempotency_keys() == {"deleted": 0}

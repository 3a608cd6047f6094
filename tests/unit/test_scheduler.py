"""Tests for the scheduled billing jobs with the processor and storage mocked out.

Tests cover:
- Failed payment sweep: zero-attempt invoices skipped, per-invoice isolation
- Processor outages turning a run into a skip
- Weekly summary arithmetic
- Job-level fault isolation
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from billing_engine.background_jobs.scheduler import BillingScheduler
from billing_engine.shared.core.circuit_breaker import CircuitBreakerRegistry, ResilientGateway

NOW = datetime(2024, 6, 3, 9, 0, tzinfo=timezone.utc)


@asynccontextmanager
async def fake_session_scope():
    yield MagicMock()


def make_scheduler(invoices=None, list_side_effect=None):
    stripe_gateway = MagicMock()
    stripe_gateway.list_recent_invoices = AsyncMock(return_value=invoices, side_effect=list_side_effect)
    scheduler = BillingScheduler(
        gateway=ResilientGateway(CircuitBreakerRegistry()),
        session_scope=fake_session_scope,
        notification_service=MagicMock(),
        stripe_gateway=stripe_gateway,
    )
    return scheduler, stripe_gateway


class TestCheckFailedPayments:

    @pytest.mark.asyncio
    async def test_only_invoices_with_failed_attempts_are_processed(self):
        invoices = [
            {"id": "in_1", "attempt_count": 0},
            {"id": "in_2", "attempt_count": 1},
            {"id": "in_3", "attempt_count": 3},
            {"id": "in_4"},
        ]
        scheduler, stripe_gateway = make_scheduler(invoices)
        billing_service = MagicMock()
        billing_service.process_payment_failure = AsyncMock(return_value=True)

        with patch("billing_engine.background_jobs.scheduler.build_billing_service", return_value=billing_service):
            result = await scheduler.check_failed_payments(NOW)

        assert result == {"processed": 4, "recorded": 2, "duplicates": 0, "skipped": 2, "failed": 0}
        processed_ids = [call.args[0]["id"] for call in billing_service.process_payment_failure.await_args_list]
        assert processed_ids == ["in_2", "in_3"]
        assert stripe_gateway.list_recent_invoices.await_args.kwargs["status"] == "open"
        assert stripe_gateway.list_recent_invoices.await_args.kwargs["limit"] == 50

    @pytest.mark.asyncio
    async def test_one_bad_invoice_does_not_stop_the_rest(self):
        invoices = [
            {"id": "in_1", "attempt_count": 1},
            {"id": "in_2", "attempt_count": 1},
            {"id": "in_3", "attempt_count": 2},
        ]
        scheduler, _ = make_scheduler(invoices)
        billing_service = MagicMock()
        billing_service.process_payment_failure = AsyncMock(side_effect=[True, RuntimeError("boom"), False])

        with patch("billing_engine.background_jobs.scheduler.build_billing_service", return_value=billing_service):
            result = await scheduler.check_failed_payments(NOW)

        assert result == {"processed": 3, "recorded": 1, "duplicates": 1, "skipped": 0, "failed": 1}

    @pytest.mark.asyncio
    async def test_processor_outage_skips_run(self):
        scheduler, _ = make_scheduler({"skipped": True, "reason": "Service unavailable"})

        with patch("billing_engine.background_jobs.scheduler.build_billing_service") as build:
            result = await scheduler.check_failed_payments(NOW)

        assert result["skipped"] is True
        build.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self):
        scheduler, _ = make_scheduler(list_side_effect=RuntimeError("unexpected"))

        result = await scheduler.check_failed_payments(NOW)

        assert result == {"failed": True, "error": "unexpected"}


class TestWeeklySummary:

    def test_summarize_invoices(self):
        invoices = [
            {"status": "paid", "amount_paid": 1000},
            {"status": "paid", "amount_paid": 2550},
            {"status": "open", "attempt_count": 2, "amount_paid": 0},
            {"status": "open", "attempt_count": 0},
            {"status": "void"},
        ]

        summary = BillingScheduler.summarize_invoices(invoices)

        assert summary == {
            "total_invoices": 5,
            "paid_invoices": 2,
            "failed_invoices": 1,
            "total_revenue": 35.5,
        }

    def test_summarize_no_invoices(self):
        assert BillingScheduler.summarize_invoices([]) == {
            "total_invoices": 0,
            "paid_invoices": 0,
            "failed_invoices": 0,
            "total_revenue": 0,
        }

    @pytest.mark.asyncio
    async def test_weekly_summary_reads_last_week(self):
        scheduler, stripe_gateway = make_scheduler([{"status": "paid", "amount_paid": 500}])

        result = await scheduler.weekly_summary(NOW)

        assert result["paid_invoices"] == 1
        assert result["total_revenue"] == 5.0
        assert "status" not in stripe_gateway.list_recent_invoices.await_args.kwargs

    @pytest.mark.asyncio
    async def test_weekly_summary_skipped_when_processor_unavailable(self):
        scheduler, _ = make_scheduler({"skipped": True, "reason": "open circuit"})

        assert await scheduler.weekly_summary(NOW) == {"skipped": True, "reason": "open circuit"}


class TestSchedulerBreaker:

    @pytest.mark.asyncio
    async def test_invoice_listing_failure_becomes_skip_marker(self):
        from billing_engine.modules.payments.infrastructure.external.stripe_gateway import StripeGateway

        gateway = ResilientGateway(CircuitBreakerRegistry())
        scheduler = BillingScheduler(
            gateway=gateway,
            session_scope=fake_session_scope,
            notification_service=MagicMock(),
            stripe_gateway=StripeGateway(gateway),
        )
        list_invoices = AsyncMock(side_effect=ConnectionError("no route"))

        with patch("stripe.Invoice.list_async", new=list_invoices):
            # The scheduler breaker needs three calls in its window before it may open
            results = [await scheduler.check_failed_payments(NOW) for _ in range(4)]

        assert all(result["skipped"] is True for result in results)
        assert results[0]["reason"] == "no route"
        assert "temporarily unavailable" in results[3]["reason"]
        assert list_invoices.await_count == 3
        assert gateway.get_stats("external-payment-api-scheduler")["state"] == "open"

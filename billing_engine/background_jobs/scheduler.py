# 📄 File: billing_engine/background_jobs/scheduler.py
#
# 🧭 Purpose (Layman Explanation):
# The billing engine's alarm clock. On a timetable it reminds customers about upcoming renewals,
# picks up failed payments from Stripe, writes a weekly revenue summary, and moves subscriptions
# along when they expire, renew or run out of grace period.
#
# 🧪 Purpose (Technical Summary):
# BillingScheduler holds one coroutine per scheduled job. Jobs are fault isolated twice: each job
# catches its own exceptions (logged, reported as {"failed": True, ...}) and item loops catch per
# item. Processor reads go through the scheduler circuit breaker with a "skipped" fallback, so
# an unreachable processor turns a run into a logged no-op. State sweeps each open their own
# database session and optionally hold a Redis sweep lock.
#
# 🔗 Dependencies:
# - StripeGateway (scheduler breaker), BillingService, SubscriptionService, IdempotencyService
# - billing_engine.shared.config.redis (sweep_lock)
# - billing_engine.shared.utils.logging (log_context)
#
# 🔄 Connected Modules / Calls From:
# - background_jobs/tasks/billing_jobs.py (Celery tasks, one per job)

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from billing_engine.modules.idempotency.domain.services.idempotency_service import IdempotencyService
from billing_engine.modules.notifications.domain.models.notification import NotificationKind
from billing_engine.modules.notifications.domain.services.notification_service import NotificationService
from billing_engine.modules.payments.infrastructure.external.stripe_gateway import StripeGateway
from billing_engine.modules.payments.presentation.dependencies import build_billing_service
from billing_engine.modules.subscriptions.presentation.dependencies import build_subscription_service
from billing_engine.shared.config.redis import sweep_lock
from billing_engine.shared.core.circuit_breaker import ResilientGateway
from billing_engine.shared.infrastructure.database.session import database_session
from billing_engine.shared.utils.logging import log_context

logger = logging.getLogger(__name__)

FAILED_PAYMENT_LOOKBACK = timedelta(hours=24)
FAILED_PAYMENT_LIMIT = 50
SUMMARY_LOOKBACK = timedelta(days=7)
SUMMARY_LIMIT = 100


def _is_skipped(result: Any) -> bool:
    return isinstance(result, dict) and result.get("skipped") is True


class BillingScheduler:
    """
    Time-driven billing jobs.

    Every public job returns a result dict and never raises.
    """

    def __init__(
        self,
        gateway: ResilientGateway,
        session_scope=database_session,
        notification_service: Optional[NotificationService] = None,
        stripe_gateway: Optional[StripeGateway] = None,
    ):
        self.gateway = gateway
        self.session_scope = session_scope
        self.notification_service = notification_service or NotificationService()
        self.stripe_gateway = stripe_gateway or StripeGateway(gateway)

    # -------------------------------------------------------------------------
    # Processor jobs
    # -------------------------------------------------------------------------

    async def check_upcoming_renewals(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        async def job():
            async with self.session_scope() as db:
                billing_service = build_billing_service(db, self.notification_service)
                return await billing_service.schedule_renewal_reminders(now)

        return await self._run("check_upcoming_renewals", job)

    async def check_failed_payments(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Forward recent open invoices with at least one failed attempt to the failure handler.

        Invoices with ``attempt_count == 0`` are left alone: the processor is
        still retrying them on its own.
        """
        async def job():
            invoices = await self.stripe_gateway.list_recent_invoices(
                FAILED_PAYMENT_LOOKBACK,
                status="open",
                limit=FAILED_PAYMENT_LIMIT,
                now=now,
            )
            if _is_skipped(invoices):
                logger.warning(f"Failed payment sweep skipped: {invoices.get('reason')}")
                return invoices

            result = {"processed": len(invoices), "recorded": 0, "duplicates": 0, "skipped": 0, "failed": 0}
            for invoice in invoices:
                if not invoice.get("attempt_count"):
                    result["skipped"] += 1
                    continue
                try:
                    async with self.session_scope() as db:
                        billing_service = build_billing_service(db, self.notification_service)
                        recorded = await billing_service.process_payment_failure(invoice)
                    result["recorded" if recorded else "duplicates"] += 1
                except Exception as e:
                    result["failed"] += 1
                    logger.error(f"Failed to process failed invoice {invoice.get('id')}: {e}")
            return result

        return await self._run("check_failed_payments", job)

    async def weekly_summary(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Paid vs. failed invoices and revenue over the last seven days. Read-only."""
        async def job():
            invoices = await self.stripe_gateway.list_recent_invoices(
                SUMMARY_LOOKBACK,
                limit=SUMMARY_LIMIT,
                now=now,
            )
            if _is_skipped(invoices):
                logger.warning(f"Weekly summary skipped: {invoices.get('reason')}")
                return invoices
            summary = self.summarize_invoices(invoices)
            logger.info(
                f"Weekly billing summary: {summary['paid_invoices']} paid, "
                f"{summary['failed_invoices']} failed, revenue {summary['total_revenue']:.2f}"
            )
            return summary

        return await self._run("weekly_summary", job)

    @staticmethod
    def summarize_invoices(invoices: List[Dict[str, Any]]) -> Dict[str, Any]:
        paid = [invoice for invoice in invoices if invoice.get("status") == "paid"]
        failed = [
            invoice for invoice in invoices
            if invoice.get("status") == "open" and (invoice.get("attempt_count") or 0) > 0
        ]
        return {
            "total_invoices": len(invoices),
            "paid_invoices": len(paid),
            "failed_invoices": len(failed),
            "total_revenue": sum(invoice.get("amount_paid") or 0 for invoice in paid) / 100,
        }

    # -------------------------------------------------------------------------
    # State sweeps
    # -------------------------------------------------------------------------

    async def process_expired_subscriptions(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return await self._sweep(
            "process_expired_subscriptions",
            lambda service: service.process_expired_subscriptions(now),
        )

    async def process_auto_renewals(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return await self._sweep(
            "process_auto_renewals",
            lambda service: service.process_auto_renewals(now),
        )

    async def process_grace_periods(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        def operation(service):
            async def notify_suspended(subscription):
                user = await service.user_repository.get_by_id(subscription.user_id)
                self.notification_service.notify(
                    NotificationKind.SUBSCRIPTION_SUSPENDED,
                    user.email if user else None,
                    {"subscription_id": str(subscription.id)},
                )

            return service.process_grace_periods(now, on_suspended=notify_suspended)

        return await self._sweep("process_grace_periods", operation)

    async def purge_idempotency_keys(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        async def job():
            deleted = await IdempotencyService(session_scope=self.session_scope).purge_expired(
                now or datetime.now(timezone.utc)
            )
            return {"deleted": deleted}

        return await self._run("purge_idempotency_keys", job)

    async def _sweep(self, name: str, operation) -> Dict[str, Any]:
        async def job():
            async with sweep_lock(name) as acquired:
                if not acquired:
                    return {"skipped": True, "reason": "locked"}
                async with self.session_scope() as db:
                    return await operation(build_subscription_service(db))

        return await self._run(name, job)

    # -------------------------------------------------------------------------
    # Fault isolation
    # -------------------------------------------------------------------------

    async def _run(self, name: str, job: Callable[[], Awaitable[Dict[str, Any]]]) -> Dict[str, Any]:
        with log_context(job_name=name):
            logger.info(f"Job {name} started")
            started = datetime.now(timezone.utc)
            try:
                result = await job()
            except Exception as e:
                logger.error(f"Job {name} failed: {e}", exc_info=True)
                return {"failed": True, "error": str(e)}

            elapsed = (datetime.now(timezone.utc) - started).total_seconds()
            logger.info(f"Job {name} finished in {elapsed:.2f}s: {result}")
            return result

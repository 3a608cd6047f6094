# 📄 File: billing_engine/modules/payments/domain/services/billing_service.py
#
# 🧭 Purpose (Layman Explanation):
# Keeps our books in step with the payment processor: writes down every paid invoice and every
# failed payment attempt once, moves subscriptions into or out of their grace period, and sends
# receipts, failure notices and renewal reminders.
#
# 🧪 Purpose (Technical Summary):
# Domain service applying invoice outcomes. Each outcome is first written to a ledger keyed by
# the processor invoice id (and attempt count for failures); only a newly written ledger row
# triggers subscription changes and notifications, which makes redelivered invoices no-ops.
#
# 🔗 Dependencies:
# - BillingRepository, UserRepository, SubscriptionRepository
# - SubscriptionService (grace period transitions)
# - NotificationService (fire-and-forget delivery)
#
# 🔄 Connected Modules / Calls From:
# - webhook_reconciler.py (invoice events)
# - background_jobs/scheduler.py (failed payment sweep, renewal reminders)
# - presentation/api/v1/payments.py (billing history)

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from billing_engine.modules.notifications.domain.models.notification import NotificationKind, format_amount
from billing_engine.modules.notifications.domain.services.notification_service import NotificationService
from billing_engine.modules.payments.domain.models.payment import BillingRecord, PaymentFailure
from billing_engine.modules.payments.domain.repositories.billing_repository import BillingRepository
from billing_engine.modules.subscriptions.domain.models.subscription import Subscription, SubscriptionStatus
from billing_engine.modules.subscriptions.domain.models.user import User
from billing_engine.modules.subscriptions.domain.services.subscription_service import SubscriptionService
from billing_engine.shared.config.settings import get_settings

logger = logging.getLogger(__name__)

# Statuses an invoice outcome may still apply to
BILLABLE_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIAL,
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.SUSPENDED,
)


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Processor timestamps are unix seconds."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    """Subscription reference of an invoice; newer API versions nest it under ``parent``."""
    subscription_id = invoice.get("subscription")
    if subscription_id:
        return subscription_id if isinstance(subscription_id, str) else subscription_id.get("id")
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return details.get("subscription")


class BillingService:
    """
    Applies invoice outcomes reported by the payment processor.
    """

    def __init__(
        self,
        billing_repository: BillingRepository,
        subscription_service: SubscriptionService,
        notification_service: Optional[NotificationService] = None,
    ):
        self.billing_repository = billing_repository
        self.subscription_service = subscription_service
        self.subscription_repository = subscription_service.subscription_repository
        self.user_repository = subscription_service.user_repository
        self.notification_service = notification_service or NotificationService()
        self.settings = get_settings()

    async def process_payment_receipt(self, invoice: Dict[str, Any]) -> bool:
        """
        Record a paid invoice, restore its subscription and send a receipt.

        Returns False when the invoice was already recorded.
        """
        invoice_id = invoice["id"]
        customer_id = invoice.get("customer")
        subscription_ref = invoice_subscription_id(invoice)
        user = await self._find_user(customer_id)

        record = BillingRecord(
            stripe_invoice_id=invoice_id,
            stripe_customer_id=customer_id,
            stripe_subscription_id=subscription_ref,
            user_id=user.id if user else None,
            amount_paid=invoice.get("amount_paid") or 0,
            currency=invoice.get("currency") or "usd",
            status=invoice.get("status") or "paid",
            invoice_number=invoice.get("number"),
            hosted_invoice_url=invoice.get("hosted_invoice_url"),
            period_start=from_timestamp(invoice.get("period_start")),
            period_end=from_timestamp(invoice.get("period_end")),
            paid_at=from_timestamp((invoice.get("status_transitions") or {}).get("paid_at")) or datetime.now(timezone.utc),
        )
        if not await self.billing_repository.record_receipt(record):
            return False

        subscription = await self._find_subscription(subscription_ref, user)
        if subscription is not None:
            await self.subscription_service.mark_payment_succeeded(subscription)

        self.notification_service.notify(
            NotificationKind.PAYMENT_RECEIPT,
            self._recipient(user, invoice),
            {
                "invoice_id": invoice_id,
                "amount": format_amount(record.amount_paid),
                "currency": record.currency.upper(),
                "invoice_url": record.hosted_invoice_url,
            },
        )
        logger.info(f"Recorded receipt for invoice {invoice_id} ({record.amount_paid} {record.currency})")
        return True

    async def process_payment_failure(self, invoice: Dict[str, Any]) -> bool:
        """
        Record a failed invoice attempt, open the grace period and notify the customer.

        Returns False when this invoice attempt was already recorded.
        """
        invoice_id = invoice["id"]
        customer_id = invoice.get("customer")
        subscription_ref = invoice_subscription_id(invoice)
        attempt_count = invoice.get("attempt_count") or 0
        user = await self._find_user(customer_id)

        failure = PaymentFailure(
            stripe_invoice_id=invoice_id,
            attempt_count=attempt_count,
            stripe_customer_id=customer_id,
            stripe_subscription_id=subscription_ref,
            user_id=user.id if user else None,
            amount_due=invoice.get("amount_due") or 0,
            currency=invoice.get("currency") or "usd",
            failure_reason=(invoice.get("last_finalization_error") or {}).get("message"),
            next_payment_attempt=from_timestamp(invoice.get("next_payment_attempt")),
        )
        if not await self.billing_repository.record_failure(failure):
            return False

        subscription = await self._find_subscription(subscription_ref, user)
        if subscription is not None:
            await self.subscription_service.mark_payment_failed(subscription)
        else:
            logger.warning(f"No local subscription for failed invoice {invoice_id}")

        self.notification_service.notify(
            NotificationKind.PAYMENT_FAILED,
            self._recipient(user, invoice),
            {
                "invoice_id": invoice_id,
                "attempt_count": attempt_count,
                "amount": format_amount(failure.amount_due),
                "currency": failure.currency.upper(),
            },
        )
        logger.warning(f"Recorded payment failure for invoice {invoice_id}, attempt {attempt_count}")
        return True

    async def schedule_renewal_reminders(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Remind owners of subscriptions ending on the day ``RENEWAL_REMINDER_DAYS`` ahead."""
        now = now or datetime.now(timezone.utc)
        window_start = now + timedelta(days=self.settings.RENEWAL_REMINDER_DAYS)
        window_end = window_start + timedelta(days=1)
        candidates = await self.subscription_repository.find_ending_between(window_start, window_end)
        result = {"processed": len(candidates), "sent": 0, "failed": 0}

        for subscription in candidates:
            try:
                user = await self.user_repository.get_by_id(subscription.user_id)
                sent = self.notification_service.notify(
                    NotificationKind.RENEWAL_REMINDER,
                    user.email if user else None,
                    {
                        "subscription_id": str(subscription.id),
                        "renewal_date": subscription.end_date.date().isoformat(),
                        "auto_renew": subscription.is_auto_renew,
                    },
                )
                if sent:
                    result["sent"] += 1
            except Exception as e:
                result["failed"] += 1
                logger.error(f"Failed to send renewal reminder for subscription {subscription.id}: {e}")

        logger.info(f"Renewal reminders finished: {result}")
        return result

    async def get_billing_history(self, stripe_customer_id: str, limit: int = 50) -> Dict[str, List[Any]]:
        receipts = await self.billing_repository.list_receipts_for_customer(stripe_customer_id, limit)
        failures = await self.billing_repository.list_failures_for_customer(stripe_customer_id, limit)
        return {"receipts": receipts, "failures": failures}

    async def _find_user(self, customer_id: Optional[str]) -> Optional[User]:
        if not customer_id:
            return None
        return await self.user_repository.get_by_stripe_customer_id(customer_id)

    async def _find_subscription(self, external_id: Optional[str], user: Optional[User]) -> Optional[Subscription]:
        if external_id:
            subscription = await self.subscription_repository.get_by_external_id(external_id)
            if subscription is not None:
                return subscription
        if user is not None:
            return await self.subscription_repository.get_latest_for_user(user.id, BILLABLE_STATUSES)
        return None

    @staticmethod
    def _recipient(user: Optional[User], invoice: Dict[str, Any]) -> Optional[str]:
        if user is not None:
            return user.email
        return invoice.get("customer_email")

# 📄 File: billing_engine/modules/payments/domain/services/webhook_reconciler.py
#
# 🧭 Purpose (Layman Explanation):
# Receives the notifications Stripe sends us (payment went through, payment failed, subscription
# changed) and updates our records to match. It checks each notification really came from Stripe
# and makes sure a notification delivered twice is only acted on once.
#
# 🧪 Purpose (Technical Summary):
# Webhook reconciliation pipeline:
#   1. Verify the raw body against the Stripe-Signature header (HMAC, clock skew tolerance).
#   2. Record the event id in the webhook_events ledger; seen ids are acknowledged untouched.
#   3. Dispatch on WebhookEventType (closed enum with an explicit UNKNOWN arm) inside a savepoint.
#   4. Handler failures roll back the savepoint, are logged on the ledger and still acknowledged.
# Only signature failures surface as errors (WebhookSignatureError -> 400).
#
# 🔗 Dependencies:
# - stripe (WebhookSignature verification)
# - PaymentService, BillingService, SubscriptionService
# - WebhookEventRepository
#
# 🔄 Connected Modules / Calls From:
# - presentation/api/v1/payments.py (POST /payments/webhooks)

import json
import logging
from typing import Any, Dict, Optional, Union

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.modules.payments.domain.models.webhook_event import (
    WebhookEvent,
    WebhookEventStatus,
    WebhookEventType,
)
from billing_engine.modules.payments.domain.repositories.webhook_event_repository import WebhookEventRepository
from billing_engine.modules.payments.domain.services.billing_service import BillingService, from_timestamp
from billing_engine.modules.payments.domain.services.payment_service import PaymentService
from billing_engine.modules.subscriptions.domain.services.subscription_service import SubscriptionService
from billing_engine.shared.config.settings import get_settings
from billing_engine.shared.core.exceptions import WebhookSignatureError

logger = logging.getLogger(__name__)

ACKNOWLEDGED = {"received": True}


class WebhookReconciler:
    """
    Turns processor events into local state changes, at most once per event id.
    """

    def __init__(
        self,
        session: AsyncSession,
        event_repository: WebhookEventRepository,
        payment_service: PaymentService,
        billing_service: BillingService,
        subscription_service: SubscriptionService,
        webhook_secret: Optional[str] = None,
        tolerance: Optional[int] = None,
    ):
        settings = get_settings()
        self.session = session
        self.event_repository = event_repository
        self.payment_service = payment_service
        self.billing_service = billing_service
        self.subscription_service = subscription_service
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        self.tolerance = tolerance if tolerance is not None else settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS

        self._handlers = {
            WebhookEventType.PAYMENT_INTENT_SUCCEEDED: self._handle_payment_intent_succeeded,
            WebhookEventType.PAYMENT_INTENT_FAILED: self._handle_payment_intent_failed,
            WebhookEventType.INVOICE_PAYMENT_SUCCEEDED: self._handle_invoice_payment_succeeded,
            WebhookEventType.INVOICE_PAYMENT_FAILED: self._handle_invoice_payment_failed,
            WebhookEventType.SUBSCRIPTION_UPDATED: self._handle_subscription_updated,
            WebhookEventType.SUBSCRIPTION_DELETED: self._handle_subscription_deleted,
            WebhookEventType.UNKNOWN: self._handle_unknown,
        }

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def process(self, payload: Union[bytes, str], signature: Optional[str]) -> Dict[str, bool]:
        event = self.verify(payload, signature)
        event_id = event.get("id")
        raw_type = event.get("type")
        event_type = WebhookEventType.parse(raw_type)

        if not event_id:
            logger.warning(f"Webhook event of type {raw_type} has no id, acknowledging without processing")
            return ACKNOWLEDGED

        if not await self._claim(event_id, raw_type or "unknown"):
            return ACKNOWLEDGED

        logger.info(f"Processing webhook event {event_id} ({raw_type})")
        obj = (event.get("data") or {}).get("object") or {}
        try:
            async with self.session.begin_nested():
                await self._handlers[event_type](obj, raw_type)
        except Exception as e:
            logger.error(f"Webhook event {event_id} ({raw_type}) failed: {e}", exc_info=True)
            await self.event_repository.mark_failed(event_id, f"{type(e).__name__}: {e}")
        else:
            await self.event_repository.mark_processed(event_id)

        return ACKNOWLEDGED

    def verify(self, payload: Union[bytes, str], signature: Optional[str]) -> Dict[str, Any]:
        """Authenticate the raw body and decode it."""
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header", reason="missing_signature")
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET not configured, rejecting webhook")
            raise WebhookSignatureError("Webhook secret not configured", reason="not_configured")

        try:
            text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as e:
            logger.warning(f"Webhook payload is not valid UTF-8: {e}")
            raise WebhookSignatureError("Invalid webhook payload", reason="invalid_payload")

        try:
            stripe.WebhookSignature.verify_header(text, signature, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Invalid webhook signature: {e}")
            raise WebhookSignatureError(reason=str(e))

        try:
            event = json.loads(text)
        except ValueError as e:
            logger.warning(f"Invalid webhook payload: {e}")
            raise WebhookSignatureError("Invalid webhook payload", reason="invalid_json")
        if not isinstance(event, dict):
            raise WebhookSignatureError("Invalid webhook payload", reason="invalid_json")
        return event

    async def _claim(self, event_id: str, event_type: str) -> bool:
        if await self.event_repository.record_received(WebhookEvent(id=event_id, type=event_type)):
            return True

        existing = await self.event_repository.get(event_id)
        if existing is not None and existing.status == WebhookEventStatus.FAILED.value:
            logger.info(f"Retrying previously failed webhook event {event_id}")
            await self.event_repository.reopen(event_id)
            return True

        logger.info(f"Webhook event {event_id} already handled, acknowledging duplicate")
        return False

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    async def _handle_payment_intent_succeeded(self, intent: Dict[str, Any], _: str) -> None:
        await self.payment_service.handle_intent_succeeded(intent)

    async def _handle_payment_intent_failed(self, intent: Dict[str, Any], _: str) -> None:
        await self.payment_service.handle_intent_failed(intent)

    async def _handle_invoice_payment_succeeded(self, invoice: Dict[str, Any], _: str) -> None:
        await self.billing_service.process_payment_receipt(invoice)

    async def _handle_invoice_payment_failed(self, invoice: Dict[str, Any], _: str) -> None:
        await self.billing_service.process_payment_failure(invoice)

    async def _handle_subscription_updated(self, processor_subscription: Dict[str, Any], _: str) -> None:
        subscription = await self.subscription_service.subscription_repository.get_by_external_id(
            processor_subscription["id"]
        )
        if subscription is None:
            logger.warning(f"No local subscription for processor subscription {processor_subscription['id']}")
            return
        await self.subscription_service.apply_processor_update(
            subscription,
            processor_status=processor_subscription.get("status"),
            cancel_at_period_end=processor_subscription.get("cancel_at_period_end"),
            current_period_end=from_timestamp(self._current_period_end(processor_subscription)),
        )

    async def _handle_subscription_deleted(self, processor_subscription: Dict[str, Any], _: str) -> None:
        subscription = await self.subscription_service.subscription_repository.get_by_external_id(
            processor_subscription["id"]
        )
        if subscription is None:
            logger.warning(f"No local subscription for deleted processor subscription {processor_subscription['id']}")
            return
        await self.subscription_service.cancel_from_processor(subscription)

    async def _handle_unknown(self, obj: Dict[str, Any], raw_type: str) -> None:
        logger.info(f"Unhandled webhook event type: {raw_type}")

    @staticmethod
    def _current_period_end(processor_subscription: Dict[str, Any]) -> Optional[int]:
        # Newer API versions report the period on each subscription item
        if processor_subscription.get("current_period_end"):
            return processor_subscription["current_period_end"]
        items = (processor_subscription.get("items") or {}).get("data") or []
        ends = [item.get("current_period_end") for item in items if item.get("current_period_end")]
        return max(ends) if ends else None

"""
Payment intent creation and status tracking.

Intents are created at the processor first and mirrored locally afterwards;
webhook events for the intent then move the local row to its final status.
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from billing_engine.modules.payments.domain.models.payment import (
    INTENT_STATUS_MAP,
    Payment,
    PaymentStatus,
    PaymentType,
)
from billing_engine.modules.payments.domain.repositories.payment_repository import PaymentRepository
from billing_engine.modules.payments.infrastructure.external.stripe_gateway import StripeGateway
from billing_engine.modules.subscriptions.domain.repositories.user_repository import UserRepository
from billing_engine.shared.core.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class PaymentService:

    def __init__(
        self,
        payment_repository: PaymentRepository,
        user_repository: UserRepository,
        stripe_gateway: Optional[StripeGateway] = None,
    ):
        self.payment_repository = payment_repository
        self.user_repository = user_repository
        self.stripe_gateway = stripe_gateway

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        user_id: Optional[UUID] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        payment_method_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Payment:
        """
        Create a processor payment intent and record it.

        Raises:
            NotFoundError: Unknown user
            CircuitBreakerError: Processor breaker is open or the call timed out
            ExternalServiceError: The processor rejected the request
        """
        customer_id = None
        if user_id is not None:
            user = await self.user_repository.get_by_id(user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found", resource_type="user", resource_id=str(user_id))
            customer_id = user.stripe_customer_id

        intent = await self.stripe_gateway.create_payment_intent(
            amount=amount,
            currency=currency,
            customer_id=customer_id,
            payment_method_id=payment_method_id,
            description=description,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )

        payment = Payment(
            stripe_payment_intent_id=intent.id,
            stripe_customer_id=customer_id,
            user_id=user_id,
            amount=amount,
            currency=currency,
            status=INTENT_STATUS_MAP.get(getattr(intent, "status", None), PaymentStatus.PENDING),
            type=PaymentType.ONE_TIME,
            description=description,
            payment_metadata=metadata,
            client_secret=getattr(intent, "client_secret", None),
        )
        return await self.payment_repository.create(payment)

    async def get_payment(self, payment_intent_id: str) -> Payment:
        payment = await self.payment_repository.get_by_intent_id(payment_intent_id)
        if payment is None:
            raise NotFoundError(
                f"Payment for intent {payment_intent_id} not found",
                resource_type="payment",
                resource_id=payment_intent_id,
            )
        return payment

    async def handle_intent_succeeded(self, intent: Dict[str, Any]) -> bool:
        payment = await self._get_or_adopt(intent)
        if not payment.mark_succeeded():
            logger.info(f"Payment {payment.stripe_payment_intent_id} already succeeded")
            return False
        await self.payment_repository.save(payment)
        logger.info(f"Payment {payment.stripe_payment_intent_id} succeeded")
        return True

    async def handle_intent_failed(self, intent: Dict[str, Any]) -> bool:
        payment = await self._get_or_adopt(intent)
        if not payment.mark_failed():
            logger.info(f"Ignoring failure notice for payment {payment.stripe_payment_intent_id} in status {payment.status}")
            return False
        await self.payment_repository.save(payment)
        reason = (intent.get("last_payment_error") or {}).get("message")
        logger.warning(f"Payment {payment.stripe_payment_intent_id} failed: {reason}")
        return True

    async def _get_or_adopt(self, intent: Dict[str, Any]) -> Payment:
        """Local row for an intent, creating one for intents made outside this service."""
        payment = await self.payment_repository.get_by_intent_id(intent["id"])
        if payment is not None:
            return payment

        customer_id = intent.get("customer")
        user = await self.user_repository.get_by_stripe_customer_id(customer_id) if customer_id else None
        logger.info(f"Adopting payment intent {intent['id']} created outside the API")
        return await self.payment_repository.create(Payment(
            stripe_payment_intent_id=intent["id"],
            stripe_customer_id=customer_id,
            user_id=user.id if user else None,
            amount=intent.get("amount") or 1,
            currency=intent.get("currency") or "usd",
            type=PaymentType.SUBSCRIPTION if intent.get("invoice") else PaymentType.ONE_TIME,
            description=intent.get("description"),
            payment_metadata=dict(intent.get("metadata") or {}) or None,
        ))

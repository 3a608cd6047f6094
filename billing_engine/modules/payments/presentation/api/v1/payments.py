# 📄 File: billing_engine/modules/payments/presentation/api/v1/payments.py
#
# 🧭 Purpose (Layman Explanation):
# The web endpoints for payments: start a payment with Stripe, look a payment up, see a
# customer's billing history, and receive Stripe's notifications.
#
# 🧪 Purpose (Technical Summary):
# FastAPI router for payment intents (idempotency-protected via the Idempotency-Key header,
# which is also forwarded to the processor), billing history and the signed webhook endpoint.
# The webhook route reads the raw, unparsed request body for signature verification.
#
# 🔗 Dependencies:
# - FastAPI router, Header, Request
# - PaymentService, BillingService, WebhookReconciler (via presentation.dependencies)
#
# 🔄 Connected Modules / Calls From:
# - billing_engine.api.v1.router (router inclusion)

"""
Payments API Endpoints

Endpoints:
- POST /payment-intents: Create a payment intent (honours Idempotency-Key)
- GET /payment-intents/{payment_intent_id}: Local status of a payment intent
- GET /billing-history/{customer_id}: Receipts and failed attempts for a processor customer
- POST /webhooks: Processor event notifications (Stripe-Signature required)
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request, status

from billing_engine.modules.payments.domain.services.billing_service import BillingService
from billing_engine.modules.payments.domain.services.payment_service import PaymentService
from billing_engine.modules.payments.domain.services.webhook_reconciler import WebhookReconciler
from billing_engine.modules.payments.presentation.api.schemas.payment_schemas import (
    BillingHistoryResponse,
    BillingRecordResponse,
    PaymentFailureResponse,
    PaymentIntentCreateRequest,
    PaymentResponse,
    WebhookAcknowledgement,
)
from billing_engine.modules.payments.presentation.dependencies import (
    get_billing_service,
    get_payment_service,
    get_webhook_reconciler,
)
from billing_engine.modules.subscriptions.presentation.dependencies import get_optional_caller_id

logger = logging.getLogger(__name__)

payments_router = APIRouter()


@payments_router.post(
    "/payment-intents",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create payment intent",
    responses={
        409: {"description": "Malformed Idempotency-Key, or the same key is still being processed"},
        502: {"description": "Payment processor rejected the request"},
        503: {"description": "Payment processor circuit breaker is open"},
    }
)
async def create_payment_intent(
    request: PaymentIntentCreateRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    caller_id: Optional[UUID] = Depends(get_optional_caller_id),
    service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    payment = await service.create_payment_intent(
        amount=request.amount,
        currency=request.currency,
        user_id=caller_id,
        description=request.description,
        metadata=request.metadata,
        payment_method_id=request.payment_method_id,
        idempotency_key=idempotency_key,
    )
    return PaymentResponse.model_validate(payment)


@payments_router.get(
    "/payment-intents/{payment_intent_id}",
    response_model=PaymentResponse,
    summary="Get payment",
)
async def get_payment(
    payment_intent_id: str,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    return PaymentResponse.model_validate(await service.get_payment(payment_intent_id))


@payments_router.get(
    "/billing-history/{customer_id}",
    response_model=BillingHistoryResponse,
    summary="Billing history for a processor customer",
)
async def get_billing_history(
    customer_id: str,
    limit: int = Query(50, ge=1, le=200),
    service: BillingService = Depends(get_billing_service),
) -> BillingHistoryResponse:
    history = await service.get_billing_history(customer_id, limit=limit)
    return BillingHistoryResponse(
        customer_id=customer_id,
        receipts=[BillingRecordResponse.model_validate(item) for item in history["receipts"]],
        failures=[PaymentFailureResponse.model_validate(item) for item in history["failures"]],
    )


@payments_router.post(
    "/webhooks",
    response_model=WebhookAcknowledgement,
    summary="Payment processor webhook",
    responses={400: {"description": "Missing or invalid Stripe-Signature"}},
)
async def receive_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
) -> WebhookAcknowledgement:
    payload = await request.body()
    result = await reconciler.process(payload, stripe_signature)
    return WebhookAcknowledgement(**result)

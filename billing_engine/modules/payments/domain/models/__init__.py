from billing_engine.modules.payments.domain.models.payment import (
    INTENT_STATUS_MAP,
    BillingRecord,
    Payment,
    PaymentFailure,
    PaymentStatus,
    PaymentType,
)
from billing_engine.modules.payments.domain.models.webhook_event import (
    WebhookEvent,
    WebhookEventStatus,
    WebhookEventType,
)

__all__ = [
    "INTENT_STATUS_MAP",
    "BillingRecord",
    "Payment",
    "PaymentFailure",
    "PaymentStatus",
    "PaymentType",
    "WebhookEvent",
    "WebhookEventStatus",
    "WebhookEventType",
]

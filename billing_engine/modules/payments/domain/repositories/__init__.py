from billing_engine.modules.payments.domain.repositories.billing_repository import BillingRepository
from billing_engine.modules.payments.domain.repositories.payment_repository import PaymentRepository
from billing_engine.modules.payments.domain.repositories.webhook_event_repository import WebhookEventRepository

__all__ = ["BillingRepository", "PaymentRepository", "WebhookEventRepository"]

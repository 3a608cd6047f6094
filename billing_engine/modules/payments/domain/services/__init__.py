from billing_engine.modules.payments.domain.services.billing_service import BillingService
from billing_engine.modules.payments.domain.services.payment_service import PaymentService
from billing_engine.modules.payments.domain.services.webhook_reconciler import WebhookReconciler

__all__ = ["BillingService", "PaymentService", "WebhookReconciler"]

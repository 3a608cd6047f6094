# 📄 File: billing_engine/modules/payments/presentation/dependencies.py
# 🧭 Purpose (Layman Explanation):
# Builds the payment, billing and webhook helpers each payments endpoint needs, wired to this
# request's database session and the application's shared circuit breakers.
# 🧪 Purpose (Technical Summary):
# FastAPI dependency providers. The ResilientGateway lives on app.state (created in the
# lifespan) and is injected explicitly rather than imported as a module-level singleton.
# 🔗 Dependencies:
# FastAPI, SQLAlchemy AsyncSession, payments and subscriptions repositories
# 🔄 Connected Modules / Calls From:
# presentation/api/v1/payments.py

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.modules.notifications.domain.services.notification_service import NotificationService
from billing_engine.modules.payments.domain.services.billing_service import BillingService
from billing_engine.modules.payments.domain.services.payment_service import PaymentService
from billing_engine.modules.payments.domain.services.webhook_reconciler import WebhookReconciler
from billing_engine.modules.payments.infrastructure.database.billing_repository_impl import BillingRepositoryImpl
from billing_engine.modules.payments.infrastructure.database.payment_repository_impl import PaymentRepositoryImpl
from billing_engine.modules.payments.infrastructure.database.webhook_event_repository_impl import (
    WebhookEventRepositoryImpl,
)
from billing_engine.modules.payments.infrastructure.external.stripe_gateway import StripeGateway
from billing_engine.modules.subscriptions.infrastructure.database.user_repository_impl import UserRepositoryImpl
from billing_engine.modules.subscriptions.domain.services.subscription_service import SubscriptionService
from billing_engine.modules.subscriptions.presentation.dependencies import build_subscription_service
from billing_engine.shared.core.circuit_breaker import ResilientGateway
from billing_engine.shared.infrastructure.database.session import get_db_session


def get_resilient_gateway(request: Request) -> ResilientGateway:
    return request.app.state.resilient_gateway


def get_notification_service() -> NotificationService:
    return NotificationService()


def build_billing_service(
    session: AsyncSession,
    notification_service: NotificationService,
    subscription_service: Optional[SubscriptionService] = None,
) -> BillingService:
    return BillingService(
        billing_repository=BillingRepositoryImpl(session),
        subscription_service=subscription_service or build_subscription_service(session),
        notification_service=notification_service,
    )


async def get_payment_service(
    db: AsyncSession = Depends(get_db_session),
    gateway: ResilientGateway = Depends(get_resilient_gateway),
) -> PaymentService:
    return PaymentService(
        payment_repository=PaymentRepositoryImpl(db),
        user_repository=UserRepositoryImpl(db),
        stripe_gateway=StripeGateway(gateway),
    )


async def get_billing_service(
    db: AsyncSession = Depends(get_db_session),
    notification_service: NotificationService = Depends(get_notification_service),
) -> BillingService:
    return build_billing_service(db, notification_service)


async def get_webhook_reconciler(
    db: AsyncSession = Depends(get_db_session),
    notification_service: NotificationService = Depends(get_notification_service),
) -> WebhookReconciler:
    subscription_service = build_subscription_service(db)
    return WebhookReconciler(
        session=db,
        event_repository=WebhookEventRepositoryImpl(db),
        payment_service=PaymentService(PaymentRepositoryImpl(db), UserRepositoryImpl(db)),
        billing_service=build_billing_service(db, notification_service, subscription_service),
        subscription_service=subscription_service,
    )

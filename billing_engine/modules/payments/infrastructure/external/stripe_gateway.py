# 📄 File: billing_engine/modules/payments/infrastructure/external/stripe_gateway.py
#
# 🧭 Purpose (Layman Explanation):
# The only place that talks to Stripe, our payment processor. Every call goes through a circuit
# breaker so that when Stripe is having trouble we stop hammering it and fail fast instead.
#
# 🧪 Purpose (Technical Summary):
# Thin async adapter over the stripe SDK (``*_async`` resource methods) whose calls all run
# through ResilientGateway. Foreground calls use the "external-payment-api" breaker without a
# fallback (open breaker -> CircuitBreakerError 503, processor error -> ExternalServiceError 502).
# Scheduler calls use a separate, more tolerant breaker with a "skipped" fallback.
# Transport-level retries are delegated to ``stripe.max_network_retries``.
#
# 🔗 Dependencies:
# - stripe SDK
# - billing_engine.shared.core.circuit_breaker (ResilientGateway, breaker names and configs)
# - billing_engine.shared.config.settings
#
# 🔄 Connected Modules / Calls From:
# - payment_service.py (payment intents)
# - background_jobs/scheduler.py (invoice listings)
# - billing_engine.main (configure_stripe at startup)

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

import stripe

from billing_engine.shared.config.settings import get_settings
from billing_engine.shared.core.circuit_breaker import (
    PAYMENT_API,
    PAYMENT_API_SCHEDULER,
    SCHEDULER_BREAKER_OVERRIDES,
    ResilientGateway,
    build_default_config,
    skipped_fallback,
)
from billing_engine.shared.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


def configure_stripe(settings=None) -> None:
    """Apply API key, version and transport retry settings to the stripe SDK."""
    settings = settings or get_settings()
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.api_version = settings.STRIPE_API_VERSION
    stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES
    if not settings.STRIPE_SECRET_KEY:
        logger.warning("STRIPE_SECRET_KEY not configured - payment processor calls will fail")


def to_plain_dict(obj: Any) -> Dict[str, Any]:
    """Stripe resources expose to_dict(); test doubles are plain mappings."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class StripeGateway:
    """
    Payment processor calls with circuit breaker protection.
    """

    def __init__(self, gateway: ResilientGateway, settings=None):
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.foreground_options = build_default_config(self.settings)
        self.scheduler_options = build_default_config(self.settings, **SCHEDULER_BREAKER_OVERRIDES)

    # -------------------------------------------------------------------------
    # Foreground calls
    # -------------------------------------------------------------------------

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        customer_id: Optional[str] = None,
        payment_method_id: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Any:
        params: Dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "automatic_payment_methods": {"enabled": True},
        }
        if customer_id:
            params["customer"] = customer_id
        if payment_method_id:
            params["payment_method"] = payment_method_id
            params["confirm"] = True
        if description:
            params["description"] = description
        if metadata:
            params["metadata"] = metadata
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        intent = await self._call_foreground(
            "create payment intent",
            lambda: stripe.PaymentIntent.create_async(**params),
        )
        logger.info(f"Payment intent created: {intent.id}")
        return intent

    async def _call_foreground(self, action: str, operation) -> Any:
        try:
            return await self.gateway.execute(PAYMENT_API, operation, options=self.foreground_options)
        except stripe.StripeError as e:
            logger.error(f"Payment processor failed to {action}: {e}")
            raise ExternalServiceError(
                message=f"Payment processor failed to {action}",
                service="stripe",
                service_response=getattr(e, "user_message", None) or str(e),
            )

    # -------------------------------------------------------------------------
    # Scheduler calls
    # -------------------------------------------------------------------------

    async def list_recent_invoices(
        self,
        since: timedelta,
        status: Optional[str] = None,
        limit: int = 100,
        now: Optional[datetime] = None,
    ) -> Union[List[Dict[str, Any]], Dict[str, Any]]:
        """
        Invoices created within ``since`` of ``now``.

        Returns the skip marker ``{"skipped": True, ...}`` instead of raising
        when the processor is unavailable, so a scheduled run degrades to a no-op.
        """
        now = now or datetime.now(timezone.utc)
        params: Dict[str, Any] = {
            "limit": limit,
            "created": {"gte": int((now - since).timestamp())},
        }
        if status:
            params["status"] = status

        async def operation() -> List[Dict[str, Any]]:
            result = await stripe.Invoice.list_async(**params)
            return [to_plain_dict(invoice) for invoice in result.data]

        return await self.gateway.execute(
            PAYMENT_API_SCHEDULER,
            operation,
            options=self.scheduler_options,
            fallback=skipped_fallback,
        )

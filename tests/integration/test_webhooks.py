"""Webhook reconciliation through POST /payments/webhooks.

Tests cover:
- Signature verification
- At-most-once processing of redelivered events
- Invoice failures opening the grace period, receipts closing it
- Processor updates never reviving a cancelled subscription
- Failed handlers being acknowledged and retried on redelivery
"""

import json
from unittest.mock import ANY

import pytest

from billing_engine.modules.payments.infrastructure.database.webhook_event_repository_impl import (
    WebhookEventRepositoryImpl,
)
from billing_engine.modules.subscriptions.domain.models.subscription import SubscriptionStatus
from billing_engine.modules.subscriptions.presentation.dependencies import build_subscription_service
from billing_engine.shared.infrastructure.database.session import database_session

WEBHOOKS = "/api/v1/payments/webhooks"
EXTERNAL_ID = "sub_ext_1"


async def linked_subscription(user, plan):
    async with database_session() as db:
        service = build_subscription_service(db)
        subscription = await service.create_subscription(user.id, plan.id)
        return await service.update_subscription(subscription.id, {"external_subscription_id": EXTERNAL_ID})


async def load(subscription_id):
    async with database_session() as db:
        return await build_subscription_service(db).get_subscription(subscription_id)


async def deliver(client, payload, signature):
    return await client.post(
        WEBHOOKS,
        content=payload,
        headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
    )


def failed_invoice(invoice_id="in_1", attempt_count=1):
    return {
        "id": invoice_id,
        "customer": "cus_test_ada",
        "subscription": EXTERNAL_ID,
        "attempt_count": attempt_count,
        "amount_due": 999,
        "currency": "usd",
    }


class TestSignature:

    @pytest.mark.asyncio
    async def test_missing_signature(self, client):
        payload = json.dumps({"id": "evt_1", "type": "invoice.payment_failed", "data": {"object": {}}})

        response = await client.post(WEBHOOKS, content=payload)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "WEBHOOK_SIGNATURE_ERROR"

    @pytest.mark.asyncio
    async def test_signature_from_wrong_secret(self, client, signed_webhook):
        payload, signature = signed_webhook("evt_1", "invoice.payment_failed", {}, secret="whsec_someone_else")

        response = await deliver(client, payload, signature)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "WEBHOOK_SIGNATURE_ERROR"

    @pytest.mark.asyncio
    async def test_tampered_payload(self, client, signed_webhook):
        payload, signature = signed_webhook("evt_1", "invoice.payment_failed", {"id": "in_1"})

        response = await deliver(client, payload.replace("in_1", "in_2"), signature)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_stale_timestamp(self, client, signed_webhook):
        payload, signature = signed_webhook("evt_1", "invoice.payment_failed", {"id": "in_1"}, timestamp=1)

        response = await deliver(client, payload, signature)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_body_that_is_not_utf8(self, client):
        payload = json.dumps({"id": "evt_1", "type": "invoice.payment_failed"}).encode() + b"\xff"

        response = await deliver(client, payload, "t=1,v1=abc")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "WEBHOOK_SIGNATURE_ERROR"
        assert response.json()["error"]["details"]["reason"] == "invalid_payload"


class TestInvoiceEvents:

    @pytest.mark.asyncio
    async def test_payment_failure_opens_grace_period(self, client, user, monthly_plan, signed_webhook, notification_task):
        subscription = await linked_subscription(user, monthly_plan)
        payload, signature = signed_webhook("evt_fail_1", "invoice.payment_failed", failed_invoice())

        response = await deliver(client, payload, signature)

        assert response.status_code == 200
        assert response.json() == {"received": True}
        stored = await load(subscription.id)
        assert stored.status == SubscriptionStatus.PAST_DUE.value
        assert stored.grace_period_end_date is not None
        notification_task.delay.assert_called_once_with("payment_failed", "ada@example.com", ANY)

    @pytest.mark.asyncio
    async def test_redelivered_event_is_processed_once(self, client, user, monthly_plan, signed_webhook, notification_task):
        subscription = await linked_subscription(user, monthly_plan)
        payload, signature = signed_webhook("evt_fail_1", "invoice.payment_failed", failed_invoice())

        first = await deliver(client, payload, signature)
        second = await deliver(client, payload, signature)

        assert first.status_code == second.status_code == 200
        assert (await load(subscription.id)).failed_payment_attempts == 1
        assert notification_task.delay.call_count == 1

        history = await client.get("/api/v1/payments/billing-history/cus_test_ada")
        assert len(history.json()["failures"]) == 1

    @pytest.mark.asyncio
    async def test_same_invoice_attempt_under_new_event_id_is_ignored(self, client, user, monthly_plan, signed_webhook):
        subscription = await linked_subscription(user, monthly_plan)

        for event_id in ("evt_a", "evt_b"):
            payload, signature = signed_webhook(event_id, "invoice.payment_failed", failed_invoice())
            await deliver(client, payload, signature)

        assert (await load(subscription.id)).failed_payment_attempts == 1

    @pytest.mark.asyncio
    async def test_payment_receipt_restores_subscription(self, client, user, monthly_plan, signed_webhook, notification_task):
        subscription = await linked_subscription(user, monthly_plan)
        payload, signature = signed_webhook("evt_fail_1", "invoice.payment_failed", failed_invoice())
        await deliver(client, payload, signature)

        payload, signature = signed_webhook("evt_paid_1", "invoice.payment_succeeded", {
            "id": "in_1",
            "customer": "cus_test_ada",
            "subscription": EXTERNAL_ID,
            "amount_paid": 999,
            "currency": "usd",
            "status": "paid",
        })
        response = await deliver(client, payload, signature)

        assert response.status_code == 200
        stored = await load(subscription.id)
        assert stored.status == SubscriptionStatus.ACTIVE.value
        assert stored.grace_period_end_date is None
        kinds = [call.args[0] for call in notification_task.delay.call_args_list]
        assert kinds == ["payment_failed", "payment_receipt"]

        history = await client.get("/api/v1/payments/billing-history/cus_test_ada")
        assert [receipt["amount_paid"] for receipt in history.json()["receipts"]] == [999]


class TestSubscriptionEvents:

    @pytest.mark.asyncio
    async def test_update_cannot_revive_cancelled_subscription(self, client, user, monthly_plan, signed_webhook):
        subscription = await linked_subscription(user, monthly_plan)
        async with database_session() as db:
            await build_subscription_service(db).cancel(subscription.id)
        payload, signature = signed_webhook("evt_upd_1", "customer.subscription.updated", {
            "id": EXTERNAL_ID,
            "status": "active",
            "cancel_at_period_end": False,
        })

        response = await deliver(client, payload, signature)

        assert response.status_code == 200
        stored = await load(subscription.id)
        assert stored.status == SubscriptionStatus.CANCELLED.value
        assert stored.is_auto_renew is False

    @pytest.mark.asyncio
    async def test_processor_deletion_cancels(self, client, user, monthly_plan, signed_webhook):
        subscription = await linked_subscription(user, monthly_plan)
        payload, signature = signed_webhook("evt_del_1", "customer.subscription.deleted", {"id": EXTERNAL_ID})

        await deliver(client, payload, signature)

        assert (await load(subscription.id)).status == SubscriptionStatus.CANCELLED.value


class TestPaymentIntentEvents:

    @pytest.mark.asyncio
    async def test_intent_created_elsewhere_is_adopted(self, client, user, signed_webhook):
        payload, signature = signed_webhook("evt_pi_1", "payment_intent.succeeded", {
            "id": "pi_external",
            "customer": "cus_test_ada",
            "amount": 2500,
            "currency": "usd",
        })

        await deliver(client, payload, signature)

        payment = (await client.get("/api/v1/payments/payment-intents/pi_external")).json()
        assert payment["status"] == "succeeded"
        assert payment["amount"] == 2500
        assert payment["user_id"] == str(user.id)


class TestFailuresAndUnknownEvents:

    @pytest.mark.asyncio
    async def test_unknown_event_type_is_acknowledged(self, client, signed_webhook):
        payload, signature = signed_webhook("evt_x", "customer.tax_id.created", {"id": "txi_1"})

        response = await deliver(client, payload, signature)

        assert response.status_code == 200
        async with database_session() as db:
            event = await WebhookEventRepositoryImpl(db).get("evt_x")
        assert event.status == "processed"

    @pytest.mark.asyncio
    async def test_failed_handler_is_acknowledged_and_retried(self, client, user, monthly_plan, signed_webhook):
        subscription = await linked_subscription(user, monthly_plan)
        broken, broken_signature = signed_webhook("evt_upd_2", "customer.subscription.updated", {"status": "past_due"})

        response = await deliver(client, broken, broken_signature)

        assert response.status_code == 200
        async with database_session() as db:
            event = await WebhookEventRepositoryImpl(db).get("evt_upd_2")
        assert event.status == "failed"
        assert "KeyError" in event.error

        fixed, fixed_signature = signed_webhook("evt_upd_2", "customer.subscription.updated", {
            "id": EXTERNAL_ID,
            "status": "past_due",
        })
        await deliver(client, fixed, fixed_signature)

        assert (await load(subscription.id)).status == SubscriptionStatus.PAST_DUE.value
        async with database_session() as db:
            event = await WebhookEventRepositoryImpl(db).get("evt_upd_2")
        assert event.status == "processed"

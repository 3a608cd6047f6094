"""Tests for notification rendering, enqueueing and the Celery delivery task."""

from unittest.mock import MagicMock

from billing_engine.background_jobs.tasks.notification_sending import send_billing_notification
from billing_engine.modules.notifications.domain.models.notification import (
    NotificationKind,
    format_amount,
    render,
)
from billing_engine.modules.notifications.domain.services.notification_service import NotificationService


class TestRendering:

    def test_render_fills_template(self):
        subject, body = render(NotificationKind.PAYMENT_RECEIPT, {
            "amount": "9.99",
            "currency": "USD",
            "invoice_id": "in_123",
        })

        assert subject == "Payment received"
        assert body == "We received your payment of 9.99 USD for invoice in_123."

    def test_missing_context_values_are_defaulted(self):
        _, body = render(NotificationKind.RENEWAL_REMINDER, {})

        assert body == "Your subscription renews on n/a."

    def test_format_amount_from_minor_units(self):
        assert format_amount(999) == "9.99"
        assert format_amount(0) == "0.00"


class TestNotificationService:

    def test_notify_enqueues_task(self):
        task = MagicMock()
        service = NotificationService(task=task)

        assert service.notify(NotificationKind.PAYMENT_FAILED, "ada@example.com", {"attempt_count": 1}) is True

        task.delay.assert_called_once_with("payment_failed", "ada@example.com", {"attempt_count": 1})

    def test_notify_without_recipient_is_skipped(self):
        task = MagicMock()

        assert NotificationService(task=task).notify(NotificationKind.PAYMENT_FAILED, None, {}) is False
        task.delay.assert_not_called()

    def test_enqueue_failure_is_swallowed(self):
        task = MagicMock()
        task.delay.side_effect = ConnectionError("broker down")

        assert NotificationService(task=task).notify(NotificationKind.PAYMENT_RECEIPT, "ada@example.com", {}) is False


class TestSendBillingNotificationTask:

    def test_known_kind_is_sent(self):
        result = send_billing_notification(
            "subscription_suspended",
            "ada@example.com",
            {"subscription_id": "sub_1"},
        )

        assert result == {
            "sent": True,
            "kind": "subscription_suspended",
            "recipient": "ada@example.com",
            "subject": "Subscription suspended",
        }

    def test_unknown_kind_is_reported(self):
        result = send_billing_notification("birthday_card", "ada@example.com", {})

        assert result == {"sent": False, "reason": "unknown_kind"}

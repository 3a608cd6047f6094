"""Billing notification kinds and their message templates."""

from enum import Enum
from typing import Any, Dict, Tuple


class NotificationKind(str, Enum):
    PAYMENT_RECEIPT = "payment_receipt"
    PAYMENT_FAILED = "payment_failed"
    RENEWAL_REMINDER = "renewal_reminder"
    SUBSCRIPTION_SUSPENDED = "subscription_suspended"


# kind -> (subject, body); bodies are str.format templates over the notification context
TEMPLATES: Dict[NotificationKind, Tuple[str, str]] = {
    NotificationKind.PAYMENT_RECEIPT: (
        "Payment received",
        "We received your payment of {amount} {currency} for invoice {invoice_id}.",
    ),
    NotificationKind.PAYMENT_FAILED: (
        "Payment failed",
        "Payment attempt {attempt_count} for invoice {invoice_id} ({amount} {currency}) failed.",
    ),
    NotificationKind.RENEWAL_REMINDER: (
        "Your subscription renews soon",
        "Your subscription renews on {renewal_date}.",
    ),
    NotificationKind.SUBSCRIPTION_SUSPENDED: (
        "Subscription suspended",
        "Your subscription {subscription_id} was suspended after the grace period ended.",
    ),
}


class _Defaulting(dict):
    def __missing__(self, key: str) -> str:
        return "n/a"


def render(kind: NotificationKind, context: Dict[str, Any]) -> Tuple[str, str]:
    subject, body = TEMPLATES[kind]
    return subject, body.format_map(_Defaulting(context))


def format_amount(minor_units: int) -> str:
    return f"{minor_units / 100:.2f}"

from .plan import BillingCycle, Plan
from .subscription import (
    ALLOWED_TRANSITIONS,
    CURRENT_STATUSES,
    Subscription,
    SubscriptionStatus,
    add_billing_period,
)
from .user import User

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CURRENT_STATUSES",
    "BillingCycle",
    "Plan",
    "Subscription",
    "SubscriptionStatus",
    "User",
    "add_billing_period",
]

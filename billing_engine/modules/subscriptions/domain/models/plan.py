# 📄 File: billing_engine/modules/subscriptions/domain/models/plan.py
# 🧭 Purpose (Layman Explanation):
# Describes a plan customers can subscribe to: its name, price, how often it bills, and how long
# the free trial lasts.
# 🧪 Purpose (Technical Summary):
# Domain model for the Plan catalog entry carrying price and billing-cycle metadata used by
# subscription creation, plan changes and renewals.
# 🔗 Dependencies:
# pydantic, datetime, decimal, uuid, enum
# 🔄 Connected Modules / Calls From:
# subscription.py (period arithmetic), subscription_service.py, plan repository impl

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BillingCycle(str, Enum):
    """Recurring period between charges"""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class Plan(BaseModel):
    """Plan catalog entry."""

    model_config = ConfigDict(use_enum_values=True, from_attributes=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    currency: str = "usd"
    billing_cycle: str = BillingCycle.MONTHLY.value
    trial_period_days: int = Field(default=0, ge=0)
    is_active: bool = True
    stripe_price_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.lower()

    @property
    def has_trial(self) -> bool:
        return self.trial_period_days > 0

# 📄 File: billing_engine/modules/subscriptions/presentation/api/schemas/subscription_schemas.py
# 🧭 Purpose (Layman Explanation):
# Describes exactly what the subscription and plan endpoints accept and send back, so bad input
# is rejected before any billing rules run.
# 🧪 Purpose (Technical Summary):
# Pydantic request/response schemas for the subscriptions and plans API, with enum and date
# validation.
# 🔗 Dependencies:
# pydantic, subscription domain models
# 🔄 Connected Modules / Calls From:
# presentation/api/v1/subscriptions.py, presentation/api/v1/plans.py

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator

from billing_engine.modules.subscriptions.domain.models.plan import BillingCycle
from billing_engine.modules.subscriptions.domain.models.subscription import SubscriptionStatus


# =============================================================================
# PLANS
# =============================================================================

class PlanCreateRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    currency: str = Field(default="usd", min_length=3, max_length=3)
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    trial_period_days: int = Field(default=0, ge=0, le=365)
    stripe_price_id: Optional[str] = None


class PlanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: Optional[str] = None
    price: Decimal
    currency: str
    billing_cycle: str
    trial_period_days: int
    is_active: bool
    created_at: datetime


# =============================================================================
# SUBSCRIPTIONS - REQUESTS
# =============================================================================

class SubscriptionCreateRequest(BaseModel):
    """Administrative create on behalf of a user."""
    user_id: UUID
    plan_id: UUID
    start_date: Optional[AwareDatetime] = None
    end_date: Optional[AwareDatetime] = None
    status: Optional[SubscriptionStatus] = None
    is_auto_renew: bool = True

    @model_validator(mode="after")
    def validate_dates(self) -> "SubscriptionCreateRequest":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class SubscribeRequest(BaseModel):
    """Self-service create for the calling user."""
    plan_id: UUID
    is_auto_renew: bool = True


class SubscriptionUpdateRequest(BaseModel):
    status: Optional[SubscriptionStatus] = None
    is_auto_renew: Optional[bool] = None
    start_date: Optional[AwareDatetime] = None
    end_date: Optional[AwareDatetime] = None
    trial_end_date: Optional[AwareDatetime] = None
    next_billing_date: Optional[AwareDatetime] = None
    cancellation_reason: Optional[str] = Field(None, max_length=500)
    external_subscription_id: Optional[str] = None


class ChangePlanRequest(BaseModel):
    plan_id: UUID


class RenewRequest(BaseModel):
    end_date: Optional[AwareDatetime] = Field(None, description="Custom end date; defaults to one billing period")


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


# =============================================================================
# SUBSCRIPTIONS - RESPONSES
# =============================================================================

class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    plan_id: UUID
    status: str
    billing_cycle: str
    is_auto_renew: bool
    start_date: datetime
    end_date: datetime
    trial_end_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    grace_period_end_date: Optional[datetime] = None
    renewed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    plan_changed_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    renewal_count: int
    subscribed_price: Decimal
    failed_payment_attempts: int
    external_subscription_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SubscriptionListResponse(BaseModel):
    items: List[SubscriptionResponse]
    total: int
    page: int
    limit: int
    pages: int


class SubscriptionStatsResponse(BaseModel):
    total: int
    by_status: Dict[str, int]


# =============================================================================
# USERS
# =============================================================================

class UserCreateRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    name: Optional[str] = Field(None, max_length=255)
    stripe_customer_id: Optional[str] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    name: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    created_at: datetime

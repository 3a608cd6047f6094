# 📄 File: billing_engine/modules/payments/domain/models/payment.py
# 🧭 Purpose (Layman Explanation):
# Describes a payment we asked the payment processor to take, plus the receipts and failed
# payment notices the processor sends back to us.
# 🧪 Purpose (Technical Summary):
# Pydantic domain models for payments (one per processor payment intent), billing records
# (one per paid invoice) and payment failures (one per invoice attempt). Amounts are integer
# minor currency units as the processor reports them.
# 🔗 Dependencies:
# pydantic, enum, datetime
# 🔄 Connected Modules / Calls From:
# payment_service.py, billing_service.py, webhook_reconciler.py, repository implementations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentType(str, Enum):
    ONE_TIME = "one_time"
    SUBSCRIPTION = "subscription"


# Processor payment intent status -> local payment status
INTENT_STATUS_MAP = {
    "succeeded": PaymentStatus.SUCCEEDED,
    "canceled": PaymentStatus.CANCELLED,
    "requires_payment_method": PaymentStatus.PENDING,
    "requires_confirmation": PaymentStatus.PENDING,
    "requires_action": PaymentStatus.PENDING,
    "processing": PaymentStatus.PENDING,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Payment(BaseModel):
    """A processor payment intent mirrored locally."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True, validate_assignment=True)

    id: UUID = Field(default_factory=uuid4)
    stripe_payment_intent_id: str
    stripe_customer_id: Optional[str] = None
    user_id: Optional[UUID] = None
    amount: int = Field(..., gt=0, description="Amount in minor currency units")
    currency: str = Field("usd", min_length=3, max_length=3)
    status: PaymentStatus = PaymentStatus.PENDING
    type: PaymentType = PaymentType.ONE_TIME
    description: Optional[str] = None
    payment_metadata: Optional[Dict[str, Any]] = None
    client_secret: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.lower()

    def mark_succeeded(self, now: Optional[datetime] = None) -> bool:
        """Returns False when the payment was already recorded as succeeded."""
        if self.status == PaymentStatus.SUCCEEDED:
            return False
        now = now or _utcnow()
        self.status = PaymentStatus.SUCCEEDED
        self.processed_at = now
        self.updated_at = now
        return True

    def mark_failed(self, now: Optional[datetime] = None) -> bool:
        # A late failure notice never overrides a recorded success
        if self.status in (PaymentStatus.FAILED, PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED):
            return False
        now = now or _utcnow()
        self.status = PaymentStatus.FAILED
        self.processed_at = now
        self.updated_at = now
        return True


class BillingRecord(BaseModel):
    """Receipt for a paid processor invoice."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    stripe_invoice_id: str
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    user_id: Optional[UUID] = None
    amount_paid: int = 0
    currency: str = "usd"
    status: str = "paid"
    invoice_number: Optional[str] = None
    hosted_invoice_url: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)


class PaymentFailure(BaseModel):
    """One failed collection attempt for a processor invoice."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    stripe_invoice_id: str
    attempt_count: int = 0
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    user_id: Optional[UUID] = None
    amount_due: int = 0
    currency: str = "usd"
    failure_reason: Optional[str] = None
    next_payment_attempt: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)

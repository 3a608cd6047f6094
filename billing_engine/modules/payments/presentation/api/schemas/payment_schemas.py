"""Request/response schemas for the payments API."""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PaymentIntentCreateRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Amount in minor currency units")
    currency: str = Field(default="usd", min_length=3, max_length=3)
    description: Optional[str] = Field(None, max_length=500)
    metadata: Optional[Dict[str, str]] = None
    payment_method_id: Optional[str] = None


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    stripe_payment_intent_id: str
    stripe_customer_id: Optional[str] = None
    user_id: Optional[UUID] = None
    amount: int
    currency: str
    status: str
    type: str
    description: Optional[str] = None
    client_secret: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


class BillingRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stripe_invoice_id: str
    stripe_subscription_id: Optional[str] = None
    amount_paid: int
    currency: str
    status: str
    invoice_number: Optional[str] = None
    hosted_invoice_url: Optional[str] = None
    paid_at: Optional[datetime] = None


class PaymentFailureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stripe_invoice_id: str
    attempt_count: int
    amount_due: int
    currency: str
    failure_reason: Optional[str] = None
    next_payment_attempt: Optional[datetime] = None
    created_at: datetime


class BillingHistoryResponse(BaseModel):
    customer_id: str
    receipts: List[BillingRecordResponse]
    failures: List[PaymentFailureResponse]


class WebhookAcknowledgement(BaseModel):
    received: bool = True

from abc import ABC, abstractmethod
from typing import List

from billing_engine.modules.payments.domain.models.payment import BillingRecord, PaymentFailure


class BillingRepository(ABC):
    """Receipt and payment-failure ledgers."""

    @abstractmethod
    async def record_receipt(self, record: BillingRecord) -> bool:
        """Insert a receipt. Returns False if the invoice already has one."""
        pass

    @abstractmethod
    async def record_failure(self, failure: PaymentFailure) -> bool:
        """Insert a failure. Returns False if this invoice attempt was already recorded."""
        pass

    @abstractmethod
    async def list_receipts_for_customer(self, stripe_customer_id: str, limit: int = 50) -> List[BillingRecord]:
        pass

    @abstractmethod
    async def list_failures_for_customer(self, stripe_customer_id: str, limit: int = 50) -> List[PaymentFailure]:
        pass

from abc import ABC, abstractmethod
from typing import Optional

from billing_engine.modules.payments.domain.models.payment import Payment


class PaymentRepository(ABC):
    """Abstract repository interface for locally mirrored payment intents."""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        pass

    @abstractmethod
    async def get_by_intent_id(self, payment_intent_id: str) -> Optional[Payment]:
        pass

    @abstractmethod
    async def save(self, payment: Payment) -> Payment:
        pass

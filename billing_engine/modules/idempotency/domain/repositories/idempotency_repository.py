"""Abstract storage for idempotency keys."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from billing_engine.modules.idempotency.domain.models.idempotency_record import IdempotencyRecord


class IdempotencyRepository(ABC):

    @abstractmethod
    async def get(self, key: str) -> Optional[IdempotencyRecord]:
        pass

    @abstractmethod
    async def claim(self, record: IdempotencyRecord) -> bool:
        """Insert the record unless the key exists. Returns False when another request holds it."""
        pass

    @abstractmethod
    async def complete(self, key: str, status_code: int, body: bytes, content_type: Optional[str]) -> None:
        pass

    @abstractmethod
    async def release(self, key: str) -> None:
        """Drop an in-progress claim so the key can be retried."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def delete_expired(self, now: datetime) -> int:
        pass

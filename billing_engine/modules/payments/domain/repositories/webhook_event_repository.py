from abc import ABC, abstractmethod
from typing import Optional

from billing_engine.modules.payments.domain.models.webhook_event import WebhookEvent


class WebhookEventRepository(ABC):
    """Ledger of processor events already handled."""

    @abstractmethod
    async def record_received(self, event: WebhookEvent) -> bool:
        """Insert the event id. Returns False when it has been seen before."""
        pass

    @abstractmethod
    async def get(self, event_id: str) -> Optional[WebhookEvent]:
        pass

    @abstractmethod
    async def mark_processed(self, event_id: str) -> None:
        pass

    @abstractmethod
    async def mark_failed(self, event_id: str, error: str) -> None:
        pass

    @abstractmethod
    async def reopen(self, event_id: str) -> None:
        """Move a failed event back to processing for another attempt."""
        pass

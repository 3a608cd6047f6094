import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.modules.payments.domain.models.webhook_event import WebhookEvent, WebhookEventStatus
from billing_engine.modules.payments.domain.repositories.webhook_event_repository import WebhookEventRepository
from billing_engine.modules.payments.infrastructure.database.models import WebhookEventModel
from billing_engine.shared.core.exceptions import DatabaseError
from billing_engine.shared.infrastructure.database.types import utcnow

logger = logging.getLogger(__name__)


class WebhookEventRepositoryImpl(WebhookEventRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record_received(self, event: WebhookEvent) -> bool:
        try:
            async with self.session.begin_nested():
                self.session.add(WebhookEventModel(**event.model_dump()))
            return True
        except IntegrityError:
            return False
        except SQLAlchemyError as e:
            logger.error(f"Database error recording webhook event {event.id}: {e}")
            raise DatabaseError(f"Failed to record webhook event: {e}", operation="insert", table="webhook_events")

    async def get(self, event_id: str) -> Optional[WebhookEvent]:
        try:
            model = await self.session.get(WebhookEventModel, event_id)
            return WebhookEvent.model_validate(model) if model else None
        except SQLAlchemyError as e:
            logger.error(f"Database error reading webhook event {event_id}: {e}")
            raise DatabaseError(f"Failed to read webhook event: {e}", operation="select", table="webhook_events")

    async def mark_processed(self, event_id: str) -> None:
        await self._set_status(event_id, status=WebhookEventStatus.PROCESSED.value, error=None, processed_at=utcnow())

    async def mark_failed(self, event_id: str, error: str) -> None:
        await self._set_status(event_id, status=WebhookEventStatus.FAILED.value, error=error[:2000], processed_at=utcnow())

    async def reopen(self, event_id: str) -> None:
        await self._set_status(event_id, status=WebhookEventStatus.PROCESSING.value, error=None, processed_at=None)

    async def _set_status(self, event_id: str, **values) -> None:
        try:
            await self.session.execute(
                update(WebhookEventModel)
                .where(WebhookEventModel.id == event_id)
                .values(**values)
                .execution_options(synchronize_session="fetch")
            )
        except SQLAlchemyError as e:
            logger.error(f"Database error updating webhook event {event_id}: {e}")
            raise DatabaseError(f"Failed to update webhook event: {e}", operation="update", table="webhook_events")

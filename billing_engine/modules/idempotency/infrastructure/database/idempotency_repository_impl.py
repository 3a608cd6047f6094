# 📄 File: billing_engine/modules/idempotency/infrastructure/database/idempotency_repository_impl.py
# 🧭 Purpose (Layman Explanation):
# Stores and looks up remembered responses for idempotency keys in the database.
# 🧪 Purpose (Technical Summary):
# SQLAlchemy implementation of IdempotencyRepository. Claiming relies on the primary key:
# the insert runs in a savepoint and a unique violation means another request owns the key.
# 🔗 Dependencies:
# SQLAlchemy AsyncSession, IdempotencyKeyModel
# 🔄 Connected Modules / Calls From:
# idempotency_service.py

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.modules.idempotency.domain.models.idempotency_record import (
    IdempotencyRecord,
    IdempotencyState,
)
from billing_engine.modules.idempotency.domain.repositories.idempotency_repository import IdempotencyRepository
from billing_engine.modules.idempotency.infrastructure.database.models import IdempotencyKeyModel
from billing_engine.shared.core.exceptions import DatabaseError

logger = logging.getLogger(__name__)


class IdempotencyRepositoryImpl(IdempotencyRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str) -> Optional[IdempotencyRecord]:
        try:
            result = await self.session.execute(
                select(IdempotencyKeyModel).where(IdempotencyKeyModel.key == key)
            )
            model = result.scalar_one_or_none()
            return IdempotencyRecord.model_validate(model) if model else None
        except SQLAlchemyError as e:
            logger.error(f"Database error reading idempotency key {key}: {e}")
            raise DatabaseError(f"Failed to read idempotency key: {e}", operation="select", table="idempotency_keys")

    async def claim(self, record: IdempotencyRecord) -> bool:
        try:
            async with self.session.begin_nested():
                self.session.add(IdempotencyKeyModel(**record.model_dump()))
            return True
        except IntegrityError:
            logger.info(f"Idempotency key {record.key} already claimed")
            return False
        except SQLAlchemyError as e:
            logger.error(f"Database error claiming idempotency key {record.key}: {e}")
            raise DatabaseError(f"Failed to claim idempotency key: {e}", operation="insert", table="idempotency_keys")

    async def complete(self, key: str, status_code: int, body: bytes, content_type: Optional[str]) -> None:
        try:
            await self.session.execute(
                update(IdempotencyKeyModel)
                .where(IdempotencyKeyModel.key == key)
                .values(
                    state=IdempotencyState.COMPLETED.value,
                    status_code=status_code,
                    response_body=body,
                    content_type=content_type,
                )
            )
        except SQLAlchemyError as e:
            logger.error(f"Database error storing response for idempotency key {key}: {e}")
            raise DatabaseError(f"Failed to store idempotent response: {e}", operation="update", table="idempotency_keys")

    async def release(self, key: str) -> None:
        try:
            await self.session.execute(
                delete(IdempotencyKeyModel).where(
                    IdempotencyKeyModel.key == key,
                    IdempotencyKeyModel.state == IdempotencyState.IN_PROGRESS.value,
                )
            )
        except SQLAlchemyError as e:
            logger.error(f"Database error releasing idempotency key {key}: {e}")
            raise DatabaseError(f"Failed to release idempotency key: {e}", operation="delete", table="idempotency_keys")

    async def delete(self, key: str) -> None:
        try:
            await self.session.execute(delete(IdempotencyKeyModel).where(IdempotencyKeyModel.key == key))
        except SQLAlchemyError as e:
            logger.error(f"Database error deleting idempotency key {key}: {e}")
            raise DatabaseError(f"Failed to delete idempotency key: {e}", operation="delete", table="idempotency_keys")

    async def delete_expired(self, now: datetime) -> int:
        try:
            result = await self.session.execute(
                delete(IdempotencyKeyModel).where(IdempotencyKeyModel.expires_at <= now)
            )
            return result.rowcount or 0
        except SQLAlchemyError as e:
            logger.error(f"Database error purging idempotency keys: {e}")
            raise DatabaseError(f"Failed to purge idempotency keys: {e}", operation="delete", table="idempotency_keys")

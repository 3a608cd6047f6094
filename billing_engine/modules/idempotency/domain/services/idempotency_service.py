# 📄 File: billing_engine/modules/idempotency/domain/services/idempotency_service.py
#
# 🧭 Purpose (Layman Explanation):
# Makes "create" style requests safe to retry: the first request with a given key does the work
# and its answer is remembered, every later request with that key gets the remembered answer.
#
# 🧪 Purpose (Technical Summary):
# Idempotency workflow around an async operation: UUID key validation, lazy expiry, replay of
# completed records, an insert-if-absent pre-claim that turns concurrent duplicates into a 409,
# claim release on failure or non-2xx, and best-effort persistence of the final response.
# Each storage step runs in its own short unit of work so claims are visible to other requests.
#
# 🔗 Dependencies:
# - billing_engine.shared.infrastructure.database.session (database_session)
# - IdempotencyRepositoryImpl
# - billing_engine.shared.core.exceptions
#
# 🔄 Connected Modules / Calls From:
# - billing_engine/api/middleware/idempotency.py
# - background_jobs/scheduler.py (expired key purge)

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncContextManager, Awaitable, Callable, Dict, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.modules.idempotency.domain.models.idempotency_record import IdempotencyRecord
from billing_engine.modules.idempotency.infrastructure.database.idempotency_repository_impl import (
    IdempotencyRepositoryImpl,
)
from billing_engine.shared.config.settings import get_settings
from billing_engine.shared.core.exceptions import (
    DatabaseError,
    IdempotencyKeyInProgressError,
    InvalidIdempotencyKeyError,
    TransactionError,
)
from billing_engine.shared.infrastructure.database.session import database_session

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AsyncContextManager[AsyncSession]]

KEY_PATTERN = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)


@dataclass
class StoredResponse:
    """A response as it went (or will go) over the wire."""
    status_code: int
    body: bytes
    media_type: Optional[str] = None
    replayed: bool = False
    headers: Optional[Dict[str, str]] = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


def validate_idempotency_key(key: str) -> str:
    """Return the key unchanged if it is a hyphenated 8-4-4-4-12 UUID."""
    if not isinstance(key, str) or not KEY_PATTERN.fullmatch(key):
        raise InvalidIdempotencyKeyError(key)
    return key


class IdempotencyService:
    """
    Executes operations at most once per Idempotency-Key within the TTL window.
    """

    def __init__(self, session_scope: SessionScope = database_session, ttl_hours: Optional[int] = None):
        self.session_scope = session_scope
        self.ttl_hours = ttl_hours if ttl_hours is not None else get_settings().IDEMPOTENCY_TTL_HOURS

    async def execute(
        self,
        key: Optional[str],
        user_id: Optional[UUID],
        method: str,
        path: str,
        operation: Callable[[], Awaitable[StoredResponse]],
    ) -> StoredResponse:
        if key is None:
            return await operation()

        validate_idempotency_key(key)
        now = datetime.now(timezone.utc)

        try:
            existing = await self._load(key, now)
        except (DatabaseError, TransactionError) as e:
            logger.warning(f"Idempotency lookup failed for key {key}, executing without protection: {e}")
            return await operation()

        if existing is not None:
            return self._replay_or_reject(existing)

        try:
            claimed = await self._claim(key, user_id, method, path, now)
        except (DatabaseError, TransactionError) as e:
            logger.warning(f"Could not claim idempotency key {key}, executing without protection: {e}")
            return await operation()

        if not claimed:
            # Lost the race to a concurrent request with the same key
            winner = await self._load(key, now)
            if winner is None:
                raise IdempotencyKeyInProgressError(key)
            return self._replay_or_reject(winner)

        logger.info(f"Idempotency miss for key {key} ({method} {path})")
        try:
            response = await operation()
        except Exception:
            await self._release(key)
            raise

        if response.is_success:
            await self._store(key, response)
        else:
            await self._release(key)
        return response

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        async with self.session_scope() as session:
            deleted = await IdempotencyRepositoryImpl(session).delete_expired(now)
        if deleted:
            logger.info(f"Purged {deleted} expired idempotency keys")
        return deleted

    async def _load(self, key: str, now: datetime) -> Optional[IdempotencyRecord]:
        async with self.session_scope() as session:
            repository = IdempotencyRepositoryImpl(session)
            record = await repository.get(key)
            if record is not None and record.is_expired(now):
                logger.info(f"Idempotency key {key} expired, discarding stored response")
                await repository.delete(key)
                return None
            return record

    async def _claim(self, key: str, user_id: Optional[UUID], method: str, path: str, now: datetime) -> bool:
        record = IdempotencyRecord.claim(key, user_id, method, path, self.ttl_hours, now=now)
        async with self.session_scope() as session:
            return await IdempotencyRepositoryImpl(session).claim(record)

    async def _store(self, key: str, response: StoredResponse) -> None:
        try:
            async with self.session_scope() as session:
                await IdempotencyRepositoryImpl(session).complete(
                    key, response.status_code, response.body, response.media_type
                )
        except Exception as e:
            # The operation already succeeded; the caller still gets its response
            logger.error(f"Failed to persist idempotent response for key {key}: {e}")

    async def _release(self, key: str) -> None:
        try:
            async with self.session_scope() as session:
                await IdempotencyRepositoryImpl(session).release(key)
        except Exception as e:
            logger.error(f"Failed to release idempotency key {key}: {e}")

    @staticmethod
    def _replay_or_reject(record: IdempotencyRecord) -> StoredResponse:
        if not record.is_completed:
            raise IdempotencyKeyInProgressError(record.key)
        logger.info(f"Idempotency hit for key {record.key}, replaying stored {record.status_code} response")
        return StoredResponse(
            status_code=record.status_code,
            body=record.response_body or b"",
            media_type=record.content_type,
            replayed=True,
        )

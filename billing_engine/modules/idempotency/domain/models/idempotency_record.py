# 📄 File: billing_engine/modules/idempotency/domain/models/idempotency_record.py
# 🧭 Purpose (Layman Explanation):
# Remembers the answer we gave to a request that carried an idempotency key, so the same
# request sent again gets exactly the same answer instead of charging or subscribing twice.
# 🧪 Purpose (Technical Summary):
# Pydantic domain model for a claimed or completed idempotency key with the stored response
# (status code, raw body bytes, content type) and its expiry.
# 🔗 Dependencies:
# pydantic, datetime
# 🔄 Connected Modules / Calls From:
# idempotency_service.py, idempotency_repository_impl.py

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class IdempotencyState(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class IdempotencyRecord(BaseModel):
    """A key claimed by the first request that carried it."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    key: str
    user_id: Optional[UUID] = None
    method: str
    path: str
    state: IdempotencyState = IdempotencyState.IN_PROGRESS
    status_code: Optional[int] = None
    response_body: Optional[bytes] = None
    content_type: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime

    @classmethod
    def claim(
        cls,
        key: str,
        user_id: Optional[UUID],
        method: str,
        path: str,
        ttl_hours: int,
        now: Optional[datetime] = None,
    ) -> "IdempotencyRecord":
        now = now or datetime.now(timezone.utc)
        return cls(
            key=key,
            user_id=user_id,
            method=method,
            path=path,
            created_at=now,
            expires_at=now + timedelta(hours=ttl_hours),
        )

    @property
    def is_completed(self) -> bool:
        return self.state == IdempotencyState.COMPLETED

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now

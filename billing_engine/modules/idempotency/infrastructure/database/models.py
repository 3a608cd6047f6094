"""SQLAlchemy model for stored idempotent responses."""

from sqlalchemy import Column, Index, Integer, LargeBinary, String, Uuid

from billing_engine.shared.infrastructure.database.connection import Base
from billing_engine.shared.infrastructure.database.types import UTCDateTime, utcnow


class IdempotencyKeyModel(Base):
    """One row per Idempotency-Key; the primary key makes claiming atomic."""
    __tablename__ = "idempotency_keys"

    key = Column(String(36), primary_key=True, comment="Client supplied Idempotency-Key (UUID)")
    user_id = Column(Uuid, nullable=True, comment="Caller that first used the key")
    method = Column(String(10), nullable=False)
    path = Column(String(500), nullable=False)
    state = Column(String(20), nullable=False, default="in_progress", comment="in_progress or completed")
    status_code = Column(Integer, nullable=True)
    response_body = Column(LargeBinary, nullable=True, comment="Exact response bytes replayed on retry")
    content_type = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    expires_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("idx_idempotency_keys_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<IdempotencyKeyModel(key={self.key}, state={self.state})>"

from billing_engine.modules.idempotency.domain.models.idempotency_record import (
    IdempotencyRecord,
    IdempotencyState,
)

__all__ = ["IdempotencyRecord", "IdempotencyState"]

from billing_engine.modules.idempotency.domain.services.idempotency_service import (
    IdempotencyService,
    StoredResponse,
    validate_idempotency_key,
)

__all__ = ["IdempotencyService", "StoredResponse", "validate_idempotency_key"]

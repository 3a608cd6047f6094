from billing_engine.modules.idempotency.domain.repositories.idempotency_repository import IdempotencyRepository

__all__ = ["IdempotencyRepository"]

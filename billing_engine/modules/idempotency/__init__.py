"""Idempotency store for retry-safe mutating requests."""

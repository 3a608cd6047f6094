"""Feature modules: subscriptions, payments, idempotency and notifications."""

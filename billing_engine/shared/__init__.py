"""Cross-cutting configuration, errors, resilience, persistence and logging."""

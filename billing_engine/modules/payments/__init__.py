"""Payment intents, invoice ledgers and processor webhook reconciliation."""

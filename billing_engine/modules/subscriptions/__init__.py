"""Users, plans and the subscription lifecycle state machine."""

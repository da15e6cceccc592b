"""Issue records and the status state machine."""

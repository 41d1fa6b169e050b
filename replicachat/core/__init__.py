"""Identity derivation, reconciliation, and chat session state."""

"""ReplicaChat CLI: Click-based command-line interface."""

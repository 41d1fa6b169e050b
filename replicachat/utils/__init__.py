"""ReplicaChat utilities: structured logging."""

from replicachat.utils.logging import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]

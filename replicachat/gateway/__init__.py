"""ReplicaChat gateway: FastAPI server, routes, and middleware."""

from replicachat.gateway.app import create_app
from replicachat.gateway.config import ReplicaChatConfig, load_config

__all__ = ["create_app", "ReplicaChatConfig", "load_config"]

"""ReplicaChat: gateway and reconciliation layer for hosted replica chatbots."""

from replicachat.constants import PROJECT_VERSION

__version__ = PROJECT_VERSION

"""Upstream platform access: client, retry policy, endpoint wrappers, errors."""

from replicachat.upstream.api import ReplicaAPI
from replicachat.upstream.client import UpstreamClient, UpstreamResponse, normalize_collection
from replicachat.upstream.retry import RetryPolicy, retrying_call

__all__ = [
    "ReplicaAPI",
    "RetryPolicy",
    "UpstreamClient",
    "UpstreamResponse",
    "normalize_collection",
    "retrying_call",
]

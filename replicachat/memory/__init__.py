"""Local persistence: the JSON user cache."""

from replicachat.memory.user_cache import UserCache

__all__ = ["UserCache"]

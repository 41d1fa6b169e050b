"""
Chat session state: the client-side view of users, replicas, and messages.

An explicit container rather than ambient globals: callers construct one,
pass it where it is needed, and ``reset()`` it on sign-out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from replicachat.core.models import Message, UserRecord
from replicachat.upstream.errors import UpstreamError
from replicachat.utils.logging import get_logger

logger = get_logger("session")


@dataclass
class ChatSession:
    """Active replica, its live messages, and cached history per replica uuid."""

    user: UserRecord | None = None
    replicas: list[dict[str, Any]] = field(default_factory=list)
    current_replica: dict[str, Any] | None = None
    messages: list[Message] = field(default_factory=list)
    is_loading: bool = False
    history: dict[str, list[Message]] = field(default_factory=dict)

    @property
    def current_uuid(self) -> str | None:
        return self.current_replica.get("uuid") if self.current_replica else None

    def reset(self) -> None:
        """Return to the initial state (sign-out, re-authentication)."""
        self.user = None
        self.replicas = []
        self.current_replica = None
        self.messages = []
        self.is_loading = False
        self.history = {}

    def set_user(self, user: UserRecord | None) -> None:
        self.user = user

    def set_replicas(self, replicas: Iterable[dict[str, Any]]) -> None:
        self.replicas = list(replicas)

    def select_replica(self, replica: dict[str, Any] | str | None) -> None:
        """Switch the active replica, keeping the outgoing one's messages."""
        if isinstance(replica, str):
            replica = next(
                (r for r in self.replicas if r.get("uuid") == replica),
                {"uuid": replica},
            )

        previous = self.current_uuid
        if previous and self.messages:
            self.history[previous] = list(self.messages)

        self.current_replica = replica
        uuid = self.current_uuid
        self.messages = list(self.history.get(uuid, [])) if uuid else []

    def add_message(self, message: Message) -> None:
        self.messages.append(message)

    def clear_messages(self) -> None:
        self.messages = []

    def set_history(self, replica_uuid: str, messages: list[Message]) -> None:
        self.history[replica_uuid] = list(messages)

    def merge_history(self, replica_uuid: str, messages: Iterable[Message]) -> None:
        """Replace a replica's history with a fetched sequence (authoritative)."""
        ordered = sorted(messages, key=lambda m: m.timestamp)
        self.history[replica_uuid] = ordered
        if replica_uuid == self.current_uuid:
            self.messages = list(ordered)

    async def load_history(self, api: Any, replica_uuid: str, user_id: str) -> bool:
        """Fetch history through ``api`` and merge it. Failures leave state untouched."""
        self.is_loading = True
        try:
            messages = await api.chat_history(replica_uuid, user_id)
        except UpstreamError as e:
            logger.error(
                "chat_history_load_failed",
                replica_uuid=replica_uuid,
                status=e.status_code,
                error=str(e),
            )
            return False
        finally:
            self.is_loading = False

        self.merge_history(replica_uuid, messages)
        logger.info("chat_history_loaded", replica_uuid=replica_uuid, count=len(messages))
        return True

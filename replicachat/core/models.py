"""Domain records shared by the cache, reconciler, and chat session."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass
class UserRecord:
    """A user known to the gateway (derived or upstream-assigned id)."""

    id: str
    email: str
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "email": self.email, "createdAt": self.created_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserRecord:
        return cls(
            id=str(data["id"]),
            email=str(data["email"]),
            created_at=str(data.get("createdAt") or data.get("created_at") or utc_now_iso()),
        )


@dataclass
class CheckResult:
    """Outcome of check-or-create: whether the user was already known."""

    existed: bool
    user: UserRecord
    confirmed: bool = True


@dataclass
class Message:
    """A single chat message, owned by the chat session."""

    id: str
    content: str
    role: str
    timestamp: datetime
    source: str | None = None
    is_private: bool = False
    original_message_id: str | None = None
    sources: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "role": self.role,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
            "isPrivate": self.is_private,
            "originalMessageId": self.original_message_id,
            "sources": self.sources,
        }

    @classmethod
    def from_upstream(cls, item: dict[str, Any]) -> Message:
        """Map an upstream chat-history item onto a Message."""
        return cls(
            id=str(item.get("id", "")),
            content=item.get("content") or "",
            role=item.get("role", "assistant"),
            timestamp=parse_timestamp(item.get("created_at") or item.get("createdAt")),
            source=item.get("source"),
            is_private=bool(item.get("is_private", False)),
            original_message_id=item.get("original_message_id"),
            sources=item.get("sources") or [],
        )


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp; missing or invalid values sort first."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            parsed = datetime.min
    else:
        parsed = datetime.min
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed

"""Endpoint wrappers for the upstream user, replica, and chat APIs."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from replicachat.core.models import Message
from replicachat.upstream.client import UpstreamClient, UpstreamResponse, normalize_collection


def _segment(value: str) -> str:
    return quote(value, safe="")


class ReplicaAPI:
    """One method per upstream endpoint. Single attempt each."""

    def __init__(self, client: UpstreamClient):
        self.client = client

    # --- Users ---

    async def create_user(self, payload: dict[str, Any], timeout: float | None = None) -> UpstreamResponse:
        return await self.client.call("POST", "/v1/users", json=payload, timeout=timeout)

    async def get_user(self, user_id: str, timeout: float | None = None) -> UpstreamResponse:
        return await self.client.call("GET", f"/v1/users/{_segment(user_id)}", timeout=timeout)

    async def list_users(self, timeout: float | None = None) -> list[dict[str, Any]]:
        """List the upstream user directory, whatever shape it comes back in."""
        response = await self.client.call("GET", "/v1/users", timeout=timeout)
        response.raise_for_status(f"Failed to list users (status {response.status_code})")
        return normalize_collection(response.body)

    # --- Replicas ---

    async def create_replica(self, payload: dict[str, Any], timeout: float | None = None) -> UpstreamResponse:
        return await self.client.call("POST", "/v1/replicas", json=payload, timeout=timeout)

    async def list_replicas(
        self,
        owner_id: str | None = None,
        page_size: int | None = None,
        timeout: float | None = None,
    ) -> UpstreamResponse:
        params: dict[str, Any] = {}
        if owner_id:
            params["ownerID"] = owner_id
        if page_size:
            params["page_size"] = page_size
        return await self.client.call("GET", "/v1/replicas", params=params or None, timeout=timeout)

    async def delete_replica(self, replica_uuid: str, timeout: float | None = None) -> UpstreamResponse:
        return await self.client.call("DELETE", f"/v1/replicas/{_segment(replica_uuid)}", timeout=timeout)

    # --- Chat ---

    async def chat_completion(
        self,
        replica_uuid: str,
        content: str,
        user_id: str | None = None,
        timeout: float | None = None,
    ) -> UpstreamResponse:
        return await self.client.call(
            "POST",
            f"/v1/replicas/{_segment(replica_uuid)}/chat/completions",
            user_id=user_id or "",
            json={"content": content, "source": "web"},
            timeout=timeout,
        )

    async def chat_history(
        self,
        replica_uuid: str,
        user_id: str,
        timeout: float | None = None,
    ) -> list[Message]:
        """Fetch web chat history, oldest message first."""
        response = await self.client.call(
            "GET",
            f"/v1/replicas/{_segment(replica_uuid)}/chat/history/web",
            user_id=user_id,
            timeout=timeout,
        )
        response.raise_for_status(f"Failed to fetch chat history (status {response.status_code})")
        items = normalize_collection(response.body, keys=("items",))
        messages = [Message.from_upstream(item) for item in items if isinstance(item, dict)]
        return sorted(messages, key=lambda m: m.timestamp)

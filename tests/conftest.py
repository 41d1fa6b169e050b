"""Shared test fixtures for ReplicaChat."""

from __future__ import annotations

import asyncio
import json
import tempfile
import uuid
from pathlib import Path
from typing import Any

import httpx
import pytest

from replicachat.core.reconciler import ReconciliationService
from replicachat.gateway.config import (
    CacheConfig,
    LoggingConfig,
    ReplicaChatConfig,
    RetryConfig,
    UpstreamConfig,
)
from replicachat.memory.user_cache import UserCache
from replicachat.upstream.api import ReplicaAPI
from replicachat.upstream.client import UpstreamClient
from replicachat.upstream.retry import RetryPolicy

UPSTREAM_URL = "https://upstream.test"
ORG_SECRET = "test-org-secret"
API_VERSION = "2025-03-25"


class FakeUpstream:
    """In-memory stand-in for the hosted replica platform, served via httpx.MockTransport."""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.replicas: dict[str, dict[str, Any]] = {}
        self.history: dict[str, list[dict[str, Any]]] = {}
        self.requests: list[httpx.Request] = []
        # Forced outcomes, consumed one per matching request.
        self.create_user_statuses: list[int] = []
        self.create_replica_errors: list[Exception] = []
        self.create_replica_responses: list[httpx.Response] = []
        self.get_user_errors: list[Exception] = []
        self.history_responses: list[httpx.Response] = []
        self.list_users_shape = "items"
        self.delay = 0.0

    def add_user(self, user_id: str, email: str, created_at: str = "2025-01-01T00:00:00Z") -> None:
        self.users[user_id] = {"id": user_id, "email": email, "createdAt": created_at}

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)

        parts = request.url.path.strip("/").split("/")
        method = request.method

        if parts[:2] == ["v1", "users"]:
            return self._users(request, method, parts[2:])
        if parts[:2] == ["v1", "replicas"]:
            return self._replicas(request, method, parts[2:])
        return httpx.Response(404, json={"error": "Not found"})

    def _users(self, request: httpx.Request, method: str, rest: list[str]) -> httpx.Response:
        if method == "POST" and not rest:
            body = _json(request)
            if self.create_user_statuses:
                status = self.create_user_statuses.pop(0)
                return httpx.Response(status, json={"error": f"forced {status}"})
            taken = body["id"] in self.users or any(
                u["email"].lower() == body["email"].lower() for u in self.users.values()
            )
            if taken:
                return httpx.Response(409, json={"error": "User already exists"})
            self.add_user(body["id"], body["email"])
            return httpx.Response(201, json=self.users[body["id"]])

        if method == "GET" and not rest:
            items = list(self.users.values())
            if self.list_users_shape == "items":
                return httpx.Response(200, json={"items": items})
            if self.list_users_shape == "users":
                return httpx.Response(200, json={"users": items})
            if self.list_users_shape == "bare":
                return httpx.Response(200, json=items)
            return httpx.Response(200, json={"data": items})

        if method == "GET" and len(rest) == 1:
            if self.get_user_errors:
                raise self.get_user_errors.pop(0)
            user = self.users.get(rest[0])
            if user:
                return httpx.Response(200, json=user)
            return httpx.Response(404, json={"error": "User not found"})

        return httpx.Response(405, json={"error": "Method not allowed"})

    def _replicas(self, request: httpx.Request, method: str, rest: list[str]) -> httpx.Response:
        if method == "POST" and not rest:
            if self.create_replica_responses:
                return self.create_replica_responses.pop(0)
            if self.create_replica_errors:
                raise self.create_replica_errors.pop(0)
            body = _json(request)
            if body.get("ownerID") not in self.users:
                return httpx.Response(
                    400, json={"error": f'Owner "{body.get("ownerID")}" does not exist'}
                )
            replica_uuid = str(uuid.uuid4())
            self.replicas[replica_uuid] = {**body, "uuid": replica_uuid}
            return httpx.Response(200, json={"success": True, "uuid": replica_uuid})

        if method == "GET" and not rest:
            owner = request.url.params.get("ownerID")
            items = [r for r in self.replicas.values() if not owner or r.get("ownerID") == owner]
            return httpx.Response(200, json={"success": True, "items": items, "total": len(items)})

        if method == "DELETE" and len(rest) == 1:
            if self.replicas.pop(rest[0], None) is None:
                return httpx.Response(404, json={"error": "Replica not found"})
            return httpx.Response(200, json={"success": True})

        if len(rest) >= 3 and rest[1] == "chat":
            replica_uuid = rest[0]
            if rest[2] == "completions" and method == "POST":
                body = _json(request)
                reply = {"success": True, "content": f"echo: {body['content']}"}
                self.history.setdefault(replica_uuid, []).append(
                    {
                        "id": str(uuid.uuid4()),
                        "content": body["content"],
                        "role": "user",
                        "created_at": "2025-01-01T00:00:00Z",
                        "source": body.get("source"),
                    }
                )
                return httpx.Response(200, json=reply)
            if rest[2:] == ["history", "web"] and method == "GET":
                if self.history_responses:
                    return self.history_responses.pop(0)
                if not request.headers.get("X-USER-ID"):
                    return httpx.Response(401, json={"error": "Missing user"})
                if replica_uuid not in self.history and replica_uuid not in self.replicas:
                    return httpx.Response(404, json={"error": "Replica not found"})
                return httpx.Response(
                    200, json={"success": True, "items": self.history.get(replica_uuid, [])}
                )

        return httpx.Response(404, json={"error": "Not found"})


def _json(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content or b"{}")


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def cache_path(tmp_dir):
    """Provide a temporary user cache path."""
    return tmp_dir / "data" / "users.json"


@pytest.fixture
def user_cache(cache_path):
    return UserCache(cache_path)


@pytest.fixture
def fake_upstream():
    return FakeUpstream()


@pytest.fixture
def upstream_client(fake_upstream):
    return UpstreamClient(
        base_url=UPSTREAM_URL,
        org_secret=ORG_SECRET,
        api_version=API_VERSION,
        default_timeout=5.0,
        transport=fake_upstream.transport,
    )


@pytest.fixture
def upstream_api(upstream_client):
    return ReplicaAPI(upstream_client)


@pytest.fixture
def fast_policy():
    """Three attempts, no backoff, so retry paths run instantly."""
    return RetryPolicy(max_attempts=3, per_attempt_timeout=2.0, backoff_delay=0.0)


@pytest.fixture
def reconciler(upstream_api, user_cache, fast_policy):
    return ReconciliationService(
        api=upstream_api,
        cache=user_cache,
        user_policy=fast_policy,
        replica_policy=fast_policy,
    )


@pytest.fixture
def test_config(cache_path):
    """Gateway config pointing at the fake upstream with instant retries."""
    return ReplicaChatConfig(
        upstream=UpstreamConfig(
            api_url=UPSTREAM_URL,
            org_secret=ORG_SECRET,
            api_version=API_VERSION,
            chat_timeout_seconds=5.0,
        ),
        retry=RetryConfig(
            user_attempt_timeout_seconds=2.0,
            replica_attempt_timeout_seconds=2.0,
            backoff_seconds=0.0,
        ),
        cache=CacheConfig(user_cache_path=cache_path),
        logging=LoggingConfig(level="WARNING", format="text"),
    )

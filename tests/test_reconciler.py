"""Tests for user and replica reconciliation against the upstream."""

from __future__ import annotations

import asyncio
import threading
import time

import httpx
import pytest

from replicachat.core.identity import derive_user_id
from replicachat.core.reconciler import ReconciliationService, find_user_by_email
from replicachat.core.models import UserRecord
from replicachat.upstream.errors import (
    OwnerNotFound,
    UpstreamConflict,
    UpstreamError,
    UpstreamTimeout,
    ValidationError,
)
from replicachat.upstream.client import UpstreamResponse
from replicachat.upstream.retry import RetryPolicy

REPLICA_PAYLOAD = {
    "name": "Ada",
    "shortDescription": "Math tutor",
    "greeting": "Hi!",
    "type": "character",
    "slug": "ada",
    "llm": {"model": "gpt-4o", "systemMessage": "You teach math."},
}


class TestCheckOrCreateUser:
    """check_or_create_user protocol."""

    @pytest.mark.asyncio
    async def test_new_then_existing(self, reconciler, fake_upstream):
        first = await reconciler.check_or_create_user("new.user@example.com")
        second = await reconciler.check_or_create_user("new.user@example.com")

        assert first.existed is False
        assert second.existed is True
        assert first.user.id == second.user.id == derive_user_id("new.user@example.com")
        assert len(fake_upstream.calls("POST", "/v1/users")) == 1

    @pytest.mark.asyncio
    async def test_created_user_is_cached(self, reconciler, user_cache, fake_upstream):
        result = await reconciler.check_or_create_user("a@example.com")
        assert user_cache.get("a@example.com").id == result.user.id
        assert result.user.id in fake_upstream.users

    @pytest.mark.asyncio
    async def test_cache_hit_skips_upstream(self, reconciler, user_cache, fake_upstream):
        user_cache.put(UserRecord(id="cached-1", email="c@example.com"))

        result = await reconciler.check_or_create_user("C@Example.com")

        assert result.existed is True
        assert result.user.id == "cached-1"
        assert fake_upstream.requests == []

    @pytest.mark.asyncio
    async def test_sends_derived_id(self, reconciler, fake_upstream):
        await reconciler.check_or_create_user("Jane.Doe@Example.com")
        (request,) = fake_upstream.calls("POST", "/v1/users")
        assert request.read()
        assert derive_user_id("jane.doe@example.com").encode() in request.content

    @pytest.mark.asyncio
    async def test_conflict_adopts_upstream_id(self, reconciler, user_cache, fake_upstream):
        """A 409 for an email upstream already holds stores the upstream id."""
        fake_upstream.add_user("legacy-42", "jane@example.com", created_at="2024-05-01T00:00:00Z")

        result = await reconciler.check_or_create_user("jane@example.com")

        assert result.existed is True
        assert result.user.id == "legacy-42"
        assert result.user.created_at == "2024-05-01T00:00:00Z"
        assert user_cache.get("jane@example.com").id == "legacy-42"
        assert [u.id for u in user_cache.all()] == ["legacy-42"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("shape", ["items", "users", "bare"])
    async def test_conflict_handles_every_list_shape(self, reconciler, fake_upstream, shape):
        fake_upstream.list_users_shape = shape
        fake_upstream.add_user("legacy-7", "x@example.com")

        result = await reconciler.check_or_create_user("x@example.com")
        assert result.user.id == "legacy-7"

    @pytest.mark.asyncio
    async def test_conflict_matches_mixed_case_email(self, reconciler, fake_upstream):
        fake_upstream.add_user("legacy-9", "Mixed.Case@Example.com")

        result = await reconciler.check_or_create_user("mixed.case@example.com")
        assert result.user.id == "legacy-9"

    @pytest.mark.asyncio
    async def test_conflict_without_match_falls_back_to_derived(self, reconciler, user_cache, fake_upstream):
        fake_upstream.create_user_statuses = [409]

        result = await reconciler.check_or_create_user("ghost@example.com")

        assert result.existed is True
        assert result.user.id == derive_user_id("ghost@example.com")
        assert user_cache.get("ghost@example.com") is not None

    @pytest.mark.asyncio
    async def test_conflict_with_unrecognized_listing_falls_back(self, reconciler, fake_upstream):
        fake_upstream.list_users_shape = "unknown"
        fake_upstream.add_user("legacy-1", "odd@example.com")

        result = await reconciler.check_or_create_user("odd@example.com")
        assert result.user.id == derive_user_id("odd@example.com")

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, reconciler, fake_upstream):
        fake_upstream.create_user_statuses = [500, 503]

        result = await reconciler.check_or_create_user("flaky@example.com")

        assert result.existed is False
        assert result.confirmed is True
        assert len(fake_upstream.calls("POST", "/v1/users")) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_fall_back_locally(self, reconciler, user_cache, fake_upstream):
        fake_upstream.create_user_statuses = [500, 500, 500]

        result = await reconciler.check_or_create_user("down@example.com")

        assert result.existed is False
        assert result.confirmed is False
        assert result.user.id == derive_user_id("down@example.com")
        assert user_cache.get("down@example.com").id == result.user.id
        assert len(fake_upstream.calls("POST", "/v1/users")) == 3

    @pytest.mark.asyncio
    async def test_never_blocks_when_upstream_hangs(self, upstream_api, user_cache, fake_upstream):
        policy = RetryPolicy(max_attempts=3, per_attempt_timeout=0.05, backoff_delay=0.01)
        service = ReconciliationService(upstream_api, user_cache, user_policy=policy)
        fake_upstream.delay = 5.0

        started = time.perf_counter()
        result = await service.check_or_create_user("hang@example.com")
        elapsed = time.perf_counter() - started

        assert elapsed < policy.worst_case_seconds + 0.5
        assert result.confirmed is False
        assert result.user.id == derive_user_id("hang@example.com")

    @pytest.mark.asyncio
    async def test_missing_email_is_validation_error(self, reconciler, fake_upstream):
        with pytest.raises(ValidationError):
            await reconciler.check_or_create_user("  ")
        assert fake_upstream.requests == []

    @pytest.mark.asyncio
    async def test_concurrent_new_email_converges(self, reconciler, user_cache, fake_upstream):
        first, second = await asyncio.gather(
            reconciler.check_or_create_user("race@example.com"),
            reconciler.check_or_create_user("race@example.com"),
        )
        assert first.user.id == second.user.id
        assert len(user_cache.all()) == 1

    @pytest.mark.asyncio
    async def test_cache_io_runs_off_the_event_loop(self, reconciler, user_cache):
        loop_thread = threading.get_ident()
        seen = []
        original_get, original_put = user_cache.get, user_cache.put

        def get(email):
            seen.append(threading.get_ident())
            return original_get(email)

        def put(user):
            seen.append(threading.get_ident())
            return original_put(user)

        user_cache.get, user_cache.put = get, put

        await reconciler.check_or_create_user("threaded@example.com")

        assert len(seen) == 2
        assert loop_thread not in seen


class TestFindUserByEmail:
    def test_exact_match_preferred(self):
        users = [
            {"id": "loose", "email": "A@b.io"},
            {"id": "exact", "email": "a@b.io"},
        ]
        assert find_user_by_email(users, "a@b.io")["id"] == "exact"

    def test_entries_without_id_ignored(self):
        assert find_user_by_email([{"email": "a@b.io"}], "a@b.io") is None


class TestSyncAndReconcile:
    @pytest.mark.asyncio
    async def test_sync_mirrors_upstream_user(self, reconciler, user_cache, fake_upstream):
        fake_upstream.add_user("up-1", "s@example.com")

        user = await reconciler.sync_user("s@example.com")

        assert user.id == "up-1"
        assert user_cache.get("s@example.com").id == "up-1"

    @pytest.mark.asyncio
    async def test_sync_not_found(self, reconciler, user_cache):
        assert await reconciler.sync_user("nobody@example.com") is None
        assert user_cache.all() == []

    @pytest.mark.asyncio
    async def test_sync_unrecognized_shape_raises(self, reconciler, fake_upstream):
        fake_upstream.list_users_shape = "unknown"
        with pytest.raises(UpstreamError):
            await reconciler.sync_user("s@example.com")

    @pytest.mark.asyncio
    async def test_reconcile_heals_diverged_ids(self, reconciler, user_cache, fake_upstream):
        user_cache.put(UserRecord(id=derive_user_id("d@example.com"), email="d@example.com"))
        user_cache.put(UserRecord(id="kept", email="k@example.com"))
        user_cache.put(UserRecord(id="local-only", email="l@example.com"))
        fake_upstream.add_user("upstream-d", "d@example.com")
        fake_upstream.add_user("kept", "k@example.com")

        stats = await reconciler.reconcile_cache()

        assert stats == {"checked": 3, "healed": 1, "unknown_upstream": 1}
        assert user_cache.get("d@example.com").id == "upstream-d"
        assert user_cache.get("k@example.com").id == "kept"
        assert user_cache.get("l@example.com").id == "local-only"


class TestEnsureUser:
    @pytest.mark.asyncio
    async def test_existing_user(self, reconciler, fake_upstream):
        fake_upstream.add_user("u1", "u1@example.com")
        result = await reconciler.ensure_user("u1", "u1@example.com")
        assert result["exists"] is True
        assert fake_upstream.calls("POST", "/v1/users") == []

    @pytest.mark.asyncio
    async def test_creates_missing_user(self, reconciler, fake_upstream):
        result = await reconciler.ensure_user("u2", "u2@example.com")
        assert result == {"exists": False, "created": True, "user": fake_upstream.users["u2"]}

    @pytest.mark.asyncio
    async def test_requires_both_fields(self, reconciler):
        with pytest.raises(ValidationError):
            await reconciler.ensure_user("u3", "")

    @pytest.mark.asyncio
    async def test_conflict_on_create_means_exists(self, reconciler, fake_upstream):
        fake_upstream.add_user("other-id", "taken@example.com")

        result = await reconciler.ensure_user("u4", "taken@example.com")

        assert result["exists"] is True
        assert result["created"] is False

    @pytest.mark.asyncio
    async def test_create_failure_raises_with_status(self, reconciler, fake_upstream):
        fake_upstream.create_user_statuses = [500]

        with pytest.raises(UpstreamError) as exc_info:
            await reconciler.ensure_user("u5", "u5@example.com")

        assert not isinstance(exc_info.value, UpstreamConflict)
        assert exc_info.value.status_code == 500


class TestCreateReplica:
    """Owner verification and bounded retries for replica creation."""

    @pytest.mark.asyncio
    async def test_creates_for_existing_owner(self, reconciler, fake_upstream):
        fake_upstream.add_user("owner-1", "o@example.com")

        created = await reconciler.create_replica(REPLICA_PAYLOAD, "owner-1")

        assert created["success"] is True
        replica = fake_upstream.replicas[created["uuid"]]
        assert replica["ownerID"] == "owner-1"
        assert replica["llm"]["model"] == "gpt-4o"

    @pytest.mark.asyncio
    async def test_missing_owner_fails_fast(self, reconciler, fake_upstream):
        with pytest.raises(OwnerNotFound) as exc_info:
            await reconciler.create_replica(REPLICA_PAYLOAD, "ghost")

        assert exc_info.value.owner_id == "ghost"
        assert fake_upstream.calls("POST", "/v1/replicas") == []

    @pytest.mark.asyncio
    async def test_owner_verification_failure_is_upstream_error(self, reconciler, fake_upstream):
        fake_upstream.add_user("owner-1", "o@example.com")
        fake_upstream.get_user_errors = [httpx.ConnectError("down")]

        with pytest.raises(UpstreamError) as exc_info:
            await reconciler.create_replica(REPLICA_PAYLOAD, "owner-1")

        assert not isinstance(exc_info.value, OwnerNotFound)
        assert fake_upstream.calls("POST", "/v1/replicas") == []

    @pytest.mark.asyncio
    async def test_requires_owner(self, reconciler):
        with pytest.raises(ValidationError):
            await reconciler.create_replica(REPLICA_PAYLOAD, "")

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self, reconciler, fake_upstream):
        fake_upstream.add_user("owner-1", "o@example.com")
        fake_upstream.create_replica_errors = [
            httpx.ConnectError("reset"),
            httpx.ReadTimeout("slow"),
        ]

        created = await reconciler.create_replica(REPLICA_PAYLOAD, "owner-1")

        assert created["uuid"] in fake_upstream.replicas
        assert len(fake_upstream.calls("POST", "/v1/replicas")) == 3

    @pytest.mark.asyncio
    async def test_exhausted_timeouts_surface_as_timeout(self, reconciler, fake_upstream):
        fake_upstream.add_user("owner-1", "o@example.com")
        fake_upstream.create_replica_errors = [httpx.ReadTimeout("slow")] * 3

        with pytest.raises(UpstreamTimeout):
            await reconciler.create_replica(REPLICA_PAYLOAD, "owner-1")

    @pytest.mark.asyncio
    async def test_exhausted_errors_surface_last_error(self, reconciler, fake_upstream):
        fake_upstream.add_user("owner-1", "o@example.com")
        fake_upstream.create_replica_errors = [httpx.ConnectError("refused")] * 3

        with pytest.raises(UpstreamError) as exc_info:
            await reconciler.create_replica(REPLICA_PAYLOAD, "owner-1")
        assert not isinstance(exc_info.value, UpstreamTimeout)

    @pytest.mark.asyncio
    async def test_rejection_passed_through_without_retry(self, upstream_api, user_cache, fast_policy):
        calls = []

        async def rejecting_create(payload, timeout=None):
            calls.append(payload)
            return UpstreamResponse(status_code=422, body={"error": "slug taken"})

        upstream_api.get_user = _ok_user
        upstream_api.create_replica = rejecting_create
        service = ReconciliationService(upstream_api, user_cache, fast_policy, fast_policy)

        with pytest.raises(UpstreamError) as exc_info:
            await service.create_replica(REPLICA_PAYLOAD, "owner-1")

        assert exc_info.value.status_code == 422
        assert exc_info.value.body == {"error": "slug taken"}
        assert len(calls) == 1


    @pytest.mark.asyncio
    async def test_non_object_success_body_returned(self, upstream_api, user_cache, fast_policy):
        async def list_create(payload, timeout=None):
            return UpstreamResponse(status_code=201, body=[{"uuid": "r-1"}])

        upstream_api.get_user = _ok_user
        upstream_api.create_replica = list_create
        service = ReconciliationService(upstream_api, user_cache, fast_policy, fast_policy)

        created = await service.create_replica(REPLICA_PAYLOAD, "owner-1")

        assert created == [{"uuid": "r-1"}]

async def _ok_user(user_id, timeout=None):
    return UpstreamResponse(status_code=200, body={"id": user_id})

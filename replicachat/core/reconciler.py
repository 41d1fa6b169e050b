"""
Reconciliation between locally derived identities and the upstream directory.

check_or_create_user
    cache hit → derive id → create upstream (retried) → on 409 look the
    email up upstream and adopt its id → on exhaustion fall back to the
    derived id. Every branch writes through to the cache.

create_replica
    verify the owner upstream first (replica creation fails non-atomically
    on a bad owner), then create with retries on transport errors only.

sync_user / ensure_user
    mirror an upstream user into the cache; create a user if absent.

Cache reads and writes are blocking file I/O and run in a worker thread
via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
from typing import Any

from replicachat.core.identity import derive_user_id
from replicachat.core.models import CheckResult, UserRecord, utc_now_iso
from replicachat.memory.user_cache import UserCache
from replicachat.upstream.api import ReplicaAPI
from replicachat.upstream.client import UpstreamResponse
from replicachat.upstream.errors import (
    OwnerNotFound,
    UpstreamConflict,
    UpstreamError,
    UpstreamTimeout,
    ValidationError,
)
from replicachat.upstream.retry import RetryPolicy, retrying_call
from replicachat.utils.logging import get_logger

logger = get_logger("reconciler")


def _needs_retry(response: UpstreamResponse) -> bool:
    return not (response.ok or response.conflict)


def _no_response(error: UpstreamError) -> bool:
    return error.status_code is None


def _require_email(email: Any) -> str:
    if not isinstance(email, str) or not email.strip():
        raise ValidationError("Email is required")
    return email.strip()


def find_user_by_email(users: list[dict[str, Any]], email: str) -> dict[str, Any] | None:
    """Exact match first, then a case-insensitive one (upstream may keep mixed case)."""
    candidates = [u for u in users if isinstance(u, dict) and u.get("id")]
    exact = next((u for u in candidates if u.get("email") == email), None)
    if exact:
        return exact
    lowered = email.lower()
    loose = next(
        (u for u in candidates if str(u.get("email") or "").lower() == lowered),
        None,
    )
    if loose:
        logger.info("upstream_user_matched_ignoring_case", user_id=loose["id"])
    return loose


class ReconciliationService:
    """Create-or-fetch semantics for users and replicas against the upstream."""

    def __init__(
        self,
        api: ReplicaAPI,
        cache: UserCache,
        user_policy: RetryPolicy | None = None,
        replica_policy: RetryPolicy | None = None,
    ):
        self.api = api
        self.cache = cache
        self.user_policy = user_policy or RetryPolicy()
        self.replica_policy = replica_policy or RetryPolicy(per_attempt_timeout=60.0)

    # --- Users ---

    async def check_or_create_user(self, email: str) -> CheckResult:
        """Resolve ``email`` to a user, creating it upstream if needed."""
        email = _require_email(email)

        cached = await asyncio.to_thread(self.cache.get, email)
        if cached:
            logger.info("user_cache_hit", user_id=cached.id)
            return CheckResult(existed=True, user=cached)

        user_id = derive_user_id(email)
        logger.info("user_create_attempt", user_id=user_id)

        try:
            response = await retrying_call(
                lambda timeout: self.api.create_user({"id": user_id, "email": email}, timeout=timeout),
                self.user_policy,
                retry_on_result=_needs_retry,
                label="user_create",
            )
        except UpstreamError as e:
            response = None
            logger.error("user_create_exhausted", user_id=user_id, error=str(e))

        if response is not None and response.ok:
            user = UserRecord(id=user_id, email=email)
            await asyncio.to_thread(self.cache.put, user)
            logger.info("user_created", user_id=user_id)
            return CheckResult(existed=False, user=user)

        if response is not None and response.conflict:
            user = await self._adopt_existing(email, user_id)
            return CheckResult(existed=True, user=user)

        if response is not None:
            logger.error(
                "user_create_rejected",
                user_id=user_id,
                status=response.status_code,
                body=response.body,
            )

        # Upstream never confirmed; keep the UI moving with the derived id.
        user = UserRecord(id=user_id, email=email)
        await asyncio.to_thread(self.cache.put, user)
        logger.warning("user_created_locally", user_id=user_id)
        return CheckResult(existed=False, user=user, confirmed=False)

    async def _adopt_existing(self, email: str, derived_id: str) -> UserRecord:
        """Handle a 409: find the id upstream actually holds for ``email``."""
        logger.info("user_already_exists_upstream", derived_id=derived_id)
        match = None
        try:
            users = await self.api.list_users(timeout=self.user_policy.per_attempt_timeout)
            match = find_user_by_email(users, email)
        except UpstreamError as e:
            logger.error("upstream_user_search_failed", error=str(e))

        if match:
            user = UserRecord(
                id=str(match["id"]),
                email=email,
                created_at=str(match.get("createdAt") or match.get("created_at") or utc_now_iso()),
            )
        else:
            logger.warning(
                "user_identity_unconfirmed",
                derived_id=derived_id,
                reason="409 from upstream but no matching email in directory",
            )
            user = UserRecord(id=derived_id, email=email)

        await asyncio.to_thread(self.cache.put, user)
        return user

    async def sync_user(self, email: str) -> UserRecord | None:
        """
        Look ``email`` up in the upstream directory and mirror it locally.

        Returns None when upstream has no such user. Listing failures and
        unrecognized response shapes raise UpstreamError.
        """
        email = _require_email(email)
        users = await self.api.list_users(timeout=self.user_policy.per_attempt_timeout)
        logger.info("upstream_users_listed", count=len(users))

        match = find_user_by_email(users, email)
        if not match:
            logger.info("user_not_found_upstream")
            return None

        user = UserRecord(
            id=str(match["id"]),
            email=str(match.get("email") or email),
            created_at=str(match.get("createdAt") or match.get("created_at") or utc_now_iso()),
        )
        await asyncio.to_thread(self.cache.put, user)
        logger.info("user_synced", user_id=user.id)
        return user

    async def reconcile_cache(self) -> dict[str, int]:
        """
        Heal cached identities against the upstream directory.

        Entries whose email upstream knows under a different id are rewritten
        with the upstream id; entries upstream doesn't know are left alone.
        """
        users = await self.api.list_users(timeout=self.user_policy.per_attempt_timeout)
        stats = {"checked": 0, "healed": 0, "unknown_upstream": 0}
        for cached in await asyncio.to_thread(self.cache.all):
            stats["checked"] += 1
            match = find_user_by_email(users, cached.email)
            if not match:
                stats["unknown_upstream"] += 1
                continue
            if str(match["id"]) != cached.id:
                healed = UserRecord(id=str(match["id"]), email=cached.email, created_at=cached.created_at)
                await asyncio.to_thread(self.cache.put, healed)
                logger.info("user_identity_healed", old_id=cached.id, new_id=match["id"])
                stats["healed"] += 1
        return stats

    async def ensure_user(self, user_id: str, email: str) -> dict[str, Any]:
        """Make sure ``user_id`` exists upstream, creating it if absent."""
        if not user_id or not email:
            raise ValidationError("User ID and email are required")

        timeout = self.user_policy.per_attempt_timeout
        existing = await self.api.get_user(user_id, timeout=timeout)
        if existing.ok:
            return {"exists": True, "user": existing.body}

        logger.info("user_missing_upstream_creating", user_id=user_id)
        created = await self.api.create_user({"id": user_id, "email": email}, timeout=timeout)
        try:
            created.raise_for_status("Failed to ensure user exists")
        except UpstreamConflict:
            logger.info("user_created_concurrently", user_id=user_id)
            return {"exists": True, "created": False, "user": created.body}
        return {"exists": False, "created": True, "user": created.body}

    # --- Replicas ---

    async def create_replica(self, payload: dict[str, Any], owner_id: str) -> Any:
        """Create a replica for ``owner_id`` after verifying the owner exists upstream."""
        if not owner_id:
            raise ValidationError("ownerID is required")

        await self._verify_owner(owner_id)

        body = dict(payload, ownerID=owner_id)
        try:
            response = await retrying_call(
                lambda timeout: self.api.create_replica(body, timeout=timeout),
                self.replica_policy,
                retry_on_error=_no_response,
                label="replica_create",
            )
        except UpstreamTimeout:
            logger.error("replica_create_timed_out", owner_id=owner_id)
            raise
        except UpstreamError as e:
            logger.error("replica_create_failed", owner_id=owner_id, error=str(e))
            raise

        if response.status_code in (200, 201):
            created = response.body if response.body is not None else {}
            if isinstance(created, dict):
                logger.info("replica_created", uuid=created.get("uuid") or created.get("id"))
            else:
                logger.info("replica_created", body_type=type(created).__name__)
            return created

        error_text = response.body.get("error") if isinstance(response.body, dict) else None
        if isinstance(error_text, str) and "Owner" in error_text and "does not exist" in error_text:
            logger.critical("replica_owner_missing_upstream", owner_id=owner_id)
        logger.error("replica_create_rejected", status=response.status_code, body=response.body)
        raise UpstreamError(
            f"Replica creation failed with status {response.status_code}",
            status_code=response.status_code,
            body=response.body,
        )

    async def _verify_owner(self, owner_id: str) -> None:
        try:
            response = await self.api.get_user(
                owner_id, timeout=self.user_policy.per_attempt_timeout
            )
        except UpstreamError as e:
            logger.error("owner_verification_failed", owner_id=owner_id, error=str(e))
            raise UpstreamError("Failed to verify user. Please try again.") from e

        if response.not_found:
            logger.error("owner_not_found", owner_id=owner_id)
            raise OwnerNotFound(owner_id)
        if not response.ok:
            raise UpstreamError(
                f"Owner verification failed with status {response.status_code}",
                status_code=response.status_code,
                body=response.body,
            )
        logger.info("owner_verified", owner_id=owner_id)

"""Health check endpoints."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Request

from replicachat.constants import PROJECT_DISPLAY_NAME, PROJECT_VERSION

health_router = APIRouter(tags=["health"])


@health_router.get("/health")
async def health_check(request: Request) -> dict:
    """Basic liveness check."""
    return {
        "status": "ok",
        "service": PROJECT_DISPLAY_NAME,
        "version": PROJECT_VERSION,
    }


@health_router.get("/health/detailed")
async def detailed_health(request: Request) -> dict:
    """Component summary. Never reveals the organization secret."""
    config = request.app.state.config
    cache = request.app.state.user_cache

    return {
        "status": "ok",
        "version": PROJECT_VERSION,
        "components": {
            "gateway": "ok",
            "upstream": {
                "api_url": config.upstream.api_url,
                "api_version": config.upstream.api_version,
                "org_secret_configured": bool(config.upstream.org_secret),
            },
            "user_cache": {
                "path": str(cache.path),
                "entries": await asyncio.to_thread(len, cache),
            },
            "retry": {
                "user_attempts": config.retry.user_max_attempts,
                "replica_attempts": config.retry.replica_max_attempts,
                "backoff_seconds": config.retry.backoff_seconds,
            },
        },
    }

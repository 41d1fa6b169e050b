"""
FastAPI gateway for ReplicaChat.

Sits between the browser front-end and the hosted replica platform:
- Binds to 127.0.0.1 by default
- Holds one upstream client, user cache, and reconciler per process
- Applies request context, security headers, and request size limits
"""

from __future__ import annotations

import os

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from replicachat.constants import PROJECT_DESCRIPTION, PROJECT_DISPLAY_NAME, PROJECT_VERSION
from replicachat.core.reconciler import ReconciliationService
from replicachat.gateway.config import ReplicaChatConfig, load_config
from replicachat.gateway.errors import register_error_handlers
from replicachat.gateway.middleware import (
    RequestContextMiddleware,
    RequestSizeLimitMiddleware,
    SecurityHeadersMiddleware,
)
from replicachat.memory.user_cache import UserCache
from replicachat.upstream.api import ReplicaAPI
from replicachat.upstream.client import UpstreamClient
from replicachat.utils.logging import get_logger, register_secret, setup_logging

logger = get_logger("gateway")


def create_app(
    config: ReplicaChatConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or load_config()

    setup_logging(
        level=config.logging.level,
        json_format=config.logging.format == "json",
        redact_secrets=config.logging.redact_secrets,
    )
    register_secret(config.upstream.org_secret)

    app = FastAPI(
        title=f"{PROJECT_DISPLAY_NAME} API",
        version=PROJECT_VERSION,
        description=PROJECT_DESCRIPTION,
        docs_url="/docs" if os.getenv("REPLICACHAT_DEV") else None,
        redoc_url=None,
    )

    upstream_client = UpstreamClient.from_config(config, transport=transport)
    upstream_api = ReplicaAPI(upstream_client)
    user_cache = UserCache(config.cache.user_cache_path)

    app.state.config = config
    app.state.upstream_client = upstream_client
    app.state.upstream_api = upstream_api
    app.state.user_cache = user_cache
    app.state.reconciler = ReconciliationService(
        api=upstream_api,
        cache=user_cache,
        user_policy=config.retry.user_policy,
        replica_policy=config.retry.replica_policy,
    )

    _add_middleware(app, config)
    register_error_handlers(app)
    _register_routes(app)

    @app.on_event("startup")
    async def on_startup() -> None:
        if not config.upstream.org_secret:
            logger.warning(
                "org_secret_missing",
                hint="Set REPLICACHAT_UPSTREAM_ORG_SECRET; upstream calls will be rejected.",
            )
        logger.info(
            "gateway_started",
            host=config.gateway.host,
            port=config.gateway.port,
            upstream=config.upstream.api_url,
            user_cache=str(user_cache.path),
            version=PROJECT_VERSION,
        )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await upstream_client.aclose()
        logger.info("gateway_stopped")

    return app


def _add_middleware(app: FastAPI, config: ReplicaChatConfig) -> None:
    """Add middleware layers (last added runs outermost)."""
    app.add_middleware(
        RequestSizeLimitMiddleware,
        max_size_bytes=config.gateway.max_request_bytes,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.gateway.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-Request-ID"],
    )
    app.add_middleware(RequestContextMiddleware)


def _register_routes(app: FastAPI) -> None:
    from replicachat.gateway.health import health_router
    from replicachat.gateway.router import api_router

    app.include_router(health_router)
    app.include_router(api_router, prefix="/api")

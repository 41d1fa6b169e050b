"""
API routes for the ReplicaChat gateway.

Thin handlers: validate input, call the reconciler or the upstream API
wrappers held in ``app.state``, and shape the JSON the front-end reads.
Errors are translated by the handlers in ``replicachat.gateway.errors``.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from replicachat.constants import REPLICA_TYPES
from replicachat.upstream.errors import UpstreamConflict, UpstreamError, ValidationError
from replicachat.utils.logging import get_logger

logger = get_logger("router")

api_router = APIRouter()


def _require(value: Any, message: str) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(message)
    return value


def _passthrough(response) -> JSONResponse:
    """Return an upstream response with its status and body unchanged."""
    return JSONResponse(response.body, status_code=response.status_code)


# ──────────────────────── Users ────────────────────────


class EmailRequest(BaseModel):
    email: str | None = None


class VerifyRequest(BaseModel):
    user_id: str | None = Field(None, alias="userId")
    email: str | None = None


@api_router.post("/users/check")
async def check_user(request: Request, body: EmailRequest) -> dict:
    """Resolve an email to a user id, creating the user upstream if needed."""
    email = _require(body.email, "Email is required")
    result = await request.app.state.reconciler.check_or_create_user(email)

    payload: dict[str, Any] = {"exists": result.existed, "user": result.user.to_dict()}
    if result.existed:
        payload["verified"] = True
    return payload


@api_router.post("/users")
async def create_user(request: Request) -> JSONResponse:
    """Create a user upstream. A 409 means it already exists, which is fine."""
    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be valid JSON") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    _require(body.get("id"), "User ID is required")

    logger.info("user_create_passthrough", user_id=body.get("id"))
    response = await request.app.state.upstream_api.create_user(body)
    try:
        response.raise_for_status("User creation failed")
    except UpstreamConflict:
        return JSONResponse({**body, "exists": True}, status_code=200)
    return _passthrough(response)


@api_router.get("/users")
async def get_user(request: Request, userId: str | None = None) -> JSONResponse:
    """Fetch one upstream user record."""
    user_id = _require(userId, "User ID is required")
    response = await request.app.state.upstream_api.get_user(user_id)
    return _passthrough(response)


@api_router.get("/users/verify")
async def verify_user(request: Request, userId: str | None = None) -> JSONResponse:
    """Check that a user exists upstream without creating it."""
    user_id = _require(userId, "User ID is required")
    response = await request.app.state.upstream_api.get_user(user_id)
    if response.ok:
        return JSONResponse({"exists": True, "user": response.body})
    if response.not_found:
        return JSONResponse({"exists": False, "error": "User not found"}, status_code=404)
    return _passthrough(response)


@api_router.post("/users/verify")
async def ensure_user(request: Request, body: VerifyRequest) -> dict:
    """Ensure a user exists upstream, creating it when absent."""
    return await request.app.state.reconciler.ensure_user(body.user_id, body.email)


@api_router.post("/users/sync")
async def sync_user(request: Request, body: EmailRequest) -> JSONResponse:
    """Search the upstream directory for an email and mirror the match locally."""
    email = _require(body.email, "Email is required")
    try:
        user = await request.app.state.reconciler.sync_user(email)
    except UpstreamError as e:
        detail = f"API returned {e.status_code}: {e.body}" if e.status_code else str(e)
        return JSONResponse(
            {"error": "Failed to fetch users from upstream", "details": detail},
            status_code=500,
        )

    if user is None:
        return JSONResponse({"found": False, "message": "User not found upstream"})
    return JSONResponse({"found": True, "user": user.to_dict()})


# ──────────────────────── Replicas ────────────────────────


class LLMSettings(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    model: str
    system_message: str = Field("", alias="systemMessage")
    tools: list[str] | None = None


class ReplicaCreateRequest(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    short_description: str = Field("", alias="shortDescription")
    greeting: str = ""
    type: str = "character"
    owner_id: str | None = Field(None, alias="ownerID")
    slug: str | None = None
    llm: LLMSettings
    tags: list[str] | None = None
    private: bool | None = None
    profile_image: str | None = Field(None, alias="profileImage")
    suggested_questions: list[str] | None = Field(None, alias="suggestedQuestions")

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        if v not in REPLICA_TYPES:
            raise ValueError(f"type must be one of {', '.join(REPLICA_TYPES)}")
        return v


@api_router.post("/replicas")
async def create_replica(request: Request, body: ReplicaCreateRequest) -> Any:
    """Create a replica after verifying its owner exists upstream."""
    logger.info(
        "replica_create_requested",
        owner_id=body.owner_id,
        name=body.name,
        model=body.llm.model,
    )
    payload = body.model_dump(by_alias=True, exclude_none=True)
    return await request.app.state.reconciler.create_replica(payload, body.owner_id)


@api_router.get("/replicas")
async def list_replicas(request: Request, ownerID: str | None = None) -> JSONResponse:
    """List replicas, optionally only those owned by ``ownerID``."""
    response = await request.app.state.upstream_api.list_replicas(owner_id=ownerID)
    return _passthrough(response)


# ──────────────────────── Chat ────────────────────────


class ChatRequest(BaseModel):
    replica_uuid: str | None = Field(None, alias="replicaUUID")
    content: str | None = None
    user_id: str | None = Field(None, alias="userId")


@api_router.post("/chat")
async def chat(request: Request, body: ChatRequest) -> JSONResponse:
    """Send one message to a replica and return its completion."""
    if not body.replica_uuid or not body.content:
        raise ValidationError("Missing required fields")

    config = request.app.state.config
    response = await request.app.state.upstream_api.chat_completion(
        body.replica_uuid,
        body.content,
        user_id=body.user_id,
        timeout=config.upstream.chat_timeout_seconds,
    )
    return _passthrough(response)


@api_router.get("/chat/history")
async def chat_history(
    request: Request,
    replicaUUID: str | None = None,
    userId: str | None = None,
) -> JSONResponse:
    """Web chat history for one replica and user, oldest first."""
    if not replicaUUID or not userId:
        raise ValidationError("Missing replicaUUID or userId")

    try:
        messages = await request.app.state.upstream_api.chat_history(replicaUUID, userId)
    except UpstreamError as e:
        if e.status_code is None or e.status_code < 400:
            raise
        logger.error("chat_history_failed", status=e.status_code, replica_uuid=replicaUUID)
        return JSONResponse(
            {
                "error": "Failed to fetch chat history",
                "details": f"API returned {e.status_code}: {e.body}",
                "userId": userId,
                "replicaUUID": replicaUUID,
            },
            status_code=e.status_code,
        )

    logger.info("chat_history_served", replica_uuid=replicaUUID, count=len(messages))
    return JSONResponse(
        {
            "success": True,
            "messages": [m.to_dict() for m in messages],
            "total": len(messages),
        }
    )

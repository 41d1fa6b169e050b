"""Translate ReplicaChat errors into the JSON shapes the front-end expects."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from replicachat.upstream.errors import (
    OwnerNotFound,
    UpstreamError,
    UpstreamTimeout,
    ValidationError,
)
from replicachat.utils.logging import get_logger

logger = get_logger("gateway_errors")


async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=400)


async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
    missing = ", ".join(f for f in fields if f) or "request body"
    return JSONResponse({"error": f"Invalid or missing fields: {missing}"}, status_code=400)


async def _owner_not_found(request: Request, exc: OwnerNotFound) -> JSONResponse:
    return JSONResponse({"error": str(exc), "needsReauth": True}, status_code=400)


async def _upstream_timeout(request: Request, exc: UpstreamTimeout) -> JSONResponse:
    return JSONResponse({"error": "Request timeout - upstream API is slow"}, status_code=504)


async def _upstream_error(request: Request, exc: UpstreamError) -> JSONResponse:
    # Only upstream failure statuses are passed through; a 2xx with an
    # unusable body, or no response at all, is a bad gateway.
    passthrough = exc.status_code is not None and exc.status_code >= 400
    if passthrough and isinstance(exc.body, (dict, list)):
        return JSONResponse(exc.body, status_code=exc.status_code)
    content = {"error": str(exc)}
    if exc.body:
        content["details"] = str(exc.body)
    return JSONResponse(content, status_code=exc.status_code if passthrough else 502)


async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", error=str(exc))
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ValidationError, _validation_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(OwnerNotFound, _owner_not_found)
    app.add_exception_handler(UpstreamTimeout, _upstream_timeout)
    app.add_exception_handler(UpstreamError, _upstream_error)
    app.add_exception_handler(Exception, _unexpected_error)

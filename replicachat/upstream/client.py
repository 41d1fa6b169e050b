"""
Resilient client for the hosted replica platform.

Every call:
- Carries the organization secret and API version headers
- Is bounded by a per-call timeout (raises UpstreamTimeout on expiry)
- Returns non-2xx responses intact; retrying is the caller's decision
- Parses the body as JSON, reporting unparseable bodies as UpstreamError
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any

import httpx

from replicachat.upstream.errors import UpstreamConflict, UpstreamError, UpstreamTimeout
from replicachat.utils.logging import get_logger

logger = get_logger("upstream")


@dataclass
class UpstreamResponse:
    """Status and parsed JSON body of an upstream call."""

    status_code: int
    body: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def conflict(self) -> bool:
        return self.status_code == 409

    @property
    def not_found(self) -> bool:
        return self.status_code == 404

    def raise_for_status(self, message: str | None = None) -> None:
        """Raise UpstreamConflict on 409 and UpstreamError on any other non-2xx."""
        if self.ok:
            return
        error_cls = UpstreamConflict if self.conflict else UpstreamError
        raise error_cls(
            message or f"Upstream returned status {self.status_code}",
            status_code=self.status_code,
            body=self.body,
        )


class UpstreamClient:
    """Thin async wrapper around ``httpx.AsyncClient`` for the upstream API."""

    def __init__(
        self,
        base_url: str,
        org_secret: str,
        api_version: str,
        default_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_timeout = default_timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "X-ORGANIZATION-SECRET": org_secret,
                "X-API-Version": api_version,
            },
            timeout=None,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: Any, transport: httpx.AsyncBaseTransport | None = None) -> UpstreamClient:
        return cls(
            base_url=config.upstream.api_url,
            org_secret=config.upstream.org_secret,
            api_version=config.upstream.api_version,
            default_timeout=config.upstream.chat_timeout_seconds,
            transport=transport,
        )

    async def call(
        self,
        method: str,
        path: str,
        *,
        user_id: str | None = None,
        json: Any = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> UpstreamResponse:
        """Issue one request. No retries at this layer."""
        timeout = timeout or self.default_timeout
        headers = {"X-USER-ID": user_id} if user_id is not None else None

        try:
            response = await asyncio.wait_for(
                self._client.request(
                    method,
                    path,
                    json=json,
                    params=params,
                    headers=headers,
                ),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.warning("upstream_timeout", method=method, path=path, timeout=timeout)
            raise UpstreamTimeout(
                f"{method} {path} timed out after {timeout:g}s"
            ) from e
        except httpx.HTTPError as e:
            logger.warning("upstream_unreachable", method=method, path=path, error=str(e))
            raise UpstreamError(f"{method} {path} failed: {e}") from e

        body = _parse_body(response)
        logger.debug(
            "upstream_response",
            method=method,
            path=path,
            status=response.status_code,
        )
        return UpstreamResponse(status_code=response.status_code, body=body)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> UpstreamClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()


def _parse_body(response: httpx.Response) -> Any:
    text = response.text
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError as e:
        raise UpstreamError(
            f"Upstream returned a non-JSON body (status {response.status_code})",
            status_code=response.status_code,
            body=text,
        ) from e


def normalize_collection(payload: Any, keys: tuple[str, ...] = ("items", "users")) -> list[Any]:
    """
    Map every observed list shape onto a plain list.

    The upstream answers with ``{"items": [...]}``, ``{"users": [...]}`` or a
    bare array depending on endpoint and version. Anything else is an error
    rather than an empty list.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return value
    shape = type(payload).__name__
    if isinstance(payload, dict):
        shape = f"object with keys {sorted(payload)}"
    raise UpstreamError(f"Unrecognized response shape from upstream: {shape}", body=payload)

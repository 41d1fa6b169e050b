"""Error taxonomy for upstream calls and the gateway."""

from __future__ import annotations

from typing import Any


class ReplicaChatError(Exception):
    """Base class for all ReplicaChat errors."""


class ValidationError(ReplicaChatError):
    """A required field is missing or malformed. Never retried."""


class UpstreamError(ReplicaChatError):
    """The upstream returned a non-2xx or unparseable response, or was unreachable.

    ``status_code`` and ``body`` carry the upstream response when there was
    one, so the gateway can pass it through unchanged.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UpstreamTimeout(UpstreamError):
    """The upstream did not answer within the per-call bound."""


class UpstreamConflict(UpstreamError):
    """The upstream reported 409. Expected during reconciliation."""


class OwnerNotFound(ReplicaChatError):
    """The replica owner does not exist upstream; the user must re-authenticate."""

    def __init__(self, owner_id: str):
        super().__init__(
            f'Owner "{owner_id}" does not exist. '
            "Please sign out and sign in again to refresh your account."
        )
        self.owner_id = owner_id


class PersistenceError(ReplicaChatError):
    """The local user cache could not be written."""

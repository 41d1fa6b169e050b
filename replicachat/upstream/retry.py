"""
Generic retry primitive for upstream calls.

The client makes single attempts. Operations that may be repeated are
wrapped in ``retrying_call`` with their own ``RetryPolicy``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from replicachat.upstream.errors import UpstreamError, UpstreamTimeout
from replicachat.utils.logging import get_logger

logger = get_logger("retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with a fixed delay between attempts."""

    max_attempts: int = 3
    per_attempt_timeout: float = 30.0
    backoff_delay: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.per_attempt_timeout <= 0:
            raise ValueError("per_attempt_timeout must be positive")
        if self.backoff_delay < 0:
            raise ValueError("backoff_delay must not be negative")

    @property
    def worst_case_seconds(self) -> float:
        return self.max_attempts * (self.per_attempt_timeout + self.backoff_delay)


async def retrying_call(
    operation: Callable[[float], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retry_on_result: Callable[[T], bool] | None = None,
    retry_on_error: Callable[[UpstreamError], bool] | None = None,
    label: str = "upstream_call",
) -> T:
    """
    Run ``operation(per_attempt_timeout)`` up to ``policy.max_attempts`` times.

    An attempt is retried when it raises ``UpstreamError`` (timeouts
    included) that ``retry_on_error`` accepts, or when ``retry_on_result``
    flags its result. Once attempts run out, the last result is returned,
    or the last error re-raised.
    """
    last_error: UpstreamError | None = None
    has_result = False
    last_result: T | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = await operation(policy.per_attempt_timeout)
        except UpstreamError as e:
            if retry_on_error is not None and not retry_on_error(e):
                raise
            last_error, has_result = e, False
            logger.warning(
                f"{label}_attempt_failed",
                attempt=attempt,
                max_attempts=policy.max_attempts,
                timeout=isinstance(e, UpstreamTimeout),
                error=str(e),
            )
        else:
            if retry_on_result is None or not retry_on_result(result):
                return result
            last_result, has_result, last_error = result, True, None
            logger.warning(
                f"{label}_attempt_rejected",
                attempt=attempt,
                max_attempts=policy.max_attempts,
            )

        if attempt < policy.max_attempts and policy.backoff_delay:
            await asyncio.sleep(policy.backoff_delay)

    if has_result:
        return last_result  # type: ignore[return-value]
    assert last_error is not None
    raise last_error

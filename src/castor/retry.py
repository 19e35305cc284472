"""Minimal async retry over classified results.

Design goals:
- Retry decisions come from a classifier over the *result*, not exceptions
- Exhausted retries return ``None`` so callers treat "gave up" and
  "never answered" the same way
- Delays are bounded: every sleep lies in ``[min_delay, min_delay + max_additional]``
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
from typing import TYPE_CHECKING, TypeVar

from castor.errors import ConfigurationError
from castor.types import ResponseStatus

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

log = logging.getLogger(__name__)

RETRYABLE_STATUSES: frozenset[ResponseStatus] = frozenset(
    {ResponseStatus.OVERLOADED, ResponseStatus.INVALID}
)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff and jitter."""

    max_attempts: int = 3
    min_retry_delay_ms: int = 20_000
    max_retry_additional_delay_ms: int = 30_000
    request_timeout_ms: int = 420_000
    backoff_multiplier: float = 2.0
    jitter: bool = True

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_attempts < 1:
            raise ConfigurationError("RetryPolicy.max_attempts must be >= 1")
        if self.min_retry_delay_ms < 0:
            raise ConfigurationError("RetryPolicy.min_retry_delay_ms must be >= 0")
        if self.max_retry_additional_delay_ms < 0:
            raise ConfigurationError(
                "RetryPolicy.max_retry_additional_delay_ms must be >= 0"
            )
        if self.request_timeout_ms <= 0:
            raise ConfigurationError("RetryPolicy.request_timeout_ms must be > 0")
        if self.backoff_multiplier <= 0:
            raise ConfigurationError("RetryPolicy.backoff_multiplier must be > 0")


def classify_status(result: object) -> ResponseStatus | None:
    """Default classifier: retry OVERLOADED and INVALID responses."""
    status = getattr(result, "status", None)
    if status in RETRYABLE_STATUSES:
        return status  # type: ignore[return-value]
    return None


def compute_backoff_delay_ms(policy: RetryPolicy, *, retry_index: int) -> float:
    """Return the sleep before retry number *retry_index* (starting at 1)."""
    floor = float(policy.min_retry_delay_ms)
    ceiling = floor + policy.max_retry_additional_delay_ms
    exponent = min(max(0, retry_index - 1), 64)
    base = min(ceiling, floor * (policy.backoff_multiplier**exponent))
    if not policy.jitter or ceiling <= base:
        return base
    return min(ceiling, base + random.random() * (ceiling - base))  # noqa: S311


async def retry_async(
    operation: Callable[..., Awaitable[T]],
    *args: object,
    policy: RetryPolicy,
    classify: Callable[[T], ResponseStatus | None] = classify_status,
    on_retry: Callable[[int, ResponseStatus], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T | None:
    """Invoke *operation* until its result is not retryable.

    Returns the first non-retryable result, or ``None`` once
    ``policy.max_attempts`` attempts were all classified as retryable.
    A per-attempt timeout counts as an OVERLOADED attempt.
    """
    timeout_s = policy.request_timeout_ms / 1000

    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = await asyncio.wait_for(operation(*args), timeout=timeout_s)
        except TimeoutError:
            tag: ResponseStatus | None = ResponseStatus.OVERLOADED
            log.debug("Attempt %d timed out after %.1fs", attempt, timeout_s)
        else:
            tag = classify(result)
            if tag is None:
                return result

        if on_retry is not None:
            on_retry(attempt, tag)
        if attempt >= policy.max_attempts:
            break

        delay_ms = compute_backoff_delay_ms(policy, retry_index=attempt)
        if delay_ms > 0:
            await sleep(delay_ms / 1000)

    return None

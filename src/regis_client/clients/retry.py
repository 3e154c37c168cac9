"""Bounded exponential-backoff retries for a single backend call."""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, FrozenSet, Optional

import httpx

from regis_client.config.settings import settings
from regis_client.utils.logger import logger
from regis_client.utils.structured_logging import log_retry_attempt

SendFn = Callable[[], Awaitable[httpx.Response]]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration. Delays are in milliseconds."""
    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 3000
    jitter_ms: int = 200
    retryable_statuses: FrozenSet[int] = field(
        default_factory=lambda: frozenset({429, 502, 503, 504})
    )

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay_ms=settings.RETRY_BASE_DELAY_MS,
            max_delay_ms=settings.RETRY_MAX_DELAY_MS,
            jitter_ms=settings.RETRY_JITTER_MS,
            retryable_statuses=settings.RETRYABLE_STATUSES,
        )

    def backoff_ms(self, attempt: int, rand: Callable[[float, float], float] = random.uniform) -> float:
        """Delay after failed attempt ``attempt`` (1-based)."""
        return min(self.base_delay_ms * 2 ** attempt, self.max_delay_ms) + rand(0, self.jitter_ms)


async def request_with_retry(
    send: SendFn,
    policy: RetryPolicy,
    sleep: SleepFn = asyncio.sleep,
    on_attempt: Optional[Callable[[int], None]] = None,
) -> httpx.Response:
    """
    Call ``send`` until it returns a non-retryable response.

    Responses with a status in ``policy.retryable_statuses`` and transport
    errors are retried; every other response, ok or not, is returned to the
    caller undecided. When all attempts are used the last response is
    returned, or the last transport error re-raised, unchanged.

    Args:
        send: Issues one request
        policy: Attempt count and backoff configuration
        sleep: Awaitable sleep, injectable for tests
        on_attempt: Called with the attempt number before each try

    Returns:
        The last response observed
    """
    last_response: Optional[httpx.Response] = None
    last_error: Optional[httpx.TransportError] = None

    for attempt in range(1, policy.max_attempts + 1):
        if on_attempt:
            on_attempt(attempt)
        try:
            response = await send()
        except httpx.TransportError as e:
            last_error, last_response = e, None
            reason = f"{type(e).__name__}: {e}"
        else:
            if response.status_code not in policy.retryable_statuses:
                return response
            last_error, last_response = None, response
            reason = f"status {response.status_code}"

        if attempt == policy.max_attempts:
            break

        delay_ms = policy.backoff_ms(attempt)
        log_retry_attempt(attempt=attempt, max_attempts=policy.max_attempts, reason=reason, delay_ms=int(delay_ms))
        if last_response is not None:
            await last_response.aclose()
        await sleep(delay_ms / 1000)

    logger.warning(f"Giving up after {policy.max_attempts} attempts")
    if last_error is not None:
        raise last_error
    return last_response

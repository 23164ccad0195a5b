"""Bounded retry with transient/fatal error classification.

WHY: Translation providers rate-limit bursts (429) and occasionally
report themselves unavailable (503). Those calls usually succeed a
moment later, so retrying locally keeps captions flowing. Everything
else (bad key, malformed request, unsupported payload) will fail
again identically, so retrying only adds latency.

HOW: RetryingRequester.call() awaits a zero-argument coroutine factory.
On a transient error it sleeps base_delay_ms * attempt_number and tries
again, up to max_retries extra attempts. Fatal errors propagate at
once. When retries run out, the last transient error is raised.

RULES:
- Default policy: max_retries=2, base_delay_ms=500 (500 ms, then 1000 ms)
- Transient: ProviderAPIError with status 429/503, httpx timeouts and
  network errors
- Fatal: anything else, raised immediately without sleeping
- fn must be a factory (lambda: client.call(...)), because a coroutine
  object cannot be awaited twice
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from caption_relay.api.client import ProviderAPIError
from caption_relay.config import RETRY_BASE_DELAY_MS, RETRY_MAX_RETRIES

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Return True when exc is worth retrying."""
    if isinstance(exc, ProviderAPIError):
        return exc.transient
    return isinstance(exc, (httpx.TimeoutException, httpx.NetworkError))


class RetryingRequester:
    """Wraps one outbound provider call with bounded retry.

    RULES:
    - Per-call overrides of max_retries / base_delay_ms win over the
      instance defaults
    - sleep is injectable so tests do not wait in real time
    """

    def __init__(
        self,
        max_retries: int = RETRY_MAX_RETRIES,
        base_delay_ms: int = RETRY_BASE_DELAY_MS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self._sleep = sleep

    async def call(
        self,
        fn: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
    ) -> T:
        """Await fn(), retrying transient failures.

        Args:
            fn: Zero-argument factory returning a fresh awaitable per attempt.
            max_retries: Extra attempts after the first (default: instance).
            base_delay_ms: Delay unit; attempt n waits base * n ms.

        Returns:
            Whatever fn's awaitable returns.
        """
        retries = self.max_retries if max_retries is None else max_retries
        delay_unit = self.base_delay_ms if base_delay_ms is None else base_delay_ms

        attempt = 0
        while True:
            try:
                return await fn()
            except Exception as exc:
                if not is_transient(exc):
                    raise
                if attempt >= retries:
                    logger.warning(
                        "Giving up after %d attempt(s): %s", attempt + 1, exc
                    )
                    raise
                attempt += 1
                delay_ms = delay_unit * attempt
                logger.info(
                    "Transient provider error (%s); retry %d/%d after %d ms",
                    exc, attempt, retries, delay_ms,
                )
                await self._sleep(delay_ms / 1000.0)

"""Request limiter for LLM calls: bounded concurrency, pacing and 429 retries."""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Awaitable, Callable
from typing import Optional, TypeVar

from dotenv import load_dotenv

from storeforge.llm.base import RateLimitError
from storeforge.utils.logging import get_logger

load_dotenv()

logger = get_logger("llm.rate_limiter")

T = TypeVar("T")


class RateLimiter:
    """Rate limiter using a semaphore and a minimum delay between requests.

    The bulk product fan-out issues several concurrent generation calls,
    so this sits in front of every provider request.
    """

    def __init__(
        self,
        max_concurrent: Optional[int] = None,
        min_delay: Optional[float] = None,
        max_retries: Optional[int] = None,
        initial_retry_delay: Optional[float] = None,
    ):
        """Initialize the rate limiter.

        Args:
            max_concurrent: Concurrent requests (LLM_RATE_LIMIT_MAX_CONCURRENT, default 4)
            min_delay: Seconds between request starts (LLM_RATE_LIMIT_MIN_DELAY, default 0)
            max_retries: Retries on rate limit errors (LLM_RATE_LIMIT_MAX_RETRIES, default 3)
            initial_retry_delay: First backoff delay (LLM_RATE_LIMIT_RETRY_DELAY, default 2.0)
        """
        self.max_concurrent = max_concurrent or int(os.getenv("LLM_RATE_LIMIT_MAX_CONCURRENT", "4"))
        self.min_delay = min_delay if min_delay is not None else float(os.getenv("LLM_RATE_LIMIT_MIN_DELAY", "0"))
        self.max_retries = max_retries if max_retries is not None else int(os.getenv("LLM_RATE_LIMIT_MAX_RETRIES", "3"))
        self.initial_retry_delay = initial_retry_delay or float(os.getenv("LLM_RATE_LIMIT_RETRY_DELAY", "2.0"))

        # asyncio primitives are created lazily per event loop
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._lock: Optional[asyncio.Lock] = None
        self._loop_id: Optional[int] = None
        self._last_request_time: Optional[float] = None

    def _ensure_primitives(self) -> None:
        loop_id = id(asyncio.get_running_loop())
        if self._loop_id != loop_id:
            self._lock = asyncio.Lock()
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
            self._loop_id = loop_id

    async def acquire(self) -> None:
        """Acquire a permit, pacing request starts by ``min_delay``."""
        self._ensure_primitives()

        async with self._lock:
            if self._last_request_time is not None and self.min_delay > 0:
                elapsed = time.monotonic() - self._last_request_time
                if elapsed < self.min_delay:
                    await asyncio.sleep(self.min_delay - elapsed)
            self._last_request_time = time.monotonic()

        await self._semaphore.acquire()

    def release(self) -> None:
        if self._semaphore is not None:
            self._semaphore.release()

    async def execute_with_retry(self, coro_factory: Callable[[], Awaitable[T]]) -> T:
        """Run ``coro_factory()`` under the limiter, retrying rate limit errors.

        Backoff doubles on each attempt. Any other exception propagates
        immediately.
        """
        for attempt in range(self.max_retries + 1):
            await self.acquire()
            try:
                return await coro_factory()
            except RateLimitError as e:
                if attempt >= self.max_retries:
                    raise
                wait_time = self.initial_retry_delay * (2 ** attempt)
                logger.warning(
                    f"Rate limit error (attempt {attempt + 1}/{self.max_retries + 1}), "
                    f"retrying in {wait_time:.1f}s: {e}"
                )
            finally:
                self.release()
            await asyncio.sleep(wait_time)

        raise RuntimeError("Rate limiter retry loop exited without a result")


_default_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get the process-wide rate limiter."""
    global _default_limiter
    if _default_limiter is None:
        _default_limiter = RateLimiter()
    return _default_limiter

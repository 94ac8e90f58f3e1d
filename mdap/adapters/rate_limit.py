"""
Rate limiting wrapper for adapters.

Adds request-per-minute throttling, bounded concurrency and retry with
exponential backoff on transient failures, while keeping the BaseAdapter
interface. The voting engine cannot tell it is there.

Example:
    adapter = RateLimitedAdapter(
        OpenAIAdapter(config),
        RATE_LIMIT_PRESETS["openai_tier1"],
    )
    result = await vote(adapter.as_oracle(), prompt)
"""

import asyncio
import random
import time
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, Field
import structlog

from mdap.adapters.base import AdapterError, BaseAdapter

logger = structlog.get_logger()

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class RateLimitConfig(BaseModel):
    """Rate limit configuration."""

    requests_per_minute: int = Field(default=500, ge=1)
    max_concurrent: int = Field(default=5, ge=1)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: float = Field(default=1000, ge=0)
    max_retry_delay_ms: float = Field(default=30000, ge=0)
    jitter_factor: float = Field(default=0.1, ge=0.0, le=1.0)


RATE_LIMIT_PRESETS: dict[str, RateLimitConfig] = {
    "openai_free": RateLimitConfig(
        requests_per_minute=3, max_concurrent=1, max_retries=5, retry_delay_ms=20000
    ),
    "openai_tier1": RateLimitConfig(
        requests_per_minute=500, max_concurrent=10, max_retries=3, retry_delay_ms=1000
    ),
    "openai_tier2": RateLimitConfig(
        requests_per_minute=5000, max_concurrent=50, max_retries=3, retry_delay_ms=500
    ),
    "anthropic_tier1": RateLimitConfig(
        requests_per_minute=50, max_concurrent=5, max_retries=3, retry_delay_ms=2000
    ),
    "anthropic_tier2": RateLimitConfig(
        requests_per_minute=1000, max_concurrent=20, max_retries=3, retry_delay_ms=1000
    ),
}


class RateLimitStats(BaseModel):
    """Snapshot of limiter activity."""

    total_requests: int = 0
    in_flight: int = 0
    total_retries: int = 0
    failed_requests: int = 0
    avg_response_time_ms: float = 0.0


class TokenBucket:
    """Token bucket enforcing a requests-per-minute budget."""

    def __init__(self, requests_per_minute: int, clock: Optional[Callable[[], float]] = None):
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self.capacity = float(requests_per_minute)
        self.refill_rate = requests_per_minute / 60.0  # tokens per second
        self._clock = clock or time.monotonic
        self.tokens = self.capacity
        self._last_refill = self._clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self._last_refill = now

    def try_consume(self) -> float:
        """Take a token; return 0, or the seconds to wait until one is available."""
        self._refill()
        if self.tokens >= 1:
            self.tokens -= 1
            return 0.0
        return (1 - self.tokens) / self.refill_rate

    def drain(self) -> None:
        """Empty the bucket, e.g. after the provider reported a rate limit."""
        self._refill()
        self.tokens = 0.0

    def reset(self) -> None:
        self.tokens = self.capacity
        self._last_refill = self._clock()


def is_rate_limit_error(error: BaseException) -> bool:
    if isinstance(error, AdapterError) and error.status_code == 429:
        return True
    message = str(error).lower()
    return "429" in message or "rate limit" in message


def is_retryable_error(error: BaseException) -> bool:
    """Rate limits and 5xx server errors are worth retrying."""
    if is_rate_limit_error(error):
        return True
    if isinstance(error, AdapterError) and error.status_code is not None:
        return error.status_code in RETRYABLE_STATUS_CODES
    message = str(error)
    return any(str(code) in message for code in (500, 502, 503, 504))


class RateLimitedAdapter(BaseAdapter):
    """Wraps any adapter with throttling, bounded concurrency and retries."""

    def __init__(
        self,
        adapter: BaseAdapter,
        config: Optional[RateLimitConfig] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.adapter = adapter
        self.config = config or RateLimitConfig()
        self.bucket = TokenBucket(self.config.requests_per_minute, clock=clock)
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent)
        self._bucket_lock = asyncio.Lock()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._reset_counters()

    def _reset_counters(self) -> None:
        self._total_requests = 0
        self._in_flight = 0
        self._total_retries = 0
        self._failed_requests = 0
        self._total_response_ms = 0.0
        self._completed_requests = 0

    @property
    def model_name(self) -> str:
        return self.adapter.model_name

    def retry_delay_ms(self, attempt: int) -> float:
        """Exponential backoff, capped, with +/- jitter_factor randomness."""
        delay = min(self.config.retry_delay_ms * (2 ** attempt), self.config.max_retry_delay_ms)
        jitter = delay * self.config.jitter_factor * (self._rng.random() * 2 - 1)
        return max(0.0, delay + jitter)

    async def _acquire_token(self) -> None:
        async with self._bucket_lock:
            while True:
                wait = self.bucket.try_consume()
                if wait <= 0:
                    return
                await self._sleep(wait)

    async def chat(self, prompt: str, system: Optional[str] = None) -> str:
        self._total_requests += 1

        async with self._semaphore:
            self._in_flight += 1
            try:
                return await self._chat_with_retry(prompt, system)
            finally:
                self._in_flight -= 1

    async def _chat_with_retry(self, prompt: str, system: Optional[str]) -> str:
        last_error: Optional[Exception] = None

        for attempt in range(self.config.max_retries + 1):
            await self._acquire_token()
            started = time.perf_counter()
            try:
                result = await self.adapter.chat(prompt, system=system)
            except Exception as e:
                last_error = e
                if attempt >= self.config.max_retries or not is_retryable_error(e):
                    break

                self._total_retries += 1
                if is_rate_limit_error(e):
                    self.bucket.drain()
                delay_ms = self.retry_delay_ms(attempt)
                logger.warning(
                    "Retrying adapter call",
                    model=self.model_name,
                    attempt=attempt + 1,
                    delay_ms=round(delay_ms),
                    error=str(e),
                )
                await self._sleep(delay_ms / 1000)
                continue

            self._total_response_ms += (time.perf_counter() - started) * 1000
            self._completed_requests += 1
            return result

        self._failed_requests += 1
        raise last_error

    def stats(self) -> RateLimitStats:
        avg = (
            self._total_response_ms / self._completed_requests
            if self._completed_requests
            else 0.0
        )
        return RateLimitStats(
            total_requests=self._total_requests,
            in_flight=self._in_flight,
            total_retries=self._total_retries,
            failed_requests=self._failed_requests,
            avg_response_time_ms=round(avg, 2),
        )

    def reset(self) -> None:
        """Refill the bucket and clear statistics. In-flight requests still complete."""
        self.bucket.reset()
        in_flight = self._in_flight
        self._reset_counters()
        self._in_flight = in_flight

    async def close(self) -> None:
        await self.adapter.close()

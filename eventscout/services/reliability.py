"""Cross-cutting reliability utilities: circuit breaker, retry, dedup, cache.

Every outbound provider call goes through ``call_with_protection`` so the
adapters never implement their own backoff.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Hashable, TypeVar

import httpx
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from eventscout.errors import CircuitOpenError, ProviderError
from eventscout.models.interfaces import CircuitState

if TYPE_CHECKING:
    from eventscout.services.pipeline_context import PipelineContext

T = TypeVar("T")
Clock = Callable[[], float]


# --- Circuit breaker ---


class CircuitBreakerRegistry:
    """Time-boxed breakers keyed by provider name. No half-open state."""

    def __init__(self, cooldown_seconds: float, *, clock: Clock = time.monotonic):
        self.cooldown_seconds = float(cooldown_seconds)
        self._clock = clock
        self._states: dict[str, CircuitState] = {}

    def state(self, provider: str) -> CircuitState:
        return self._states.setdefault(provider, CircuitState())

    def is_open(self, provider: str) -> bool:
        state = self.state(provider)
        if state.open and self._clock() > state.open_until:
            state.open = False
            state.open_until = 0.0
            logger.info(f"Circuit closed for {provider}")
        return state.open

    def check(self, provider: str) -> None:
        if self.is_open(provider):
            raise CircuitOpenError(provider, self.state(provider).open_until)

    def record_failure(self, provider: str) -> None:
        state = self.state(provider)
        state.open = True
        state.open_until = self._clock() + self.cooldown_seconds
        logger.warning(f"Circuit opened for {provider} ({self.cooldown_seconds:g}s cooldown)")

    def record_success(self, provider: str) -> None:
        state = self.state(provider)
        state.open = False
        state.open_until = 0.0

    def all_open(self, providers: list[str]) -> bool:
        return bool(providers) and all(self.is_open(p) for p in providers)


# --- Retry ---


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 4.0


def _status_is_transient(status_code: int | None) -> bool:
    if status_code is None:
        return True
    return status_code == 429 or status_code >= 500


def is_transient(exc: BaseException) -> bool:
    """Network errors, timeouts, 5xx and 429 are retried. Other 4xx are not."""
    if isinstance(exc, ProviderError):
        if isinstance(exc.cause, BaseException) and exc.status_code is None:
            return is_transient(exc.cause)
        return _status_is_transient(exc.status_code)
    if isinstance(exc, httpx.HTTPStatusError):
        return _status_is_transient(exc.response.status_code)
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, TimeoutError)):
        return True
    return False


def _retrying(policy: RetryPolicy) -> AsyncRetrying:
    return AsyncRetrying(
        stop=stop_after_attempt(max(int(policy.max_attempts), 1)),
        wait=wait_exponential(multiplier=policy.base_delay, max=policy.max_delay),
        retry=retry_if_exception(is_transient),
        reraise=True,
    )


async def with_retry(operation: Callable[[], Awaitable[T]], policy: RetryPolicy) -> T:
    async for attempt in _retrying(policy):
        with attempt:
            return await operation()
    raise RuntimeError("retry loop exited without a result")  # pragma: no cover


# --- Request deduplication ---


def _normalize_param(value: Any) -> Any:
    if isinstance(value, str):
        return " ".join(value.lower().split())
    if isinstance(value, (date,)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _normalize_param(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_param(v) for v in value]
    return value


def fingerprint(provider: str, method: str, params: dict[str, Any]) -> str:
    material = json.dumps(
        {"provider": provider, "method": method.upper(), "params": _normalize_param(params)},
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class RequestDeduplicator:
    """Share one in-flight task per fingerprint between concurrent callers.

    The shared task is cancelled once every caller waiting on it was cancelled.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task] = {}
        self._waiters: dict[str, int] = {}

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            self._waiters[key] = 0
            task.add_done_callback(lambda t, k=key: self._release(k, t))
        else:
            logger.debug(f"Joining in-flight request {key[:12]}")

        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if self._leave(key, task) == 0 and not task.done():
                logger.debug(f"Last waiter left, cancelling request {key[:12]}")
                task.cancel()
            raise

    def _leave(self, key: str, task: asyncio.Task) -> int:
        if self._inflight.get(key) is not task:
            return 0
        remaining = self._waiters.get(key, 1) - 1
        self._waiters[key] = remaining
        return remaining

    def _release(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
            self._waiters.pop(key, None)
        if not task.cancelled():
            # Mark the exception retrieved when every waiter went away.
            task.exception()


# --- TTL cache ---


def discovery_cache_key(
    provider: str,
    query: str,
    country: str,
    date_from: date | None,
    date_to: date | None,
) -> tuple[str, str, str, str, str]:
    return (
        provider,
        " ".join(query.lower().split()),
        country.upper(),
        date_from.isoformat() if date_from else "",
        date_to.isoformat() if date_to else "",
    )


class TTLCache:
    """Small in-memory TTL cache with oldest-first eviction."""

    def __init__(self, ttl_seconds: float, max_entries: int = 512, *, clock: Clock = time.monotonic):
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = max(int(max_entries), 1)
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: Hashable, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries[key] = (self._clock() + self.ttl_seconds, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)


# --- Rate limiting ---


class MinIntervalRateLimiter:
    """Enforce a minimum interval between successive acquisitions."""

    def __init__(
        self,
        min_interval_seconds: float,
        *,
        clock: Clock = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.min_interval_seconds = max(float(min_interval_seconds), 0.0)
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last: float | None = None

    async def acquire(self) -> None:
        async with self._lock:
            if self._last is not None:
                wait = self._last + self.min_interval_seconds - self._clock()
                if wait > 0:
                    await self._sleep(wait)
            self._last = self._clock()


# --- Composition ---


def _is_provider_failure(exc: BaseException) -> bool:
    return isinstance(exc, (ProviderError, httpx.HTTPError, TimeoutError))


async def call_with_protection(
    ctx: "PipelineContext",
    provider: str,
    operation: Callable[[], Awaitable[T]],
    fingerprint: str | None = None,
) -> T:
    """Run ``operation`` behind the provider's breaker, dedup and retry.

    Raises ``CircuitOpenError`` without I/O while the breaker is open. A
    failure that survives retries opens the breaker and is re-raised.
    """
    ctx.breakers.check(provider)

    async def attempt() -> T:
        return await with_retry(operation, ctx.retry_policy)

    try:
        if fingerprint:
            result = await ctx.dedup.run(fingerprint, attempt)
        else:
            result = await attempt()
    except Exception as exc:
        if _is_provider_failure(exc):
            ctx.breakers.record_failure(provider)
        raise
    ctx.breakers.record_success(provider)
    return result

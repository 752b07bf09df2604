from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

from loguru import logger

from eventscout.config import Settings, settings as default_settings
from eventscout.services.reliability import (
    CircuitBreakerRegistry,
    MinIntervalRateLimiter,
    RequestDeduplicator,
    RetryPolicy,
    TTLCache,
)


class PipelineContext:
    """Process-wide shared state handed to every stage.

    Holds the provider breakers, the discovery cache, the in-flight request
    map and the scoring-model rate limiter. One instance per process; tests
    build their own.
    """

    def __init__(
        self,
        config: Settings | None = None,
        *,
        clock=time.monotonic,
    ):
        self.settings = config or default_settings
        self.breakers = CircuitBreakerRegistry(self.settings.circuit_cooldown_seconds, clock=clock)
        self.cache = TTLCache(
            self.settings.discovery_cache_ttl_seconds,
            self.settings.discovery_cache_max_entries,
            clock=clock,
        )
        self.dedup = RequestDeduplicator()
        self.rate_limiter = MinIntervalRateLimiter(
            self.settings.prioritize_min_interval_seconds,
            clock=clock,
        )
        self.retry_policy = RetryPolicy(
            max_attempts=self.settings.retry_max_attempts,
            base_delay=self.settings.retry_base_delay_seconds,
            max_delay=self.settings.retry_max_delay_seconds,
        )


@dataclass
class RunState:
    """Per-request state: cancellation and log-once sets."""

    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    seen_aggregators: set[str] = field(default_factory=set)
    partial: bool = False

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()

    def note_aggregator(self, host: str) -> bool:
        """Record an aggregator host; True the first time it is seen this run."""
        if host in self.seen_aggregators:
            return False
        self.seen_aggregators.add(host)
        logger.info(f"Dropping aggregator host {host}")
        return True


_context: PipelineContext | None = None


def get_context() -> PipelineContext:
    """Get or create the process-wide pipeline context."""
    global _context
    if _context is None:
        _context = PipelineContext()
    return _context

"""Error taxonomy for the event pipeline.

Only ``ValidationError`` is meant to reach a caller. Everything else is
caught at the narrowest scope and turned into a degraded result.
"""
from __future__ import annotations


class EventScoutError(Exception):
    """Base class for pipeline errors."""


class ProviderError(EventScoutError):
    """Network or HTTP failure raised by a search/crawl adapter."""

    def __init__(
        self,
        provider: str,
        cause: BaseException | str,
        *,
        status_code: int | None = None,
    ):
        self.provider = provider
        self.cause = cause
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code else ""
        super().__init__(f"{provider} failed{detail}: {cause}")


class CircuitOpenError(EventScoutError):
    """Raised without any I/O while a provider's breaker is open."""

    def __init__(self, provider: str, open_until: float):
        self.provider = provider
        self.open_until = open_until
        super().__init__(f"circuit open for {provider}")


class StageTimeoutError(EventScoutError, TimeoutError):
    """A stage-level call exceeded its wall-clock budget."""

    def __init__(self, stage: str, timeout_seconds: float):
        self.stage = stage
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{stage} timed out after {timeout_seconds:g}s")


class ParseError(EventScoutError):
    """Malformed model or crawl output."""


class ValidationError(EventScoutError, ValueError):
    """Malformed search request. Surfaced to the caller, never retried."""

    def __init__(self, message: str, errors: list[dict] | None = None):
        self.errors = errors or []
        super().__init__(message)

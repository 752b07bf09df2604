from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from eventscout.errors import StageTimeoutError

T = TypeVar("T")
R = TypeVar("R")

_SKIPPED = object()


@dataclass(slots=True)
class FanOutResult:
    results: list[Any] = field(default_factory=list)
    errors: list[BaseException] = field(default_factory=list)
    skipped: int = 0
    cancelled: bool = False

    @property
    def partial(self) -> bool:
        return self.cancelled or bool(self.errors)


async def run_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    limit: int,
    cancel: asyncio.Event | None = None,
    should_skip: Callable[[], bool] | None = None,
) -> FanOutResult:
    """Run ``worker`` over ``items`` with at most ``limit`` in flight.

    Results come back in completion order. ``should_skip`` is checked when a
    queued item gets a slot, so work already running always finishes. Setting
    ``cancel`` abandons in-flight work and returns what has completed so far.
    """
    semaphore = asyncio.Semaphore(max(int(limit), 1))
    outcome = FanOutResult()

    async def run_one(item: T) -> Any:
        async with semaphore:
            if cancel is not None and cancel.is_set():
                return _SKIPPED
            if should_skip is not None and should_skip():
                return _SKIPPED
            return await worker(item)

    tasks = [asyncio.ensure_future(run_one(item)) for item in items]
    if not tasks:
        return outcome

    cancel_waiter = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
    pending: set[asyncio.Future] = set(tasks)

    def collect(task: asyncio.Future) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            outcome.errors.append(exc)
            return
        value = task.result()
        if value is _SKIPPED:
            outcome.skipped += 1
        else:
            outcome.results.append(value)

    try:
        while pending:
            waiting = set(pending)
            if cancel_waiter is not None:
                waiting.add(cancel_waiter)
            done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task is cancel_waiter:
                    continue
                pending.discard(task)
                collect(task)
            if cancel_waiter is not None and cancel_waiter.done():
                outcome.cancelled = True
                break
    finally:
        for task in pending:
            task.cancel()
        if cancel_waiter is not None and not cancel_waiter.done():
            cancel_waiter.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    return outcome


async def with_timeout(awaitable: Awaitable[R], seconds: float, stage: str) -> R:
    """Await with a wall-clock budget, raising ``StageTimeoutError`` on expiry."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        raise StageTimeoutError(stage, seconds) from exc

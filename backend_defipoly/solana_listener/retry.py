"""
Bounded retry with a fixed delay schedule.

The first attempt runs immediately; after failed attempt n the caller waits
schedule[n-1] (the last entry repeats if the schedule is shorter than the
attempt budget). A None result counts as "not ready yet" and is retried like
an exception. Used for getTransaction (nodes can announce a signature before it
is queryable) and any other chain call.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from backend_defipoly.defipoly_logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def next_delay(attempt: int, max_attempts: int, schedule: Sequence[float]) -> float | None:
    """
    Delay to wait after failed attempt `attempt` (1-based), or None when the
    attempt budget is spent and the caller should give up.
    """
    if attempt >= max_attempts:
        return None
    if not schedule:
        return 0.0
    return float(schedule[min(attempt - 1, len(schedule) - 1)])


@dataclass
class RetryOutcome(Generic[T]):
    value: T | None
    attempts: int
    last_error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.value is not None


async def retry_async(
    fn: Callable[[], Awaitable[T | None]],
    *,
    max_attempts: int,
    delays: Sequence[float],
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    label: str = "call",
) -> RetryOutcome[T]:
    """Run fn until it returns non-None or attempts run out. Never raises retry_on errors."""
    last_error: BaseException | None = None
    attempt = 0
    while True:
        attempt += 1
        try:
            value = await fn()
            if value is not None:
                return RetryOutcome(value=value, attempts=attempt)
            last_error = None
        except retry_on as e:
            last_error = e
            logger.debug("retry_attempt_failed", label=label, attempt=attempt, error=str(e))
        delay = next_delay(attempt, max_attempts, delays)
        if delay is None:
            return RetryOutcome(value=None, attempts=attempt, last_error=last_error)
        await sleep(delay)

"""Poll-until-condition helper used for session and job status waits."""

import asyncio
from typing import Awaitable, Callable, TypeVar

from src.services.errors import PollTimeoutError

T = TypeVar("T")


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    is_done: Callable[[T], bool],
    *,
    interval: float,
    max_attempts: int | None = None,
    on_poll: Callable[[int, T], None] | None = None,
    initial_delay: bool = True,
) -> T:
    """
    Call `fetch` repeatedly until `is_done` accepts its result.

    Args:
        fetch: Coroutine factory producing one observation
        is_done: Terminal-state predicate
        interval: Seconds between attempts
        max_attempts: Attempt budget; None polls until the caller is cancelled
        on_poll: Called with (attempt, value) for every non-terminal observation
        initial_delay: Wait one interval before the first attempt

    Returns:
        The first observation accepted by `is_done`

    Raises:
        PollTimeoutError: When the attempt budget is exhausted
    """
    attempt = 0
    while max_attempts is None or attempt < max_attempts:
        if initial_delay or attempt > 0:
            await asyncio.sleep(interval)
        attempt += 1
        value = await fetch()
        if is_done(value):
            return value
        if on_poll is not None:
            on_poll(attempt, value)
    raise PollTimeoutError(attempt)

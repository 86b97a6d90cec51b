"""Deadlines and waits shared by the polling loops."""

from collections.abc import Awaitable, Callable

from acmeflow.exceptions import Timeout


class Deadline:
    """A point in time ``timeout`` seconds after creation, on ``clock``."""

    def __init__(self, timeout: float, clock: Callable[[], float]):
        self.timeout = timeout
        self._clock = clock
        self._expires_at = clock() + timeout

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0


async def wait_for_next_poll(
    sleep: Callable[[float], Awaitable[None]],
    deadline: Deadline,
    interval: float,
    retry_after: int | None,
    what: str,
    last_status: str | None,
) -> None:
    """Sleep until the next poll, honoring Retry-After.

    The wait is the larger of ``interval`` and ``retry_after``, cut short at
    the deadline so one last poll still happens before giving up.

    Raises:
        Timeout: If the deadline has already passed.
    """
    if deadline.expired:
        raise Timeout(what, deadline.timeout, last_status)
    delay = interval if retry_after is None else max(interval, retry_after)
    await sleep(min(delay, deadline.remaining()))

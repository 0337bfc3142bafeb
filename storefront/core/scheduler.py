"""Clock and cancellable deadline tasks.

Polling code never calls ``asyncio.sleep`` or ``time.monotonic`` directly;
it goes through a ``Clock`` so tests can drive time by hand.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Coroutine
from typing import Any, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Clock(Protocol):
    def now(self) -> float:
        """Monotonic seconds."""
        ...

    async def sleep(self, seconds: float) -> None: ...


class MonotonicClock:
    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


async def run_before(awaitable: Awaitable[T], deadline: float, clock: Clock) -> T:
    """Await ``awaitable`` but give up once ``clock`` passes ``deadline``.

    Raises:
        asyncio.TimeoutError: the deadline passed first; the awaitable is cancelled

    The bound runs on the event loop timer, which ``MonotonicClock`` shares.
    """
    return await asyncio.wait_for(awaitable, timeout=max(0.0, deadline - clock.now()))


class DeadlineTask:
    """An asyncio task bound to a monotonic deadline.

    ``cancel()`` is idempotent and safe to call from inside or outside the
    task; once it returns, the wrapped coroutine will not resume past its
    current await.
    """

    def __init__(
        self,
        coro: Coroutine[Any, Any, Any],
        *,
        deadline: float,
        clock: Clock,
        name: str | None = None,
    ) -> None:
        self.deadline = deadline
        self._clock = clock
        self._task: asyncio.Task = asyncio.get_running_loop().create_task(coro, name=name)
        self._task.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduled task %s crashed: %s", task.get_name(), exc)

    def remaining(self) -> float:
        return max(0.0, self.deadline - self._clock.now())

    def expired(self) -> bool:
        return self._clock.now() >= self.deadline

    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        if self._task.done():
            return False
        return self._task.cancel()

    async def wait(self) -> None:
        """Wait for the task to finish; cancellation is not an error here."""
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

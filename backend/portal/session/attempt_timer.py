import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def elapsed_seconds(started_at: datetime, now: datetime) -> int:
    """Whole seconds between start and now, clamped to zero."""
    return max(0, math.floor((now - started_at).total_seconds()))


def remaining_seconds(duration_mins: int, started_at: datetime, now: datetime) -> int:
    return max(0, duration_mins * 60 - elapsed_seconds(started_at, now))


class AttemptTimer:
    """Recomputes remaining time on every check and fires expiry once.

    Nothing is decremented in memory: a suspended process or a reloaded page
    sees the real elapsed time on its next check.
    """

    def __init__(
        self,
        duration_mins: int,
        started_at: datetime,
        on_expire: Callable[[], Awaitable[object]],
        clock: Clock = utcnow,
        tick_seconds: float = 1.0,
    ) -> None:
        self.duration_mins = duration_mins
        self.started_at = started_at
        self._on_expire = on_expire
        self._clock = clock
        self._tick_seconds = tick_seconds
        self._fired = False
        self._stopped = False
        self._task: Optional[asyncio.Task] = None

    @property
    def fired(self) -> bool:
        return self._fired

    def remaining(self) -> int:
        return remaining_seconds(self.duration_mins, self.started_at, self._clock())

    async def check(self) -> int:
        """Return remaining seconds, triggering expiry when it reaches zero.

        The value returned is the same one used to decide expiry.
        """
        remaining = self.remaining()
        if remaining == 0 and not self._fired and not self._stopped:
            self._fired = True
            logger.info("Attempt timer expired (started_at=%s)", self.started_at)
            await self._on_expire()
        return remaining

    async def run(self) -> None:
        while not self._stopped and not self._fired:
            await self.check()
            if self._fired or self._stopped:
                break
            await asyncio.sleep(self._tick_seconds)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.ensure_future(self.run())
        return self._task

    def stop(self) -> None:
        self._stopped = True
        task = self._task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None

"""Calendar-day keys and the midnight rollover timer.

All dates are in the server's local timezone. A day key is the string
``YYYY-MM-DD`` and is the only thing that scopes daily attempt limits.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import date, datetime, timedelta

import structlog

logger = structlog.get_logger()


def date_key(now: datetime | date | None = None) -> str:
    """Local calendar date as ``YYYY-MM-DD``."""
    now = now or datetime.now()
    if isinstance(now, datetime):
        now = _local(now)
    return f"{now.year:04d}-{now.month:02d}-{now.day:02d}"


def _local(moment: datetime) -> datetime:
    # Store timestamps come back timezone-aware (UTC); compare in local time.
    if moment.tzinfo is not None:
        return moment.astimezone().replace(tzinfo=None)
    return moment


def milliseconds_until_next_midnight(now: datetime | None = None) -> int:
    now = _local(now or datetime.now())
    tomorrow = datetime.combine(now.date() + timedelta(days=1), datetime.min.time())
    return int((tomorrow - now).total_seconds() * 1000)


def day_difference(earlier: datetime, later: datetime) -> int:
    """Whole days between two moments at midnight granularity."""
    return (_local(later).date() - _local(earlier).date()).days


def is_different_day(a: datetime, b: datetime) -> bool:
    return day_difference(a, b) != 0


class MidnightRollover:
    """Fires a callback at every local midnight until stopped.

    Each firing re-arms the timer for the following midnight, so long-lived
    sessions keep rolling over day after day.

    Args:
        on_rollover: Called with the new day key.
        clock: Source of the current time.
        sleep: Awaitable sleep, replaced in tests.
    """

    def __init__(
        self,
        on_rollover: Callable[[str], Awaitable[None] | None],
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._on_rollover = on_rollover
        self._clock = clock
        self._sleep = sleep
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            delay_ms = milliseconds_until_next_midnight(self._clock())
            await self._sleep(delay_ms / 1000)
            new_key = date_key(self._clock())
            logger.info("midnight_rollover", date_key=new_key)
            try:
                result = self._on_rollover(new_key)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("midnight_rollover_callback_failed", date_key=new_key)

"""TickScheduler — periodic scan of time-predicate subscriptions."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from gofer_extensions.engine.registry import TimeRegistry
from gofer_extensions.engine.timeframe import IntervalTimer
from gofer_extensions.models.subscription import SubscriptionKey
from gofer_extensions.plugins.protocols import Sink

log = structlog.get_logger()


def _minute(now: datetime) -> datetime:
    return now.replace(second=0, microsecond=0)


class TickScheduler:
    """Scans a time registry every ``interval`` and fires admitted subscriptions.

    Scans are serial: a slow scan delays the next one rather than overlapping it.
    Cron subscriptions fire at most once per wall-clock minute. Interval timers
    keep their own cadence, so the loop also wakes when the earliest one is due.
    """

    def __init__(
        self,
        registry: TimeRegistry,
        sink: Sink,
        interval: timedelta = timedelta(minutes=1),
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._registry = registry
        self._sink = sink
        self._interval = interval
        self._clock = clock
        self._last_fired: dict[SubscriptionKey, datetime] = {}
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the scan loop."""
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        log.info("tick scheduler started", interval_seconds=self._interval.total_seconds())

    async def stop(self) -> None:
        """Ask the loop to exit and wait for the current scan to finish."""
        self._stop_event.set()
        if self._task and not self._task.done():
            await self._task
        self._task = None
        log.info("tick scheduler stopped")

    def next_wait(self, now: datetime | None = None) -> timedelta:
        """Time until the next scan: the tick interval or the earliest interval slot."""
        now = now or self._clock()
        wait = self._interval
        for sub in self._registry.list_all():
            if isinstance(sub.condition, IntervalTimer):
                wait = min(wait, sub.condition.next_due - now)
        return max(wait, timedelta(0))

    async def tick(self, now: datetime | None = None) -> int:
        """Run one scan. Returns the number of subscriptions fired."""
        now = now or self._clock()
        minute = _minute(now)
        fired = 0

        for sub in self._registry.lookup_time(now):
            if not isinstance(sub.condition, IntervalTimer):
                if self._last_fired.get(sub.key) == minute:
                    continue
                self._last_fired[sub.key] = minute
            log.debug("subscription admitted", **sub.key.log_fields())
            await self._sink.fire(sub, {})
            fired += 1

        # Forget subscriptions that were removed since they last fired.
        for key in [k for k in self._last_fired if k not in self._registry]:
            del self._last_fired[key]
        return fired

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.next_wait().total_seconds()
                )
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.tick()
            except Exception:
                log.exception("tick scan failed")

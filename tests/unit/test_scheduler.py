"""Tests for the TickScheduler."""

import asyncio
from datetime import datetime, timedelta

from gofer_extensions.engine.registry import TimeRegistry
from gofer_extensions.engine.scheduler import TickScheduler
from gofer_extensions.engine.timeframe import CronTimeframe, IntervalTimer
from gofer_extensions.models.subscription import Subscription, SubscriptionKey

NOON = datetime(2025, 1, 1, 12, 0, 5)


def _registry(*expressions: str) -> TimeRegistry:
    registry = TimeRegistry()
    for i, expression in enumerate(expressions):
        key = SubscriptionKey("ns", "pl", f"sub{i}")
        registry.insert(Subscription(key, CronTimeframe.parse(expression)))
    return registry


class TestTick:
    async def test_fires_admitted_subscription_with_no_variables(self, sink) -> None:
        scheduler = TickScheduler(_registry("* * * * *"), sink)
        assert await scheduler.tick(NOON) == 1
        assert len(sink.fired) == 1
        subscription, variables = sink.fired[0]
        assert subscription.key == SubscriptionKey("ns", "pl", "sub0")
        assert variables == {}

    async def test_skips_non_matching(self, sink) -> None:
        scheduler = TickScheduler(_registry("30 * * * *"), sink)
        assert await scheduler.tick(NOON) == 0
        assert sink.fired == []

    async def test_fires_at_most_once_per_minute(self, sink) -> None:
        scheduler = TickScheduler(_registry("* * * * *"), sink)
        await scheduler.tick(NOON)
        await scheduler.tick(NOON + timedelta(seconds=20))
        await scheduler.tick(NOON + timedelta(seconds=50))
        assert len(sink.fired) == 1

    async def test_fires_again_next_minute(self, sink) -> None:
        scheduler = TickScheduler(_registry("* * * * *"), sink)
        await scheduler.tick(NOON)
        await scheduler.tick(NOON + timedelta(minutes=1))
        assert len(sink.fired) == 2

    async def test_resubscribed_key_fires_again_within_minute(self, sink) -> None:
        registry = _registry("* * * * *")
        scheduler = TickScheduler(registry, sink)
        await scheduler.tick(NOON)

        key = SubscriptionKey("ns", "pl", "sub0")
        registry.remove(key)
        await scheduler.tick(NOON + timedelta(seconds=10))
        registry.insert(Subscription(key, CronTimeframe.parse("* * * * *")))
        await scheduler.tick(NOON + timedelta(seconds=20))
        assert len(sink.fired) == 2

    async def test_uses_clock_when_now_omitted(self, sink) -> None:
        scheduler = TickScheduler(_registry("0 12 * * *"), sink, clock=lambda: NOON)
        assert await scheduler.tick() == 1


def _interval_registry(every: timedelta, start: datetime) -> tuple[TimeRegistry, IntervalTimer]:
    registry = TimeRegistry()
    timer = IntervalTimer(every, next_due=start)
    registry.insert(Subscription(SubscriptionKey("ns", "pl", "every"), timer))
    return registry, timer


class TestIntervalTick:
    async def test_keeps_cadence_across_minute_scans(self, sink) -> None:
        start = datetime(2025, 1, 1, 12, 0)
        registry, timer = _interval_registry(timedelta(seconds=90), start)
        scheduler = TickScheduler(registry, sink)
        for minute in range(1, 7):
            await scheduler.tick(start + timedelta(minutes=minute))
        # Slots fall at 12:01:30, 12:03, 12:04:30 and 12:06.
        assert len(sink.fired) == 4
        assert timer.next_due == start + timedelta(minutes=7, seconds=30)

    async def test_not_limited_to_once_per_minute(self, sink) -> None:
        registry, _ = _interval_registry(timedelta(seconds=10), NOON)
        scheduler = TickScheduler(registry, sink)
        for seconds in (10, 20, 30):
            await scheduler.tick(NOON + timedelta(seconds=seconds))
        assert len(sink.fired) == 3

    def test_next_wait_follows_earliest_slot(self, sink) -> None:
        registry, _ = _interval_registry(timedelta(seconds=10), NOON)
        scheduler = TickScheduler(registry, sink)
        assert scheduler.next_wait(NOON) == timedelta(seconds=10)
        assert scheduler.next_wait(NOON + timedelta(seconds=15)) == timedelta(0)

    def test_next_wait_defaults_to_tick_interval(self, sink) -> None:
        scheduler = TickScheduler(_registry("* * * * *"), sink, interval=timedelta(seconds=30))
        assert scheduler.next_wait(NOON) == timedelta(seconds=30)


class TestLoop:
    async def test_start_and_stop(self, sink) -> None:
        scheduler = TickScheduler(_registry("* * * * *"), sink, interval=timedelta(milliseconds=50))
        await scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.3)
        await scheduler.stop()
        assert not scheduler.running
        # Dedupe holds firings to one per minute; a minute boundary may add one.
        assert 1 <= len(sink.fired) <= 2

    async def test_stop_without_start(self, sink) -> None:
        scheduler = TickScheduler(_registry(), sink)
        await scheduler.stop()
        assert not scheduler.running

    async def test_scan_failure_does_not_stop_loop(self) -> None:
        calls = []

        class FailingSink:
            async def fire(self, subscription, variables, post_dispatch=None):
                calls.append(subscription.key)
                raise RuntimeError("boom")

        scheduler = TickScheduler(
            _registry("* * * * *"), FailingSink(), interval=timedelta(milliseconds=20)
        )
        await scheduler.start()
        await asyncio.sleep(0.1)
        assert scheduler.running
        await scheduler.stop()
        assert calls

    async def test_wakes_for_interval_slots_between_ticks(self, sink) -> None:
        registry = TimeRegistry()
        timer = IntervalTimer(timedelta(milliseconds=50))
        registry.insert(Subscription(SubscriptionKey("ns", "pl", "every"), timer))
        scheduler = TickScheduler(registry, sink, interval=timedelta(minutes=1))
        await scheduler.start()
        await asyncio.sleep(0.3)
        await scheduler.stop()
        assert len(sink.fired) >= 3

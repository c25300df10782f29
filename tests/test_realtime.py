"""Tests for realtime sync and reconnect backoff."""

import asyncio

from nutrilog.domain.day import ChangeEvent, DailyAggregate
from nutrilog.services.day import FOOD_TABLE, DayAggregator
from nutrilog.services.realtime import RealtimeSyncEngine, ReconnectScheduler
from tests.conftest import NOW, FakeChangeFeed


def _engine(
    feed: FakeChangeFeed, day: DayAggregator, base: float = 0.01, **kwargs: object
) -> RealtimeSyncEngine:
    return RealtimeSyncEngine(
        feed=feed,
        day=day,
        scheduler=ReconnectScheduler(base_seconds=base, cap_seconds=30),
        **kwargs,
    )


def test_backoff_doubles_until_cap() -> None:
    async def delays(cap: float) -> list[float]:
        scheduler = ReconnectScheduler(base_seconds=1, cap_seconds=cap)
        result = [scheduler.schedule(lambda: None) for _ in range(4)]
        scheduler.cancel()
        return result

    assert asyncio.run(delays(30)) == [1, 2, 4, 8]
    assert asyncio.run(delays(5)) == [1, 2, 4, 5]


def test_schedule_keeps_a_single_timer() -> None:
    async def scenario() -> list[int]:
        fired: list[int] = []
        scheduler = ReconnectScheduler(base_seconds=0.01)
        scheduler.schedule(lambda: fired.append(1))
        scheduler.schedule(lambda: fired.append(2))
        await asyncio.sleep(0.1)
        return fired

    assert asyncio.run(scenario()) == [2]


def test_events_are_merged_into_the_day(day: DayAggregator) -> None:
    feed = FakeChangeFeed()
    changes: list[DailyAggregate] = []
    engine = _engine(feed, day, on_change=changes.append)

    async def scenario() -> None:
        await engine.start("user-1")
        feed.emit(
            ChangeEvent(
                id="food-9",
                table=FOOD_TABLE,
                payload={"food_name": "Toast", "calories": 120},
                created_at=NOW,
            )
        )
        await engine.stop()

    asyncio.run(scenario())

    assert feed.filters == ["user_id=eq.user-1"]
    assert day.aggregate.totals.calories == 120
    assert len(changes) == 1
    assert not engine.active


def test_closed_channel_reconnects_and_resets_attempts(day: DayAggregator) -> None:
    feed = FakeChangeFeed()
    engine = _engine(feed, day)

    async def scenario() -> None:
        await engine.start("user-1")
        feed.drop("channel_error")
        assert engine.scheduler.attempt == 1
        await asyncio.sleep(0.1)

    asyncio.run(scenario())

    assert feed.subscribe_calls == 2
    assert engine.scheduler.attempt == 0
    assert engine.active


def test_failed_resubscribe_schedules_next_attempt(day: DayAggregator) -> None:
    feed = FakeChangeFeed()
    engine = _engine(feed, day)

    async def scenario() -> None:
        await engine.start("user-1")
        feed.fail_subscribes = 2
        feed.drop()
        await asyncio.sleep(0.3)

    asyncio.run(scenario())

    assert feed.subscribe_calls == 4
    assert engine.scheduler.attempt == 0
    assert feed.on_event is not None


def test_initial_subscribe_failure_is_retried(day: DayAggregator) -> None:
    feed = FakeChangeFeed(fail_subscribes=1)
    engine = _engine(feed, day)

    async def scenario() -> None:
        await engine.start("user-1")
        assert engine.scheduler.timer_handle is not None
        await asyncio.sleep(0.1)

    asyncio.run(scenario())

    assert feed.subscribe_calls == 2
    assert feed.on_event is not None


def test_stop_cancels_pending_reconnect(day: DayAggregator) -> None:
    feed = FakeChangeFeed()
    engine = _engine(feed, day, base=10)

    async def scenario() -> None:
        await engine.start("user-1")
        feed.drop()
        assert engine.scheduler.timer_handle is not None
        await engine.stop()

    asyncio.run(scenario())

    assert engine.scheduler.timer_handle is None
    assert engine.scheduler.attempt == 0
    assert feed.subscribe_calls == 1
    assert feed.unsubscribe_calls == 2


def test_stop_waits_for_cancelled_resubscribe(day: DayAggregator) -> None:
    feed = FakeChangeFeed()
    engine = _engine(feed, day)

    async def scenario() -> set[asyncio.Task]:
        await engine.start("user-1")
        feed.subscribe_delay = 10
        feed.drop()
        await asyncio.sleep(0.05)
        assert feed.subscribe_calls == 2
        await engine.stop()
        return asyncio.all_tasks() - {asyncio.current_task()}

    leftover = asyncio.run(scenario())

    assert leftover == set()
    assert feed.on_event is None
    assert engine.scheduler.timer_handle is None


def test_no_reconnect_without_valid_session(day: DayAggregator) -> None:
    feed = FakeChangeFeed()
    engine = _engine(feed, day, session_valid=lambda: False)

    async def scenario() -> None:
        await engine.start("user-1")
        feed.drop()
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    assert engine.scheduler.timer_handle is None
    assert feed.subscribe_calls == 1

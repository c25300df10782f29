"""Live change-feed subscription with reconnect backoff."""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from nutrilog.domain.day import ChangeEvent, DailyAggregate
from nutrilog.services.day import DayAggregator

_logger = logging.getLogger(__name__)

EventHandler = Callable[[ChangeEvent], None]
CloseHandler = Callable[[str], None]


class ChangeFeed(Protocol):
    """Interface for a server-pushed insert feed."""

    async def subscribe(
        self, user_filter: str, on_event: EventHandler, on_close: CloseHandler
    ) -> None:
        """Open a subscription; raises when it cannot be established."""

    async def unsubscribe(self) -> None:
        """Close the current subscription, if any."""


@dataclass
class ReconnectScheduler:
    """Exponential reconnect backoff with a single pending timer."""

    base_seconds: float = 1.0
    cap_seconds: float = 30.0
    attempt: int = 0
    timer_handle: asyncio.TimerHandle | None = None

    def next_delay(self) -> float:
        return min(self.base_seconds * 2**self.attempt, self.cap_seconds)

    def schedule(self, callback: Callable[[], None]) -> float:
        """Arm the timer for the next attempt and return its delay."""
        self.cancel()
        delay = self.next_delay()
        self.attempt += 1
        loop = asyncio.get_running_loop()
        self.timer_handle = loop.call_later(delay, callback)
        return delay

    def reset(self) -> None:
        self.attempt = 0

    def cancel(self) -> None:
        if self.timer_handle is not None:
            self.timer_handle.cancel()
            self.timer_handle = None


def _always_valid() -> bool:
    return True


@dataclass
class RealtimeSyncEngine:
    """Keeps the day aggregate in step with the change feed.

    One subscription per engine. ``start`` tears down any previous
    subscription and pending reconnect before subscribing again.
    """

    feed: ChangeFeed
    day: DayAggregator
    scheduler: ReconnectScheduler = field(default_factory=ReconnectScheduler)
    session_valid: Callable[[], bool] = _always_valid
    on_change: Callable[[DailyAggregate], None] | None = None
    _user_id: str | None = field(default=None, init=False)
    _active: bool = field(default=False, init=False)
    _task: asyncio.Task | None = field(default=None, init=False)

    @property
    def active(self) -> bool:
        return self._active

    async def start(self, user_id: str) -> None:
        """Subscribe to inserts for one user."""
        await self.stop()
        self._user_id = user_id
        self._active = True
        try:
            await self._subscribe()
        except Exception as exc:
            _logger.warning("Realtime subscribe failed for %s: %s", user_id, exc)
            self._handle_close("subscribe-failed")

    async def stop(self) -> None:
        """Cancel the subscription and any pending reconnect."""
        self._active = False
        self.scheduler.cancel()
        self.scheduler.reset()
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        try:
            await self.feed.unsubscribe()
        except Exception as exc:
            _logger.warning("Realtime unsubscribe failed: %s", exc)
        self._user_id = None

    async def _subscribe(self) -> None:
        await self.feed.subscribe(
            f"user_id=eq.{self._user_id}", self._handle_event, self._handle_close
        )
        self.scheduler.reset()
        _logger.info("Realtime subscribed for %s", self._user_id)

    def _handle_event(self, event: ChangeEvent) -> None:
        if not self._active:
            return
        if self.day.apply_change(event) and self.on_change is not None:
            self.on_change(self.day.aggregate)

    def _handle_close(self, reason: str) -> None:
        if not self._active or not self.session_valid():
            return
        delay = self.scheduler.schedule(self._launch_resubscribe)
        _logger.warning(
            "Realtime channel closed (%s), reconnect %s in %.1fs",
            reason,
            self.scheduler.attempt,
            delay,
        )

    def _launch_resubscribe(self) -> None:
        self.scheduler.timer_handle = None
        if self._active:
            self._task = asyncio.create_task(self._resubscribe())

    async def _resubscribe(self) -> None:
        try:
            await self.feed.unsubscribe()
            await self._subscribe()
        except Exception as exc:
            _logger.warning("Realtime resubscribe failed: %s", exc)
            self._handle_close("resubscribe-failed")

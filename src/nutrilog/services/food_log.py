"""Food, hydration and supplement logging."""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Protocol, TypeVar

from nutrilog.domain.day import DailyAggregate, DayEntries
from nutrilog.domain.entries import (
    ConfirmedLogEntry,
    FoodLogDraft,
    HydrationEntry,
    SupplementEntry,
)
from nutrilog.domain.errors import PersistenceError
from nutrilog.services.day import DayAggregator

_logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class FoodLogRepository(Protocol):
    """Persistence interface for daily log entries."""

    def save_food(self, user_id: str, draft: FoodLogDraft) -> str | None:
        """Insert a food entry and return its id."""

    def save_hydration(  # noqa: PLR0913
        self,
        user_id: str,
        name: str,
        volume_ml: float,
        drink_type: str,
        logged_at: datetime,
        image_url: str | None = None,
    ) -> str | None:
        """Insert a hydration entry and return its id."""

    def save_supplement(  # noqa: PLR0913
        self,
        user_id: str,
        name: str,
        dosage: float,
        unit: str,
        logged_at: datetime,
        frequency: str | None = None,
        image_url: str | None = None,
    ) -> str | None:
        """Insert a supplement entry and return its id."""

    def remove_food(self, user_id: str, food_id: str) -> None:
        """Delete a food entry owned by the user."""

    def list_day(self, user_id: str, start: datetime, end: datetime) -> DayEntries:
        """Return all entries logged in a time range."""


@dataclass
class FoodLogService:
    """Writes entries for one user and mirrors them into the day aggregate.

    A started write runs to completion even when the caller stops waiting,
    so a row that lands is always recorded as a local write and mirrored.
    """

    repository: FoodLogRepository
    day: DayAggregator
    user_id: str
    _writes: set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    async def save_food(self, draft: FoodLogDraft) -> ConfirmedLogEntry:
        """Persist a food entry; raises ``PersistenceError`` on failure."""
        return await self._detached(self._save_food(draft))

    async def save_hydration(
        self,
        name: str,
        volume_ml: float,
        drink_type: str = "water",
        image_url: str | None = None,
    ) -> HydrationEntry:
        return await self._detached(
            self._save_hydration(name, volume_ml, drink_type, image_url)
        )

    async def save_supplement(  # noqa: PLR0913
        self,
        name: str,
        dosage: float,
        unit: str,
        frequency: str | None = None,
        image_url: str | None = None,
    ) -> SupplementEntry:
        return await self._detached(
            self._save_supplement(name, dosage, unit, frequency, image_url)
        )

    async def settle_writes(self) -> None:
        """Wait for writes that are still in flight."""
        if self._writes:
            await asyncio.wait(set(self._writes))

    async def _save_food(self, draft: FoodLogDraft) -> ConfirmedLogEntry:
        entry_id = await self._write(
            "food", self.repository.save_food, self.user_id, draft
        )
        entry = ConfirmedLogEntry(
            id=entry_id,
            name=draft.name,
            nutrition=draft.nutrition.sanitized(),
            source=draft.source,
            logged_at=draft.logged_at,
            confidence=draft.confidence,
            serving_grams=draft.serving_grams,
            image_url=draft.image_url,
            barcode=draft.barcode,
        )
        self.day.add_food(entry)
        return entry

    async def _save_hydration(
        self,
        name: str,
        volume_ml: float,
        drink_type: str,
        image_url: str | None,
    ) -> HydrationEntry:
        logged_at = self.day.clock()
        entry_id = await self._write(
            "hydration",
            self.repository.save_hydration,
            self.user_id,
            name,
            volume_ml,
            drink_type,
            logged_at,
            image_url,
        )
        entry = HydrationEntry(
            id=entry_id,
            name=name,
            volume_ml=volume_ml,
            drink_type=drink_type,
            logged_at=logged_at,
            image_url=image_url,
        )
        self.day.add_hydration(entry)
        return entry

    async def _save_supplement(  # noqa: PLR0913
        self,
        name: str,
        dosage: float,
        unit: str,
        frequency: str | None,
        image_url: str | None,
    ) -> SupplementEntry:
        logged_at = self.day.clock()
        entry_id = await self._write(
            "supplement",
            self.repository.save_supplement,
            self.user_id,
            name,
            dosage,
            unit,
            logged_at,
            frequency,
            image_url,
        )
        entry = SupplementEntry(
            id=entry_id,
            name=name,
            dosage=dosage,
            unit=unit,
            logged_at=logged_at,
            frequency=frequency,
            image_url=image_url,
        )
        self.day.add_supplement(entry)
        return entry

    async def remove_food(self, food_id: str) -> bool:
        """Remove locally first, then request deletion."""
        removed = self.day.remove_food(food_id)
        try:
            await asyncio.to_thread(self.repository.remove_food, self.user_id, food_id)
        except Exception as exc:
            _logger.exception("Failed to delete food %s", food_id)
            raise PersistenceError(f"Could not delete entry {food_id}") from exc
        return removed

    async def load_day(self, day: date | None = None) -> DailyAggregate:
        """Load the displayed day from persistence."""
        day = day or self.day.today()
        start, end = self.day.day_bounds(day)
        try:
            entries = await asyncio.to_thread(
                self.repository.list_day, self.user_id, start, end
            )
        except Exception as exc:
            _logger.exception("Failed to load day %s", day)
            raise PersistenceError(f"Could not load entries for {day}") from exc
        return self.day.load(day, entries)

    async def _detached(self, write: Coroutine[object, object, _T]) -> _T:
        task = asyncio.create_task(write)
        self._writes.add(task)
        task.add_done_callback(self._write_settled)
        return await asyncio.shield(task)

    def _write_settled(self, task: asyncio.Task) -> None:
        self._writes.discard(task)
        # Retrieve the outcome; callers that stopped waiting never will.
        if not task.cancelled():
            task.exception()

    async def _write(
        self, kind: str, func: Callable[..., str | None], *args: object
    ) -> str:
        try:
            entry_id = await asyncio.to_thread(func, *args)
        except Exception as exc:
            _logger.exception("Failed to save %s entry", kind)
            raise PersistenceError(f"Could not save {kind} entry") from exc
        if not entry_id:
            _logger.error("Save of %s entry returned no id", kind)
            raise PersistenceError(f"Could not save {kind} entry")
        entry_id = str(entry_id)
        self.day.record_local_write(entry_id)
        return entry_id

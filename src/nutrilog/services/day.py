"""Local mirror of the displayed day's log entries."""

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from typing import get_args
from zoneinfo import ZoneInfo

from nutrilog.domain.day import ChangeEvent, DailyAggregate, DailyTotals, DayEntries
from nutrilog.domain.entries import (
    ConfirmedLogEntry,
    HydrationEntry,
    LogSource,
    SupplementEntry,
)
from nutrilog.domain.nutrition import NutrientProfile, clean_amount

_logger = logging.getLogger(__name__)

FOOD_TABLE = "nutrition_logs"
HYDRATION_TABLE = "hydration_logs"
SUPPLEMENT_TABLE = "supplement_logs"

_LOG_SOURCES = frozenset(get_args(LogSource))


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def food_from_row(row: Mapping[str, object]) -> ConfirmedLogEntry:
    """Map a ``nutrition_logs`` row to a confirmed entry."""
    source = row.get("source")
    saturated = row.get("saturated_fat")
    confidence = row.get("confidence")
    serving = row.get("serving_grams")
    return ConfirmedLogEntry(
        id=str(row["id"]),
        name=str(row.get("food_name") or row.get("name") or ""),
        nutrition=NutrientProfile(
            calories=clean_amount(row.get("calories")),
            protein=clean_amount(row.get("protein")),
            carbs=clean_amount(row.get("carbs")),
            fat=clean_amount(row.get("fat")),
            fiber=clean_amount(row.get("fiber")),
            sugar=clean_amount(row.get("sugar")),
            sodium=clean_amount(row.get("sodium")),
            saturated_fat=None if saturated is None else clean_amount(saturated),
        ).sanitized(),
        source=source if source in _LOG_SOURCES else "manual",
        logged_at=parse_timestamp(row.get("created_at")) or _utcnow(),
        confidence=None if confidence is None else clean_amount(confidence),
        serving_grams=None if serving is None else clean_amount(serving),
        image_url=row.get("image_url"),
        barcode=row.get("barcode"),
    )


def hydration_from_row(row: Mapping[str, object]) -> HydrationEntry:
    """Map a ``hydration_logs`` row."""
    return HydrationEntry(
        id=str(row["id"]),
        name=str(row.get("name") or ""),
        volume_ml=clean_amount(row.get("volume")),
        drink_type=str(row.get("type") or "water"),
        logged_at=parse_timestamp(row.get("created_at")) or _utcnow(),
        image_url=row.get("image_url"),
    )


def supplement_from_row(row: Mapping[str, object]) -> SupplementEntry:
    """Map a ``supplement_logs`` row."""
    return SupplementEntry(
        id=str(row["id"]),
        name=str(row.get("name") or ""),
        dosage=clean_amount(row.get("dosage")),
        unit=str(row.get("unit") or ""),
        logged_at=parse_timestamp(row.get("created_at")) or _utcnow(),
        frequency=row.get("frequency"),
        image_url=row.get("image_url"),
    )


def compute_totals(
    foods: Iterable[ConfirmedLogEntry],
    hydration: Iterable[HydrationEntry],
    supplements: Iterable[SupplementEntry],
) -> DailyTotals:
    """Sum every entry of the day."""
    nutrition = NutrientProfile(saturated_fat=0.0)
    for entry in foods:
        nutrition = nutrition.plus(entry.nutrition.sanitized())
    return DailyTotals(
        calories=nutrition.calories,
        protein=nutrition.protein,
        carbs=nutrition.carbs,
        fat=nutrition.fat,
        fiber=nutrition.fiber,
        sugar=nutrition.sugar,
        sodium=nutrition.sodium,
        saturated_fat=nutrition.saturated_fat or 0.0,
        hydration_ml=sum(entry.volume_ml for entry in hydration),
        supplement_count=sum(1 for _ in supplements),
    )


@dataclass
class LocalWriteTracker:
    """Remembers ids written from this client for a short window."""

    window_seconds: float = 10.0
    clock: Callable[[], datetime] = _utcnow
    _written: dict[str, datetime] = field(default_factory=dict, init=False)

    def record(self, entry_id: str) -> None:
        self._prune()
        self._written[entry_id] = self.clock()

    def is_recent(self, entry_id: str) -> bool:
        """Whether the id was written locally within the window."""
        self._prune()
        return entry_id in self._written

    def _prune(self) -> None:
        cutoff = self.clock() - timedelta(seconds=self.window_seconds)
        for entry_id, written_at in list(self._written.items()):
            if written_at < cutoff:
                del self._written[entry_id]


@dataclass
class DayAggregator:
    """Owns the displayed day's entries; totals are always recomputed."""

    tz: ZoneInfo
    writes: LocalWriteTracker = field(default_factory=LocalWriteTracker)
    clock: Callable[[], datetime] = _utcnow
    _aggregate: DailyAggregate | None = field(default=None, init=False)

    @property
    def aggregate(self) -> DailyAggregate:
        if self._aggregate is None:
            self._aggregate = DailyAggregate(day=self.today())
        return self._aggregate

    @property
    def day(self) -> date:
        return self.aggregate.day

    def today(self) -> date:
        return self.clock().astimezone(self.tz).date()

    def local_day(self, moment: datetime) -> date:
        """Calendar day of a timestamp in the configured timezone."""
        return moment.astimezone(self.tz).date()

    def day_bounds(self, day: date | None = None) -> tuple[datetime, datetime]:
        """Return UTC start and end of a local calendar day."""
        day = day or self.today()
        start = datetime(day.year, day.month, day.day, tzinfo=self.tz)
        end = start + timedelta(days=1)
        return start.astimezone(UTC), end.astimezone(UTC)

    def load(self, day: date, entries: DayEntries) -> DailyAggregate:
        """Replace the displayed day with freshly loaded entries."""
        self._aggregate = self._rebuild(
            DailyAggregate(day=day),
            foods=tuple(entries.foods),
            hydration=tuple(entries.hydration),
            supplements=tuple(entries.supplements),
        )
        return self._aggregate

    def record_local_write(self, entry_id: str) -> None:
        self.writes.record(entry_id)

    def add_food(self, entry: ConfirmedLogEntry) -> bool:
        """Mirror a confirmed food entry; False if it is not for this day."""
        if not self._accepts(entry.id, entry.logged_at):
            return False
        self._aggregate = self._rebuild(
            self.aggregate, foods=(*self.aggregate.foods, entry)
        )
        return True

    def add_hydration(self, entry: HydrationEntry) -> bool:
        if not self._accepts(entry.id, entry.logged_at):
            return False
        self._aggregate = self._rebuild(
            self.aggregate, hydration=(*self.aggregate.hydration, entry)
        )
        return True

    def add_supplement(self, entry: SupplementEntry) -> bool:
        if not self._accepts(entry.id, entry.logged_at):
            return False
        self._aggregate = self._rebuild(
            self.aggregate, supplements=(*self.aggregate.supplements, entry)
        )
        return True

    def remove_food(self, entry_id: str) -> bool:
        """Drop a food entry locally; False when it was not displayed."""
        foods = tuple(entry for entry in self.aggregate.foods if entry.id != entry_id)
        if len(foods) == len(self.aggregate.foods):
            return False
        self._aggregate = self._rebuild(self.aggregate, foods=foods)
        return True

    def apply_change(self, event: ChangeEvent) -> bool:
        """Merge a pushed insert; returns True when the day changed."""
        if self.local_day(event.created_at) != self.day:
            _logger.debug("Change %s discarded: other day", event.id)
            return False
        if self.writes.is_recent(event.id):
            _logger.debug("Change %s discarded: local write echo", event.id)
            return False
        if self._contains(event.id):
            _logger.debug("Change %s discarded: already present", event.id)
            return False

        row = {**event.payload, "id": event.id}
        row.setdefault("created_at", event.created_at.isoformat())
        if event.table == FOOD_TABLE:
            return self.add_food(food_from_row(row))
        if event.table == HYDRATION_TABLE:
            return self.add_hydration(hydration_from_row(row))
        if event.table == SUPPLEMENT_TABLE:
            return self.add_supplement(supplement_from_row(row))
        _logger.warning("Change %s from unknown table %s", event.id, event.table)
        return False

    def _accepts(self, entry_id: str, logged_at: datetime) -> bool:
        return self.local_day(logged_at) == self.day and not self._contains(entry_id)

    def _contains(self, entry_id: str) -> bool:
        aggregate = self.aggregate
        entries = (*aggregate.foods, *aggregate.hydration, *aggregate.supplements)
        return any(entry.id == entry_id for entry in entries)

    @staticmethod
    def _rebuild(aggregate: DailyAggregate, **changes: tuple) -> DailyAggregate:
        updated = replace(aggregate, **changes)
        return replace(
            updated,
            totals=compute_totals(
                updated.foods, updated.hydration, updated.supplements
            ),
        )

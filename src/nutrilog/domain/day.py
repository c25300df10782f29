"""Domain models for the displayed day and its change feed."""

from dataclasses import dataclass, field
from datetime import date, datetime

from nutrilog.domain.entries import ConfirmedLogEntry, HydrationEntry, SupplementEntry


@dataclass(frozen=True)
class DailyTotals:
    """Totals derived from a day's confirmed entries."""

    calories: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0
    fiber: float = 0.0
    sugar: float = 0.0
    sodium: float = 0.0
    saturated_fat: float = 0.0
    hydration_ml: float = 0.0
    supplement_count: int = 0


@dataclass(frozen=True)
class DailyAggregate:
    """Entries and totals for one calendar day."""

    day: date
    foods: tuple[ConfirmedLogEntry, ...] = ()
    hydration: tuple[HydrationEntry, ...] = ()
    supplements: tuple[SupplementEntry, ...] = ()
    totals: DailyTotals = field(default_factory=DailyTotals)


@dataclass(frozen=True)
class DayEntries:
    """Raw entries loaded for a day from persistence."""

    foods: list[ConfirmedLogEntry] = field(default_factory=list)
    hydration: list[HydrationEntry] = field(default_factory=list)
    supplements: list[SupplementEntry] = field(default_factory=list)


@dataclass(frozen=True)
class ChangeEvent:
    """Insert notification pushed by the persistence change feed."""

    id: str
    table: str
    payload: dict[str, object]
    created_at: datetime

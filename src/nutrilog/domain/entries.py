"""Domain models for queued and confirmed log entries."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Literal

from nutrilog.domain.candidates import CandidateItem
from nutrilog.domain.nutrition import NutrientProfile, ResolvedNutrition

LogSource = Literal["photo", "voice", "manual", "barcode"]


class EntryStatus(StrEnum):
    """Preparation status of a queued entry."""

    PENDING = "pending"
    READY = "ready"
    MANUAL = "manual"


@dataclass(frozen=True)
class DuplicateAdvisory:
    """Non-blocking notice that nutrition matches an earlier item."""

    fingerprint: tuple[float, float, float, float]
    previous_name: str
    current_name: str


@dataclass(frozen=True)
class NormalizedFoodEntry:
    """Candidate after resolution and serving normalization."""

    candidate: CandidateItem
    display_name: str
    status: EntryStatus = EntryStatus.PENDING
    resolved: ResolvedNutrition | None = None
    macros: NutrientProfile | None = None
    serving_grams: float | None = None
    serving_debug_info: dict[str, object] = field(default_factory=dict)
    enrichment_pending: bool = False
    advisory: DuplicateAdvisory | None = None
    issue: str | None = None

    @property
    def is_ready(self) -> bool:
        """Whether the entry can be shown for confirmation."""
        return self.status is not EntryStatus.PENDING

    @property
    def name(self) -> str:
        return self.display_name


@dataclass(frozen=True)
class ConfirmedLogEntry:
    """Persisted food log entry; never mutated after writing."""

    id: str
    name: str
    nutrition: NutrientProfile
    source: LogSource
    logged_at: datetime
    confidence: float | None = None
    serving_grams: float | None = None
    image_url: str | None = None
    barcode: str | None = None


@dataclass(frozen=True)
class HydrationEntry:
    """Logged drink."""

    id: str
    name: str
    volume_ml: float
    drink_type: str
    logged_at: datetime
    image_url: str | None = None


@dataclass(frozen=True)
class SupplementEntry:
    """Logged supplement dose."""

    id: str
    name: str
    dosage: float
    unit: str
    logged_at: datetime
    frequency: str | None = None
    image_url: str | None = None


@dataclass(frozen=True)
class FoodLogDraft:
    """Validated food entry ready to be written."""

    name: str
    nutrition: NutrientProfile
    source: LogSource
    logged_at: datetime
    confidence: float | None = None
    serving_grams: float | None = None
    image_url: str | None = None
    barcode: str | None = None

"""Pydantic models for the logging API."""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from nutrilog.domain.candidates import SourceChannel
from nutrilog.domain.day import DailyAggregate
from nutrilog.domain.entries import ConfirmedLogEntry, NormalizedFoodEntry
from nutrilog.domain.nutrition import NutrientProfile
from nutrilog.services.confirmation import ConfirmationSnapshot


class NutritionPayload(BaseModel):
    """Nutrition values for one portion."""

    calories: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0
    fiber: float = 0.0
    sugar: float = 0.0
    sodium: float = 0.0
    saturated_fat: float | None = None

    def to_profile(self) -> NutrientProfile:
        return NutrientProfile(**self.model_dump())

    @classmethod
    def from_profile(cls, profile: NutrientProfile) -> "NutritionPayload":
        return cls(**profile.as_dict())


class RecognizedItemsRequest(BaseModel):
    """Candidates from one recognition channel."""

    source: SourceChannel
    items: list[dict[str, Any]]
    wait: bool = True


class ConfirmRequest(BaseModel):
    """Optional edits applied to the current item before saving."""

    name: str | None = None
    nutrition: NutritionPayload | None = None


class HydrationRequest(BaseModel):
    name: str = "Water"
    volume_ml: float = Field(gt=0)
    drink_type: str = "water"
    image_url: str | None = None


class SupplementRequest(BaseModel):
    name: str = Field(min_length=1)
    dosage: float = Field(ge=0)
    unit: str
    frequency: str | None = None
    image_url: str | None = None


class QueueItemView(BaseModel):
    """Queued item as shown on the review or confirm overlay."""

    name: str
    status: str
    source_channel: str
    nutrition: NutritionPayload | None
    serving_grams: float | None
    source_label: str | None
    confidence: float | None
    decision_reason: str | None
    enrichment_pending: bool
    advisory: str | None
    issue: str | None

    @classmethod
    def from_entry(cls, entry: NormalizedFoodEntry) -> "QueueItemView":
        resolved = entry.resolved
        advisory = (
            f"Same nutrition as {entry.advisory.previous_name}"
            if entry.advisory is not None
            else None
        )
        return cls(
            name=entry.display_name,
            status=entry.status.value,
            source_channel=entry.candidate.source_channel,
            nutrition=(
                NutritionPayload.from_profile(entry.macros)
                if entry.macros is not None
                else None
            ),
            serving_grams=entry.serving_grams,
            source_label=resolved.source_label if resolved else None,
            confidence=resolved.confidence if resolved else None,
            decision_reason=resolved.decision_reason if resolved else None,
            enrichment_pending=entry.enrichment_pending,
            advisory=advisory,
            issue=entry.issue,
        )


class IssueView(BaseModel):
    kind: str
    message: str
    item_name: str | None
    retryable: bool
    manual_entry: bool


class StateView(BaseModel):
    """Read-only view of the confirmation flow."""

    state: str
    overlay: str | None
    current_index: int
    processing: bool
    current_item: QueueItemView | None
    pending_queue: list[QueueItemView]
    issues: list[IssueView]

    @classmethod
    def from_snapshot(cls, snapshot: ConfirmationSnapshot) -> "StateView":
        current = snapshot.current_item
        return cls(
            state=snapshot.state.value,
            overlay=snapshot.overlay.value if snapshot.overlay else None,
            current_index=snapshot.current_index,
            processing=snapshot.processing,
            current_item=QueueItemView.from_entry(current) if current else None,
            pending_queue=[
                QueueItemView.from_entry(entry) for entry in snapshot.pending_queue
            ],
            issues=[
                IssueView(
                    kind=issue.kind,
                    message=issue.message,
                    item_name=issue.item_name,
                    retryable=issue.retryable,
                    manual_entry=issue.manual_entry,
                )
                for issue in snapshot.issues
            ],
        )


class FoodEntryView(BaseModel):
    id: str
    name: str
    source: str
    logged_at: datetime
    nutrition: NutritionPayload
    confidence: float | None = None
    serving_grams: float | None = None

    @classmethod
    def from_entry(cls, entry: ConfirmedLogEntry) -> "FoodEntryView":
        return cls(
            id=entry.id,
            name=entry.name,
            source=entry.source,
            logged_at=entry.logged_at,
            nutrition=NutritionPayload.from_profile(entry.nutrition),
            confidence=entry.confidence,
            serving_grams=entry.serving_grams,
        )


class ConfirmResponse(BaseModel):
    entry: FoodEntryView | None
    state: StateView


class DayView(BaseModel):
    """Entries and totals for the displayed day."""

    day: date
    foods: list[FoodEntryView]
    hydration_ml: float
    supplement_count: int
    totals: NutritionPayload

    @classmethod
    def from_aggregate(cls, aggregate: DailyAggregate) -> "DayView":
        totals = aggregate.totals
        return cls(
            day=aggregate.day,
            foods=[FoodEntryView.from_entry(entry) for entry in aggregate.foods],
            hydration_ml=totals.hydration_ml,
            supplement_count=totals.supplement_count,
            totals=NutritionPayload(
                calories=totals.calories,
                protein=totals.protein,
                carbs=totals.carbs,
                fat=totals.fat,
                fiber=totals.fiber,
                sugar=totals.sugar,
                sodium=totals.sodium,
                saturated_fat=totals.saturated_fat,
            ),
        )

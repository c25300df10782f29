"""Supabase repository for daily log entries."""

from dataclasses import dataclass
from datetime import datetime

from supabase import Client

from nutrilog.domain.day import DayEntries
from nutrilog.domain.entries import FoodLogDraft
from nutrilog.services.day import (
    FOOD_TABLE,
    HYDRATION_TABLE,
    SUPPLEMENT_TABLE,
    food_from_row,
    hydration_from_row,
    supplement_from_row,
)
from nutrilog.services.food_log import FoodLogRepository


@dataclass
class SupabaseFoodLogRepository(FoodLogRepository):
    """Supabase implementation for food, hydration and supplement logs."""

    client: Client

    def save_food(self, user_id: str, draft: FoodLogDraft) -> str | None:
        """Insert a nutrition log row and return its id."""
        nutrition = draft.nutrition.sanitized()
        return self._insert(
            FOOD_TABLE,
            {
                "user_id": user_id,
                "food_name": draft.name,
                "calories": nutrition.calories,
                "protein": nutrition.protein,
                "carbs": nutrition.carbs,
                "fat": nutrition.fat,
                "fiber": nutrition.fiber,
                "sugar": nutrition.sugar,
                "sodium": nutrition.sodium,
                "saturated_fat": nutrition.saturated_fat,
                "confidence": draft.confidence,
                "serving_grams": draft.serving_grams,
                "source": draft.source,
                "barcode": draft.barcode,
                "image_url": draft.image_url,
                "created_at": draft.logged_at.isoformat(),
            },
        )

    def save_hydration(  # noqa: PLR0913
        self,
        user_id: str,
        name: str,
        volume_ml: float,
        drink_type: str,
        logged_at: datetime,
        image_url: str | None = None,
    ) -> str | None:
        """Insert a hydration log row and return its id."""
        return self._insert(
            HYDRATION_TABLE,
            {
                "user_id": user_id,
                "name": name,
                "volume": volume_ml,
                "type": drink_type,
                "image_url": image_url,
                "created_at": logged_at.isoformat(),
            },
        )

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
        """Insert a supplement log row and return its id."""
        return self._insert(
            SUPPLEMENT_TABLE,
            {
                "user_id": user_id,
                "name": name,
                "dosage": dosage,
                "unit": unit,
                "frequency": frequency,
                "image_url": image_url,
                "created_at": logged_at.isoformat(),
            },
        )

    def remove_food(self, user_id: str, food_id: str) -> None:
        """Delete a nutrition log row owned by the user."""
        self.client.table(FOOD_TABLE).delete().eq("id", food_id).eq(
            "user_id", user_id
        ).execute()

    def list_day(self, user_id: str, start: datetime, end: datetime) -> DayEntries:
        """Return every entry created in the time range."""
        return DayEntries(
            foods=[
                food_from_row(row)
                for row in self._select(FOOD_TABLE, user_id, start, end)
            ],
            hydration=[
                hydration_from_row(row)
                for row in self._select(HYDRATION_TABLE, user_id, start, end)
            ],
            supplements=[
                supplement_from_row(row)
                for row in self._select(SUPPLEMENT_TABLE, user_id, start, end)
            ],
        )

    def _insert(self, table: str, payload: dict[str, object]) -> str | None:
        response = self.client.table(table).insert(payload).execute()
        if not response.data:
            return None
        return str(response.data[0]["id"])

    def _select(
        self, table: str, user_id: str, start: datetime, end: datetime
    ) -> list[dict[str, object]]:
        response = (
            self.client.table(table)
            .select("*")
            .eq("user_id", user_id)
            .gte("created_at", start.isoformat())
            .lt("created_at", end.isoformat())
            .order("created_at", desc=False)
            .execute()
        )
        return response.data or []

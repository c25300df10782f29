"""Nutrition domain models."""

import math
from dataclasses import dataclass, field

MACRO_FIELDS = ("calories", "protein", "carbs", "fat", "fiber", "sugar", "sodium")
SATURATED_FAT_SHARE = 0.3


def clean_amount(value: object) -> float:
    """Coerce a nutrient amount to a finite, non-negative float."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return 0.0
    if not isinstance(value, int | float):
        return 0.0
    amount = float(value)
    if not math.isfinite(amount) or amount < 0:
        return 0.0
    return amount


@dataclass(frozen=True)
class NutrientProfile:
    """Macro and micro amounts for a portion or a reference basis.

    Energy is in kcal, sodium in mg, everything else in grams.
    """

    calories: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0
    fiber: float = 0.0
    sugar: float = 0.0
    sodium: float = 0.0
    saturated_fat: float | None = None

    @classmethod
    def from_mapping(cls, data: dict[str, object] | None) -> "NutrientProfile":
        """Build a profile from loosely-keyed provider data."""
        data = data or {}

        def pick(*keys: str) -> object:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        saturated = pick("saturated_fat", "saturatedFat", "saturated_fat_g")
        return cls(
            calories=clean_amount(pick("calories", "kcal", "energy_kcal")),
            protein=clean_amount(pick("protein", "protein_g")),
            carbs=clean_amount(pick("carbs", "carbs_g", "carbohydrates")),
            fat=clean_amount(pick("fat", "fat_g")),
            fiber=clean_amount(pick("fiber", "fiber_g")),
            sugar=clean_amount(pick("sugar", "sugar_g", "sugars")),
            sodium=clean_amount(pick("sodium", "sodium_mg")),
            saturated_fat=None if saturated is None else clean_amount(saturated),
        )

    def sanitized(self) -> "NutrientProfile":
        """Return a copy with every field floored at zero and saturated fat set."""
        fat = clean_amount(self.fat)
        saturated = (
            fat * SATURATED_FAT_SHARE
            if self.saturated_fat is None
            else clean_amount(self.saturated_fat)
        )
        return NutrientProfile(
            calories=clean_amount(self.calories),
            protein=clean_amount(self.protein),
            carbs=clean_amount(self.carbs),
            fat=fat,
            fiber=clean_amount(self.fiber),
            sugar=clean_amount(self.sugar),
            sodium=clean_amount(self.sodium),
            saturated_fat=saturated,
        )

    def scaled(self, factor: float) -> "NutrientProfile":
        """Scale every field by one factor."""
        saturated = None if self.saturated_fat is None else self.saturated_fat * factor
        return NutrientProfile(
            calories=self.calories * factor,
            protein=self.protein * factor,
            carbs=self.carbs * factor,
            fat=self.fat * factor,
            fiber=self.fiber * factor,
            sugar=self.sugar * factor,
            sodium=self.sodium * factor,
            saturated_fat=saturated,
        )

    def rounded(self) -> "NutrientProfile":
        """Round for display: whole kcal and mg sodium, one decimal elsewhere."""
        clean = self.sanitized()
        return NutrientProfile(
            calories=float(round(clean.calories)),
            protein=round(clean.protein, 1),
            carbs=round(clean.carbs, 1),
            fat=round(clean.fat, 1),
            fiber=round(clean.fiber, 1),
            sugar=round(clean.sugar, 1),
            sodium=float(round(clean.sodium)),
            saturated_fat=round(clean.saturated_fat or 0.0, 1),
        )

    def plus(self, other: "NutrientProfile") -> "NutrientProfile":
        """Add two profiles field by field."""
        return NutrientProfile(
            calories=self.calories + other.calories,
            protein=self.protein + other.protein,
            carbs=self.carbs + other.carbs,
            fat=self.fat + other.fat,
            fiber=self.fiber + other.fiber,
            sugar=self.sugar + other.sugar,
            sodium=self.sodium + other.sodium,
            saturated_fat=(self.saturated_fat or 0.0) + (other.saturated_fat or 0.0),
        )

    def as_dict(self) -> dict[str, float]:
        """Return the profile as a plain dict."""
        clean = self.sanitized()
        return {
            "calories": clean.calories,
            "protein": clean.protein,
            "carbs": clean.carbs,
            "fat": clean.fat,
            "fiber": clean.fiber,
            "sugar": clean.sugar,
            "sodium": clean.sodium,
            "saturated_fat": clean.saturated_fat or 0.0,
        }


@dataclass(frozen=True)
class BrandedMatch:
    """Result of a branded product lookup."""

    found: bool
    confidence: float
    nutrition: NutrientProfile | None = None
    product_name: str | None = None
    brand_name: str | None = None
    product_id: str | None = None
    serving_grams: float | None = None
    match_method: str = "none"


@dataclass(frozen=True)
class GenericEstimate:
    """Model-based nutrition estimate for a food name, per 100 g."""

    nutrition: NutrientProfile
    confidence: float
    typical_serving_grams: float | None = None


@dataclass(frozen=True)
class BarcodeProduct:
    """Product record returned by a barcode lookup."""

    barcode: str
    name: str
    brand_name: str | None
    nutrition: NutrientProfile
    serving_grams: float | None
    ingredients: list[str] = field(default_factory=list)
    image_url: str | None = None


@dataclass(frozen=True)
class ResolvedNutrition:
    """Authoritative nutrition for one item after arbitration.

    Amounts are per ``basis_grams``; ``serving_grams`` is the declared
    serving of the chosen source, if it has one.
    """

    calories: float
    protein: float
    carbs: float
    fat: float
    fiber: float
    sugar: float
    sodium: float
    saturated_fat: float
    source_label: str
    confidence: float
    decision_reason: str
    basis_grams: float = 100.0
    serving_grams: float | None = None

    @classmethod
    def build(  # noqa: PLR0913
        cls,
        nutrition: NutrientProfile,
        *,
        source_label: str,
        confidence: float,
        decision_reason: str,
        basis_grams: float = 100.0,
        serving_grams: float | None = None,
    ) -> "ResolvedNutrition":
        """Create a resolved record with sanitized amounts."""
        clean = nutrition.sanitized()
        return cls(
            calories=clean.calories,
            protein=clean.protein,
            carbs=clean.carbs,
            fat=clean.fat,
            fiber=clean.fiber,
            sugar=clean.sugar,
            sodium=clean.sodium,
            saturated_fat=clean.saturated_fat or 0.0,
            source_label=source_label,
            confidence=min(max(clean_amount(confidence), 0.0), 1.0),
            decision_reason=decision_reason,
            basis_grams=basis_grams if basis_grams > 0 else 100.0,
            serving_grams=(
                serving_grams if serving_grams and serving_grams > 0 else None
            ),
        )

    @property
    def profile(self) -> NutrientProfile:
        """Return the amounts as a nutrient profile."""
        return NutrientProfile(
            calories=self.calories,
            protein=self.protein,
            carbs=self.carbs,
            fat=self.fat,
            fiber=self.fiber,
            sugar=self.sugar,
            sodium=self.sodium,
            saturated_fat=self.saturated_fat,
        )

"""Generic nutrition estimates from a language model."""

import logging
from dataclasses import dataclass
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nutrilog.domain.errors import ResolutionError
from nutrilog.domain.nutrition import GenericEstimate, NutrientProfile

_logger = logging.getLogger(__name__)

_NUMBER = {"type": "number", "minimum": 0}

ESTIMATE_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "calories": _NUMBER,
        "protein": _NUMBER,
        "carbs": _NUMBER,
        "fat": _NUMBER,
        "fiber": _NUMBER,
        "sugar": _NUMBER,
        "sodium_mg": _NUMBER,
        "confidence": {"type": "number", "minimum": 0, "maximum": 100},
        "typical_serving_grams": {
            "anyOf": [{"type": "number", "minimum": 0}, {"type": "null"}]
        },
    },
    "required": [
        "calories",
        "protein",
        "carbs",
        "fat",
        "fiber",
        "sugar",
        "sodium_mg",
        "confidence",
        "typical_serving_grams",
    ],
    "additionalProperties": False,
}


class EstimateExtract(BaseModel):
    """Structured model output, per 100 g."""

    model_config = ConfigDict(extra="ignore")

    calories: float = Field(ge=0)
    protein: float = Field(ge=0)
    carbs: float = Field(ge=0)
    fat: float = Field(ge=0)
    fiber: float = Field(default=0.0, ge=0)
    sugar: float = Field(default=0.0, ge=0)
    sodium_mg: float = Field(default=0.0, ge=0)
    confidence: float = Field(ge=0, le=100)
    typical_serving_grams: float | None = Field(default=None, ge=0)


class EstimateClient(Protocol):
    """Interface for structured text completions."""

    async def complete(
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        schema: dict[str, object],
        prompt: str,
    ) -> dict[str, object]:
        """Return structured estimate data."""


@dataclass
class GenericEstimateService:
    """Service that prompts for an estimate and validates the result."""

    client: EstimateClient
    model: str
    reasoning_effort: str | None
    store: bool

    async def estimate(self, name: str) -> GenericEstimate:
        """Estimate per-100 g nutrition for a food described by name."""
        if not name.strip():
            raise ResolutionError("Cannot estimate nutrition without a food name")
        prompt = (
            f"Estimate the nutrition of '{name.strip()}' per 100 grams as eaten. "
            "Return calories (kcal), protein, carbs, fat, fiber and sugar in grams, "
            "sodium in milligrams, your confidence from 0 to 100, "
            "and a typical single serving in grams if one is common."
        )
        raw = await self.client.complete(
            model=self.model,
            reasoning_effort=self.reasoning_effort,
            store=self.store,
            schema=ESTIMATE_SCHEMA,
            prompt=prompt,
        )
        try:
            extract = EstimateExtract.model_validate(raw)
        except ValidationError as exc:
            _logger.warning("Invalid estimate for %r: %s", name, exc)
            raise ResolutionError(f"Invalid estimate for {name!r}") from exc
        if extract.calories == 0 and extract.protein == 0 and extract.carbs == 0:
            raise ResolutionError(f"Empty estimate for {name!r}")
        return GenericEstimate(
            nutrition=NutrientProfile(
                calories=extract.calories,
                protein=extract.protein,
                carbs=extract.carbs,
                fat=extract.fat,
                fiber=extract.fiber,
                sugar=extract.sugar,
                sodium=extract.sodium_mg,
            ),
            confidence=extract.confidence,
            typical_serving_grams=extract.typical_serving_grams or None,
        )

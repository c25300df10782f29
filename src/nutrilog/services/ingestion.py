"""Routing of recognized food candidates into the confirmation flow."""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Literal, get_args

from nutrilog.domain.candidates import (
    BYPASS_HYDRATION_CHANNELS,
    MANUAL_TEXT_CHANNELS,
    CandidateItem,
    SourceChannel,
)
from nutrilog.domain.nutrition import MACRO_FIELDS, NutrientProfile, clean_amount

_logger = logging.getLogger(__name__)

RouteMode = Literal["single", "multi"]

_CHANNELS = frozenset(get_args(SourceChannel))


@dataclass(frozen=True)
class RouteDecision:
    """Outcome of routing a batch of candidates."""

    mode: RouteMode | None
    candidates: tuple[CandidateItem, ...] = ()
    force_confirm: bool = False
    bypass_hydration: bool = False
    blocked: bool = False
    reason: str = ""
    skeleton_indexes: frozenset[int] = field(default_factory=frozenset)


def _pick(raw: Mapping[str, object], *keys: str) -> object:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _ingredients(value: object) -> list[str] | None:
    """Accept a list or comma-separated text; None when absent."""
    if value is None:
        return None
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, Iterable):
        return [str(part).strip() for part in value if str(part).strip()]
    return None


def _confidence(value: object) -> float | None:
    if value is None:
        return None
    amount = clean_amount(value)
    if amount > 1:
        amount /= 100
    return min(amount, 1.0)


def _hints(raw: Mapping[str, object]) -> dict[str, float] | None:
    nested = _pick(raw, "raw_nutrition_hints", "nutrition", "nutritionData")
    source = nested if isinstance(nested, Mapping) else raw
    if not any(source.get(key) is not None for key in MACRO_FIELDS):
        return None
    profile = NutrientProfile.from_mapping(dict(source))
    return profile.as_dict()


def normalize_candidate(
    raw: CandidateItem | Mapping[str, object],
    source_hint: SourceChannel,
) -> CandidateItem:
    """Coerce one recognizer payload into a ``CandidateItem``."""
    if isinstance(raw, CandidateItem):
        return raw

    name = _pick(raw, "name", "displayName", "productName", "title", "canonicalName")
    name = str(name).strip() if name is not None else ""
    channel = _pick(raw, "source_channel", "source")
    if channel not in _CHANNELS:
        channel = source_hint

    is_generic = _pick(raw, "is_generic", "isGeneric")
    enrichment = _pick(raw, "enrichment_complete", "enrichmentComplete", "enriched")
    quantity = _pick(raw, "raw_quantity_text", "quantity", "amount")
    return CandidateItem(
        name=name,
        raw_quantity_text=str(quantity).strip() if quantity is not None else "",
        source_channel=channel,
        confidence=_confidence(raw.get("confidence")),
        raw_nutrition_hints=_hints(raw),
        barcode=_optional_text(_pick(raw, "barcode", "upc", "ean")),
        ocr_text=_optional_text(_pick(raw, "ocr_text", "ocrText")),
        image_url=_optional_text(_pick(raw, "image_url", "imageUrl", "image")),
        ingredients=_ingredients(
            _pick(
                raw,
                "ingredients",
                "ingredientList",
                "ingredients_list",
                "ingredientsText",
            )
        ),
        enrichment_complete=bool(enrichment) if enrichment is not None else False,
        is_generic=is_generic if isinstance(is_generic, bool) else None,
        unit_size=_optional_text(_pick(raw, "unit_size", "size")),
    )


class IngestionRouter:
    """Decides how a batch of recognized candidates enters confirmation."""

    def route(
        self,
        candidates: Iterable[CandidateItem | Mapping[str, object]],
        source_hint: SourceChannel,
    ) -> RouteDecision:
        """Normalize candidates and choose single or multi-item flow."""
        items = tuple(normalize_candidate(raw, source_hint) for raw in candidates)
        if not items:
            return RouteDecision(mode=None, blocked=True, reason="no-candidates")

        force_confirm = source_hint in MANUAL_TEXT_CHANNELS
        skeletons: frozenset[int] = frozenset()
        if force_confirm:
            skeletons = frozenset(
                index for index, item in enumerate(items) if not _is_enriched(item)
            )
        else:
            incomplete = [item.name for item in items if not _is_enriched(item)]
            if incomplete:
                _logger.info(
                    "Route blocked, enrichment incomplete for %s", ", ".join(incomplete)
                )
                return RouteDecision(
                    mode=None,
                    candidates=items,
                    blocked=True,
                    reason="enrichment-incomplete",
                )

        mode: RouteMode = "single" if len(items) == 1 else "multi"
        return RouteDecision(
            mode=mode,
            candidates=items,
            force_confirm=force_confirm,
            bypass_hydration=mode == "single"
            and source_hint in BYPASS_HYDRATION_CHANNELS,
            reason="forced" if force_confirm else "enriched",
            skeleton_indexes=skeletons,
        )


def _is_enriched(item: CandidateItem) -> bool:
    return item.enrichment_complete and item.ingredients is not None


def _optional_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None

"""Nutrition resolver arbitrating between branded and generic sources."""

import asyncio
import logging
import random
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, TypeVar

from nutrilog.domain.nutrition import (
    BrandedMatch,
    GenericEstimate,
    NutrientProfile,
    ResolvedNutrition,
)
from nutrilog.services.cache import Cache

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

_logger = logging.getLogger(__name__)

_T = TypeVar("_T")

SOURCE_BRANDED = "branded"
SOURCE_GENERIC = "generic"
SOURCE_FALLBACK = "hardcoded-fallback"

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_MIN_TOKEN_LENGTH = 2

# (low, high) inclusive ranges for the heuristic fallback.
_FALLBACK_RANGES: dict[str, tuple[int, int]] = {
    "calories": (100, 299),
    "protein": (5, 29),
    "carbs": (10, 39),
    "fat": (2, 16),
    "fiber": (1, 5),
    "sugar": (2, 11),
    "sodium": (50, 349),
}


class BrandedLookup(Protocol):
    """Interface for branded product matching."""

    async def match(
        self, name: str, ocr_text: str | None = None, barcode: str | None = None
    ) -> BrandedMatch:
        """Return the best branded match for a product description."""


class GenericEstimator(Protocol):
    """Interface for model-based nutrition estimates."""

    async def estimate(self, name: str) -> GenericEstimate:
        """Estimate nutrition per 100 g for a food name."""


@dataclass(frozen=True)
class ResolutionPolicy:
    """Confidence thresholds (0-100) used by the decision rules."""

    barcode_min_confidence: float = 95.0
    branded_only_min_confidence: float = 90.0
    generic_weak_max_confidence: float = 70.0
    strong_brand_min_confidence: float = 95.0
    fallback_confidence: float = 0.4


@dataclass(frozen=True)
class DecisionSignals:
    """Inputs of the source decision."""

    has_barcode: bool
    brand_found: bool
    brand_confidence: float
    generic_found: bool
    generic_confidence: float
    name_conflict: bool


@dataclass(frozen=True)
class SourceDecision:
    """Chosen source and the rule that chose it."""

    source: str
    reason: str


def decide_source(
    signals: DecisionSignals, policy: ResolutionPolicy | None = None
) -> SourceDecision:
    """Apply the ordered decision rules; the first matching rule wins."""
    policy = policy or ResolutionPolicy()
    if (
        signals.has_barcode
        and signals.brand_found
        and signals.brand_confidence >= policy.barcode_min_confidence
    ):
        return SourceDecision(SOURCE_BRANDED, "barcode-high-confidence")
    if signals.brand_found and signals.name_conflict:
        if signals.generic_found:
            return SourceDecision(SOURCE_GENERIC, "brand-name-conflict")
        return SourceDecision(SOURCE_FALLBACK, "brand-name-conflict-no-generic")
    if (
        not signals.generic_found
        and signals.brand_found
        and signals.brand_confidence >= policy.branded_only_min_confidence
    ):
        return SourceDecision(SOURCE_BRANDED, "generic-failed-brand-confident")
    if (
        signals.brand_found
        and signals.generic_found
        and signals.generic_confidence < policy.generic_weak_max_confidence
        and signals.brand_confidence >= policy.strong_brand_min_confidence
    ):
        return SourceDecision(SOURCE_BRANDED, "generic-weak-brand-strong")
    if signals.generic_found:
        return SourceDecision(SOURCE_GENERIC, "generic-default")
    if signals.brand_found:
        return SourceDecision(SOURCE_BRANDED, "branded-last-resort")
    return SourceDecision(SOURCE_FALLBACK, "no-source-fallback")


def names_conflict(query: str, product_name: str | None) -> bool:
    """True when a branded product name shares no token with the query."""
    if not product_name:
        return False
    query_tokens = _tokens(query)
    product_tokens = _tokens(product_name)
    if not query_tokens or not product_tokens:
        return False
    return query_tokens.isdisjoint(product_tokens)


@dataclass
class NutritionResolver:
    """Resolves one authoritative nutrition record per food item."""

    branded: BrandedLookup
    generic: GenericEstimator
    cache: Cache
    policy: ResolutionPolicy = field(default_factory=ResolutionPolicy)
    rng: random.Random = field(default_factory=random.Random)
    cache_ttl_seconds: int = 3600
    retry_attempts: int = 1
    retry_delay_seconds: float = 0.3

    async def resolve(
        self, name: str, ocr_text: str | None = None, barcode: str | None = None
    ) -> ResolvedNutrition:
        """Run both lookups concurrently and arbitrate between them."""
        cache_key = f"resolve:{name.strip().lower()}:{barcode or ''}"
        cached = self.cache.get(cache_key)
        if isinstance(cached, ResolvedNutrition):
            return cached

        branded_result, generic_result = await asyncio.gather(
            self._call_with_retry(
                lambda: self.branded.match(name, ocr_text=ocr_text, barcode=barcode),
                action="branded",
            ),
            self._call_with_retry(
                lambda: self.generic.estimate(name), action="generic"
            ),
            return_exceptions=True,
        )
        branded = _unwrap(branded_result, BrandedMatch, "branded", name)
        generic = _unwrap(generic_result, GenericEstimate, "generic", name)

        brand_found = bool(branded and branded.found and branded.nutrition)
        signals = DecisionSignals(
            has_barcode=bool(barcode and barcode.strip()),
            brand_found=brand_found,
            brand_confidence=branded.confidence if branded else 0.0,
            generic_found=generic is not None,
            generic_confidence=generic.confidence if generic else 0.0,
            name_conflict=brand_found and names_conflict(name, branded.product_name),
        )
        decision = decide_source(signals, self.policy)
        _logger.info(
            "Resolved %r via %s (%s)", name, decision.source, decision.reason
        )

        if decision.source == SOURCE_BRANDED and branded and branded.nutrition:
            resolved = ResolvedNutrition.build(
                branded.nutrition,
                source_label=SOURCE_BRANDED,
                confidence=branded.confidence / 100.0,
                decision_reason=decision.reason,
                serving_grams=branded.serving_grams,
            )
        elif decision.source == SOURCE_GENERIC and generic:
            resolved = ResolvedNutrition.build(
                generic.nutrition,
                source_label=SOURCE_GENERIC,
                confidence=generic.confidence / 100.0,
                decision_reason=decision.reason,
                serving_grams=generic.typical_serving_grams,
            )
        else:
            return self.fallback(decision.reason)

        self.cache.set(cache_key, resolved, ttl_seconds=self.cache_ttl_seconds)
        return resolved

    def fallback(self, reason: str = "no-source-fallback") -> ResolvedNutrition:
        """Heuristic macros used when no source produced data."""
        values = {
            key: float(self.rng.randint(low, high))
            for key, (low, high) in _FALLBACK_RANGES.items()
        }
        return ResolvedNutrition.build(
            NutrientProfile(**values),
            source_label=SOURCE_FALLBACK,
            confidence=self.policy.fallback_confidence,
            decision_reason=reason,
            basis_grams=100.0,
        )

    async def _call_with_retry(
        self, func: "Callable[[], Awaitable[object]]", *, action: str
    ) -> object:
        """Call an async function with a short retry."""
        attempt = 0
        while True:
            try:
                return await func()
            except Exception as exc:
                attempt += 1
                _logger.warning(
                    "Nutrition %s lookup failed (attempt %s/%s, status=%s): %s",
                    action,
                    attempt,
                    self.retry_attempts + 1,
                    _status_code_from_exception(exc),
                    exc,
                )
                if attempt > self.retry_attempts:
                    raise
                await asyncio.sleep(self.retry_delay_seconds)


def _unwrap(result: object, expected: type[_T], action: str, name: str) -> _T | None:
    if isinstance(result, asyncio.CancelledError):
        raise result
    if isinstance(result, BaseException):
        _logger.warning("Nutrition %s branch failed for %r: %s", action, name, result)
        return None
    if isinstance(result, expected):
        return result
    return None


def _status_code_from_exception(exc: Exception) -> str:
    """Extract HTTP status code from an exception, if available."""
    response = getattr(exc, "response", None)
    status_code = getattr(response, "status_code", None)
    if isinstance(status_code, int):
        return str(status_code)
    return "n/a"


def _tokens(text: str) -> set[str]:
    return {
        token
        for token in _TOKEN_RE.findall(text.lower())
        if len(token) >= _MIN_TOKEN_LENGTH
    }

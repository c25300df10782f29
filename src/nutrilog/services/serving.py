"""Serving normalization: free-text quantities to final per-item macros."""

import logging
import re
import string
from dataclasses import dataclass, field

from nutrilog.domain.entries import DuplicateAdvisory
from nutrilog.domain.nutrition import NutrientProfile

_logger = logging.getLogger(__name__)

DEFAULT_SERVING_GRAMS = 30.0

_WEIGHT_UNITS: dict[str, float] = {
    "g": 1.0,
    "gr": 1.0,
    "gram": 1.0,
    "kg": 1000.0,
    "kilogram": 1000.0,
    "oz": 28.35,
    "ounce": 28.35,
    "lb": 453.6,
    "pound": 453.6,
    "ml": 1.0,
    "milliliter": 1.0,
    "l": 1000.0,
    "liter": 1000.0,
    "litre": 1000.0,
}

_HOUSEHOLD_UNITS: dict[str, float] = {
    "cup": 240.0,
    "tbsp": 15.0,
    "tablespoon": 15.0,
    "tsp": 5.0,
    "teaspoon": 5.0,
    "slice": 30.0,
    "piece": 25.0,
    "bar": 40.0,
    "cookie": 30.0,
    "cracker": 10.0,
    "can": 355.0,
    "bottle": 500.0,
    "pack": 25.0,
    "sachet": 15.0,
}

_SERVING_UNITS = frozenset({"serving", "portion"})
_COUNT_UNITS = frozenset({"whole", "piece"})

_UNIT_ALIASES: dict[str, str] = {
    "grams": "gram",
    "lbs": "lb",
    "ounces": "ounce",
    "pounds": "pound",
    "cups": "cup",
    "tbsps": "tbsp",
    "tablespoons": "tablespoon",
    "tsps": "tsp",
    "teaspoons": "teaspoon",
    "slices": "slice",
    "pieces": "piece",
    "bars": "bar",
    "cookies": "cookie",
    "crackers": "cracker",
    "cans": "can",
    "bottles": "bottle",
    "packs": "pack",
    "sachets": "sachet",
    "servings": "serving",
    "portions": "portion",
    "kgs": "kg",
    "liters": "liter",
    "litres": "litre",
    "milliliters": "milliliter",
    "kilograms": "kilogram",
}

_NUMBER_WORDS: dict[str, float] = {
    "a": 1.0,
    "an": 1.0,
    "one": 1.0,
    "two": 2.0,
    "three": 3.0,
    "four": 4.0,
    "five": 5.0,
    "six": 6.0,
    "seven": 7.0,
    "eight": 8.0,
    "nine": 9.0,
    "ten": 10.0,
    "half": 0.5,
    "quarter": 0.25,
}

DOZEN = 12.0

SIZE_CLASSES = ("small", "medium", "large", "extra-large", "jumbo")
_SIZE_ALIASES = {"xl": "extra-large", "extra large": "extra-large", "big": "large"}


@dataclass(frozen=True)
class DiscreteUnit:
    """Per-unit nutrition for one size class of a countable food."""

    grams: float
    nutrition: NutrientProfile


@dataclass(frozen=True)
class DiscreteFood:
    """Countable food with per-unit values by size class."""

    singular: str
    plural: str
    default_size: str
    sizes: dict[str, DiscreteUnit]


DISCRETE_FOODS: dict[str, DiscreteFood] = {
    "egg": DiscreteFood(
        singular="Egg",
        plural="Eggs",
        default_size="large",
        sizes={
            "small": DiscreteUnit(
                38, NutrientProfile(54, 4.8, 0.3, 3.6, 0, 0.2, 54, 1.2)
            ),
            "medium": DiscreteUnit(
                44, NutrientProfile(63, 5.5, 0.3, 4.2, 0, 0.2, 62, 1.4)
            ),
            "large": DiscreteUnit(
                50, NutrientProfile(72, 6.3, 0.4, 4.8, 0, 0.2, 71, 1.6)
            ),
            "extra-large": DiscreteUnit(
                56, NutrientProfile(80, 7.0, 0.4, 5.3, 0, 0.2, 80, 1.8)
            ),
            "jumbo": DiscreteUnit(
                63, NutrientProfile(90, 7.9, 0.5, 6.0, 0, 0.2, 89, 2.0)
            ),
        },
    ),
    "banana": DiscreteFood(
        singular="Banana",
        plural="Bananas",
        default_size="medium",
        sizes={
            "small": DiscreteUnit(
                101, NutrientProfile(90, 1.1, 23.1, 0.3, 2.6, 12.4, 1, 0.1)
            ),
            "medium": DiscreteUnit(
                118, NutrientProfile(105, 1.3, 27.0, 0.4, 3.1, 14.4, 1, 0.1)
            ),
            "large": DiscreteUnit(
                136, NutrientProfile(121, 1.5, 31.1, 0.4, 3.5, 16.6, 1, 0.2)
            ),
        },
    ),
    "apple": DiscreteFood(
        singular="Apple",
        plural="Apples",
        default_size="medium",
        sizes={
            "small": DiscreteUnit(
                149, NutrientProfile(77, 0.4, 20.6, 0.3, 3.6, 15.5, 1, 0.0)
            ),
            "medium": DiscreteUnit(
                182, NutrientProfile(95, 0.5, 25.1, 0.3, 4.4, 18.9, 2, 0.1)
            ),
            "large": DiscreteUnit(
                223, NutrientProfile(116, 0.6, 30.8, 0.4, 5.4, 23.2, 2, 0.1)
            ),
        },
    ),
}

_CATEGORY_PORTIONS: tuple[tuple[re.Pattern[str], float], ...] = tuple(
    (re.compile(pattern), grams)
    for pattern, grams in (
        (r"juice|drink|soda|water|milk|tea|coffee", 240.0),
        (r"cereal|flakes|granola|muesli|oats", 30.0),
        (r"yogurt|yoghurt", 150.0),
        (r"chips|crackers|cookies|\bbar\b", 25.0),
        (r"peanut butter|butter|jam|nutella", 15.0),
        (r"apple|banana|orange|fruit", 150.0),
        (r"nuts|almonds|walnuts", 30.0),
        (r"rice|quinoa|pasta", 100.0),
        (r"vegetables|salad", 80.0),
    )
)

_FRACTION_RE = re.compile(r"(\d+)\s*/\s*(\d+)")
_TOKEN_RE = re.compile(r"\d+(?:\.\d+)?|[a-z]+(?:-[a-z]+)?")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class ParsedQuantity:
    """Structured reading of a free-text quantity."""

    amount: float | None
    unit: str | None
    size: str | None


@dataclass(frozen=True)
class ServingResult:
    """Final macros and presentation for one item."""

    final_macros: NutrientProfile
    title_text: str
    serving_grams: float | None
    debug_info: dict[str, object]
    advisory: DuplicateAdvisory | None = None


class NutritionFingerprints:
    """Session-scoped table of nutrition fingerprints seen so far."""

    def __init__(self) -> None:
        self._seen: dict[tuple[float, float, float, float], str] = {}

    def check(self, name: str, macros: NutrientProfile) -> DuplicateAdvisory | None:
        """Record an item; return an advisory when another name has the same values."""
        rounded = macros.rounded()
        fingerprint = (rounded.calories, rounded.protein, rounded.carbs, rounded.fat)
        previous = self._seen.get(fingerprint)
        if previous is None:
            self._seen[fingerprint] = name
            return None
        if _normalize_name(previous) == _normalize_name(name):
            return None
        _logger.info(
            "Duplicate nutrition fingerprint: %s matches earlier %s", name, previous
        )
        return DuplicateAdvisory(
            fingerprint=fingerprint, previous_name=previous, current_name=name
        )

    def reset(self) -> None:
        """Forget every fingerprint."""
        self._seen.clear()

    def __len__(self) -> int:
        return len(self._seen)


@dataclass
class ServingNormalizer:
    """Turns a quantity expression and base macros into final item macros."""

    fingerprints: NutritionFingerprints = field(default_factory=NutritionFingerprints)
    default_serving_grams: float = DEFAULT_SERVING_GRAMS

    def normalize(  # noqa: PLR0913
        self,
        name: str,
        quantity_text: str,
        base_macros: NutrientProfile,
        declared_serving: float | None = None,
        unit_size_override: str | None = None,
        basis_grams: float = 100.0,
    ) -> ServingResult:
        """Scale base macros to the described quantity."""
        canonical = _collapse(name)
        parsed = parse_quantity(quantity_text)
        size = _canonical_size(unit_size_override) or parsed.size
        discrete = _discrete_food(canonical)

        counted = parsed.unit is None or parsed.unit in _COUNT_UNITS
        if discrete is not None and counted:
            result = self._normalize_discrete(canonical, discrete, parsed, size)
        else:
            result = self._normalize_scaled(
                canonical,
                quantity_text,
                base_macros,
                parsed,
                declared_serving,
                basis_grams,
            )

        advisory = self.fingerprints.check(canonical, result.final_macros)
        if advisory is None:
            return result
        return ServingResult(
            final_macros=result.final_macros,
            title_text=result.title_text,
            serving_grams=result.serving_grams,
            debug_info=result.debug_info,
            advisory=advisory,
        )

    def as_given(
        self, name: str, quantity_text: str, macros: NutrientProfile
    ) -> ServingResult:
        """Present macros that already describe the eaten portion."""
        canonical = _collapse(name)
        final = macros.rounded()
        return ServingResult(
            final_macros=final,
            title_text=_build_title(quantity_text, canonical),
            serving_grams=None,
            debug_info={"method": "as-given"},
            advisory=self.fingerprints.check(canonical, final),
        )

    def reset_session(self) -> None:
        """Clear session-scoped state."""
        self.fingerprints.reset()

    def _normalize_discrete(
        self,
        name: str,
        food: DiscreteFood,
        parsed: ParsedQuantity,
        size: str | None,
    ) -> ServingResult:
        chosen_size = size if size in food.sizes else food.default_size
        unit = food.sizes[chosen_size]
        count = parsed.amount if parsed.amount and parsed.amount > 0 else 1.0
        macros = unit.nutrition.scaled(count).rounded()
        noun = food.singular if count == 1 else food.plural
        title = _collapse(
            f"{_format_amount(count)} {chosen_size.title()} {noun}"
        )
        return ServingResult(
            final_macros=macros,
            title_text=title,
            serving_grams=round(unit.grams * count, 1),
            debug_info={
                "method": "discrete-unit",
                "food": name,
                "size": chosen_size,
                "count": count,
                "unit_grams": unit.grams,
            },
        )

    def _normalize_scaled(  # noqa: PLR0913
        self,
        name: str,
        quantity_text: str,
        base_macros: NutrientProfile,
        parsed: ParsedQuantity,
        declared_serving: float | None,
        basis_grams: float,
    ) -> ServingResult:
        basis = basis_grams if basis_grams > 0 else 100.0
        grams, method = self._grams_for(name, parsed, declared_serving, basis)
        factor = grams / basis
        macros = base_macros.scaled(factor).rounded()
        return ServingResult(
            final_macros=macros,
            title_text=_build_title(quantity_text, name),
            serving_grams=round(grams, 1),
            debug_info={
                "method": method,
                "amount": parsed.amount,
                "unit": parsed.unit,
                "grams": round(grams, 2),
                "basis_grams": basis,
                "factor": round(factor, 4),
                "declared_serving": declared_serving,
            },
        )

    def _grams_for(
        self,
        name: str,
        parsed: ParsedQuantity,
        declared_serving: float | None,
        basis: float,
    ) -> tuple[float, str]:
        declared = (
            declared_serving if declared_serving and declared_serving > 0 else None
        )
        if parsed.unit in _WEIGHT_UNITS:
            amount = parsed.amount if parsed.amount is not None else 1.0
            return amount * _WEIGHT_UNITS[parsed.unit], "weight"
        if parsed.unit in _SERVING_UNITS:
            amount = parsed.amount if parsed.amount is not None else 1.0
            return amount * (declared or self.default_serving_grams), "servings"
        if parsed.unit in _HOUSEHOLD_UNITS:
            amount = parsed.amount if parsed.amount is not None else 1.0
            return amount * _HOUSEHOLD_UNITS[parsed.unit], "household"
        if parsed.amount is not None:
            per_unit = declared or category_portion(name)
            if per_unit is not None:
                return parsed.amount * per_unit, "count"
            return parsed.amount * basis, "count-of-basis"
        if declared is not None:
            return declared, "declared-serving"
        estimate = category_portion(name)
        if estimate is not None:
            return estimate, "category-estimate"
        return basis, "basis"


def parse_quantity(text: str | None) -> ParsedQuantity:
    """Read amount, unit and size class from a quantity expression."""
    if not text:
        return ParsedQuantity(amount=None, unit=None, size=None)
    cleaned = text.lower().strip()
    for alias, size in _SIZE_ALIASES.items():
        cleaned = re.sub(rf"\b{alias}\b", size, cleaned)
    cleaned = _FRACTION_RE.sub(
        lambda match: _fraction(match.group(1), match.group(2)), cleaned
    )
    tokens = _TOKEN_RE.findall(cleaned)

    amount: float | None = None
    unit: str | None = None
    size: str | None = None
    for token in tokens:
        if token == "dozen":
            amount = (amount or 1.0) * DOZEN
            continue
        number = _to_number(token)
        if number is not None:
            if amount is None:
                amount = number
            elif number < 1 and unit is None:
                amount += number
            continue
        if token in SIZE_CLASSES and size is None:
            size = token
            continue
        canonical_unit = _UNIT_ALIASES.get(token, token)
        if unit is None and (
            canonical_unit in _WEIGHT_UNITS
            or canonical_unit in _HOUSEHOLD_UNITS
            or canonical_unit in _SERVING_UNITS
            or canonical_unit == "whole"
        ):
            unit = canonical_unit
    return ParsedQuantity(amount=amount, unit=unit, size=size)


def category_portion(name: str) -> float | None:
    """Typical portion in grams for a food category, if one matches."""
    lowered = name.lower()
    for pattern, grams in _CATEGORY_PORTIONS:
        if pattern.search(lowered):
            return grams
    return None


def _discrete_food(name: str) -> DiscreteFood | None:
    tokens = re.findall(r"[a-z]+", name.lower())
    if not tokens:
        return None
    head = tokens[-1]
    for candidate in (head, head.removesuffix("es"), head.removesuffix("s")):
        if candidate in DISCRETE_FOODS:
            return DISCRETE_FOODS[candidate]
    return None


def _canonical_size(raw: str | None) -> str | None:
    if not raw:
        return None
    lowered = _collapse(raw.lower())
    lowered = _SIZE_ALIASES.get(lowered, lowered).replace(" ", "-")
    return lowered if lowered in SIZE_CLASSES else None


def _to_number(token: str) -> float | None:
    if token in _NUMBER_WORDS:
        return _NUMBER_WORDS[token]
    try:
        return float(token)
    except ValueError:
        return None


def _fraction(numerator: str, denominator: str) -> str:
    bottom = int(denominator)
    if bottom == 0:
        return numerator
    return f" {int(numerator) / bottom:g} "


def _build_title(quantity_text: str, name: str) -> str:
    # No food name, no title; confirmation requires one.
    if not name.strip():
        return ""
    quantity = _collapse(quantity_text or "")
    if not quantity or name.lower().startswith(quantity.lower()):
        return string.capwords(name)
    return string.capwords(f"{quantity} {name}")


def _format_amount(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _normalize_name(name: str) -> str:
    return _collapse(name.lower())

"""Tests for serving normalization."""

import pytest

from nutrilog.services.serving import (
    ServingNormalizer,
    category_portion,
    parse_quantity,
)
from tests.conftest import profile


def test_parse_quantity_reads_fractions_and_sizes() -> None:
    assert parse_quantity("1/2 cup").amount == 0.5
    assert parse_quantity("1/2 cup").unit == "cup"

    mixed = parse_quantity("1 1/2 cups")
    assert mixed.amount == 1.5
    assert mixed.unit == "cup"

    words = parse_quantity("a large")
    assert words.amount == 1.0
    assert words.size == "large"

    assert parse_quantity("").amount is None


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("a dozen", 12.0),
        ("one dozen", 12.0),
        ("dozen", 12.0),
        ("2 dozen", 24.0),
        ("half a dozen", 6.0),
    ],
)
def test_parse_quantity_multiplies_dozens(text: str, expected: float) -> None:
    assert parse_quantity(text).amount == expected


def test_dozen_eggs_counts_twelve_units() -> None:
    normalizer = ServingNormalizer()

    result = normalizer.normalize("eggs", "a dozen", profile(155, 13, 1.1, 11))

    assert result.title_text == "12 Large Eggs"
    assert result.debug_info["count"] == 12.0
    assert result.final_macros.calories == 864
    assert result.serving_grams == 600.0


def test_discrete_food_uses_size_class() -> None:
    normalizer = ServingNormalizer()

    result = normalizer.normalize("eggs", "2 large", profile(155, 13, 1.1, 11))

    assert result.title_text == "2 Large Eggs"
    assert result.final_macros.calories == 144
    assert result.final_macros.protein == 12.6
    assert result.serving_grams == 100.0
    assert result.debug_info["method"] == "discrete-unit"


def test_unit_size_override_beats_parsed_size() -> None:
    normalizer = ServingNormalizer()

    result = normalizer.normalize(
        "egg", "1 small", profile(155), unit_size_override="XL"
    )

    assert result.debug_info["size"] == "extra-large"
    assert result.final_macros.calories == 80


def test_weight_quantity_scales_from_basis() -> None:
    normalizer = ServingNormalizer()

    result = normalizer.normalize(
        "Greek yogurt", "150 g", profile(100, 10, 4, 5, sugar=4, sodium=40)
    )

    assert result.final_macros.calories == 150
    assert result.final_macros.protein == 15.0
    assert result.final_macros.fat == 7.5
    assert result.final_macros.sodium == 60
    assert result.serving_grams == 150.0
    assert result.debug_info["method"] == "weight"


def test_servings_use_declared_serving() -> None:
    normalizer = ServingNormalizer()

    result = normalizer.normalize(
        "granola bar", "2 servings", profile(450, 10, 60, 18), declared_serving=40
    )

    assert result.serving_grams == 80.0
    assert result.final_macros.calories == 360
    assert result.debug_info["method"] == "servings"


def test_missing_quantity_falls_back_to_category_portion() -> None:
    normalizer = ServingNormalizer()

    result = normalizer.normalize("orange juice", "", profile(45, 0.7, 10.4, 0.2))

    assert result.serving_grams == 240.0
    assert result.final_macros.calories == 108
    assert result.debug_info["method"] == "category-estimate"
    assert result.title_text == "Orange Juice"


def test_missing_quantity_without_category_uses_basis() -> None:
    normalizer = ServingNormalizer()

    result = normalizer.normalize("mystery stew", "", profile(120, 8, 10, 5))

    assert result.serving_grams == 100.0
    assert result.final_macros.calories == 120


def test_saturated_fat_defaults_to_share_of_fat() -> None:
    normalizer = ServingNormalizer()

    result = normalizer.normalize("mystery stew", "", profile(120, 8, 10, 5))

    assert result.final_macros.saturated_fat == pytest.approx(1.5)


def test_as_given_keeps_portion_values() -> None:
    normalizer = ServingNormalizer()

    result = normalizer.as_given("protein shake", "1 bottle", profile(250.4, 30, -2, 5))

    assert result.final_macros.calories == 250
    assert result.final_macros.carbs == 0.0
    assert result.serving_grams is None
    assert result.title_text == "1 Bottle Protein Shake"
    assert result.debug_info == {"method": "as-given"}


def test_nameless_item_gets_no_title() -> None:
    normalizer = ServingNormalizer()

    result = normalizer.as_given("  ", "1 bottle", profile(250, 30, 10, 5))

    assert result.title_text == ""
    assert result.final_macros.calories == 250


def test_duplicate_fingerprint_advisory_until_reset() -> None:
    normalizer = ServingNormalizer()
    macros = profile(200, 20, 22, 7)

    first = normalizer.as_given("Protein Bar", "", macros)
    same_name = normalizer.as_given("protein  bar", "", macros)
    other_name = normalizer.as_given("Energy Bar", "", macros)

    assert first.advisory is None
    assert same_name.advisory is None
    assert other_name.advisory is not None
    assert other_name.advisory.previous_name == "Protein Bar"
    assert other_name.advisory.current_name == "Energy Bar"

    normalizer.reset_session()

    assert normalizer.as_given("Energy Bar", "", macros).advisory is None


def test_category_portion() -> None:
    assert category_portion("Almond milk") == 240.0
    assert category_portion("Chicken breast") is None

"""Tests for branded product matching."""

import asyncio

import pytest

from nutrilog.services.branded import BrandedMatchService, similarity
from nutrilog.services.cache import InMemoryCache
from tests.conftest import FakeCatalogClient


def _service(client: FakeCatalogClient | None = None) -> BrandedMatchService:
    return BrandedMatchService(
        client=client or FakeCatalogClient(), cache=InMemoryCache()
    )


def test_barcode_match_uses_product_record() -> None:
    client = FakeCatalogClient()
    service = _service(client)

    match = asyncio.run(service.match("coke", barcode="5449000000996"))

    assert match.found
    assert match.confidence == 99
    assert match.match_method == "barcode"
    assert match.product_name == "Coca-Cola"
    assert match.serving_grams == 330
    assert match.nutrition is not None
    assert match.nutrition.calories == 42
    assert match.nutrition.sodium == pytest.approx(10)
    assert client.search_calls == []


def test_barcode_lookup_is_cached() -> None:
    client = FakeCatalogClient()
    service = _service(client)

    first = asyncio.run(service.lookup_barcode("5449000000996"))
    second = asyncio.run(service.lookup_barcode("5449000000996"))

    assert first is not None
    assert first == second
    assert first.ingredients == ["Carbonated water", "sugar", "colour"]
    assert client.product_calls == ["5449000000996"]


def test_unknown_barcode_falls_back_to_search() -> None:
    client = FakeCatalogClient()
    service = _service(client)

    match = asyncio.run(service.match("greek yogurt", barcode="000"))

    assert client.product_calls == ["000"]
    assert client.search_calls == [("greek yogurt", 10)]
    assert match.found
    assert match.match_method == "fuzzy"


def test_fuzzy_match_scores_by_name_similarity() -> None:
    service = _service()

    match = asyncio.run(service.match("Greek Yogurt"))

    assert match.found
    assert match.confidence == 100
    assert match.brand_name == "Fage"
    assert match.product_id == "111"
    assert match.serving_grams == 170
    assert match.nutrition is not None
    assert match.nutrition.saturated_fat == 3.2
    assert match.nutrition.sodium == pytest.approx(40)


def test_fuzzy_match_rejects_weak_candidates() -> None:
    service = _service()

    match = asyncio.run(service.match("banana"))

    assert not match.found
    assert match.confidence == 0


def test_ocr_text_is_added_to_search_query() -> None:
    client = FakeCatalogClient()
    service = _service(client)

    asyncio.run(service.match("yogurt", ocr_text="Fage Total"))

    assert client.search_calls == [("yogurt Fage Total", 10)]


def test_similarity_ratio() -> None:
    assert similarity("", "") == 1.0
    assert similarity("abcd", "abcd") == 1.0
    assert similarity("abcd", "abce") == 0.75
    assert similarity("greek yogurt", "greek yoghurt") == pytest.approx(0.96)
    assert similarity("banana", "greek yogurt") < 0.6

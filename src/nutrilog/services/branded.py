"""Branded product matching against a packaged-food catalog."""

import difflib
import logging
from dataclasses import dataclass
from typing import Protocol

from nutrilog.domain.nutrition import (
    BarcodeProduct,
    BrandedMatch,
    NutrientProfile,
    clean_amount,
)
from nutrilog.services.cache import Cache

_logger = logging.getLogger(__name__)

BARCODE_MATCH_CONFIDENCE = 99.0
CANDIDATE_MIN_SIMILARITY = 0.6
ACCEPT_MIN_SIMILARITY = 0.75
BRAND_BOOST_WEIGHT = 0.8

# Per-100 g nutriment keys; sodium is reported in grams.
_NUTRIMENT_KEYS = {
    "calories": ("energy-kcal_100g", "energy_kcal_100g"),
    "protein": ("proteins_100g",),
    "carbs": ("carbohydrates_100g",),
    "fat": ("fat_100g",),
    "fiber": ("fiber_100g",),
    "sugar": ("sugars_100g",),
    "sodium": ("sodium_100g",),
    "saturated_fat": ("saturated-fat_100g",),
}


class ProductCatalogClient(Protocol):
    """Interface for the product catalog HTTP API."""

    async def get_product(self, barcode: str) -> dict[str, object]:
        """Fetch a product by barcode and return raw API data."""

    async def search_products(
        self, query: str, page_size: int = 10
    ) -> dict[str, object]:
        """Search products by text and return raw API data."""


@dataclass
class BrandedMatchService:
    """Finds a branded product by barcode or by fuzzy name search."""

    client: ProductCatalogClient
    cache: Cache
    product_ttl_seconds: int = 86400
    search_page_size: int = 10

    async def match(
        self, name: str, ocr_text: str | None = None, barcode: str | None = None
    ) -> BrandedMatch:
        """Return the best branded match; ``found`` is False when nothing fits."""
        if barcode and barcode.strip():
            product = await self.lookup_barcode(barcode.strip())
            if product is not None:
                return BrandedMatch(
                    found=True,
                    confidence=BARCODE_MATCH_CONFIDENCE,
                    nutrition=product.nutrition,
                    product_name=product.name or name,
                    brand_name=product.brand_name,
                    product_id=product.barcode,
                    serving_grams=product.serving_grams,
                    match_method="barcode",
                )
            _logger.info("Barcode %s not usable, falling back to search", barcode)
        return await self._fuzzy_match(name, ocr_text)

    async def lookup_barcode(self, barcode: str) -> BarcodeProduct | None:
        """Fetch a product by barcode; None when unknown or without nutriments."""
        cache_key = f"off:product:{barcode}"
        cached = self.cache.get(cache_key)
        if isinstance(cached, BarcodeProduct):
            return cached

        payload = await self.client.get_product(barcode)
        product = payload.get("product")
        if payload.get("status") != 1 or not isinstance(product, dict):
            return None
        nutrition = _extract_nutrition(product)
        if nutrition is None:
            return None
        result = BarcodeProduct(
            barcode=str(product.get("code") or barcode),
            name=str(product.get("product_name") or ""),
            brand_name=_optional_str(product.get("brands")),
            nutrition=nutrition,
            serving_grams=_serving_grams(product),
            ingredients=_ingredients(product),
            image_url=_optional_str(
                product.get("image_front_url") or product.get("image_url")
            ),
        )
        self.cache.set(cache_key, result, ttl_seconds=self.product_ttl_seconds)
        return result

    async def _fuzzy_match(self, name: str, ocr_text: str | None) -> BrandedMatch:
        query = f"{name} {ocr_text}" if ocr_text else name
        payload = await self.client.search_products(
            query, page_size=self.search_page_size
        )
        products = payload.get("products") or []

        best: dict[str, object] | None = None
        best_score = 0.0
        for product in products:
            if not isinstance(product, dict) or not product.get("product_name"):
                continue
            score = similarity(
                name.lower().strip(), str(product["product_name"]).lower().strip()
            )
            brands = product.get("brands")
            if ocr_text and brands:
                brand_score = similarity(ocr_text.lower(), str(brands).lower())
                score = max(score, brand_score * BRAND_BOOST_WEIGHT)
            if score > best_score and score > CANDIDATE_MIN_SIMILARITY:
                best, best_score = product, score

        if best is None or best_score <= ACCEPT_MIN_SIMILARITY:
            _logger.info(
                "No branded match for %r (%s candidates)", name, len(products)
            )
            return BrandedMatch(found=False, confidence=0.0)
        nutrition = _extract_nutrition(best)
        if nutrition is None:
            return BrandedMatch(found=False, confidence=0.0)
        return BrandedMatch(
            found=True,
            confidence=float(round(best_score * 100)),
            nutrition=nutrition,
            product_name=str(best["product_name"]),
            brand_name=_optional_str(best.get("brands")),
            product_id=_optional_str(best.get("code")),
            serving_grams=_serving_grams(best),
            match_method="fuzzy",
        )


def similarity(first: str, second: str) -> float:
    """Matching-block similarity in 0..1; two empty strings are identical."""
    return difflib.SequenceMatcher(a=first, b=second).ratio()


def _extract_nutrition(product: dict[str, object]) -> NutrientProfile | None:
    nutriments = product.get("nutriments")
    if not isinstance(nutriments, dict) or not nutriments:
        return None

    def pick(field_name: str) -> object:
        for key in _NUTRIMENT_KEYS[field_name]:
            if nutriments.get(key) is not None:
                return nutriments[key]
        return None

    saturated = pick("saturated_fat")
    return NutrientProfile(
        calories=clean_amount(pick("calories")),
        protein=clean_amount(pick("protein")),
        carbs=clean_amount(pick("carbs")),
        fat=clean_amount(pick("fat")),
        fiber=clean_amount(pick("fiber")),
        sugar=clean_amount(pick("sugar")),
        sodium=clean_amount(pick("sodium")) * 1000,
        saturated_fat=None if saturated is None else clean_amount(saturated),
    )


def _serving_grams(product: dict[str, object]) -> float | None:
    grams = clean_amount(product.get("serving_quantity"))
    return grams or None


def _ingredients(product: dict[str, object]) -> list[str]:
    text = product.get("ingredients_text")
    if not isinstance(text, str):
        return []
    return [part.strip() for part in text.split(",") if part.strip()]


def _optional_str(value: object) -> str | None:
    if value is None or value == "":
        return None
    return str(value)

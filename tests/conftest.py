"""Shared test fixtures."""

import asyncio
import itertools
import random
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from nutrilog.config import Settings
from nutrilog.containers import AppContainer
from nutrilog.domain.day import ChangeEvent, DayEntries
from nutrilog.domain.entries import (
    ConfirmedLogEntry,
    FoodLogDraft,
    HydrationEntry,
    SupplementEntry,
)
from nutrilog.domain.nutrition import (
    BarcodeProduct,
    BrandedMatch,
    GenericEstimate,
    NutrientProfile,
)
from nutrilog.services.branded import BrandedMatchService, ProductCatalogClient
from nutrilog.services.cache import InMemoryCache
from nutrilog.services.confirmation import BarcodeLookup, ConfirmationController
from nutrilog.services.day import DayAggregator, LocalWriteTracker
from nutrilog.services.estimate import EstimateClient, GenericEstimateService
from nutrilog.services.food_log import FoodLogRepository, FoodLogService
from nutrilog.services.ingestion import IngestionRouter
from nutrilog.services.nutrition import (
    BrandedLookup,
    GenericEstimator,
    NutritionResolver,
)
from nutrilog.services.realtime import ChangeFeed, CloseHandler, EventHandler
from nutrilog.services.serving import ServingNormalizer
from nutrilog.services.sessions import LoggingSessionService

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def fixed_clock() -> datetime:
    return NOW


@dataclass
class FakeBrandedLookup(BrandedLookup):
    """Branded lookup returning a fixed result or raising it."""

    result: BrandedMatch | Exception = field(
        default_factory=lambda: BrandedMatch(found=False, confidence=0.0)
    )
    delay: float = 0.0
    calls: list[tuple[str, str | None, str | None]] = field(default_factory=list)

    async def match(
        self, name: str, ocr_text: str | None = None, barcode: str | None = None
    ) -> BrandedMatch:
        self.calls.append((name, ocr_text, barcode))
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@dataclass
class FakeGenericEstimator(GenericEstimator):
    """Generic estimator keyed by lowercase name, with a default."""

    by_name: dict[str, GenericEstimate] = field(default_factory=dict)
    default: GenericEstimate | Exception | None = None
    delay: float = 0.0
    delays: dict[str, float] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)

    async def estimate(self, name: str) -> GenericEstimate:
        self.calls.append(name)
        delay = self.delays.get(name.lower(), self.delay)
        if delay:
            await asyncio.sleep(delay)
        result = self.by_name.get(name.lower(), self.default)
        if isinstance(result, Exception):
            raise result
        if result is None:
            raise RuntimeError(f"no estimate for {name}")
        return result


@dataclass
class FakeBarcodeLookup(BarcodeLookup):
    products: dict[str, BarcodeProduct] = field(default_factory=dict)

    async def lookup_barcode(self, barcode: str) -> BarcodeProduct | None:
        return self.products.get(barcode)


@dataclass
class FakeCatalogClient(ProductCatalogClient):
    """Fake catalog client with in-memory responses."""

    products: dict[str, dict[str, object]] = field(
        default_factory=lambda: {
            "5449000000996": {
                "code": "5449000000996",
                "product_name": "Coca-Cola",
                "brands": "Coca-Cola",
                "serving_quantity": 330,
                "ingredients_text": "Carbonated water, sugar, colour",
                "nutriments": {
                    "energy-kcal_100g": 42,
                    "proteins_100g": 0,
                    "carbohydrates_100g": 10.6,
                    "fat_100g": 0,
                    "sugars_100g": 10.6,
                    "sodium_100g": 0.01,
                },
            }
        }
    )
    search_payload: dict[str, object] = field(
        default_factory=lambda: {
            "products": [
                {
                    "code": "111",
                    "product_name": "Greek Yogurt",
                    "brands": "Fage",
                    "serving_quantity": 170,
                    "nutriments": {
                        "energy-kcal_100g": 97,
                        "proteins_100g": 9,
                        "carbohydrates_100g": 3.9,
                        "fat_100g": 5,
                        "saturated-fat_100g": 3.2,
                        "sugars_100g": 3.9,
                        "sodium_100g": 0.04,
                    },
                },
                {
                    "code": "222",
                    "product_name": "Chocolate Milk",
                    "brands": "Nesquik",
                    "nutriments": {"energy-kcal_100g": 78},
                },
            ]
        }
    )
    product_calls: list[str] = field(default_factory=list)
    search_calls: list[tuple[str, int]] = field(default_factory=list)

    async def get_product(self, barcode: str) -> dict[str, object]:
        self.product_calls.append(barcode)
        product = self.products.get(barcode)
        if product is None:
            return {"status": 0}
        return {"status": 1, "product": product}

    async def search_products(
        self, query: str, page_size: int = 10
    ) -> dict[str, object]:
        self.search_calls.append((query, page_size))
        return self.search_payload


@dataclass
class FakeEstimateClient(EstimateClient):
    """Fake estimate client returning a fixed payload."""

    payload: dict[str, object] = field(
        default_factory=lambda: {
            "calories": 52,
            "protein": 0.3,
            "carbs": 14,
            "fat": 0.2,
            "fiber": 2.4,
            "sugar": 10,
            "sodium_mg": 1,
            "confidence": 88,
            "typical_serving_grams": 182,
        }
    )
    prompts: list[str] = field(default_factory=list)
    schema: dict[str, object] | None = None

    async def complete(
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        schema: dict[str, object],
        prompt: str,
    ) -> dict[str, object]:
        self.prompts.append(prompt)
        self.schema = schema
        return self.payload


@dataclass
class InMemoryFoodLogRepository(FoodLogRepository):
    """In-memory log repository for tests."""

    foods: dict[str, tuple[str, FoodLogDraft]] = field(default_factory=dict)
    hydration: list[HydrationEntry] = field(default_factory=list)
    supplements: list[SupplementEntry] = field(default_factory=list)
    removed: list[tuple[str, str]] = field(default_factory=list)
    preloaded: DayEntries = field(default_factory=DayEntries)
    fail_saves: bool = False
    return_no_id: bool = False
    save_delay: float = 0.0
    _ids: itertools.count = field(default_factory=lambda: itertools.count(1))

    def save_food(self, user_id: str, draft: FoodLogDraft) -> str | None:
        if self.save_delay:
            time.sleep(self.save_delay)
        if self.fail_saves:
            raise RuntimeError("database unavailable")
        if self.return_no_id:
            return None
        food_id = f"food-{next(self._ids)}"
        self.foods[food_id] = (user_id, draft)
        return food_id

    def save_hydration(  # noqa: PLR0913
        self,
        user_id: str,
        name: str,
        volume_ml: float,
        drink_type: str,
        logged_at: datetime,
        image_url: str | None = None,
    ) -> str | None:
        entry_id = f"hyd-{next(self._ids)}"
        self.hydration.append(
            HydrationEntry(
                id=entry_id,
                name=name,
                volume_ml=volume_ml,
                drink_type=drink_type,
                logged_at=logged_at,
                image_url=image_url,
            )
        )
        return entry_id

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
        entry_id = f"sup-{next(self._ids)}"
        self.supplements.append(
            SupplementEntry(
                id=entry_id,
                name=name,
                dosage=dosage,
                unit=unit,
                logged_at=logged_at,
                frequency=frequency,
                image_url=image_url,
            )
        )
        return entry_id

    def remove_food(self, user_id: str, food_id: str) -> None:
        self.removed.append((user_id, food_id))
        self.foods.pop(food_id, None)

    def list_day(self, user_id: str, start: datetime, end: datetime) -> DayEntries:
        return self.preloaded


@dataclass
class FakeChangeFeed(ChangeFeed):
    """Change feed driven by the test."""

    fail_subscribes: int = 0
    subscribe_delay: float = 0.0
    subscribe_calls: int = 0
    unsubscribe_calls: int = 0
    filters: list[str] = field(default_factory=list)
    on_event: EventHandler | None = None
    on_close: CloseHandler | None = None

    async def subscribe(
        self, user_filter: str, on_event: EventHandler, on_close: CloseHandler
    ) -> None:
        self.subscribe_calls += 1
        self.filters.append(user_filter)
        if self.subscribe_delay:
            await asyncio.sleep(self.subscribe_delay)
        if self.fail_subscribes > 0:
            self.fail_subscribes -= 1
            raise ConnectionError("realtime unavailable")
        self.on_event = on_event
        self.on_close = on_close

    async def unsubscribe(self) -> None:
        self.unsubscribe_calls += 1
        self.on_event = None
        self.on_close = None

    def emit(self, event: ChangeEvent) -> None:
        assert self.on_event is not None
        self.on_event(event)

    def drop(self, reason: str = "closed") -> None:
        assert self.on_close is not None
        self.on_close(reason)


def profile(  # noqa: PLR0913
    calories: float,
    protein: float = 0.0,
    carbs: float = 0.0,
    fat: float = 0.0,
    fiber: float = 0.0,
    sugar: float = 0.0,
    sodium: float = 0.0,
) -> NutrientProfile:
    return NutrientProfile(
        calories=calories,
        protein=protein,
        carbs=carbs,
        fat=fat,
        fiber=fiber,
        sugar=sugar,
        sodium=sodium,
    )


def food_entry(
    entry_id: str, calories: float, logged_at: datetime = NOW
) -> ConfirmedLogEntry:
    return ConfirmedLogEntry(
        id=entry_id,
        name=f"Food {entry_id}",
        nutrition=profile(calories, protein=10, carbs=20, fat=5),
        source="manual",
        logged_at=logged_at,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="service-key",
        openai_api_key="openai-key",
    )


@pytest.fixture
def repository() -> InMemoryFoodLogRepository:
    return InMemoryFoodLogRepository()


@pytest.fixture
def generic() -> FakeGenericEstimator:
    return FakeGenericEstimator(
        by_name={
            "apple": GenericEstimate(
                nutrition=profile(52, 0.3, 14, 0.2), confidence=90
            ),
            "banana": GenericEstimate(
                nutrition=profile(89, 1.1, 23, 0.3), confidence=90
            ),
            "grilled chicken": GenericEstimate(
                nutrition=profile(165, 31, 0, 3.6), confidence=85
            ),
        },
        default=GenericEstimate(nutrition=profile(200, 10, 20, 8), confidence=75),
    )


@pytest.fixture
def branded() -> FakeBrandedLookup:
    return FakeBrandedLookup()


@pytest.fixture
def resolver(
    branded: FakeBrandedLookup, generic: FakeGenericEstimator
) -> NutritionResolver:
    return NutritionResolver(
        branded=branded,
        generic=generic,
        cache=InMemoryCache(),
        rng=random.Random(7),
        retry_attempts=0,
    )


@pytest.fixture
def day() -> DayAggregator:
    return DayAggregator(
        tz=ZoneInfo("UTC"),
        writes=LocalWriteTracker(window_seconds=10, clock=fixed_clock),
        clock=fixed_clock,
    )


@pytest.fixture
def food_log(
    repository: InMemoryFoodLogRepository, day: DayAggregator
) -> FoodLogService:
    return FoodLogService(repository=repository, day=day, user_id="user-1")


@pytest.fixture
def controller(
    resolver: NutritionResolver, food_log: FoodLogService
) -> ConfirmationController:
    return ConfirmationController(
        router=IngestionRouter(),
        resolver=resolver,
        normalizer=ServingNormalizer(),
        food_log=food_log,
        clock=fixed_clock,
    )


@pytest.fixture
def container(
    settings: Settings,
    repository: InMemoryFoodLogRepository,
    resolver: NutritionResolver,
) -> AppContainer:
    session_service = LoggingSessionService(
        repository=repository,
        resolver=resolver,
        feed_factory=FakeChangeFeed,
        tz=ZoneInfo("UTC"),
    )

    async def close_resources() -> None:
        await session_service.close_all()

    return AppContainer(
        settings=settings,
        branded_service=BrandedMatchService(
            client=FakeCatalogClient(), cache=InMemoryCache()
        ),
        estimate_service=GenericEstimateService(
            client=FakeEstimateClient(),
            model=settings.openai_model,
            reasoning_effort=settings.openai_reasoning_effort,
            store=settings.openai_store,
        ),
        resolver=resolver,
        session_service=session_service,
        close_resources=close_resources,
    )

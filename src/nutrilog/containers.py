"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import AsyncClient, acreate_client, create_client

from nutrilog.adapters.off_client import HttpxOpenFoodFactsClient
from nutrilog.adapters.openai_estimate_client import OpenAIEstimateClient
from nutrilog.adapters.supabase_change_feed import SupabaseChangeFeed
from nutrilog.adapters.supabase_food_log_repository import SupabaseFoodLogRepository
from nutrilog.config import Settings, parse_timezone
from nutrilog.services.branded import BrandedMatchService
from nutrilog.services.cache import InMemoryCache
from nutrilog.services.estimate import GenericEstimateService
from nutrilog.services.nutrition import NutritionResolver, ResolutionPolicy
from nutrilog.services.sessions import LoggingSessionService, SessionTuning


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    branded_service: BrandedMatchService
    estimate_service: GenericEstimateService
    resolver: NutritionResolver
    session_service: LoggingSessionService
    close_resources: Callable[[], Awaitable[None]]


def resolution_policy(settings: Settings) -> ResolutionPolicy:
    """Build the decision thresholds from settings."""
    return ResolutionPolicy(
        barcode_min_confidence=settings.branded_barcode_min_confidence,
        branded_only_min_confidence=settings.branded_only_min_confidence,
        generic_weak_max_confidence=settings.generic_weak_max_confidence,
        strong_brand_min_confidence=settings.strong_brand_min_confidence,
        fallback_confidence=settings.fallback_confidence,
    )


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    repository = SupabaseFoodLogRepository(supabase_client)
    realtime_client: AsyncClient | None = None

    async def connect_realtime() -> AsyncClient:
        nonlocal realtime_client
        if realtime_client is None:
            realtime_client = await acreate_client(
                resolved_settings.supabase_url, resolved_settings.supabase_service_key
            )
        return realtime_client

    cache = InMemoryCache()
    off_client = HttpxOpenFoodFactsClient.create(resolved_settings.off_base_url)
    branded_service = BrandedMatchService(client=off_client, cache=cache)
    openai_client = OpenAIEstimateClient.create(resolved_settings.openai_api_key)
    estimate_service = GenericEstimateService(
        client=openai_client,
        model=resolved_settings.openai_model,
        reasoning_effort=resolved_settings.openai_reasoning_effort,
        store=resolved_settings.openai_store,
    )
    resolver = NutritionResolver(
        branded=branded_service,
        generic=estimate_service,
        cache=cache,
        policy=resolution_policy(resolved_settings),
        cache_ttl_seconds=resolved_settings.resolution_cache_ttl_seconds,
    )
    session_service = LoggingSessionService(
        repository=repository,
        resolver=resolver,
        feed_factory=lambda: SupabaseChangeFeed(connect=connect_realtime),
        tz=parse_timezone(resolved_settings.timezone),
        barcodes=branded_service,
        tuning=SessionTuning(
            step_timeout_seconds=resolved_settings.step_timeout_seconds,
            pipeline_timeout_seconds=resolved_settings.pipeline_timeout_seconds,
            dedup_window_seconds=resolved_settings.dedup_window_seconds,
            reconnect_base_seconds=resolved_settings.reconnect_base_seconds,
            reconnect_cap_seconds=resolved_settings.reconnect_cap_seconds,
        ),
    )

    async def close_resources() -> None:
        await session_service.close_all()
        await off_client.close()
        await openai_client.close()
        if realtime_client is not None:
            await realtime_client.remove_all_channels()

    return AppContainer(
        settings=resolved_settings,
        branded_service=branded_service,
        estimate_service=estimate_service,
        resolver=resolver,
        session_service=session_service,
        close_resources=close_resources,
    )

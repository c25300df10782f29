"""Per-user logging sessions."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo

from nutrilog.services.confirmation import BarcodeLookup, ConfirmationController
from nutrilog.services.day import DayAggregator, LocalWriteTracker
from nutrilog.services.food_log import FoodLogRepository, FoodLogService
from nutrilog.services.ingestion import IngestionRouter
from nutrilog.services.nutrition import NutritionResolver
from nutrilog.services.realtime import (
    ChangeFeed,
    RealtimeSyncEngine,
    ReconnectScheduler,
)
from nutrilog.services.serving import ServingNormalizer

_logger = logging.getLogger(__name__)


@dataclass
class LoggingSession:
    """Everything one user needs while logging."""

    user_id: str
    controller: ConfirmationController
    day: DayAggregator
    food_log: FoodLogService
    sync: RealtimeSyncEngine

    async def close(self) -> None:
        """Abort the run and drop the change feed once started writes land."""
        await self.controller.cancel_all()
        await self.food_log.settle_writes()
        await self.sync.stop()
        self.controller.normalizer.reset_session()


@dataclass(frozen=True)
class SessionTuning:
    """Timeouts and windows applied to new sessions."""

    step_timeout_seconds: float = 30.0
    pipeline_timeout_seconds: float = 90.0
    dedup_window_seconds: float = 10.0
    reconnect_base_seconds: float = 1.0
    reconnect_cap_seconds: float = 30.0


@dataclass
class LoggingSessionService:
    """Keeps a single active session and tears it down on user switch."""

    repository: FoodLogRepository
    resolver: NutritionResolver
    feed_factory: Callable[[], ChangeFeed]
    tz: ZoneInfo
    barcodes: BarcodeLookup | None = None
    tuning: SessionTuning = field(default_factory=SessionTuning)
    router: IngestionRouter = field(default_factory=IngestionRouter)
    _active: LoggingSession | None = field(default=None, init=False)

    @property
    def active(self) -> LoggingSession | None:
        return self._active

    def get(self, user_id: str) -> LoggingSession | None:
        """Return the active session if it belongs to the user."""
        if self._active is not None and self._active.user_id == user_id:
            return self._active
        return None

    async def open(self, user_id: str) -> LoggingSession:
        """Open a session: load the displayed day and subscribe to changes."""
        existing = self.get(user_id)
        if existing is not None:
            return existing
        if self._active is not None:
            _logger.info(
                "Switching session from %s to %s", self._active.user_id, user_id
            )
            await self.close(self._active.user_id)

        session = self._build(user_id)
        await session.food_log.load_day()
        self._active = session
        await session.sync.start(user_id)
        return session

    async def close(self, user_id: str) -> bool:
        """End the user's session, if it is the active one."""
        session = self.get(user_id)
        if session is None:
            return False
        self._active = None
        await session.close()
        return True

    async def close_all(self) -> None:
        if self._active is not None:
            await self.close(self._active.user_id)

    def _build(self, user_id: str) -> LoggingSession:
        tuning = self.tuning
        day = DayAggregator(
            tz=self.tz,
            writes=LocalWriteTracker(window_seconds=tuning.dedup_window_seconds),
        )
        food_log = FoodLogService(repository=self.repository, day=day, user_id=user_id)
        controller = ConfirmationController(
            router=self.router,
            resolver=self.resolver,
            normalizer=ServingNormalizer(),
            food_log=food_log,
            barcodes=self.barcodes,
            step_timeout_seconds=tuning.step_timeout_seconds,
            pipeline_timeout_seconds=tuning.pipeline_timeout_seconds,
        )
        session: LoggingSession | None = None

        def session_valid() -> bool:
            return self._active is not None and self._active is session

        sync = RealtimeSyncEngine(
            feed=self.feed_factory(),
            day=day,
            scheduler=ReconnectScheduler(
                base_seconds=tuning.reconnect_base_seconds,
                cap_seconds=tuning.reconnect_cap_seconds,
            ),
            session_valid=session_valid,
        )
        session = LoggingSession(
            user_id=user_id,
            controller=controller,
            day=day,
            food_log=food_log,
            sync=sync,
        )
        return session

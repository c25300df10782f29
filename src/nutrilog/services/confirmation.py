"""Sequential, cancellable confirmation of recognized food items."""

import asyncio
import functools
import itertools
import logging
import string
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Protocol, TypeVar

from nutrilog.domain.candidates import CandidateItem, SourceChannel
from nutrilog.domain.entries import (
    ConfirmedLogEntry,
    EntryStatus,
    FoodLogDraft,
    NormalizedFoodEntry,
)
from nutrilog.domain.errors import EntryValidationError, StepTimeoutError
from nutrilog.domain.nutrition import BarcodeProduct, NutrientProfile, ResolvedNutrition
from nutrilog.services.food_log import FoodLogService
from nutrilog.services.ingestion import IngestionRouter, RouteDecision
from nutrilog.services.nutrition import NutritionResolver
from nutrilog.services.serving import ServingNormalizer, ServingResult

_logger = logging.getLogger(__name__)

_T = TypeVar("_T")

MAX_ITEM_CALORIES = 5000.0
BARCODE_LOOKUP_CONFIDENCE = 0.99


class ConfirmationState(StrEnum):
    """States of the confirmation flow."""

    IDLE = "idle"
    REVIEWING = "reviewing"
    AWAITING_NEXT_ITEM = "awaiting_next_item"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    SKIPPED = "skipped"
    ALL_COMPLETE = "all_complete"
    CANCELLED = "cancelled"


class Overlay(StrEnum):
    """Visible overlay, derived from the state."""

    LOADING = "loading"
    REVIEW = "review"
    CONFIRM = "confirm"


_OVERLAYS: dict[ConfirmationState, Overlay] = {
    ConfirmationState.REVIEWING: Overlay.REVIEW,
    ConfirmationState.AWAITING_NEXT_ITEM: Overlay.LOADING,
    ConfirmationState.CONFIRMING: Overlay.CONFIRM,
    ConfirmationState.CONFIRMED: Overlay.CONFIRM,
    ConfirmationState.SKIPPED: Overlay.CONFIRM,
}


@dataclass(frozen=True)
class PipelineIssue:
    """User-visible problem with one item."""

    kind: str
    message: str
    item_name: str | None = None
    retryable: bool = False
    manual_entry: bool = False


@dataclass(frozen=True)
class ConfirmationSnapshot:
    """Immutable view of the controller handed to listeners."""

    state: ConfirmationState
    queue: tuple[NormalizedFoodEntry, ...]
    current_index: int
    processing: bool
    issues: tuple[PipelineIssue, ...]
    generation: int
    route: RouteDecision | None

    @property
    def pending_queue(self) -> tuple[NormalizedFoodEntry, ...]:
        """Items not yet confirmed or skipped, current item first."""
        return self.queue[self.current_index :]

    @property
    def current_item(self) -> NormalizedFoodEntry | None:
        if self.current_index < len(self.queue):
            return self.queue[self.current_index]
        return None

    @property
    def resolved_nutrition(self) -> ResolvedNutrition | None:
        item = self.current_item
        return item.resolved if item is not None else None

    @property
    def overlay(self) -> Overlay | None:
        return _OVERLAYS.get(self.state)


Listener = Callable[[ConfirmationSnapshot], None]


class BarcodeLookup(Protocol):
    """Interface for barcode product lookups."""

    async def lookup_barcode(self, barcode: str) -> BarcodeProduct | None:
        """Return the product for a barcode, if known."""


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class ConfirmationController:
    """Owns the pending queue and walks it one item at a time.

    Every routing bumps ``generation``; results from an older generation
    are dropped when they arrive.
    """

    router: IngestionRouter
    resolver: NutritionResolver
    normalizer: ServingNormalizer
    food_log: FoodLogService
    barcodes: BarcodeLookup | None = None
    step_timeout_seconds: float = 30.0
    pipeline_timeout_seconds: float = 90.0
    listeners: list[Listener] = field(default_factory=list)
    clock: Callable[[], datetime] = _utcnow
    _state: ConfirmationState = field(default=ConfirmationState.IDLE, init=False)
    _queue: list[NormalizedFoodEntry] = field(default_factory=list, init=False)
    _keys: list[int] = field(default_factory=list, init=False)
    _current_index: int = field(default=0, init=False)
    _processing: bool = field(default=False, init=False)
    _issues: list[PipelineIssue] = field(default_factory=list, init=False)
    _generation: int = field(default=0, init=False)
    _route: RouteDecision | None = field(default=None, init=False)
    _tasks: dict[int, asyncio.Task] = field(default_factory=dict, init=False)
    _watchdog: asyncio.Task | None = field(default=None, init=False)
    _persist_task: asyncio.Task | None = field(default=None, init=False)
    _key_counter: itertools.count = field(default_factory=itertools.count, init=False)

    @property
    def state(self) -> ConfirmationState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    def snapshot(self) -> ConfirmationSnapshot:
        return ConfirmationSnapshot(
            state=self._state,
            queue=tuple(self._queue),
            current_index=self._current_index,
            processing=self._processing,
            issues=tuple(self._issues),
            generation=self._generation,
            route=self._route,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Add a listener; returns a function that removes it."""
        self.listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self.listeners:
                self.listeners.remove(listener)

        return unsubscribe

    async def route_recognized_items(
        self,
        items: Iterable[CandidateItem | Mapping[str, object]],
        source_hint: SourceChannel,
    ) -> RouteDecision:
        """Start a new run: build the queue and prepare every item concurrently."""
        decision = self.router.route(items, source_hint)
        if decision.blocked:
            self._issues = [
                PipelineIssue(kind="route-blocked", message=decision.reason)
            ]
            self._notify()
            return decision

        await self._abort_run()
        generation = self._generation
        self._route = decision
        self._queue = [
            NormalizedFoodEntry(
                candidate=candidate,
                display_name=string.capwords(candidate.name),
                enrichment_pending=index in decision.skeleton_indexes,
            )
            for index, candidate in enumerate(decision.candidates)
        ]
        self._keys = [next(self._key_counter) for _ in self._queue]
        self._current_index = 0
        self._state = (
            ConfirmationState.REVIEWING
            if decision.mode == "multi"
            else ConfirmationState.AWAITING_NEXT_ITEM
        )
        for key, candidate in zip(self._keys, decision.candidates, strict=True):
            self._tasks[key] = asyncio.create_task(
                self._prepare(generation, key, candidate, decision.bypass_hydration)
            )
        self._watchdog = asyncio.create_task(self._watch(generation))
        _logger.info(
            "Routed %s item(s) from %s as %s",
            len(self._queue),
            source_hint,
            decision.mode,
        )
        self._notify()
        return decision

    async def settle(self) -> None:
        """Wait until every item is prepared and no write is in flight."""
        if self._watchdog is not None:
            await asyncio.wait({self._watchdog})
        if self._persist_task is not None:
            await asyncio.wait({self._persist_task})

    def begin_confirmation(self) -> bool:
        """Leave the review list and start confirming item by item."""
        if self._state is not ConfirmationState.REVIEWING:
            return False
        self._state = ConfirmationState.AWAITING_NEXT_ITEM
        self._promote_current()
        self._notify()
        return True

    def remove_review_item(self, index: int) -> bool:
        """Drop one item from the review list."""
        if self._state is not ConfirmationState.REVIEWING:
            return False
        if not 0 <= index < len(self._queue):
            return False
        key = self._keys.pop(index)
        self._queue.pop(index)
        task = self._tasks.pop(key, None)
        if task is not None:
            task.cancel()
        if not self._queue:
            self._finish_run(ConfirmationState.IDLE)
        self._notify()
        return True

    async def confirm_current_item(
        self, item: NormalizedFoodEntry | None = None
    ) -> ConfirmedLogEntry | None:
        """Persist the current item, optionally with user edits.

        Returns the stored entry, or None when nothing was persisted yet.
        A write that outlives the step budget stays in flight: the item is
        advanced if it lands and becomes retryable if it fails.
        """
        if self._processing or self._state is not ConfirmationState.CONFIRMING:
            return None
        current = item or self._queue[self._current_index]
        try:
            draft = self._draft(current)
        except EntryValidationError as exc:
            self._record_issue("validation", str(exc), current.display_name)
            return None

        self._processing = True
        self._notify()
        persist = asyncio.create_task(self.food_log.save_food(draft))
        self._persist_task = persist
        persist.add_done_callback(
            functools.partial(self._persisted, self._generation, current.display_name)
        )
        done, _ = await asyncio.wait({persist}, timeout=self.step_timeout_seconds)
        if not done:
            exc = StepTimeoutError("persist", self.step_timeout_seconds)
            _logger.warning("Persist timed out for %s", current.display_name)
            self._record_issue("timeout", str(exc), current.display_name)
            return None
        if persist.cancelled() or persist.exception() is not None:
            return None
        return persist.result()

    def skip_current_item(self) -> bool:
        """Move past the current item without saving it."""
        if self._processing or self._state not in (
            ConfirmationState.CONFIRMING,
            ConfirmationState.AWAITING_NEXT_ITEM,
        ):
            return False
        task = self._tasks.pop(self._keys[self._current_index], None)
        if task is not None:
            task.cancel()
        self._issues = []
        self._state = ConfirmationState.SKIPPED
        self._notify()
        self._advance()
        return True

    async def cancel_all(self) -> None:
        """Abort the run; safe to call any number of times."""
        if (
            self._state is ConfirmationState.IDLE
            and not self._queue
            and not self._tasks
            and self._persist_task is None
        ):
            return
        await self._abort_run()
        self._finish_run(ConfirmationState.CANCELLED)
        self._notify()
        self._state = ConfirmationState.IDLE
        self.normalizer.reset_session()
        _logger.info("Confirmation run cancelled")
        self._notify()

    def acknowledge_complete(self) -> bool:
        if self._state is not ConfirmationState.ALL_COMPLETE:
            return False
        self._state = ConfirmationState.IDLE
        self._route = None
        self._notify()
        return True

    async def _abort_run(self) -> None:
        self._generation += 1
        tasks = [*self._tasks.values()]
        if self._watchdog is not None:
            tasks.append(self._watchdog)
        if self._persist_task is not None:
            tasks.append(self._persist_task)
        self._tasks = {}
        self._watchdog = None
        self._persist_task = None
        self._processing = False
        for task in tasks:
            task.cancel()
        current = asyncio.current_task()
        pending = [task for task in tasks if task is not current and not task.done()]
        if pending:
            await asyncio.wait(pending)

    def _persisted(self, generation: int, item_name: str, task: asyncio.Task) -> None:
        error = None if task.cancelled() else task.exception()
        if generation != self._generation or task is not self._persist_task:
            # The run moved on; the food log has already mirrored a landed write.
            return
        self._persist_task = None
        self._processing = False
        if task.cancelled():
            self._notify()
            return
        if error is not None:
            self._record_issue("persistence", str(error), item_name, retryable=True)
            return
        self._issues = []
        self._state = ConfirmationState.CONFIRMED
        self._notify()
        self._advance()

    def _finish_run(self, state: ConfirmationState) -> None:
        self._queue = []
        self._keys = []
        self._current_index = 0
        self._processing = False
        self._issues = []
        self._state = state

    def _advance(self) -> None:
        self._current_index += 1
        if self._current_index >= len(self._queue):
            self._finish_run(ConfirmationState.ALL_COMPLETE)
            _logger.info("All items handled")
        else:
            self._state = ConfirmationState.AWAITING_NEXT_ITEM
            self._promote_current()
        self._notify()

    def _promote_current(self) -> None:
        if (
            self._state is ConfirmationState.AWAITING_NEXT_ITEM
            and self._current_index < len(self._queue)
            and self._queue[self._current_index].is_ready
        ):
            self._state = ConfirmationState.CONFIRMING

    def _apply(self, generation: int, key: int, entry: NormalizedFoodEntry) -> None:
        if generation != self._generation or key not in self._keys:
            _logger.debug("Dropping stale result for %s", entry.display_name)
            return
        index = self._keys.index(key)
        self._queue[index] = entry
        if entry.issue:
            self._issues.append(
                PipelineIssue(
                    kind="resolution",
                    message=entry.issue,
                    item_name=entry.display_name,
                    manual_entry=True,
                )
            )
        self._promote_current()
        self._notify()

    async def _prepare(
        self, generation: int, key: int, candidate: CandidateItem, bypass: bool
    ) -> None:
        try:
            entry = await self._with_step_timeout(
                "resolve", self._prepare_entry(candidate, bypass)
            )
        except StepTimeoutError as exc:
            _logger.warning("Resolution timed out for %s", candidate.name)
            entry = self._manual_entry(candidate, str(exc))
        except EntryValidationError as exc:
            entry = self._manual_entry(candidate, str(exc))
        except Exception as exc:
            _logger.exception("Resolution failed for %s", candidate.name)
            entry = self._manual_entry(
                candidate, f"Could not resolve nutrition: {exc}"
            )
        self._tasks.pop(key, None)
        self._apply(generation, key, entry)

    async def _prepare_entry(
        self, candidate: CandidateItem, bypass: bool
    ) -> NormalizedFoodEntry:
        hints = candidate.raw_nutrition_hints
        if bypass and hints:
            profile = NutrientProfile.from_mapping(hints)
            resolved = ResolvedNutrition.build(
                profile,
                source_label=f"{candidate.source_channel}-hints",
                confidence=(
                    1.0 if candidate.confidence is None else candidate.confidence
                ),
                decision_reason="channel-hints",
            )
            serving = self.normalizer.as_given(
                candidate.name, candidate.raw_quantity_text, profile
            )
            return self._ready_entry(candidate, resolved, serving)

        resolved = None
        if candidate.barcode and self.barcodes is not None:
            product = await self.barcodes.lookup_barcode(candidate.barcode)
            if product is not None:
                resolved = ResolvedNutrition.build(
                    product.nutrition,
                    source_label="branded",
                    confidence=BARCODE_LOOKUP_CONFIDENCE,
                    decision_reason="barcode-lookup",
                    serving_grams=product.serving_grams,
                )
                candidate = candidate.model_copy(
                    update={
                        "name": candidate.name or product.name,
                        "ingredients": candidate.ingredients or product.ingredients,
                        "image_url": candidate.image_url or product.image_url,
                    }
                )
        if resolved is None:
            if not candidate.name:
                raise EntryValidationError("Food name is required")
            resolved = await self.resolver.resolve(
                candidate.name, ocr_text=candidate.ocr_text, barcode=candidate.barcode
            )
        serving = self.normalizer.normalize(
            candidate.name,
            candidate.raw_quantity_text,
            resolved.profile,
            declared_serving=resolved.serving_grams,
            unit_size_override=candidate.unit_size,
            basis_grams=resolved.basis_grams,
        )
        return self._ready_entry(candidate, resolved, serving)

    def _ready_entry(
        self,
        candidate: CandidateItem,
        resolved: ResolvedNutrition,
        serving: ServingResult,
    ) -> NormalizedFoodEntry:
        return NormalizedFoodEntry(
            candidate=candidate,
            display_name=serving.title_text,
            status=EntryStatus.READY,
            resolved=resolved,
            macros=serving.final_macros,
            serving_grams=serving.serving_grams,
            serving_debug_info=serving.debug_info,
            advisory=serving.advisory,
        )

    @staticmethod
    def _manual_entry(candidate: CandidateItem, issue: str) -> NormalizedFoodEntry:
        return NormalizedFoodEntry(
            candidate=candidate,
            display_name=string.capwords(candidate.name),
            status=EntryStatus.MANUAL,
            macros=NutrientProfile().sanitized(),
            issue=issue,
        )

    async def _watch(self, generation: int) -> None:
        """Turn items still pending at the pipeline ceiling into manual entries."""
        tasks = dict(self._tasks)
        if tasks:
            await asyncio.wait(tasks.values(), timeout=self.pipeline_timeout_seconds)
        if generation != self._generation:
            return
        for key, task in tasks.items():
            if task.done() or key not in self._keys:
                continue
            task.cancel()
            self._tasks.pop(key, None)
            candidate = self._queue[self._keys.index(key)].candidate
            _logger.warning("Pipeline ceiling reached for %s", candidate.name)
            self._apply(
                generation,
                key,
                self._manual_entry(
                    candidate,
                    str(StepTimeoutError("pipeline", self.pipeline_timeout_seconds)),
                ),
            )

    async def _with_step_timeout(self, step: str, awaitable: Awaitable[_T]) -> _T:
        try:
            async with asyncio.timeout(self.step_timeout_seconds):
                return await awaitable
        except TimeoutError as exc:
            raise StepTimeoutError(step, self.step_timeout_seconds) from exc

    def _draft(self, entry: NormalizedFoodEntry) -> FoodLogDraft:
        name = entry.display_name.strip()
        if not name:
            raise EntryValidationError("Food name is required")
        if entry.macros is None:
            raise EntryValidationError(f"{name} has no nutrition values")
        calories = entry.macros.calories
        if not 0 <= calories <= MAX_ITEM_CALORIES:
            raise EntryValidationError(
                f"Calories for {name} must be between 0 and {MAX_ITEM_CALORIES:g}"
            )
        candidate = entry.candidate
        confidence = (
            entry.resolved.confidence
            if entry.resolved is not None
            else candidate.confidence
        )
        return FoodLogDraft(
            name=name,
            nutrition=entry.macros,
            source=candidate.source_channel,
            logged_at=self.clock(),
            confidence=confidence,
            serving_grams=entry.serving_grams,
            image_url=candidate.image_url,
            barcode=candidate.barcode,
        )

    def _record_issue(
        self,
        kind: str,
        message: str,
        item_name: str | None,
        *,
        retryable: bool = False,
    ) -> None:
        _logger.info("Confirmation issue (%s) for %s: %s", kind, item_name, message)
        self._issues.append(
            PipelineIssue(
                kind=kind, message=message, item_name=item_name, retryable=retryable
            )
        )
        self._notify()

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self.listeners):
            listener(snapshot)


def edited_entry(
    entry: NormalizedFoodEntry,
    *,
    name: str | None = None,
    nutrition: NutrientProfile | None = None,
) -> NormalizedFoodEntry:
    """Apply user edits to a queued entry before confirming it."""
    changes: dict[str, object] = {}
    if name is not None:
        changes["display_name"] = name
    if nutrition is not None:
        changes["macros"] = nutrition
    return replace(entry, **changes) if changes else entry

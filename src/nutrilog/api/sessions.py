"""Logging session endpoints keyed by a caller-supplied user id."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Request, status

from nutrilog.api.models import (
    ConfirmRequest,
    ConfirmResponse,
    DayView,
    FoodEntryView,
    HydrationRequest,
    RecognizedItemsRequest,
    StateView,
    SupplementRequest,
)
from nutrilog.domain.errors import PersistenceError
from nutrilog.services.confirmation import edited_entry

if TYPE_CHECKING:
    from nutrilog.containers import AppContainer
    from nutrilog.services.sessions import LoggingSession

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _session(request: Request, user_id: str) -> LoggingSession:
    container: AppContainer = request.app.state.container
    session = container.session_service.get(user_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No active session"
        )
    return session


def _state(session: LoggingSession) -> StateView:
    return StateView.from_snapshot(session.controller.snapshot())


@router.post("/{user_id}")
async def open_session(user_id: str, request: Request) -> DayView:
    """Open a session, load today's entries and subscribe to changes."""
    container: AppContainer = request.app.state.container
    try:
        session = await container.session_service.open(user_id)
    except PersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    return DayView.from_aggregate(session.day.aggregate)


@router.delete("/{user_id}")
async def close_session(user_id: str, request: Request) -> dict[str, str]:
    container: AppContainer = request.app.state.container
    if not await container.session_service.close(user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No active session"
        )
    return {"status": "closed"}


@router.post("/{user_id}/items")
async def route_items(
    user_id: str, body: RecognizedItemsRequest, request: Request
) -> StateView:
    """Route recognized items into review or confirmation."""
    session = _session(request, user_id)
    decision = await session.controller.route_recognized_items(
        body.items, body.source
    )
    if decision.blocked:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=decision.reason
        )
    if body.wait:
        await session.controller.settle()
    return _state(session)


@router.post("/{user_id}/review/start")
async def start_review(user_id: str, request: Request) -> StateView:
    session = _session(request, user_id)
    if not session.controller.begin_confirmation():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Not reviewing"
        )
    return _state(session)


@router.delete("/{user_id}/review/{index}")
async def remove_review_item(
    user_id: str, index: int, request: Request
) -> StateView:
    session = _session(request, user_id)
    if not session.controller.remove_review_item(index):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Not removable"
        )
    return _state(session)


@router.post("/{user_id}/confirm")
async def confirm_item(
    user_id: str, request: Request, body: ConfirmRequest | None = None
) -> ConfirmResponse:
    """Save the current item, optionally with edits."""
    session = _session(request, user_id)
    current = session.controller.snapshot().current_item
    item = None
    if body is not None and current is not None:
        item = edited_entry(
            current,
            name=body.name,
            nutrition=body.nutrition.to_profile() if body.nutrition else None,
        )
    entry = await session.controller.confirm_current_item(item)
    return ConfirmResponse(
        entry=FoodEntryView.from_entry(entry) if entry is not None else None,
        state=_state(session),
    )


@router.post("/{user_id}/skip")
async def skip_item(user_id: str, request: Request) -> StateView:
    session = _session(request, user_id)
    session.controller.skip_current_item()
    return _state(session)


@router.post("/{user_id}/cancel")
async def cancel_run(user_id: str, request: Request) -> StateView:
    session = _session(request, user_id)
    await session.controller.cancel_all()
    return _state(session)


@router.post("/{user_id}/complete")
async def acknowledge_complete(user_id: str, request: Request) -> StateView:
    session = _session(request, user_id)
    session.controller.acknowledge_complete()
    return _state(session)


@router.get("/{user_id}/state")
async def get_state(user_id: str, request: Request) -> StateView:
    return _state(_session(request, user_id))


@router.get("/{user_id}/day")
async def get_day(user_id: str, request: Request) -> DayView:
    return DayView.from_aggregate(_session(request, user_id).day.aggregate)


@router.delete("/{user_id}/foods/{food_id}")
async def remove_food(user_id: str, food_id: str, request: Request) -> DayView:
    session = _session(request, user_id)
    try:
        await session.food_log.remove_food(food_id)
    except PersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    return DayView.from_aggregate(session.day.aggregate)


@router.post("/{user_id}/hydration")
async def log_hydration(
    user_id: str, body: HydrationRequest, request: Request
) -> DayView:
    session = _session(request, user_id)
    try:
        await session.food_log.save_hydration(
            body.name, body.volume_ml, body.drink_type, body.image_url
        )
    except PersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    return DayView.from_aggregate(session.day.aggregate)


@router.post("/{user_id}/supplements")
async def log_supplement(
    user_id: str, body: SupplementRequest, request: Request
) -> DayView:
    session = _session(request, user_id)
    try:
        await session.food_log.save_supplement(
            body.name, body.dosage, body.unit, body.frequency, body.image_url
        )
    except PersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    return DayView.from_aggregate(session.day.aggregate)

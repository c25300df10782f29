"""Supabase Realtime change feed for log inserts."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import uuid4

from supabase import AsyncClient

from nutrilog.domain.day import ChangeEvent
from nutrilog.services.day import (
    FOOD_TABLE,
    HYDRATION_TABLE,
    SUPPLEMENT_TABLE,
    parse_timestamp,
)
from nutrilog.services.realtime import ChangeFeed, CloseHandler, EventHandler

_logger = logging.getLogger(__name__)

_SUBSCRIBED = "SUBSCRIBED"
_FAILED = frozenset({"CLOSED", "CHANNEL_ERROR", "TIMED_OUT"})


def change_event_from_payload(payload: dict[str, object]) -> ChangeEvent | None:
    """Build a change event from a postgres_changes payload."""
    data = payload.get("data", payload)
    if not isinstance(data, dict):
        return None
    record = data.get("record") or data.get("new")
    if not isinstance(record, dict) or record.get("id") is None:
        return None
    created_at = (
        parse_timestamp(record.get("created_at"))
        or parse_timestamp(data.get("commit_timestamp"))
        or datetime.now(tz=UTC)
    )
    return ChangeEvent(
        id=str(record["id"]),
        table=str(data.get("table") or ""),
        payload=dict(record),
        created_at=created_at,
    )


def _status_name(status: object) -> str:
    return str(getattr(status, "value", status))


@dataclass
class SupabaseChangeFeed(ChangeFeed):
    """Realtime channel listening to INSERTs on the log tables."""

    connect: Callable[[], Awaitable[AsyncClient]]
    tables: tuple[str, ...] = (FOOD_TABLE, HYDRATION_TABLE, SUPPLEMENT_TABLE)
    subscribe_timeout_seconds: float = 10.0
    _client: AsyncClient | None = field(default=None, init=False)
    _channel: object | None = field(default=None, init=False)

    async def subscribe(
        self, user_filter: str, on_event: EventHandler, on_close: CloseHandler
    ) -> None:
        """Join a channel; raises ``ConnectionError`` if the join fails."""
        await self.unsubscribe()
        if self._client is None:
            self._client = await self.connect()
        channel = self._client.channel(f"day-logs-{uuid4().hex[:8]}")

        def handle_change(payload: dict[str, object]) -> None:
            event = change_event_from_payload(payload)
            if event is None:
                _logger.debug("Ignoring malformed realtime payload")
                return
            on_event(event)

        for table in self.tables:
            channel.on_postgres_changes(
                "INSERT",
                schema="public",
                table=table,
                filter=user_filter,
                callback=handle_change,
            )

        joined: asyncio.Future[str] = asyncio.get_running_loop().create_future()

        def handle_status(status: object, error: Exception | None = None) -> None:
            name = _status_name(status)
            if not joined.done():
                joined.set_result(name)
                return
            if name in _FAILED and self._channel is channel:
                _logger.warning("Realtime channel %s: %s", name, error)
                on_close(name.lower())

        self._channel = channel
        await channel.subscribe(handle_status)
        try:
            status = await asyncio.wait_for(joined, self.subscribe_timeout_seconds)
        except TimeoutError as exc:
            await self.unsubscribe()
            raise ConnectionError("Realtime subscribe timed out") from exc
        if status != _SUBSCRIBED:
            await self.unsubscribe()
            raise ConnectionError(f"Realtime subscribe failed: {status}")

    async def unsubscribe(self) -> None:
        """Remove the current channel."""
        channel, self._channel = self._channel, None
        if channel is None or self._client is None:
            return
        await self._client.remove_channel(channel)

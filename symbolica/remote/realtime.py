"""
symbolica.remote.realtime — Per-Table Change Channels
======================================================

Publish/subscribe hub for row changes.  The remote data client publishes a
:class:`ChangeEvent` after every committed write; subscribers register a
callback for one table, optionally narrowed by an equality filter such as
``{"group_id": "…"}``.

The hub only delivers events.  What a subscriber does with one (usually a
cache invalidation) is up to the subscriber.
"""

from __future__ import annotations

import asyncio
import enum
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# Tables that may be subscribed to.
ALLOWED_REALTIME_TABLES: frozenset[str] = frozenset({
    "symbols",
    "symbol_verifications",
    "collections",
    "collection_symbols",
    "group_members",
    "group_chat_messages",
    "quest_participants",
    "quest_activities",
})


class ChangeType(enum.StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """One committed row change."""

    table: str
    type: ChangeType
    record: dict[str, Any] = field(default_factory=dict)
    old_record: dict[str, Any] | None = None

    def matches(self, filters: dict[str, Any] | None) -> bool:
        if not filters:
            return True
        row = self.record or self.old_record or {}
        return all(row.get(col) == value for col, value in filters.items())


ChangeCallback = Callable[[ChangeEvent], Any]
ErrorCallback = Callable[[BaseException], Any]


@dataclass(eq=False, slots=True)
class ChannelHandle:
    """An acknowledged subscription."""

    id: int
    table: str
    filters: dict[str, Any] | None
    on_change: ChangeCallback
    on_error: ErrorCallback | None = None
    closed: bool = False

    @property
    def topic(self) -> str:
        if not self.filters:
            return self.table
        parts = ",".join(f"{k}=eq.{v}" for k, v in sorted(self.filters.items()))
        return f"{self.table}:{parts}"


class RealtimeHub:
    """In-process realtime channel registry.

    Usage::

        hub = RealtimeHub()
        handle = await hub.subscribe("group_chat_messages",
                                     {"group_id": gid}, on_change)
        hub.publish(ChangeEvent("group_chat_messages", ChangeType.INSERT, row))
        await hub.unsubscribe(handle)
    """

    def __init__(self) -> None:
        self._handles: dict[int, ChannelHandle] = {}
        self._ids = itertools.count(1)

    async def subscribe(
        self,
        table: str,
        filters: dict[str, Any] | None,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> ChannelHandle:
        """Open a channel on *table* and return its handle once acknowledged.

        Raises
        ------
        ValueError
            If *table* is not in :data:`ALLOWED_REALTIME_TABLES`.
        """
        if table not in ALLOWED_REALTIME_TABLES:
            raise ValueError(
                f"Invalid table name for realtime: '{table}'. "
                f"Allowed: {sorted(ALLOWED_REALTIME_TABLES)}"
            )
        handle = ChannelHandle(
            id=next(self._ids),
            table=table,
            filters=dict(filters) if filters else None,
            on_change=on_change,
            on_error=on_error,
        )
        # Yield once so the caller observes the same suspension point a
        # networked channel's join acknowledgement would introduce.
        await asyncio.sleep(0)
        self._handles[handle.id] = handle
        logger.debug("Realtime channel %d opened on %s", handle.id, handle.topic)
        return handle

    async def unsubscribe(self, handle: ChannelHandle) -> None:
        handle.closed = True
        if self._handles.pop(handle.id, None) is not None:
            logger.debug("Realtime channel %d closed (%s)", handle.id, handle.topic)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver *event* to every matching channel.  Returns the count."""
        delivered = 0
        for handle in list(self._handles.values()):
            if handle.closed or handle.table != event.table:
                continue
            if not event.matches(handle.filters):
                continue
            try:
                handle.on_change(event)
            except Exception:
                logger.exception(
                    "Error handling realtime event on %s", handle.topic,
                )
            delivered += 1
        return delivered

    def fail(self, handle: ChannelHandle, exc: BaseException) -> None:
        """Drop *handle* after a channel failure and notify its owner."""
        self._handles.pop(handle.id, None)
        handle.closed = True
        logger.warning("Realtime channel %d failed (%s): %s", handle.id, handle.topic, exc)
        if handle.on_error is not None:
            try:
                handle.on_error(exc)
            except Exception:
                logger.exception("Error in realtime error callback on %s", handle.topic)

    @property
    def open_channels(self) -> int:
        return len(self._handles)

    def channels_for(self, table: str) -> list[ChannelHandle]:
        return [h for h in self._handles.values() if h.table == table]

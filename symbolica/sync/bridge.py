"""
symbolica.sync.bridge — Realtime Bridge
========================================

Turns server-side change events into cache invalidations so cached reads
stay eventually consistent with changes made by other users.

State machine::

    closed ──open()──▶ opening ──ack──▶ open ──close()──▶ closed
                          │
                          └──close()──▶ closed   (handle released on ack)

Events are never merged into the cache: the bridge only invalidates, and
active queries re-fetch canonical server state.  A failed channel is
logged and closes the bridge; reconnecting is the channel's job, and a new
bridge is created on remount.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable
from typing import Any

from symbolica.errors import RealtimeError
from symbolica.remote.realtime import ChangeEvent, ChannelHandle, RealtimeHub
from symbolica.sync.keys import KeyPredicate, QueryKey
from symbolica.sync.store import CacheStore

logger = logging.getLogger(__name__)

Target = QueryKey | KeyPredicate


class BridgeState(enum.StrEnum):
    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"


class RealtimeBridge:
    """One realtime subscription bound to cache invalidations.

    *invalidates* is a list of key prefixes, or ``fn(event)`` returning
    the targets for a given event.
    """

    def __init__(
        self,
        store: CacheStore,
        realtime: RealtimeHub,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        invalidates: Iterable[Target] | Callable[[ChangeEvent], Iterable[Target]] = (),
    ) -> None:
        self._store = store
        self._realtime = realtime
        self.table = table
        self.filters = dict(filters) if filters else None
        self._invalidates = invalidates if callable(invalidates) else list(invalidates)
        self._state = BridgeState.CLOSED
        self._handle: ChannelHandle | None = None
        self._attempt: object | None = None
        self.events_received = 0

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def has_valid_filter(self) -> bool:
        return not self.filters or all(v is not None for v in self.filters.values())

    async def open(self) -> bool:
        """Open the channel.  Returns True once the bridge is ``open``."""
        if self._state is not BridgeState.CLOSED:
            return self._state is BridgeState.OPEN
        if not self.has_valid_filter:
            logger.debug("Realtime bridge on %s not opened: filter incomplete", self.table)
            return False

        self._state = BridgeState.OPENING
        attempt = self._attempt = object()
        try:
            handle = await self._realtime.subscribe(
                self.table, self.filters, self._on_change, self._on_error,
            )
        except RealtimeError as exc:
            logger.warning("Realtime subscribe on %s failed: %s", self.table, exc)
            self._reset(attempt)
            return False
        except Exception:
            self._reset(attempt)
            raise

        if self._attempt is not attempt:
            # close() ran while we were waiting for the acknowledgement.
            await self._realtime.unsubscribe(handle)
            return False

        self._handle = handle
        self._state = BridgeState.OPEN
        logger.debug("Realtime bridge open on %s", handle.topic)
        return True

    def _reset(self, attempt: object) -> None:
        if self._attempt is attempt:
            self._state = BridgeState.CLOSED
            self._attempt = None

    async def close(self) -> None:
        """Close deterministically; safe in every state."""
        self._attempt = None
        handle, self._handle = self._handle, None
        self._state = BridgeState.CLOSED
        if handle is not None:
            await self._realtime.unsubscribe(handle)

    # -------------------------------------------------------------------
    # Channel callbacks
    # -------------------------------------------------------------------
    def _on_change(self, event: ChangeEvent) -> None:
        if self._state is not BridgeState.OPEN:
            return
        self.events_received += 1
        targets = (
            self._invalidates(event) if callable(self._invalidates) else self._invalidates
        )
        for target in targets:
            self._store.invalidate(target)

    def _on_error(self, exc: BaseException) -> None:
        logger.warning("Realtime bridge on %s closed after channel error: %s", self.table, exc)
        self._attempt = None
        self._handle = None
        self._state = BridgeState.CLOSED

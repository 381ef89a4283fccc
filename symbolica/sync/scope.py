"""
symbolica.sync.scope — Consumer Scope
======================================

A :class:`Scope` is the lifetime of one consumer (a request handler, a
background job, the application itself).  Everything it opens, whether
query observers, realtime bridges or heartbeats, is torn down when the
scope exits, so no subscription or timer outlives its owner.

Usage::

    async with Scope(ctx, "group-chat") as scope:
        messages = await scope.query(("group-chat", gid), fetch_messages)
        await scope.realtime("group_chat_messages", {"group_id": gid},
                             invalidates=[("group-chat", gid)])
        ...
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from symbolica.remote.realtime import ChangeEvent
from symbolica.sync.bridge import RealtimeBridge, Target
from symbolica.sync.context import SyncContext
from symbolica.sync.keys import QueryKey
from symbolica.sync.query import FetchFn, QueryObserver
from symbolica.sync.tasks import Heartbeat

logger = logging.getLogger(__name__)


class Scope:
    def __init__(self, ctx: SyncContext, name: str = "scope") -> None:
        self.ctx = ctx
        self.name = name
        self._observers: list[QueryObserver] = []
        self._bridges: dict[tuple[str, frozenset], RealtimeBridge] = {}
        self._heartbeats: list[Heartbeat] = []
        self._closed = False

    async def __aenter__(self) -> Scope:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def bridges(self) -> list[RealtimeBridge]:
        return list(self._bridges.values())

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"Scope '{self.name}' is closed")

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    async def query(self, key: QueryKey, fetch_fn: FetchFn, **opts: Any) -> QueryObserver:
        """Create and mount a :class:`QueryObserver` owned by this scope.

        Retry policy, timeout and offline cache default to the context's.
        """
        self._check_open()
        opts.setdefault("retry", self.ctx.retry_policy)
        opts.setdefault("timeout", self.ctx.config.request_timeout)
        opts.setdefault("offline", self.ctx.offline)
        observer = QueryObserver(self.ctx.store, key, fetch_fn, **opts)
        self._observers.append(observer)
        await observer.mount()
        return observer

    # -------------------------------------------------------------------
    # Realtime
    # -------------------------------------------------------------------
    async def realtime(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        *,
        invalidates: Iterable[Target] | Callable[[ChangeEvent], Iterable[Target]] = (),
    ) -> RealtimeBridge:
        """Open (or reuse) the bridge for ``(table, filters)``."""
        self._check_open()
        ident = (table, frozenset((filters or {}).items()))
        bridge = self._bridges.get(ident)
        if bridge is None:
            bridge = RealtimeBridge(
                self.ctx.store, self.ctx.realtime, table,
                filters=filters, invalidates=invalidates,
            )
            self._bridges[ident] = bridge
        await bridge.open()
        return bridge

    # -------------------------------------------------------------------
    # Heartbeats
    # -------------------------------------------------------------------
    def heartbeat(
        self,
        beat: Callable[[], Awaitable[object]],
        interval: float | None = None,
        *,
        name: str = "heartbeat",
    ) -> Heartbeat:
        self._check_open()
        if interval is None:
            interval = self.ctx.config.heartbeat_interval
        hb = Heartbeat(beat, interval, name=name)
        self._heartbeats.append(hb)
        hb.start()
        return hb

    # -------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------
    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for observer in self._observers:
            observer.unmount()
        for hb in self._heartbeats:
            await hb.stop()
        for bridge in self._bridges.values():
            await bridge.close()
        logger.debug(
            "Scope %s closed (%d queries, %d bridges, %d heartbeats)",
            self.name, len(self._observers), len(self._bridges), len(self._heartbeats),
        )
        self._observers.clear()
        self._bridges.clear()
        self._heartbeats.clear()

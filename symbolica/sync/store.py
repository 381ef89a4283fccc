"""
symbolica.sync.store — Cache Store
===================================

Process-wide registry of query key → :class:`CacheEntry` with change
notification.  Every query observer, mutation and realtime bridge in a
process shares one store (injected through
:class:`~symbolica.sync.context.SyncContext`).

Ordering rules:

* Identical in-flight keys share one fetch.
* A forced fetch (after an invalidation) supersedes any fetch already in
  flight for the same key, and ``set``/``patch`` supersede every fetch
  started before them.  A superseded fetch never writes its result: the
  most recently *initiated* operation wins, not the most recently resolved.
* A failed fetch keeps the last good data and only flips ``status`` to
  ``error`` (stale-while-revalidate).

All mutation of the store happens on the event-loop thread, so no locking
is needed.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from symbolica.constants import DEFAULT_GC_AFTER, DEFAULT_GC_INTERVAL, DEFAULT_STALE_AFTER
from symbolica.sync.keys import KeyPredicate, QueryKey, as_predicate

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]
Listener = Callable[["CacheEntry"], Any]

_SUPERSEDED = object()


class FetchStatus(enum.StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"
    SUCCESS = "success"


@dataclass(eq=False, slots=True)
class CacheEntry:
    """One cache slot."""

    key: QueryKey
    stale_after: float = DEFAULT_STALE_AFTER
    gc_after: float = DEFAULT_GC_AFTER
    data: Any = None
    has_data: bool = False
    fetched_at: float | None = None
    status: FetchStatus = FetchStatus.IDLE
    error: BaseException | None = None
    invalidated: bool = False
    # Bumped on every invalidation; a fetch started before the latest one
    # leaves the entry stale.
    stale_marks: int = 0
    last_used_at: float = 0.0
    fetcher: Fetcher | None = None
    generation: int = 0
    listeners: list[Listener] = field(default_factory=list)

    def is_fresh(self, now: float) -> bool:
        if self.fetched_at is None or self.invalidated:
            return False
        return now - self.fetched_at < self.stale_after

    @property
    def is_fetching(self) -> bool:
        return self.status is FetchStatus.LOADING

    @property
    def observer_count(self) -> int:
        return len(self.listeners)


def _consume_result(task: asyncio.Task) -> None:
    # Errors are recorded on the entry; mark them retrieved so a fetch
    # whose awaiters all went away doesn't log "never retrieved".
    if not task.cancelled():
        task.exception()


class CacheStore:
    """Shared key/value cache with subscribe-on-change semantics.

    Usage::

        store = CacheStore(stale_after=30)
        store.ensure(("collections",), fetcher=load_collections)
        rows = await store.fetch(("collections",))
        unsubscribe = store.subscribe(("collections",), on_change)
        store.invalidate(("collections",))    # background refetch
        unsubscribe()
    """

    def __init__(
        self,
        *,
        stale_after: float = DEFAULT_STALE_AFTER,
        gc_after: float = DEFAULT_GC_AFTER,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_stale_after = stale_after
        self.default_gc_after = gc_after
        self._clock = clock
        self._entries: dict[QueryKey, CacheEntry] = {}
        self._inflight: dict[QueryKey, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self._gc_task: asyncio.Task | None = None

    def now(self) -> float:
        return self._clock()

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get(self, key: QueryKey) -> CacheEntry | None:
        """Return the entry for *key* without triggering a fetch."""
        return self._entries.get(key)

    def get_data(self, key: QueryKey, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None or not entry.has_data:
            return default
        return entry.data

    def is_fresh(self, key: QueryKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.is_fresh(self.now())

    def keys(self, target: QueryKey | KeyPredicate | None = None) -> list[QueryKey]:
        if target is None:
            return list(self._entries)
        predicate = as_predicate(target)
        return [k for k in self._entries if predicate(k)]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: QueryKey) -> bool:
        return key in self._entries

    # -------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------
    def ensure(
        self,
        key: QueryKey,
        *,
        fetcher: Fetcher | None = None,
        stale_after: float | None = None,
        gc_after: float | None = None,
    ) -> CacheEntry:
        """Return the entry for *key*, creating it if needed.

        A non-``None`` *fetcher* / timing replaces the registered one.
        """
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(
                key=key,
                stale_after=self.default_stale_after,
                gc_after=self.default_gc_after,
                last_used_at=self.now(),
            )
            self._entries[key] = entry
        if fetcher is not None:
            entry.fetcher = fetcher
        if stale_after is not None:
            entry.stale_after = stale_after
        if gc_after is not None:
            entry.gc_after = gc_after
        return entry

    def subscribe(self, key: QueryKey, listener: Listener) -> Callable[[], None]:
        """Call *listener(entry)* on every change to *key*.

        Returns the unsubscribe function; callers must invoke it on
        teardown.
        """
        entry = self.ensure(key)
        entry.listeners.append(listener)

        def unsubscribe() -> None:
            if listener in entry.listeners:
                entry.listeners.remove(listener)
                entry.last_used_at = self.now()

        return unsubscribe

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def set(self, key: QueryKey, data: Any) -> None:
        """Replace the data for *key* and mark it fresh."""
        entry = self.ensure(key)
        self._supersede(entry)
        entry.data = data
        entry.has_data = True
        entry.fetched_at = self.now()
        entry.last_used_at = entry.fetched_at
        entry.status = FetchStatus.SUCCESS
        entry.error = None
        entry.invalidated = False
        self._notify(entry)

    def patch(self, key: QueryKey, data: Any) -> None:
        """Replace the data for *key* without changing its freshness."""
        entry = self.ensure(key)
        self._supersede(entry)
        entry.data = data
        entry.has_data = True
        if entry.status in (FetchStatus.IDLE, FetchStatus.LOADING):
            entry.status = FetchStatus.SUCCESS
        self._notify(entry)

    def hydrate(self, key: QueryKey, data: Any) -> None:
        """Show *data* for an empty slot without marking it fetched.

        Used for offline fallbacks: the entry keeps its status/error and
        stays stale, so the next read still goes to the server.
        """
        entry = self.ensure(key)
        if entry.has_data:
            return
        entry.data = data
        entry.has_data = True
        self._notify(entry)

    def update(self, key: QueryKey, fn: Callable[[Any], Any]) -> Any:
        """``patch(key, fn(current_data))``; returns the new data."""
        entry = self.ensure(key)
        new = fn(entry.data if entry.has_data else None)
        self.patch(key, new)
        return new

    def clear_data(self, key: QueryKey) -> None:
        """Empty the slot for *key*, keeping its registration and listeners."""
        entry = self._entries.get(key)
        if entry is None:
            return
        self._supersede(entry)
        entry.data = None
        entry.has_data = False
        entry.fetched_at = None
        if entry.status is FetchStatus.SUCCESS:
            entry.status = FetchStatus.IDLE
        self._notify(entry)

    def remove(self, key: QueryKey) -> None:
        self._entries.pop(key, None)
        task = self._inflight.pop(key, None)
        if task is not None and not task.done():
            task.cancel()

    def clear(self) -> None:
        for key in list(self._entries):
            self.remove(key)

    def _supersede(self, entry: CacheEntry) -> None:
        entry.generation += 1
        self._inflight.pop(entry.key, None)

    # -------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------
    def _mark_stale(self, target: QueryKey | KeyPredicate) -> list[CacheEntry]:
        predicate = as_predicate(target)
        matched = [e for k, e in self._entries.items() if predicate(k)]
        for entry in matched:
            entry.invalidated = True
            entry.stale_marks += 1
        return matched

    def invalidate(self, target: QueryKey | KeyPredicate) -> list[QueryKey]:
        """Mark matching entries stale; refetch active ones in the background."""
        matched = self._mark_stale(target)
        for entry in matched:
            if entry.listeners and entry.fetcher is not None:
                self._spawn(self._background_fetch(entry.key))
        if matched:
            logger.debug("Invalidated %d cache entries", len(matched))
        return [e.key for e in matched]

    async def invalidate_and_refetch(
        self, target: QueryKey | KeyPredicate,
    ) -> list[QueryKey]:
        """Like :meth:`invalidate` but waits for the active refetches."""
        matched = self._mark_stale(target)
        active = [e.key for e in matched if e.listeners and e.fetcher is not None]
        if active:
            await asyncio.gather(
                *(self.fetch(key, force=True) for key in active),
                return_exceptions=True,
            )
        return [e.key for e in matched]

    # -------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------
    async def fetch(self, key: QueryKey, *, force: bool = False) -> Any:
        """Run the registered fetcher for *key* (or join the one in flight).

        With *force*, a new fetch is started even if one is in flight; the
        older one's result is then discarded.  Raises whatever the fetcher
        raised (after recording it on the entry).
        """
        entry = self._entries.get(key)
        if entry is None or entry.fetcher is None:
            raise KeyError(f"No fetcher registered for {key!r}")

        task = self._inflight.get(key)
        if task is None or task.done() or force:
            task = self._start_fetch(entry)

        while True:
            result = await asyncio.shield(task)
            if result is not _SUPERSEDED:
                return result
            current = self._inflight.get(key)
            if current is None or current is task:
                # Superseded by set()/patch(): the cache already holds newer data.
                return entry.data
            task = current

    def _start_fetch(self, entry: CacheEntry) -> asyncio.Task:
        entry.generation += 1
        entry.status = FetchStatus.LOADING
        task = asyncio.ensure_future(
            self._run_fetch(entry, entry.generation, entry.stale_marks),
        )
        task.add_done_callback(_consume_result)
        self._inflight[entry.key] = task
        self._notify(entry)
        return task

    async def _run_fetch(self, entry: CacheEntry, generation: int, stale_marks: int) -> Any:
        assert entry.fetcher is not None
        try:
            data = await entry.fetcher()
        except Exception as exc:
            if entry.generation != generation:
                logger.debug("Discarding superseded fetch error for %r", entry.key)
                return _SUPERSEDED
            self._finish(entry)
            entry.status = FetchStatus.ERROR
            entry.error = exc
            self._notify(entry)
            raise

        if entry.generation != generation:
            logger.debug("Discarding superseded fetch result for %r", entry.key)
            return _SUPERSEDED
        self._finish(entry)
        entry.data = data
        entry.has_data = True
        entry.fetched_at = self.now()
        entry.status = FetchStatus.SUCCESS
        entry.error = None
        entry.invalidated = entry.stale_marks != stale_marks
        self._notify(entry)
        return data

    def _finish(self, entry: CacheEntry) -> None:
        if self._inflight.get(entry.key) is asyncio.current_task():
            del self._inflight[entry.key]

    async def _background_fetch(self, key: QueryKey) -> None:
        try:
            await self.fetch(key, force=True)
        except Exception as exc:
            # Already recorded on the entry (status=error).
            logger.debug("Background refetch of %r failed: %s", key, exc)

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def in_flight(self, key: QueryKey) -> bool:
        task = self._inflight.get(key)
        return task is not None and not task.done()

    async def wait_idle(self) -> None:
        """Wait for all background refetches scheduled so far."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -------------------------------------------------------------------
    # Notification
    # -------------------------------------------------------------------
    def _notify(self, entry: CacheEntry) -> None:
        for listener in list(entry.listeners):
            try:
                listener(entry)
            except Exception:
                logger.exception("Cache listener for %r failed", entry.key)

    # -------------------------------------------------------------------
    # Garbage collection
    # -------------------------------------------------------------------
    def collect_garbage(self) -> int:
        """Evict entries with no listeners that were unused for ``gc_after``."""
        now = self.now()
        evicted = 0
        for key, entry in list(self._entries.items()):
            if entry.listeners or self.in_flight(key):
                continue
            if now - entry.last_used_at >= entry.gc_after:
                del self._entries[key]
                evicted += 1
        if evicted:
            logger.debug("Cache GC evicted %d entries", evicted)
        return evicted

    def start_gc(
        self,
        interval: float = DEFAULT_GC_INTERVAL,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Start the background garbage-collection task."""
        if self._gc_task is not None:
            return

        async def _gc_loop() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    self.collect_garbage()
                except Exception:
                    logger.exception("Cache GC error")

        loop = loop or asyncio.get_running_loop()
        self._gc_task = loop.create_task(_gc_loop(), name="cache-gc")

    def stop_gc(self) -> None:
        """Cancel the garbage-collection task."""
        if self._gc_task:
            self._gc_task.cancel()
            self._gc_task = None

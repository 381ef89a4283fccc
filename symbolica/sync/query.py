"""
symbolica.sync.query — Query Observers
=======================================

A :class:`QueryObserver` is one consumer's read-through view of a cache
slot.  Mounting it fetches only when no fresh entry exists; several
observers of the same key share the entry and any in-flight fetch.

Fetches are retried with exponential backoff + jitter for transport
errors only, and every attempt is bounded by a timeout.  Errors never
escape ``mount()``/``refetch()``; they are exposed on :attr:`state`.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from symbolica.constants import (
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_MAX_DELAY,
)
from symbolica.errors import RemoteTimeoutError, TransportError, is_retryable
from symbolica.sync.keys import QueryKey
from symbolica.sync.store import CacheEntry, CacheStore, FetchStatus

if TYPE_CHECKING:
    from symbolica.config import SymbolicaConfig
    from symbolica.sync.offline import OfflineCache

logger = logging.getLogger(__name__)

FetchFn = Callable[[], Awaitable[Any]]


# ---------------------------------------------------------------------------
# Retry + timeout
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff: ``attempts`` counts the first try."""

    attempts: int = DEFAULT_RETRY_ATTEMPTS
    base_delay: float = DEFAULT_RETRY_BASE_DELAY
    max_delay: float = DEFAULT_RETRY_MAX_DELAY

    def delay(self, attempt: int) -> float:
        backoff = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return backoff + random.uniform(0, backoff * 0.5)

    @classmethod
    def from_config(cls, cfg: SymbolicaConfig) -> RetryPolicy:
        return cls(
            attempts=cfg.retry_attempts,
            base_delay=cfg.retry_base_delay,
            max_delay=cfg.retry_max_delay,
        )


NO_RETRY = RetryPolicy(attempts=1)


async def call_with_timeout(
    operation: str, fn: FetchFn, timeout: float | None,
) -> Any:
    """Await ``fn()``; raise :class:`RemoteTimeoutError` after *timeout*."""
    if timeout is None:
        return await fn()
    try:
        return await asyncio.wait_for(fn(), timeout)
    except TimeoutError:
        raise RemoteTimeoutError(operation, timeout) from None


async def call_with_retry(
    fn: FetchFn,
    policy: RetryPolicy,
    *,
    operation: str = "fetch",
    timeout: float | None = None,
) -> Any:
    """Call *fn* until it succeeds, fails permanently, or attempts run out."""
    attempt = 0
    while True:
        attempt += 1
        try:
            return await call_with_timeout(operation, fn, timeout)
        except Exception as exc:
            if not is_retryable(exc) or attempt >= policy.attempts:
                raise
            wait = policy.delay(attempt)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                operation, attempt, policy.attempts, wait, exc,
            )
            await asyncio.sleep(wait)


# ---------------------------------------------------------------------------
# Observer
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class QueryState:
    """Snapshot of a query as seen by its consumer."""

    data: Any = None
    has_data: bool = False
    status: FetchStatus = FetchStatus.IDLE
    error: BaseException | None = None
    is_stale: bool = True

    @property
    def is_fetching(self) -> bool:
        return self.status is FetchStatus.LOADING

    @property
    def is_loading(self) -> bool:
        """Fetching with nothing to show yet."""
        return self.is_fetching and not self.has_data

    @property
    def is_error(self) -> bool:
        return self.status is FetchStatus.ERROR

    @property
    def is_success(self) -> bool:
        return self.status is FetchStatus.SUCCESS

    def as_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "is_loading": self.is_loading,
            "is_fetching": self.is_fetching,
            "error": self.error,
        }


class QueryObserver:
    """Declarative read-through access to one cache slot.

    Usage::

        observer = QueryObserver(store, ("collections",), load_collections)
        state = await observer.mount()
        if state.error and not state.has_data:
            ...                           # empty/error state with retry
        await observer.refetch()
        observer.unmount()
    """

    def __init__(
        self,
        store: CacheStore,
        key: QueryKey,
        fetch_fn: FetchFn,
        *,
        stale_after: float | None = None,
        gc_after: float | None = None,
        retry: RetryPolicy | None = None,
        timeout: float | None = None,
        enabled: bool = True,
        offline: OfflineCache | None = None,
        on_change: Callable[[QueryState], Any] | None = None,
        placeholder: Any = None,
    ) -> None:
        self._store = store
        self._key = key
        self._fetch_fn = fetch_fn
        self._stale_after = stale_after
        self._gc_after = gc_after
        self._retry = retry or RetryPolicy()
        self._timeout = timeout
        self._enabled = enabled
        self._offline = offline
        self._on_change = on_change
        self._placeholder = placeholder
        self._mounted = False
        self._unsubscribe: Callable[[], None] | None = None

    # -------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------
    @property
    def key(self) -> QueryKey:
        return self._key

    @property
    def mounted(self) -> bool:
        return self._mounted

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def state(self) -> QueryState:
        entry = self._store.get(self._key)
        if entry is None or not self._enabled:
            return QueryState(data=self._placeholder)
        return QueryState(
            data=entry.data if entry.has_data else self._placeholder,
            has_data=entry.has_data,
            status=entry.status,
            error=entry.error,
            is_stale=not entry.is_fresh(self._store.now()),
        )

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    async def mount(self) -> QueryState:
        """Subscribe to the slot and fetch unless a fresh entry exists."""
        if self._mounted:
            return self.state
        self._mounted = True
        if self._enabled:
            self._attach()
            await self._ensure_fresh()
        return self.state

    def unmount(self) -> None:
        """Stop listening.  The slot stays cached until garbage-collected."""
        self._mounted = False
        self._detach()

    async def refetch(self) -> QueryState:
        if self._mounted and self._enabled:
            await self._run(force=True)
        return self.state

    async def set_key(self, key: QueryKey, fetch_fn: FetchFn | None = None) -> QueryState:
        """Point the observer at a new slot; the old one is not evicted."""
        if fetch_fn is not None:
            self._fetch_fn = fetch_fn
        if key == self._key:
            return self.state
        self._detach()
        self._key = key
        if self._mounted and self._enabled:
            self._attach()
            await self._ensure_fresh()
        return self.state

    async def set_enabled(self, enabled: bool) -> QueryState:
        if enabled == self._enabled:
            return self.state
        self._enabled = enabled
        if not enabled:
            self._detach()
        elif self._mounted:
            self._attach()
            await self._ensure_fresh()
        return self.state

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _attach(self) -> None:
        self._store.ensure(
            self._key,
            fetcher=self._make_fetcher(self._key, self._fetch_fn),
            stale_after=self._stale_after,
            gc_after=self._gc_after,
        )
        self._unsubscribe = self._store.subscribe(self._key, self._on_entry_change)

    def _detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _make_fetcher(self, key: QueryKey, fetch_fn: FetchFn) -> FetchFn:
        operation = f"query {key!r}"
        offline = self._offline

        async def fetcher() -> Any:
            data = await call_with_retry(
                fetch_fn, self._retry, operation=operation, timeout=self._timeout,
            )
            if offline is not None:
                await offline.save_async(key, data)
            return data

        return fetcher

    async def _ensure_fresh(self) -> None:
        if self._store.is_fresh(self._key):
            return
        await self._run(force=False)

    async def _run(self, *, force: bool) -> None:
        key = self._key
        try:
            await self._store.fetch(key, force=force)
        except Exception as exc:
            logger.info("Query %r failed: %s", key, exc)
            await self._fallback_offline(key, exc)

    async def _fallback_offline(self, key: QueryKey, exc: BaseException) -> None:
        if self._offline is None:
            return
        if not isinstance(exc, (TransportError, RemoteTimeoutError)):
            return
        cached = await self._offline.load_async(key)
        if cached is not None:
            logger.info("Serving offline copy of %r", key)
            self._store.hydrate(key, cached)

    def _on_entry_change(self, entry: CacheEntry) -> None:
        if not self._mounted or self._on_change is None:
            return
        self._on_change(self.state)

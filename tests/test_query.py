"""
tests/test_query.py — QueryObserver / Retry Tests
==================================================
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from symbolica.errors import BusinessError, RemoteTimeoutError, TransportError
from symbolica.sync.offline import OfflineCache
from symbolica.sync.query import (
    NO_RETRY,
    QueryObserver,
    RetryPolicy,
    call_with_retry,
    call_with_timeout,
)
from symbolica.sync.store import CacheStore, FetchStatus

FAST_RETRY = RetryPolicy(attempts=3, base_delay=0.0, max_delay=0.0)


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ===========================================================================
# Retry / timeout helpers
# ===========================================================================
class TestRetryPolicy:
    def test_delay_is_capped_with_jitter(self):
        policy = RetryPolicy(attempts=5, base_delay=1.0, max_delay=4.0)
        assert 1.0 <= policy.delay(1) <= 1.5
        assert 2.0 <= policy.delay(2) <= 3.0
        assert 4.0 <= policy.delay(5) <= 6.0

    def test_from_config(self, test_config):
        policy = RetryPolicy.from_config(test_config)
        assert policy.attempts == 3
        assert policy.base_delay == 0.0

    def test_transport_error_retried_until_success(self):
        fn = AsyncMock(side_effect=[TransportError("down"), TransportError("down"), "ok"])
        assert run_async(call_with_retry(fn, FAST_RETRY)) == "ok"
        assert fn.await_count == 3

    def test_attempts_are_bounded(self):
        fn = AsyncMock(side_effect=TransportError("down"))
        with pytest.raises(TransportError):
            run_async(call_with_retry(fn, FAST_RETRY))
        assert fn.await_count == 3

    def test_business_error_not_retried(self):
        fn = AsyncMock(side_effect=BusinessError("Quest is full"))
        with pytest.raises(BusinessError):
            run_async(call_with_retry(fn, FAST_RETRY))
        assert fn.await_count == 1

    def test_timeout_raises_and_is_not_retried(self):
        calls = 0

        async def slow():
            nonlocal calls
            calls += 1
            await asyncio.sleep(1)

        with pytest.raises(RemoteTimeoutError) as exc_info:
            run_async(call_with_retry(slow, FAST_RETRY, operation="trending", timeout=0.01))
        assert calls == 1
        assert exc_info.value.operation == "trending"

    def test_call_with_timeout_none_means_unbounded(self):
        fn = AsyncMock(return_value=7)
        assert run_async(call_with_timeout("op", fn, None)) == 7


# ===========================================================================
# QueryObserver
# ===========================================================================
class TestQueryObserver:
    def test_mount_fetches_and_exposes_state(self):
        async def _inner():
            store = CacheStore(stale_after=60)
            fetch = AsyncMock(return_value=[{"id": 1}])
            observer = QueryObserver(store, ("collections",), fetch, retry=NO_RETRY)
            state = await observer.mount()
            assert state.data == [{"id": 1}]
            assert state.is_success
            assert not state.is_stale
            assert not state.is_loading
            assert fetch.await_count == 1
        run_async(_inner())

    def test_fresh_entry_is_a_cache_hit(self):
        async def _inner():
            store = CacheStore(stale_after=60)
            fetch = AsyncMock(return_value=["a"])
            first = QueryObserver(store, ("k",), fetch)
            second = QueryObserver(store, ("k",), fetch)
            await first.mount()
            state = await second.mount()
            assert state.data == ["a"]
            assert fetch.await_count == 1
        run_async(_inner())

    def test_concurrent_mounts_share_fetch(self):
        async def _inner():
            store = CacheStore()

            async def slow():
                await asyncio.sleep(0.01)
                return "v"

            fetch = AsyncMock(side_effect=slow)
            observers = [QueryObserver(store, ("k",), fetch) for _ in range(3)]
            states = await asyncio.gather(*(o.mount() for o in observers))
            assert [s.data for s in states] == ["v"] * 3
            assert fetch.await_count == 1
        run_async(_inner())

    def test_empty_list_is_success_not_error(self):
        async def _inner():
            store = CacheStore()
            observer = QueryObserver(store, ("k",), AsyncMock(return_value=[]))
            state = await observer.mount()
            assert state.data == []
            assert state.has_data
            assert state.error is None
            assert state.is_success
        run_async(_inner())

    def test_error_exposed_not_raised(self):
        async def _inner():
            store = CacheStore()
            fetch = AsyncMock(side_effect=TransportError("down"))
            observer = QueryObserver(store, ("k",), fetch, retry=FAST_RETRY, placeholder=[])
            state = await observer.mount()
            assert state.is_error
            assert isinstance(state.error, TransportError)
            assert state.data == []
            assert not state.has_data
            assert fetch.await_count == 3
        run_async(_inner())

    def test_refetch_error_keeps_previous_data(self):
        async def _inner():
            store = CacheStore()
            fetch = AsyncMock(side_effect=[["good"], BusinessError("nope")])
            observer = QueryObserver(store, ("k",), fetch, retry=NO_RETRY)
            await observer.mount()
            state = await observer.refetch()
            assert state.data == ["good"]
            assert state.is_error
        run_async(_inner())

    def test_disabled_query_never_fetches(self):
        async def _inner():
            store = CacheStore()
            fetch = AsyncMock(return_value="x")
            observer = QueryObserver(store, ("k",), fetch, enabled=False, placeholder=None)
            state = await observer.mount()
            assert state.data is None
            assert state.status is FetchStatus.IDLE
            assert fetch.await_count == 0

            state = await observer.set_enabled(True)
            assert state.data == "x"
            assert fetch.await_count == 1
        run_async(_inner())

    def test_set_key_switches_slot_without_evicting_old(self):
        async def _inner():
            store = CacheStore(stale_after=60)
            observer = QueryObserver(store, ("symbols", "a"), AsyncMock(return_value="A"))
            await observer.mount()
            state = await observer.set_key(("symbols", "b"), AsyncMock(return_value="B"))
            assert state.data == "B"
            assert store.get_data(("symbols", "a")) == "A"
            assert store.get(("symbols", "a")).observer_count == 0
            assert store.get(("symbols", "b")).observer_count == 1
        run_async(_inner())

    def test_on_change_called_while_mounted_only(self):
        async def _inner():
            store = CacheStore()
            seen = []
            observer = QueryObserver(
                store, ("k",), AsyncMock(return_value=1), on_change=seen.append,
            )
            await observer.mount()
            assert seen and seen[-1].data == 1
            observer.unmount()
            count = len(seen)
            store.set(("k",), 2)
            assert len(seen) == count
        run_async(_inner())

    def test_unmount_keeps_cached_data(self):
        async def _inner():
            store = CacheStore(stale_after=60)
            observer = QueryObserver(store, ("k",), AsyncMock(return_value="v"))
            await observer.mount()
            observer.unmount()
            assert not observer.mounted
            assert store.get_data(("k",)) == "v"
            assert store.get(("k",)).observer_count == 0
        run_async(_inner())

    def test_invalidation_refetches_mounted_observer(self):
        async def _inner():
            store = CacheStore(stale_after=60)
            fetch = AsyncMock(side_effect=["v1", "v2"])
            observer = QueryObserver(store, ("k",), fetch)
            await observer.mount()
            await store.invalidate_and_refetch(("k",))
            assert observer.state.data == "v2"
        run_async(_inner())


class TestOfflineFallback:
    def test_successful_fetch_is_saved(self, tmp_path):
        async def _inner():
            offline = OfflineCache(tmp_path / "offline.json", max_age=60)
            observer = QueryObserver(
                CacheStore(), ("collections",), AsyncMock(return_value=[1, 2]),
                offline=offline,
            )
            await observer.mount()
            assert offline.load(("collections",)) == [1, 2]
        run_async(_inner())

    def test_transport_failure_serves_offline_copy(self, tmp_path):
        async def _inner():
            offline = OfflineCache(tmp_path / "offline.json", max_age=60)
            offline.save(("collections",), [{"slug": "cached"}])
            observer = QueryObserver(
                CacheStore(), ("collections",),
                AsyncMock(side_effect=TransportError("offline")),
                retry=NO_RETRY, offline=offline,
            )
            state = await observer.mount()
            assert state.data == [{"slug": "cached"}]
            assert state.is_error
            assert state.is_stale
        run_async(_inner())

    def test_business_failure_does_not_use_offline_copy(self, tmp_path):
        async def _inner():
            offline = OfflineCache(tmp_path / "offline.json", max_age=60)
            offline.save(("k",), "cached")
            observer = QueryObserver(
                CacheStore(), ("k",), AsyncMock(side_effect=BusinessError("denied")),
                retry=NO_RETRY, offline=offline,
            )
            state = await observer.mount()
            assert not state.has_data
        run_async(_inner())

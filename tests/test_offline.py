"""
tests/test_offline.py — Offline Cache Tests
============================================
"""

from __future__ import annotations

import asyncio
import json

from symbolica.sync.offline import OfflineCache


class TestOfflineCache:
    def test_save_and_load(self, tmp_path, clock):
        cache = OfflineCache(tmp_path / "cache.json", max_age=60, clock=clock)
        assert cache.save(("collections",), [{"slug": "a"}])
        assert cache.load(("collections",)) == [{"slug": "a"}]

    def test_missing_key_is_none(self, tmp_path):
        cache = OfflineCache(tmp_path / "cache.json")
        assert cache.load(("nothing",)) is None

    def test_expired_entries_ignored(self, tmp_path, clock):
        cache = OfflineCache(tmp_path / "cache.json", max_age=60, clock=clock)
        cache.save(("k",), 1)
        clock.advance(61)
        assert cache.load(("k",)) is None

    def test_clear_expired_counts_and_keeps_fresh(self, tmp_path, clock):
        cache = OfflineCache(tmp_path / "cache.json", max_age=60, clock=clock)
        cache.save(("old",), 1)
        clock.advance(50)
        cache.save(("new",), 2)
        clock.advance(20)
        assert cache.clear_expired() == 1
        assert cache.load(("new",)) == 2
        assert cache.clear_expired() == 0

    def test_unserialisable_data_is_rejected_without_corrupting(self, tmp_path, clock):
        cache = OfflineCache(tmp_path / "cache.json", max_age=60, clock=clock)
        cache.save(("k",), "kept")
        assert cache.save(("bad",), object()) is False
        assert cache.load(("k",)) == "kept"

    def test_corrupt_file_is_ignored(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("{not json", encoding="utf-8")
        cache = OfflineCache(path)
        assert cache.load(("k",)) is None
        assert cache.save(("k",), [1])
        assert cache.load(("k",)) == [1]

    def test_malformed_record_is_ignored(self, tmp_path, clock):
        path = tmp_path / "cache.json"
        path.write_text(json.dumps({'["k"]': {"data": 1, "timestamp": "yesterday"}}))
        cache = OfflineCache(path, clock=clock)
        assert cache.load(("k",)) is None
        assert cache.clear_expired() == 1

    def test_clear_removes_file(self, tmp_path):
        cache = OfflineCache(tmp_path / "cache.json")
        cache.save(("k",), 1)
        cache.clear()
        assert not cache.path.exists()
        cache.clear()

    def test_concurrent_async_saves_all_persist(self, tmp_path, clock):
        cache = OfflineCache(tmp_path / "cache.json", max_age=60, clock=clock)

        async def _inner():
            keys = [("symbols", n) for n in range(10)]
            saved = await asyncio.gather(*(cache.save_async(k, k[1]) for k in keys))
            assert all(saved)
            loaded = await asyncio.gather(*(cache.load_async(k) for k in keys))
            assert loaded == list(range(10))

        loop = asyncio.new_event_loop()
        try:
            loop.run_until_complete(_inner())
        finally:
            loop.close()

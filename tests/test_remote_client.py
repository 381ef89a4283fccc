"""
tests/test_remote_client.py — Remote Data Client Tests
=======================================================

Runs the client against a file-backed SQLite database and checks the
``Result`` contract, filter handling, error mapping and realtime
publication of committed writes.
"""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from symbolica.errors import BusinessError, RemoteTimeoutError, TransportError
from symbolica.remote.client import RemoteDataClient, Result
from symbolica.remote.realtime import ChangeType, RealtimeHub


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def hub():
    return RealtimeHub()


@pytest.fixture
def client(db_engine, hub):
    return RemoteDataClient(db_engine, hub, timeout=5)


class TestResult:
    def test_unwrap_returns_data(self):
        assert Result(data=[1]).unwrap() == [1]

    def test_unwrap_raises_error(self):
        with pytest.raises(BusinessError):
            Result(error=BusinessError("x")).unwrap()


class TestCrud:
    def test_select_empty_table_is_empty_list(self, client):
        result = run_async(client.select("collections"))
        assert result.ok
        assert result.data == []

    def test_insert_then_select_with_filters(self, client):
        async def _inner():
            await client.insert("symbols", [
                {"name": "Triskele", "culture": "celtic"},
                {"name": "Valknut", "culture": "norse"},
                {"name": "Ogham", "culture": "celtic"},
            ])
            celtic = (await client.select(
                "symbols", filters={"culture": "celtic"}, order_by="name",
            )).unwrap()
            assert [r["name"] for r in celtic] == ["Ogham", "Triskele"]

            some = (await client.select(
                "symbols", filters={"name": ["Valknut", "Ogham"]}, order_by="name", descending=True,
            )).unwrap()
            assert [r["name"] for r in some] == ["Valknut", "Ogham"]

            limited = (await client.select("symbols", limit=1)).unwrap()
            assert len(limited) == 1
        run_async(_inner())

    def test_single_insert_returns_row_with_defaults(self, client):
        row = run_async(client.insert("collections", {"slug": "knots", "title": "Knots"})).unwrap()
        assert row["slug"] == "knots"
        assert row["id"]
        assert row["is_featured"] is False
        assert isinstance(row["created_at"], str)

    def test_select_one_missing_is_none(self, client):
        assert run_async(client.select_one("collections", filters={"slug": "nope"})).data is None

    def test_update_returns_updated_rows(self, client):
        async def _inner():
            await client.insert("collections", {"slug": "a", "title": "A"})
            rows = (await client.update(
                "collections", {"title": "A2"}, filters={"slug": "a"},
            )).unwrap()
            assert [r["title"] for r in rows] == ["A2"]
            assert (await client.update(
                "collections", {"title": "x"}, filters={"slug": "missing"},
            )).unwrap() == []
        run_async(_inner())

    def test_delete_returns_deleted_rows(self, client):
        async def _inner():
            await client.insert("collections", {"slug": "a", "title": "A"})
            deleted = (await client.delete("collections", filters={"slug": ["a"]})).unwrap()
            assert [r["slug"] for r in deleted] == ["a"]
            assert (await client.select("collections")).unwrap() == []
        run_async(_inner())

    def test_unfiltered_update_and_delete_refused(self, client):
        with pytest.raises(ValueError):
            run_async(client.update("collections", {"title": "x"}, filters={}))
        with pytest.raises(ValueError):
            run_async(client.delete("collections", filters={}))

    def test_unknown_table_and_column_rejected(self, client):
        with pytest.raises(ValueError, match="Unknown table"):
            run_async(client.select("users"))
        with pytest.raises(ValueError, match="Unknown column"):
            run_async(client.select("symbols", filters={"password": "x"}))


class TestErrorMapping:
    def test_constraint_violation_is_business_error(self, client):
        async def _inner():
            await client.insert("collections", {"slug": "dup", "title": "A"})
            result = await client.insert("collections", {"slug": "dup", "title": "B"})
            assert not result.ok
            assert isinstance(result.error, BusinessError)
        run_async(_inner())

    def test_unreachable_database_raises_transport_error(self, client):
        def boom(*args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        with patch.object(client, "_select_rows", side_effect=boom):
            with pytest.raises(TransportError):
                run_async(client.select("symbols"))

    def test_slow_call_raises_timeout(self, db_engine):
        slow_client = RemoteDataClient(db_engine, timeout=0.01)

        def slow(*args, **kwargs):
            import time
            time.sleep(0.1)
            return []

        with patch.object(slow_client, "_select_rows", side_effect=slow):
            with pytest.raises(RemoteTimeoutError):
                run_async(slow_client.select("symbols"))


class TestRealtimePublication:
    def test_writes_are_published(self, client, hub):
        async def _inner():
            events = []
            await hub.subscribe("collections", None, events.append)
            await client.insert("collections", {"slug": "a", "title": "A"})
            await client.update("collections", {"title": "B"}, filters={"slug": "a"})
            await client.delete("collections", filters={"slug": "a"})
            assert [e.type for e in events] == [
                ChangeType.INSERT, ChangeType.UPDATE, ChangeType.DELETE,
            ]
            assert events[1].old_record["title"] == "A"
            assert events[1].record["title"] == "B"
            assert events[2].old_record["slug"] == "a"
        run_async(_inner())

    def test_failed_write_is_not_published(self, client, hub):
        async def _inner():
            events = []
            await client.insert("collections", {"slug": "a", "title": "A"})
            await hub.subscribe("collections", None, events.append)
            await client.insert("collections", {"slug": "a", "title": "again"})
            assert events == []
        run_async(_inner())


class TestRpc:
    def test_unknown_function_is_error_result(self, client):
        result = run_async(client.rpc("nope"))
        assert isinstance(result.error, BusinessError)

    def test_sync_function_gets_engine(self, client, db_engine):
        seen = []

        def fn(engine, x):
            seen.append(engine)
            return x * 2

        client.register_rpc("double", fn)
        assert run_async(client.rpc("double", {"x": 4})).unwrap() == 8
        assert seen == [db_engine]

    def test_async_function(self, client):
        async def fn(name):
            return f"hi {name}"

        client.register_rpc("greet", fn)
        assert run_async(client.rpc("greet", {"name": "ana"})).data == "hi ana"

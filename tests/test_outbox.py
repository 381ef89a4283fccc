"""
tests/test_outbox.py — Outbox Tests
====================================
"""

from __future__ import annotations

from symbolica.sync.outbox import Outbox, OutboxStatus


class TestOutbox:
    def test_add_is_idempotent_per_client_id(self, clock):
        outbox = Outbox(clock)
        first = outbox.add(("group-chat", "g1"), "c1", {"content": "hi"})
        second = outbox.add(("group-chat", "g1"), "c1", {"content": "changed"})
        assert first is second
        assert second.payload == {"content": "hi"}
        assert len(outbox) == 1
        assert "c1" in outbox

    def test_failed_then_pending_counts_attempts(self, clock):
        outbox = Outbox(clock)
        outbox.add(("k",), "c1", {})
        outbox.mark_pending("c1")
        outbox.mark_failed("c1", "Service temporarily unavailable")
        item = outbox.get("c1")
        assert item.status is OutboxStatus.FAILED
        assert item.error == "Service temporarily unavailable"

        outbox.mark_pending("c1")
        assert item.status is OutboxStatus.PENDING
        assert item.error is None
        assert item.attempts == 2

    def test_mark_failed_unknown_is_none(self):
        assert Outbox().mark_failed("missing", "x") is None

    def test_items_filtered_by_key_oldest_first(self, clock):
        outbox = Outbox(clock)
        outbox.add(("chat", "g1"), "b", {})
        clock.advance(1)
        outbox.add(("chat", "g2"), "x", {})
        clock.advance(1)
        outbox.add(("chat", "g1"), "a", {})
        assert [i.client_id for i in outbox.items(("chat", "g1"))] == ["b", "a"]
        assert len(outbox.items()) == 3

    def test_remove(self, clock):
        outbox = Outbox(clock)
        outbox.add(("k",), "c1", {})
        assert outbox.remove("c1").client_id == "c1"
        assert outbox.remove("c1") is None
        assert len(outbox) == 0

    def test_owned_by_checks_author(self, clock):
        outbox = Outbox(clock)
        outbox.add(("group-chat", "g1"), "c1", {}, user_id="user-1")
        assert outbox.owned_by("c1", "user-1").client_id == "c1"
        assert outbox.owned_by("c1", "user-2") is None
        assert outbox.owned_by("missing", "user-1") is None

    def test_items_filtered_by_author(self, clock):
        outbox = Outbox(clock)
        outbox.add(("group-chat", "g1"), "a", {}, user_id="user-1")
        outbox.add(("group-chat", "g1"), "b", {}, user_id="user-2")
        mine = outbox.items(("group-chat", "g1"), user_id="user-1")
        assert [i.client_id for i in mine] == ["a"]
        assert len(outbox.items(("group-chat", "g1"))) == 2

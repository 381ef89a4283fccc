"""
tests/test_group_chat.py — Group Chat Send / Resend / Edit / Delete
====================================================================

Covers the optimistic send flow, a failed send staying visible to its author as
``failed``, idempotent resends (no duplicate rows even when the first
response was lost) and author-only edits and deletes.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from symbolica.errors import AuthorizationError, BusinessError, TransportError, ValidationError
from symbolica.hooks.group_chat import (
    FAILED,
    PENDING,
    SENT,
    chat_key,
    delete_message_mutation,
    discard_message,
    edit_message_mutation,
    query_messages,
    resend_message_mutation,
    send_message_mutation,
    watch_messages,
)
from symbolica.sync.outbox import OutboxStatus
from symbolica.sync.scope import Scope

GROUP = "group-1"


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def chat_ctx(ctx):
    async def _setup():
        await ctx.client.insert("interest_groups", {"id": GROUP, "name": "Celts", "slug": "celts"})
        await ctx.client.insert("profiles", {"id": "user-1", "username": "ana"})
    run_async(_setup())
    return ctx


async def _stored(ctx) -> list[dict]:
    return (await ctx.client.select("group_chat_messages", filters={"group_id": GROUP})).unwrap()


class TestSend:
    def test_send_confirms_and_enriches(self, chat_ctx):
        async def _inner():
            async with Scope(chat_ctx) as scope:
                observer = await query_messages(scope, GROUP, "user-1")
                assert observer.state.data == []
                mutation = send_message_mutation(chat_ctx, GROUP, "user-1")
                row = await mutation.mutate("  hello  ")
                assert row["content"] == "hello"
                messages = observer.state.data
                assert len(messages) == 1
                assert messages[0]["delivery_status"] == SENT
                assert messages[0]["profile"]["username"] == "ana"
                assert messages[0]["id"] == row["id"]
            assert len(chat_ctx.outbox) == 0
        run_async(_inner())

    def test_pending_row_visible_during_send(self, chat_ctx):
        async def _inner():
            seen = []
            original = chat_ctx.client.insert

            async def spy(table, values):
                seen.append(chat_ctx.store.get_data(chat_key(GROUP, "user-1")))
                return await original(table, values)

            with patch.object(chat_ctx.client, "insert", side_effect=spy):
                await send_message_mutation(chat_ctx, GROUP, "user-1").mutate("hi")
            assert seen[0][-1]["delivery_status"] == PENDING
            assert seen[0][-1]["content"] == "hi"
        run_async(_inner())

    @pytest.mark.parametrize("content", ["", "   ", "x" * 2001])
    def test_invalid_content_never_sent(self, chat_ctx, content):
        async def _inner():
            mutation = send_message_mutation(chat_ctx, GROUP, "user-1")
            await mutation.mutate({"content": content})
            assert isinstance(mutation.error, ValidationError)
            assert mutation.error.field == "content"
            assert await _stored(chat_ctx) == []
            assert len(chat_ctx.outbox) == 0
        run_async(_inner())

    def test_blank_message_error_text(self, chat_ctx):
        async def _inner():
            mutation = send_message_mutation(chat_ctx, GROUP, "user-1")
            await mutation.mutate("   ")
            assert mutation.error.message == "Message cannot be empty"
        run_async(_inner())

    def test_anonymous_send_rejected(self, chat_ctx):
        async def _inner():
            mutation = send_message_mutation(chat_ctx, GROUP, None)
            await mutation.mutate("hi")
            assert isinstance(mutation.error, AuthorizationError)
        run_async(_inner())


class TestFailedSendAndResend:
    def test_offline_send_stays_visible_as_failed(self, chat_ctx):
        async def _inner():
            async with Scope(chat_ctx) as scope:
                observer = await query_messages(scope, GROUP, "user-1")
                mutation = send_message_mutation(chat_ctx, GROUP, "user-1")
                with patch.object(
                    chat_ctx.client, "insert", AsyncMock(side_effect=TransportError("offline")),
                ) as insert:
                    assert await mutation.mutate("are you there?") is None
                # Transport errors are retried with the context policy.
                assert insert.await_count == 3

                messages = observer.state.data
                assert len(messages) == 1
                assert messages[0]["delivery_status"] == FAILED
                assert messages[0]["error"] == "An error occurred. Please try again later."
                item = chat_ctx.outbox.items(chat_key(GROUP))[0]
                assert item.status is OutboxStatus.FAILED

                # A refetch keeps showing the unsent message after server rows.
                state = await observer.refetch()
                assert [m["delivery_status"] for m in state.data] == [FAILED]
        run_async(_inner())

    def test_resend_delivers_once(self, chat_ctx):
        async def _inner():
            send = send_message_mutation(chat_ctx, GROUP, "user-1")
            with patch.object(
                chat_ctx.client, "insert", AsyncMock(side_effect=TransportError("offline")),
            ):
                await send.mutate("retry me")
            (item,) = chat_ctx.outbox.items()

            async with Scope(chat_ctx) as scope:
                observer = await query_messages(scope, GROUP, "user-1")
                resend = resend_message_mutation(chat_ctx, GROUP, "user-1")
                row = await resend.mutate(item.client_id)
                assert row["client_id"] == item.client_id
                assert [m["delivery_status"] for m in observer.state.data] == [SENT]
            assert len(await _stored(chat_ctx)) == 1
            assert len(chat_ctx.outbox) == 0
        run_async(_inner())

    def test_lost_response_does_not_duplicate(self, chat_ctx):
        """The first insert commits but its response never arrives."""
        async def _inner():
            original = chat_ctx.client.insert

            async def commit_then_drop(table, values):
                await original(table, values)
                raise TransportError("connection reset")

            send = send_message_mutation(chat_ctx, GROUP, "user-1")
            with patch.object(chat_ctx.client, "insert", side_effect=commit_then_drop):
                await send.mutate("only once")
            assert isinstance(send.error, TransportError)
            # Retries were rejected by the unique client_id.
            assert len(await _stored(chat_ctx)) == 1

            (item,) = chat_ctx.outbox.items()
            row = await resend_message_mutation(chat_ctx, GROUP, "user-1").mutate(item.client_id)
            assert row is not None
            assert len(await _stored(chat_ctx)) == 1
        run_async(_inner())

    def test_refetch_drops_outbox_item_confirmed_by_server(self, chat_ctx):
        async def _inner():
            original = chat_ctx.client.insert

            async def commit_then_drop(table, values):
                await original(table, values)
                raise TransportError("connection reset")

            with patch.object(chat_ctx.client, "insert", side_effect=commit_then_drop):
                await send_message_mutation(chat_ctx, GROUP, "user-1").mutate("arrived")
            assert len(chat_ctx.outbox) == 1

            async with Scope(chat_ctx) as scope:
                observer = await query_messages(scope, GROUP, "user-1")
                assert [m["delivery_status"] for m in observer.state.data] == [SENT]
            assert len(chat_ctx.outbox) == 0
        run_async(_inner())

    def test_resend_unknown_message(self, chat_ctx):
        async def _inner():
            mutation = resend_message_mutation(chat_ctx, GROUP, "user-1")
            await mutation.mutate("no-such-id")
            assert isinstance(mutation.error, BusinessError)
        run_async(_inner())

    def test_discard_removes_failed_message(self, chat_ctx):
        async def _inner():
            send = send_message_mutation(chat_ctx, GROUP, "user-1")
            with patch.object(
                chat_ctx.client, "insert", AsyncMock(side_effect=TransportError("offline")),
            ):
                await send.mutate("never mind")
            (item,) = chat_ctx.outbox.items()
            assert discard_message(chat_ctx, GROUP, item.client_id, "user-1")
            assert chat_ctx.store.get_data(chat_key(GROUP, "user-1")) == []
            assert not discard_message(chat_ctx, GROUP, item.client_id, "user-1")
        run_async(_inner())


class TestOwnership:
    def _other_group(self, ctx):
        async def _setup():
            await ctx.client.insert("interest_groups", {"id": "g2", "name": "Norse", "slug": "norse"})
            await ctx.client.insert("profiles", {"id": "user-2", "username": "bo"})
        return _setup()

    async def _fail_send(self, ctx, user_id, text, client_id=None):
        body = {"content": text}
        if client_id:
            body["client_id"] = client_id
        with patch.object(ctx.client, "insert", AsyncMock(side_effect=TransportError("offline"))):
            await send_message_mutation(ctx, GROUP, user_id).mutate(body)

    def test_reused_client_id_never_adopts_foreign_row(self, chat_ctx):
        async def _inner():
            await self._other_group(chat_ctx)
            first = await send_message_mutation(chat_ctx, GROUP, "user-1").mutate_async(
                {"content": "private to group one", "client_id": "dup"},
            )
            assert first["client_id"] == "dup"

            async with Scope(chat_ctx) as scope:
                observer = await query_messages(scope, "g2", "user-2")
                send = send_message_mutation(chat_ctx, "g2", "user-2")
                assert await send.mutate({"content": "hello", "client_id": "dup"}) is None
                assert isinstance(send.error, BusinessError)

                (message,) = observer.state.data
                assert message["delivery_status"] == FAILED
                assert message["content"] == "hello"
                assert message["group_id"] == "g2"
            assert chat_ctx.outbox.get("dup").status is OutboxStatus.FAILED
            assert len(await _stored(chat_ctx)) == 1
        run_async(_inner())

    def test_client_id_held_by_another_author_rejected(self, chat_ctx):
        async def _inner():
            await self._fail_send(chat_ctx, "user-1", "mine", client_id="c-9")
            send = send_message_mutation(chat_ctx, GROUP, "user-2")
            await send.mutate({"content": "theirs", "client_id": "c-9"})
            assert isinstance(send.error, ValidationError)
            assert send.error.field == "client_id"
            assert chat_ctx.outbox.get("c-9").payload["content"] == "mine"
        run_async(_inner())

    def test_failed_messages_visible_only_to_author(self, chat_ctx):
        async def _inner():
            await self._fail_send(chat_ctx, "user-1", "unsent")
            async with Scope(chat_ctx) as scope:
                mine = await query_messages(scope, GROUP, "user-1")
                theirs = await query_messages(scope, GROUP, "user-2")
                assert [m["content"] for m in mine.state.data] == ["unsent"]
                assert theirs.state.data == []
        run_async(_inner())

    def test_only_author_resends(self, chat_ctx):
        async def _inner():
            await self._fail_send(chat_ctx, "user-1", "mine")
            (item,) = chat_ctx.outbox.items()
            resend = resend_message_mutation(chat_ctx, GROUP, "user-2")
            await resend.mutate(item.client_id)
            assert isinstance(resend.error, BusinessError)
            assert await _stored(chat_ctx) == []
            assert chat_ctx.outbox.get(item.client_id).status is OutboxStatus.FAILED
        run_async(_inner())

    def test_only_author_discards(self, chat_ctx):
        async def _inner():
            await self._fail_send(chat_ctx, "user-1", "mine")
            (item,) = chat_ctx.outbox.items()
            assert not discard_message(chat_ctx, GROUP, item.client_id, "user-2")
            assert item.client_id in chat_ctx.outbox
            assert not discard_message(chat_ctx, "g2", item.client_id, "user-1")
            assert discard_message(chat_ctx, GROUP, item.client_id, "user-1")
        run_async(_inner())


class TestEditDelete:
    def _send(self, ctx, user="user-1", text="original"):
        return send_message_mutation(ctx, GROUP, user).mutate_async(text)

    def test_author_can_edit(self, chat_ctx):
        async def _inner():
            row = await self._send(chat_ctx)
            async with Scope(chat_ctx) as scope:
                observer = await query_messages(scope, GROUP, "user-1")
                edit = edit_message_mutation(chat_ctx, GROUP, "user-1")
                await edit.mutate({"message_id": row["id"], "content": "fixed"})
                assert edit.error is None
                (message,) = observer.state.data
                assert message["content"] == "fixed"
                assert message["is_edited"] is True
        run_async(_inner())

    def test_other_user_cannot_edit(self, chat_ctx):
        async def _inner():
            row = await self._send(chat_ctx)
            async with Scope(chat_ctx) as scope:
                observer = await query_messages(scope, GROUP, "user-2")
                edit = edit_message_mutation(chat_ctx, GROUP, "user-2")
                await edit.mutate({"message_id": row["id"], "content": "hijack"})
                assert isinstance(edit.error, AuthorizationError)
                assert edit.error.message == "Access denied"
                # Optimistic edit rolled back.
                assert observer.state.data[0]["content"] == "original"
        run_async(_inner())

    def test_author_can_delete(self, chat_ctx):
        async def _inner():
            row = await self._send(chat_ctx)
            async with Scope(chat_ctx) as scope:
                observer = await query_messages(scope, GROUP, "user-1")
                delete = delete_message_mutation(chat_ctx, GROUP, "user-1")
                assert await delete.mutate(row["id"]) == 1
                assert observer.state.data == []
        run_async(_inner())

    def test_delete_missing_message(self, chat_ctx):
        async def _inner():
            delete = delete_message_mutation(chat_ctx, GROUP, "user-1")
            await delete.mutate("missing-id")
            assert isinstance(delete.error, BusinessError)
        run_async(_inner())


class TestChatRealtime:
    def test_message_from_another_member_appears(self, chat_ctx):
        async def _inner():
            async with Scope(chat_ctx) as scope:
                await watch_messages(scope, GROUP)
                observer = await query_messages(scope, GROUP, "user-1")
                await chat_ctx.client.insert("group_chat_messages", {
                    "group_id": GROUP, "user_id": "user-2", "content": "hello from elsewhere",
                })
                await chat_ctx.store.wait_idle()
                assert [m["content"] for m in observer.state.data] == ["hello from elsewhere"]
        run_async(_inner())

    def test_other_group_events_ignored(self, chat_ctx):
        async def _inner():
            async with Scope(chat_ctx) as scope:
                bridge = await watch_messages(scope, GROUP)
                await chat_ctx.client.insert("interest_groups", {"id": "g2", "name": "N", "slug": "n"})
                await chat_ctx.client.insert("group_chat_messages", {
                    "group_id": "g2", "user_id": "user-2", "content": "elsewhere",
                })
                assert bridge.events_received == 0
        run_async(_inner())

    def test_no_group_means_no_subscription(self, chat_ctx):
        async def _inner():
            async with Scope(chat_ctx) as scope:
                bridge = await watch_messages(scope, None)
                assert not bridge.has_valid_filter
                assert chat_ctx.realtime.open_channels == 0
        run_async(_inner())

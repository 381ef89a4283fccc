"""
symbolica.hooks.group_chat — Interest-group Chat
=================================================

Each reader's view of a group lives under
``("group-chat", <group_id>, <viewer_id>)``.  The cached list is the
server's latest page (oldest first, each row enriched with its author's
profile) followed by the reader's own messages still in the outbox, so a
message that failed to send stays visible to its author, marked
``failed``, until it is resent or discarded.  Invalidating
``("group-chat", <group_id>)`` reaches every reader's view.

Every outgoing message carries a client-generated ``client_id``.  The
table has a unique constraint on it, which makes sending idempotent: a
resend after a lost response finds the already-stored row instead of
inserting a second one.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from functools import partial
from typing import Any

from symbolica.constants import CHAT_PAGE_SIZE
from symbolica.errors import (
    AuthorizationError,
    BusinessError,
    ValidationError,
    safe_error_message,
)
from symbolica.hooks.profiles import attach_profiles
from symbolica.remote.client import RemoteDataClient
from symbolica.schemas import ChatMessageEdit, ChatMessageIn, validate
from symbolica.sync.bridge import RealtimeBridge
from symbolica.sync.context import SyncContext
from symbolica.sync.keys import QueryKey, make_key
from symbolica.sync.mutation import Mutation, OptimisticState, OptimisticUpdate
from symbolica.sync.outbox import OutboxItem
from symbolica.sync.query import QueryObserver
from symbolica.sync.scope import Scope
from symbolica.sync.store import CacheStore

logger = logging.getLogger(__name__)

TABLE = "group_chat_messages"

# delivery_status values
SENT = "sent"
PENDING = "pending"
FAILED = "failed"


def chat_key(group_id: str, viewer_id: str | None = None) -> QueryKey:
    """The group's prefix, or one reader's view of it."""
    if viewer_id is None:
        return make_key("group-chat", group_id)
    return make_key("group-chat", group_id, viewer_id)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------
def _local_message(item: OutboxItem) -> dict[str, Any]:
    return {**item.payload, "id": None, "delivery_status": str(item.status), "error": item.error}


async def fetch_messages(
    ctx: SyncContext,
    group_id: str,
    viewer_id: str | None = None,
    limit: int = CHAT_PAGE_SIZE,
) -> list[dict[str, Any]]:
    rows = (await ctx.client.select(
        TABLE,
        filters={"group_id": group_id},
        order_by="created_at",
        descending=True,
        limit=limit,
    )).unwrap()
    rows.reverse()
    rows = await attach_profiles(ctx.client, rows)
    messages = [{**r, "delivery_status": SENT, "error": None} for r in rows]

    key = chat_key(group_id)
    confirmed = {(r["client_id"], r.get("user_id")) for r in rows if r.get("client_id")}
    for item in ctx.outbox.items(key):
        if (item.client_id, item.user_id) in confirmed:
            ctx.outbox.remove(item.client_id)
    if viewer_id:
        messages.extend(
            _local_message(item) for item in ctx.outbox.items(key, user_id=viewer_id)
        )
    return messages


async def _deliver(client: RemoteDataClient, message: dict[str, Any]) -> dict[str, Any]:
    """Insert *message*; an earlier delivery of the same message wins.

    A stored row is only taken as that earlier delivery when it matches the
    message's group, author and text.  Any other holder of the ``client_id``
    is a collision and the send fails.
    """
    values = {
        k: message.get(k)
        for k in ("group_id", "user_id", "content", "message_type", "reply_to_id", "client_id")
    }
    result = await client.insert(TABLE, values)
    if result.ok:
        return result.data
    existing = (await client.select_one(
        TABLE, filters={"client_id": message["client_id"]},
    )).unwrap()
    if existing is None:
        raise result.error
    if any(existing.get(k) != message.get(k) for k in ("group_id", "user_id", "content")):
        logger.warning("Message id %s is already taken by another message", message["client_id"])
        raise BusinessError("Message could not be sent")
    logger.info("Message %s was already delivered", message["client_id"])
    return existing


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
async def query_messages(
    scope: Scope, group_id: str | None, viewer_id: str | None = None,
) -> QueryObserver:
    return await scope.query(
        chat_key(group_id or "", viewer_id),
        partial(fetch_messages, scope.ctx, group_id, viewer_id),
        enabled=bool(group_id),
        placeholder=[],
    )


async def watch_messages(scope: Scope, group_id: str | None) -> RealtimeBridge:
    """Invalidate the group's messages on any insert/update/delete."""
    return await scope.realtime(
        TABLE, {"group_id": group_id}, invalidates=[chat_key(group_id or "")],
    )


# ---------------------------------------------------------------------------
# Send / resend
# ---------------------------------------------------------------------------
def _show_pending(current: Any, message: dict[str, Any]) -> list[dict[str, Any]]:
    rows = [r for r in (current or []) if r.get("client_id") != message["client_id"]]
    return [*rows, {**message, "id": None, "delivery_status": PENDING, "error": None}]


def _mark_failed(
    ctx: SyncContext,
    key: QueryKey,
    exc: BaseException,
    message: dict[str, Any],
    state: OptimisticState | None,
) -> None:
    error = safe_error_message(exc)
    client_id = message["client_id"]
    ctx.outbox.mark_failed(client_id, error)
    ctx.store.update(key, lambda rows: [
        {**r, "delivery_status": FAILED, "error": error}
        if r.get("client_id") == client_id else r
        for r in rows or []
    ])


def _confirm(
    ctx: SyncContext,
    key: QueryKey,
    store: CacheStore,
    message: dict[str, Any],
    row: dict[str, Any],
) -> None:
    client_id = message["client_id"]
    ctx.outbox.remove(client_id)
    store.update(key, lambda rows: [
        {**row, "profile": r.get("profile"), "delivery_status": SENT, "error": None}
        if r.get("client_id") == client_id else r
        for r in rows or []
    ])


def send_message_mutation(ctx: SyncContext, group_id: str | None, user_id: str | None) -> Mutation:
    """Variables: the message text, or a dict matching :class:`ChatMessageIn`."""
    group = chat_key(group_id or "")
    view = chat_key(group_id or "", user_id)

    def check(variables: Any) -> dict[str, Any]:
        if not user_id:
            raise AuthorizationError()
        if not group_id:
            raise ValidationError("Invalid input", field="group_id")
        if isinstance(variables, str):
            variables = {"content": variables}
        body = validate(ChatMessageIn, variables)
        client_id = body.client_id or str(uuid.uuid4())
        held = ctx.outbox.get(client_id)
        if held is not None and (held.user_id != user_id or held.key != group):
            raise ValidationError("Invalid input", field="client_id")
        return {
            "group_id": group_id,
            "user_id": user_id,
            "content": body.content,
            "message_type": body.message_type,
            "reply_to_id": body.reply_to_id,
            "client_id": client_id,
            "created_at": _now_iso(),
            "is_edited": False,
            "profile": None,
        }

    async def run(message: dict[str, Any]) -> dict[str, Any]:
        ctx.outbox.add(group, message["client_id"], message, user_id=user_id)
        ctx.outbox.mark_pending(message["client_id"])
        return await _deliver(ctx.client, message)

    return Mutation(
        ctx.store,
        run,
        validate=check,
        optimistic=OptimisticUpdate(view, _show_pending),
        on_error=partial(_mark_failed, ctx, view),
        patch=partial(_confirm, ctx, view),
        invalidates=[group],
        retry=ctx.retry_policy,
        name="send message",
    )


def resend_message_mutation(
    ctx: SyncContext, group_id: str | None, user_id: str | None,
) -> Mutation:
    """Variables: the ``client_id`` of one of *user_id*'s messages in the outbox."""
    group = chat_key(group_id or "")
    view = chat_key(group_id or "", user_id)

    def check(client_id: Any) -> dict[str, Any]:
        if not user_id:
            raise AuthorizationError()
        item = ctx.outbox.owned_by(client_id, user_id) if isinstance(client_id, str) else None
        if item is None or item.key != group:
            raise BusinessError("Message not found")
        return dict(item.payload)

    async def run(message: dict[str, Any]) -> dict[str, Any]:
        ctx.outbox.mark_pending(message["client_id"])
        return await _deliver(ctx.client, message)

    return Mutation(
        ctx.store,
        run,
        validate=check,
        optimistic=OptimisticUpdate(view, _show_pending),
        on_error=partial(_mark_failed, ctx, view),
        patch=partial(_confirm, ctx, view),
        invalidates=[group],
        retry=ctx.retry_policy,
        name="resend message",
    )


def discard_message(ctx: SyncContext, group_id: str, client_id: str, user_id: str | None) -> bool:
    """Drop one of *user_id*'s unsent messages from the outbox and their list."""
    item = ctx.outbox.owned_by(client_id, user_id)
    if item is None or item.key != chat_key(group_id):
        return False
    ctx.outbox.remove(client_id)
    ctx.store.update(chat_key(group_id, user_id), lambda rows: [
        r for r in rows or [] if r.get("client_id") != client_id
    ])
    return True


# ---------------------------------------------------------------------------
# Edit / delete
# ---------------------------------------------------------------------------
async def _own_message(client: RemoteDataClient, message_id: str, user_id: str) -> None:
    row = (await client.select_one(TABLE, filters={"id": message_id})).unwrap()
    if row is None:
        raise BusinessError("Message not found")
    if row["user_id"] != user_id:
        raise AuthorizationError("Access denied")


def edit_message_mutation(ctx: SyncContext, group_id: str, user_id: str | None) -> Mutation:
    """Variables: ``{"message_id": str, "content": str}``."""
    client = ctx.client

    def check(variables: dict[str, Any]) -> dict[str, Any]:
        if not user_id:
            raise AuthorizationError()
        body = validate(ChatMessageEdit, {"content": variables.get("content", "")})
        return {"message_id": variables.get("message_id"), "content": body.content}

    def apply(current: Any, v: dict[str, Any]) -> list[dict[str, Any]]:
        return [
            {**r, "content": v["content"], "is_edited": True} if r.get("id") == v["message_id"] else r
            for r in current or []
        ]

    async def run(v: dict[str, Any]) -> dict[str, Any]:
        await _own_message(client, v["message_id"], user_id)
        rows = (await client.update(
            TABLE,
            {"content": v["content"], "is_edited": True, "updated_at": datetime.now(timezone.utc)},
            filters={"id": v["message_id"]},
        )).unwrap()
        return rows[0]

    return Mutation(
        ctx.store,
        run,
        validate=check,
        optimistic=OptimisticUpdate(chat_key(group_id, user_id), apply),
        invalidates=[chat_key(group_id)],
        name="edit message",
    )


def delete_message_mutation(ctx: SyncContext, group_id: str, user_id: str | None) -> Mutation:
    """Variables: the message id."""
    client = ctx.client

    def check(message_id: Any) -> str:
        if not user_id:
            raise AuthorizationError()
        if not message_id or not isinstance(message_id, str):
            raise ValidationError("Invalid input", field="message_id")
        return message_id

    async def run(message_id: str) -> int:
        await _own_message(client, message_id, user_id)
        return len((await client.delete(TABLE, filters={"id": message_id})).unwrap())

    return Mutation(
        ctx.store,
        run,
        validate=check,
        optimistic=OptimisticUpdate(
            chat_key(group_id, user_id),
            lambda current, mid: [r for r in current or [] if r.get("id") != mid],
        ),
        invalidates=[chat_key(group_id)],
        name="delete message",
    )

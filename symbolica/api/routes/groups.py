"""
symbolica.api.routes.groups — Interest-group chat
==================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status

from symbolica.api.deps import Context, CurrentUser, query_response
from symbolica.hooks import group_chat as hooks
from symbolica.schemas import ChatMessageEdit, ChatMessageIn
from symbolica.sync.scope import Scope

router = APIRouter(prefix="/groups/{group_id}/messages", tags=["groups"])
logger = logging.getLogger(__name__)


@router.get("")
async def list_messages(group_id: str, ctx: Context, user: CurrentUser):
    async with Scope(ctx, f"group-chat:{group_id}:{user['sub']}") as scope:
        observer = await hooks.query_messages(scope, group_id, user["sub"])
        return query_response(observer.state)


@router.post("", status_code=201)
async def send_message(group_id: str, body: ChatMessageIn, ctx: Context, user: CurrentUser):
    """Send a message.  A failure leaves it in the outbox for ``/resend``."""
    mutation = hooks.send_message_mutation(ctx, group_id, user["sub"])
    return {"data": await mutation.mutate_async(body.model_dump())}


@router.post("/{client_id}/resend")
async def resend_message(group_id: str, client_id: str, ctx: Context, user: CurrentUser):
    mutation = hooks.resend_message_mutation(ctx, group_id, user["sub"])
    return {"data": await mutation.mutate_async(client_id)}


@router.delete("/outbox/{client_id}", status_code=204)
async def discard_message(group_id: str, client_id: str, ctx: Context, user: CurrentUser):
    if not hooks.discard_message(ctx, group_id, client_id, user["sub"]):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Message not found")


@router.patch("/{message_id}")
async def edit_message(
    group_id: str, message_id: str, body: ChatMessageEdit, ctx: Context, user: CurrentUser,
):
    mutation = hooks.edit_message_mutation(ctx, group_id, user["sub"])
    row = await mutation.mutate_async({"message_id": message_id, "content": body.content})
    return {"data": row}


@router.delete("/{message_id}", status_code=204)
async def delete_message(group_id: str, message_id: str, ctx: Context, user: CurrentUser):
    await hooks.delete_message_mutation(ctx, group_id, user["sub"]).mutate_async(message_id)

"""
symbolica.api.routes.quests — Treasure quest participation
===========================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter

from symbolica.api.deps import Context, CurrentUser, query_response
from symbolica.hooks import quests as hooks
from symbolica.schemas import QuestActivityIn, QuestJoin
from symbolica.sync.scope import Scope

router = APIRouter(prefix="/quests/{quest_id}", tags=["quests"])
logger = logging.getLogger(__name__)


@router.get("/participants")
async def list_participants(quest_id: str, ctx: Context, online: bool = False):
    async with Scope(ctx, f"quest-participants:{quest_id}") as scope:
        body = query_response((await hooks.query_participants(scope, quest_id)).state)
    if online:
        window = ctx.config.heartbeat_interval * 2
        body["data"] = hooks.online_participants(body["data"] or [], window)
    return body


@router.post("/join", status_code=201)
async def join_quest(quest_id: str, ctx: Context, user: CurrentUser, body: QuestJoin | None = None):
    mutation = hooks.join_quest_mutation(ctx, quest_id, user["sub"])
    return {"data": await mutation.mutate_async(body or QuestJoin())}


@router.post("/leave")
async def leave_quest(quest_id: str, ctx: Context, user: CurrentUser):
    left = await hooks.leave_quest_mutation(ctx, quest_id, user["sub"]).mutate_async(None)
    return {"left": bool(left)}


@router.post("/heartbeat")
async def heartbeat(quest_id: str, ctx: Context, user: CurrentUser):
    """One presence beat, for clients that keep their own timer."""
    touched = await hooks.touch_presence(ctx.client, quest_id, user["sub"])
    return {"active": touched > 0}


@router.get("/activities")
async def list_activities(quest_id: str, ctx: Context):
    async with Scope(ctx, f"quest-activities:{quest_id}") as scope:
        return query_response((await hooks.query_activities(scope, quest_id)).state)


@router.post("/activities", status_code=201)
async def add_activity(quest_id: str, body: QuestActivityIn, ctx: Context, user: CurrentUser):
    mutation = hooks.add_activity_mutation(ctx, quest_id, user["sub"])
    return {"data": await mutation.mutate_async(body)}

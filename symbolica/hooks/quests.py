"""
symbolica.hooks.quests — Treasure Quests
=========================================

Participants, presence and the activity feed of a collaborative quest.

Keys::

    ("quest-participants", <quest_id>)   active participants, with profiles
    ("quest-activities", <quest_id>)     newest activity first

Presence is a heartbeat that stamps ``last_seen_at`` on the caller's
participant row while a scope is open.  Each write is published on the
realtime hub, so every watcher's participant list refreshes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any

from symbolica.database.models import ParticipantStatus, QuestActivityType
from symbolica.errors import AuthorizationError, BusinessError
from symbolica.hooks.profiles import attach_profiles
from symbolica.remote.client import RemoteDataClient
from symbolica.schemas import QuestActivityIn, QuestJoin, validate
from symbolica.sync.bridge import RealtimeBridge
from symbolica.sync.context import SyncContext
from symbolica.sync.keys import QueryKey, make_key
from symbolica.sync.mutation import Mutation
from symbolica.sync.query import QueryObserver
from symbolica.sync.scope import Scope
from symbolica.sync.tasks import Heartbeat

logger = logging.getLogger(__name__)

ACTIVITY_PAGE_SIZE = 50


def participants_key(quest_id: str) -> QueryKey:
    return make_key("quest-participants", quest_id)


def activities_key(quest_id: str) -> QueryKey:
    return make_key("quest-activities", quest_id)


def _require_user(user_id: str | None) -> str:
    if not user_id:
        raise AuthorizationError()
    return user_id


# ---------------------------------------------------------------------------
# Fetchers
# ---------------------------------------------------------------------------
async def fetch_participants(client: RemoteDataClient, quest_id: str) -> list[dict[str, Any]]:
    rows = (await client.select(
        "quest_participants",
        filters={"quest_id": quest_id, "status": ParticipantStatus.ACTIVE.value},
        order_by="joined_at",
    )).unwrap()
    return await attach_profiles(client, rows)


async def fetch_activities(
    client: RemoteDataClient, quest_id: str, limit: int = ACTIVITY_PAGE_SIZE,
) -> list[dict[str, Any]]:
    rows = (await client.select(
        "quest_activities",
        filters={"quest_id": quest_id},
        order_by="created_at",
        descending=True,
        limit=limit,
    )).unwrap()
    return await attach_profiles(client, rows)


def online_participants(
    participants: list[dict[str, Any]],
    window: float,
    *,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Participants whose ``last_seen_at`` is within *window* seconds."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=window)
    online = []
    for p in participants:
        seen = p.get("last_seen_at")
        if not seen:
            continue
        ts = datetime.fromisoformat(seen) if isinstance(seen, str) else seen
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        if ts >= cutoff:
            online.append(p)
    return online


# ---------------------------------------------------------------------------
# Queries + realtime
# ---------------------------------------------------------------------------
async def query_participants(scope: Scope, quest_id: str | None) -> QueryObserver:
    return await scope.query(
        participants_key(quest_id or ""),
        partial(fetch_participants, scope.ctx.client, quest_id),
        enabled=bool(quest_id),
        placeholder=[],
    )


async def query_activities(scope: Scope, quest_id: str | None) -> QueryObserver:
    return await scope.query(
        activities_key(quest_id or ""),
        partial(fetch_activities, scope.ctx.client, quest_id),
        enabled=bool(quest_id),
        placeholder=[],
    )


async def watch_quest(scope: Scope, quest_id: str | None) -> list[RealtimeBridge]:
    """Bridges for the participant list and the activity feed."""
    filters = {"quest_id": quest_id}
    return [
        await scope.realtime(
            "quest_participants", filters, invalidates=[participants_key(quest_id or "")],
        ),
        await scope.realtime(
            "quest_activities", filters, invalidates=[activities_key(quest_id or "")],
        ),
    ]


# ---------------------------------------------------------------------------
# Presence
# ---------------------------------------------------------------------------
async def touch_presence(client: RemoteDataClient, quest_id: str, user_id: str) -> int:
    """Stamp ``last_seen_at`` for an active participant; returns rows touched."""
    rows = (await client.update(
        "quest_participants",
        {"last_seen_at": datetime.now(timezone.utc)},
        filters={
            "quest_id": quest_id,
            "user_id": user_id,
            "status": ParticipantStatus.ACTIVE.value,
        },
    )).unwrap()
    return len(rows)


def start_presence(
    scope: Scope, quest_id: str, user_id: str, interval: float | None = None,
) -> Heartbeat:
    """Heartbeat for as long as *scope* is open."""
    return scope.heartbeat(
        partial(touch_presence, scope.ctx.client, quest_id, user_id),
        interval,
        name=f"presence:{quest_id}",
    )


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
async def _log_activity(
    client: RemoteDataClient,
    quest_id: str,
    user_id: str,
    activity_type: QuestActivityType,
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return (await client.insert("quest_activities", {
        "quest_id": quest_id,
        "user_id": user_id,
        "activity_type": activity_type.value,
        "activity_data": data or {},
    })).unwrap()


def join_quest_mutation(ctx: SyncContext, quest_id: str, user_id: str | None) -> Mutation:
    """Variables: a :class:`QuestJoin` dict (or ``None`` for defaults)."""
    client = ctx.client

    def check(variables: Any) -> QuestJoin:
        _require_user(user_id)
        return validate(QuestJoin, variables or {})

    async def run(body: QuestJoin) -> dict[str, Any]:
        quest = (await client.select_one("treasure_quests", filters={"id": quest_id})).unwrap()
        if quest is None:
            raise BusinessError("Quest not found")

        existing = (await client.select_one(
            "quest_participants", filters={"quest_id": quest_id, "user_id": user_id},
        )).unwrap()
        if existing and existing["status"] == ParticipantStatus.ACTIVE:
            return existing

        if quest.get("max_participants"):
            active = (await client.select(
                "quest_participants",
                filters={"quest_id": quest_id, "status": ParticipantStatus.ACTIVE.value},
            )).unwrap()
            if len(active) >= quest["max_participants"]:
                raise BusinessError("Quest is full")

        values = {
            "role": body.role,
            "team_name": body.team_name,
            "status": ParticipantStatus.ACTIVE.value,
            "last_seen_at": datetime.now(timezone.utc),
        }
        if existing:
            row = (await client.update(
                "quest_participants", values, filters={"id": existing["id"]},
            )).unwrap()[0]
        else:
            row = (await client.insert(
                "quest_participants", {"quest_id": quest_id, "user_id": user_id, **values},
            )).unwrap()
        await _log_activity(
            client, quest_id, user_id, QuestActivityType.PARTICIPANT_JOINED,
            {"role": body.role, "team_name": body.team_name},
        )
        logger.info("User %s joined quest %s", user_id, quest_id)
        return row

    return Mutation(
        ctx.store,
        run,
        validate=check,
        invalidates=[participants_key(quest_id), activities_key(quest_id)],
        name="join quest",
    )


def leave_quest_mutation(ctx: SyncContext, quest_id: str, user_id: str | None) -> Mutation:
    client = ctx.client

    def check(variables: Any) -> Any:
        _require_user(user_id)
        return variables

    async def run(_: Any) -> int:
        rows = (await client.update(
            "quest_participants",
            {"status": ParticipantStatus.LEFT.value},
            filters={"quest_id": quest_id, "user_id": user_id},
        )).unwrap()
        return len(rows)

    return Mutation(
        ctx.store,
        run,
        validate=check,
        invalidates=[participants_key(quest_id)],
        name="leave quest",
    )


def add_activity_mutation(ctx: SyncContext, quest_id: str, user_id: str | None) -> Mutation:
    """Variables: a :class:`QuestActivityIn` dict."""
    client = ctx.client

    def check(variables: Any) -> QuestActivityIn:
        _require_user(user_id)
        return validate(QuestActivityIn, variables)

    async def run(body: QuestActivityIn) -> dict[str, Any]:
        return await _log_activity(
            client, quest_id, user_id, body.activity_type, body.activity_data,
        )

    return Mutation(
        ctx.store,
        run,
        validate=check,
        invalidates=[activities_key(quest_id)],
        name="add quest activity",
    )

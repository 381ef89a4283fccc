"""
symbolica.hooks.trending — Trending Symbols & Discovery Panels
===============================================================

Ranking is computed by the ``get_trending_symbols`` server function.  The
side panels (site counters, trending cultures and the recent-activity
feed) are built from plain table reads.

Every fetch here gets a short timeout of its own; when it expires the
panel shows its empty value (zeros or an empty list) instead of an error,
since trending is decorative.

Keys::

    ("trending", <time_frame>, <limit>)   ranked symbols
    ("trending-stats",)                   site counters
    ("trending-categories",)              top cultures with direction
    ("recent-activity", <limit>)          latest symbols, collections, votes
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, TypeVar

from symbolica.constants import (
    TRENDING_PANEL_TIMEOUT,
    TRENDING_STALE_AFTER,
    TRENDING_TIMEOUT,
)
from symbolica.errors import RemoteTimeoutError, ValidationError
from symbolica.hooks.symbols import parse_timestamp
from symbolica.remote.client import RemoteDataClient
from symbolica.remote.rpc import TIME_FRAME_DAYS
from symbolica.sync.keys import QueryKey, make_key
from symbolica.sync.query import QueryObserver, call_with_timeout
from symbolica.sync.scope import Scope

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_LIMIT = 12
CATEGORY_SAMPLE = 100
CATEGORY_COUNT = 6
TREND_WINDOW = timedelta(days=7)
DEFAULT_ACTIVITY_LIMIT = 4

TRENDING_STATS_KEY: QueryKey = make_key("trending-stats")
TRENDING_CATEGORIES_KEY: QueryKey = make_key("trending-categories")
EMPTY_STATS = {
    "symbols_count": 0,
    "contributions_count": 0,
    "collections_count": 0,
    "new_today": 0,
}


def trending_key(time_frame: str, limit: int = DEFAULT_LIMIT) -> QueryKey:
    return make_key("trending", time_frame, limit)


def recent_activity_key(limit: int = DEFAULT_ACTIVITY_LIMIT) -> QueryKey:
    return make_key("recent-activity", limit)


async def _or_fallback(
    operation: str, fn: Callable[[], Awaitable[T]], timeout: float, fallback: T,
) -> T:
    try:
        return await call_with_timeout(operation, fn, timeout)
    except RemoteTimeoutError as exc:
        logger.warning("%s; showing the empty %s", exc, operation)
        return fallback


# ---------------------------------------------------------------------------
# Pure computations
# ---------------------------------------------------------------------------
def _since(rows: list[dict[str, Any]], start: datetime, end: datetime | None = None) -> int:
    n = 0
    for r in rows:
        ts = parse_timestamp(r.get("created_at"))
        if ts is not None and ts >= start and (end is None or ts < end):
            n += 1
    return n


def compute_trending_stats(
    symbols: list[dict[str, Any]],
    verifications: list[dict[str, Any]],
    collections: list[dict[str, Any]],
    *,
    now: datetime | None = None,
) -> dict[str, int]:
    now = now or datetime.now(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return {
        "symbols_count": len(symbols),
        "contributions_count": len(verifications),
        "collections_count": len(collections),
        "new_today": _since(symbols, midnight),
    }


def compute_trending_categories(
    symbols: list[dict[str, Any]],
    *,
    now: datetime | None = None,
    top: int = CATEGORY_COUNT,
) -> list[dict[str, Any]]:
    """Most common cultures, each marked ``up``, ``down`` or ``stable``.

    The direction compares how many of the culture's symbols were added in
    the last week against the week before.
    """
    now = now or datetime.now(timezone.utc)
    this_week = now - TREND_WINDOW
    last_week = this_week - TREND_WINDOW
    by_culture: dict[str, list[dict[str, Any]]] = {}
    for s in symbols:
        if s.get("culture"):
            by_culture.setdefault(s["culture"], []).append(s)

    ordered = sorted(by_culture.items(), key=lambda kv: (-len(kv[1]), kv[0]))
    categories = []
    for name, rows in ordered[:top]:
        recent = _since(rows, this_week)
        before = _since(rows, last_week, this_week)
        if recent > before:
            trend = "up"
        elif recent < before:
            trend = "down"
        else:
            trend = "stable"
        categories.append({"name": name, "count": len(rows), "trend": trend})
    return categories


def merge_recent_activity(
    symbols: list[dict[str, Any]],
    collections: list[dict[str, Any]],
    verifications: list[dict[str, Any]],
    limit: int = DEFAULT_ACTIVITY_LIMIT,
) -> list[dict[str, Any]]:
    """Newest events across the three feeds, newest first."""
    events = [
        *({"type": "symbol", "message": f"New symbol: {r.get('name')}",
           "timestamp": r.get("created_at")} for r in symbols),
        *({"type": "collection", "message": f"New collection: {r.get('title')}",
           "timestamp": r.get("created_at")} for r in collections),
        *({"type": "contribution", "message": "New verification",
           "timestamp": r.get("created_at")} for r in verifications),
    ]
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    events.sort(key=lambda e: parse_timestamp(e["timestamp"]) or epoch, reverse=True)
    return events[:limit]


# ---------------------------------------------------------------------------
# Fetchers
# ---------------------------------------------------------------------------
async def fetch_trending(
    client: RemoteDataClient,
    time_frame: str = "week",
    limit: int = DEFAULT_LIMIT,
    *,
    timeout: float = TRENDING_TIMEOUT,
) -> list[dict[str, Any]]:
    if time_frame not in TIME_FRAME_DAYS:
        raise ValidationError("Invalid input", field="time_frame")
    try:
        result = await call_with_timeout(
            "trending symbols",
            lambda: client.rpc("get_trending_symbols", {"time_frame": time_frame, "limit": limit}),
            timeout,
        )
    except RemoteTimeoutError as exc:
        logger.warning("%s; showing no trending symbols", exc)
        return []
    return result.unwrap() or []


async def fetch_trending_stats(
    client: RemoteDataClient, *, timeout: float = TRENDING_PANEL_TIMEOUT,
) -> dict[str, int]:
    async def load() -> dict[str, int]:
        symbols = (await client.select("symbols")).unwrap()
        verifications = (await client.select("symbol_verifications")).unwrap()
        collections = (await client.select("collections")).unwrap()
        return compute_trending_stats(symbols, verifications, collections)

    return await _or_fallback("trending stats", load, timeout, dict(EMPTY_STATS))


async def fetch_trending_categories(
    client: RemoteDataClient, *, timeout: float = TRENDING_PANEL_TIMEOUT,
) -> list[dict[str, Any]]:
    async def load() -> list[dict[str, Any]]:
        symbols = (await client.select(
            "symbols", order_by="created_at", descending=True, limit=CATEGORY_SAMPLE,
        )).unwrap()
        return compute_trending_categories(symbols)

    return await _or_fallback("trending categories", load, timeout, [])


async def fetch_recent_activity(
    client: RemoteDataClient,
    limit: int = DEFAULT_ACTIVITY_LIMIT,
    *,
    timeout: float = TRENDING_PANEL_TIMEOUT,
) -> list[dict[str, Any]]:
    async def load() -> list[dict[str, Any]]:
        feeds = []
        for table in ("symbols", "collections", "symbol_verifications"):
            feeds.append((await client.select(
                table, order_by="created_at", descending=True, limit=limit,
            )).unwrap())
        return merge_recent_activity(*feeds, limit=limit)

    return await _or_fallback("recent activity", load, timeout, [])


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
async def query_trending(
    scope: Scope, time_frame: str = "week", limit: int = DEFAULT_LIMIT,
) -> QueryObserver:
    return await scope.query(
        trending_key(time_frame, limit),
        partial(fetch_trending, scope.ctx.client, time_frame, limit),
        stale_after=TRENDING_STALE_AFTER,
        placeholder=[],
    )


async def query_trending_stats(scope: Scope) -> QueryObserver:
    return await scope.query(
        TRENDING_STATS_KEY,
        partial(fetch_trending_stats, scope.ctx.client),
        stale_after=TRENDING_STALE_AFTER,
        placeholder=dict(EMPTY_STATS),
    )


async def query_trending_categories(scope: Scope) -> QueryObserver:
    return await scope.query(
        TRENDING_CATEGORIES_KEY,
        partial(fetch_trending_categories, scope.ctx.client),
        stale_after=TRENDING_STALE_AFTER,
        placeholder=[],
    )


async def query_recent_activity(
    scope: Scope, limit: int = DEFAULT_ACTIVITY_LIMIT,
) -> QueryObserver:
    return await scope.query(
        recent_activity_key(limit),
        partial(fetch_recent_activity, scope.ctx.client, limit),
        stale_after=TRENDING_STALE_AFTER,
        placeholder=[],
    )

"""
symbolica.hooks.symbols — Symbols, Statistics & Verification
=============================================================

Keys::

    ("symbols", <filters-json>)            filtered symbol list
    ("symbol-stats",)                      catalogue statistics
    ("symbol-filters",)                    culture / period facets
    ("symbol-verifications", <symbol_id>)  verification summary
    ("admin-symbols", <query-json>)        one page of the admin table

Statistics and facets are computed from plain rows so they can be tested
without a database.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any

from symbolica.constants import (
    SYMBOL_FILTERS_STALE_AFTER,
    SYMBOL_LIST_STALE_AFTER,
    SYMBOL_STATS_STALE_AFTER,
)
from symbolica.database.models import VerificationStatus
from symbolica.errors import AuthorizationError, BusinessError, ValidationError
from symbolica.remote.client import RemoteDataClient
from symbolica.schemas import (
    AdminSymbolQuery,
    SymbolFilters,
    SymbolUpdate,
    VerificationIn,
    validate,
)
from symbolica.sync.bridge import RealtimeBridge
from symbolica.sync.context import SyncContext
from symbolica.sync.keys import QueryKey, make_key
from symbolica.sync.mutation import Mutation
from symbolica.sync.query import QueryObserver
from symbolica.sync.scope import Scope

logger = logging.getLogger(__name__)

SYMBOL_STATS_KEY: QueryKey = make_key("symbol-stats")
SYMBOL_FILTERS_KEY: QueryKey = make_key("symbol-filters")
RECENT_WINDOW = timedelta(days=7)


def symbols_key(filters: SymbolFilters | None = None) -> QueryKey:
    return make_key("symbols", (filters or SymbolFilters()).active())


def verifications_key(symbol_id: str) -> QueryKey:
    return make_key("symbol-verifications", symbol_id)


# Prefix of every filtered list.
SYMBOL_LISTS: QueryKey = make_key("symbols")
# Prefix of every admin page.
ADMIN_SYMBOLS: QueryKey = make_key("admin-symbols")


def admin_symbols_key(query: AdminSymbolQuery | None = None) -> QueryKey:
    return make_key("admin-symbols", (query or AdminSymbolQuery()).model_dump())


# ---------------------------------------------------------------------------
# Pure computations
# ---------------------------------------------------------------------------
def _matches_search(row: dict[str, Any], term: str) -> bool:
    term = term.lower()
    return any(
        term in (row.get(field) or "").lower()
        for field in ("name", "description", "culture")
    )


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str):
        try:
            ts = datetime.fromisoformat(value)
        except ValueError:
            return None
    else:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def compute_symbol_stats(
    symbols: list[dict[str, Any]],
    verifications: list[dict[str, Any]],
    images: list[dict[str, Any]],
    *,
    now: datetime | None = None,
) -> dict[str, int]:
    now = now or datetime.now(timezone.utc)
    cutoff = now - RECENT_WINDOW
    recent = 0
    for s in symbols:
        created = parse_timestamp(s.get("created_at"))
        if created is not None and created >= cutoff:
            recent += 1
    return {
        "total_symbols": len(symbols),
        "cultures_count": len({s["culture"] for s in symbols if s.get("culture")}),
        "periods_count": len({s["period"] for s in symbols if s.get("period")}),
        "verified_symbols": len({v["symbol_id"] for v in verifications}),
        "symbols_with_images": len({i["symbol_id"] for i in images}),
        "recent_symbols_count": recent,
    }


def compute_symbol_facets(symbols: list[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    """Culture and period values with their counts, most common first."""

    def facet(field: str) -> list[dict[str, Any]]:
        counts = Counter(s[field] for s in symbols if s.get(field))
        ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return [{"value": value, "count": count} for value, count in ordered]

    return {"cultures": facet("culture"), "periods": facet("period")}


def summarize_verifications(rows: list[dict[str, Any]]) -> dict[str, Any]:
    """Counts by status, mean confidence and the consensus verdict.

    The consensus is the strict-majority status, else ``uncertain``.
    """
    counts = Counter(r.get("status") or VerificationStatus.UNCERTAIN for r in rows)
    total = len(rows)
    consensus = VerificationStatus.UNCERTAIN.value
    if total:
        status, n = counts.most_common(1)[0]
        if n * 2 > total:
            consensus = str(status)
    confidences = [r["confidence"] for r in rows if r.get("confidence") is not None]
    return {
        "total": total,
        "counts": {str(s): counts.get(s, 0) for s in VerificationStatus},
        "average_confidence": round(sum(confidences) / len(confidences), 1) if confidences else None,
        "consensus": consensus,
    }


def sort_symbol_rows(
    rows: list[dict[str, Any]], column: str, *, descending: bool = False,
) -> list[dict[str, Any]]:
    """Sort by *column*; rows without a value always come last."""

    def value(row: dict[str, Any]) -> Any:
        v = row[column]
        return v.casefold() if isinstance(v, str) else v

    present = [r for r in rows if r.get(column) is not None]
    missing = [r for r in rows if r.get(column) is None]
    return sorted(present, key=value, reverse=descending) + missing


def page_admin_symbols(
    rows: list[dict[str, Any]], query: AdminSymbolQuery,
) -> dict[str, Any]:
    """Filter count-enriched rows, sort them and cut out ``query.page``.

    The count filters run before paginating, so ``total_count`` is the
    number of matching symbols and every page but the last is full.
    """
    if query.has_images is not None:
        rows = [r for r in rows if (r["image_count"] > 0) is query.has_images]
    if query.verified is not None:
        rows = [r for r in rows if (r["verification_count"] > 0) is query.verified]
    rows = sort_symbol_rows(rows, query.sort_by, descending=query.sort_order == "desc")
    total = len(rows)
    start = (query.page - 1) * query.limit
    return {
        "symbols": rows[start:start + query.limit],
        "total_count": total,
        "page": query.page,
        "limit": query.limit,
        "total_pages": -(-total // query.limit),
    }


# ---------------------------------------------------------------------------
# Fetchers
# ---------------------------------------------------------------------------
async def fetch_symbols(
    client: RemoteDataClient, filters: SymbolFilters,
) -> list[dict[str, Any]]:
    equality = {
        k: v for k, v in filters.active().items() if k in ("culture", "period", "technique")
    }
    rows = (await client.select(
        "symbols", filters=equality or None, order_by="created_at", descending=True,
    )).unwrap() or []
    if filters.search:
        rows = [r for r in rows if _matches_search(r, filters.search)]
    return await _with_counts(client, rows)


async def _with_counts(
    client: RemoteDataClient, rows: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Add ``image_count`` and ``verification_count`` to each symbol row."""
    if not rows:
        return []
    ids = [r["id"] for r in rows]
    images = (await client.select("symbol_images", filters={"symbol_id": ids})).unwrap()
    verifications = (await client.select(
        "symbol_verifications", filters={"symbol_id": ids},
    )).unwrap()
    image_counts = Counter(i["symbol_id"] for i in images)
    verification_counts = Counter(v["symbol_id"] for v in verifications)
    return [
        {
            **r,
            "image_count": image_counts.get(r["id"], 0),
            "verification_count": verification_counts.get(r["id"], 0),
        }
        for r in rows
    ]


async def fetch_admin_symbols(
    client: RemoteDataClient, query: AdminSymbolQuery,
) -> dict[str, Any]:
    equality = {k: v for k, v in (("culture", query.culture), ("period", query.period)) if v}
    rows = (await client.select("symbols", filters=equality or None)).unwrap() or []
    if query.search:
        rows = [r for r in rows if _matches_search(r, query.search)]
    return page_admin_symbols(await _with_counts(client, rows), query)


async def fetch_symbol_stats(client: RemoteDataClient) -> dict[str, int]:
    symbols = (await client.select("symbols")).unwrap()
    verifications = (await client.select("symbol_verifications")).unwrap()
    images = (await client.select("symbol_images")).unwrap()
    return compute_symbol_stats(symbols, verifications, images)


async def fetch_symbol_facets(client: RemoteDataClient) -> dict[str, list[dict[str, Any]]]:
    return compute_symbol_facets((await client.select("symbols")).unwrap())


async def fetch_verification_summary(
    client: RemoteDataClient, symbol_id: str,
) -> dict[str, Any]:
    rows = (await client.select(
        "symbol_verifications", filters={"symbol_id": symbol_id},
    )).unwrap()
    return summarize_verifications(rows)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
async def query_symbols(scope: Scope, filters: SymbolFilters | None = None) -> QueryObserver:
    filters = filters or SymbolFilters()
    return await scope.query(
        symbols_key(filters),
        partial(fetch_symbols, scope.ctx.client, filters),
        stale_after=SYMBOL_LIST_STALE_AFTER,
        placeholder=[],
    )


async def query_admin_symbols(
    scope: Scope, query: AdminSymbolQuery | None = None,
) -> QueryObserver:
    query = query or AdminSymbolQuery()
    return await scope.query(
        admin_symbols_key(query),
        partial(fetch_admin_symbols, scope.ctx.client, query),
        stale_after=SYMBOL_LIST_STALE_AFTER,
    )


async def query_symbol_stats(scope: Scope) -> QueryObserver:
    return await scope.query(
        SYMBOL_STATS_KEY,
        partial(fetch_symbol_stats, scope.ctx.client),
        stale_after=SYMBOL_STATS_STALE_AFTER,
    )


async def query_symbol_facets(scope: Scope) -> QueryObserver:
    return await scope.query(
        SYMBOL_FILTERS_KEY,
        partial(fetch_symbol_facets, scope.ctx.client),
        stale_after=SYMBOL_FILTERS_STALE_AFTER,
    )


async def query_verification_summary(scope: Scope, symbol_id: str | None) -> QueryObserver:
    return await scope.query(
        verifications_key(symbol_id or ""),
        partial(fetch_verification_summary, scope.ctx.client, symbol_id),
        enabled=bool(symbol_id),
    )


async def watch_symbols(scope: Scope) -> RealtimeBridge:
    return await scope.realtime(
        "symbols",
        invalidates=[SYMBOL_LISTS, ADMIN_SYMBOLS, SYMBOL_STATS_KEY, SYMBOL_FILTERS_KEY],
    )


async def watch_verifications(scope: Scope, symbol_id: str) -> RealtimeBridge:
    return await scope.realtime(
        "symbol_verifications",
        {"symbol_id": symbol_id},
        invalidates=[verifications_key(symbol_id), SYMBOL_STATS_KEY],
    )


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def delete_symbols_mutation(ctx: SyncContext) -> Mutation:
    """Variables: a list of symbol ids.  Result: the number deleted."""
    client = ctx.client

    def check(ids: Any) -> list[str]:
        if not ids or not isinstance(ids, (list, tuple, set)):
            raise ValidationError("Invalid input", field="ids")
        return list(ids)

    async def run(ids: list[str]) -> int:
        for child in ("symbol_images", "symbol_verifications", "collection_symbols"):
            (await client.delete(child, filters={"symbol_id": ids})).unwrap()
        deleted = (await client.delete("symbols", filters={"id": ids})).unwrap()
        logger.info("Deleted %d symbols", len(deleted))
        return len(deleted)

    return Mutation(
        ctx.store,
        run,
        validate=check,
        invalidates=[SYMBOL_LISTS, ADMIN_SYMBOLS, SYMBOL_STATS_KEY, SYMBOL_FILTERS_KEY],
        name="delete symbols",
    )


def update_symbol_mutation(ctx: SyncContext) -> Mutation:
    """Variables: ``{"id": str, "changes": dict | SymbolUpdate}``."""
    client = ctx.client

    def check(variables: dict[str, Any]) -> dict[str, Any]:
        if not variables.get("id"):
            raise ValidationError("Invalid input", field="id")
        changes = validate(SymbolUpdate, variables.get("changes") or {}).changes()
        if not changes:
            raise ValidationError("Invalid input", field="changes")
        return {"id": variables["id"], "changes": changes}

    async def run(variables: dict[str, Any]) -> dict[str, Any]:
        rows = (await client.update(
            "symbols", variables["changes"], filters={"id": variables["id"]},
        )).unwrap()
        if not rows:
            raise BusinessError("Symbol not found")
        return rows[0]

    return Mutation(
        ctx.store,
        run,
        validate=check,
        invalidates=[ADMIN_SYMBOLS, SYMBOL_LISTS, SYMBOL_STATS_KEY, SYMBOL_FILTERS_KEY],
        name="update symbol",
    )


def verify_symbol_mutation(ctx: SyncContext, user_id: str | None) -> Mutation:
    """Variables: ``{"symbol_id": str, **VerificationIn}``."""
    client = ctx.client

    def check(variables: dict[str, Any]) -> dict[str, Any]:
        if not user_id:
            raise AuthorizationError()
        body = validate(VerificationIn, {k: v for k, v in variables.items() if k != "symbol_id"})
        return {"symbol_id": variables["symbol_id"], **body.model_dump(mode="json")}

    async def run(variables: dict[str, Any]) -> dict[str, Any]:
        return (await client.insert(
            "symbol_verifications", {**variables, "user_id": user_id},
        )).unwrap()

    return Mutation(
        ctx.store,
        run,
        validate=check,
        invalidates=[
            lambda v, _: verifications_key(v["symbol_id"]),
            SYMBOL_STATS_KEY,
            SYMBOL_LISTS,
            ADMIN_SYMBOLS,
        ],
        name="verify symbol",
    )


def analyze_symbol_mutation(ctx: SyncContext) -> Mutation:
    """Run the ``analyze-symbol`` function.  Variables: ``{"symbol_id": str}``."""
    functions = ctx.functions

    async def run(variables: dict[str, Any]) -> Any:
        if functions is None:
            raise BusinessError("Service temporarily unavailable")
        return await functions.invoke("analyze-symbol", variables)

    def check(variables: Any) -> dict[str, Any]:
        if not isinstance(variables, dict) or not variables.get("symbol_id"):
            raise ValidationError("Invalid input", field="symbol_id")
        return variables

    return Mutation(
        ctx.store,
        run,
        validate=check,
        invalidates=[lambda v, _: verifications_key(v["symbol_id"])],
        name="analyze symbol",
    )

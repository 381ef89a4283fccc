"""
symbolica.api.routes.symbols — Symbol catalogue, statistics & trending
=======================================================================
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from symbolica.api.deps import Context, CurrentAdmin, CurrentUser, query_response
from symbolica.hooks import symbols as hooks
from symbolica.hooks import trending
from symbolica.schemas import AdminSymbolQuery, SymbolFilters, SymbolUpdate, VerificationIn
from symbolica.sync.scope import Scope

router = APIRouter(tags=["symbols"])
logger = logging.getLogger(__name__)


class BulkDelete(BaseModel):
    ids: list[str]


@router.get("/symbols")
async def list_symbols(ctx: Context, filters: Annotated[SymbolFilters, Depends()]):
    async with Scope(ctx, "symbols") as scope:
        observer = await hooks.query_symbols(scope, filters)
        return query_response(observer.state)


@router.get("/symbols/stats")
async def symbol_stats(ctx: Context):
    async with Scope(ctx, "symbol-stats") as scope:
        return query_response((await hooks.query_symbol_stats(scope)).state)


@router.get("/symbols/filters")
async def symbol_filters(ctx: Context):
    async with Scope(ctx, "symbol-filters") as scope:
        return query_response((await hooks.query_symbol_facets(scope)).state)


@router.post("/symbols/delete")
async def delete_symbols(body: BulkDelete, ctx: Context, admin: CurrentAdmin):
    deleted = await hooks.delete_symbols_mutation(ctx).mutate_async(body.ids)
    logger.info("Admin %s deleted %d symbols", admin["sub"], deleted)
    return {"deleted": deleted}


@router.get("/admin/symbols")
async def admin_symbols(
    ctx: Context, admin: CurrentAdmin, query: Annotated[AdminSymbolQuery, Depends()],
):
    async with Scope(ctx, "admin-symbols") as scope:
        observer = await hooks.query_admin_symbols(scope, query)
        return query_response(observer.state)


@router.patch("/symbols/{symbol_id}")
async def update_symbol(symbol_id: str, body: SymbolUpdate, ctx: Context, admin: CurrentAdmin):
    mutation = hooks.update_symbol_mutation(ctx)
    row = await mutation.mutate_async({"id": symbol_id, "changes": body.changes()})
    logger.info("Admin %s updated symbol %s", admin["sub"], symbol_id)
    return {"data": row}


@router.get("/symbols/{symbol_id}/verifications")
async def verification_summary(symbol_id: str, ctx: Context):
    async with Scope(ctx, f"verifications:{symbol_id}") as scope:
        observer = await hooks.query_verification_summary(scope, symbol_id)
        return query_response(observer.state)


@router.post("/symbols/{symbol_id}/verifications", status_code=201)
async def verify_symbol(symbol_id: str, body: VerificationIn, ctx: Context, user: CurrentUser):
    mutation = hooks.verify_symbol_mutation(ctx, user["sub"])
    row = await mutation.mutate_async({"symbol_id": symbol_id, **body.model_dump(mode="json")})
    return {"data": row}


@router.post("/symbols/{symbol_id}/analyze")
async def analyze_symbol(symbol_id: str, ctx: Context, user: CurrentUser):
    return {"data": await hooks.analyze_symbol_mutation(ctx).mutate_async({"symbol_id": symbol_id})}


@router.get("/trending")
async def trending_symbols(
    ctx: Context,
    time_frame: Annotated[str, Query(pattern="^(day|week|month)$")] = "week",
    limit: Annotated[int, Query(ge=1, le=50)] = trending.DEFAULT_LIMIT,
):
    async with Scope(ctx, "trending") as scope:
        observer = await trending.query_trending(scope, time_frame, limit)
        return query_response(observer.state)


@router.get("/trending/stats")
async def trending_stats(ctx: Context):
    async with Scope(ctx, "trending-stats") as scope:
        return query_response((await trending.query_trending_stats(scope)).state)


@router.get("/trending/categories")
async def trending_categories(ctx: Context):
    async with Scope(ctx, "trending-categories") as scope:
        return query_response((await trending.query_trending_categories(scope)).state)


@router.get("/trending/activity")
async def recent_activity(
    ctx: Context,
    limit: Annotated[int, Query(ge=1, le=20)] = trending.DEFAULT_ACTIVITY_LIMIT,
):
    async with Scope(ctx, "recent-activity") as scope:
        return query_response((await trending.query_recent_activity(scope, limit)).state)

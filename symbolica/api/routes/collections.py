"""
symbolica.api.routes.collections — Collection browsing & editing
=================================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status

from symbolica.api.deps import Context, CurrentAdmin, query_response
from symbolica.hooks import collections as hooks
from symbolica.schemas import CollectionCreate, CollectionUpdate
from symbolica.sync.scope import Scope

router = APIRouter(prefix="/collections", tags=["collections"])
logger = logging.getLogger(__name__)


@router.get("")
async def list_collections(ctx: Context, grouped: bool = False):
    async with Scope(ctx, "collections") as scope:
        observer = await hooks.query_collections(scope)
        body = query_response(observer.state)
    if grouped:
        body["data"] = hooks.categorize_collections(body["data"] or [])
    return body


@router.get("/{slug}")
async def get_collection(slug: str, ctx: Context):
    async with Scope(ctx, f"collection:{slug}") as scope:
        observer = await hooks.query_collection(scope, slug)
        body = query_response(observer.state)
    if body["data"] is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Collection not found")
    return body


@router.post("", status_code=201)
async def create_collection(body: CollectionCreate, ctx: Context, admin: CurrentAdmin):
    mutation = hooks.create_collection_mutation(ctx, admin["sub"])
    return {"data": await mutation.mutate_async(body)}


@router.patch("/{slug}")
async def update_collection(slug: str, body: CollectionUpdate, ctx: Context, admin: CurrentAdmin):
    mutation = hooks.update_collection_mutation(ctx)
    row = await mutation.mutate_async({"slug": slug, "changes": body.changes()})
    return {"data": row}

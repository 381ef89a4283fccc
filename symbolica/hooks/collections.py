"""
symbolica.hooks.collections — Collections
==========================================

Cached reads of the collection list and of single collections by slug,
the create/update mutations that keep them coherent, and the realtime
bridge that invalidates them when someone else edits a collection.

Keys::

    ("collections",)                 every collection, newest first
    ("collection", "slug", <slug>)   one collection
"""

from __future__ import annotations

import logging
from collections import defaultdict
from functools import partial
from typing import Any

from symbolica.constants import COLLECTIONS_STALE_AFTER
from symbolica.errors import AuthorizationError, BusinessError
from symbolica.remote.client import RemoteDataClient
from symbolica.remote.realtime import ChangeEvent
from symbolica.schemas import CollectionCreate, CollectionUpdate, validate
from symbolica.sync.bridge import RealtimeBridge
from symbolica.sync.context import SyncContext
from symbolica.sync.keys import QueryKey, make_key
from symbolica.sync.mutation import Mutation
from symbolica.sync.query import QueryObserver
from symbolica.sync.scope import Scope

logger = logging.getLogger(__name__)

COLLECTIONS_KEY: QueryKey = make_key("collections")


def collection_key(slug: str) -> QueryKey:
    return make_key("collection", "slug", slug)


# ---------------------------------------------------------------------------
# Fetchers
# ---------------------------------------------------------------------------
async def fetch_collections(client: RemoteDataClient) -> list[dict[str, Any]]:
    result = await client.select("collections", order_by="created_at", descending=True)
    return result.unwrap() or []


async def fetch_collection(client: RemoteDataClient, slug: str) -> dict[str, Any] | None:
    return (await client.select_one("collections", filters={"slug": slug})).unwrap()


def categorize_collections(rows: list[dict[str, Any]]) -> dict[str, Any]:
    """Split *rows* into featured collections and per-category groups."""
    featured = [r for r in rows if r.get("is_featured")]
    by_category: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for row in rows:
        by_category[row.get("category") or "uncategorized"].append(row)
    return {
        "featured": featured,
        "categories": dict(by_category),
        "counts": {name: len(items) for name, items in by_category.items()},
        "total": len(rows),
    }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
async def query_collections(scope: Scope) -> QueryObserver:
    return await scope.query(
        COLLECTIONS_KEY,
        partial(fetch_collections, scope.ctx.client),
        stale_after=COLLECTIONS_STALE_AFTER,
        placeholder=[],
    )


async def query_collection(scope: Scope, slug: str | None) -> QueryObserver:
    """Single collection; disabled until *slug* is known."""
    return await scope.query(
        collection_key(slug or ""),
        partial(fetch_collection, scope.ctx.client, slug),
        stale_after=COLLECTIONS_STALE_AFTER,
        enabled=bool(slug),
    )


async def watch_collections(scope: Scope) -> RealtimeBridge:
    def targets(event: ChangeEvent) -> list[QueryKey]:
        keys = [COLLECTIONS_KEY]
        for row in (event.record, event.old_record or {}):
            if row.get("slug"):
                keys.append(collection_key(row["slug"]))
        return keys

    return await scope.realtime("collections", invalidates=targets)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def update_collection_mutation(ctx: SyncContext) -> Mutation:
    """Variables: ``{"slug": str, "changes": dict | CollectionUpdate}``."""
    client = ctx.client

    def check(variables: dict[str, Any]) -> dict[str, Any]:
        changes = validate(CollectionUpdate, variables.get("changes") or {})
        return {"slug": variables["slug"], "changes": changes.changes()}

    async def run(variables: dict[str, Any]) -> dict[str, Any]:
        if not variables["changes"]:
            return (await client.select_one(
                "collections", filters={"slug": variables["slug"]},
            )).unwrap()
        rows = (await client.update(
            "collections", variables["changes"], filters={"slug": variables["slug"]},
        )).unwrap()
        if not rows:
            raise BusinessError(f"Collection '{variables['slug']}' not found")
        return rows[0]

    return Mutation(
        ctx.store,
        run,
        validate=check,
        invalidates=[lambda v, _: collection_key(v["slug"]), COLLECTIONS_KEY],
        name="update collection",
    )


def create_collection_mutation(ctx: SyncContext, user_id: str | None) -> Mutation:
    client = ctx.client

    def check(variables: Any) -> CollectionCreate:
        if not user_id:
            raise AuthorizationError()
        return validate(CollectionCreate, variables)

    async def run(data: CollectionCreate) -> dict[str, Any]:
        return (await client.insert(
            "collections", {**data.model_dump(), "created_by": user_id},
        )).unwrap()

    return Mutation(
        ctx.store,
        run,
        validate=check,
        invalidates=[COLLECTIONS_KEY],
        name="create collection",
    )

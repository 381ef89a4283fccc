"""
symbolica.hooks.profiles — Author Profiles
===========================================

Attach public profile fields to rows that carry a ``user_id``.
"""

from __future__ import annotations

import logging
from typing import Any

from symbolica.remote.client import RemoteDataClient

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("username", "full_name", "avatar_url")


async def attach_profiles(
    client: RemoteDataClient, rows: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Return *rows* with a ``profile`` dict (or ``None``) on each.

    A failed profile lookup is logged and the rows are returned without
    profiles.
    """
    if not rows:
        return []
    user_ids = sorted({r["user_id"] for r in rows})
    result = await client.select("profiles", filters={"id": user_ids})
    if result.ok:
        profiles = {
            p["id"]: {f: p.get(f) for f in PROFILE_FIELDS} for p in result.data
        }
    else:
        logger.warning("Could not load profiles: %s", result.error)
        profiles = {}
    return [{**r, "profile": profiles.get(r["user_id"])} for r in rows]

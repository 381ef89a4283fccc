"""
symbolica.remote.rpc — Server-side Functions
=============================================

Functions that run next to the database and are invoked through
:meth:`RemoteDataClient.rpc`.  Scoring lives here rather than in the
client so every consumer ranks symbols the same way.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from symbolica.database.models import Symbol, SymbolImage, SymbolVerification

logger = logging.getLogger(__name__)

TIME_FRAME_DAYS: dict[str, int] = {"day": 1, "week": 7, "month": 30}

VERIFICATION_WEIGHT = 2
IMAGE_WEIGHT = 1


def get_trending_symbols(
    engine: Engine, time_frame: str = "week", limit: int = 12,
) -> list[dict[str, Any]]:
    """Symbols ranked by recent verification and image activity."""
    days = TIME_FRAME_DAYS.get(time_frame)
    if days is None:
        raise ValueError(f"Unknown time frame: '{time_frame}'")
    since = datetime.now(timezone.utc) - timedelta(days=days)

    verifications = (
        select(SymbolVerification.symbol_id, func.count().label("n"))
        .where(SymbolVerification.created_at >= since)
        .group_by(SymbolVerification.symbol_id)
        .subquery()
    )
    images = (
        select(SymbolImage.symbol_id, func.count().label("n"))
        .where(SymbolImage.created_at >= since)
        .group_by(SymbolImage.symbol_id)
        .subquery()
    )
    v_count = func.coalesce(verifications.c.n, 0)
    i_count = func.coalesce(images.c.n, 0)
    score = v_count * VERIFICATION_WEIGHT + i_count * IMAGE_WEIGHT

    stmt = (
        select(Symbol, v_count.label("verifications"), i_count.label("images"), score.label("score"))
        .outerjoin(verifications, verifications.c.symbol_id == Symbol.id)
        .outerjoin(images, images.c.symbol_id == Symbol.id)
        .where(score > 0)
        .order_by(score.desc(), Symbol.name)
        .limit(limit)
    )
    with Session(engine) as session:
        return [
            {
                "id": sym.id,
                "name": sym.name,
                "culture": sym.culture,
                "period": sym.period,
                "trend_score": int(s),
                "verification_count": int(v),
                "image_count": int(i),
            }
            for sym, v, i, s in session.execute(stmt).all()
        ]


def register_server_functions(client) -> None:
    """Register every server-side function on *client*."""
    client.register_rpc("get_trending_symbols", get_trending_symbols)

"""
symbolica.sync.outbox — Pending Local Writes
=============================================

Writes that were shown optimistically but are not yet confirmed by the
server, keyed by a client-generated id.  A failed write stays in the
outbox marked ``failed`` so it can be shown and resent with the same id;
the server's unique constraint on that id means a resend can never create
a duplicate.  Entries leave the outbox only on confirmation or an explicit
discard.
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from symbolica.sync.keys import QueryKey

logger = logging.getLogger(__name__)


class OutboxStatus(enum.StrEnum):
    PENDING = "pending"
    FAILED = "failed"


@dataclass(slots=True)
class OutboxItem:
    client_id: str
    key: QueryKey
    payload: dict[str, Any]
    status: OutboxStatus = OutboxStatus.PENDING
    error: str | None = None
    attempts: int = 0
    created_at: float = field(default_factory=time.time)
    # Author of the write; only they may resend or discard it.
    user_id: str | None = None


class Outbox:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._items: dict[str, OutboxItem] = {}

    def add(
        self,
        key: QueryKey,
        client_id: str,
        payload: dict[str, Any],
        *,
        user_id: str | None = None,
    ) -> OutboxItem:
        item = self._items.get(client_id)
        if item is None:
            item = OutboxItem(
                client_id, key, dict(payload), created_at=self._clock(), user_id=user_id,
            )
            self._items[client_id] = item
        return item

    def get(self, client_id: str) -> OutboxItem | None:
        return self._items.get(client_id)

    def mark_pending(self, client_id: str) -> OutboxItem:
        item = self._items[client_id]
        item.status = OutboxStatus.PENDING
        item.error = None
        item.attempts += 1
        return item

    def mark_failed(self, client_id: str, error: str) -> OutboxItem | None:
        item = self._items.get(client_id)
        if item is not None:
            item.status = OutboxStatus.FAILED
            item.error = error
            logger.info("Outbox item %s failed: %s", client_id, error)
        return item

    def remove(self, client_id: str) -> OutboxItem | None:
        return self._items.pop(client_id, None)

    def owned_by(self, client_id: str, user_id: str | None) -> OutboxItem | None:
        """The item for *client_id* if *user_id* wrote it."""
        item = self._items.get(client_id)
        if item is None or item.user_id != user_id:
            return None
        return item

    def items(
        self, key: QueryKey | None = None, *, user_id: str | None = None,
    ) -> list[OutboxItem]:
        """Items for *key* (or all), oldest first; only *user_id*'s if given."""
        found = [
            i for i in self._items.values()
            if (key is None or i.key == key) and (user_id is None or i.user_id == user_id)
        ]
        return sorted(found, key=lambda i: i.created_at)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._items

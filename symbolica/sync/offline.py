"""
symbolica.sync.offline — Best-effort Offline Cache
===================================================

A small JSON file of ``{key: {"timestamp", "data"}}`` records that lets a
query show the last known data when the backend is unreachable.  It is
never authoritative: entries older than ``max_age`` are ignored, and every
failure (disk full, unserialisable data, corrupt file) is logged and
swallowed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from symbolica.constants import DEFAULT_OFFLINE_MAX_AGE
from symbolica.sync.keys import QueryKey

logger = logging.getLogger(__name__)


def _key_id(key: QueryKey) -> str:
    return json.dumps(list(key), default=str, separators=(",", ":"))


class OfflineCache:
    """File-backed, timestamped key/value store."""

    def __init__(
        self,
        path: str | Path,
        *,
        max_age: float = DEFAULT_OFFLINE_MAX_AGE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = Path(path)
        self.max_age = max_age
        self._clock = clock
        # Saves run on worker threads; each is a read-modify-write of the file.
        self._lock = threading.Lock()

    def save(self, key: QueryKey, data: Any) -> bool:
        """Store *data* under *key*.  Returns False if it could not be saved."""
        with self._lock:
            records = self._read()
            records[_key_id(key)] = {"timestamp": self._clock(), "data": data}
            try:
                self._write(records)
            except (TypeError, ValueError, OSError) as exc:
                logger.warning("Offline cache save for %r failed: %s", key, exc)
                return False
        return True

    def load(self, key: QueryKey) -> Any:
        """Return the data for *key*, or ``None`` if missing or expired."""
        record = self._read().get(_key_id(key))
        if not isinstance(record, dict) or "data" not in record:
            return None
        timestamp = record.get("timestamp")
        if not isinstance(timestamp, (int, float)):
            return None
        if self._clock() - timestamp > self.max_age:
            return None
        return record["data"]

    # The file is rewritten whole on every save; keep that off the event loop.
    async def save_async(self, key: QueryKey, data: Any) -> bool:
        return await asyncio.to_thread(self.save, key, data)

    async def load_async(self, key: QueryKey) -> Any:
        return await asyncio.to_thread(self.load, key)

    def clear_expired(self) -> int:
        """Drop expired or malformed records; returns how many were removed."""
        with self._lock:
            records = self._read()
            now = self._clock()
            kept = {
                k: r for k, r in records.items()
                if isinstance(r, dict)
                and isinstance(r.get("timestamp"), (int, float))
                and now - r["timestamp"] <= self.max_age
            }
            removed = len(records) - len(kept)
            if not removed:
                return 0
            try:
                self._write(kept)
            except OSError as exc:
                logger.warning("Offline cache cleanup failed: %s", exc)
                return 0
        logger.info("Offline cache dropped %d expired entries", removed)
        return removed

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove offline cache %s: %s", self.path, exc)

    # -------------------------------------------------------------------
    # File I/O
    # -------------------------------------------------------------------
    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                records = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable offline cache %s: %s", self.path, exc)
            return {}
        return records if isinstance(records, dict) else {}

    def _write(self, records: dict[str, Any]) -> None:
        # Serialise first so a TypeError never truncates the existing file.
        payload = json.dumps(records)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp, self.path)

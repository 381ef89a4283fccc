"""
symbolica.sync.context — Sync Context
======================================

The bundle of collaborators every query, mutation and bridge needs: one
:class:`CacheStore`, the realtime hub, the remote data client, the
functions client, the offline cache and the outbox of unconfirmed writes.
Constructed once per process (the FastAPI lifespan does it) and passed
explicitly; there is no module-level singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import Engine

from symbolica.config import SymbolicaConfig
from symbolica.remote.client import RemoteDataClient
from symbolica.remote.functions import FunctionsClient
from symbolica.remote.realtime import RealtimeHub
from symbolica.sync.offline import OfflineCache
from symbolica.sync.outbox import Outbox
from symbolica.sync.query import RetryPolicy
from symbolica.sync.store import CacheStore

logger = logging.getLogger(__name__)


@dataclass
class SyncContext:
    config: SymbolicaConfig
    store: CacheStore
    realtime: RealtimeHub
    client: RemoteDataClient
    functions: FunctionsClient | None = None
    offline: OfflineCache | None = None
    outbox: Outbox = field(default_factory=Outbox)

    @classmethod
    def from_config(
        cls,
        engine: Engine,
        config: SymbolicaConfig | None = None,
        *,
        functions: FunctionsClient | None = None,
    ) -> SyncContext:
        """Wire up a context backed by *engine*."""
        config = config or SymbolicaConfig.defaults()
        realtime = RealtimeHub()
        store = CacheStore(stale_after=config.stale_after, gc_after=config.gc_after)
        client = RemoteDataClient(engine, realtime, timeout=config.request_timeout)
        if functions is None and config.functions_url:
            functions = FunctionsClient(config.functions_url, timeout=config.request_timeout)
        offline = None
        if config.offline_cache_path:
            offline = OfflineCache(config.offline_cache_path, max_age=config.offline_max_age)
            offline.clear_expired()
        logger.info(
            "Sync context ready (functions=%s, offline=%s)",
            "on" if functions else "off",
            config.offline_cache_path or "off",
        )
        return cls(config, store, realtime, client, functions, offline)

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy.from_config(self.config)

    async def aclose(self) -> None:
        self.store.stop_gc()
        if self.functions is not None:
            await self.functions.aclose()

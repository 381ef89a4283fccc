"""
Symbolica — Data Synchronization Layer for a Cultural Symbol Catalogue
========================================================================
Keeps cached reads of symbols, collections, interest groups and treasure
quests consistent with the remote database: queries read through a shared
cache, mutations patch or invalidate it, and realtime bridges turn server
change events into invalidations.

Package layout::

    symbolica/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Timing defaults, safe-message allow-list
    ├── errors.py          # Error taxonomy + safe user messages
    ├── schemas.py         # Pydantic input models (validated before I/O)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # ORM models for the tables the hooks touch
    ├── remote/
    │   ├── client.py      # Table-scoped CRUD + RPC → Result(data, error)
    │   ├── realtime.py    # Per-table publish/subscribe change channels
    │   └── functions.py   # Serverless function client (httpx)
    ├── sync/
    │   ├── keys.py        # Stable query keys + key predicates
    │   ├── store.py       # CacheStore — entries, listeners, fetch ordering
    │   ├── query.py       # QueryObserver + retry/timeout policy
    │   ├── mutation.py    # Mutation + optimistic state
    │   ├── bridge.py      # RealtimeBridge state machine
    │   ├── tasks.py       # Cancellable heartbeats
    │   ├── offline.py     # Best-effort offline JSON cache
    │   ├── context.py     # SyncContext (dependency bundle)
    │   └── scope.py       # Scope — consumer lifetime
    ├── hooks/
    │   ├── collections.py # Collections + categorisation
    │   ├── symbols.py     # Symbol lists, stats, facets, verifications, AI analysis
    │   ├── group_chat.py  # Group chat with optimistic outbox
    │   ├── quests.py      # Quest participants, presence, activities
    │   └── trending.py    # Trending symbols RPC
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Dependency injection + JWT auth
        └── routes/        # Collections, symbols, groups, quests
"""

__version__ = "0.1.0"

"""
symbolica.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn symbolica.api.main:app --reload --port 8000

The lifespan builds the process-wide :class:`SyncContext`, opens the
app-level realtime bridges (collections, symbols) in a long-lived scope and
starts the cache garbage collector.  Request handlers open short scopes of
their own; the cache store outlives them, so repeat reads are cache hits.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from symbolica.api.deps import get_config, get_engine  # noqa: E402
from symbolica.api.routes.collections import router as collections_router  # noqa: E402
from symbolica.api.routes.groups import router as groups_router  # noqa: E402
from symbolica.api.routes.quests import router as quests_router  # noqa: E402
from symbolica.api.routes.symbols import router as symbols_router  # noqa: E402
from symbolica.database.engine import init_db  # noqa: E402
from symbolica.errors import (  # noqa: E402
    AuthorizationError,
    BusinessError,
    RealtimeError,
    RemoteTimeoutError,
    SymbolicaError,
    TransportError,
    ValidationError,
)
from symbolica.hooks.collections import watch_collections  # noqa: E402
from symbolica.hooks.symbols import watch_symbols  # noqa: E402
from symbolica.remote.rpc import register_server_functions  # noqa: E402
from symbolica.sync.context import SyncContext  # noqa: E402
from symbolica.sync.scope import Scope  # noqa: E402

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[SymbolicaError], int]] = [
    (ValidationError, 422),
    (AuthorizationError, 401),
    (RemoteTimeoutError, 504),
    (TransportError, 503),
    (RealtimeError, 503),
    (BusinessError, 400),
]


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


def status_for(exc: SymbolicaError) -> int:
    if isinstance(exc, AuthorizationError) and exc.message == "Access denied":
        return 403
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — build the sync context."""
    engine = get_engine()
    config = get_config()
    init_db(engine)

    ctx = SyncContext.from_config(engine, config)
    register_server_functions(ctx.client)
    app.state.sync = ctx

    async with Scope(ctx, "app") as scope:
        await watch_collections(scope)
        await watch_symbols(scope)
        ctx.store.start_gc(config.gc_interval)
        logger.info("Symbolica API started — engine ready (%s)", engine.url.database)
        yield
        logger.info("Symbolica API shutting down")

    await ctx.aclose()
    app.state.sync = None


app = FastAPI(
    title="Symbolica API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SymbolicaError)
async def symbolica_error_handler(request: Request, exc: SymbolicaError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": exc.to_dict()})


# Mount routers
app.include_router(collections_router, prefix="/api")
app.include_router(symbols_router, prefix="/api")
app.include_router(groups_router, prefix="/api")
app.include_router(quests_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}

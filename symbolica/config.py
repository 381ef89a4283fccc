"""
symbolica.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for the sync layer's tuning values (staleness and
garbage-collection windows, retry policy, timeouts, presence interval,
offline cache).  Secrets and connection strings (``DATABASE_URL``,
``JWT_SECRET``, ``FUNCTIONS_API_KEY``) come from the environment instead.

Usage::

    from symbolica.config import load_config

    cfg = load_config()            # reads ./config.yaml by default
    print(cfg.retry_attempts)      # 3
    print(cfg.functions_url)       # "https://project.functions.example"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from symbolica.constants import (
    DEFAULT_GC_AFTER,
    DEFAULT_GC_INTERVAL,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_OFFLINE_MAX_AGE,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_MAX_DELAY,
    DEFAULT_STALE_AFTER,
)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SymbolicaConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every field has a default so an empty file (or :meth:`defaults`) yields
    a usable configuration.
    """

    # Cache timing (seconds)
    stale_after: float = DEFAULT_STALE_AFTER
    gc_after: float = DEFAULT_GC_AFTER
    gc_interval: float = DEFAULT_GC_INTERVAL

    # Retry policy for transport errors
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY
    retry_max_delay: float = DEFAULT_RETRY_MAX_DELAY

    # Overall bound on a single remote call
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    # Presence
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL

    # Best-effort offline cache (None disables it)
    offline_cache_path: str | None = None
    offline_max_age: float = DEFAULT_OFFLINE_MAX_AGE

    # Serverless functions base URL (None disables the functions client)
    functions_url: str | None = None

    @classmethod
    def defaults(cls) -> SymbolicaConfig:
        return cls()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> SymbolicaConfig:
    """Read *path* and return a :class:`SymbolicaConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a numeric value can't be parsed or is negative.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    cache = raw.get("cache") or {}
    retry = raw.get("retry") or {}
    offline = raw.get("offline") or {}

    cfg = SymbolicaConfig(
        stale_after=float(cache.get("stale_after", DEFAULT_STALE_AFTER)),
        gc_after=float(cache.get("gc_after", DEFAULT_GC_AFTER)),
        gc_interval=float(cache.get("gc_interval", DEFAULT_GC_INTERVAL)),
        retry_attempts=int(retry.get("attempts", DEFAULT_RETRY_ATTEMPTS)),
        retry_base_delay=float(retry.get("base_delay", DEFAULT_RETRY_BASE_DELAY)),
        retry_max_delay=float(retry.get("max_delay", DEFAULT_RETRY_MAX_DELAY)),
        request_timeout=float(raw.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)),
        heartbeat_interval=float(
            raw.get("heartbeat_interval", DEFAULT_HEARTBEAT_INTERVAL)
        ),
        offline_cache_path=offline.get("path") or None,
        offline_max_age=float(offline.get("max_age", DEFAULT_OFFLINE_MAX_AGE)),
        functions_url=raw.get("functions_url") or None,
    )

    for name in ("stale_after", "gc_after", "gc_interval", "offline_max_age"):
        if getattr(cfg, name) < 0:
            raise ValueError(f"{name} must be >= 0 (got {getattr(cfg, name)})")
    for name in ("request_timeout", "heartbeat_interval"):
        if getattr(cfg, name) <= 0:
            raise ValueError(f"{name} must be > 0 (got {getattr(cfg, name)})")
    if cfg.retry_attempts < 1:
        raise ValueError(f"retry.attempts must be >= 1 (got {cfg.retry_attempts})")
    return cfg

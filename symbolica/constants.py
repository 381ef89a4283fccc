"""
symbolica.constants — Shared Constants
=======================================

Single source of truth for cache timing defaults and the allow-list of
server messages that are safe to show to users.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Cache timing (seconds)
# ---------------------------------------------------------------------------
DEFAULT_STALE_AFTER = 0.0
DEFAULT_GC_AFTER = 5 * 60.0
DEFAULT_GC_INTERVAL = 60.0

# Per-entity staleness windows
SYMBOL_LIST_STALE_AFTER = 30.0
SYMBOL_STATS_STALE_AFTER = 5 * 60.0
SYMBOL_FILTERS_STALE_AFTER = 10 * 60.0
COLLECTIONS_STALE_AFTER = 5 * 60.0
TRENDING_STALE_AFTER = 2 * 60.0

# ---------------------------------------------------------------------------
# Retry / timeout
# ---------------------------------------------------------------------------
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_RETRY_MAX_DELAY = 30.0
DEFAULT_REQUEST_TIMEOUT = 15.0
TRENDING_TIMEOUT = 3.0
# Stats, categories and activity feed
TRENDING_PANEL_TIMEOUT = 2.0

# ---------------------------------------------------------------------------
# Presence / offline
# ---------------------------------------------------------------------------
DEFAULT_HEARTBEAT_INTERVAL = 30.0
DEFAULT_OFFLINE_MAX_AGE = 60 * 60.0

# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------
CHAT_PAGE_SIZE = 50
CHAT_MAX_LENGTH = 2000

# ---------------------------------------------------------------------------
# User-facing error messages
# ---------------------------------------------------------------------------
# Server messages passed through verbatim; anything else is replaced by
# GENERIC_ERROR_MESSAGE.
SAFE_ERROR_MESSAGES: frozenset[str] = frozenset({
    "Query cannot be empty",
    "Query too long",
    "Rate limit exceeded",
    "Service temporarily unavailable",
    "Invalid file format",
    "File too large",
    "Authentication required",
    "Access denied",
    "Invalid input",
    "Input contains potentially malicious content",
})

GENERIC_ERROR_MESSAGE = "An error occurred. Please try again later."

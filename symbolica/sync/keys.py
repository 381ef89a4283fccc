"""
symbolica.sync.keys — Query Keys
=================================

A query key is a tuple ``(entity, *parts)``.  Scalars are kept as-is; dicts,
lists and sets are serialised to canonical JSON so that two structurally
equal parameter sets always land in the same cache slot, whatever order
their keys were written in.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

QueryKey = tuple[Any, ...]
KeyPredicate = Callable[[QueryKey], bool]

_SCALARS = (str, int, float, bool, type(None))


def _canonical(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((_canonical(v) for v in value), key=repr)
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def serialize_params(value: Any) -> Any:
    """Return a hashable, order-stable representation of *value*."""
    if isinstance(value, _SCALARS):
        return value
    return json.dumps(
        _canonical(value), sort_keys=True, separators=(",", ":"), default=str,
    )


def make_key(entity: str, *parts: Any) -> QueryKey:
    """Build a query key.

    >>> make_key("symbols", {"period": "medieval", "culture": "celtic"}) == \\
    ...     make_key("symbols", {"culture": "celtic", "period": "medieval"})
    True
    """
    if not entity:
        raise ValueError("Query key entity must be a non-empty string")
    return (entity, *(serialize_params(p) for p in parts))


def key_prefix(*parts: Any) -> KeyPredicate:
    """Predicate matching every key that starts with *parts*."""
    prefix = make_key(*parts) if parts else ()

    def _matches(key: QueryKey) -> bool:
        return key[: len(prefix)] == prefix

    _matches.__qualname__ = f"key_prefix{prefix!r}"
    return _matches


def as_predicate(target: QueryKey | KeyPredicate) -> KeyPredicate:
    """Accept either a key prefix tuple or a predicate."""
    if callable(target):
        return target
    return key_prefix(*target)

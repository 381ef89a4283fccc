"""
symbolica.sync.mutation — Mutations & Optimistic State
=======================================================

A :class:`Mutation` performs one write and then reconciles the cache:

1. Validate the variables (no network call on failure).
2. Optionally apply an optimistic patch, capturing a rollback snapshot.
3. Run the write.
4. On success: apply direct patches, then invalidate every matching key and
   wait for active refetches.  On failure: roll back the optimistic patch
   (or hand it to ``on_error``) and commit nothing else.

Optimistic state is an immutable tagged value, so rollback is a pure
function of it rather than scattered ``try``/``except`` blocks.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, replace
from typing import Any

from symbolica.errors import SymbolicaError, ValidationError
from symbolica.sync.keys import KeyPredicate, QueryKey
from symbolica.sync.query import NO_RETRY, RetryPolicy, call_with_retry
from symbolica.sync.store import CacheStore

logger = logging.getLogger(__name__)

Target = QueryKey | KeyPredicate
# A key prefix, or ``fn(variables, result)`` returning target(s).
Invalidation = QueryKey | Callable[[Any, Any], Target | Iterable[Target]]


# ---------------------------------------------------------------------------
# Optimistic state
# ---------------------------------------------------------------------------
class OptimisticStatus(enum.StrEnum):
    IDLE = "idle"
    PENDING = "pending"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class OptimisticState:
    status: OptimisticStatus = OptimisticStatus.IDLE
    snapshot: Any = None
    has_snapshot: bool = False
    value: Any = None


def begin(snapshot: Any, value: Any, *, has_snapshot: bool = True) -> OptimisticState:
    return OptimisticState(OptimisticStatus.PENDING, snapshot, has_snapshot, value)


def commit(state: OptimisticState, confirmed: Any) -> OptimisticState:
    if state.status is not OptimisticStatus.PENDING:
        raise ValueError(f"cannot commit from {state.status}")
    return replace(state, status=OptimisticStatus.COMMITTED, value=confirmed)


def fail(state: OptimisticState) -> OptimisticState:
    if state.status is not OptimisticStatus.PENDING:
        raise ValueError(f"cannot fail from {state.status}")
    return replace(state, status=OptimisticStatus.FAILED)


def visible_value(state: OptimisticState) -> Any:
    """What the cache should show for *state*: the rollback value once failed."""
    if state.status is OptimisticStatus.FAILED:
        return state.snapshot
    return state.value


@dataclass(frozen=True, slots=True)
class OptimisticUpdate:
    """Where and how to patch optimistically.

    ``key`` is a key or ``key(variables)``; ``apply(current, variables)``
    returns the optimistic data.
    """

    key: QueryKey | Callable[[Any], QueryKey]
    apply: Callable[[Any, Any], Any]

    def resolve_key(self, variables: Any) -> QueryKey:
        return self.key(variables) if callable(self.key) else self.key


# ---------------------------------------------------------------------------
# Mutation
# ---------------------------------------------------------------------------
class Mutation:
    """Write + cache reconciliation.

    Usage::

        rename = Mutation(
            store,
            lambda v: update_collection(client, v),
            invalidates=[lambda v, _: [("collection", "slug", v["slug"])],
                         ("collections",)],
        )
        row = await rename.mutate({"slug": "celtic-knots", "title": "Knots"})
        if rename.error:
            ...
    """

    def __init__(
        self,
        store: CacheStore,
        mutation_fn: Callable[[Any], Awaitable[Any]],
        *,
        invalidates: Iterable[Invalidation] = (),
        patch: Callable[[CacheStore, Any, Any], None] | None = None,
        optimistic: OptimisticUpdate | None = None,
        on_error: Callable[[BaseException, Any, OptimisticState | None], None] | None = None,
        validate: Callable[[Any], Any] | None = None,
        retry: RetryPolicy = NO_RETRY,
        timeout: float | None = None,
        name: str = "mutation",
    ) -> None:
        self._store = store
        self._fn = mutation_fn
        self._invalidates = list(invalidates)
        self._patch = patch
        self._optimistic = optimistic
        self._on_error = on_error
        self._validate = validate
        self._retry = retry
        self._timeout = timeout
        self.name = name

        self.is_pending = False
        self.error: BaseException | None = None
        self.data: Any = None
        self.optimistic_state: OptimisticState | None = None

    async def mutate(self, variables: Any = None) -> Any:
        """Run the mutation; returns the result, or ``None`` with :attr:`error` set."""
        try:
            return await self.mutate_async(variables)
        except Exception:
            return None

    async def mutate_async(self, variables: Any = None) -> Any:
        """Like :meth:`mutate` but re-raises the error after reconciling."""
        self.error = None
        self.is_pending = True
        try:
            if self._validate is not None:
                variables = self._validate(variables)

            opt_key: QueryKey | None = None
            state: OptimisticState | None = None
            if self._optimistic is not None:
                opt_key = self._optimistic.resolve_key(variables)
                entry = self._store.get(opt_key)
                has_snapshot = entry is not None and entry.has_data
                current = entry.data if has_snapshot else None
                state = begin(
                    current,
                    self._optimistic.apply(current, variables),
                    has_snapshot=has_snapshot,
                )
                self._store.patch(opt_key, state.value)
            self.optimistic_state = state

            try:
                result = await call_with_retry(
                    lambda: self._fn(variables),
                    self._retry,
                    operation=self.name,
                    timeout=self._timeout,
                )
            except Exception as exc:
                self._rollback(exc, variables, opt_key, state)
                raise

            if state is not None:
                self.optimistic_state = commit(state, result)
            if self._patch is not None:
                self._patch(self._store, variables, result)
            for target in self._targets(variables, result):
                await self._store.invalidate_and_refetch(target)

            self.data = result
            return result
        except Exception as exc:
            self.error = exc
            if isinstance(exc, ValidationError):
                logger.info("%s rejected before sending: %s", self.name, exc)
            elif isinstance(exc, SymbolicaError):
                logger.warning("%s failed: %s", self.name, exc)
            else:
                logger.exception("%s failed", self.name)
            raise
        finally:
            self.is_pending = False

    def reset(self) -> None:
        self.error = None
        self.data = None
        self.optimistic_state = None

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _rollback(
        self,
        exc: BaseException,
        variables: Any,
        key: QueryKey | None,
        state: OptimisticState | None,
    ) -> None:
        if state is not None:
            state = fail(state)
            self.optimistic_state = state
        if self._on_error is not None:
            self._on_error(exc, variables, state)
            return
        if state is None or key is None:
            return
        if state.has_snapshot:
            self._store.patch(key, visible_value(state))
        else:
            # Nothing was cached before the optimistic patch.
            self._store.clear_data(key)
            self._store.invalidate(key)

    def _targets(self, variables: Any, result: Any) -> list[Target]:
        targets: list[Target] = []
        for item in self._invalidates:
            if isinstance(item, tuple):
                targets.append(item)
            else:
                produced = item(variables, result)
                if isinstance(produced, tuple) or callable(produced):
                    targets.append(produced)
                else:
                    targets.extend(produced)
        return targets

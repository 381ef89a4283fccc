"""
symbolica.remote.client — Remote Data Client
=============================================

Table-scoped CRUD with equality/IN filter predicates plus an RPC mechanism
for server-side functions, all returning :class:`Result` tuples.

Expected failures (constraint violations, unknown functions) come back as
``Result.error``.  Only transport-level faults raise: an unreachable
database raises :class:`~symbolica.errors.TransportError` and a call that
exceeds the client's timeout raises
:class:`~symbolica.errors.RemoteTimeoutError`.

Every committed write is published on the :class:`RealtimeHub` so other
consumers' realtime bridges can invalidate their caches.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, delete, select
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from symbolica.constants import DEFAULT_REQUEST_TIMEOUT
from symbolica.database.engine import run_db
from symbolica.database.models import Base
from symbolica.errors import BusinessError, RemoteTimeoutError, SymbolicaError, TransportError
from symbolica.remote.realtime import ChangeEvent, ChangeType, RealtimeHub

logger = logging.getLogger(__name__)

Filters = dict[str, Any]


@dataclass(frozen=True, slots=True)
class Result:
    """``{data, error}`` pair returned by every client call."""

    data: Any = None
    error: SymbolicaError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return ``data`` or raise ``error``."""
        if self.error is not None:
            raise self.error
        return self.data


def row_to_dict(obj: Base) -> dict[str, Any]:
    """Serialise an ORM instance to a plain dict (datetimes → ISO strings)."""
    out: dict[str, Any] = {}
    for attr in obj.__mapper__.column_attrs:
        value = getattr(obj, attr.key)
        if isinstance(value, datetime):
            value = value.isoformat()
        out[attr.key] = value
    return out


class RemoteDataClient:
    """SQLAlchemy-backed implementation of the remote data contract.

    Usage::

        client = RemoteDataClient(engine, realtime_hub)
        result = await client.select("collections", order_by="created_at",
                                     descending=True)
        rows = result.unwrap()
    """

    def __init__(
        self,
        engine: Engine,
        realtime: RealtimeHub | None = None,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self._engine = engine
        self._realtime = realtime
        self._timeout = timeout
        self._models: dict[str, type[Base]] = {
            mapper.class_.__tablename__: mapper.class_ for mapper in Base.registry.mappers
        }
        self._rpc: dict[str, Callable[..., Any]] = {}

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def realtime(self) -> RealtimeHub | None:
        return self._realtime

    # -------------------------------------------------------------------
    # Public CRUD
    # -------------------------------------------------------------------
    async def select(
        self,
        table: str,
        *,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> Result:
        """Return matching rows as a list of dicts (never ``None``)."""
        return await self._execute(
            f"select {table}",
            self._select_rows, table, filters, order_by, descending, limit,
        )

    async def select_one(self, table: str, *, filters: Filters) -> Result:
        """Return the first matching row, or ``None`` in ``data``."""
        result = await self.select(table, filters=filters, limit=1)
        if not result.ok:
            return result
        return Result(data=result.data[0] if result.data else None)

    async def insert(self, table: str, values: dict | list[dict]) -> Result:
        """Insert one row (dict) or many (list).  ``data`` mirrors the input shape."""
        many = isinstance(values, list)
        rows = values if many else [values]
        result = await self._execute(f"insert {table}", self._insert_rows, table, rows)
        if result.ok:
            self._publish(table, ChangeType.INSERT, result.data)
            if not many:
                result = Result(data=result.data[0] if result.data else None)
        return result

    async def update(self, table: str, values: dict, *, filters: Filters) -> Result:
        """Update matching rows; ``data`` is the list of updated rows."""
        if not filters:
            raise ValueError(f"update on '{table}' requires at least one filter")
        result = await self._execute(
            f"update {table}", self._update_rows, table, values, filters,
        )
        if not result.ok:
            return result
        pairs: list[tuple[dict, dict]] = result.data
        for old, new in pairs:
            self._publish(table, ChangeType.UPDATE, [new], old)
        return Result(data=[new for _, new in pairs])

    async def delete(self, table: str, *, filters: Filters) -> Result:
        """Delete matching rows; ``data`` is the list of deleted rows."""
        if not filters:
            raise ValueError(f"delete on '{table}' requires at least one filter")
        result = await self._execute(f"delete {table}", self._delete_rows, table, filters)
        if result.ok:
            for row in result.data:
                self._publish(table, ChangeType.DELETE, [], row)
        return result

    # -------------------------------------------------------------------
    # RPC
    # -------------------------------------------------------------------
    def register_rpc(self, name: str, func: Callable[..., Any]) -> None:
        """Register a server-side function.

        *func* is either ``async def func(**params)`` or a synchronous
        ``func(engine, **params)`` which is run on a worker thread.
        """
        self._rpc[name] = func
        logger.info("Registered RPC function '%s'", name)

    async def rpc(self, name: str, params: dict[str, Any] | None = None) -> Result:
        func = self._rpc.get(name)
        if func is None:
            return Result(error=BusinessError(f"Function '{name}' not found"))
        params = params or {}
        if inspect.iscoroutinefunction(func):
            try:
                data = await asyncio.wait_for(func(**params), self._timeout)
            except TimeoutError:
                raise RemoteTimeoutError(f"rpc {name}", self._timeout) from None
            except SymbolicaError as exc:
                return Result(error=exc)
            return Result(data=data)
        return await self._execute(f"rpc {name}", lambda: func(self._engine, **params))

    # -------------------------------------------------------------------
    # Execution + error mapping
    # -------------------------------------------------------------------
    async def _execute(self, operation: str, func: Callable[..., Any], *args: Any) -> Result:
        try:
            data = await asyncio.wait_for(run_db(func, *args), self._timeout)
        except TimeoutError:
            raise RemoteTimeoutError(operation, self._timeout) from None
        except IntegrityError as exc:
            logger.warning("%s rejected by constraint: %s", operation, exc.orig)
            return Result(error=BusinessError(
                f"{operation} violates a constraint",
                details={"constraint": str(exc.orig)},
            ))
        except (OperationalError, InterfaceError) as exc:
            logger.error("%s failed at transport level: %s", operation, exc.orig)
            raise TransportError(f"{operation}: database unreachable") from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                raise TransportError(f"{operation}: connection lost") from exc
            logger.warning("%s failed: %s", operation, exc.orig)
            return Result(error=BusinessError(f"{operation} failed"))
        except SymbolicaError as exc:
            return Result(error=exc)
        return Result(data=data)

    def _publish(
        self,
        table: str,
        change: ChangeType,
        rows: Iterable[dict],
        old: dict | None = None,
    ) -> None:
        if self._realtime is None:
            return
        rows = list(rows)
        if not rows and old is not None:
            self._realtime.publish(ChangeEvent(table, change, {}, old))
            return
        for row in rows:
            self._realtime.publish(ChangeEvent(table, change, row, old))

    # -------------------------------------------------------------------
    # Synchronous DB work (runs on worker threads)
    # -------------------------------------------------------------------
    def _model(self, table: str) -> type[Base]:
        model = self._models.get(table)
        if model is None:
            raise ValueError(f"Unknown table: '{table}'")
        return model

    def _column(self, model: type[Base], name: str):
        if name not in model.__mapper__.columns:
            raise ValueError(f"Unknown column '{name}' on '{model.__tablename__}'")
        return getattr(model, name)

    def _where(self, model: type[Base], filters: Filters | None) -> list:
        clauses = []
        for name, value in (filters or {}).items():
            col = self._column(model, name)
            if isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(col.in_(list(value)))
            elif value is None:
                clauses.append(col.is_(None))
            else:
                clauses.append(col == value)
        return clauses

    def _select_rows(
        self,
        table: str,
        filters: Filters | None,
        order_by: str | None,
        descending: bool,
        limit: int | None,
    ) -> list[dict]:
        model = self._model(table)
        stmt = select(model).where(*self._where(model, filters))
        if order_by:
            col = self._column(model, order_by)
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit:
            stmt = stmt.limit(limit)
        with Session(self._engine) as session:
            return [row_to_dict(r) for r in session.scalars(stmt).all()]

    def _insert_rows(self, table: str, rows: list[dict]) -> list[dict]:
        model = self._model(table)
        for row in rows:
            for name in row:
                self._column(model, name)
        with Session(self._engine) as session:
            objs = [model(**row) for row in rows]
            session.add_all(objs)
            session.commit()
            for obj in objs:
                session.refresh(obj)
            return [row_to_dict(o) for o in objs]

    def _update_rows(
        self, table: str, values: dict, filters: Filters,
    ) -> list[tuple[dict, dict]]:
        model = self._model(table)
        for name in values:
            self._column(model, name)
        with Session(self._engine) as session:
            objs = session.scalars(select(model).where(*self._where(model, filters))).all()
            before = [row_to_dict(o) for o in objs]
            for obj in objs:
                for name, value in values.items():
                    setattr(obj, name, value)
            session.commit()
            for obj in objs:
                session.refresh(obj)
            return list(zip(before, [row_to_dict(o) for o in objs]))

    def _delete_rows(self, table: str, filters: Filters) -> list[dict]:
        model = self._model(table)
        where = self._where(model, filters)
        with Session(self._engine) as session:
            objs = session.scalars(select(model).where(*where)).all()
            deleted = [row_to_dict(o) for o in objs]
            session.execute(delete(model).where(*where))
            session.commit()
            return deleted

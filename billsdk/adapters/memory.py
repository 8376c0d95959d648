"""In-memory storage adapter.

Reference implementation of the storage protocol for tests and local
development. Every operation, and every transaction as a whole, runs under a
single lock; a failing transaction restores the snapshot taken when it began.
"""

import asyncio
import copy
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from billsdk.adapters.schema import Schema
from billsdk.adapters.storage import (
    Record,
    SortBy,
    SortDirection,
    StorageAdapter,
    Where,
    WhereOperator,
)
from billsdk.models.shared import generate_id

T = TypeVar("T")


def _matches(row: Record, clause: Where) -> bool:
    value = row.get(clause.field)
    op = clause.operator
    if op == WhereOperator.EQ:
        return value == clause.value
    if op == WhereOperator.NE:
        return value != clause.value
    if op == WhereOperator.IN:
        return value in clause.value
    if op == WhereOperator.CONTAINS:
        return isinstance(value, str) and str(clause.value) in value
    if op == WhereOperator.STARTS_WITH:
        return isinstance(value, str) and value.startswith(str(clause.value))
    if op == WhereOperator.ENDS_WITH:
        return isinstance(value, str) and value.endswith(str(clause.value))

    if value is None or clause.value is None:
        return False
    if op == WhereOperator.GT:
        return value > clause.value
    if op == WhereOperator.GTE:
        return value >= clause.value
    if op == WhereOperator.LT:
        return value < clause.value
    if op == WhereOperator.LTE:
        return value <= clause.value
    raise ValueError(f"Unsupported operator: {op}")


def _sort(rows: list[Record], sort_by: SortBy | None) -> list[Record]:
    if sort_by is None:
        return rows
    present = [r for r in rows if r.get(sort_by.field) is not None]
    missing = [r for r in rows if r.get(sort_by.field) is None]
    present.sort(
        key=lambda r: r[sort_by.field],
        reverse=sort_by.direction == SortDirection.DESC,
    )
    # Nulls sort last in either direction
    return present + missing


class _MemoryStore:
    """Unlocked table operations shared by the adapter and its transactions."""

    def __init__(self, schema: Schema | None = None):
        self.schema = schema
        self.tables: dict[str, dict[str, Record]] = {}

    def _table(self, model: str) -> dict[str, Record]:
        if self.schema is not None and model not in self.schema:
            raise ValueError(f"Unknown model: {model}")
        return self.tables.setdefault(model, {})

    def _check_unique(self, model: str, row: Record, ignore_id: str | None = None) -> None:
        if self.schema is None:
            return
        for field, attr in self.schema[model].items():
            if not attr.unique or row.get(field) is None:
                continue
            for other in self._table(model).values():
                if other["id"] != ignore_id and other.get(field) == row[field]:
                    raise ValueError(f"Duplicate value for {model}.{field}: {row[field]!r}")

    def select(self, model: str, where: list[Where] | None) -> list[Record]:
        clauses = where or []
        return [
            row
            for row in self._table(model).values()
            if all(_matches(row, clause) for clause in clauses)
        ]

    def create(self, model: str, data: Record) -> Record:
        row = copy.deepcopy(data)
        row.setdefault("id", generate_id())
        table = self._table(model)
        if row["id"] in table:
            raise ValueError(f"Duplicate id for {model}: {row['id']}")
        self._check_unique(model, row)
        table[row["id"]] = row
        return copy.deepcopy(row)

    def update_rows(self, model: str, rows: list[Record], data: Record) -> None:
        for row in rows:
            candidate = {**row, **copy.deepcopy(data)}
            self._check_unique(model, candidate, ignore_id=row["id"])
            row.update(copy.deepcopy(data))

    def delete_rows(self, model: str, rows: list[Record]) -> None:
        table = self._table(model)
        for row in rows:
            table.pop(row["id"], None)

    def snapshot(self) -> dict[str, dict[str, Record]]:
        return copy.deepcopy(self.tables)

    def restore(self, snapshot: dict[str, dict[str, Record]]) -> None:
        self.tables = snapshot


class _MemoryOperations(StorageAdapter):
    """CRUD against a ``_MemoryStore`` without taking the lock."""

    def __init__(self, store: _MemoryStore):
        self._store = store

    async def create(self, model: str, data: Record) -> Record:
        return self._store.create(model, data)

    async def find_one(self, model: str, where: list[Where]) -> Record | None:
        rows = self._store.select(model, where)
        return copy.deepcopy(rows[0]) if rows else None

    async def find_many(
        self,
        model: str,
        where: list[Where] | None = None,
        sort_by: SortBy | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Record]:
        rows = _sort(self._store.select(model, where), sort_by)
        if offset:
            rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def update(self, model: str, where: list[Where], data: Record) -> Record | None:
        rows = self._store.select(model, where)
        if not rows:
            return None
        self._store.update_rows(model, rows[:1], data)
        return copy.deepcopy(rows[0])

    async def update_many(self, model: str, where: list[Where], data: Record) -> int:
        rows = self._store.select(model, where)
        self._store.update_rows(model, rows, data)
        return len(rows)

    async def delete(self, model: str, where: list[Where]) -> None:
        rows = self._store.select(model, where)
        self._store.delete_rows(model, rows[:1])

    async def delete_many(self, model: str, where: list[Where]) -> int:
        rows = self._store.select(model, where)
        self._store.delete_rows(model, rows)
        return len(rows)

    async def count(self, model: str, where: list[Where] | None = None) -> int:
        return len(self._store.select(model, where))

    async def transaction(self, fn: Callable[[StorageAdapter], Awaitable[T]]) -> T:
        # Already inside a transaction: join it
        return await fn(self)


class MemoryStorageAdapter(_MemoryOperations):
    """Dict-backed storage adapter with serialized, rollback-capable transactions."""

    def __init__(self, schema: Schema | None = None):
        super().__init__(_MemoryStore(schema))
        self._lock = asyncio.Lock()

    @property
    def schema(self) -> Schema | None:
        return self._store.schema

    def bind_schema(self, schema: Schema) -> None:
        """Adopt the engine's resolved schema (base tables plus plugin tables)."""
        self._store.schema = schema

    async def _locked(self, coro_fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        async with self._lock:
            return await coro_fn(*args)

    async def create(self, model: str, data: Record) -> Record:
        return await self._locked(super().create, model, data)

    async def find_one(self, model: str, where: list[Where]) -> Record | None:
        return await self._locked(super().find_one, model, where)

    async def find_many(
        self,
        model: str,
        where: list[Where] | None = None,
        sort_by: SortBy | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Record]:
        return await self._locked(super().find_many, model, where, sort_by, limit, offset)

    async def update(self, model: str, where: list[Where], data: Record) -> Record | None:
        return await self._locked(super().update, model, where, data)

    async def update_many(self, model: str, where: list[Where], data: Record) -> int:
        return await self._locked(super().update_many, model, where, data)

    async def delete(self, model: str, where: list[Where]) -> None:
        await self._locked(super().delete, model, where)

    async def delete_many(self, model: str, where: list[Where]) -> int:
        return await self._locked(super().delete_many, model, where)

    async def count(self, model: str, where: list[Where] | None = None) -> int:
        return await self._locked(super().count, model, where)

    async def transaction(self, fn: Callable[[StorageAdapter], Awaitable[T]]) -> T:
        async with self._lock:
            snapshot = self._store.snapshot()
            try:
                return await fn(_MemoryOperations(self._store))
            except BaseException:
                self._store.restore(snapshot)
                raise

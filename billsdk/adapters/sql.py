"""SQLAlchemy storage adapter.

Tables are generated from the engine's resolved schema (base tables plus
plugin tables) with SQLAlchemy Core, so no per-model ORM classes are needed.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    MetaData,
    String,
    Table,
    and_,
    create_engine,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql.elements import ColumnElement

from billsdk.adapters.schema import FieldAttribute, FieldType, Schema
from billsdk.adapters.storage import (
    Record,
    SortBy,
    SortDirection,
    StorageAdapter,
    Where,
    WhereOperator,
)
from billsdk.core.config import settings
from billsdk.models.shared import ensure_aware, generate_id

T = TypeVar("T")

_COLUMN_TYPES: dict[FieldType, Any] = {
    FieldType.STRING: String(255),
    FieldType.NUMBER: BigInteger(),
    FieldType.BOOLEAN: Boolean(),
    FieldType.DATE: DateTime(timezone=True),
    FieldType.JSON: JSON(),
}


def build_engine(dsn: str | None = None) -> Engine:
    """Create a SQLAlchemy engine; in-memory SQLite shares one connection."""
    dsn = dsn or settings.DATABASE_DSN
    if dsn in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(dsn, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(
        dsn,
        connect_args=({"check_same_thread": False} if "sqlite" in dsn else {}),
    )


def build_tables(schema: Schema, metadata: MetaData) -> dict[str, Table]:
    tables: dict[str, Table] = {}
    for name, fields in schema.items():
        columns = []
        for field_name, attr in fields.items():
            columns.append(_build_column(field_name, attr))
        tables[name] = Table(name, metadata, *columns)
    return tables


def _build_column(name: str, attr: FieldAttribute) -> Column:  # type: ignore[type-arg]
    args: list[Any] = [_COLUMN_TYPES[attr.type]]
    if attr.references:
        args.append(ForeignKey(attr.references))
    return Column(
        name,
        *args,
        primary_key=attr.primary_key,
        nullable=not (attr.required or attr.primary_key),
        unique=attr.unique,
        index=attr.index and not attr.unique,
    )


def _clause(table: Table, where: Where) -> ColumnElement[bool]:
    col = table.c[where.field]
    op = where.operator
    value = where.value
    if op == WhereOperator.EQ:
        return col.is_(None) if value is None else col == value
    if op == WhereOperator.NE:
        return col.is_not(None) if value is None else or_(col != value, col.is_(None))
    if op == WhereOperator.GT:
        return col > value
    if op == WhereOperator.GTE:
        return col >= value
    if op == WhereOperator.LT:
        return col < value
    if op == WhereOperator.LTE:
        return col <= value
    if op == WhereOperator.IN:
        return col.in_(list(value))
    if op == WhereOperator.CONTAINS:
        return col.contains(value, autoescape=True)
    if op == WhereOperator.STARTS_WITH:
        return col.startswith(value, autoescape=True)
    if op == WhereOperator.ENDS_WITH:
        return col.endswith(value, autoescape=True)
    raise ValueError(f"Unsupported operator: {op}")


class _SQLOperations(StorageAdapter):
    """CRUD bound to one open connection (and therefore one transaction)."""

    def __init__(self, tables: dict[str, Table], conn: Connection):
        self._tables = tables
        self._conn = conn

    def _table(self, model: str) -> Table:
        try:
            return self._tables[model]
        except KeyError:
            raise ValueError(f"Unknown model: {model}") from None

    def _where(self, table: Table, where: list[Where] | None) -> ColumnElement[bool] | None:
        if not where:
            return None
        return and_(*(_clause(table, w) for w in where))

    def _to_record(self, table: Table, row: Any) -> Record:
        record = dict(row._mapping)
        for col in table.columns:
            if isinstance(col.type, DateTime):
                record[col.name] = ensure_aware(record.get(col.name))
        return record

    def _select_rows(
        self,
        model: str,
        where: list[Where] | None,
        sort_by: SortBy | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Record]:
        table = self._table(model)
        query = select(table)
        condition = self._where(table, where)
        if condition is not None:
            query = query.where(condition)
        if sort_by is not None:
            col = table.c[sort_by.field]
            ordered = col.desc() if sort_by.direction == SortDirection.DESC else col.asc()
            query = query.order_by(ordered.nulls_last())
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return [self._to_record(table, row) for row in self._conn.execute(query)]

    async def create(self, model: str, data: Record) -> Record:
        table = self._table(model)
        row = dict(data)
        row.setdefault("id", generate_id())
        self._conn.execute(table.insert().values(**row))
        return self._select_rows(model, [Where("id", row["id"])])[0]

    async def find_one(self, model: str, where: list[Where]) -> Record | None:
        rows = self._select_rows(model, where, limit=1)
        return rows[0] if rows else None

    async def find_many(
        self,
        model: str,
        where: list[Where] | None = None,
        sort_by: SortBy | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Record]:
        return self._select_rows(model, where, sort_by, limit, offset)

    async def update(self, model: str, where: list[Where], data: Record) -> Record | None:
        existing = await self.find_one(model, where)
        if existing is None:
            return None
        table = self._table(model)
        self._conn.execute(table.update().where(table.c.id == existing["id"]).values(**data))
        return await self.find_one(model, [Where("id", existing["id"])])

    async def update_many(self, model: str, where: list[Where], data: Record) -> int:
        table = self._table(model)
        stmt = table.update().values(**data)
        condition = self._where(table, where)
        if condition is not None:
            stmt = stmt.where(condition)
        return self._conn.execute(stmt).rowcount

    async def delete(self, model: str, where: list[Where]) -> None:
        existing = await self.find_one(model, where)
        if existing is not None:
            table = self._table(model)
            self._conn.execute(table.delete().where(table.c.id == existing["id"]))

    async def delete_many(self, model: str, where: list[Where]) -> int:
        table = self._table(model)
        stmt = table.delete()
        condition = self._where(table, where)
        if condition is not None:
            stmt = stmt.where(condition)
        return self._conn.execute(stmt).rowcount

    async def count(self, model: str, where: list[Where] | None = None) -> int:
        table = self._table(model)
        query = select(func.count()).select_from(table)
        condition = self._where(table, where)
        if condition is not None:
            query = query.where(condition)
        return int(self._conn.execute(query).scalar_one())

    async def transaction(self, fn: Callable[[StorageAdapter], Awaitable[T]]) -> T:
        return await fn(self)


class SQLStorageAdapter(StorageAdapter):
    """Storage adapter backed by any SQLAlchemy-supported database.

    Each call outside a transaction runs in its own short transaction.
    Transactions are serialized per adapter instance so compound subscription
    updates never interleave within a process.
    """

    def __init__(self, engine: Engine | None = None, schema: Schema | None = None):
        self.engine = engine or build_engine()
        self.metadata = MetaData()
        self.tables: dict[str, Table] = {}
        self._lock = asyncio.Lock()
        if schema is not None:
            self.bind_schema(schema)

    def bind_schema(self, schema: Schema) -> None:
        """Generate tables for the resolved schema."""
        self.metadata = MetaData()
        self.tables = build_tables(schema, self.metadata)

    def create_all(self) -> None:
        """Create any missing tables."""
        self.metadata.create_all(bind=self.engine)

    async def _run(self, op: str, *args: Any) -> Any:
        async with self._lock:
            with self.engine.begin() as conn:
                return await getattr(_SQLOperations(self.tables, conn), op)(*args)

    async def create(self, model: str, data: Record) -> Record:
        return await self._run("create", model, data)

    async def find_one(self, model: str, where: list[Where]) -> Record | None:
        return await self._run("find_one", model, where)

    async def find_many(
        self,
        model: str,
        where: list[Where] | None = None,
        sort_by: SortBy | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Record]:
        return await self._run("find_many", model, where, sort_by, limit, offset)

    async def update(self, model: str, where: list[Where], data: Record) -> Record | None:
        return await self._run("update", model, where, data)

    async def update_many(self, model: str, where: list[Where], data: Record) -> int:
        return await self._run("update_many", model, where, data)

    async def delete(self, model: str, where: list[Where]) -> None:
        await self._run("delete", model, where)

    async def delete_many(self, model: str, where: list[Where]) -> int:
        return await self._run("delete_many", model, where)

    async def count(self, model: str, where: list[Where] | None = None) -> int:
        return await self._run("count", model, where)

    async def transaction(self, fn: Callable[[StorageAdapter], Awaitable[T]]) -> T:
        async with self._lock:
            with self.engine.begin() as conn:
                return await fn(_SQLOperations(self.tables, conn))

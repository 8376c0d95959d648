"""Storage adapter protocol.

Everything above the storage layer talks to a ``StorageAdapter``: generic CRUD
plus filtered queries and a transaction boundary. Records are plain dicts keyed
by snake_case field names.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

T = TypeVar("T")

Record = dict[str, Any]


class WhereOperator(str, Enum):
    """Comparison operators supported in where clauses."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class Where:
    """A single filter clause. A list of clauses is implicitly AND-ed."""

    field: str
    value: Any
    operator: WhereOperator = WhereOperator.EQ


@dataclass(frozen=True)
class SortBy:
    field: str
    direction: SortDirection = SortDirection.ASC


class StorageAdapter(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    async def create(self, model: str, data: Record) -> Record:
        """Insert a row and return it as stored."""
        pass  # pragma: no cover

    @abstractmethod
    async def find_one(self, model: str, where: list[Where]) -> Record | None:
        """Return the first row matching ``where``, or None."""
        pass  # pragma: no cover

    @abstractmethod
    async def find_many(
        self,
        model: str,
        where: list[Where] | None = None,
        sort_by: SortBy | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Record]:
        """Return every row matching ``where``."""
        pass  # pragma: no cover

    @abstractmethod
    async def update(self, model: str, where: list[Where], data: Record) -> Record | None:
        """Update the first matching row and return it, or None when nothing matched."""
        pass  # pragma: no cover

    @abstractmethod
    async def update_many(self, model: str, where: list[Where], data: Record) -> int:
        """Update every matching row and return how many changed."""
        pass  # pragma: no cover

    @abstractmethod
    async def delete(self, model: str, where: list[Where]) -> None:
        """Delete the first matching row."""
        pass  # pragma: no cover

    @abstractmethod
    async def delete_many(self, model: str, where: list[Where]) -> int:
        """Delete every matching row and return how many were removed."""
        pass  # pragma: no cover

    @abstractmethod
    async def count(self, model: str, where: list[Where] | None = None) -> int:
        """Count rows matching ``where``."""
        pass  # pragma: no cover

    @abstractmethod
    async def transaction(self, fn: "Callable[[StorageAdapter], Awaitable[T]]") -> T:
        """Run ``fn`` against a transaction-bound adapter.

        The transaction commits when ``fn`` returns and rolls back when it
        raises. Calling ``transaction`` on the adapter handed to ``fn`` joins
        the outer transaction instead of opening a new one.
        """
        pass  # pragma: no cover

"""Clock abstraction used by every time-sensitive billing operation."""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from billsdk.adapters.storage import StorageAdapter
from billsdk.models.shared import ensure_aware, utc_now


class TimeProvider(ABC):
    """Injectable clock. ``customer_id`` lets a provider simulate time per customer."""

    @abstractmethod
    async def now(self, customer_id: str | None = None) -> datetime:
        """Return the current time as an aware UTC datetime."""
        pass  # pragma: no cover

    def bind(self, storage: StorageAdapter) -> "TimeProvider":
        """Provider that reads through ``storage``; clocks that keep no state return themselves."""
        return self


class SystemTimeProvider(TimeProvider):
    """Wall-clock time."""

    async def now(self, customer_id: str | None = None) -> datetime:
        return utc_now()


class FixedTimeProvider(TimeProvider):
    """Manually driven clock for deterministic tests and scripted simulations."""

    def __init__(self, current: datetime):
        self.current = ensure_aware(current)

    async def now(self, customer_id: str | None = None) -> datetime:
        return self.current  # type: ignore[return-value]

    def set(self, current: datetime) -> None:
        self.current = ensure_aware(current)

    def advance(self, delta: timedelta) -> datetime:
        self.current = self.current + delta  # type: ignore[operator]
        return self.current

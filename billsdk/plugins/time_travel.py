"""Time travel plugin for simulating billing cycles in development.

Stores a simulated clock per customer (row id = customer external id) plus an
optional global one (row id ``"global"``). Every engine operation reads time
through the plugin's provider, so trials, renewals and cancellations can be
exercised without waiting.

Not for production use.
"""

from datetime import datetime, timedelta
from typing import Any

from billsdk.adapters.schema import FieldAttribute, FieldType, Schema
from billsdk.adapters.storage import StorageAdapter, Where
from billsdk.core.errors import ConfigurationError, InvalidRequestError
from billsdk.core.plugins import Plugin, PluginContext, PluginEndpoint
from billsdk.models.shared import ensure_aware, utc_now
from billsdk.services.subscription_dates import add_months
from billsdk.services.time_provider import TimeProvider

TABLE = "time_travel_state"
GLOBAL_ID = "global"

TIME_TRAVEL_SCHEMA: Schema = {
    TABLE: {
        "id": FieldAttribute(FieldType.STRING, primary_key=True),
        "simulated_time": FieldAttribute(FieldType.DATE, required=False),
        "created_at": FieldAttribute(FieldType.DATE),
        "updated_at": FieldAttribute(FieldType.DATE),
    }
}


async def get_simulated_time(storage: StorageAdapter, state_id: str = GLOBAL_ID) -> datetime | None:
    row = await storage.find_one(TABLE, [Where("id", state_id)])
    if not row or row.get("simulated_time") is None:
        return None
    return ensure_aware(row["simulated_time"])


async def set_simulated_time(
    storage: StorageAdapter, simulated_time: datetime | None, state_id: str = GLOBAL_ID
) -> None:
    real_now = utc_now()
    simulated_time = ensure_aware(simulated_time)
    existing = await storage.find_one(TABLE, [Where("id", state_id)])
    if existing:
        await storage.update(
            TABLE,
            [Where("id", state_id)],
            {"simulated_time": simulated_time, "updated_at": real_now},
        )
    else:
        await storage.create(
            TABLE,
            {
                "id": state_id,
                "simulated_time": simulated_time,
                "created_at": real_now,
                "updated_at": real_now,
            },
        )


class TimeTravelProvider(TimeProvider):
    """Customer clock, then the global clock, then wall-clock time."""

    def __init__(self, storage: StorageAdapter):
        self.storage = storage

    def bind(self, storage: StorageAdapter) -> "TimeTravelProvider":
        return TimeTravelProvider(storage)

    async def now(self, customer_id: str | None = None) -> datetime:
        if customer_id:
            simulated = await get_simulated_time(self.storage, customer_id)
            if simulated is not None:
                return simulated
        simulated = await get_simulated_time(self.storage)
        return simulated if simulated is not None else utc_now()


def _parse_date(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    try:
        return ensure_aware(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError as e:
        raise InvalidRequestError(f"Invalid date: {value}") from e


def _parse_number(params: dict[str, Any], name: str) -> int:
    value = params.get(name) or 0
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InvalidRequestError(f"'{name}' must be a number") from e


class TimeTravelPlugin(Plugin):
    id = "time-travel"
    schema = TIME_TRAVEL_SCHEMA

    def __init__(self) -> None:
        self._storage: StorageAdapter | None = None

    @property
    def storage(self) -> StorageAdapter:
        if self._storage is None:
            raise ConfigurationError("Time travel plugin used before engine initialization")
        return self._storage

    def init(self, ctx: PluginContext) -> TimeProvider:
        self._storage = ctx.storage
        ctx.logger.warning("Time Travel plugin enabled. DO NOT USE IN PRODUCTION.")
        return TimeTravelProvider(ctx.storage)

    @property
    def endpoints(self) -> list[PluginEndpoint]:
        return [
            PluginEndpoint("POST", "/time-travel/set", self.set_time),
            PluginEndpoint("GET", "/time-travel/get", self.get_time),
            PluginEndpoint("POST", "/time-travel/advance", self.advance_time),
            PluginEndpoint("POST", "/time-travel/reset", self.reset_time),
        ]

    # ── Endpoint handlers ──

    async def set_time(self, params: dict[str, Any]) -> dict[str, Any]:
        state_id = params.get("customer_id") or GLOBAL_ID
        simulated = _parse_date(params.get("date"))
        await set_simulated_time(self.storage, simulated, state_id)
        return {
            "success": True,
            "simulated_time": simulated.isoformat() if simulated else None,
            "is_simulated": simulated is not None,
        }

    async def get_time(self, params: dict[str, Any]) -> dict[str, Any]:
        customer_id = params.get("customer_id")
        simulated = await TimeTravelProvider(self.storage).now(customer_id)
        real_now = utc_now()
        is_simulated = (await get_simulated_time(self.storage, customer_id or GLOBAL_ID)) is not None
        if customer_id and not is_simulated:
            is_simulated = (await get_simulated_time(self.storage)) is not None
        return {
            "simulated_time": simulated.isoformat() if is_simulated else None,
            "is_simulated": is_simulated,
            "real_time": real_now.isoformat(),
        }

    async def advance_time(self, params: dict[str, Any]) -> dict[str, Any]:
        customer_id = params.get("customer_id")
        days = _parse_number(params, "days")
        hours = _parse_number(params, "hours")
        months = _parse_number(params, "months")

        current = await TimeTravelProvider(self.storage).now(customer_id)
        advanced = add_months(current, months) + timedelta(days=days, hours=hours)
        await set_simulated_time(self.storage, advanced, customer_id or GLOBAL_ID)
        return {
            "success": True,
            "simulated_time": advanced.isoformat(),
            "advanced": {"days": days, "hours": hours, "months": months},
        }

    async def reset_time(self, params: dict[str, Any]) -> dict[str, Any]:
        await set_simulated_time(self.storage, None, params.get("customer_id") or GLOBAL_ID)
        return {"success": True, "simulated_time": None, "real_time": utc_now().isoformat()}

"""Tests for the plugin host and the time travel plugin."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from billsdk.adapters.schema import FieldAttribute, FieldType, Tables
from billsdk.core.errors import ConfigurationError, InvalidRequestError
from billsdk.core.plugins import Plugin, PluginEndpoint
from billsdk.models.subscription import SubscriptionStatus
from billsdk.plugins.time_travel import (
    GLOBAL_ID,
    TimeTravelPlugin,
    TimeTravelProvider,
    get_simulated_time,
)
from billsdk.services.behaviors import BillingBehaviors
from billsdk.services.time_provider import FixedTimeProvider
from tests.conftest import START


class _ClockPlugin(Plugin):
    def __init__(self, plugin_id: str):
        self.id = plugin_id

    def init(self, ctx):  # type: ignore[no-untyped-def]
        return FixedTimeProvider(datetime(2030, 1, 1, tzinfo=UTC))


class _TablePlugin(Plugin):
    def __init__(self, plugin_id: str, table: str):
        self.id = plugin_id
        self.schema = {table: {"id": FieldAttribute(FieldType.STRING, primary_key=True)}}


# ---------------------------------------------------------------------------
# Plugin host
# ---------------------------------------------------------------------------


class TestPluginHost:
    def test_duplicate_ids_rejected(self, make_engine):
        with pytest.raises(ConfigurationError, match="Duplicate plugin id"):
            make_engine(plugins=[_ClockPlugin("a"), _TablePlugin("a", "audit")])

    def test_plugin_needs_id(self, make_engine):
        with pytest.raises(ConfigurationError, match="has no id"):
            make_engine(plugins=[Plugin()])

    def test_plugins_without_tables_declare_no_schema(self, make_engine):
        clock_plugin = _ClockPlugin("frozen")
        assert clock_plugin.schema is None

        engine = make_engine(plugins=[clock_plugin, _TablePlugin("audit", "audit_log")])
        assert "audit_log" in engine.schema
        assert _ClockPlugin("other").schema is None

    def test_only_one_time_provider(self, make_engine):
        with pytest.raises(ConfigurationError, match="both replace the time provider"):
            make_engine(plugins=[_ClockPlugin("a"), _ClockPlugin("b")])

    def test_schema_conflict(self, make_engine):
        with pytest.raises(ConfigurationError, match="already defined"):
            make_engine(plugins=[_TablePlugin("bad", Tables.PAYMENT)])

    @pytest.mark.asyncio
    async def test_plugin_tables_are_usable(self, make_engine, storage):
        make_engine(plugins=[_TablePlugin("audit", "audit_log")])
        row = await storage.create("audit_log", {"id": "entry-1"})
        assert row["id"] == "entry-1"

    @pytest.mark.asyncio
    async def test_plugin_replaces_clock(self, make_engine):
        engine = make_engine(plugins=[_ClockPlugin("frozen")])
        assert await engine.now() == datetime(2030, 1, 1, tzinfo=UTC)

    def test_endpoints_are_collected(self, make_engine):
        async def ping(params):  # type: ignore[no-untyped-def]
            return {"pong": True}

        class _PingPlugin(Plugin):
            id = "ping"

            @property
            def endpoints(self) -> list[PluginEndpoint]:
                return [PluginEndpoint("GET", "/ping", ping)]

        engine = make_engine(plugins=[_PingPlugin()])
        assert [(e.method, e.path) for e in engine.endpoints] == [("GET", "/ping")]


# ---------------------------------------------------------------------------
# Time travel
# ---------------------------------------------------------------------------


class TestTimeTravel:
    @pytest.fixture
    def plugin(self) -> TimeTravelPlugin:
        return TimeTravelPlugin()

    @pytest.fixture
    def tt_engine(self, make_engine, plugin):
        return make_engine(plugins=[plugin], time_provider=None)

    def test_replaces_time_provider(self, tt_engine):
        assert isinstance(tt_engine.time_provider, TimeTravelProvider)

    def test_warns_on_init(self, make_engine, caplog):
        with caplog.at_level("WARNING"):
            make_engine(plugins=[TimeTravelPlugin()])
        assert "DO NOT USE IN PRODUCTION" in caplog.text

    @pytest.mark.asyncio
    async def test_used_before_init(self):
        with pytest.raises(ConfigurationError):
            await TimeTravelPlugin().get_time({})

    @pytest.mark.asyncio
    async def test_real_time_without_simulation(self, tt_engine, plugin):
        before = datetime.now(UTC)
        assert await tt_engine.now() >= before
        state = await plugin.get_time({})
        assert state["is_simulated"] is False
        assert state["simulated_time"] is None

    @pytest.mark.asyncio
    async def test_set_global_time(self, tt_engine, plugin):
        response = await plugin.set_time({"date": "2025-01-15T12:00:00Z"})

        assert response == {
            "success": True,
            "simulated_time": START.isoformat(),
            "is_simulated": True,
        }
        assert await tt_engine.now() == START
        assert await tt_engine.now("any_customer") == START

    @pytest.mark.asyncio
    async def test_customer_clock_overrides_global(self, tt_engine, plugin):
        await plugin.set_time({"date": "2025-01-15T12:00:00+00:00"})
        await plugin.set_time({"date": "2026-06-01T00:00:00+00:00", "customer_id": "user_1"})

        assert await tt_engine.now("user_1") == datetime(2026, 6, 1, tzinfo=UTC)
        assert await tt_engine.now("user_2") == START
        state = await plugin.get_time({"customer_id": "user_1"})
        assert state["simulated_time"] == "2026-06-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_advance(self, tt_engine, plugin):
        await plugin.set_time({"date": "2025-01-31T00:00:00Z"})

        response = await plugin.advance_time({"months": 1, "days": "2", "hours": 3})

        assert response["advanced"] == {"days": 2, "hours": 3, "months": 1}
        assert await tt_engine.now() == datetime(2025, 3, 2, 3, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_advance_customer_starts_from_global(self, tt_engine, plugin):
        await plugin.set_time({"date": "2025-01-15T12:00:00Z"})
        await plugin.advance_time({"days": 1, "customer_id": "user_1"})

        assert await tt_engine.now("user_1") == START + timedelta(days=1)
        assert await tt_engine.now() == START

    @pytest.mark.asyncio
    async def test_reset(self, tt_engine, plugin, storage):
        await plugin.set_time({"date": "2025-01-15T12:00:00Z"})
        await plugin.reset_time({})
        assert await get_simulated_time(storage, GLOBAL_ID) is None
        assert (await plugin.get_time({}))["is_simulated"] is False

    @pytest.mark.asyncio
    async def test_invalid_input(self, tt_engine, plugin):
        with pytest.raises(InvalidRequestError, match="Invalid date"):
            await plugin.set_time({"date": "next tuesday"})
        with pytest.raises(InvalidRequestError, match="must be a number"):
            await plugin.advance_time({"days": "many"})

    @pytest.mark.asyncio
    async def test_drives_a_billing_cycle(self, tt_engine, plugin):
        await plugin.set_time({"date": "2025-01-15T12:00:00Z"})
        await tt_engine.create_customer("user_1", "user_1@example.com")
        created = await tt_engine.create_subscription("user_1", "trial_pro")
        assert created.subscription.trial_end == START + timedelta(days=14)

        await plugin.advance_time({"days": 14})
        result = await tt_engine.process_renewals()

        assert result.succeeded == 1
        sub = await tt_engine.get_subscription("user_1")
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.current_period_start == START + timedelta(days=14)

    @pytest.mark.asyncio
    async def test_behaviors_read_the_simulated_clock_inside_a_transaction(
        self, make_engine, plugin
    ):
        seen = []

        async def on_cancel(ctx, event, default):  # type: ignore[no-untyped-def]
            seen.append(await ctx.now(event.customer.external_id))
            return await default()

        engine = make_engine(
            plugins=[plugin],
            time_provider=None,
            behaviors=BillingBehaviors(on_subscription_cancel=on_cancel),
        )
        await plugin.set_time({"date": "2025-01-15T12:00:00Z"})
        await engine.create_customer("user_1", "user_1@example.com")
        await engine.create_subscription("user_1", "pro")

        canceled = await asyncio.wait_for(engine.cancel_subscription("user_1", "immediate"), 5)

        assert canceled.status == SubscriptionStatus.CANCELED
        assert seen == [START]

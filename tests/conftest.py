"""Shared test fixtures for all test modules."""

from datetime import UTC, datetime

import pytest

from billsdk.adapters.memory import MemoryStorageAdapter
from billsdk.core.config import Settings
from billsdk.engine import BillingEngine
from billsdk.models.catalog import PlanCatalog
from billsdk.services.time_provider import FixedTimeProvider

# Well-known instant used as "now" across tests
START = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)

TEST_SECRET = "test-secret-0123456789abcdef0123456789abcdef"

CATALOG = {
    "features": [
        {"code": "export", "name": "Export"},
        {"code": "api_access", "name": "API access"},
        {"code": "seats", "name": "Team seats", "type": "seats"},
    ],
    "plans": [
        {
            "code": "free",
            "name": "Free",
            "prices": [{"amount": 0, "interval": "monthly"}],
            "features": [],
        },
        {
            "code": "pro",
            "name": "Pro",
            "prices": [
                {"amount": 2000, "interval": "monthly"},
                {"amount": 20000, "interval": "yearly"},
            ],
            "features": ["export"],
        },
        {
            "code": "business",
            "name": "Business",
            "prices": [{"amount": 5000, "interval": "monthly"}],
            "features": ["export", "api_access", "seats"],
        },
        {
            "code": "trial_pro",
            "name": "Pro (trial)",
            "is_public": False,
            "prices": [{"amount": 2000, "interval": "monthly", "trial_days": 14}],
            "features": ["export"],
        },
    ],
    "default_plan_code": "free",
}


@pytest.fixture
def settings() -> Settings:
    return Settings(SECRET=TEST_SECRET, ENVIRONMENT="test", TRUSTED_ORIGINS="")


@pytest.fixture
def catalog() -> PlanCatalog:
    return PlanCatalog.model_validate(CATALOG)


@pytest.fixture
def clock() -> FixedTimeProvider:
    return FixedTimeProvider(START)


@pytest.fixture
def storage() -> MemoryStorageAdapter:
    return MemoryStorageAdapter()


@pytest.fixture
def engine(catalog, storage, clock, settings) -> BillingEngine:
    return BillingEngine(catalog=catalog, storage=storage, time_provider=clock, settings=settings)


@pytest.fixture
def make_engine(catalog, storage, clock, settings):
    """Build an engine over the shared storage and clock with custom options."""

    def _make(**overrides) -> BillingEngine:  # type: ignore[no-untyped-def]
        options = {
            "catalog": catalog,
            "storage": storage,
            "time_provider": clock,
            "settings": settings,
        }
        options.update(overrides)
        return BillingEngine(**options)

    return _make

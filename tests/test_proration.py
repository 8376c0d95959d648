"""Tests for proration arithmetic."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from billsdk.core.errors import InvalidRequestError
from billsdk.models.catalog import Price
from billsdk.services.proration import (
    calculate_proration,
    remaining_fraction,
    round_minor_units,
)

PERIOD_START = datetime(2025, 1, 1, tzinfo=UTC)
PERIOD_END = datetime(2025, 1, 31, tzinfo=UTC)


class TestRemainingFraction:
    def test_at_period_start(self):
        assert remaining_fraction(PERIOD_START, PERIOD_END, PERIOD_START) == Decimal(1)

    def test_at_period_end(self):
        assert remaining_fraction(PERIOD_START, PERIOD_END, PERIOD_END) == Decimal(0)

    def test_midpoint(self):
        now = datetime(2025, 1, 16, tzinfo=UTC)
        assert remaining_fraction(PERIOD_START, PERIOD_END, now) == Decimal("0.5")

    def test_now_outside_period(self):
        with pytest.raises(InvalidRequestError, match="within the billing period"):
            remaining_fraction(PERIOD_START, PERIOD_END, PERIOD_END + timedelta(seconds=1))

    def test_empty_period(self):
        with pytest.raises(InvalidRequestError):
            remaining_fraction(PERIOD_START, PERIOD_START, PERIOD_START)


class TestRounding:
    def test_half_up(self):
        assert round_minor_units(Decimal("2.5")) == 3
        assert round_minor_units(Decimal("2.4999")) == 2
        assert round_minor_units(Decimal("0")) == 0


class TestCalculateProration:
    def test_upgrade_at_midpoint(self):
        proration = calculate_proration(
            Price(amount=2000),
            Price(amount=5000),
            PERIOD_START,
            PERIOD_END,
            datetime(2025, 1, 16, tzinfo=UTC),
        )
        assert proration.credit == 1000
        assert proration.charge == 2500
        assert proration.net == 1500

    def test_downgrade_has_negative_net(self):
        proration = calculate_proration(
            Price(amount=5000),
            Price(amount=2000),
            PERIOD_START,
            PERIOD_END,
            datetime(2025, 1, 16, tzinfo=UTC),
        )
        assert proration.net == -1500

    def test_at_period_start_charges_full_difference(self):
        proration = calculate_proration(
            Price(amount=2000), Price(amount=5000), PERIOD_START, PERIOD_END, PERIOD_START
        )
        assert (proration.credit, proration.charge, proration.net) == (2000, 5000, 3000)

    def test_at_period_end_is_zero(self):
        proration = calculate_proration(
            Price(amount=2000), Price(amount=5000), PERIOD_START, PERIOD_END, PERIOD_END
        )
        assert (proration.credit, proration.charge, proration.net) == (0, 0, 0)

    def test_rounds_each_side_half_up(self):
        # one third of the period left
        start = datetime(2025, 1, 1, tzinfo=UTC)
        end = start + timedelta(days=3)
        proration = calculate_proration(
            Price(amount=100), Price(amount=200), start, end, start + timedelta(days=2)
        )
        assert proration.credit == 33
        assert proration.charge == 67
        assert proration.net == 34

    def test_metadata(self):
        proration = calculate_proration(
            Price(amount=2000), Price(amount=5000), PERIOD_START, PERIOD_END, PERIOD_START
        )
        assert proration.as_metadata() == {
            "remaining_fraction": "1",
            "credit": 2000,
            "charge": 5000,
            "net": 3000,
        }

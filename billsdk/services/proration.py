"""Proration arithmetic for mid-cycle plan changes."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from billsdk.core.errors import InvalidRequestError
from billsdk.models.catalog import Price


@dataclass(frozen=True)
class Proration:
    """Credit for the unused old price and charge for the remaining new price."""

    remaining_fraction: Decimal
    credit: int
    charge: int

    @property
    def net(self) -> int:
        return self.charge - self.credit

    def as_metadata(self) -> dict[str, str | int]:
        return {
            "remaining_fraction": str(self.remaining_fraction),
            "credit": self.credit,
            "charge": self.charge,
            "net": self.net,
        }


def _microseconds(delta: timedelta) -> int:
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def round_minor_units(value: Decimal) -> int:
    """Round half-up to a whole minor currency unit."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def remaining_fraction(period_start: datetime, period_end: datetime, now: datetime) -> Decimal:
    """Fraction of the period still ahead of ``now``, computed exactly."""
    if period_end <= period_start:
        raise InvalidRequestError("Billing period end must be after its start")
    if not period_start <= now <= period_end:
        raise InvalidRequestError("Proration time must fall within the billing period")
    return Decimal(_microseconds(period_end - now)) / Decimal(
        _microseconds(period_end - period_start)
    )


def calculate_proration(
    old_price: Price,
    new_price: Price,
    period_start: datetime,
    period_end: datetime,
    now: datetime,
) -> Proration:
    """Prorate a plan change at ``now``.

    Args:
        old_price: Price currently billed.
        new_price: Price being switched to.
        period_start: Start of the current billing period.
        period_end: End of the current billing period.
        now: Moment of the change; must fall within the period.

    Returns:
        Proration with ``credit = round(old × fraction)``,
        ``charge = round(new × fraction)`` and ``net = charge - credit``.
    """
    fraction = remaining_fraction(period_start, period_end, now)
    return Proration(
        remaining_fraction=fraction,
        credit=round_minor_units(Decimal(old_price.amount) * fraction),
        charge=round_minor_units(Decimal(new_price.amount) * fraction),
    )

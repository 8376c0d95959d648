"""Strategies deciding whether a plan change applies now or at the next renewal."""

from abc import ABC, abstractmethod
from enum import Enum

from billsdk.models.catalog import Price


class ChangeAction(str, Enum):
    IMMEDIATE = "immediate"
    SCHEDULED = "scheduled"


class PlanChangePolicy(ABC):
    """Decides how a subscription moves from one price to another."""

    name: str

    @abstractmethod
    def decide(self, old_price: Price, new_price: Price) -> ChangeAction:
        """Return the action to take for this price transition."""
        pass  # pragma: no cover


class DeferDowngradesPolicy(PlanChangePolicy):
    """Upgrades and same-price moves switch now with proration; downgrades wait for renewal."""

    name = "defer_downgrades"

    def decide(self, old_price: Price, new_price: Price) -> ChangeAction:
        if new_price.amount >= old_price.amount:
            return ChangeAction.IMMEDIATE
        return ChangeAction.SCHEDULED


class ImmediateChangePolicy(PlanChangePolicy):
    """Every change switches now; a negative net is absorbed without refund."""

    name = "immediate"

    def decide(self, old_price: Price, new_price: Price) -> ChangeAction:
        return ChangeAction.IMMEDIATE


def get_plan_change_policy(name: str) -> PlanChangePolicy:
    """Factory function to get a plan change policy by name."""
    policies: dict[str, type[PlanChangePolicy]] = {
        DeferDowngradesPolicy.name: DeferDowngradesPolicy,
        ImmediateChangePolicy.name: ImmediateChangePolicy,
    }

    policy_class = policies.get(name)
    if not policy_class:
        raise ValueError(f"Unsupported plan change policy: {name}")

    return policy_class()
